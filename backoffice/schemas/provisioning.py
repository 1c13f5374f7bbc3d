"""Schemas for the coupon provisioning endpoint."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator, model_validator

from backoffice.models.coupon import DiscountType, normalize_code
from backoffice.schemas.customer import CustomerInfo


class ProvisionRequest(BaseModel):
    code: str = Field(min_length=1, max_length=100)
    discount_type: DiscountType = DiscountType.PERCENTAGE
    discount_value: Decimal = Field(gt=0)
    description: str | None = Field(default=None, max_length=255)
    valid_from: datetime | None = None
    valid_until: datetime | None = None
    usage_limit: int | None = Field(default=None, ge=1)
    minimum_purchase: Decimal | None = Field(default=None, ge=0)
    once_per_customer: bool = True
    applies_to: str = "all"
    customer: CustomerInfo | None = None

    @field_validator("code")
    @classmethod
    def normalize(cls, value: str) -> str:
        code = normalize_code(value)
        if not code:
            raise ValueError("code must not be blank")
        return code

    @model_validator(mode="after")
    def check_discount(self) -> "ProvisionRequest":
        if self.discount_type == DiscountType.PERCENTAGE and self.discount_value > 100:
            raise ValueError("percentage discount must be between 0 and 100")
        if self.valid_from and self.valid_until and self.valid_until <= self.valid_from:
            raise ValueError("valid_until must be after valid_from")
        return self


class ProvisionResponse(BaseModel):
    success: bool
    status: str
    code: str
    rule_ref: str | None = None
    code_ref: str | None = None
    orphaned: bool = False
    already_existed: bool = False
    attempts: int = 0
    coupon_id: str | None = None
    orphan_log_id: str | None = None
    error: str | None = None
