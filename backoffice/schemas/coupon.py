"""Coupon, redemption and statistics schemas."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from backoffice.models.coupon import CouponStatus, DiscountType


class CouponSpec(BaseModel):
    """Local record of a coupon that has been (or is being) provisioned."""

    code: str = Field(min_length=1, max_length=100)
    discount_type: DiscountType
    discount_value: Decimal = Field(gt=0)
    description: str | None = None
    valid_from: datetime
    valid_until: datetime
    usage_limit: int | None = Field(default=None, ge=1)
    minimum_purchase: Decimal | None = Field(default=None, ge=0)
    applies_to: str | None = "all"
    external_rule_id: str | None = None
    external_code_id: str | None = None


class CouponResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    customer_id: UUID
    code: str
    discount_type: str
    discount_value: Decimal
    description: str | None = None
    valid_from: datetime
    valid_until: datetime
    usage_limit: int | None = None
    current_uses: int
    minimum_purchase: Decimal | None = None
    applies_to: str | None = None
    external_rule_id: str | None = None
    external_code_id: str | None = None
    status: str
    notification_sent: bool
    notification_sent_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class CouponStatusUpdate(BaseModel):
    status: CouponStatus


class CouponValidationResponse(BaseModel):
    valid: bool
    reason: str | None = None
    message: str | None = None
    coupon: CouponResponse | None = None


class RedeemCouponRequest(BaseModel):
    code: str = Field(min_length=1, max_length=100)
    customer_id: UUID
    order_id: str | None = Field(default=None, max_length=255)
    order_amount: Decimal | None = Field(default=None, ge=0)


class RedeemCouponResponse(BaseModel):
    success: bool
    code: str
    discount_applied: Decimal
    current_uses: int
    status: str
    coupon_use_id: UUID


class CouponUseResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    coupon_id: UUID
    customer_id: UUID
    order_id: str | None = None
    order_amount: Decimal | None = None
    discount_applied: Decimal
    used_at: datetime


class CouponStatsResponse(BaseModel):
    total_coupons: int
    active_coupons: int
    used_coupons: int
    expired_coupons: int
    cancelled_coupons: int
    total_discount_given: Decimal
