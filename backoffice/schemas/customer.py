
from pydantic import BaseModel, EmailStr, Field, field_validator


class CustomerInfo(BaseModel):
    """Customer details supplied alongside a coupon; matched by email."""

    name: str = Field(default="Guest", min_length=1, max_length=255)
    email: EmailStr
    phone: str | None = Field(default=None, max_length=50)

    @field_validator("email")
    @classmethod
    def lower_email(cls, value: str) -> str:
        return value.lower()

