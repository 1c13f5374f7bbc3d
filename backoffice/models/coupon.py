"""Coupon model mirroring a discount code issued on the commerce platform."""

from enum import Enum

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import relationship

from backoffice.core.database import Base
from backoffice.models.shared import UUIDType, generate_uuid, utc_now


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"


class CouponStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    USED = "used"
    CANCELLED = "cancelled"


def normalize_code(code: str) -> str:
    """Coupon codes are matched case-insensitively and stored upper-cased."""
    return code.strip().upper()


class Coupon(Base):
    """One promotional discount grant owned by a customer.

    ``external_rule_id`` / ``external_code_id`` point at the platform's price
    rule and discount code. The platform is the source of truth for whether the
    code can be redeemed; ``external_code_id`` stays NULL while the code has not
    been confirmed on the platform.
    """

    __tablename__ = "coupons"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    customer_id = Column(
        UUIDType, ForeignKey("customers.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    code = Column(String(100), unique=True, index=True, nullable=False)
    discount_type = Column(String(20), nullable=False)
    discount_value = Column(Numeric(10, 2), nullable=False)
    description = Column(Text, nullable=True)

    valid_from = Column(DateTime(timezone=True), nullable=False)
    valid_until = Column(DateTime(timezone=True), nullable=False)

    usage_limit = Column(Integer, nullable=True)
    current_uses = Column(Integer, nullable=False, default=0)
    minimum_purchase = Column(Numeric(10, 2), nullable=True)
    applies_to = Column(String(255), nullable=True, default="all")

    external_rule_id = Column(String(64), nullable=True, index=True)
    external_code_id = Column(String(64), nullable=True)

    status = Column(String(20), nullable=False, default=CouponStatus.ACTIVE.value, index=True)

    notification_sent = Column(Boolean, nullable=False, default=False)
    notification_sent_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    customer = relationship("Customer", back_populates="coupons")
    uses = relationship(
        "CouponUse",
        back_populates="coupon",
        cascade="all, delete-orphan",
        order_by="CouponUse.used_at.desc()",
    )
