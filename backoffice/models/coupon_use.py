"""CouponUse model: one immutable redemption event."""

from sqlalchemy import Column, DateTime, ForeignKey, Numeric, String, func
from sqlalchemy.orm import relationship

from backoffice.core.database import Base
from backoffice.models.shared import UUIDType, generate_uuid, utc_now


class CouponUse(Base):
    __tablename__ = "coupon_uses"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    coupon_id = Column(
        UUIDType, ForeignKey("coupons.id", ondelete="CASCADE"), nullable=False, index=True
    )
    customer_id = Column(
        UUIDType, ForeignKey("customers.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    order_id = Column(String(255), nullable=True)
    order_amount = Column(Numeric(10, 2), nullable=True)
    discount_applied = Column(Numeric(10, 2), nullable=False, default=0)
    used_at = Column(
        DateTime(timezone=True), default=utc_now, server_default=func.now(), nullable=False
    )

    coupon = relationship("Coupon", back_populates="uses")
