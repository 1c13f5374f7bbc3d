from sqlalchemy import Column, DateTime, String, func
from sqlalchemy.orm import relationship

from backoffice.core.database import Base
from backoffice.models.shared import UUIDType, generate_uuid


class Customer(Base):
    """A store customer that owns coupons.

    Customers are created on demand when a coupon is provisioned for an email
    address that is not on file yet.
    """

    __tablename__ = "customers"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    phone = Column(String(50), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    coupons = relationship("Coupon", back_populates="customer", order_by="Coupon.created_at.desc()")
