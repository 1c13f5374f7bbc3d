"""CouponUse repository for data access."""

from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from backoffice.models.coupon_use import CouponUse


class CouponUseRepository:
    """Repository for the append-only CouponUse ledger."""

    def __init__(self, db: Session):
        self.db = db

    def add(
        self,
        coupon_id: UUID,
        customer_id: UUID,
        discount_applied: Decimal,
        order_id: str | None = None,
        order_amount: Decimal | None = None,
    ) -> CouponUse:
        """Stage a redemption record; the caller commits."""
        use = CouponUse(
            coupon_id=coupon_id,
            customer_id=customer_id,
            order_id=order_id,
            order_amount=order_amount,
            discount_applied=discount_applied,
        )
        self.db.add(use)
        self.db.flush()
        return use

    def get_by_customer(self, customer_id: UUID) -> list[CouponUse]:
        return (
            self.db.query(CouponUse)
            .filter(CouponUse.customer_id == customer_id)
            .order_by(CouponUse.used_at.desc())
            .all()
        )
