"""Coupon repository for data access."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import case, func, or_, update
from sqlalchemy.orm import Query, Session

from backoffice.core.sorting import apply_order_by
from backoffice.models.coupon import Coupon, CouponStatus
from backoffice.models.coupon_use import CouponUse
from backoffice.models.customer import Customer
from backoffice.models.shared import utc_now


class CouponRepository:
    """Repository for Coupon model."""

    def __init__(self, db: Session):
        self.db = db

    def _filtered(
        self,
        email: str | None = None,
        customer_id: UUID | None = None,
        status: CouponStatus | None = None,
    ) -> Query:  # type: ignore[type-arg]
        query = self.db.query(Coupon)

        if email:
            query = query.join(Customer).filter(Customer.email == email.strip().lower())
        if customer_id:
            query = query.filter(Coupon.customer_id == customer_id)
        if status:
            query = query.filter(Coupon.status == status.value)

        return query

    def get_all(
        self,
        skip: int = 0,
        limit: int = 100,
        email: str | None = None,
        customer_id: UUID | None = None,
        status: CouponStatus | None = None,
        order_by: str | None = None,
    ) -> list[Coupon]:
        """Get coupons with optional filters, newest first by default."""
        query = self._filtered(email=email, customer_id=customer_id, status=status)
        query = apply_order_by(query, Coupon, order_by)
        return query.offset(skip).limit(limit).all()

    def count(
        self,
        email: str | None = None,
        customer_id: UUID | None = None,
        status: CouponStatus | None = None,
    ) -> int:
        return self._filtered(email=email, customer_id=customer_id, status=status).count()

    def get_by_id(self, coupon_id: UUID) -> Coupon | None:
        return self.db.query(Coupon).filter(Coupon.id == coupon_id).first()

    def get_by_code(self, code: str) -> Coupon | None:
        return self.db.query(Coupon).filter(Coupon.code == code).first()

    def search(self, term: str, limit: int = 50) -> list[Coupon]:
        """Match *term* against the code, description and owner's email/name."""
        pattern = f"%{term.strip()}%"
        return (
            self.db.query(Coupon)
            .join(Customer)
            .filter(
                or_(
                    Coupon.code.ilike(pattern),
                    Coupon.description.ilike(pattern),
                    Customer.email.ilike(pattern),
                    Customer.name.ilike(pattern),
                )
            )
            .order_by(Coupon.created_at.desc())
            .limit(limit)
            .all()
        )

    def get_stale_active(self, now: datetime) -> list[Coupon]:
        return (
            self.db.query(Coupon)
            .filter(Coupon.status == CouponStatus.ACTIVE.value, Coupon.valid_until < now)
            .all()
        )

    def increment_uses(self, coupon_id: UUID, now: datetime | None = None) -> bool:
        """Atomically count one redemption against the coupon.

        The row is only touched while it is active, inside its validity window
        and under its usage cap; reaching the cap flips the status to ``used`` in the same statement.
        Returns False when no row qualified. Not committed.
        """
        reaches_cap = Coupon.usage_limit.isnot(None) & (
            Coupon.current_uses + 1 >= Coupon.usage_limit
        )
        stmt = (
            update(Coupon)
            .where(
                Coupon.id == coupon_id,
                Coupon.status == CouponStatus.ACTIVE.value,
                Coupon.valid_until >= (now or utc_now()),
                or_(Coupon.usage_limit.is_(None), Coupon.current_uses < Coupon.usage_limit),
            )
            .values(
                current_uses=Coupon.current_uses + 1,
                status=case(
                    (reaches_cap, CouponStatus.USED.value),
                    else_=Coupon.status,
                ),
            )
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        return bool(result.rowcount)

    def status_counts(self) -> dict[str, int]:
        rows = self.db.query(Coupon.status, func.count(Coupon.id)).group_by(Coupon.status).all()
        return {status: count for status, count in rows}

    def total_discount_given(self) -> Decimal:
        total = self.db.query(func.sum(CouponUse.discount_applied)).scalar()
        return Decimal(total or 0)

    def delete(self, coupon: Coupon) -> None:
        self.db.delete(coupon)
        self.db.commit()
