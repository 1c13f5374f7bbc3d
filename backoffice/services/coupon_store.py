"""Coupon lifecycle: creation, status derivation, validation and redemption.

The stored ``status`` column is a cache of ``derive_status``; reads that
depend on it recompute and persist it first.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backoffice.models.coupon import Coupon, CouponStatus, DiscountType, normalize_code
from backoffice.models.coupon_use import CouponUse
from backoffice.models.customer import Customer
from backoffice.models.shared import as_utc, utc_now
from backoffice.repositories.coupon_repository import CouponRepository
from backoffice.repositories.coupon_use_repository import CouponUseRepository
from backoffice.repositories.customer_repository import CustomerRepository
from backoffice.schemas.coupon import CouponSpec
from backoffice.schemas.customer import CustomerInfo
from backoffice.services.commerce_platform import DiscountPlatformClient

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


class CouponNotFoundError(Exception):
    def __init__(self, ref: Any):
        self.ref = ref
        super().__init__(f"Coupon {ref} not found")


class ValidationReason(str, Enum):
    NOT_FOUND = "not_found"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    USED = "used"
    NOT_YET_VALID = "not_yet_valid"
    USAGE_EXCEEDED = "usage_exceeded"
    NOT_VALID_EXTERNALLY = "not_valid_externally"
    MINIMUM_PURCHASE_NOT_MET = "minimum_purchase_not_met"


REASON_MESSAGES = {
    ValidationReason.NOT_FOUND: "Coupon not found",
    ValidationReason.CANCELLED: "Coupon has been cancelled",
    ValidationReason.EXPIRED: "Coupon has expired",
    ValidationReason.USED: "Coupon has already been used",
    ValidationReason.NOT_YET_VALID: "Coupon is not valid yet",
    ValidationReason.USAGE_EXCEEDED: "Coupon usage limit reached",
    ValidationReason.NOT_VALID_EXTERNALLY: "Coupon is not active on the store",
    ValidationReason.MINIMUM_PURCHASE_NOT_MET: "Order amount is below the coupon minimum",
}


@dataclass
class ValidationResult:
    valid: bool
    reason: ValidationReason | None = None
    coupon: Coupon | None = None

    @property
    def message(self) -> str | None:
        return REASON_MESSAGES[self.reason] if self.reason else None


@dataclass
class RedemptionResult:
    success: bool
    reason: ValidationReason | None = None
    coupon: Coupon | None = None
    coupon_use: CouponUse | None = None
    discount_applied: Decimal = Decimal("0")

    @property
    def message(self) -> str | None:
        return REASON_MESSAGES[self.reason] if self.reason else None


def _usage_cap_reached(coupon: Coupon) -> bool:
    return coupon.usage_limit is not None and coupon.current_uses >= coupon.usage_limit


def derive_status(coupon: Coupon, now: datetime | None = None) -> CouponStatus:
    """Status as a function of cancellation, validity window and usage."""
    now = now or utc_now()
    if coupon.status == CouponStatus.CANCELLED.value:
        return CouponStatus.CANCELLED
    valid_until = as_utc(coupon.valid_until)
    if valid_until is not None and valid_until < now:
        return CouponStatus.EXPIRED
    if coupon.status == CouponStatus.USED.value or _usage_cap_reached(coupon):
        return CouponStatus.USED
    return CouponStatus.ACTIVE


def compute_discount(
    discount_type: str, discount_value: Decimal, order_amount: Decimal | None
) -> Decimal:
    """Discount for an order: a percentage of it, or the fixed value capped at it."""
    if order_amount is None:
        return Decimal("0.00")
    amount = Decimal(order_amount)
    value = Decimal(discount_value)
    if discount_type == DiscountType.PERCENTAGE.value:
        discount = amount * value / Decimal(100)
    else:
        discount = min(value, amount)
    return discount.quantize(CENTS, rounding=ROUND_HALF_UP)


class CouponStore:
    def __init__(self, db: Session, client: DiscountPlatformClient | None = None):
        self.db = db
        self.client = client
        self.coupons = CouponRepository(db)
        self.customers = CustomerRepository(db)
        self.uses = CouponUseRepository(db)

    def create_with_customer(
        self, customer_info: CustomerInfo, spec: CouponSpec
    ) -> tuple[Customer, Coupon]:
        """Find-or-create the customer by email and insert the coupon, atomically."""
        try:
            customer = self.customers.find_or_add(
                name=customer_info.name,
                email=customer_info.email,
                phone=customer_info.phone,
            )
            coupon = Coupon(
                customer_id=customer.id,
                code=normalize_code(spec.code),
                discount_type=spec.discount_type.value,
                discount_value=spec.discount_value,
                description=spec.description,
                valid_from=spec.valid_from,
                valid_until=spec.valid_until,
                usage_limit=spec.usage_limit,
                minimum_purchase=spec.minimum_purchase,
                applies_to=spec.applies_to,
                external_rule_id=spec.external_rule_id,
                external_code_id=spec.external_code_id,
                status=CouponStatus.ACTIVE.value,
            )
            self.db.add(coupon)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Failed to store coupon %s", spec.code)
            raise

        self.db.refresh(customer)
        self.db.refresh(coupon)
        logger.info("Stored coupon %s for customer %s", coupon.code, customer.email)
        return customer, coupon

    def attach_external_ids(
        self, code: str, rule_id: str | None, code_id: str | None
    ) -> Coupon | None:
        """Point the local coupon at its platform rule and code.

        A coupon whose code is already confirmed keeps both identifiers when
        no new code id is given.
        """
        coupon = self.coupons.get_by_code(normalize_code(code))
        if not coupon:
            return None
        if code_id is None and coupon.external_code_id:
            logger.warning(
                "Keeping confirmed code %s on coupon %s (offered rule %s without a code)",
                coupon.external_code_id,
                coupon.code,
                rule_id,
            )
            return coupon
        coupon.external_rule_id = rule_id  # type: ignore[assignment]
        coupon.external_code_id = code_id  # type: ignore[assignment]
        self.db.commit()
        self.db.refresh(coupon)
        return coupon

    def get(self, coupon_id: UUID) -> Coupon:
        coupon = self.coupons.get_by_id(coupon_id)
        if not coupon:
            raise CouponNotFoundError(coupon_id)
        return coupon

    def refresh_status(self, coupon: Coupon, now: datetime | None = None) -> CouponStatus:
        """Recompute the coupon's status and persist it when it changed."""
        status = derive_status(coupon, now)
        if coupon.status != status.value:
            logger.info("Coupon %s status %s -> %s", coupon.code, coupon.status, status.value)
            coupon.status = status.value  # type: ignore[assignment]
            self.db.commit()
        return status

    def expire_stale(self, now: datetime | None = None) -> int:
        """Mark every active coupon past its validity window as expired."""
        stale = self.coupons.get_stale_active(now or utc_now())
        for coupon in stale:
            coupon.status = CouponStatus.EXPIRED.value  # type: ignore[assignment]
        if stale:
            self.db.commit()
            logger.info("Expired %d stale coupons", len(stale))
        return len(stale)

    async def validate(self, code: str) -> ValidationResult:
        """Check a code locally, then confirm it on the commerce platform."""
        coupon = self.coupons.get_by_code(normalize_code(code))
        if not coupon:
            return ValidationResult(valid=False, reason=ValidationReason.NOT_FOUND)

        now = utc_now()
        status = self.refresh_status(coupon, now)

        if status == CouponStatus.CANCELLED:
            return ValidationResult(False, ValidationReason.CANCELLED, coupon)
        if status == CouponStatus.EXPIRED:
            return ValidationResult(False, ValidationReason.EXPIRED, coupon)
        if status == CouponStatus.USED:
            reason = (
                ValidationReason.USAGE_EXCEEDED
                if _usage_cap_reached(coupon)
                else ValidationReason.USED
            )
            return ValidationResult(False, reason, coupon)

        valid_from = as_utc(coupon.valid_from)
        if valid_from is not None and valid_from > now:
            return ValidationResult(False, ValidationReason.NOT_YET_VALID, coupon)

        if not coupon.external_code_id:
            return ValidationResult(False, ValidationReason.NOT_VALID_EXTERNALLY, coupon)

        if self.client is not None:
            found = await self.client.lookup_code(coupon.code)
            if found is None or (
                coupon.external_rule_id and found.rule_id != coupon.external_rule_id
            ):
                logger.warning("Coupon %s is active locally but not on the platform", coupon.code)
                return ValidationResult(False, ValidationReason.NOT_VALID_EXTERNALLY, coupon)

        return ValidationResult(valid=True, coupon=coupon)

    async def redeem(
        self,
        code: str,
        customer_id: UUID,
        order_id: str | None = None,
        order_amount: Decimal | None = None,
    ) -> RedemptionResult:
        """Apply the coupon to an order.

        The usage counter is bumped by a guarded UPDATE and the CouponUse row is
        written in the same commit, so concurrent redemptions can never push a
        coupon past its usage limit.
        """
        validation = await self.validate(code)
        if not validation.valid:
            return RedemptionResult(False, validation.reason, validation.coupon)

        coupon = validation.coupon
        assert coupon is not None

        if (
            coupon.minimum_purchase is not None
            and order_amount is not None
            and Decimal(order_amount) < Decimal(coupon.minimum_purchase)
        ):
            return RedemptionResult(False, ValidationReason.MINIMUM_PURCHASE_NOT_MET, coupon)

        discount = compute_discount(
            str(coupon.discount_type), Decimal(coupon.discount_value), order_amount
        )

        try:
            if not self.coupons.increment_uses(coupon.id):  # type: ignore[arg-type]
                self.db.rollback()
                logger.info("Redemption of %s rejected: usage limit reached", coupon.code)
                return RedemptionResult(False, ValidationReason.USAGE_EXCEEDED, coupon)

            use = self.uses.add(
                coupon_id=coupon.id,  # type: ignore[arg-type]
                customer_id=customer_id,
                discount_applied=discount,
                order_id=order_id,
                order_amount=order_amount,
            )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

        self.db.refresh(coupon)
        self.db.refresh(use)
        logger.info(
            "Redeemed %s for customer %s (discount %s, uses %s)",
            coupon.code,
            customer_id,
            discount,
            coupon.current_uses,
        )
        return RedemptionResult(
            success=True, coupon=coupon, coupon_use=use, discount_applied=discount
        )

    def set_status(self, coupon_id: UUID, status: CouponStatus) -> Coupon:
        coupon = self.get(coupon_id)
        coupon.status = status.value  # type: ignore[assignment]
        self.db.commit()
        self.db.refresh(coupon)
        logger.info("Coupon %s status set to %s", coupon.code, status.value)
        return coupon

    async def delete(self, coupon_id: UUID) -> bool:
        """Delete the coupon and its uses.

        The platform rule is deleted first on a best-effort basis; returns
        whether that succeeded. The local delete happens regardless.
        """
        coupon = self.get(coupon_id)
        external_deleted = False
        if coupon.external_rule_id and self.client is not None:
            external_deleted = await self.client.delete_rule(str(coupon.external_rule_id))
            if not external_deleted:
                logger.warning(
                    "Price rule %s for coupon %s was not deleted on the platform",
                    coupon.external_rule_id,
                    coupon.code,
                )
        self.coupons.delete(coupon)
        return external_deleted

    def list_coupons(
        self,
        email: str | None = None,
        customer_id: UUID | None = None,
        status: CouponStatus | None = None,
        skip: int = 0,
        limit: int = 100,
        order_by: str | None = None,
    ) -> tuple[list[Coupon], int]:
        self.expire_stale()
        filters: dict[str, Any] = {"email": email, "customer_id": customer_id, "status": status}
        coupons = self.coupons.get_all(skip=skip, limit=limit, order_by=order_by, **filters)
        return coupons, self.coupons.count(**filters)

    def search(self, query: str, limit: int = 50) -> list[Coupon]:
        return self.coupons.search(query, limit=limit)

    def history(self, customer_id: UUID) -> list[CouponUse]:
        return self.uses.get_by_customer(customer_id)

    def stats(self) -> dict[str, Any]:
        self.expire_stale()
        counts = self.coupons.status_counts()
        return {
            "total_coupons": sum(counts.values()),
            "active_coupons": counts.get(CouponStatus.ACTIVE.value, 0),
            "used_coupons": counts.get(CouponStatus.USED.value, 0),
            "expired_coupons": counts.get(CouponStatus.EXPIRED.value, 0),
            "cancelled_coupons": counts.get(CouponStatus.CANCELLED.value, 0),
            "total_discount_given": self.coupons.total_discount_given(),
        }
