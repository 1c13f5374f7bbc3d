"""Tests for the coupon lifecycle store."""

import asyncio
from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy.exc import SQLAlchemyError

from backoffice.models.coupon import Coupon, CouponStatus, DiscountType
from backoffice.models.coupon_use import CouponUse
from backoffice.models.customer import Customer
from backoffice.models.shared import utc_now
from backoffice.schemas.coupon import CouponSpec
from backoffice.schemas.customer import CustomerInfo
from backoffice.services.commerce_platform import ExternalTransientError
from backoffice.services.coupon_store import (
    CouponNotFoundError,
    CouponStore,
    ValidationReason,
    compute_discount,
    derive_status,
)


@pytest.fixture
def store(db_session, platform):
    return CouponStore(db_session, platform)


def make_spec(code: str = "SAVE20", **overrides) -> CouponSpec:
    now = utc_now()
    values = {
        "code": code,
        "discount_type": DiscountType.PERCENTAGE,
        "discount_value": Decimal("20"),
        "valid_from": now,
        "valid_until": now + timedelta(days=30),
        "usage_limit": 1,
        "external_rule_id": "900",
        "external_code_id": "901",
    }
    values.update(overrides)
    return CouponSpec(**values)


class TestComputeDiscount:
    def test_percentage(self):
        assert compute_discount("percentage", Decimal("20"), Decimal("100")) == Decimal("20.00")

    def test_percentage_rounds_half_up(self):
        assert compute_discount("percentage", Decimal("15"), Decimal("10.10")) == Decimal("1.52")

    def test_fixed_amount_capped_at_order(self):
        assert compute_discount("fixed_amount", Decimal("50"), Decimal("30")) == Decimal("30.00")
        assert compute_discount("fixed_amount", Decimal("10"), Decimal("30")) == Decimal("10.00")

    def test_no_order_amount(self):
        assert compute_discount("percentage", Decimal("20"), None) == Decimal("0.00")


class TestDeriveStatus:
    def test_active(self, make_coupon):
        assert derive_status(make_coupon()) == CouponStatus.ACTIVE

    def test_past_window_is_expired_regardless_of_stored_status(self, make_coupon):
        coupon = make_coupon(
            valid_until=utc_now() - timedelta(minutes=1), status=CouponStatus.USED.value
        )
        assert derive_status(coupon) == CouponStatus.EXPIRED

    def test_cancelled_wins(self, make_coupon):
        coupon = make_coupon(
            valid_until=utc_now() - timedelta(days=1), status=CouponStatus.CANCELLED.value
        )
        assert derive_status(coupon) == CouponStatus.CANCELLED

    def test_usage_cap_reached_is_used(self, make_coupon):
        coupon = make_coupon(usage_limit=2, current_uses=2)
        assert derive_status(coupon) == CouponStatus.USED

    def test_unlimited_usage_stays_active(self, make_coupon):
        coupon = make_coupon(usage_limit=None, current_uses=50)
        assert derive_status(coupon) == CouponStatus.ACTIVE


class TestCreateWithCustomer:
    def test_creates_customer_and_coupon(self, store, db_session):
        customer, coupon = store.create_with_customer(
            CustomerInfo(name="Ana", email="ana@example.com"), make_spec(code="save20")
        )

        assert customer.email == "ana@example.com"
        assert coupon.customer_id == customer.id
        assert coupon.code == "SAVE20"
        assert coupon.status == CouponStatus.ACTIVE.value
        assert coupon.current_uses == 0

    def test_reuses_existing_customer(self, store, db_session):
        first, _ = store.create_with_customer(
            CustomerInfo(name="Ana", email="ana@example.com"), make_spec("ONE")
        )
        second, _ = store.create_with_customer(
            CustomerInfo(name="Ana B", email="ANA@example.com"), make_spec("TWO")
        )

        assert first.id == second.id
        assert db_session.query(Customer).count() == 1
        assert len(second.coupons) == 2

    def test_failure_rolls_back_both(self, store, db_session):
        store.create_with_customer(
            CustomerInfo(name="Ana", email="ana@example.com"), make_spec("SAVE20")
        )

        with pytest.raises(SQLAlchemyError):
            store.create_with_customer(
                CustomerInfo(name="Bo", email="bo@example.com"), make_spec("SAVE20")
            )

        assert db_session.query(Customer).filter(Customer.email == "bo@example.com").count() == 0
        assert db_session.query(Coupon).count() == 1


class TestValidate:
    @pytest.mark.asyncio
    async def test_valid_coupon(self, store, platform, make_coupon):
        make_coupon()
        platform.seed("SAVE20")

        result = await store.validate("save20")

        assert result.valid is True
        assert result.reason is None
        assert result.coupon.code == "SAVE20"

    @pytest.mark.asyncio
    async def test_not_found(self, store):
        result = await store.validate("NOPE")
        assert result.valid is False
        assert result.reason == ValidationReason.NOT_FOUND
        assert result.message == "Coupon not found"

    @pytest.mark.asyncio
    async def test_expired_is_persisted(self, store, platform, make_coupon, db_session):
        coupon = make_coupon(valid_until=utc_now() - timedelta(hours=1))
        platform.seed("SAVE20")

        result = await store.validate("SAVE20")

        assert result.reason == ValidationReason.EXPIRED
        db_session.refresh(coupon)
        assert coupon.status == CouponStatus.EXPIRED.value
        assert platform.count("lookup_code") == 0

    @pytest.mark.asyncio
    async def test_cancelled(self, store, make_coupon):
        make_coupon(status=CouponStatus.CANCELLED.value)
        result = await store.validate("SAVE20")
        assert result.reason == ValidationReason.CANCELLED

    @pytest.mark.asyncio
    async def test_manually_used(self, store, make_coupon):
        make_coupon(status=CouponStatus.USED.value, current_uses=0)
        result = await store.validate("SAVE20")
        assert result.reason == ValidationReason.USED

    @pytest.mark.asyncio
    async def test_usage_exceeded(self, store, make_coupon, db_session):
        coupon = make_coupon(usage_limit=1, current_uses=1)

        result = await store.validate("SAVE20")

        assert result.reason == ValidationReason.USAGE_EXCEEDED
        db_session.refresh(coupon)
        assert coupon.status == CouponStatus.USED.value

    @pytest.mark.asyncio
    async def test_not_yet_valid(self, store, make_coupon):
        make_coupon(valid_from=utc_now() + timedelta(days=2))
        result = await store.validate("SAVE20")
        assert result.reason == ValidationReason.NOT_YET_VALID

    @pytest.mark.asyncio
    async def test_pending_activation_is_not_valid_externally(self, store, platform, make_coupon):
        make_coupon(external_code_id=None)

        result = await store.validate("SAVE20")

        assert result.reason == ValidationReason.NOT_VALID_EXTERNALLY
        assert platform.count("lookup_code") == 0

    @pytest.mark.asyncio
    async def test_missing_on_platform(self, store, platform, make_coupon):
        make_coupon()

        result = await store.validate("SAVE20")

        assert result.reason == ValidationReason.NOT_VALID_EXTERNALLY
        assert platform.count("lookup_code") == 1

    @pytest.mark.asyncio
    async def test_code_on_a_different_rule(self, store, platform, make_coupon):
        make_coupon(external_rule_id="900")
        platform.seed("SAVE20", rule_id="123", code_id="456")

        result = await store.validate("SAVE20")

        assert result.reason == ValidationReason.NOT_VALID_EXTERNALLY

    @pytest.mark.asyncio
    async def test_platform_error_propagates(self, store, platform, make_coupon):
        make_coupon()
        platform.fail("lookup_code", ExternalTransientError("timeout"))

        with pytest.raises(ExternalTransientError):
            await store.validate("SAVE20")


class TestRedeem:
    @pytest.mark.asyncio
    async def test_save20_scenario(self, store, platform, db_session):
        customer, coupon = store.create_with_customer(
            CustomerInfo(name="Ana", email="ana@example.com"), make_spec("SAVE20")
        )
        platform.seed("SAVE20")

        validation = await store.validate("SAVE20")
        assert validation.valid is True

        first = await store.redeem("SAVE20", customer.id, order_amount=Decimal("100"))
        assert first.success is True
        assert first.discount_applied == Decimal("20.00")
        assert first.coupon.status == CouponStatus.USED.value
        assert first.coupon.current_uses == 1

        second = await store.redeem("SAVE20", customer.id, order_amount=Decimal("100"))
        assert second.success is False
        assert second.reason == ValidationReason.USAGE_EXCEEDED

        assert db_session.query(CouponUse).count() == 1

    @pytest.mark.asyncio
    async def test_records_use(self, store, platform, make_coupon, db_session):
        coupon = make_coupon(
            discount_type=DiscountType.FIXED_AMOUNT.value,
            discount_value=Decimal("15"),
            usage_limit=None,
        )
        platform.seed("SAVE20")

        result = await store.redeem(
            "SAVE20", coupon.customer_id, order_id="ORD-1", order_amount=Decimal("40")
        )

        use = db_session.query(CouponUse).one()
        assert use.id == result.coupon_use.id
        assert use.order_id == "ORD-1"
        assert use.discount_applied == Decimal("15.00")
        assert use.customer_id == coupon.customer_id
        assert result.coupon.status == CouponStatus.ACTIVE.value

    @pytest.mark.asyncio
    async def test_minimum_purchase_not_met(self, store, platform, make_coupon, db_session):
        coupon = make_coupon(minimum_purchase=Decimal("50"))
        platform.seed("SAVE20")

        result = await store.redeem("SAVE20", coupon.customer_id, order_amount=Decimal("49.99"))

        assert result.success is False
        assert result.reason == ValidationReason.MINIMUM_PURCHASE_NOT_MET
        assert db_session.query(CouponUse).count() == 0

    @pytest.mark.asyncio
    async def test_invalid_coupon_is_not_redeemed(self, store, make_coupon, db_session):
        coupon = make_coupon(valid_until=utc_now() - timedelta(days=1))

        result = await store.redeem("SAVE20", coupon.customer_id)

        assert result.reason == ValidationReason.EXPIRED
        assert db_session.query(CouponUse).count() == 0

    @pytest.mark.asyncio
    async def test_concurrent_redemptions_respect_limit(
        self, store, platform, make_coupon, db_session
    ):
        coupon = make_coupon(usage_limit=1)
        platform.seed("SAVE20")

        results = await asyncio.gather(
            *(
                store.redeem("SAVE20", coupon.customer_id, order_amount=Decimal("100"))
                for _ in range(5)
            )
        )

        successes = [r for r in results if r.success]
        rejections = [r for r in results if not r.success]
        assert len(successes) == 1
        assert len(rejections) == 4
        assert all(r.reason == ValidationReason.USAGE_EXCEEDED for r in rejections)
        assert db_session.query(CouponUse).count() == 1
        db_session.refresh(coupon)
        assert coupon.current_uses == 1
        assert coupon.status == CouponStatus.USED.value

    @pytest.mark.asyncio
    async def test_multi_use_coupon_reaches_cap(self, store, platform, make_coupon):
        coupon = make_coupon(usage_limit=2)
        platform.seed("SAVE20")

        first = await store.redeem("SAVE20", coupon.customer_id)
        assert first.coupon.status == CouponStatus.ACTIVE.value

        second = await store.redeem("SAVE20", coupon.customer_id)

        assert second.coupon.status == CouponStatus.USED.value
        assert second.coupon.current_uses == 2


    def test_counter_refuses_coupon_past_its_window(self, store, make_coupon, db_session):
        coupon = make_coupon(valid_until=utc_now() - timedelta(minutes=1))

        assert store.coupons.increment_uses(coupon.id) is False

        db_session.rollback()
        db_session.refresh(coupon)
        assert coupon.current_uses == 0
        assert coupon.status == CouponStatus.ACTIVE.value

    def test_counter_accepts_coupon_inside_its_window(self, store, make_coupon, db_session):
        coupon = make_coupon(usage_limit=None)

        assert store.coupons.increment_uses(coupon.id) is True

        db_session.commit()
        db_session.refresh(coupon)
        assert coupon.current_uses == 1


class TestAttachExternalIds:
    def test_updates_both_identifiers(self, store, make_coupon):
        make_coupon(external_rule_id=None, external_code_id=None)

        coupon = store.attach_external_ids("save20", "1001", "1002")

        assert coupon.external_rule_id == "1001"
        assert coupon.external_code_id == "1002"

    def test_keeps_confirmed_code_when_offered_none(self, store, make_coupon):
        make_coupon()

        coupon = store.attach_external_ids("SAVE20", "1005", None)

        assert coupon.external_rule_id == "900"
        assert coupon.external_code_id == "901"

    def test_pending_coupon_takes_rule_without_code(self, store, make_coupon):
        make_coupon(external_rule_id=None, external_code_id=None)

        coupon = store.attach_external_ids("SAVE20", "1001", None)

        assert coupon.external_rule_id == "1001"
        assert coupon.external_code_id is None

    def test_missing_coupon(self, store):
        assert store.attach_external_ids("NOPE", "1", "2") is None


class TestAdministration:
    def test_set_status(self, store, make_coupon):
        coupon = make_coupon()
        updated = store.set_status(coupon.id, CouponStatus.CANCELLED)
        assert updated.status == CouponStatus.CANCELLED.value

    def test_set_status_missing(self, store):
        with pytest.raises(CouponNotFoundError):
            store.set_status("00000000-0000-0000-0000-000000000000", CouponStatus.CANCELLED)

    @pytest.mark.asyncio
    async def test_delete_removes_rule_and_row(self, store, platform, make_coupon, db_session):
        coupon = make_coupon()
        platform.seed("SAVE20")

        assert await store.delete(coupon.id) is True

        assert ("delete_rule", "900") in platform.calls
        assert db_session.query(Coupon).count() == 0

    @pytest.mark.asyncio
    async def test_delete_continues_when_platform_fails(
        self, store, platform, make_coupon, db_session
    ):
        coupon = make_coupon()
        platform.delete_succeeds = False

        assert await store.delete(coupon.id) is False
        assert db_session.query(Coupon).count() == 0

    @pytest.mark.asyncio
    async def test_delete_cascades_uses(self, store, platform, make_coupon, db_session):
        coupon = make_coupon(usage_limit=None)
        platform.seed("SAVE20")
        await store.redeem("SAVE20", coupon.customer_id)

        await store.delete(coupon.id)

        assert db_session.query(CouponUse).count() == 0

    @pytest.mark.asyncio
    async def test_delete_missing(self, store):
        with pytest.raises(CouponNotFoundError):
            await store.delete("00000000-0000-0000-0000-000000000000")


class TestQueries:
    def test_list_by_email_expires_stale(self, store, make_coupon):
        make_coupon("OLD", valid_until=utc_now() - timedelta(days=1))
        make_coupon("NEW")
        make_coupon("OTHER", email="bo@example.com")

        coupons, total = store.list_coupons(email="ana@example.com")

        assert total == 2
        assert {c.code: c.status for c in coupons} == {
            "OLD": CouponStatus.EXPIRED.value,
            "NEW": CouponStatus.ACTIVE.value,
        }

    def test_list_by_status(self, store, make_coupon):
        make_coupon("A")
        make_coupon("B", status=CouponStatus.CANCELLED.value)

        coupons, total = store.list_coupons(status=CouponStatus.CANCELLED)

        assert total == 1
        assert coupons[0].code == "B"

    def test_expire_stale_counts(self, store, make_coupon):
        make_coupon("OLD1", valid_until=utc_now() - timedelta(days=1))
        make_coupon("OLD2", valid_until=utc_now() - timedelta(days=2))
        make_coupon("NEW")

        assert store.expire_stale() == 2
        assert store.expire_stale() == 0

    def test_search(self, store, make_coupon):
        make_coupon("SUMMER10", description="Summer sale")
        make_coupon("WINTER", email="bo@example.com")

        assert [c.code for c in store.search("summer")] == ["SUMMER10"]
        assert [c.code for c in store.search("bo@")] == ["WINTER"]

    @pytest.mark.asyncio
    async def test_history(self, store, platform, make_coupon):
        coupon = make_coupon(usage_limit=None)
        platform.seed("SAVE20")
        await store.redeem("SAVE20", coupon.customer_id, order_amount=Decimal("10"))

        history = store.history(coupon.customer_id)

        assert len(history) == 1
        assert history[0].coupon_id == coupon.id

    @pytest.mark.asyncio
    async def test_stats(self, store, platform, make_coupon):
        coupon = make_coupon("SAVE20")
        make_coupon("OLD", valid_until=utc_now() - timedelta(days=1))
        make_coupon("GONE", status=CouponStatus.CANCELLED.value)
        platform.seed("SAVE20")
        await store.redeem("SAVE20", coupon.customer_id, order_amount=Decimal("50"))

        stats = store.stats()

        assert stats == {
            "total_coupons": 3,
            "active_coupons": 0,
            "used_coupons": 1,
            "expired_coupons": 1,
            "cancelled_coupons": 1,
            "total_discount_given": Decimal("10.00"),
        }

    def test_create_failure_is_logged(self, store, make_coupon):
        make_coupon("SAVE20")
        with (
            patch("backoffice.services.coupon_store.logger") as mock_logger,
            pytest.raises(SQLAlchemyError),
        ):
            store.create_with_customer(
                CustomerInfo(name="Ana", email="ana@example.com"), make_spec("SAVE20")
            )
        mock_logger.exception.assert_called_once()
