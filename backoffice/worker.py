import logging
from typing import Any
from uuid import UUID

from arq import cron

from backoffice.core.database import SessionLocal
from backoffice.services.commerce_platform import get_discount_client
from backoffice.services.coupon_store import CouponStore
from backoffice.services.notifications import CouponNotifier
from backoffice.services.orphaned_rule_log import ReconciliationService
from backoffice.services.provisioning import RetryPolicy
from backoffice.tasks import redis_settings

logger = logging.getLogger(__name__)


async def reconcile_orphaned_rules_task(ctx: dict[str, Any]) -> int:
    """Re-attempt code creation on unresolved orphaned rules.

    Runs every 15 minutes.
    """
    db = SessionLocal()
    try:
        service = ReconciliationService(db, get_discount_client(), RetryPolicy.from_settings())
        report = await service.reconcile_unresolved()
        if report.checked:
            logger.info(
                "Reconciled %d/%d orphaned rules", report.repaired, report.checked
            )
        return report.repaired
    finally:
        db.close()


async def expire_stale_coupons_task(ctx: dict[str, Any]) -> int:
    """Persist the expired status of coupons past their validity window. Runs hourly."""
    db = SessionLocal()
    try:
        return CouponStore(db).expire_stale()
    finally:
        db.close()


async def send_coupon_notification_task(ctx: dict[str, Any], coupon_id: str) -> bool:
    db = SessionLocal()
    try:
        return await CouponNotifier(db).send_coupon_created(UUID(coupon_id))
    finally:
        db.close()


class WorkerSettings:
    functions = [
        reconcile_orphaned_rules_task,
        expire_stale_coupons_task,
        send_coupon_notification_task,
    ]
    cron_jobs = [
        cron(reconcile_orphaned_rules_task, minute={0, 15, 30, 45}),  # every 15 minutes
        cron(expire_stale_coupons_task, minute={5}),  # hourly
    ]
    redis_settings = redis_settings
