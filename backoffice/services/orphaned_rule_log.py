"""Bookkeeping for price rules left without a confirmed discount code."""

import logging
import math
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy.orm import Session

from backoffice.models.orphaned_rule_log import OrphanedRuleLog
from backoffice.models.shared import utc_now
from backoffice.repositories.orphaned_rule_log_repository import OrphanedRuleLogRepository
from backoffice.services.commerce_platform import DiscountPlatformClient

if TYPE_CHECKING:
    from backoffice.services.provisioning import RetryPolicy

logger = logging.getLogger(__name__)


class OrphanedRuleLogService:
    def __init__(self, db: Session):
        self.db = db
        self.repo = OrphanedRuleLogRepository(db)

    def record(
        self,
        rule_id: str,
        code: str,
        error: str,
        details: dict[str, Any] | None = None,
        platform_response: Any | None = None,
        attempt_count: int = 1,
    ) -> OrphanedRuleLog:
        log = self.repo.create(
            external_rule_id=rule_id,
            coupon_code=code,
            error_message=error,
            error_details=details,
            platform_response=platform_response,
            attempt_count=attempt_count,
        )
        logger.error(
            "Orphaned price rule %s for code %s after %d attempts: %s",
            rule_id,
            code,
            attempt_count,
            error,
        )
        return log

    def get(self, log_id: UUID) -> OrphanedRuleLog | None:
        return self.repo.get_by_id(log_id)

    def find_by_code(self, code: str) -> list[OrphanedRuleLog]:
        """Case-insensitive substring match on the coupon code."""
        return self.repo.find_by_code(code)

    def find_by_rule_id(self, rule_id: str) -> list[OrphanedRuleLog]:
        return self.repo.find_by_rule_id(rule_id)

    def find_unresolved(self, limit: int | None = None) -> list[OrphanedRuleLog]:
        """Unresolved entries, oldest first."""
        return self.repo.get_unresolved(limit=limit)

    def find_pending(self, code: str) -> OrphanedRuleLog | None:
        """Newest unresolved entry for exactly *code*."""
        logs = self.repo.get_unresolved_for_code(code)
        return logs[0] if logs else None

    def resolve_for_code(self, code: str, rule_id: str) -> int:
        """Resolve every open entry for *code* on *rule_id*; returns how many."""
        logs = self.repo.get_unresolved_for_code(code, rule_id=rule_id)
        for log in logs:
            self.mark_resolved(log.id)  # type: ignore[arg-type]
        return len(logs)

    def mark_resolved(self, log_id: UUID) -> OrphanedRuleLog | None:
        log = self.repo.get_by_id(log_id)
        if not log:
            return None
        if not log.resolved:
            log.resolved = True  # type: ignore[assignment]
            log.resolved_at = utc_now()  # type: ignore[assignment]
            self.repo.save(log)
            logger.info("Orphaned rule log %s resolved", log_id)
        return log

    def increment_attempts(self, log_id: UUID, by: int = 1) -> OrphanedRuleLog | None:
        log = self.repo.get_by_id(log_id)
        if not log:
            return None
        log.attempt_count = log.attempt_count + by  # type: ignore[assignment]
        return self.repo.save(log)

    def stats(self) -> dict[str, Any]:
        total = self.repo.count()
        resolved = self.repo.count(resolved=True)
        last_7_days = self.repo.count(since=utc_now() - timedelta(days=7))
        return {
            "total": total,
            "resolved": resolved,
            "unresolved": total - resolved,
            "last_7_days": last_7_days,
            "resolution_rate": round(resolved / total * 100, 2) if total else 0.0,
        }

    def paginate(
        self, page: int = 1, limit: int = 20, resolved: bool | None = None
    ) -> dict[str, Any]:
        page = max(page, 1)
        logs, total = self.repo.get_page(skip=(page - 1) * limit, limit=limit, resolved=resolved)
        total_pages = math.ceil(total / limit) if limit else 0
        return {
            "logs": logs,
            "pagination": {
                "current_page": page,
                "total_pages": total_pages,
                "total_items": total,
                "items_per_page": limit,
                "has_next_page": page < total_pages,
                "has_prev_page": page > 1,
            },
        }


@dataclass
class ReconciliationReport:
    checked: int = 0
    repaired: int = 0
    still_unresolved: int = 0
    repaired_codes: list[str] = field(default_factory=list)


class ReconciliationService:
    """Re-attempts code creation on every unresolved orphaned rule."""

    def __init__(
        self,
        db: Session,
        client: DiscountPlatformClient,
        retry_policy: "RetryPolicy | None" = None,
    ):
        self.db = db
        self.client = client
        self.retry_policy = retry_policy
        self.logs = OrphanedRuleLogService(db)

    async def reconcile_unresolved(self, limit: int = 50) -> ReconciliationReport:
        from backoffice.services.provisioning import CouponProvisioner

        provisioner = CouponProvisioner(
            self.db, self.client, retry_policy=self.retry_policy, orphan_log=self.logs
        )
        report = ReconciliationReport()
        for log in self.logs.find_unresolved(limit=limit):
            report.checked += 1
            if await provisioner.repair(log):
                report.repaired += 1
                report.repaired_codes.append(str(log.coupon_code))
            else:
                report.still_unresolved += 1

        logger.info(
            "Reconciliation checked %d orphaned rules, repaired %d",
            report.checked,
            report.repaired,
        )
        return report
