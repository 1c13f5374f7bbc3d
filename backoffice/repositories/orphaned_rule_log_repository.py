"""OrphanedRuleLog repository for data access."""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from backoffice.models.orphaned_rule_log import OrphanedRuleLog


class OrphanedRuleLogRepository:
    """Repository for OrphanedRuleLog model."""

    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        external_rule_id: str,
        coupon_code: str,
        error_message: str,
        error_details: dict[str, Any] | None = None,
        platform_response: Any | None = None,
        attempt_count: int = 1,
    ) -> OrphanedRuleLog:
        log = OrphanedRuleLog(
            external_rule_id=external_rule_id,
            coupon_code=coupon_code,
            error_message=error_message,
            error_details=error_details,
            platform_response=platform_response,
            attempt_count=attempt_count,
        )
        self.db.add(log)
        self.db.commit()
        self.db.refresh(log)
        return log

    def get_by_id(self, log_id: UUID) -> OrphanedRuleLog | None:
        return self.db.query(OrphanedRuleLog).filter(OrphanedRuleLog.id == log_id).first()

    def find_by_code(self, code: str) -> list[OrphanedRuleLog]:
        return (
            self.db.query(OrphanedRuleLog)
            .filter(OrphanedRuleLog.coupon_code.ilike(f"%{code.strip()}%"))
            .order_by(OrphanedRuleLog.created_at.desc())
            .all()
        )

    def find_by_rule_id(self, rule_id: str) -> list[OrphanedRuleLog]:
        return (
            self.db.query(OrphanedRuleLog)
            .filter(OrphanedRuleLog.external_rule_id == rule_id)
            .order_by(OrphanedRuleLog.created_at.desc())
            .all()
        )

    def get_unresolved(self, limit: int | None = None) -> list[OrphanedRuleLog]:
        query = (
            self.db.query(OrphanedRuleLog)
            .filter(OrphanedRuleLog.resolved.is_(False))
            .order_by(OrphanedRuleLog.created_at.asc())
        )
        if limit is not None:
            query = query.limit(limit)
        return query.all()

    def get_unresolved_for_code(
        self, code: str, rule_id: str | None = None
    ) -> list[OrphanedRuleLog]:
        query = self.db.query(OrphanedRuleLog).filter(
            OrphanedRuleLog.coupon_code == code,
            OrphanedRuleLog.resolved.is_(False),
        )
        if rule_id is not None:
            query = query.filter(OrphanedRuleLog.external_rule_id == rule_id)
        return query.order_by(OrphanedRuleLog.created_at.desc()).all()

    def get_page(
        self,
        skip: int,
        limit: int,
        resolved: bool | None = None,
    ) -> tuple[list[OrphanedRuleLog], int]:
        query = self.db.query(OrphanedRuleLog)
        if resolved is not None:
            query = query.filter(OrphanedRuleLog.resolved.is_(resolved))
        total = query.count()
        logs = query.order_by(OrphanedRuleLog.created_at.desc()).offset(skip).limit(limit).all()
        return logs, total

    def count(self, resolved: bool | None = None, since: datetime | None = None) -> int:
        query = self.db.query(OrphanedRuleLog)
        if resolved is not None:
            query = query.filter(OrphanedRuleLog.resolved.is_(resolved))
        if since is not None:
            query = query.filter(OrphanedRuleLog.created_at >= since)
        return query.count()

    def save(self, log: OrphanedRuleLog) -> OrphanedRuleLog:
        self.db.commit()
        self.db.refresh(log)
        return log
