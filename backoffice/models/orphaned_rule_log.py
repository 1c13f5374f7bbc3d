"""OrphanedRuleLog model: a price rule whose discount code never attached."""

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String, Text, func

from backoffice.core.database import Base
from backoffice.models.shared import UUIDType, generate_uuid, utc_now


class OrphanedRuleLog(Base):
    """Compensation record written when provisioning ends with a bare rule.

    Rows are immutable apart from ``attempt_count`` (bumped by repair attempts)
    and the ``resolved`` / ``resolved_at`` pair.
    """

    __tablename__ = "orphaned_rule_logs"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    external_rule_id = Column(String(64), nullable=False, index=True)
    coupon_code = Column(String(100), nullable=False, index=True)
    error_message = Column(Text, nullable=False)
    error_details = Column(JSON, nullable=True)
    platform_response = Column(JSON, nullable=True)
    attempt_count = Column(Integer, nullable=False, default=1)
    resolved = Column(Boolean, nullable=False, default=False, index=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
