from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class OrphanedRuleLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    external_rule_id: str
    coupon_code: str
    error_message: str
    error_details: dict[str, Any] | None = None
    platform_response: Any | None = None
    attempt_count: int
    resolved: bool
    resolved_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class OrphanedRuleLogAction(BaseModel):
    action: Literal["resolve"]


class OrphanedRuleLogStats(BaseModel):
    total: int
    resolved: int
    unresolved: int
    last_7_days: int
    resolution_rate: float


class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total_items: int
    items_per_page: int
    has_next_page: bool
    has_prev_page: bool


class OrphanedRuleLogPage(BaseModel):
    logs: list[OrphanedRuleLogResponse]
    pagination: Pagination


class ReconciliationReportResponse(BaseModel):
    checked: int
    repaired: int
    still_unresolved: int
    repaired_codes: list[str]
