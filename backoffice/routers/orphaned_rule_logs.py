from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from backoffice.core.auth import StaffPrincipal, get_current_staff, require_admin
from backoffice.core.database import get_db
from backoffice.models.orphaned_rule_log import OrphanedRuleLog
from backoffice.schemas.orphaned_rule_log import (
    OrphanedRuleLogAction,
    OrphanedRuleLogPage,
    OrphanedRuleLogResponse,
    OrphanedRuleLogStats,
    Pagination,
    ReconciliationReportResponse,
)
from backoffice.services.commerce_platform import DiscountPlatformClient, get_discount_client
from backoffice.services.orphaned_rule_log import OrphanedRuleLogService, ReconciliationService
from backoffice.services.provisioning import RetryPolicy, get_retry_policy

router = APIRouter()


def _page(logs: list[OrphanedRuleLog], pagination: dict[str, Any]) -> OrphanedRuleLogPage:
    return OrphanedRuleLogPage(
        logs=[OrphanedRuleLogResponse.model_validate(log) for log in logs],
        pagination=Pagination(**pagination),
    )


@router.get(
    "/",
    response_model=OrphanedRuleLogPage,
    summary="List orphaned rule logs",
    responses={401: {"description": "Unauthorized"}},
)
async def list_orphaned_rule_logs(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    resolved: bool | None = Query(default=None),
    coupon_code: str | None = Query(default=None),
    rule_id: str | None = Query(default=None),
    db: Session = Depends(get_db),
    staff: StaffPrincipal = Depends(get_current_staff),
) -> OrphanedRuleLogPage:
    """Paginated logs, or every log matching ``coupon_code`` / ``rule_id``."""
    service = OrphanedRuleLogService(db)

    if coupon_code or rule_id:
        if coupon_code:
            logs = service.find_by_code(coupon_code)
        else:
            logs = service.find_by_rule_id(str(rule_id))
        if resolved is not None:
            logs = [log for log in logs if log.resolved == resolved]
        return _page(
            logs,
            {
                "current_page": 1,
                "total_pages": 1 if logs else 0,
                "total_items": len(logs),
                "items_per_page": len(logs),
                "has_next_page": False,
                "has_prev_page": False,
            },
        )

    result = service.paginate(page=page, limit=limit, resolved=resolved)
    return _page(result["logs"], result["pagination"])


@router.get(
    "/stats",
    response_model=OrphanedRuleLogStats,
    summary="Orphaned rule log statistics",
    responses={401: {"description": "Unauthorized"}},
)
async def orphaned_rule_log_stats(
    db: Session = Depends(get_db),
    staff: StaffPrincipal = Depends(get_current_staff),
) -> OrphanedRuleLogStats:
    return OrphanedRuleLogStats(**OrphanedRuleLogService(db).stats())


@router.get(
    "/unresolved",
    response_model=list[OrphanedRuleLogResponse],
    summary="List unresolved orphaned rules",
    responses={401: {"description": "Unauthorized"}},
)
async def list_unresolved(
    db: Session = Depends(get_db),
    staff: StaffPrincipal = Depends(get_current_staff),
) -> list[OrphanedRuleLog]:
    return OrphanedRuleLogService(db).find_unresolved()


@router.post(
    "/reconcile",
    response_model=ReconciliationReportResponse,
    summary="Run the reconciliation sweep now",
    responses={
        401: {"description": "Unauthorized"},
        403: {"description": "Admin role required"},
    },
)
async def reconcile(
    limit: int = Query(default=50, ge=1, le=500),
    db: Session = Depends(get_db),
    client: DiscountPlatformClient = Depends(get_discount_client),
    retry_policy: RetryPolicy = Depends(get_retry_policy),
    staff: StaffPrincipal = Depends(require_admin),
) -> ReconciliationReportResponse:
    report = await ReconciliationService(db, client, retry_policy).reconcile_unresolved(limit)
    return ReconciliationReportResponse(
        checked=report.checked,
        repaired=report.repaired,
        still_unresolved=report.still_unresolved,
        repaired_codes=report.repaired_codes,
    )


@router.patch(
    "/{log_id}",
    response_model=OrphanedRuleLogResponse,
    summary="Resolve orphaned rule log",
    responses={
        401: {"description": "Unauthorized"},
        404: {"description": "Log not found"},
    },
)
async def update_orphaned_rule_log(
    log_id: UUID,
    data: OrphanedRuleLogAction,
    db: Session = Depends(get_db),
    staff: StaffPrincipal = Depends(get_current_staff),
) -> OrphanedRuleLog:
    log = OrphanedRuleLogService(db).mark_resolved(log_id)
    if not log:
        raise HTTPException(status_code=404, detail="Orphaned rule log not found")
    return log
