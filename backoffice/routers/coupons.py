"""Coupon provisioning and lifecycle API endpoints."""

import logging
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Response
from sqlalchemy.orm import Session

from backoffice.core.auth import StaffPrincipal, get_current_staff, require_admin
from backoffice.core.config import settings
from backoffice.core.database import get_db
from backoffice.core.dedup import DuplicateRequestError, DuplicateRequestSuppressor
from backoffice.models.coupon import Coupon, CouponStatus
from backoffice.models.coupon_use import CouponUse
from backoffice.repositories.customer_repository import CustomerRepository
from backoffice.schemas.coupon import (
    CouponResponse,
    CouponStatsResponse,
    CouponStatusUpdate,
    CouponUseResponse,
    CouponValidationResponse,
    RedeemCouponRequest,
    RedeemCouponResponse,
)
from backoffice.schemas.provisioning import ProvisionRequest, ProvisionResponse
from backoffice.services.commerce_platform import (
    CommercePlatformError,
    DiscountPlatformClient,
    get_discount_client,
)
from backoffice.services.coupon_store import CouponNotFoundError, CouponStore
from backoffice.services.provisioning import (
    CouponProvisioner,
    ProvisioningService,
    RetryPolicy,
    get_retry_policy,
)
from backoffice.tasks import enqueue_coupon_notification

logger = logging.getLogger(__name__)

router = APIRouter()

_suppressor = DuplicateRequestSuppressor(
    window_seconds=settings.duplicate_window_seconds,
    inflight_ttl=settings.inflight_ttl_seconds,
    seen_ttl=settings.seen_ttl_seconds,
)


def get_suppressor() -> DuplicateRequestSuppressor:
    return _suppressor


def get_coupon_store(
    db: Session = Depends(get_db),
    client: DiscountPlatformClient = Depends(get_discount_client),
) -> CouponStore:
    return CouponStore(db, client)


async def _enqueue_notification(coupon_id: str) -> None:
    try:
        await enqueue_coupon_notification(coupon_id)
    except Exception:
        logger.exception("Failed to enqueue notification for coupon %s", coupon_id)


@router.post(
    "/provision",
    response_model=ProvisionResponse,
    summary="Provision coupon on the store",
    responses={
        200: {"description": "Code already existed on the store"},
        201: {"description": "Coupon provisioned"},
        202: {"description": "Price rule created, code pending activation"},
        401: {"description": "Unauthorized"},
        409: {"description": "Duplicate request"},
        422: {"description": "Rejected by the store"},
        502: {"description": "Store unavailable"},
    },
)
async def provision_coupon(
    data: ProvisionRequest,
    response: Response,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    client: DiscountPlatformClient = Depends(get_discount_client),
    suppressor: DuplicateRequestSuppressor = Depends(get_suppressor),
    retry_policy: RetryPolicy = Depends(get_retry_policy),
    staff: StaffPrincipal = Depends(get_current_staff),
) -> ProvisionResponse:
    """Create the price rule and discount code, then record the coupon locally."""
    service = ProvisioningService(
        suppressor, lambda: CouponProvisioner(db, client, retry_policy=retry_policy)
    )
    try:
        result = await service.submit(data)
    except DuplicateRequestError as e:
        raise HTTPException(status_code=409, detail=str(e)) from None

    if not result.success and not result.orphaned:
        status_code = 502 if result.error_kind == "transient" else 422
        raise HTTPException(status_code=status_code, detail=result.error)

    if result.orphaned:
        response.status_code = 202
    elif result.already_existed:
        response.status_code = 200
    else:
        response.status_code = 201

    if result.coupon_id and data.customer is not None:
        background_tasks.add_task(_enqueue_notification, result.coupon_id)

    logger.info("Coupon %s provisioned by %s: %s", result.code, staff.subject, result.status)
    return ProvisionResponse(
        success=result.success,
        status=result.status,
        code=result.code,
        rule_ref=result.rule_ref,
        code_ref=result.code_ref,
        orphaned=result.orphaned,
        already_existed=result.already_existed,
        attempts=result.attempts,
        coupon_id=result.coupon_id,
        orphan_log_id=result.orphan_log_id,
        error=result.error,
    )


@router.get(
    "/",
    response_model=list[CouponResponse],
    summary="List coupons",
    responses={401: {"description": "Unauthorized"}},
)
async def list_coupons(
    response: Response,
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=1000),
    order_by: str | None = Query(default=None),
    email: str | None = Query(default=None),
    customer_id: UUID | None = Query(default=None),
    status: CouponStatus | None = None,
    store: CouponStore = Depends(get_coupon_store),
    staff: StaffPrincipal = Depends(get_current_staff),
) -> list[Coupon]:
    coupons, total = store.list_coupons(
        email=email,
        customer_id=customer_id,
        status=status,
        skip=skip,
        limit=limit,
        order_by=order_by,
    )
    response.headers["X-Total-Count"] = str(total)
    return coupons


@router.get(
    "/stats",
    response_model=CouponStatsResponse,
    summary="Coupon statistics",
    responses={401: {"description": "Unauthorized"}},
)
async def coupon_stats(
    store: CouponStore = Depends(get_coupon_store),
    staff: StaffPrincipal = Depends(get_current_staff),
) -> CouponStatsResponse:
    return CouponStatsResponse(**store.stats())


@router.get(
    "/search",
    response_model=list[CouponResponse],
    summary="Search coupons",
    responses={401: {"description": "Unauthorized"}},
)
async def search_coupons(
    q: str = Query(min_length=1),
    limit: int = Query(default=50, ge=1, le=200),
    store: CouponStore = Depends(get_coupon_store),
    staff: StaffPrincipal = Depends(get_current_staff),
) -> list[Coupon]:
    """Match codes, descriptions and customer name/email."""
    return store.search(q, limit=limit)


@router.get(
    "/validate/{code}",
    response_model=CouponValidationResponse,
    summary="Validate coupon",
    responses={
        401: {"description": "Unauthorized"},
        502: {"description": "Store unavailable"},
    },
)
async def validate_coupon(
    code: str,
    store: CouponStore = Depends(get_coupon_store),
    staff: StaffPrincipal = Depends(get_current_staff),
) -> CouponValidationResponse:
    try:
        result = await store.validate(code)
    except CommercePlatformError as e:
        raise HTTPException(status_code=502, detail=str(e)) from None

    return CouponValidationResponse(
        valid=result.valid,
        reason=result.reason.value if result.reason else None,
        message=result.message,
        coupon=CouponResponse.model_validate(result.coupon) if result.coupon else None,
    )


@router.post(
    "/redeem",
    response_model=RedeemCouponResponse,
    summary="Redeem coupon",
    responses={
        400: {"description": "Coupon cannot be redeemed"},
        401: {"description": "Unauthorized"},
        404: {"description": "Customer not found"},
        502: {"description": "Store unavailable"},
    },
)
async def redeem_coupon(
    data: RedeemCouponRequest,
    db: Session = Depends(get_db),
    store: CouponStore = Depends(get_coupon_store),
    staff: StaffPrincipal = Depends(get_current_staff),
) -> RedeemCouponResponse:
    if not CustomerRepository(db).get_by_id(data.customer_id):
        raise HTTPException(status_code=404, detail="Customer not found")

    try:
        result = await store.redeem(
            data.code,
            customer_id=data.customer_id,
            order_id=data.order_id,
            order_amount=data.order_amount,
        )
    except CommercePlatformError as e:
        raise HTTPException(status_code=502, detail=str(e)) from None

    if not result.success:
        raise HTTPException(
            status_code=400,
            detail={
                "reason": result.reason.value if result.reason else None,
                "message": result.message,
            },
        )

    assert result.coupon is not None and result.coupon_use is not None
    return RedeemCouponResponse(
        success=True,
        code=str(result.coupon.code),
        discount_applied=result.discount_applied,
        current_uses=int(result.coupon.current_uses),
        status=str(result.coupon.status),
        coupon_use_id=result.coupon_use.id,  # type: ignore[arg-type]
    )


@router.get(
    "/customer/{customer_id}/history",
    response_model=list[CouponUseResponse],
    summary="Customer redemption history",
    responses={401: {"description": "Unauthorized"}},
)
async def customer_history(
    customer_id: UUID,
    store: CouponStore = Depends(get_coupon_store),
    staff: StaffPrincipal = Depends(get_current_staff),
) -> list[CouponUse]:
    return store.history(customer_id)


@router.get(
    "/{coupon_id}",
    response_model=CouponResponse,
    summary="Get coupon",
    responses={
        401: {"description": "Unauthorized"},
        404: {"description": "Coupon not found"},
    },
)
async def get_coupon(
    coupon_id: UUID,
    store: CouponStore = Depends(get_coupon_store),
    staff: StaffPrincipal = Depends(get_current_staff),
) -> Coupon:
    try:
        coupon = store.get(coupon_id)
    except CouponNotFoundError:
        raise HTTPException(status_code=404, detail="Coupon not found") from None
    store.refresh_status(coupon)
    return coupon


@router.patch(
    "/{coupon_id}/status",
    response_model=CouponResponse,
    summary="Set coupon status",
    responses={
        401: {"description": "Unauthorized"},
        403: {"description": "Admin role required"},
        404: {"description": "Coupon not found"},
    },
)
async def set_coupon_status(
    coupon_id: UUID,
    data: CouponStatusUpdate,
    store: CouponStore = Depends(get_coupon_store),
    staff: StaffPrincipal = Depends(require_admin),
) -> Coupon:
    try:
        return store.set_status(coupon_id, data.status)
    except CouponNotFoundError:
        raise HTTPException(status_code=404, detail="Coupon not found") from None


@router.delete(
    "/{coupon_id}",
    status_code=204,
    summary="Delete coupon",
    responses={
        401: {"description": "Unauthorized"},
        403: {"description": "Admin role required"},
        404: {"description": "Coupon not found"},
    },
)
async def delete_coupon(
    coupon_id: UUID,
    store: CouponStore = Depends(get_coupon_store),
    staff: StaffPrincipal = Depends(require_admin),
) -> None:
    """Delete the coupon locally and, best-effort, its price rule on the store."""
    try:
        await store.delete(coupon_id)
    except CouponNotFoundError:
        raise HTTPException(status_code=404, detail="Coupon not found") from None
