from backoffice.schemas.coupon import (
    CouponResponse,
    CouponSpec,
    CouponStatsResponse,
    CouponStatusUpdate,
    CouponUseResponse,
    CouponValidationResponse,
    RedeemCouponRequest,
    RedeemCouponResponse,
)
from backoffice.schemas.customer import CustomerInfo
from backoffice.schemas.orphaned_rule_log import (
    OrphanedRuleLogAction,
    OrphanedRuleLogPage,
    OrphanedRuleLogResponse,
    OrphanedRuleLogStats,
    ReconciliationReportResponse,
)
from backoffice.schemas.provisioning import ProvisionRequest, ProvisionResponse

__all__ = [
    "CouponResponse",
    "CouponSpec",
    "CouponStatsResponse",
    "CouponStatusUpdate",
    "CouponUseResponse",
    "CouponValidationResponse",
    "CustomerInfo",
    "OrphanedRuleLogAction",
    "OrphanedRuleLogPage",
    "OrphanedRuleLogResponse",
    "OrphanedRuleLogStats",
    "ProvisionRequest",
    "ProvisionResponse",
    "RedeemCouponRequest",
    "RedeemCouponResponse",
    "ReconciliationReportResponse",
]
