from backoffice.models.coupon import Coupon, CouponStatus, DiscountType
from backoffice.models.coupon_use import CouponUse
from backoffice.models.customer import Customer
from backoffice.models.orphaned_rule_log import OrphanedRuleLog

__all__ = [
    "Coupon",
    "CouponStatus",
    "CouponUse",
    "Customer",
    "DiscountType",
    "OrphanedRuleLog",
]
