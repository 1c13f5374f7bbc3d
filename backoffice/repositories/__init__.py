from backoffice.repositories.coupon_repository import CouponRepository
from backoffice.repositories.coupon_use_repository import CouponUseRepository
from backoffice.repositories.customer_repository import CustomerRepository
from backoffice.repositories.orphaned_rule_log_repository import OrphanedRuleLogRepository

__all__ = [
    "CouponRepository",
    "CouponUseRepository",
    "CustomerRepository",
    "OrphanedRuleLogRepository",
]
