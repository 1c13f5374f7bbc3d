"""Two-phase provisioning of a discount code on the commerce platform.

The platform needs two writes with no shared transaction: a price rule, then a
discount code bound to it. ``CouponProvisioner`` drives them as a saga::

    START -> RULE_CHECK -> RULE_CREATE -> CODE_CREATE -> VALIDATE -> SUCCESS
                                                                  -> ORPHANED
                                      -> FAILED

RULE_CHECK makes a repeated request for an existing code resolve to the
existing resources. A code with an unresolved orphan entry reuses that
entry's rule instead of creating another. ORPHANED means the rule exists but
no code could be confirmed on it; the outcome is reported as pending
activation and an ``OrphanedRuleLog`` entry is written (or its attempt count
raised) so the code can be attached later. The rule is never deleted
automatically.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from sqlalchemy.orm import Session

from backoffice.core.config import settings
from backoffice.core.dedup import DuplicateRequestSuppressor
from backoffice.models.coupon import normalize_code
from backoffice.models.orphaned_rule_log import OrphanedRuleLog
from backoffice.models.shared import as_utc, utc_now
from backoffice.schemas.coupon import CouponSpec
from backoffice.schemas.provisioning import ProvisionRequest
from backoffice.services.commerce_platform import (
    CodeLookup,
    CommercePlatformError,
    DiscountPlatformClient,
    DiscountRuleSpec,
    ExternalConflictError,
    ExternalPermanentError,
    ExternalTransientError,
    PriceRule,
    rule_title,
)
from backoffice.services.coupon_store import CouponStore
from backoffice.services.orphaned_rule_log import OrphanedRuleLogService

logger = logging.getLogger(__name__)

__all__ = [
    "CouponProvisioner",
    "ProvisionRequest",
    "ProvisionResult",
    "ProvisioningService",
    "ProvisioningState",
    "RetryPolicy",
    "get_retry_policy",
]


@dataclass
class RetryPolicy:
    """Attempt budget and backoff for platform writes.

    ``delay_for(n)`` is the pause after failed attempt ``n``; it doubles each
    time (2s, 4s, 8s with the defaults). ``settle_delay`` is the pause between
    writing a code and reading it back.
    """

    max_attempts: int = 3
    base_delay: float = 2.0
    settle_delay: float = 1.0
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep

    def delay_for(self, attempt: int) -> float:
        return self.base_delay * 2 ** (attempt - 1)

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=settings.provisioning_max_attempts,
            base_delay=settings.provisioning_base_delay_seconds,
            settle_delay=settings.provisioning_settle_delay_seconds,
        )


class ProvisioningState(str, Enum):
    START = "start"
    RULE_CHECK = "rule_check"
    RULE_CREATE = "rule_create"
    CODE_CREATE = "code_create"
    VALIDATE = "validate"
    SUCCESS = "success"
    ORPHANED = "orphaned"
    FAILED = "failed"


@dataclass
class ProvisionResult:
    success: bool
    code: str
    rule_ref: str | None = None
    code_ref: str | None = None
    orphaned: bool = False
    already_existed: bool = False
    error: str | None = None
    error_kind: str | None = None
    attempts: int = 0
    coupon_id: str | None = None
    orphan_log_id: str | None = None
    state: ProvisioningState = ProvisioningState.START
    platform_response: Any | None = field(default=None, repr=False)

    @property
    def status(self) -> str:
        if self.success:
            return "active"
        if self.orphaned:
            return "pending_activation"
        return "failed"


@dataclass
class _CodeOutcome:
    confirmed: CodeLookup | None = None
    attempts: int = 0
    error: CommercePlatformError | None = None
    detail: str | None = None


class CouponProvisioner:
    def __init__(
        self,
        db: Session,
        client: DiscountPlatformClient,
        retry_policy: RetryPolicy | None = None,
        store: CouponStore | None = None,
        orphan_log: OrphanedRuleLogService | None = None,
    ):
        self.db = db
        self.client = client
        self.retry = retry_policy or RetryPolicy.from_settings()
        self.store = store or CouponStore(db, client)
        self.orphan_log = orphan_log or OrphanedRuleLogService(db)

    def _enter(self, result: ProvisionResult, state: ProvisioningState) -> None:
        logger.info("Provisioning %s: %s -> %s", result.code, result.state.value, state.value)
        result.state = state

    async def provision(self, request: ProvisionRequest) -> ProvisionResult:
        code = normalize_code(request.code)
        result = ProvisionResult(success=False, code=code)
        valid_from = as_utc(request.valid_from) or utc_now()
        valid_until = as_utc(request.valid_until) or valid_from + timedelta(
            days=settings.default_coupon_validity_days
        )
        assert valid_from is not None and valid_until is not None

        self._enter(result, ProvisioningState.RULE_CHECK)
        try:
            existing = await self._lookup_existing(code)
        except CommercePlatformError as e:
            self._fail(result, e, "checking for an existing code")
            return result

        if existing is not None:
            result.success = True
            result.already_existed = True
            result.rule_ref = existing.rule_id
            result.code_ref = existing.code_id
            self._enter(result, ProvisioningState.SUCCESS)
            self.orphan_log.resolve_for_code(code, existing.rule_id)
            self._persist(request, result, valid_from, valid_until)
            return result

        spec = DiscountRuleSpec(
            code=code,
            title=rule_title(code, request.description),
            discount_type=request.discount_type,
            discount_value=request.discount_value,
            starts_at=valid_from,
            ends_at=valid_until,
            usage_limit=request.usage_limit,
            once_per_customer=request.once_per_customer,
            minimum_purchase=request.minimum_purchase,
        )

        pending = self.orphan_log.find_pending(code)
        rule: PriceRule | None = None
        if pending is not None:
            try:
                rule = await self.client.get_rule(str(pending.external_rule_id))
            except CommercePlatformError as e:
                self._fail(result, e, "loading the orphaned price rule")
                return result
            if rule is None:
                logger.info(
                    "Orphaned price rule %s for %s is gone from the platform",
                    pending.external_rule_id,
                    code,
                )
                self.orphan_log.mark_resolved(pending.id)  # type: ignore[arg-type]
                pending = None
            else:
                logger.info("Reusing orphaned price rule %s for %s", rule.id, code)

        if rule is None:
            self._enter(result, ProvisioningState.RULE_CREATE)
            rule = await self._create_rule(spec, result)
            if rule is None:
                return result
        result.rule_ref = rule.id

        self._enter(result, ProvisioningState.CODE_CREATE)
        outcome = await self._attach_code(rule.id, code, result)
        result.attempts = outcome.attempts

        if outcome.confirmed is not None:
            result.success = True
            result.code_ref = outcome.confirmed.code_id
            self._enter(result, ProvisioningState.SUCCESS)
            self.orphan_log.resolve_for_code(code, rule.id)
            self._persist(request, result, valid_from, valid_until)
            return result

        self._enter(result, ProvisioningState.ORPHANED)
        result.orphaned = True
        result.error = outcome.detail or "Discount code could not be attached"
        result.error_kind = "orphaned"
        if outcome.error is not None:
            result.platform_response = outcome.error.response_body
        if pending is not None:
            log = self.orphan_log.increment_attempts(
                pending.id, by=outcome.attempts  # type: ignore[arg-type]
            )
            logger.error(
                "Price rule %s for code %s is still orphaned: %s", rule.id, code, result.error
            )
        else:
            log = self.orphan_log.record(
                rule_id=rule.id,
                code=code,
                error=result.error,
                details={
                    "error_type": type(outcome.error).__name__ if outcome.error else None,
                    "status_code": outcome.error.status_code if outcome.error else None,
                    "rule_title": spec.title,
                },
                platform_response=result.platform_response,
                attempt_count=outcome.attempts,
            )
        assert log is not None
        result.orphan_log_id = str(log.id)
        self._persist(request, result, valid_from, valid_until)
        return result

    def _fail(self, result: ProvisionResult, error: CommercePlatformError, step: str) -> None:
        result.error = str(error)
        result.error_kind = (
            "transient" if isinstance(error, ExternalTransientError) else "permanent"
        )
        result.platform_response = error.response_body
        logger.warning("Provisioning %s failed %s: %s", result.code, step, error)
        self._enter(result, ProvisioningState.FAILED)

    async def _lookup_existing(self, code: str) -> CodeLookup | None:
        """Pre-flight lookup, retrying transient failures under the policy."""
        for attempt in range(1, self.retry.max_attempts + 1):
            try:
                return await self.client.lookup_code(code)
            except ExternalTransientError as e:
                if attempt == self.retry.max_attempts:
                    raise
                logger.warning(
                    "Lookup of %s failed (attempt %d/%d): %s",
                    code,
                    attempt,
                    self.retry.max_attempts,
                    e,
                )
                await self.retry.sleep(self.retry.delay_for(attempt))
        return None

    async def _create_rule(
        self, spec: DiscountRuleSpec, result: ProvisionResult
    ) -> PriceRule | None:
        last_error: CommercePlatformError | None = None
        for attempt in range(1, self.retry.max_attempts + 1):
            try:
                return await self.client.create_rule(spec)
            except ExternalConflictError as e:
                logger.info("Price rule %r already exists, resolving by title", spec.title)
                try:
                    found = await self.client.find_rule_by_title(spec.title)
                except CommercePlatformError as lookup_error:
                    last_error = lookup_error
                else:
                    if found is not None:
                        return found
                    last_error = e
                break
            except ExternalPermanentError as e:
                last_error = e
                break
            except ExternalTransientError as e:
                last_error = e
                logger.warning(
                    "Price rule for %s failed (attempt %d/%d): %s",
                    spec.code,
                    attempt,
                    self.retry.max_attempts,
                    e,
                )
                if attempt < self.retry.max_attempts:
                    await self.retry.sleep(self.retry.delay_for(attempt))

        assert last_error is not None
        self._fail(result, last_error, "creating the price rule")
        return None

    async def _resolve_code(self, rule_id: str, code: str) -> CodeLookup | None:
        for existing in await self.client.list_codes(rule_id):
            if normalize_code(existing.code) == code:
                return CodeLookup(code_id=existing.id, rule_id=rule_id, code=existing.code)
        return None

    async def _attach_code(
        self, rule_id: str, code: str, result: ProvisionResult
    ) -> _CodeOutcome:
        """Create the code on *rule_id* and confirm it, retrying with backoff."""
        outcome = _CodeOutcome()
        for attempt in range(1, self.retry.max_attempts + 1):
            outcome.attempts = attempt
            if attempt > 1:
                await self.retry.sleep(self.retry.delay_for(attempt - 1))
                if result.state != ProvisioningState.CODE_CREATE:
                    self._enter(result, ProvisioningState.CODE_CREATE)

            try:
                await self.client.create_code(rule_id, code)
            except ExternalConflictError as e:
                try:
                    resolved = await self._resolve_code(rule_id, code)
                except CommercePlatformError as list_error:
                    outcome.error = list_error
                    outcome.detail = str(list_error)
                    continue
                if resolved is None:
                    # the code is taken by another rule; retrying cannot help
                    outcome.error = e
                    outcome.detail = f"Code {code} is already in use by another price rule"
                    break
            except ExternalPermanentError as e:
                outcome.error = e
                outcome.detail = str(e)
                logger.warning("Code %s rejected by the platform: %s", code, e)
                break
            except ExternalTransientError as e:
                outcome.error = e
                outcome.detail = str(e)
                logger.warning(
                    "Code %s failed (attempt %d/%d): %s",
                    code,
                    attempt,
                    self.retry.max_attempts,
                    e,
                )
                continue

            self._enter(result, ProvisioningState.VALIDATE)
            await self.retry.sleep(self.retry.settle_delay)
            try:
                found = await self.client.lookup_code(code)
            except CommercePlatformError as e:
                outcome.error = e
                outcome.detail = str(e)
                continue
            if found is not None and found.rule_id == rule_id:
                outcome.confirmed = found
                return outcome

            outcome.error = None
            outcome.detail = f"Code {code} not visible on price rule {rule_id} after creation"
            logger.warning("%s (attempt %d)", outcome.detail, attempt)

        return outcome

    def _persist(
        self,
        request: ProvisionRequest,
        result: ProvisionResult,
        valid_from: datetime,
        valid_until: datetime,
    ) -> None:
        if request.customer is None:
            return

        coupon = self.store.attach_external_ids(result.code, result.rule_ref, result.code_ref)
        if coupon is None:
            _, coupon = self.store.create_with_customer(
                request.customer,
                CouponSpec(
                    code=result.code,
                    discount_type=request.discount_type,
                    discount_value=request.discount_value,
                    description=request.description,
                    valid_from=valid_from,
                    valid_until=valid_until,
                    usage_limit=request.usage_limit,
                    minimum_purchase=request.minimum_purchase,
                    applies_to=request.applies_to,
                    external_rule_id=result.rule_ref,
                    external_code_id=result.code_ref,
                ),
            )
        result.coupon_id = str(coupon.id)

    async def repair(self, log: OrphanedRuleLog) -> bool:
        """Try once more to attach the logged code to its orphaned rule.

        Only a code confirmed on the logged rule counts. On success the log is
        resolved and the local coupon (if any) receives the confirmed
        identifiers; otherwise the log's attempt count goes up.
        """
        code = normalize_code(str(log.coupon_code))
        rule_id = str(log.external_rule_id)

        try:
            found = await self.client.lookup_code(code)
            if found is None:
                try:
                    await self.client.create_code(rule_id, code)
                except ExternalConflictError:
                    if await self._resolve_code(rule_id, code) is None:
                        raise
                await self.retry.sleep(self.retry.settle_delay)
                found = await self.client.lookup_code(code)
        except CommercePlatformError as e:
            logger.warning("Repair of orphaned rule %s (%s) failed: %s", rule_id, code, e)
            self.orphan_log.increment_attempts(log.id)  # type: ignore[arg-type]
            return False

        if found is None or found.rule_id != rule_id:
            if found is None:
                logger.warning(
                    "Repair of orphaned rule %s: code %s still not visible", rule_id, code
                )
            else:
                logger.warning(
                    "Repair of orphaned rule %s: code %s belongs to price rule %s",
                    rule_id,
                    code,
                    found.rule_id,
                )
            self.orphan_log.increment_attempts(log.id)  # type: ignore[arg-type]
            return False

        self.store.attach_external_ids(code, found.rule_id, found.code_id)
        self.orphan_log.mark_resolved(log.id)  # type: ignore[arg-type]
        logger.info("Repaired orphaned rule %s with code %s", rule_id, code)
        return True


class ProvisioningService:
    """Runs provisioning requests through the duplicate-request suppressor."""

    def __init__(
        self,
        suppressor: DuplicateRequestSuppressor,
        provisioner_factory: Callable[[], CouponProvisioner],
    ):
        self.suppressor = suppressor
        self.provisioner_factory = provisioner_factory

    async def submit(self, request: ProvisionRequest) -> ProvisionResult:
        code = normalize_code(request.code)
        return await self.suppressor.submit(
            code, lambda: self.provisioner_factory().provision(request)
        )


def get_retry_policy() -> RetryPolicy:
    """FastAPI dependency for the configured retry policy."""
    return RetryPolicy.from_settings()
