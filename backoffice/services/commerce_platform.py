"""Commerce platform client for discount rules and discount codes.

Defines the abstract DiscountPlatformClient interface used by provisioning and
the coupon store, plus the Shopify Admin REST implementation.

Every failure surfaces as one of three exceptions so callers can decide what
to retry:

* ``ExternalTransientError``: timeouts, connection failures, 429 and 5xx.
* ``ExternalConflictError``: the platform already holds the value (422 "taken").
* ``ExternalPermanentError``: any other rejection.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

import httpx

from backoffice.core.config import settings
from backoffice.models.coupon import DiscountType

logger = logging.getLogger(__name__)

CONFLICT_MARKERS = ("taken", "already exists", "must be unique")


class CommercePlatformError(Exception):
    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: Any | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class ExternalTransientError(CommercePlatformError):
    """The call may succeed if repeated."""


class ExternalConflictError(CommercePlatformError):
    """The resource already exists on the platform."""


class ExternalPermanentError(CommercePlatformError):
    """The platform rejected the request; repeating it will not help."""


def rule_title(code: str, description: str | None = None) -> str:
    """Title for the price rule backing *code*.

    The code is always part of the title so a rule can be found again by title
    after a create call whose response was lost.
    """
    base = (description or "").strip() or f"Discount {code}"
    return f"{base} [{code}]"


@dataclass
class DiscountRuleSpec:
    code: str
    title: str
    discount_type: DiscountType
    discount_value: Decimal
    starts_at: datetime
    ends_at: datetime | None = None
    usage_limit: int | None = None
    once_per_customer: bool = True
    minimum_purchase: Decimal | None = None

    def to_payload(self) -> dict[str, Any]:
        rule: dict[str, Any] = {
            "title": self.title,
            "value_type": (
                "percentage" if self.discount_type == DiscountType.PERCENTAGE else "fixed_amount"
            ),
            "value": f"-{Decimal(self.discount_value):f}",
            "customer_selection": "all",
            "target_type": "line_item",
            "target_selection": "all",
            "allocation_method": "across",
            "once_per_customer": self.once_per_customer,
            "usage_limit": self.usage_limit,
            "starts_at": self.starts_at.isoformat(),
            "ends_at": self.ends_at.isoformat() if self.ends_at else None,
        }
        if self.minimum_purchase is not None:
            rule["prerequisite_subtotal_range"] = {
                "greater_than_or_equal_to": f"{Decimal(self.minimum_purchase):f}"
            }
        return {"price_rule": rule}


@dataclass
class PriceRule:
    id: str
    title: str
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class DiscountCode:
    id: str
    code: str
    rule_id: str
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class CodeLookup:
    """Where an existing discount code lives on the platform."""

    code_id: str
    rule_id: str
    code: str


class DiscountPlatformClient(ABC):
    """Abstract client for the platform that owns discount rules and codes."""

    @abstractmethod
    async def create_rule(self, spec: DiscountRuleSpec) -> PriceRule:
        ...  # pragma: no cover

    @abstractmethod
    async def find_rule_by_title(self, title: str) -> PriceRule | None:
        ...  # pragma: no cover

    @abstractmethod
    async def get_rule(self, rule_id: str) -> PriceRule | None:
        ...  # pragma: no cover

    @abstractmethod
    async def create_code(self, rule_id: str, code: str) -> DiscountCode:
        ...  # pragma: no cover

    @abstractmethod
    async def list_codes(self, rule_id: str) -> list[DiscountCode]:
        ...  # pragma: no cover

    @abstractmethod
    async def lookup_code(self, code: str) -> CodeLookup | None:
        """Return the code's location, or None when the platform does not know it."""
        ...  # pragma: no cover

    @abstractmethod
    async def delete_rule(self, rule_id: str) -> bool:
        """Best-effort deletion; returns False instead of raising."""
        ...  # pragma: no cover

    @abstractmethod
    async def test_connection(self) -> bool:
        ...  # pragma: no cover


def _response_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


def classify_response(response: httpx.Response) -> None:
    """Raise the matching CommercePlatformError for a non-2xx response."""
    if response.is_success:
        return

    status = response.status_code
    body = _response_body(response)
    message = f"{response.request.method} {response.request.url.path} returned {status}"

    if status == 429 or status >= 500:
        raise ExternalTransientError(message, status_code=status, response_body=body)

    if status == 422 and any(marker in str(body).lower() for marker in CONFLICT_MARKERS):
        raise ExternalConflictError(message, status_code=status, response_body=body)

    raise ExternalPermanentError(message, status_code=status, response_body=body)


class ShopifyDiscountClient(DiscountPlatformClient):
    """Shopify Admin REST API client (price rules + discount codes)."""

    def __init__(
        self,
        store_url: str | None = None,
        access_token: str | None = None,
        api_version: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        store = store_url or settings.shopify_store_url
        version = api_version or settings.shopify_api_version
        self.access_token = access_token if access_token is not None else settings.shopify_access_token
        self.timeout = timeout if timeout is not None else settings.shopify_timeout_seconds
        self._base_url = f"https://{store}/admin/api/{version}"
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            headers={
                "X-Shopify-Access-Token": self.access_token,
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            timeout=self.timeout,
            follow_redirects=True,
            transport=self._transport,
        )

    async def _request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        not_found_ok: bool = False,
    ) -> httpx.Response | None:
        try:
            async with self._client() as client:
                response = await client.request(method, path, json=json, params=params)
        except httpx.TimeoutException as e:
            raise ExternalTransientError(f"{method} {path} timed out: {e}") from e
        except httpx.TransportError as e:
            raise ExternalTransientError(f"{method} {path} failed: {e}") from e

        if not_found_ok and response.status_code == 404:
            return None
        classify_response(response)
        return response

    async def create_rule(self, spec: DiscountRuleSpec) -> PriceRule:
        response = await self._request("POST", "/price_rules.json", json=spec.to_payload())
        assert response is not None
        data = response.json()["price_rule"]
        logger.info("Created price rule %s for %s", data["id"], spec.code)
        return PriceRule(id=str(data["id"]), title=data.get("title", spec.title), raw=data)

    async def find_rule_by_title(self, title: str) -> PriceRule | None:
        path: str | None = "/price_rules.json"
        params: dict[str, Any] | None = {"limit": 250}
        while path:
            response = await self._request("GET", path, params=params)
            assert response is not None
            for data in response.json().get("price_rules", []):
                if data.get("title") == title:
                    return PriceRule(id=str(data["id"]), title=data["title"], raw=data)
            path = response.links.get("next", {}).get("url")
            params = None
        return None

    async def get_rule(self, rule_id: str) -> PriceRule | None:
        response = await self._request("GET", f"/price_rules/{rule_id}.json", not_found_ok=True)
        if response is None:
            return None
        data = response.json()["price_rule"]
        return PriceRule(id=str(data["id"]), title=data.get("title", ""), raw=data)

    async def create_code(self, rule_id: str, code: str) -> DiscountCode:
        response = await self._request(
            "POST",
            f"/price_rules/{rule_id}/discount_codes.json",
            json={"discount_code": {"code": code}},
        )
        assert response is not None
        data = response.json()["discount_code"]
        return DiscountCode(id=str(data["id"]), code=data["code"], rule_id=rule_id, raw=data)

    async def list_codes(self, rule_id: str) -> list[DiscountCode]:
        response = await self._request("GET", f"/price_rules/{rule_id}/discount_codes.json")
        assert response is not None
        return [
            DiscountCode(id=str(data["id"]), code=data["code"], rule_id=rule_id, raw=data)
            for data in response.json().get("discount_codes", [])
        ]

    async def lookup_code(self, code: str) -> CodeLookup | None:
        response = await self._request(
            "GET", "/discount_codes/lookup.json", params={"code": code}, not_found_ok=True
        )
        if response is None:
            return None
        data = response.json()["discount_code"]
        return CodeLookup(
            code_id=str(data["id"]),
            rule_id=str(data["price_rule_id"]),
            code=data.get("code", code),
        )

    async def delete_rule(self, rule_id: str) -> bool:
        try:
            await self._request("DELETE", f"/price_rules/{rule_id}.json")
        except CommercePlatformError as e:
            logger.warning("Failed to delete price rule %s: %s", rule_id, e)
            return False
        logger.info("Deleted price rule %s", rule_id)
        return True

    async def test_connection(self) -> bool:
        try:
            await self._request("GET", "/shop.json")
        except CommercePlatformError as e:
            logger.warning("Commerce platform connection check failed: %s", e)
            return False
        return True


def get_discount_client() -> DiscountPlatformClient:
    """FastAPI dependency / factory for the configured platform client."""
    return ShopifyDiscountClient()
