"""Coupon-created notifications delivered to an outbound webhook."""

import logging
from typing import Any
from uuid import UUID

import httpx
from sqlalchemy.orm import Session

from backoffice.core.config import settings
from backoffice.models.coupon import Coupon
from backoffice.models.shared import utc_now
from backoffice.repositories.coupon_repository import CouponRepository

logger = logging.getLogger(__name__)


def build_payload(coupon: Coupon) -> dict[str, Any]:
    customer = coupon.customer
    return {
        "action": "coupon_created",
        "customer": {
            "name": customer.name,
            "email": customer.email,
            "phone": customer.phone,
        },
        "coupon": {
            "code": coupon.code,
            "discount_type": coupon.discount_type,
            "discount_value": str(coupon.discount_value),
            "description": coupon.description,
            "valid_from": coupon.valid_from.isoformat() if coupon.valid_from else None,
            "valid_until": coupon.valid_until.isoformat() if coupon.valid_until else None,
            "usage_limit": coupon.usage_limit,
            "minimum_purchase": (
                str(coupon.minimum_purchase) if coupon.minimum_purchase is not None else None
            ),
        },
    }


class CouponNotifier:
    def __init__(
        self,
        db: Session,
        webhook_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.db = db
        self.webhook_url = (
            webhook_url if webhook_url is not None else settings.coupon_notification_webhook_url
        )
        self.transport = transport
        self.coupons = CouponRepository(db)

    async def send_coupon_created(self, coupon_id: UUID) -> bool:
        """Post the coupon to the notification webhook once.

        Returns True when delivered. Skipped when no URL is configured, the
        coupon is gone, or it was already sent.
        """
        if not self.webhook_url:
            logger.debug("Coupon notification webhook not configured")
            return False

        coupon = self.coupons.get_by_id(coupon_id)
        if not coupon or coupon.notification_sent:
            return False

        try:
            async with httpx.AsyncClient(timeout=30.0, transport=self.transport) as client:
                resp = await client.post(self.webhook_url, json=build_payload(coupon))
        except httpx.HTTPError as exc:
            logger.warning("Coupon notification failed for %s: %s", coupon.code, exc)
            return False

        if not resp.is_success:
            logger.warning(
                "Coupon notification for %s rejected with status %d", coupon.code, resp.status_code
            )
            return False

        coupon.notification_sent = True  # type: ignore[assignment]
        coupon.notification_sent_at = utc_now()  # type: ignore[assignment]
        self.db.commit()
        logger.info("Coupon notification sent for %s", coupon.code)
        return True
