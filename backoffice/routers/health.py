from typing import Any

from fastapi import APIRouter, Depends

from backoffice.services.commerce_platform import DiscountPlatformClient, get_discount_client

router = APIRouter()


@router.get("/health", summary="Service health")
async def health(
    client: DiscountPlatformClient = Depends(get_discount_client),
) -> dict[str, Any]:
    platform_ok = await client.test_connection()
    return {
        "status": "ok" if platform_ok else "degraded",
        "commerce_platform": platform_ok,
    }
