"""Analytics report trigger and poll routes."""

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse

from pricewatch.analytics.service import AnalyticsService
from pricewatch.api.deps import get_analytics_service
from pricewatch.errors import ProductNotFoundError

router = APIRouter(prefix="/api/products", tags=["analytics"])

TRUTHY = {"1", "true", "yes"}


@router.get("/{product_id}/analytics")
async def get_analytics(
    product_id: str,
    debug: str | None = Query(None, description="Set to 1 to include match details"),
    analytics: AnalyticsService = Depends(get_analytics_service),
):
    """Poll the analytics report status for a product."""
    try:
        return await analytics.poll(product_id, debug=(debug or "").lower() in TRUTHY)
    except ProductNotFoundError:
        raise HTTPException(status_code=404, detail="Product not found")


@router.post("/{product_id}/analytics")
async def trigger_analytics(
    product_id: str,
    force: str | None = Query(None, description="Set to 1 to re-run the report"),
    analytics: AnalyticsService = Depends(get_analytics_service),
):
    """
    Trigger the analytics report workflow for a product.

    Idempotent unless forced: an existing report or a recent pending request
    returns without contacting the workflow. Responds 202 while pending.
    """
    try:
        result = await analytics.trigger(product_id, force=(force or "").lower() in TRUTHY)
    except ProductNotFoundError:
        raise HTTPException(status_code=404, detail="Product not found")

    return JSONResponse(result.to_dict(), status_code=result.http_status)
