"""Callback route for the analytics report workflow."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import ValidationError

from pricewatch.analytics.service import AnalyticsService, ReportCallback
from pricewatch.api.deps import get_analytics_service, read_json_object, verify_report_secret
from pricewatch.errors import InvalidPayloadError, ProductNotFoundError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/products", tags=["reports"])


@router.post("/report-callback", dependencies=[Depends(verify_report_secret)])
async def report_callback(
    request: Request,
    analytics: AnalyticsService = Depends(get_analytics_service),
):
    """Receive a finished (or failed) analytics report from the workflow."""
    body = await read_json_object(request)

    try:
        callback = ReportCallback.model_validate(body)
        await analytics.record_callback(callback)
    except ValidationError:
        raise HTTPException(status_code=400, detail="Invalid payload")
    except InvalidPayloadError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ProductNotFoundError:
        logger.warning(f"Report callback for unknown product: {body.get('productId')}")
        raise HTTPException(status_code=404, detail="Product not found")

    return {"ok": True}
