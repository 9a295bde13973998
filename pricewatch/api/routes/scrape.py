"""Synchronous scrape route."""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError

from pricewatch.api.deps import get_scrape_trigger, read_json_object
from pricewatch.scrape.trigger import ScrapeTrigger

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["scrape"])


@router.post("/scrape")
async def scrape_product(
    request: Request,
    trigger: ScrapeTrigger = Depends(get_scrape_trigger),
):
    """
    Scrape a product URL and store the result.

    Waits for the workflow (up to the configured sync timeout) and returns
    ``complete`` with the productId, ``queued`` if the product is still being
    saved, or ``failed`` with the workflow's message.
    """
    body = await read_json_object(request)
    url = body.get("url") if isinstance(body.get("url"), str) else ""

    if not url.strip():
        return JSONResponse(
            {"status": "failed", "message": "Missing product URL."},
            status_code=400,
        )

    try:
        outcome = await trigger.scrape_and_store(url)
    except PyMongoError as e:
        logger.exception(f"Failed to store scraped product for {url}")
        return JSONResponse(
            {"status": "failed", "message": f"Failed to create/update product: {e}"},
            status_code=500,
        )

    return outcome.to_dict()
