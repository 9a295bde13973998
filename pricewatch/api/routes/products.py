"""Product lookup, suggestion and fire-and-return scrape routes."""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError

from pricewatch.api.deps import (
    get_lookup,
    get_product_store,
    get_scrape_trigger,
    read_json_object,
)
from pricewatch.db.models import ProductResponse, SuggestionItem
from pricewatch.db.products import ProductStore
from pricewatch.identity.lookup import ProductLookup
from pricewatch.scrape.trigger import ScrapeTrigger

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/products", tags=["products"])


@router.get("/lookup")
async def lookup_product(
    url: str = Query("", description="Raw product URL"),
    lookup: ProductLookup = Depends(get_lookup),
):
    """Check whether a URL (or any equivalent spelling) is already tracked."""
    if not url.strip():
        return JSONResponse({"found": False, "message": "Missing url"}, status_code=400)

    try:
        result = await lookup.find(url)
    except PyMongoError:
        logger.exception(f"Lookup failed for {url}")
        return JSONResponse({"found": False, "message": "Lookup failed"}, status_code=500)

    if not result.found:
        return {"found": False}
    return {"found": True, "productId": result.product_id}


@router.get("/suggest", response_model=List[SuggestionItem])
async def suggest_products(
    q: str = Query("", description="Search text"),
    store: ProductStore = Depends(get_product_store),
):
    """Up to eight recently updated products matching every token of ``q``."""
    docs = await store.suggest(q)
    return [
        SuggestionItem(
            id=str(doc["_id"]),
            title=doc.get("title"),
            image=doc.get("image"),
            currentPrice=doc.get("currentPrice"),
            currency=doc.get("currency"),
        )
        for doc in docs
    ]


@router.post("/scrape")
async def start_scrape(
    request: Request,
    trigger: ScrapeTrigger = Depends(get_scrape_trigger),
):
    """
    Start a scrape without waiting for the workflow to finish.

    Returns ``complete`` with a productId when the workflow answers quickly
    with one, otherwise ``queued``. Timeouts are reported as queued.
    """
    body = await read_json_object(request)
    url = body.get("url") if isinstance(body.get("url"), str) else ""

    if not url.strip():
        return JSONResponse(
            {"status": "failed", "message": "Missing product URL."},
            status_code=400,
        )

    outcome = await trigger.dispatch(url)
    return outcome.to_dict()


@router.get("/{product_id}", response_model=ProductResponse)
async def get_product(
    product_id: str,
    store: ProductStore = Depends(get_product_store),
):
    """Get a product by ID."""
    product = await store.find_by_id(product_id)

    if not product:
        raise HTTPException(status_code=404, detail="Product not found")

    return ProductResponse.from_document(product)
