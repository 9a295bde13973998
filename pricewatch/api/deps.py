"""FastAPI dependencies."""

import hmac
from typing import Any

from fastapi import Depends, Header, HTTPException, Request, status

from pricewatch.analytics.service import AnalyticsService
from pricewatch.db.products import ProductStore
from pricewatch.identity.lookup import ProductLookup
from pricewatch.scrape.trigger import ScrapeTrigger
from pricewatch.services import Services


def get_services(request: Request) -> Services:
    """Service graph built at startup."""
    return request.app.state.services


def get_product_store(services: Services = Depends(get_services)) -> ProductStore:
    return services.store


def get_lookup(services: Services = Depends(get_services)) -> ProductLookup:
    return services.lookup


def get_scrape_trigger(services: Services = Depends(get_services)) -> ScrapeTrigger:
    return services.scrape_trigger


def get_analytics_service(services: Services = Depends(get_services)) -> AnalyticsService:
    return services.analytics


async def read_json_object(request: Request) -> dict[str, Any]:
    """Request body as a JSON object; anything else reads as empty."""
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


async def verify_report_secret(
    services: Services = Depends(get_services),
    x_n8n_secret: str | None = Header(None, alias="x-n8n-secret"),
) -> None:
    """
    Check the shared secret on workflow callbacks.

    Raises:
        HTTPException: 401 if a secret is configured and the header is
                       missing or wrong
    """
    secret = services.settings.report_callback_secret
    if not secret:
        return

    provided = (x_n8n_secret or "").encode("utf-8")
    if not hmac.compare_digest(provided, secret.encode("utf-8")):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )
