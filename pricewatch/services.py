"""Wiring of stores, clients and services shared by request handlers."""

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

import httpx

from pricewatch.analytics.dispatcher import ReportDispatcher
from pricewatch.analytics.service import AnalyticsService
from pricewatch.config import Settings
from pricewatch.db.products import ProductStore
from pricewatch.db.reports import ReportLocation, ReportLocator
from pricewatch.identity.lookup import ProductLookup
from pricewatch.identity.resolver import MerchantResolver
from pricewatch.scrape.inflight import InFlightGuard
from pricewatch.scrape.trigger import ScrapeTrigger
from pricewatch.scrape.workflow import ScrapeWorkflowClient


@dataclass
class Services:
    settings: Settings
    store: ProductStore
    locator: ReportLocator
    lookup: ProductLookup
    scrape_trigger: ScrapeTrigger
    dispatcher: ReportDispatcher
    analytics: AnalyticsService
    guard: Optional[InFlightGuard] = None


def build_services(
    settings: Settings,
    mongo_client,
    http_client: httpx.AsyncClient,
    redis_client=None,
) -> Services:
    """
    Build the service graph from settings and shared clients.

    Args:
        settings: Application settings
        mongo_client: Async MongoDB client
        http_client: Shared outbound HTTP client
        redis_client: Optional Redis client for the scrape in-flight guard;
                      one is created from ``settings.redis_url`` if omitted
    """
    database = mongo_client[settings.mongodb_database]
    store = ProductStore(database[settings.products_collection])

    locator = ReportLocator(
        mongo_client,
        default_database=settings.mongodb_database,
        locations=[ReportLocation.parse(spec) for spec in settings.report_locations],
    )

    resolver = MerchantResolver(
        http_client,
        short_link_domain=settings.short_link_domain,
        timeout=settings.redirect_timeout_seconds,
    )
    lookup = ProductLookup(store, resolver, settings.merchant_host_patterns)

    guard = None
    if settings.scrape_dedupe_enabled:
        guard = InFlightGuard(
            redis_url=settings.redis_url,
            ttl_seconds=settings.scrape_inflight_ttl_seconds,
            client=redis_client,
        )

    scrape_trigger = ScrapeTrigger(
        ScrapeWorkflowClient(http_client, settings.scrape_webhook_url),
        store,
        guard,
        sync_timeout=settings.scrape_sync_timeout_seconds,
        dispatch_timeout=settings.scrape_dispatch_timeout_seconds,
        poll_attempts=settings.scrape_poll_attempts,
        poll_interval=settings.scrape_poll_interval_seconds,
        poll_budget=settings.scrape_poll_budget_seconds,
        merchant_patterns=settings.merchant_host_patterns,
    )

    dispatcher = ReportDispatcher(
        http_client,
        webhook_url=settings.report_webhook_url,
        callback_url=settings.report_callback_url,
        timeout=settings.report_dispatch_timeout_seconds,
    )
    analytics = AnalyticsService(
        store,
        locator,
        dispatcher,
        freshness_window=timedelta(minutes=settings.analytics_pending_freshness_minutes),
        poll_interval_seconds=settings.analytics_poll_interval_seconds,
    )

    return Services(
        settings=settings,
        store=store,
        locator=locator,
        lookup=lookup,
        scrape_trigger=scrape_trigger,
        dispatcher=dispatcher,
        analytics=analytics,
        guard=guard,
    )
