"""Shared fixtures: in-memory MongoDB and Redis, stubbed workflow webhooks."""

import os

# Keep test runs from writing log files
os.environ.setdefault("LOG_DIR", "")

from typing import Callable, Optional

import httpx
import pytest
import pytest_asyncio
from fakeredis import FakeAsyncRedis, FakeServer
from mongomock_motor import AsyncMongoMockClient

from pricewatch.config import Settings
from pricewatch.db.products import ProductStore
from pricewatch.db.reports import ReportLocation, ReportLocator
from pricewatch.services import build_services

DATABASE = "pricewatch"
SCRAPE_WEBHOOK = "https://workflow.test/webhook/scrape"
REPORT_WEBHOOK = "https://workflow.test/webhook/report"
CALLBACK_URL = "https://pricewatch.test/api/products/report-callback"

REPORT_LOCATIONS = [
    "analyzed/analyzed",
    "analyzed/Analyzed",
    "Analyzed/analyzed",
    "Analyzed/Analyzed",
    "/analyzed",
    "/Analyzed",
]


def respond(status_code: int = 200, json=None, text: Optional[str] = None) -> Callable:
    """Responder that builds a fresh response for every request."""

    def responder(request: httpx.Request) -> httpx.Response:
        if json is not None:
            return httpx.Response(status_code, json=json)
        if text is not None:
            return httpx.Response(status_code, text=text)
        return httpx.Response(status_code)

    return responder


def raise_timeout(request: httpx.Request) -> httpx.Response:
    raise httpx.ReadTimeout("timed out", request=request)


def raise_connect_error(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("connection refused", request=request)


class WebhookStub:
    """Routes outbound requests by exact URL and records every call."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.responders: dict[str, Callable] = {}

    def on(self, url: str, responder: Callable) -> None:
        self.responders[url] = responder

    def calls_to(self, url: str) -> list[httpx.Request]:
        return [r for r in self.requests if str(r.url) == url]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        responder = self.responders.get(str(request.url))
        if responder is None:
            return httpx.Response(404, text="no route")
        return responder(request)


def make_settings(**overrides) -> Settings:
    values = {
        "scrape_webhook_url": SCRAPE_WEBHOOK,
        "report_webhook_url": REPORT_WEBHOOK,
        "report_callback_url": CALLBACK_URL,
        "report_callback_secret": "",
        "report_locations": REPORT_LOCATIONS,
        "mongodb_database": DATABASE,
        "scrape_poll_attempts": 2,
        "scrape_poll_interval_seconds": 0,
        "log_dir": "",
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def mongo_client():
    return AsyncMongoMockClient(tz_aware=True)


@pytest_asyncio.fixture
async def store(mongo_client):
    product_store = ProductStore(mongo_client[DATABASE]["products"])
    await product_store.ensure_indexes()
    return product_store


@pytest.fixture
def locator(mongo_client):
    return ReportLocator(
        mongo_client,
        default_database=DATABASE,
        locations=[ReportLocation.parse(spec) for spec in REPORT_LOCATIONS],
    )


@pytest.fixture
def fake_redis():
    # Fresh server per test; instances otherwise share state
    return FakeAsyncRedis(server=FakeServer(), decode_responses=True)


@pytest.fixture
def webhooks():
    return WebhookStub()


@pytest_asyncio.fixture
async def http_client(webhooks):
    async with httpx.AsyncClient(transport=httpx.MockTransport(webhooks)) as client:
        yield client


@pytest.fixture
def settings():
    return make_settings()


@pytest_asyncio.fixture
async def services(settings, mongo_client, http_client, fake_redis):
    built = build_services(settings, mongo_client, http_client, redis_client=fake_redis)
    await built.store.ensure_indexes()
    yield built
    await built.dispatcher.drain(timeout=5)


@pytest_asyncio.fixture
async def api_client(services):
    from pricewatch.main import app

    app.state.services = services
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://pricewatch.test") as client:
        yield client
