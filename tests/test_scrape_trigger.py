"""Tests for the scrape workflow trigger."""

import asyncio
import json

import httpx
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from pricewatch.scrape.inflight import InFlightGuard
from pricewatch.scrape.trigger import (
    MSG_IN_FLIGHT,
    MSG_NO_PAYLOAD,
    MSG_NOT_CONFIGURED,
    MSG_STARTED,
    MSG_STILL_RUNNING,
    ScrapeStatus,
    ScrapeTrigger,
)
from pricewatch.scrape.workflow import ScrapeWorkflowClient

from conftest import SCRAPE_WEBHOOK, raise_connect_error, raise_timeout, respond

RAW_URL = "https://www.amazon.com/Echo-Dot/dp/B0TESTXXXX/ref=sr_1_1?keywords=echo"
CANONICAL = "https://www.amazon.com/dp/B0TESTXXXX"
PRODUCT_ID = "65f0c0ffee0000000000beef"


class RecordingSleep:
    def __init__(self, on_sleep=None):
        self.calls = []
        self.on_sleep = on_sleep

    async def __call__(self, seconds):
        self.calls.append(seconds)
        if self.on_sleep is not None:
            await self.on_sleep()


@pytest.fixture
def guard(fake_redis):
    return InFlightGuard(client=fake_redis, ttl_seconds=120)


def make_trigger(http_client, store, guard=None, webhook_url=SCRAPE_WEBHOOK, **kwargs):
    kwargs.setdefault("poll_attempts", 3)
    kwargs.setdefault("poll_interval", 1.0)
    kwargs.setdefault("sleep", RecordingSleep())
    return ScrapeTrigger(
        ScrapeWorkflowClient(http_client, webhook_url),
        store,
        guard,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_dispatch_timeout_is_queued_not_failed(http_client, webhooks, store):
    webhooks.on(SCRAPE_WEBHOOK, raise_timeout)

    outcome = await make_trigger(http_client, store).dispatch(RAW_URL)

    assert outcome.status == ScrapeStatus.QUEUED
    assert outcome.to_dict() == {"status": "queued", "message": MSG_STARTED}


@pytest.mark.asyncio
async def test_dispatch_posts_url(http_client, webhooks, store):
    webhooks.on(SCRAPE_WEBHOOK, respond(200))

    await make_trigger(http_client, store).dispatch(f"  {RAW_URL}  ")

    (request,) = webhooks.calls_to(SCRAPE_WEBHOOK)
    assert request.method == "POST"
    assert json.loads(request.content) == {"url": RAW_URL}


@pytest.mark.asyncio
async def test_dispatch_returns_product_id_when_workflow_answers(http_client, webhooks, store):
    webhooks.on(SCRAPE_WEBHOOK, respond(200, json=[{"data": {"productId": PRODUCT_ID}}]))

    outcome = await make_trigger(http_client, store).dispatch(RAW_URL)

    assert outcome.to_dict() == {"status": "complete", "productId": PRODUCT_ID}


@pytest.mark.asyncio
async def test_dispatch_empty_success_is_queued(http_client, webhooks, store):
    webhooks.on(SCRAPE_WEBHOOK, respond(200))

    outcome = await make_trigger(http_client, store).dispatch(RAW_URL)

    assert outcome.status == ScrapeStatus.QUEUED


@pytest.mark.asyncio
async def test_dispatch_error_status_surfaces_body(http_client, webhooks, store):
    webhooks.on(SCRAPE_WEBHOOK, respond(500, text="  Unsupported store  "))

    outcome = await make_trigger(http_client, store).dispatch(RAW_URL)

    assert outcome.to_dict() == {"status": "failed", "message": "Unsupported store"}


@pytest.mark.asyncio
async def test_dispatch_error_status_without_body(http_client, webhooks, store):
    webhooks.on(SCRAPE_WEBHOOK, respond(502))

    outcome = await make_trigger(http_client, store).dispatch(RAW_URL)

    assert outcome.status == ScrapeStatus.FAILED
    assert outcome.message == "Workflow request failed (502)"


@pytest.mark.asyncio
async def test_dispatch_connection_error_fails(http_client, webhooks, store):
    webhooks.on(SCRAPE_WEBHOOK, raise_connect_error)

    outcome = await make_trigger(http_client, store).dispatch(RAW_URL)

    assert outcome.status == ScrapeStatus.FAILED
    assert outcome.message


@pytest.mark.asyncio
async def test_unconfigured_workflow_fails_without_request(http_client, webhooks, store):
    outcome = await make_trigger(http_client, store, webhook_url="").scrape_and_store(RAW_URL)

    assert outcome.to_dict() == {"status": "failed", "message": MSG_NOT_CONFIGURED}
    assert webhooks.requests == []


@pytest.mark.asyncio
async def test_sync_payload_is_stored_under_canonical_url(http_client, webhooks, store):
    webhooks.on(
        SCRAPE_WEBHOOK,
        respond(200, json={"url": RAW_URL, "title": "Echo Dot", "currentPrice": 49.99}),
    )

    outcome = await make_trigger(http_client, store).scrape_and_store(RAW_URL)

    assert outcome.status == ScrapeStatus.COMPLETE
    product = await store.find_by_id(outcome.product_id)
    assert product["url"] == CANONICAL
    assert product["title"] == "Echo Dot"
    assert [p["price"] for p in product["priceHistory"]] == [49.99]
    assert product["analytics"]["status"] == "idle"


@pytest.mark.asyncio
async def test_sync_payload_merges_into_existing_spelling(http_client, webhooks, store):
    legacy = await store.upsert_by_canonical_url(
        "http://amazon.com/dp/B0TESTXXXX",
        {"title": "Echo Dot", "priceHistory": [{"price": 59.99}]},
    )
    webhooks.on(
        SCRAPE_WEBHOOK,
        respond(200, json=[{"url": CANONICAL + "?th=1", "currentPrice": 49.99}]),
    )

    outcome = await make_trigger(http_client, store).scrape_and_store(RAW_URL)

    assert outcome.product_id == str(legacy["_id"])
    assert await store.collection.count_documents({}) == 1
    product = await store.find_by_id(legacy["_id"])
    assert product["url"] == "http://amazon.com/dp/B0TESTXXXX"
    assert [p["price"] for p in product["priceHistory"]] == [59.99, 49.99]
    assert product["lowestPrice"] == 49.99


@pytest.mark.asyncio
async def test_sync_products_identified_by_query_stay_separate(http_client, webhooks, store, guard):
    catalog = {
        "https://shop.example/product.php?id=1": {"title": "Widget A", "currentPrice": 10},
        "https://shop.example/product.php?id=2": {"title": "Gadget B", "currentPrice": 99},
    }

    def workflow(request):
        url = json.loads(request.content)["url"]
        return httpx.Response(200, json={"url": url, **catalog[url]})

    webhooks.on(SCRAPE_WEBHOOK, workflow)
    trigger = make_trigger(http_client, store, guard)

    first = await trigger.scrape_and_store("https://shop.example/product.php?id=1")
    second = await trigger.scrape_and_store("https://shop.example/product.php?id=2")

    assert first.status == second.status == ScrapeStatus.COMPLETE
    assert first.product_id != second.product_id
    assert guard.key_for("https://shop.example/product.php?id=1") != guard.key_for(
        "https://shop.example/product.php?id=2"
    )

    widget = await store.find_by_id(first.product_id)
    gadget = await store.find_by_id(second.product_id)
    assert widget["url"] == "https://shop.example/product.php?id=1"
    assert widget["title"] == "Widget A"
    assert [p["price"] for p in widget["priceHistory"]] == [10.0]
    assert gadget["title"] == "Gadget B"
    assert [p["price"] for p in gadget["priceHistory"]] == [99.0]


@pytest.mark.asyncio
async def test_sync_empty_response_polls_until_workflow_saves(http_client, webhooks, store):
    webhooks.on(SCRAPE_WEBHOOK, respond(200))

    async def workflow_saves_product():
        await store.upsert_by_canonical_url(CANONICAL, {"title": "Echo Dot"})

    sleep = RecordingSleep(on_sleep=workflow_saves_product)
    outcome = await make_trigger(http_client, store, sleep=sleep).scrape_and_store(RAW_URL)

    assert outcome.status == ScrapeStatus.COMPLETE
    assert sleep.calls == [1.0]


@pytest.mark.asyncio
async def test_sync_empty_response_gives_up_as_queued(http_client, webhooks, store):
    webhooks.on(SCRAPE_WEBHOOK, respond(200, text="not json"))

    sleep = RecordingSleep()
    outcome = await make_trigger(http_client, store, sleep=sleep).scrape_and_store(RAW_URL)

    assert outcome.to_dict() == {"status": "queued", "message": MSG_NO_PAYLOAD}
    assert len(sleep.calls) == 2


@pytest.mark.asyncio
async def test_sync_poll_respects_wall_clock_budget(http_client, webhooks, store):
    webhooks.on(SCRAPE_WEBHOOK, respond(200))

    slept = []

    async def real_sleep(seconds):
        slept.append(seconds)
        await asyncio.sleep(seconds)

    trigger = make_trigger(
        http_client,
        store,
        poll_attempts=100,
        poll_interval=0.05,
        poll_budget=0.12,
        sleep=real_sleep,
    )
    outcome = await trigger.scrape_and_store(RAW_URL)

    assert outcome.status == ScrapeStatus.QUEUED
    assert 1 <= len(slept) <= 3


@pytest.mark.asyncio
async def test_sync_timeout_is_queued(http_client, webhooks, store):
    webhooks.on(SCRAPE_WEBHOOK, raise_timeout)

    outcome = await make_trigger(http_client, store).scrape_and_store(RAW_URL)

    assert outcome.to_dict() == {"status": "queued", "message": MSG_STILL_RUNNING}


@pytest.mark.asyncio
async def test_in_flight_url_is_not_sent_twice(http_client, webhooks, store, guard):
    webhooks.on(SCRAPE_WEBHOOK, raise_timeout)
    trigger = make_trigger(http_client, store, guard)

    first = await trigger.dispatch(RAW_URL)
    # Different spelling, same canonical URL
    second = await trigger.dispatch(CANONICAL + "/")

    assert first.message == MSG_STARTED
    assert second.to_dict() == {"status": "queued", "message": MSG_IN_FLIGHT}
    assert len(webhooks.calls_to(SCRAPE_WEBHOOK)) == 1


@pytest.mark.asyncio
async def test_finished_scrape_releases_marker(http_client, webhooks, store, guard, fake_redis):
    webhooks.on(SCRAPE_WEBHOOK, respond(200, json={"url": RAW_URL, "currentPrice": 10}))
    trigger = make_trigger(http_client, store, guard)

    await trigger.scrape_and_store(RAW_URL)
    await trigger.scrape_and_store(RAW_URL)

    assert len(webhooks.calls_to(SCRAPE_WEBHOOK)) == 2
    assert await fake_redis.exists(guard.key_for(CANONICAL)) == 0


@pytest.mark.asyncio
async def test_failed_scrape_releases_marker(http_client, webhooks, store, guard, fake_redis):
    webhooks.on(SCRAPE_WEBHOOK, respond(500, text="boom"))

    outcome = await make_trigger(http_client, store, guard).dispatch(RAW_URL)

    assert outcome.status == ScrapeStatus.FAILED
    assert await fake_redis.exists(guard.key_for(CANONICAL)) == 0


class BrokenRedis:
    async def set(self, *args, **kwargs):
        raise RedisConnectionError("redis down")

    async def delete(self, *args, **kwargs):
        raise RedisConnectionError("redis down")


@pytest.mark.asyncio
async def test_guard_failure_does_not_block_scrape(http_client, webhooks, store):
    webhooks.on(SCRAPE_WEBHOOK, respond(200, json={"productId": PRODUCT_ID}))
    guard = InFlightGuard(client=BrokenRedis())

    outcome = await make_trigger(http_client, store, guard).dispatch(RAW_URL)

    assert outcome.status == ScrapeStatus.COMPLETE


@pytest.mark.asyncio
async def test_guard_marker_has_ttl(guard, fake_redis):
    assert await guard.acquire(CANONICAL)
    assert not await guard.acquire(CANONICAL)

    ttl = await fake_redis.ttl(guard.key_for(CANONICAL))
    assert 0 < ttl <= 120

    await guard.release(CANONICAL)
    assert await guard.acquire(CANONICAL)
