"""Tests for the analytics report state machine."""

import json
from datetime import timedelta

import pytest
from bson import ObjectId

from pricewatch.analytics.dispatcher import ReportDispatcher
from pricewatch.analytics.service import AnalyticsService, ReportCallback
from pricewatch.db.documents import as_utc, utcnow
from pricewatch.db.models import AnalyticsStatus
from pricewatch.errors import InvalidPayloadError, ProductNotFoundError

from conftest import CALLBACK_URL, REPORT_WEBHOOK, raise_connect_error, raise_timeout, respond

PRODUCT_URL = "https://www.amazon.com/dp/B0TESTXXXX"


@pytest.fixture
def dispatcher(http_client):
    return ReportDispatcher(http_client, REPORT_WEBHOOK, callback_url=CALLBACK_URL, timeout=5)


@pytest.fixture
def service(store, locator, dispatcher):
    return AnalyticsService(store, locator, dispatcher, freshness_window=timedelta(minutes=10))


async def product_id_of(store):
    doc = await store.upsert_by_canonical_url(PRODUCT_URL, {"title": "Echo Dot"})
    return str(doc["_id"])


@pytest.mark.asyncio
async def test_trigger_twice_dispatches_once(service, dispatcher, store, webhooks):
    webhooks.on(REPORT_WEBHOOK, respond(200))
    product_id = await product_id_of(store)

    first = await service.trigger(product_id)
    second = await service.trigger(product_id)
    await dispatcher.drain()

    assert first.to_dict() == {"ok": True, "status": "pending", "retriggered": True}
    assert second.to_dict() == {"ok": True, "status": "pending", "retriggered": False}
    assert first.http_status == 202
    assert len(webhooks.calls_to(REPORT_WEBHOOK)) == 1

    (request,) = webhooks.calls_to(REPORT_WEBHOOK)
    assert json.loads(request.content) == {
        "productId": product_id,
        "productUrl": PRODUCT_URL,
        "callbackUrl": CALLBACK_URL,
    }


@pytest.mark.asyncio
async def test_trigger_sets_pending_fields(service, dispatcher, store, webhooks):
    webhooks.on(REPORT_WEBHOOK, respond(200))
    product_id = await product_id_of(store)
    await store.set_analytics(product_id, status="failed", error="old error", completedAt=utcnow())

    await service.trigger(product_id)
    await dispatcher.drain()

    analytics = (await store.find_by_id(product_id))["analytics"]
    assert analytics["status"] == "pending"
    assert analytics["error"] is None
    assert analytics["completedAt"] is None
    assert as_utc(analytics["requestedAt"]) > utcnow() - timedelta(minutes=1)


@pytest.mark.asyncio
async def test_stale_pending_is_retriggered(service, dispatcher, store, webhooks):
    webhooks.on(REPORT_WEBHOOK, respond(200))
    product_id = await product_id_of(store)
    await store.set_analytics(
        product_id, status="pending", requestedAt=utcnow() - timedelta(minutes=30)
    )

    result = await service.trigger(product_id)
    await dispatcher.drain()

    assert result.retriggered
    assert len(webhooks.calls_to(REPORT_WEBHOOK)) == 1


@pytest.mark.asyncio
async def test_force_retriggers_fresh_pending_and_existing_report(
    service, dispatcher, store, locator, webhooks
):
    webhooks.on(REPORT_WEBHOOK, respond(200))
    product_id = await product_id_of(store)
    await locator.upsert_report(product_id, {"deal_score": 80})
    await store.set_analytics(product_id, status="pending", requestedAt=utcnow())

    result = await service.trigger(product_id, force=True)
    await dispatcher.drain()

    assert result.to_dict() == {"ok": True, "status": "pending", "retriggered": True}
    assert len(webhooks.calls_to(REPORT_WEBHOOK)) == 1


@pytest.mark.asyncio
async def test_existing_report_short_circuits(service, store, locator, webhooks):
    product_id = await product_id_of(store)
    await locator.upsert_report(product_id, {"deal_score": 80})

    result = await service.trigger(product_id)

    assert result.to_dict() == {"ok": True, "status": "complete", "retriggered": False}
    assert result.http_status == 200
    assert webhooks.requests == []


@pytest.mark.asyncio
async def test_unconfigured_webhook_is_poll_only(store, locator, http_client, webhooks):
    service = AnalyticsService(store, locator, ReportDispatcher(http_client, webhook_url=""))
    product_id = await product_id_of(store)

    result = await service.trigger(product_id)

    assert result.to_dict() == {"ok": True, "status": "pending", "retriggered": False}
    assert (await store.find_by_id(product_id))["analytics"]["status"] == "idle"
    assert webhooks.requests == []


@pytest.mark.asyncio
@pytest.mark.parametrize("product_id", [str(ObjectId()), "not-an-id"])
async def test_trigger_unknown_product(service, product_id):
    with pytest.raises(ProductNotFoundError):
        await service.trigger(product_id)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "failure, reason",
    [
        (respond(500, text="boom"), "Analytics workflow returned HTTP 500"),
        (raise_connect_error, "connection refused"),
    ],
)
async def test_dispatch_failure_marks_failed(service, dispatcher, store, webhooks, failure, reason):
    webhooks.on(REPORT_WEBHOOK, failure)
    product_id = await product_id_of(store)

    result = await service.trigger(product_id)
    assert result.status == AnalyticsStatus.PENDING
    await dispatcher.drain()

    analytics = (await store.find_by_id(product_id))["analytics"]
    assert analytics["status"] == "failed"
    assert analytics["error"] == reason
    assert analytics["completedAt"] is not None


@pytest.mark.asyncio
async def test_dispatch_timeout_leaves_pending(service, dispatcher, store, webhooks):
    webhooks.on(REPORT_WEBHOOK, raise_timeout)
    product_id = await product_id_of(store)

    await service.trigger(product_id)
    await dispatcher.drain()

    assert (await store.find_by_id(product_id))["analytics"]["status"] == "pending"


@pytest.mark.asyncio
async def test_poll_prefers_external_report(service, store, mongo_client):
    product_id = await product_id_of(store)
    await store.set_analytics(product_id, status="complete", data={"deal_score": 5})
    await mongo_client["analyzed"]["analyzed"].insert_one(
        {"_id": ObjectId(product_id), "deal_score": 91, "deal_verdict": "Great deal"}
    )

    body = await service.poll(product_id, debug=True)

    assert body["analytics"]["status"] == "complete"
    assert body["analytics"]["data"]["_id"] == product_id
    assert body["analytics"]["summary"]["dealScore"] == 91
    assert body["debug"] == {
        "matched": "id:analyzed/analyzed:object_id",
        "productUrl": PRODUCT_URL,
    }


@pytest.mark.asyncio
async def test_poll_embedded_states(service, store):
    product_id = await product_id_of(store)

    assert (await service.poll(product_id))["analytics"] == {"status": "idle"}

    await store.set_analytics(product_id, status="pending", requestedAt=utcnow())
    pending = (await service.poll(product_id))["analytics"]
    assert pending["status"] == "pending"
    assert pending["pollAfterSeconds"] == 4

    await store.set_analytics(product_id, status="failed", error="Scraper blocked")
    failed = await service.poll(product_id, debug=True)
    assert failed["analytics"]["error"] == "Scraper blocked"
    assert failed["debug"]["matched"] == "embedded"


@pytest.mark.asyncio
async def test_poll_unknown_product(service):
    with pytest.raises(ProductNotFoundError):
        await service.poll(str(ObjectId()))


@pytest.mark.asyncio
async def test_callback_failure(service, store, mongo_client):
    product_id = await product_id_of(store)

    status = await service.record_callback(
        ReportCallback(productId=product_id, status="failed", error="Scraper blocked")
    )

    assert status == AnalyticsStatus.FAILED
    analytics = (await store.find_by_id(product_id))["analytics"]
    assert analytics["status"] == "failed"
    assert analytics["error"] == "Scraper blocked"
    assert await mongo_client["analyzed"]["analyzed"].count_documents({}) == 0


@pytest.mark.asyncio
async def test_callback_error_without_status_is_failure(service, store):
    product_id = await product_id_of(store)

    status = await service.record_callback(ReportCallback(productId=product_id, error="timeout"))

    assert status == AnalyticsStatus.FAILED


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error, reason",
    [
        ({"message": "Scraper blocked", "code": 403}, "Scraper blocked"),
        ({"code": 403}, '{"code": 403}'),
        (["timeout"], '["timeout"]'),
    ],
)
async def test_callback_error_object_is_failure(service, store, error, reason):
    product_id = await product_id_of(store)
    await store.set_analytics(product_id, status="pending", requestedAt=utcnow())

    status = await service.record_callback(ReportCallback(productId=product_id, error=error))

    assert status == AnalyticsStatus.FAILED
    analytics = (await store.find_by_id(product_id))["analytics"]
    assert analytics["status"] == "failed"
    assert analytics["error"] == reason


@pytest.mark.asyncio
async def test_callback_failed_status_gets_default_reason(service, store):
    product_id = await product_id_of(store)

    await service.record_callback(ReportCallback(productId=product_id, status="failed"))

    assert (await store.find_by_id(product_id))["analytics"]["error"] == "Workflow failed"


@pytest.mark.asyncio
async def test_callback_success_stores_inline_and_report(service, store, mongo_client):
    product_id = await product_id_of(store)
    data = {"analytics_payload": {"deal_score": 88, "deal_verdict": "Good"}, "run": 3}

    status = await service.record_callback(
        ReportCallback(productId=product_id, status="complete", data=data)
    )

    assert status == AnalyticsStatus.COMPLETE
    analytics = (await store.find_by_id(product_id))["analytics"]
    assert analytics["status"] == "complete"
    assert analytics["data"] == data
    assert analytics["error"] is None

    report = await mongo_client["analyzed"]["analyzed"].find_one({"productId": product_id})
    assert report["deal_score"] == 88
    assert "run" not in report

    # The stored report is now what polling returns
    body = await service.poll(product_id, debug=True)
    assert body["debug"]["matched"] == "productId"
    assert body["analytics"]["summary"]["dealVerdict"] == "Good"


@pytest.mark.asyncio
async def test_callback_requires_product_id(service):
    with pytest.raises(InvalidPayloadError):
        await service.record_callback(ReportCallback(status="complete"))


@pytest.mark.asyncio
async def test_callback_unknown_product_writes_nothing(service, mongo_client):
    with pytest.raises(ProductNotFoundError):
        await service.record_callback(
            ReportCallback(productId=str(ObjectId()), data={"deal_score": 1})
        )

    assert await mongo_client["analyzed"]["analyzed"].count_documents({}) == 0
