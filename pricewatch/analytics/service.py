"""Per-product analytics report state machine.

The embedded ``analytics`` sub-record on a product moves through
``idle -> pending -> complete | failed``. A forced trigger (or a stale
pending request) moves it back to ``pending``. The full report itself lives
in separately stored analyzed-report documents located by ``ReportLocator``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from pricewatch import metrics
from pricewatch.analytics.dispatcher import ReportDispatcher
from pricewatch.analytics.payload import summarize_report, unwrap_report_payload
from pricewatch.db.documents import as_utc, serialize_document, utcnow
from pricewatch.db.models import AnalyticsStatus
from pricewatch.db.products import ProductStore
from pricewatch.db.reports import ReportLocator
from pricewatch.errors import InvalidPayloadError, ProductNotFoundError

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_REASON = "Workflow failed"


class ReportCallback(BaseModel):
    """Body posted back by the analytics workflow."""

    model_config = ConfigDict(extra="ignore")

    productId: str | None = None
    status: str | None = None
    error: str | None = None
    data: Any = None

    @field_validator("error", mode="before")
    @classmethod
    def stringify_error(cls, value: Any) -> Optional[str]:
        """Workflows sometimes post the error as an object; any truthy value is a failure."""
        if not value:
            return None
        if isinstance(value, str):
            return value
        if isinstance(value, dict) and isinstance(value.get("message"), str) and value["message"]:
            return value["message"]
        return json.dumps(serialize_document(value), default=str)


@dataclass
class TriggerResult:
    status: AnalyticsStatus
    retriggered: bool

    @property
    def http_status(self) -> int:
        return 202 if self.status == AnalyticsStatus.PENDING else 200

    def to_dict(self) -> dict:
        return {"ok": True, "status": self.status.value, "retriggered": self.retriggered}


class AnalyticsService:
    """Trigger, poll and complete analytics reports for products."""

    def __init__(
        self,
        store: ProductStore,
        locator: ReportLocator,
        dispatcher: ReportDispatcher,
        freshness_window: timedelta = timedelta(minutes=10),
        poll_interval_seconds: int = 4,
    ):
        self.store = store
        self.locator = locator
        self.dispatcher = dispatcher
        self.freshness_window = freshness_window
        self.poll_interval_seconds = poll_interval_seconds

    async def _get_product(self, product_id: str) -> dict:
        product = await self.store.find_by_id(product_id)
        if product is None:
            raise ProductNotFoundError(product_id)
        return product

    def is_fresh_pending(self, analytics: Any) -> bool:
        """True if a pending request was made inside the freshness window."""
        if not isinstance(analytics, dict):
            return False
        if analytics.get("status") != AnalyticsStatus.PENDING.value:
            return False
        requested_at = as_utc(analytics.get("requestedAt"))
        if requested_at is None:
            return False
        return utcnow() - requested_at < self.freshness_window

    async def trigger(self, product_id: str, force: bool = False) -> TriggerResult:
        """
        Request an analytics report for a product.

        Args:
            product_id: Product id
            force: Re-run even if a report exists or a request is pending

        Returns:
            TriggerResult; ``retriggered`` is True only when the workflow was
            actually contacted

        Raises:
            ProductNotFoundError: If the product does not exist
        """
        product = await self._get_product(product_id)
        product_url = product.get("url")

        if not force:
            existing = await self.locator.find_current(product_id, product_url)
            if existing is not None:
                return self._result(AnalyticsStatus.COMPLETE, False)

        if not self.dispatcher.configured:
            # Poll-only deployment: the workflow is started elsewhere
            return self._result(AnalyticsStatus.PENDING, False)

        if not force and self.is_fresh_pending(product.get("analytics")):
            return self._result(AnalyticsStatus.PENDING, False)

        await self.store.set_analytics(
            product_id,
            status=AnalyticsStatus.PENDING.value,
            requestedAt=utcnow(),
            completedAt=None,
            error=None,
        )

        async def on_failure(reason: str) -> None:
            await self.mark_failed(product_id, reason)

        self.dispatcher.dispatch(str(product["_id"]), product_url, on_failure)
        logger.info(f"Triggered analytics report for {product_id} (force={force})")
        return self._result(AnalyticsStatus.PENDING, True)

    def _result(self, status: AnalyticsStatus, retriggered: bool) -> TriggerResult:
        metrics.record_analytics_trigger(status.value, retriggered)
        return TriggerResult(status, retriggered)

    async def mark_failed(self, product_id: str, reason: str) -> None:
        await self.store.set_analytics(
            product_id,
            status=AnalyticsStatus.FAILED.value,
            completedAt=utcnow(),
            error=reason,
        )

    async def poll(self, product_id: str, debug: bool = False) -> dict:
        """
        Current analytics state for a product.

        A separately stored report wins over the embedded sub-record; see
        ``ReportLocator`` for the lookup order.

        Raises:
            ProductNotFoundError: If the product does not exist
        """
        product = await self._get_product(product_id)
        product_url = product.get("url")

        match = await self.locator.find_current(product_id, product_url)
        if match is not None:
            data = serialize_document(match.document)
            analytics = {
                "status": AnalyticsStatus.COMPLETE.value,
                "data": data,
                "summary": summarize_report(data),
            }
            source = match.source
        else:
            embedded = product.get("analytics")
            analytics = serialize_document(embedded) if isinstance(embedded, dict) else {}
            analytics.setdefault("status", AnalyticsStatus.IDLE.value)
            if analytics["status"] == AnalyticsStatus.PENDING.value:
                analytics["pollAfterSeconds"] = self.poll_interval_seconds
            elif analytics["status"] == AnalyticsStatus.COMPLETE.value:
                analytics["summary"] = summarize_report(analytics.get("data"))
            source = "embedded"

        metrics.record_analytics_poll(source.split(":", 1)[0])

        body: dict = {"analytics": analytics}
        if debug:
            body["debug"] = {"matched": source, "productUrl": product_url}
        return body

    async def record_callback(self, callback: ReportCallback) -> AnalyticsStatus:
        """
        Store a workflow result.

        A failure (explicit status or any error text) only updates the embedded
        sub-record. A success stores the data inline and upserts the report
        payload into the primary report location.

        Raises:
            InvalidPayloadError: If productId is missing
            ProductNotFoundError: If no product matches
        """
        product_id = (callback.productId or "").strip()
        if not product_id:
            raise InvalidPayloadError("Missing productId")

        failed = callback.status == AnalyticsStatus.FAILED.value or bool(callback.error)
        now = utcnow()

        if failed:
            status = AnalyticsStatus.FAILED
            matched = await self.store.set_analytics(
                product_id,
                status=status.value,
                completedAt=now,
                error=callback.error or DEFAULT_FAILURE_REASON,
            )
        else:
            status = AnalyticsStatus.COMPLETE
            data = callback.data if callback.data is not None else {}
            matched = await self.store.set_analytics(
                product_id,
                status=status.value,
                completedAt=now,
                error=None,
                data=data,
            )

        if not matched:
            raise ProductNotFoundError(product_id)

        if not failed:
            report = unwrap_report_payload(data)
            if isinstance(report, dict):
                await self.locator.upsert_report(product_id, report)

        metrics.record_report_callback(status.value)
        logger.info(f"Recorded analytics callback for {product_id}: {status.value}")
        return status
