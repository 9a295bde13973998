"""Scrape workflow trigger and outcome normalization."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Iterable, Optional

import httpx

from pricewatch import metrics
from pricewatch.db.documents import utcnow
from pricewatch.db.products import ProductStore
from pricewatch.identity.canonicalize import build_url_candidates, canonical_url
from pricewatch.identity.merchants import DEFAULT_MERCHANT_PATTERNS
from pricewatch.scrape.extractors import extract_product_id, extract_product_payload
from pricewatch.scrape.inflight import InFlightGuard
from pricewatch.scrape.pricing import merge_price_sample
from pricewatch.scrape.workflow import (
    ScrapeWorkflowClient,
    parse_json_body,
    workflow_error_message,
)

logger = logging.getLogger(__name__)

MSG_NOT_CONFIGURED = "Scrape workflow is not configured."
MSG_IN_FLIGHT = "This product is already being scraped. Check back shortly."
MSG_STARTED = "Scrape started. Check back shortly."
MSG_STILL_RUNNING = "The scrape workflow is still running. Check back shortly."
MSG_NO_PAYLOAD = (
    "Workflow finished, but no product payload was returned. "
    "The product may still be saving, please refresh in a moment."
)
MSG_UNREACHABLE = "Failed to reach workflow"


class ScrapeStatus(str, Enum):
    COMPLETE = "complete"
    QUEUED = "queued"
    FAILED = "failed"


@dataclass
class ScrapeOutcome:
    """Client-visible result of a scrape trigger."""

    status: ScrapeStatus
    message: Optional[str] = None
    product_id: Optional[str] = None

    @classmethod
    def complete(cls, product_id: str) -> "ScrapeOutcome":
        return cls(ScrapeStatus.COMPLETE, product_id=product_id)

    @classmethod
    def queued(cls, message: str) -> "ScrapeOutcome":
        return cls(ScrapeStatus.QUEUED, message=message)

    @classmethod
    def failed(cls, message: str) -> "ScrapeOutcome":
        return cls(ScrapeStatus.FAILED, message=message)

    def to_dict(self) -> dict:
        body: dict = {"status": self.status.value}
        if self.product_id:
            body["productId"] = self.product_id
        if self.message:
            body["message"] = self.message
        return body


class ScrapeTrigger:
    """
    Invoke the scrape workflow and normalize its responses.

    Two modes share the same guard and classification rules:

    - ``scrape_and_store`` waits for the workflow (synchronous mode). A product
      payload in the response is merged and upserted; an empty 2xx response
      means the workflow stores the product itself, so the store is polled.
    - ``dispatch`` waits only briefly (fire-and-return mode). A product id in
      the response completes immediately; anything else, including a timeout,
      is reported as queued.
    """

    def __init__(
        self,
        workflow: ScrapeWorkflowClient,
        store: ProductStore,
        guard: Optional[InFlightGuard] = None,
        *,
        sync_timeout: float = 300.0,
        dispatch_timeout: float = 8.0,
        poll_attempts: int = 12,
        poll_interval: float = 1.0,
        poll_budget: Optional[float] = None,
        merchant_patterns: Iterable[str] = DEFAULT_MERCHANT_PATTERNS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.workflow = workflow
        self.store = store
        self.guard = guard
        self.sync_timeout = sync_timeout
        self.dispatch_timeout = dispatch_timeout
        self.poll_attempts = poll_attempts
        self.poll_interval = poll_interval
        self.poll_budget = poll_budget
        self.merchant_patterns = tuple(merchant_patterns)
        self._sleep = sleep

    async def scrape_and_store(self, url: str) -> ScrapeOutcome:
        """Synchronous mode: wait for the workflow and store its result."""
        return await self._guarded(url, "sync", self._scrape_and_store)

    async def dispatch(self, url: str) -> ScrapeOutcome:
        """Fire-and-return mode: short wait, timeouts count as queued."""
        return await self._guarded(url, "dispatch", self._dispatch)

    async def _guarded(
        self,
        url: str,
        mode: str,
        run: Callable[[str], Awaitable[ScrapeOutcome]],
    ) -> ScrapeOutcome:
        trimmed = (url or "").strip()

        if not self.workflow.configured:
            outcome = ScrapeOutcome.failed(MSG_NOT_CONFIGURED)
            metrics.record_scrape_trigger(mode, outcome.status.value)
            return outcome

        key = canonical_url(trimmed, self.merchant_patterns)
        if self.guard is not None and not await self.guard.acquire(key):
            logger.info(f"Scrape already in flight for {key}")
            outcome = ScrapeOutcome.queued(MSG_IN_FLIGHT)
            metrics.record_scrape_trigger(mode, outcome.status.value)
            return outcome

        try:
            outcome = await run(trimmed)
        except Exception:
            await self._release(key)
            raise

        # A queued workflow is still running; its marker expires on its own
        if outcome.status != ScrapeStatus.QUEUED:
            await self._release(key)

        metrics.record_scrape_trigger(mode, outcome.status.value)
        logger.info(
            f"Scrape {mode} for {trimmed}: {outcome.status.value}"
            + (f" ({outcome.product_id})" if outcome.product_id else "")
        )
        return outcome

    async def _release(self, key: str) -> None:
        if self.guard is not None:
            await self.guard.release(key)

    async def _scrape_and_store(self, url: str) -> ScrapeOutcome:
        try:
            response = await self.workflow.submit(url, timeout=self.sync_timeout)
        except httpx.TimeoutException:
            return ScrapeOutcome.queued(MSG_STILL_RUNNING)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning(f"Scrape workflow request failed for {url}: {e}")
            return ScrapeOutcome.failed(str(e) or MSG_UNREACHABLE)

        if not response.is_success:
            return ScrapeOutcome.failed(workflow_error_message(response))

        payload = extract_product_payload(parse_json_body(response))
        if payload is None:
            product_id = await self._wait_for_product(url)
            if product_id:
                return ScrapeOutcome.complete(product_id)
            return ScrapeOutcome.queued(MSG_NO_PAYLOAD)

        product = await self.store_scraped_product(payload)
        return ScrapeOutcome.complete(str(product["_id"]))

    async def _dispatch(self, url: str) -> ScrapeOutcome:
        try:
            response = await self.workflow.submit(url, timeout=self.dispatch_timeout)
        except httpx.TimeoutException:
            # No response yet is not a failure: the workflow keeps running
            return ScrapeOutcome.queued(MSG_STARTED)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning(f"Scrape workflow dispatch failed for {url}: {e}")
            return ScrapeOutcome.failed(str(e) or MSG_UNREACHABLE)

        if not response.is_success:
            return ScrapeOutcome.failed(workflow_error_message(response))

        product_id = extract_product_id(parse_json_body(response))
        if product_id:
            return ScrapeOutcome.complete(product_id)
        return ScrapeOutcome.queued(MSG_STARTED)

    async def store_scraped_product(self, payload: dict) -> dict:
        """
        Merge a scraped payload into the store.

        An existing product found through any equivalent URL keeps its stored
        key; otherwise the canonical URL of the payload becomes the key.
        """
        source_url = payload["url"].strip()
        candidates = build_url_candidates(source_url, self.merchant_patterns)
        existing = await self.store.find_by_any_url(candidates)

        key = existing["url"] if existing else canonical_url(source_url, self.merchant_patterns)
        fields = merge_price_sample(payload, existing, utcnow())
        return await self.store.upsert_by_canonical_url(key, fields)

    async def _wait_for_product(self, url: str) -> Optional[str]:
        """Poll the store until the workflow has saved the product."""
        candidates = build_url_candidates(url, self.merchant_patterns)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.poll_budget if self.poll_budget else None

        for attempt in range(self.poll_attempts):
            product = await self.store.find_by_any_url(candidates)
            if product is not None:
                return str(product["_id"])

            if attempt == self.poll_attempts - 1:
                break
            if deadline is not None and loop.time() + self.poll_interval > deadline:
                break
            await self._sleep(self.poll_interval)

        logger.info(f"Product for {url} not stored after {self.poll_attempts} checks")
        return None
