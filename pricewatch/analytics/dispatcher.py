"""Fire-and-forget dispatch of analytics report requests."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

import httpx

from pricewatch import metrics
from pricewatch.logging_config import get_logger

logger = logging.getLogger(__name__)

FailureHandler = Callable[[str], Awaitable[None]]


class ReportDispatcher:
    """
    Sends report requests to the analytics workflow in detached tasks.

    The request handler never waits for the webhook. Each task carries its own
    failure handling: a transport error or an error status invokes the
    ``on_failure`` callback with a reason. A timeout does not, since the
    workflow has usually received the request and reports back via callback.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        webhook_url: str,
        callback_url: str = "",
        timeout: float = 30.0,
    ):
        self.client = client
        self.webhook_url = webhook_url
        self.callback_url = callback_url
        self.timeout = timeout
        self._tasks: set[asyncio.Task] = set()

    @property
    def configured(self) -> bool:
        return bool(self.webhook_url)

    @property
    def pending_count(self) -> int:
        return len(self._tasks)

    def dispatch(
        self,
        product_id: str,
        product_url: Optional[str],
        on_failure: FailureHandler,
    ) -> asyncio.Task:
        """Start the webhook call and return without awaiting it."""
        task = asyncio.create_task(self._send(product_id, product_url, on_failure))
        # Keep a reference so the task is not garbage collected mid-flight
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Analytics dispatch task crashed", exc_info=exc)

    async def _send(
        self,
        product_id: str,
        product_url: Optional[str],
        on_failure: FailureHandler,
    ) -> None:
        log = get_logger(__name__, product_id=product_id)
        payload = {
            "productId": product_id,
            "productUrl": product_url,
            "callbackUrl": self.callback_url or None,
        }

        try:
            with metrics.workflow_request_duration_seconds.labels(workflow="report").time():
                response = await self.client.post(
                    self.webhook_url,
                    json=payload,
                    timeout=self.timeout,
                )
        except httpx.TimeoutException:
            log.info(f"Analytics workflow for {product_id} still running after {self.timeout}s")
            return
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            reason = str(e) or "Failed to trigger analytics workflow"
        else:
            if not response.is_error:
                log.debug("Analytics workflow accepted request")
                return
            reason = f"Analytics workflow returned HTTP {response.status_code}"

        log.warning(f"Analytics dispatch failed for {product_id}: {reason}")
        try:
            await on_failure(reason)
        except Exception:
            log.exception(f"Could not record analytics failure for {product_id}")

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight dispatches (used on shutdown and in tests)."""
        if self._tasks:
            await asyncio.wait(set(self._tasks), timeout=timeout)
