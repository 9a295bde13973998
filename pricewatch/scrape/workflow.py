"""HTTP client for the external scrape workflow webhook."""

import logging
from typing import Any

import httpx

from pricewatch import metrics

logger = logging.getLogger(__name__)


class ScrapeWorkflowClient:
    """Posts product URLs to the scrape workflow webhook."""

    def __init__(self, client: httpx.AsyncClient, webhook_url: str):
        self.client = client
        self.webhook_url = webhook_url

    @property
    def configured(self) -> bool:
        return bool(self.webhook_url)

    async def submit(self, url: str, timeout: float) -> httpx.Response:
        """
        Send a URL to the workflow.

        Non-2xx responses are returned, not raised; transport errors and
        timeouts propagate as httpx exceptions for the caller to classify.
        """
        logger.debug(f"Submitting {url} to scrape workflow (timeout={timeout}s)")
        with metrics.workflow_request_duration_seconds.labels(workflow="scrape").time():
            return await self.client.post(
                self.webhook_url,
                json={"url": url},
                timeout=timeout,
            )


def parse_json_body(response: httpx.Response) -> Any:
    """Decode a JSON body, or None when it is empty or not JSON."""
    if not response.content or not response.content.strip():
        return None
    try:
        return response.json()
    except ValueError:
        return None


def workflow_error_message(response: httpx.Response) -> str:
    """Best user-facing message for a non-2xx workflow response."""
    try:
        text = response.text.strip()
    except UnicodeDecodeError:
        text = ""
    if text:
        return text
    return f"Workflow request failed ({response.status_code})"
