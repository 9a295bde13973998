"""Best-effort short-link resolution for merchant URLs."""

from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import urlsplit

import httpx

from pricewatch import metrics
from pricewatch.identity.merchants import DEFAULT_SHORT_LINK_DOMAIN, is_short_link_host

logger = logging.getLogger(__name__)


class MerchantResolver:
    """
    Follow a merchant short link to its final product URL.

    Only hosts under the configured short-link domain are ever fetched. The
    response body is never read; every failure is absorbed and reported as
    ``None`` so callers can carry on as if resolution was not attempted.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        short_link_domain: str = DEFAULT_SHORT_LINK_DOMAIN,
        timeout: float = 3.0,
    ):
        self.client = client
        self.short_link_domain = short_link_domain
        self.timeout = timeout

    def applies_to(self, url: str) -> bool:
        """Return True if the URL is on the short-link allowlist."""
        try:
            host = urlsplit((url or "").strip()).hostname
        except ValueError:
            return False
        return is_short_link_host(host, self.short_link_domain)

    async def resolve(self, url: str) -> Optional[str]:
        """
        Resolve a short link to the URL it redirects to.

        Args:
            url: Raw short-link URL

        Returns:
            Final URL after redirects, or None when the host is not allowed,
            nothing redirected, or the request failed
        """
        trimmed = (url or "").strip()
        if not self.applies_to(trimmed):
            return None

        try:
            # Streaming keeps the body undownloaded; we only need the final URL
            async with self.client.stream(
                "GET",
                trimmed,
                follow_redirects=True,
                timeout=self.timeout,
            ) as response:
                final_url = str(response.url)
                redirected = bool(response.history)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.debug(f"Short link resolution failed for {trimmed}: {e}")
            metrics.record_short_link_resolution("error")
            return None

        if not redirected or final_url == trimmed:
            metrics.record_short_link_resolution("not_redirected")
            return None

        logger.info(f"Resolved short link {trimmed} -> {final_url}")
        metrics.record_short_link_resolution("resolved")
        return final_url
