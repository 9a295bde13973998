"""Redis in-flight markers that suppress duplicate scrape workflow runs."""

import hashlib
import logging
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from pricewatch.config import settings
from pricewatch.db.documents import utcnow

logger = logging.getLogger(__name__)

KEY_PREFIX = "scrape:inflight"


class InFlightGuard:
    """
    Short-lived marker per canonical URL while a scrape is running.

    Redis being unavailable never blocks a scrape: the guard then reports
    every URL as free and logs a warning.
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        ttl_seconds: int = 120,
        client: Optional[redis.Redis] = None,
    ):
        self.redis_url = redis_url or settings.redis_url
        self.ttl_seconds = ttl_seconds
        self._redis: Optional[redis.Redis] = client

    async def _get_redis(self) -> redis.Redis:
        """Get or create Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._redis

    async def close(self):
        """Close Redis connection."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    def key_for(self, canonical_url: str) -> str:
        digest = hashlib.sha1(canonical_url.encode("utf-8")).hexdigest()
        return f"{KEY_PREFIX}:{digest}"

    async def acquire(self, canonical_url: str) -> bool:
        """
        Mark a URL as in flight.

        Returns:
            True if the caller owns the marker (or Redis is unavailable),
            False if another scrape for the URL is still running
        """
        try:
            redis_client = await self._get_redis()
            acquired = await redis_client.set(
                self.key_for(canonical_url),
                utcnow().isoformat(),
                nx=True,
                ex=self.ttl_seconds,
            )
        except RedisError as e:
            logger.warning(f"In-flight guard unavailable, proceeding without it: {e}")
            return True
        return bool(acquired)

    async def release(self, canonical_url: str) -> None:
        """Clear the marker for a URL."""
        try:
            redis_client = await self._get_redis()
            await redis_client.delete(self.key_for(canonical_url))
        except RedisError as e:
            logger.warning(f"Failed to release in-flight marker for {canonical_url}: {e}")
