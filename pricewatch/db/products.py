"""Product identity store backed by a MongoDB collection."""

import logging
import re
from typing import Any, Optional, Sequence

from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from pricewatch.db.documents import to_object_id, utcnow
from pricewatch.db.models import AnalyticsStatus

logger = logging.getLogger(__name__)

# Fields an upsert payload may never overwrite
PROTECTED_FIELDS = frozenset({"_id", "analytics", "users", "createdAt", "updatedAt"})

MAX_SUGGEST_TOKENS = 6
TOKEN_SPLIT_RE = re.compile(r"[\s,]+")


class ProductStore:
    """
    Product documents keyed by canonical URL.

    The unique index on ``url`` is what keeps two requests for the same
    canonical URL from producing sibling documents; ``ensure_indexes`` must run
    before the store takes writes.
    """

    def __init__(self, collection):
        self.collection = collection

    async def ensure_indexes(self) -> None:
        """Create the unique URL index and the recency index."""
        await self.collection.create_index([("url", ASCENDING)], unique=True)
        await self.collection.create_index([("updatedAt", DESCENDING)])

    async def find_by_id(self, product_id: Any) -> Optional[dict]:
        """Find a product by id; malformed ids simply match nothing."""
        object_id = to_object_id(product_id)
        if object_id is None:
            return None
        return await self.collection.find_one({"_id": object_id})

    async def find_by_any_url(self, candidates: Sequence[str]) -> Optional[dict]:
        """
        Find the product stored under any of the candidate URLs.

        The unique index allows at most one match, but legacy data may still
        hold duplicates, in which case the most recently updated one wins.
        """
        urls = [c for c in candidates if c]
        if not urls:
            return None
        return await self.collection.find_one(
            {"url": {"$in": urls}},
            sort=[("updatedAt", DESCENDING)],
        )

    async def upsert_by_canonical_url(self, url: str, fields: dict) -> dict:
        """
        Insert or merge a product using ``url`` as the sole matching key.

        Args:
            url: Canonical URL of the product
            fields: Product fields to set (protected fields are ignored)

        Returns:
            The stored document after the write
        """
        now = utcnow()
        to_set = {k: v for k, v in fields.items() if k not in PROTECTED_FIELDS}
        to_set["url"] = url
        to_set["updatedAt"] = now

        update = {
            "$set": to_set,
            "$setOnInsert": {
                "createdAt": now,
                "analytics": {"status": AnalyticsStatus.IDLE.value},
                "users": [],
            },
        }

        try:
            return await self._upsert(url, update)
        except DuplicateKeyError:
            # A concurrent upsert inserted first; ours now matches it
            logger.info(f"Concurrent insert for {url}, merging into existing product")
            return await self._upsert(url, update)

    async def _upsert(self, url: str, update: dict) -> dict:
        return await self.collection.find_one_and_update(
            {"url": url},
            update,
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )

    async def set_analytics(self, product_id: Any, **fields) -> bool:
        """
        Update named ``analytics.*`` fields without touching the rest.

        Returns:
            True if a product matched
        """
        object_id = to_object_id(product_id)
        if object_id is None:
            return False

        update = {f"analytics.{name}": value for name, value in fields.items()}
        result = await self.collection.update_one({"_id": object_id}, {"$set": update})
        return result.matched_count > 0

    async def suggest(self, query: str, limit: int = 8) -> list[dict]:
        """Recently updated products whose text fields contain every token."""
        tokens = [t for t in TOKEN_SPLIT_RE.split(query or "") if t][:MAX_SUGGEST_TOKENS]
        if not tokens:
            return []

        clauses = []
        for token in tokens:
            pattern = {"$regex": re.escape(token), "$options": "i"}
            clauses.append({
                "$or": [
                    {"title": pattern},
                    {"description": pattern},
                    {"category": pattern},
                ]
            })

        cursor = self.collection.find(
            {"$and": clauses},
            {"title": 1, "image": 1, "currentPrice": 1, "currency": 1},
        ).sort("updatedAt", DESCENDING).limit(limit)
        return await cursor.to_list(length=limit)
