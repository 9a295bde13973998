"""Analyzed report lookup across legacy storage locations.

The external analytics workflow has written its reports to several
case-variant databases and collections over time, and with the product id
stored as an ObjectId, a plain string, or an extended-JSON ``{"$oid": ...}``
sub-document. Lookup is therefore a data-driven list of
``(location, id strategy)`` probes tried in order, first hit wins. New legacy
locations are added through configuration, not code.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence

from pymongo import DESCENDING

from pricewatch.db.documents import to_object_id, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReportLocation:
    """A database/collection pair; an empty database means the products one."""

    database: str
    collection: str

    @classmethod
    def parse(cls, spec: str) -> "ReportLocation":
        """Parse ``"database/collection"`` (or just ``"collection"``)."""
        database, _, collection = spec.strip().rpartition("/")
        if not collection:
            raise ValueError(f"Invalid report location: {spec!r}")
        return cls(database=database, collection=collection)

    def resolve(self, default_database: str) -> "ReportLocation":
        return ReportLocation(self.database or default_database, self.collection)

    @property
    def descriptor(self) -> str:
        return f"{self.database}/{self.collection}"


@dataclass(frozen=True)
class IdMatchStrategy:
    """Builds the ``_id`` filter for one stored id encoding."""

    name: str
    build_filter: Callable[[str], Optional[dict]]


def _object_id_filter(report_id: str) -> Optional[dict]:
    object_id = to_object_id(report_id)
    return {"_id": object_id} if object_id is not None else None


ID_STRATEGIES: tuple[IdMatchStrategy, ...] = (
    IdMatchStrategy("object_id", _object_id_filter),
    IdMatchStrategy("string", lambda report_id: {"_id": report_id}),
    IdMatchStrategy("ejson_oid", lambda report_id: {"_id.$oid": report_id}),
)


@dataclass
class ReportMatch:
    """A located report and the rule that found it."""

    document: dict
    source: str


class ReportLocator:
    """
    Find the current analyzed report for a product.

    Precedence:
    1. ``_id`` equal to the product id, probing every location with every id
       strategy (location order first, then strategy order)
    2. ``productId`` field in the primary location, newest first
    3. ``productUrl`` field in the primary location, newest first
    """

    def __init__(
        self,
        client,
        default_database: str,
        locations: Sequence[ReportLocation],
        strategies: Sequence[IdMatchStrategy] = ID_STRATEGIES,
    ):
        if not locations:
            raise ValueError("At least one report location is required")

        self.client = client
        self.locations: list[ReportLocation] = []
        seen = set()
        for location in locations:
            resolved = location.resolve(default_database)
            if resolved in seen:
                continue
            seen.add(resolved)
            self.locations.append(resolved)

        self.strategies = list(strategies)

    @property
    def primary(self) -> ReportLocation:
        """Location that callback payloads are written to."""
        return self.locations[0]

    def collection_for(self, location: ReportLocation):
        return self.client[location.database][location.collection]

    def probes(self) -> list[tuple[ReportLocation, IdMatchStrategy]]:
        """Ordered (location, strategy) pairs used for id lookups."""
        return [
            (location, strategy)
            for location in self.locations
            for strategy in self.strategies
        ]

    async def find_by_report_id(self, product_id: str) -> Optional[ReportMatch]:
        """Find a report stored under the product's own id."""
        for location, strategy in self.probes():
            query = strategy.build_filter(product_id)
            if query is None:
                continue
            doc = await self.collection_for(location).find_one(query)
            if doc:
                return ReportMatch(doc, f"id:{location.descriptor}:{strategy.name}")
        return None

    async def find_by_field(self, field: str, value: Any) -> Optional[ReportMatch]:
        """Newest report in the primary location with ``field == value``."""
        if not value:
            return None
        doc = await self.collection_for(self.primary).find_one(
            {field: value},
            sort=[("createdAt", DESCENDING)],
        )
        if doc:
            return ReportMatch(doc, field)
        return None

    async def find_current(
        self,
        product_id: str,
        product_url: Optional[str] = None,
    ) -> Optional[ReportMatch]:
        """Resolve the authoritative report by precedence, or None."""
        match = await self.find_by_report_id(product_id)
        if match:
            return match

        match = await self.find_by_field("productId", product_id)
        if match:
            return match

        return await self.find_by_field("productUrl", product_url)

    async def upsert_report(self, product_id: str, payload: dict) -> None:
        """Write a report payload to the primary location keyed by productId."""
        now = utcnow()
        fields = {k: v for k, v in payload.items() if k != "_id"}
        fields["productId"] = product_id
        fields["updatedAt"] = now

        update: dict[str, Any] = {"$set": fields}
        if "createdAt" not in fields:
            update["$setOnInsert"] = {"createdAt": now}

        await self.collection_for(self.primary).update_one(
            {"productId": product_id},
            update,
            upsert=True,
        )
        logger.debug(f"Stored report for {product_id} in {self.primary.descriptor}")
