"""MongoDB client setup."""

import logging

from pymongo import AsyncMongoClient

from pricewatch.config import settings

logger = logging.getLogger(__name__)


def create_mongo_client(uri: str | None = None) -> AsyncMongoClient:
    """Create the shared async MongoDB client (datetimes come back tz-aware)."""
    uri = uri or settings.mongodb_uri
    logger.info("Connecting to MongoDB")
    return AsyncMongoClient(uri, tz_aware=True)
