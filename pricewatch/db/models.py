"""Document schemas for products and their analytics status.

Products are stored as MongoDB documents with camelCase fields, since the
external scrape workflow writes them directly as well. These models describe
the fields this service reads and writes; unknown fields are tolerated, and
loosely typed values (``"1,299"``, ``"1,234 ratings"``, ``null`` flags) are
coerced or dropped rather than rejected.
"""

import math
import re
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field

from pricewatch.db.documents import as_utc, serialize_document
from pricewatch.identity.merchants import merchant_name

_NUMBER_RE = re.compile(r"-?\d[\d,]*(?:\.\d+)?")
_TRUE_STRINGS = {"1", "true", "yes", "y"}


class AnalyticsStatus(str, Enum):
    """Lifecycle of the per-product analytics report."""
    IDLE = "idle"
    PENDING = "pending"
    COMPLETE = "complete"
    FAILED = "failed"


def loose_float(value: Any) -> Optional[float]:
    """Number from a float, int or price-like string (``"$1,299.00"``); else None."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, str):
        match = _NUMBER_RE.search(value)
        if not match:
            return None
        value = match.group().replace(",", "")
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def loose_int(value: Any) -> Optional[int]:
    number = loose_float(value)
    return int(number) if number is not None else None


def loose_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    if isinstance(value, (int, float)):
        return bool(value)
    return value is True


def loose_str(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None


def loose_status(value: Any) -> AnalyticsStatus:
    try:
        return AnalyticsStatus(value)
    except ValueError:
        return AnalyticsStatus.IDLE


LooseFloat = Annotated[Optional[float], BeforeValidator(loose_float)]
LooseInt = Annotated[Optional[int], BeforeValidator(loose_int)]
LooseBool = Annotated[bool, BeforeValidator(loose_bool)]
LooseStr = Annotated[Optional[str], BeforeValidator(loose_str)]
LooseDatetime = Annotated[Optional[datetime], BeforeValidator(as_utc)]


class PricePoint(BaseModel):
    model_config = ConfigDict(extra="ignore")

    price: float
    date: LooseDatetime = None


class AnalyticsRecord(BaseModel):
    """Embedded ``analytics`` sub-document of a product."""

    model_config = ConfigDict(extra="ignore")

    status: Annotated[AnalyticsStatus, BeforeValidator(loose_status)] = AnalyticsStatus.IDLE
    requestedAt: LooseDatetime = None
    completedAt: LooseDatetime = None
    error: LooseStr = None
    data: Any = None


class ProductResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    url: str
    merchant: str
    title: LooseStr = None
    currency: LooseStr = None
    image: LooseStr = None
    currentPrice: LooseFloat = None
    originalPrice: LooseFloat = None
    priceHistory: list[PricePoint] = Field(default_factory=list)
    lowestPrice: LooseFloat = None
    highestPrice: LooseFloat = None
    averagePrice: LooseFloat = None
    discountRate: LooseFloat = None
    description: LooseStr = None
    category: LooseStr = None
    reviewsCount: LooseInt = None
    isOutOfStock: LooseBool = False
    analytics: AnalyticsRecord = Field(default_factory=AnalyticsRecord)
    createdAt: LooseDatetime = None
    updatedAt: LooseDatetime = None

    @classmethod
    def from_document(cls, doc: dict) -> "ProductResponse":
        """Build a response from a raw product document."""
        data = serialize_document(doc)
        data["id"] = data.pop("_id")
        data["url"] = loose_str(data.get("url")) or ""
        data["merchant"] = merchant_name(data["url"])
        # Subscriber emails never leave the service
        data.pop("users", None)
        if not isinstance(data.get("analytics"), dict):
            data["analytics"] = {}
        history = []
        for point in data.get("priceHistory") or []:
            price = loose_float(point.get("price")) if isinstance(point, dict) else None
            if price is not None:
                history.append({**point, "price": price})
        data["priceHistory"] = history
        return cls.model_validate(data)


class SuggestionItem(BaseModel):
    id: str
    title: LooseStr = None
    image: LooseStr = None
    currentPrice: LooseFloat = None
    currency: LooseStr = None
