"""Price history merge policy applied before a product upsert."""

from datetime import datetime
from typing import Any, Iterable, Optional


def _as_price(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        price = float(value)
    except (TypeError, ValueError):
        return None
    return price if price == price else None  # NaN


def _history_prices(history: Iterable[Any]) -> list[float]:
    prices = []
    for point in history:
        if isinstance(point, dict):
            price = _as_price(point.get("price"))
            if price is not None:
                prices.append(price)
    return prices


def lowest_price(history: Iterable[Any]) -> Optional[float]:
    prices = _history_prices(history)
    return min(prices) if prices else None


def highest_price(history: Iterable[Any]) -> Optional[float]:
    prices = _history_prices(history)
    return max(prices) if prices else None


def average_price(history: Iterable[Any]) -> Optional[float]:
    prices = _history_prices(history)
    return sum(prices) / len(prices) if prices else None


def merge_price_sample(
    scraped: dict,
    existing: Optional[dict],
    observed_at: datetime,
) -> dict:
    """
    Build the fields to upsert for a freshly scraped product.

    The current price is appended to the stored history (or seeds it for a new
    product), then lowest/highest/average are recomputed over the whole
    history. A new product that arrives with its own history keeps it as-is.

    Args:
        scraped: Product payload from the scrape workflow
        existing: Stored product document, if any
        observed_at: Timestamp for the new sample

    Returns:
        A new dict; neither input is modified
    """
    product = dict(scraped)
    price = _as_price(scraped.get("currentPrice"))

    if existing is not None:
        history = list(existing.get("priceHistory") or [])
        append = True
    else:
        supplied = scraped.get("priceHistory")
        history = list(supplied) if isinstance(supplied, list) else []
        append = not history

    if append and price is not None:
        history.append({"price": price, "date": observed_at})

    product["priceHistory"] = history
    if _history_prices(history):
        product["lowestPrice"] = lowest_price(history)
        product["highestPrice"] = highest_price(history)
        product["averagePrice"] = average_price(history)

    return product
