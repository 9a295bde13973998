"""Helpers for free-form analytics report payloads."""

import math
from typing import Any, Optional

NESTED_PAYLOAD_KEY = "analytics_payload"


def unwrap_report_payload(raw: Any) -> Any:
    """Unwrap one optional ``analytics_payload`` nesting level."""
    if isinstance(raw, dict) and isinstance(raw.get(NESTED_PAYLOAD_KEY), dict):
        return raw[NESTED_PAYLOAD_KEY]
    return raw


def report_view(raw: Any) -> Optional[dict]:
    """Top-level report fields overlaid with the nested payload, if any."""
    if not isinstance(raw, dict):
        return None
    nested = raw.get(NESTED_PAYLOAD_KEY)
    if isinstance(nested, dict):
        return {**raw, **nested}
    return raw


def number_or_none(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def clamp_pct(value: Any) -> int:
    """Percentage rounded and clamped to [0, 100]; junk becomes 0."""
    number = number_or_none(value)
    if number is None:
        return 0
    # Half-up rounding, so 12.5 shows as 13
    return max(0, min(100, math.floor(number + 0.5)))


def _first_list(payload: dict, *keys: str) -> list:
    for key in keys:
        value = payload.get(key)
        if isinstance(value, list):
            return value
    return []


def summarize_report(raw: Any) -> Optional[dict]:
    """
    Normalized display values for a report.

    Only the fields the product page charts read are included; anything
    malformed is dropped rather than passed through.
    """
    payload = report_view(raw)
    if payload is None:
        return None

    summary: dict[str, Any] = {
        "dealScore": number_or_none(payload.get("deal_score")),
        "dealVerdict": payload.get("deal_verdict") if isinstance(payload.get("deal_verdict"), str) else None,
    }

    sentiment = payload.get("sentiment_bar_data")
    if isinstance(sentiment, dict):
        summary["sentiment"] = {
            "positive": clamp_pct(sentiment.get("positive_pct")),
            "neutral": clamp_pct(sentiment.get("neutral_pct")),
            "negative": clamp_pct(sentiment.get("negative_pct")),
        }

    keywords = {"positive": [], "negative": []}
    for item in _first_list(payload, "keyword_cloud"):
        if not isinstance(item, dict) or not isinstance(item.get("word"), str):
            continue
        if item.get("type") in keywords:
            keywords[item["type"]].append(
                {"word": item["word"], "weight": clamp_pct(item.get("weight"))}
            )
    summary["keywords"] = keywords

    trend = payload.get("price_trend") or payload.get("priceTrend")
    points = []
    if isinstance(trend, dict):
        for point in trend.get("points") or []:
            if not isinstance(point, dict) or not isinstance(point.get("date"), str):
                continue
            price = number_or_none(point.get("price"))
            if price is not None:
                points.append({"date": point["date"], "price": price})
    summary["priceTrend"] = points

    cross_site = []
    for entry in _first_list(payload, "cross_site_prices", "crossSitePrices"):
        if not isinstance(entry, dict) or not isinstance(entry.get("site"), str):
            continue
        price = number_or_none(entry.get("price"))
        if price is not None:
            cross_site.append({"site": entry["site"], "price": price, "url": entry.get("url")})
    summary["crossSitePrices"] = cross_site

    summary["offerCount"] = len(
        _first_list(payload, "active_discounts_offers", "activeDiscountsOffers")
    )
    return summary
