"""Ordered extraction rules for loosely-shaped workflow responses."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from bson import ObjectId

PRODUCT_ID_KEYS = ("productId", "productID", "id")
PRODUCT_ID_CONTAINERS: tuple[tuple[str, ...], ...] = ((), ("data",), ("result",), ("payload",))


def _first_object(body: Any) -> Any:
    """Workflows often wrap a single item in a list."""
    if isinstance(body, list) and body and isinstance(body[0], dict):
        return body[0]
    return body


def _coerce_id(value: Any) -> Optional[str]:
    if isinstance(value, bool):
        return None
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, dict):
        # Extended JSON: {"$oid": "..."}
        oid = value.get("$oid")
        return (oid.strip() or None) if isinstance(oid, str) else None
    return None


@dataclass(frozen=True)
class ExtractionRule:
    """Read ``key`` after walking ``path`` through nested objects."""

    key: str
    path: tuple[str, ...] = ()

    def apply(self, body: Any) -> Optional[str]:
        node = _first_object(body)
        for step in self.path:
            if not isinstance(node, dict):
                return None
            node = _first_object(node.get(step))
        if not isinstance(node, dict):
            return None
        return _coerce_id(node.get(self.key))


PRODUCT_ID_RULES: tuple[ExtractionRule, ...] = tuple(
    ExtractionRule(key, path)
    for path in PRODUCT_ID_CONTAINERS
    for key in PRODUCT_ID_KEYS
)


def extract_product_id(
    body: Any,
    rules: tuple[ExtractionRule, ...] = PRODUCT_ID_RULES,
) -> Optional[str]:
    """Return the first product id any rule finds, in rule order."""
    for rule in rules:
        product_id = rule.apply(body)
        if product_id:
            return product_id
    return None


def extract_product_payload(body: Any) -> Optional[dict]:
    """Return a scraped product payload (an object with a string ``url``)."""
    node = _first_object(body)
    if isinstance(node, dict) and isinstance(node.get("url"), str) and node["url"].strip():
        return node
    return None
