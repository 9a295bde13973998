"""Resolve a raw product URL to a stored product."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from pricewatch import metrics
from pricewatch.db.products import ProductStore
from pricewatch.identity.canonicalize import build_url_candidates
from pricewatch.identity.merchants import DEFAULT_MERCHANT_PATTERNS
from pricewatch.identity.resolver import MerchantResolver

logger = logging.getLogger(__name__)


@dataclass
class LookupResult:
    """Outcome of an identity lookup."""

    product: Optional[dict]
    candidates: list[str] = field(default_factory=list)
    resolved_url: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.product is not None

    @property
    def product_id(self) -> Optional[str]:
        return str(self.product["_id"]) if self.product else None


class ProductLookup:
    """Canonicalize, look up, and fall back to short-link resolution once."""

    def __init__(
        self,
        store: ProductStore,
        resolver: Optional[MerchantResolver] = None,
        merchant_patterns: Iterable[str] = DEFAULT_MERCHANT_PATTERNS,
    ):
        self.store = store
        self.resolver = resolver
        self.merchant_patterns = tuple(merchant_patterns)

    def candidates(self, raw_url: str) -> list[str]:
        return build_url_candidates(raw_url, self.merchant_patterns)

    async def find(self, raw_url: str, resolve_short_links: bool = True) -> LookupResult:
        """
        Find the product identified by ``raw_url``.

        Args:
            raw_url: User-supplied product URL
            resolve_short_links: Follow short links on a miss (one extra lookup)
        """
        candidates = self.candidates(raw_url)
        product = await self.store.find_by_any_url(candidates)
        if product is not None:
            metrics.record_lookup("found")
            return LookupResult(product, candidates)

        if not resolve_short_links or self.resolver is None:
            metrics.record_lookup("missing")
            return LookupResult(None, candidates)

        resolved = await self.resolver.resolve(raw_url)
        if not resolved or resolved == (raw_url or "").strip():
            metrics.record_lookup("missing")
            return LookupResult(None, candidates)

        merged = list(dict.fromkeys(candidates + self.candidates(resolved)))
        product = await self.store.find_by_any_url(merged)
        metrics.record_lookup("resolved" if product is not None else "missing")
        if product is not None:
            logger.info(f"Matched {raw_url} via short link target {resolved}")
        return LookupResult(product, merged, resolved_url=resolved)
