"""URL canonicalization for product identity.

A raw product URL is mapped to an ordered list of equivalent candidate strings.
Any stored product whose ``url`` equals one of the candidates is the same item.
Everything here is pure: no I/O, no shared state, and malformed input never
raises.
"""

from __future__ import annotations

from typing import Iterable, Optional
from urllib.parse import SplitResult, urlsplit, urlunsplit

from pricewatch.identity.merchants import (
    DEFAULT_MERCHANT_PATTERNS,
    extract_asin,
    is_merchant_host,
)

REF_MARKER = "/ref="

TRACKING_PARAMS = frozenset({"ref", "tag", "fbclid", "gclid"})
TRACKING_PREFIX = "utm_"


def _parse(value: str) -> Optional[SplitResult]:
    """Parse an absolute URL, normalizing scheme and host case."""
    try:
        parts = urlsplit(value)
        # Malformed ports only raise when accessed
        _ = parts.port
    except ValueError:
        return None

    if not parts.scheme or not parts.netloc or not parts.hostname:
        return None

    netloc = parts.netloc if "@" in parts.netloc else parts.netloc.lower()
    return parts._replace(
        scheme=parts.scheme.lower(),
        netloc=netloc,
        path=parts.path or "/",
    )


def _strip_trailing_slash(value: str) -> str:
    return value[:-1] if value.endswith("/") else value


def _bare_host(parts: SplitResult) -> str:
    host = parts.hostname or ""
    return host[4:] if host.startswith("www.") else host


def _asin_forms(parts: SplitResult) -> list[str]:
    """Four canonical /dp/<ASIN> forms: {https, http} x {www, bare} host."""
    asin = extract_asin(parts.path)
    if not asin:
        return []
    bare = _bare_host(parts)
    return [
        f"{scheme}://{host}/dp/{asin}"
        for scheme in ("https", "http")
        for host in (f"www.{bare}", bare)
    ]


def _without_ref_marker(parts: SplitResult) -> Optional[str]:
    """Drop everything from the ``/ref=`` tracking segment onward."""
    index = parts.path.find(REF_MARKER)
    if index < 0:
        return None
    path = parts.path[:index] or "/"
    return _strip_trailing_slash(urlunsplit((parts.scheme, parts.netloc, path, "", "")))


def _is_tracking_param(pair: str) -> bool:
    name = pair.split("=", 1)[0].lower()
    return name.startswith(TRACKING_PREFIX) or name in TRACKING_PARAMS


def _storage_form(parts: SplitResult) -> str:
    """Fragment, tracking parameters and one trailing slash removed; the query stays."""
    query = "&".join(
        pair for pair in parts.query.split("&") if pair and not _is_tracking_param(pair)
    )
    if not query:
        return _strip_trailing_slash(urlunsplit(parts._replace(query="", fragment="")))

    path = parts.path
    if len(path) > 1 and path.endswith("/"):
        path = path[:-1]
    return urlunsplit(parts._replace(path=path, query=query, fragment=""))


def build_url_candidates(
    raw: Optional[str],
    merchant_patterns: Iterable[str] = DEFAULT_MERCHANT_PATTERNS,
) -> list[str]:
    """
    Build the ordered set of URL strings equivalent to ``raw``.

    Args:
        raw: User-supplied or merchant-redirected URL (may be malformed)
        merchant_patterns: Host substrings that enable merchant path rules

    Returns:
        De-duplicated candidates in discovery order, starting with the trimmed
        input. Empty when the input is blank.
    """
    trimmed = (raw or "").strip()
    if not trimmed:
        return []

    # dict keeps insertion order and drops duplicates
    candidates: dict[str, None] = {trimmed: None}

    parts = _parse(trimmed)
    if parts is None:
        return list(candidates)

    without_fragment = urlunsplit(parts._replace(fragment=""))
    without_query = urlunsplit(parts._replace(query="", fragment=""))
    found = [
        without_fragment,
        without_query,
        _strip_trailing_slash(without_query),
    ]

    if is_merchant_host(parts.hostname, merchant_patterns):
        found.extend(_asin_forms(parts))
        found.append(_without_ref_marker(parts))
    found.append(_storage_form(parts))

    for value in found:
        if value:
            candidates.setdefault(value, None)

    return list(candidates)


def canonical_url(
    raw: Optional[str],
    merchant_patterns: Iterable[str] = DEFAULT_MERCHANT_PATTERNS,
) -> str:
    """
    Pick the single storage key for a product URL.

    Merchant URLs with an ASIN collapse to ``https://www.<host>/dp/<ASIN>``;
    other parseable URLs keep their non-tracking query (``product.php?id=1``
    and ``?id=2`` are different products) and lose the fragment and one
    trailing slash. The key is always a member of ``build_url_candidates(raw)``.
    """
    trimmed = (raw or "").strip()
    parts = _parse(trimmed) if trimmed else None
    if parts is None:
        return trimmed

    if is_merchant_host(parts.hostname, merchant_patterns):
        forms = _asin_forms(parts)
        if forms:
            return forms[0]
        stripped = _without_ref_marker(parts)
        if stripped:
            return stripped

    return _storage_form(parts)
