"""Merchant host classification helpers."""

from __future__ import annotations

import re
from typing import Iterable, Optional
from urllib.parse import urlsplit

DEFAULT_MERCHANT_PATTERNS = ("amazon.", "amzn.in", "amzn.to", "www.amazon.")
DEFAULT_SHORT_LINK_DOMAIN = "amzn.to"

# Product identifier segments in merchant paths (ASIN is 10 alphanumerics)
ASIN_PATTERNS = (
    re.compile(r"/dp/([A-Za-z0-9]{10})(?=/|$)", re.IGNORECASE),
    re.compile(r"/gp/product/([A-Za-z0-9]{10})(?=/|$)", re.IGNORECASE),
)

_SECOND_LEVEL_SUFFIXES = frozenset({"co", "com", "net", "org"})

_NAME_OVERRIDES = {
    "amazon": "Amazon",
    "amzn": "Amazon",
    "steampowered": "Steam",
}


def is_merchant_host(
    host: Optional[str],
    patterns: Iterable[str] = DEFAULT_MERCHANT_PATTERNS,
) -> bool:
    """Return True if the host matches one of the merchant substrings."""
    if not host:
        return False
    host = host.lower()
    return any(pattern.lower() in host for pattern in patterns)


def is_short_link_host(
    host: Optional[str],
    domain: str = DEFAULT_SHORT_LINK_DOMAIN,
) -> bool:
    """Return True if host is the short-link domain or one of its subdomains."""
    if not host or not domain:
        return False
    host = host.lower().rstrip(".")
    domain = domain.lower()
    return host == domain or host.endswith("." + domain)


def extract_asin(path: str) -> Optional[str]:
    """Extract an uppercase ASIN from a merchant URL path."""
    for pattern in ASIN_PATTERNS:
        match = pattern.search(path or "")
        if match:
            return match.group(1).upper()
    return None


def merchant_name(url: str) -> str:
    """Human-readable merchant name derived from a product URL."""
    try:
        hostname = (urlsplit(url.strip()).hostname or "").lower()
    except ValueError:
        return "Store"

    if hostname.startswith("www."):
        hostname = hostname[4:]

    parts = [p for p in hostname.split(".") if p]
    # amazon.co.uk, amazon.com.au
    if len(parts) >= 3 and len(parts[-1]) == 2 and parts[-2] in _SECOND_LEVEL_SUFFIXES:
        sld = parts[-3]
    elif len(parts) >= 2:
        sld = parts[-2]
    else:
        sld = parts[0] if parts else ""

    if sld in _NAME_OVERRIDES:
        return _NAME_OVERRIDES[sld]
    if not sld:
        return "Store"
    return sld[0].upper() + sld[1:]
