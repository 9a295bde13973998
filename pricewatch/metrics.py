"""Prometheus metrics for Price Watch."""

from prometheus_client import Counter, Histogram, Info

# Application info
app_info = Info("pricewatch", "Price Watch application info")
app_info.info({"version": "0.1.0", "name": "pricewatch"})

# Identity metrics
url_lookups_total = Counter(
    "url_lookups_total",
    "Total number of product URL lookups",
    ["result"],
)

short_link_resolutions_total = Counter(
    "short_link_resolutions_total",
    "Total number of short-link redirect resolutions",
    ["status"],
)

# Scrape metrics
scrape_triggers_total = Counter(
    "scrape_triggers_total",
    "Total number of scrape workflow triggers",
    ["mode", "status"],
)

workflow_request_duration_seconds = Histogram(
    "workflow_request_duration_seconds",
    "Time spent waiting on external workflow webhooks",
    ["workflow"],
    buckets=[0.5, 1.0, 2.0, 5.0, 8.0, 15.0, 30.0, 60.0, 120.0, 300.0],
)

# Analytics metrics
analytics_triggers_total = Counter(
    "analytics_triggers_total",
    "Total number of analytics report triggers",
    ["status", "retriggered"],
)

analytics_polls_total = Counter(
    "analytics_polls_total",
    "Total number of analytics polls by the layer that answered",
    ["source"],
)

report_callbacks_total = Counter(
    "report_callbacks_total",
    "Total number of analytics report callbacks received",
    ["status"],
)


def record_lookup(result: str):
    """Record a URL lookup outcome (found, resolved, missing)."""
    url_lookups_total.labels(result=result).inc()


def record_short_link_resolution(status: str):
    """Record a short-link resolution attempt."""
    short_link_resolutions_total.labels(status=status).inc()


def record_scrape_trigger(mode: str, status: str):
    """Record a scrape trigger outcome."""
    scrape_triggers_total.labels(mode=mode, status=status).inc()


def record_analytics_trigger(status: str, retriggered: bool):
    """Record an analytics trigger outcome."""
    analytics_triggers_total.labels(
        status=status, retriggered=str(retriggered).lower()
    ).inc()


def record_analytics_poll(source: str):
    """Record which layer answered an analytics poll."""
    analytics_polls_total.labels(source=source).inc()


def record_report_callback(status: str):
    """Record a report callback."""
    report_callbacks_total.labels(status=status).inc()
