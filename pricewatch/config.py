"""Application configuration using Pydantic settings."""

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    # MongoDB
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_database: str = "pricewatch"
    products_collection: str = "products"

    # Ordered "database/collection" locations searched for analyzed reports.
    # An empty database name means the products database. The first entry is
    # where callback payloads are written.
    report_locations: list[str] = [
        "analyzed/analyzed",
        "analyzed/Analyzed",
        "Analyzed/analyzed",
        "Analyzed/Analyzed",
        "/analyzed",
        "/Analyzed",
    ]

    # Redis
    redis_url: str = "redis://localhost:6379/0"

    # App Settings
    debug: bool = False
    log_level: str = "INFO"
    log_dir: str = "logs"
    app_host: str = "0.0.0.0"
    app_port: int = 8000

    # ==========================================================================
    # URL Identity Settings
    # ==========================================================================
    merchant_host_patterns: list[str] = ["amazon.", "amzn.in", "amzn.to", "www.amazon."]
    short_link_domain: str = "amzn.to"
    redirect_timeout_seconds: float = 3.0

    # ==========================================================================
    # Scrape Workflow Settings
    # ==========================================================================
    scrape_webhook_url: str = Field(
        default="",
        validation_alias=AliasChoices("scrape_webhook_url", "n8n_scrape_webhook_url"),
    )
    scrape_sync_timeout_seconds: float = 300.0
    scrape_dispatch_timeout_seconds: float = 8.0
    scrape_poll_attempts: int = 12
    scrape_poll_interval_seconds: float = 1.0
    scrape_poll_budget_seconds: float | None = None  # e.g. 45.0 with a 2.5s interval
    scrape_dedupe_enabled: bool = True
    scrape_inflight_ttl_seconds: int = 120

    # ==========================================================================
    # Analytics Report Settings
    # ==========================================================================
    report_webhook_url: str = Field(
        default="",
        validation_alias=AliasChoices(
            "report_webhook_url", "n8n_product_report_webhook_url"
        ),
    )
    report_callback_url: str = Field(
        default="",
        validation_alias=AliasChoices(
            "report_callback_url", "n8n_product_report_callback_url"
        ),
    )
    report_callback_secret: str = Field(
        default="",
        validation_alias=AliasChoices(
            "report_callback_secret", "n8n_product_report_secret"
        ),
    )
    report_dispatch_timeout_seconds: float = 30.0
    analytics_pending_freshness_minutes: int = 10
    analytics_poll_interval_seconds: int = 4  # Client-side poll cadence hint

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
