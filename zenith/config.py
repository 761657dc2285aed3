"""
Configuration management using pydantic-settings.
All settings loaded from environment variables (12-factor app).
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Payment provider (Stripe-compatible)
    stripe_api_key: str = Field(default="", description="Payment provider secret key")
    stripe_webhook_secret: str = Field(default="", description="Webhook signing secret")
    stripe_api_base_url: str = Field(
        default="https://api.stripe.com", description="Payment provider API base URL"
    )
    stripe_price_pro: str = Field(default="", description="Price ID of the Pro plan")
    stripe_price_enterprise: str = Field(
        default="", description="Price ID of the Enterprise plan"
    )
    stripe_signature_tolerance_seconds: int = Field(
        default=300, ge=0, description="Max age of a signed webhook payload"
    )

    # Email provider (Resend-compatible)
    resend_api_key: str = Field(default="", description="Email provider API key")
    resend_api_base_url: str = Field(
        default="https://api.resend.com", description="Email provider API base URL"
    )
    from_email: str = Field(default="noreply@zenith.com", description="Sender address")
    app_url: str = Field(
        default="http://localhost:3000", description="Dashboard base URL used in emails"
    )

    # Security
    jwt_secret: str = Field(
        default="change-this-to-a-secure-random-string-in-production",
        description="Key that verifies admin bearer tokens",
    )
    jwt_algorithm: str = Field(default="HS256", description="JWT algorithm")
    jwt_issuer: Optional[str] = Field(default=None, description="Required iss claim, if set")
    jwt_audience: Optional[str] = Field(default=None, description="Required aud claim, if set")

    # Database
    db_path: str = Field(default="./data/zenith.duckdb", description="DuckDB file path")

    # Real-time aggregation
    aggregation_interval_seconds: float = Field(
        default=30.0, gt=0, description="Seconds between aggregation ticks"
    )
    metrics_history_size: int = Field(
        default=100, ge=1, description="Snapshots kept in the in-memory history"
    )
    adapter_timeout_seconds: float = Field(
        default=10.0, gt=0, description="Upper bound for a single metric query"
    )
    metric_source_workers: int = Field(
        default=4, ge=1, description="Threads reserved for metric queries"
    )
    growth_lookback_hours: int = Field(
        default=24, ge=1, description="Lookback covered by growth series"
    )
    growth_bucket_minutes: int = Field(
        default=60, ge=1, description="Bucket width of growth series"
    )
    enable_realtime_aggregation: bool = Field(
        default=True, description="Start the aggregator with the application"
    )

    # Alerts
    alert_store_max_size: int = Field(
        default=1000, ge=1, description="Max alerts retained in memory"
    )
    alert_cooldown_seconds: float = Field(
        default=0.0,
        ge=0,
        description="Suppress repeat alerts for the same rule within this window (0 disables)",
    )

    # API
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")
    api_reload: bool = Field(default=True, description="Enable hot reload")
    cors_origins: str = Field(
        default="http://localhost:3000",
        description="CORS allowed origins (comma-separated)",
    )

    # Logging
    log_level: str = Field(default="info", description="Log level")
    log_format: str = Field(default="json", description="Log format (json|console)")

    # Development
    dev_mode: bool = Field(default=True, description="Development mode")
    debug: bool = Field(default=False, description="Debug mode")
    testing: bool = Field(default=False, description="Testing mode")

    @field_validator("cors_origins")
    @classmethod
    def parse_cors_origins(cls, v: str) -> List[str]:
        """Parse comma-separated CORS origins."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    @property
    def stripe_configured(self) -> bool:
        """Whether webhooks can be verified and customers fetched."""
        return bool(self.stripe_api_key and self.stripe_webhook_secret)

    @property
    def email_configured(self) -> bool:
        """Whether real email delivery is enabled (otherwise demo mode)."""
        return bool(self.resend_api_key and self.from_email)

    @property
    def price_plan_mapping(self) -> dict[str, str]:
        """Map of configured price IDs to plan names."""
        mapping = {}
        if self.stripe_price_pro:
            mapping[self.stripe_price_pro] = "Pro"
        if self.stripe_price_enterprise:
            mapping[self.stripe_price_enterprise] = "Enterprise"
        return mapping


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to ensure singleton behavior.
    """
    return Settings()
