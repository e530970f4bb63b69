"""
Application configuration via pydantic-settings.

All settings are loaded from environment variables (and .env file).
AppSettings composes the sub-configs in a model_validator so every group
reads from the same env/dotenv source.
"""

from __future__ import annotations

from typing import Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    mongodb_uri: str
    db_name: str = "click-analytics"

    clicks_collection: str = "clicks"
    visitors_collection: str = "click_visitors"
    urls_collection: str = "urls"
    users_collection: str = "users"


class RedisSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Optional; without Redis the platform report is computed on every request
    redis_uri: Optional[str] = None

    report_cache_primary_ttl: int = 300
    report_cache_stale_ttl: int = 900


class AnalyticsSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Public base URL used to render short links in live snapshots
    short_url_base: str = "http://localhost:8000"

    geolocation_enabled: bool = True

    # Default query window for dashboards
    default_range_days: int = 30

    # Short-window statistics
    realtime_window_minutes: int = 60
    live_visitor_window_minutes: int = 10
    top_active_urls: int = 5
    broadcast_send_timeout: float = 2.0

    # Retention
    retention_enabled: bool = False
    retention_days: int = 365
    retention_batch_size: int = 1000
    retention_pause_seconds: float = 0.1
    retention_interval_seconds: int = 86400

    export_max_rows: int = 100_000


class LoggingSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    log_level: str = "INFO"
    log_format: str = "console"  # "json" in production

    # Sampling rates (0.0–1.0)
    sample_rate_click: float = 0.05
    sample_rate_analytics: float = 0.20
    sample_rate_broadcast: float = 0.05
    sample_rate_export: float = 0.80


class SentrySettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    sentry_dsn: str = ""
    sentry_send_pii: bool = False
    sentry_traces_sample_rate: float = 0.1
    sentry_profile_sample_rate: float = 0.05


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Core
    env: str = "development"
    app_name: str = "click-analytics"

    # CORS: all origins, credentials allowed
    cors_origins: list[str] = ["*"]

    # GeoIP database paths (configurable for self-hosters)
    geoip_city_db: str = "misc/GeoLite2-City.mmdb"
    geoip_asn_db: str = "misc/GeoLite2-ASN.mmdb"

    # OpenAPI docs URL (None disables the docs UI in production)
    docs_url: Optional[str] = "/docs"

    # Sub-configs (composed via model_validator below)
    db: Optional[DatabaseSettings] = None
    redis: Optional[RedisSettings] = None
    analytics: Optional[AnalyticsSettings] = None
    logging: Optional[LoggingSettings] = None
    sentry: Optional[SentrySettings] = None

    @model_validator(mode="after")
    def _populate_sub_configs(self) -> "AppSettings":
        if self.db is None:
            self.db = DatabaseSettings()
        if self.redis is None:
            self.redis = RedisSettings()
        if self.analytics is None:
            self.analytics = AnalyticsSettings()
        if self.logging is None:
            self.logging = LoggingSettings()
        if self.sentry is None:
            self.sentry = SentrySettings()

        return self

    @property
    def is_production(self) -> bool:
        return self.env == "production"
