"""Collector configuration."""

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_ADMIN_KEY = "change-me-in-production"


class Settings(BaseSettings):
    """Collector settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database connection
    database_url: str = "postgresql://localhost/sitebeacon"

    # Server
    port: int = 8080
    debug: bool = False
    log_level: str = "INFO"
    cors_origins: list[str] = ["*"]

    # Admin secret for stats, export and visit lookup
    admin_key: str = DEFAULT_ADMIN_KEY

    # Use X-Forwarded-For / X-Real-IP when running behind a proxy
    trust_proxy: bool = False

    # MaxMind GeoLite2/GeoIP2 Country database
    geoip_db_path: str = "/geoip/GeoLite2-Country.mmdb"

    # Per-address limit on POST /track
    track_rate_limit: int = 20
    track_rate_window_seconds: int = 60
    # How often expired rate limit counters are deleted
    rate_limit_prune_interval_seconds: int = 3600

    # Length of recent_* lists in summaries
    recent_limit: int = 20


settings = Settings()
