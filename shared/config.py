"""Configuration management for linewatch."""
import logging
import os
from pydantic import BaseModel


class Config(BaseModel):
    """Operational settings loaded from environment variables.

    Decision thresholds are not here: they belong to the versioned records in
    strategy.thresholds, selected by CORE_LOGIC_VERSION.
    """
    CORE_LOGIC_VERSION: str = "v1.3"
    DB_PATH: str = "data/linewatch.db"
    DASHBOARD_PORT: int = 8080
    LOG_LEVEL: str = "INFO"
    SCAN_INTERVAL_SECONDS: int = 60
    REFRESH_INTERVAL_SECONDS: int = 120
    RECOMMEND_INTERVAL_SECONDS: int = 900
    PROVIDER_TIMEOUT_SECONDS: float = 10.0
    RESOLUTION_CACHE_TTL_MINUTES: int = 360
    RESOLUTION_FAILURE_RETRY_MINUTES: int = 15
    WATCH_RETENTION_HOURS: int = 24
    QUOTE_RETENTION_HOURS: int = 48
    BANKROLL_UNITS: float = 100.0
    DEFAULT_STAKE_USD: float = 100.0
    CLOB_BASE: str = "https://clob.polymarket.com"
    GAMMA_BASE: str = "https://gamma-api.polymarket.com"

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        return cls(
            CORE_LOGIC_VERSION=os.getenv("CORE_LOGIC_VERSION", "v1.3"),
            DB_PATH=os.getenv("DB_PATH", "data/linewatch.db"),
            DASHBOARD_PORT=int(os.getenv("DASHBOARD_PORT", "8080")),
            LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
            SCAN_INTERVAL_SECONDS=int(os.getenv("SCAN_INTERVAL_SECONDS", "60")),
            REFRESH_INTERVAL_SECONDS=int(os.getenv("REFRESH_INTERVAL_SECONDS", "120")),
            RECOMMEND_INTERVAL_SECONDS=int(os.getenv("RECOMMEND_INTERVAL_SECONDS", "900")),
            PROVIDER_TIMEOUT_SECONDS=float(os.getenv("PROVIDER_TIMEOUT_SECONDS", "10")),
            RESOLUTION_CACHE_TTL_MINUTES=int(os.getenv("RESOLUTION_CACHE_TTL_MINUTES", "360")),
            RESOLUTION_FAILURE_RETRY_MINUTES=int(
                os.getenv("RESOLUTION_FAILURE_RETRY_MINUTES", "15")
            ),
            WATCH_RETENTION_HOURS=int(os.getenv("WATCH_RETENTION_HOURS", "24")),
            QUOTE_RETENTION_HOURS=int(os.getenv("QUOTE_RETENTION_HOURS", "48")),
            BANKROLL_UNITS=float(os.getenv("BANKROLL_UNITS", "100")),
            DEFAULT_STAKE_USD=float(os.getenv("DEFAULT_STAKE_USD", "100")),
            CLOB_BASE=os.getenv("CLOB_BASE", "https://clob.polymarket.com"),
            GAMMA_BASE=os.getenv("GAMMA_BASE", "https://gamma-api.polymarket.com"),
        )

    @property
    def log_level(self) -> int:
        level = logging.getLevelName(self.LOG_LEVEL.upper())
        return level if isinstance(level, int) else logging.INFO
