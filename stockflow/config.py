from pydantic_settings import BaseSettings
from pydantic import field_validator
from functools import lru_cache
from typing import Optional
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./stockflow.db"

    # Database Connection Pool Settings
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes

    # App Settings
    APP_NAME: str = "Stockflow Inventory Engine"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # CORS - accepts JSON string, comma-separated, or list
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Ledger concurrency
    LEDGER_MAX_RETRIES: int = 3  # Attempts before ConcurrencyConflict is surfaced
    LEDGER_RETRY_BACKOFF_SECONDS: float = 0.05  # Multiplied by attempt number

    # Demand forecasting
    FORECAST_WINDOW_DAYS: int = 90  # Trailing window of sale movements
    FORECAST_MAX_WINDOW_DAYS: int = 365  # Upper bound for long scans
    FORECAST_HORIZON_DAYS: int = 30
    FORECAST_CONFIDENCE_LEVEL: float = 0.95

    # Reorder analysis
    REORDER_FORECAST_WINDOW_DAYS: int = 60
    REORDER_HISTORY_DAYS: int = 30  # Fallback demand rate window
    DEFAULT_LEAD_TIME_DAYS: int = 7
    REORDER_SAFETY_FACTOR: float = 1.5
    REORDER_COVERAGE_DAYS: int = 30  # Days of demand a reorder should cover
    URGENT_DAYS_OF_STOCK: int = 3

    # Procurement
    PROCUREMENT_APPROVAL_REQUIRED: bool = True

    # Notifications
    NOTIFICATION_WEBHOOK_URL: Optional[str] = None  # Log-only when unset
    NOTIFICATION_TIMEOUT_SECONDS: float = 10.0

    # Returns
    RESTOCKABLE_CONDITIONS: list[str] = ["good", "new", "unopened"]

    # Auto-Reorder Settings
    AUTO_REORDER_ENABLED: bool = False
    AUTO_REORDER_INTERVAL_MINUTES: int = 60
    SCHEDULER_TIMEZONE: str = "UTC"

    @field_validator('CORS_ORIGINS', 'RESTOCKABLE_CONDITIONS', mode='before')
    @classmethod
    def parse_list(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [item.strip() for item in v.split(',') if item.strip()]
        return v

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
