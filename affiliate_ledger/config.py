from pydantic_settings import BaseSettings
from pydantic import field_validator
from functools import lru_cache
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./affiliate_ledger.db"

    # Database Connection Pool Settings (ignored for SQLite)
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes

    # App Settings
    APP_NAME: str = "Affiliate Commission Ledger"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # CORS - accepts JSON string, comma-separated, or list
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Commission Lifecycle
    DEFAULT_CLEARANCE_PERIOD_DAYS: int = 30  # Days a pending commission ages before approval
    MAX_CLEARANCE_PERIOD_DAYS: int = 365
    MAX_ADJUSTMENT_REASON_LENGTH: int = 1000

    # Clearance Automation
    AUTO_APPROVAL_ENABLED: bool = True  # Register the auto-approval job with the scheduler
    AUTO_APPROVAL_INTERVAL_MINUTES: int = 1440  # Once a day
    AUTO_APPROVAL_PAGE_SIZE: int = 100  # Eligible commissions fetched per page
    APPROACHING_CLEARANCE_DAYS: int = 3  # Look-ahead window for the approaching-clearance report
    SCHEDULER_TIMEZONE: str = "UTC"

    @field_validator('CORS_ORIGINS', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [origin.strip() for origin in v.split(',')]
        return v

    @field_validator('DEFAULT_CLEARANCE_PERIOD_DAYS')
    @classmethod
    def validate_default_clearance(cls, v):
        if v < 0:
            raise ValueError("DEFAULT_CLEARANCE_PERIOD_DAYS cannot be negative")
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
