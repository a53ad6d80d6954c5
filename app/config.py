from pydantic_settings import BaseSettings
from pydantic import field_validator
from decimal import Decimal
from functools import lru_cache
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str

    # Database Connection Pool Settings
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes

    # App Settings
    APP_NAME: str = "Nursery Sales Fulfillment"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # CORS - accepts JSON string, comma-separated, or list
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Sales defaults
    DEFAULT_VAT_RATE: Decimal = Decimal("13.5")  # Organization default when neither line nor SKU sets one
    DEFAULT_CURRENCY: str = "EUR"
    MIX_LINE_MARKER: str = "[MIX]"  # Description prefix for product-group lines
    ORDER_NUMBER_PREFIX: str = "ORD"
    RECENT_ORDERS_LIMIT: int = 5

    # Stock
    LOW_STOCK_THRESHOLD: int = 10

    # Post-commit outbox
    OUTBOX_MAX_ATTEMPTS: int = 5
    OUTBOX_RETRY_INTERVAL_MINUTES: int = 5
    OUTBOX_BATCH_SIZE: int = 100

    # Scheduler
    SCHEDULER_ENABLED: bool = True
    SCHEDULER_TIMEZONE: str = "Europe/Dublin"

    @field_validator('CORS_ORIGINS', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [origin.strip() for origin in v.split(',')]
        return v

    @property
    def cors_origins_list(self) -> list[str]:
        return self.CORS_ORIGINS

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
