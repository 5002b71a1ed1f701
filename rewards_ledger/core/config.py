"""
Application configuration using pydantic-settings.
All environment variables are loaded from .env file with sensible defaults.
"""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # Application
    APP_NAME: str = "Rewards Ledger Service"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    API_PREFIX: str = "/api/v1"

    # Database (SQLite for local dev, PostgreSQL in production)
    DATABASE_URL: str = "sqlite:///./rewards_ledger.db"
    TRANSACTION_MAX_ATTEMPTS: int = 5  # Optimistic transaction retries before conflict
    SEED_DEMO_DATA: bool = True

    # Redis (shared fast path for used-receipt keys)
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_ENABLED: bool = False  # Disable by default for easy local dev

    # CORS
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    # REST backend (OCR, reward tiers, fraud flags)
    BACKEND_URL: str = "http://localhost:3001"
    RECEIPT_ANALYZE_PATH: str = "/analyze-receipt"
    BACKEND_TIMEOUT_SECONDS: float = 45.0

    # Receipt intake
    POINTS_PER_DOLLAR: int = 5
    DUPLICATE_LOOKUP_TIMEOUT_SECONDS: float = 15.0
    RECEIPT_KEY_INCLUDE_YEAR: bool = False  # Month-day keys unless explicitly enabled
    USED_RECEIPT_CACHE_TTL: int = 86400

    # Redemptions
    REDEMPTION_EXPIRY_MINUTES: int = 15

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": True,
    }


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance to avoid re-reading .env on every call."""
    return Settings()
