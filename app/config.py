"""
Application configuration using pydantic-settings.
Loads from environment variables / .env file.
"""

from functools import lru_cache
from typing import List, Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
    )

    # Application
    app_name: str = "condo-payments"
    app_env: Literal["development", "staging", "production"] = "development"
    debug: bool = False

    # API Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Postgres
    database_url: str

    # Redis (Celery broker + sweep lock)
    redis_url: str = "redis://localhost:6379/0"

    # Flow payment gateway
    flow_api_url: str
    flow_api_key: str
    flow_secret_key: str
    flow_url_confirmation: str
    flow_url_return: str
    flow_currency: str = "CLP"
    flow_payment_method: int = 9  # all payment methods
    flow_create_timeout: float = 30.0
    flow_status_timeout: float = 10.0
    flow_status_retry_attempts: int = 3

    # Where the payer lands after the gateway redirects back
    frontend_return_url: str = "http://localhost:3000/flow/return"
    cors_origins: List[str] = ["http://localhost:3000"]

    # Background reconciliation of stale PENDING payments
    reconcile_min_age_minutes: int = 10
    reconcile_batch_size: int = 100

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
