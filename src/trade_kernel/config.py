"""Application configuration via pydantic-settings.

Reads from .env file or environment variables. All settings are validated
at startup. A missing or malformed setting fails fast with a clear error
message.

Usage:
    from trade_kernel.config import get_settings
    settings = get_settings()
    print(settings.database_url)
"""

from __future__ import annotations

from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_JWT_SECRET = "change-me-in-production"


class Settings(BaseSettings):
    """Central configuration for the trade kernel."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    app_env: Literal["development", "staging", "production"] = "development"
    app_debug: bool = True
    app_log_level: str = "DEBUG"
    app_host: str = "0.0.0.0"
    app_port: int = 8000

    # --- Database (PostgreSQL) ---
    database_url: str = (
        "postgresql+asyncpg://trade_kernel:trade_kernel_dev"
        "@localhost:5432/trade_kernel"
    )
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_echo_sql: bool = False

    # --- Redis ---
    redis_url: str = "redis://localhost:6379/0"
    redis_idempotency_ttl_seconds: int = 86400  # 24 hours
    rate_limit_window_seconds: int = 60
    rate_limit_max_requests: int = 20

    # --- Auth (JWT bearer) ---
    jwt_secret_key: str = DEFAULT_JWT_SECRET
    jwt_algorithm: str = "HS256"

    # --- Narrative advisor / LiteLLM ---
    # "llm" calls the model below, "static" answers MANUAL_REVIEW without any
    # network call (dry runs and local simulation).
    advisor_mode: Literal["llm", "static"] = "llm"
    openai_api_key: str = ""
    gemini_api_key: str = ""
    litellm_model: str = "gemini/gemini-2.0-flash"
    litellm_fallback_models: str = "gemini/gemini-1.5-flash"
    litellm_max_tokens: int = 1024
    litellm_temperature: float = 0.0
    advisor_timeout_seconds: float = 8.0

    # --- Payment provider (Flutterwave-compatible) ---
    payment_api_base_url: str = "https://api.flutterwave.com/v3"
    payment_secret_key: str = ""
    payment_webhook_secret_hash: str = ""
    payment_simulate: bool = False
    payment_http_timeout_seconds: float = 10.0

    # --- Dispute policy ---
    dispute_overdue_threshold_days: int = 14
    dispute_movement_window_days: int = 7

    # --- Commission (percent) ---
    commission_standard_rate: Decimal = Decimal("8")
    commission_assisted_rate: Decimal = Decimal("12")
    commission_high_value_rate: Decimal = Decimal("5")
    commission_high_value_threshold: Decimal = Decimal("50000")
    commission_minimum: Decimal = Decimal("50")

    @model_validator(mode="after")
    def _refuse_unsafe_production(self) -> Settings:
        if self.app_env != "production":
            return self
        if self.jwt_secret_key == DEFAULT_JWT_SECRET:
            raise ValueError("jwt_secret_key must be set in production")
        if self.payment_simulate:
            raise ValueError("payment_simulate cannot be enabled in production")
        return self

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def litellm_fallback_model_list(self) -> list[str]:
        """Parse comma-separated fallback models into a list."""
        if not self.litellm_fallback_models:
            return []
        return [m.strip() for m in self.litellm_fallback_models.split(",") if m.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton of the application settings."""
    return Settings()
