"""
Router configuration via pydantic-settings.

All settings are loaded from environment variables (or a .env file in dev).
Components take explicit constructor arguments; TieredRouter.from_settings()
is the single place that maps these values onto them.
"""

from __future__ import annotations

from enum import StrEnum
from functools import lru_cache

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    DEV = "dev"
    PROD = "prod"
    TEST = "test"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ------------------------------------------------------------------ #
    # Application
    # ------------------------------------------------------------------ #
    environment: Environment = Environment.DEV
    debug: bool = False
    log_level: str = Field(default="INFO", description="Minimum log level")
    json_logs: bool = Field(
        default=False,
        description="Emit JSON logs (production) instead of console output",
    )

    # ------------------------------------------------------------------ #
    # LiteLLM (hosted and local model execution)
    # ------------------------------------------------------------------ #
    litellm_base_url: str | None = Field(
        default=None,
        description="Optional LiteLLM proxy base URL. Unset = call providers directly.",
    )
    litellm_api_key: SecretStr = Field(
        default=SecretStr("sk-dev-key"),
        description="API key for the LiteLLM proxy",
    )
    litellm_max_retries: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts per call on upstream rate limiting",
    )

    # ------------------------------------------------------------------ #
    # Budget governor
    # ------------------------------------------------------------------ #
    daily_budget_usd: float = Field(default=5.0, gt=0, description="Spend limit per day")
    monthly_budget_usd: float = Field(default=100.0, gt=0, description="Spend limit per month")
    budget_alert_thresholds: list[float] = Field(
        default=[0.5, 0.8, 1.0],
        description="Fractions of the daily budget that raise a one-shot advisory alert",
    )
    quality_first_below: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
        description="Spend ratio under which the QualityFirst strategy applies",
    )
    prefer_local_above: float = Field(
        default=0.9,
        ge=0.0,
        le=1.0,
        description="Spend ratio over which only tiers 0-2 are considered",
    )

    # ------------------------------------------------------------------ #
    # Fallback cascade
    # ------------------------------------------------------------------ #
    max_attempts_per_tier: int = Field(default=2, ge=1, le=10)
    attempt_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Timeout for a single execution attempt (not per task)",
    )
    retry_backoff_seconds: float = Field(
        default=0.5,
        ge=0,
        description="Base delay before a same-tier retry, doubled per retry",
    )

    # ------------------------------------------------------------------ #
    # Performance monitor
    # ------------------------------------------------------------------ #
    health_window: int = Field(default=50, ge=1, description="Outcomes kept per model")
    health_min_samples: int = Field(
        default=10,
        ge=1,
        description="Outcomes required before a model can be marked unhealthy",
    )
    health_success_floor: float = Field(default=0.5, ge=0.0, le=1.0)
    health_ttl_seconds: float | None = Field(
        default=600.0,
        gt=0.0,
        description="Seconds an outcome counts toward health; unset keeps outcomes until evicted",
    )
    quality_window: int = Field(default=100, ge=1)
    latency_window: int = Field(default=100, ge=1)

    # ------------------------------------------------------------------ #
    # Classifier
    # ------------------------------------------------------------------ #
    classifier_confidence_threshold: float = Field(default=0.7, ge=0.0, le=1.0)

    # ------------------------------------------------------------------ #
    # Response cache
    # ------------------------------------------------------------------ #
    cache_enabled: bool = True
    cache_ttl_seconds: int = Field(default=300, ge=1)
    cache_max_entries: int = Field(default=1000, ge=1)

    # ------------------------------------------------------------------ #
    # Derived / Computed
    # ------------------------------------------------------------------ #
    @model_validator(mode="after")
    def _set_debug_from_env(self) -> Settings:
        if self.environment == Environment.DEV:
            self.debug = True
        return self

    @model_validator(mode="after")
    def _validate_strategy_thresholds(self) -> Settings:
        if self.quality_first_below >= self.prefer_local_above:
            raise ValueError(
                "quality_first_below must be lower than prefer_local_above "
                f"({self.quality_first_below} >= {self.prefer_local_above})"
            )
        if any(t <= 0 for t in self.budget_alert_thresholds):
            raise ValueError("budget_alert_thresholds must all be positive")
        return self

    @model_validator(mode="after")
    def _validate_production_secrets(self) -> Settings:
        """Refuse to start in production with the development API key."""
        if self.environment != Environment.PROD:
            return self

        insecure = {"changeme", "default", "test", "sk-dev-key"}
        key = self.litellm_api_key.get_secret_value().lower()
        if any(token in key for token in insecure):
            raise ValueError(
                "LITELLM_API_KEY contains an insecure default value. "
                "Set a real API key for production."
            )
        return self

    @property
    def is_dev(self) -> bool:
        return self.environment in (Environment.DEV, Environment.TEST)

    @property
    def is_prod(self) -> bool:
        return self.environment == Environment.PROD


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings singleton."""
    return Settings()
