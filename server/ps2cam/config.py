# ─────────────────────────────────────────────────────────────────────────────
# Settings — Pydantic v2 BaseSettings
# ─────────────────────────────────────────────────────────────────────────────


from functools import lru_cache
from typing import Literal

from pydantic import AliasChoices, Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Server configuration sourced from environment variables.

    Uses pydantic-settings v2 (separate package from pydantic).
    """

    model_config = SettingsConfigDict(env_prefix="", env_file=".env", populate_by_name=True)

    # ── Infrastructure ───────────────────────────────────────────────────────
    port: int = 8080

    # ── Prediction provider ──────────────────────────────────────────────────
    # SecretStr keeps the token out of logs, repr(), and model_dump().
    # Empty string = not configured; every generation fails with
    # ConfigurationError until it is set.
    replicate_api_token: SecretStr = Field(
        default=SecretStr(""),
        validation_alias=AliasChoices("replicate_api_token", "replicate_api_key"),
    )
    replicate_api_url: str = "https://api.replicate.com"
    current_model: str = ""  # Empty = registry default (face-to-many)

    # "poll": submit + GET loop. "blocking": provider run-and-wait with retry.
    prediction_strategy: Literal["poll", "blocking"] = "poll"
    # Bounds each individual provider call.
    request_timeout_seconds: float = Field(10.0, gt=0)

    poll_interval_seconds: float = Field(5.0, ge=0)
    poll_max_attempts: int = Field(12, ge=0)

    blocking_max_retries: int = Field(3, ge=1)
    blocking_attempt_timeout_seconds: float = Field(60.0, gt=0)
    blocking_backoff_base_seconds: float = Field(1.0, ge=0)
    blocking_wait_seconds: int = Field(60, ge=1, le=60)  # Prefer: wait=<n>, provider max 60

    # Hosting platform's hard request lifetime.
    max_request_seconds: float = Field(330.0, gt=0)

    # ── Rate limiting ────────────────────────────────────────────────────────
    # "redis://host:6379/0" (shared), "memory://" (single process), or
    # empty = quota disabled, every request allowed.
    rate_limit_storage_uri: str = ""
    upload_quota: str = "3/day"  # limits/slowapi format, fixed window
    trust_forwarded_for: bool = True

    # Comma-separated origins for CORS. Empty string = deny all cross-origin requests.
    allowed_origins: str = ""

    # ── Feature flags ────────────────────────────────────────────────────────
    enable_debug_routes: bool = False

    # ── Logging ──────────────────────────────────────────────────────────────
    log_level: str = "INFO"
    log_json: bool = True

    @model_validator(mode="after")
    def budget_fits_request_lifetime(self) -> "Settings":
        budget = self.generation_budget_seconds()
        if budget > self.max_request_seconds:
            raise ValueError(
                f"{self.prediction_strategy} budget of {budget:.1f}s exceeds "
                f"max_request_seconds={self.max_request_seconds}"
            )
        return self

    def generation_budget_seconds(self) -> float:
        """Worst-case wall time one generation may spend waiting on the provider.

        Poll: a call timeout for the submit and for every poll, plus the
        sleeps between polls.
        Blocking: every attempt at its own timeout plus the cancel sent for
        it, and the backoff between attempts.
        """
        call = self.request_timeout_seconds
        if self.prediction_strategy == "blocking":
            retries = self.blocking_max_retries
            backoff = sum(self.blocking_backoff_base_seconds * 2**i for i in range(retries - 1))
            return retries * (self.blocking_attempt_timeout_seconds + call) + backoff
        attempts = self.poll_max_attempts
        return call + attempts * call + max(attempts - 1, 0) * self.poll_interval_seconds

    @property
    def api_token(self) -> str:
        return self.replicate_api_token.get_secret_value()


@lru_cache
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()
