"""Settings for the quote subsystem, loaded from the environment / .env."""

from __future__ import annotations

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Fixed fallback order after the default provider
PROVIDER_ORDER: tuple[str, ...] = ("finnhub", "twelve_data", "massive")

DEFAULT_SYMBOLS: list[str] = ["AAPL", "MSFT", "GOOGL", "AMZN", "NVDA"]


class QuoteSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="QUOTES_",
        env_file=("../.env", ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    finnhub_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("FINNHUB_API_KEY", "QUOTES_FINNHUB_API_KEY"),
    )
    twelve_data_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("TWELVE_DATA_API_KEY", "QUOTES_TWELVE_DATA_API_KEY"),
    )
    massive_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("MASSIVE_API_KEY", "QUOTES_MASSIVE_API_KEY"),
    )
    default_provider: str | None = None

    # Cache tiers
    cache_ttl_seconds: float = 60.0
    persisted_cache_ttl_seconds: float = 300.0

    # Upstream calls
    request_timeout_seconds: float = 10.0
    poll_interval_seconds: float = 5.0

    # Realtime broker
    reconnect_base_delay_seconds: float = 1.0
    reconnect_max_delay_seconds: float = 30.0
    reconnect_max_attempts: int | None = 5  # None = retry forever at the ceiling
    connection_lifetime_seconds: float = 300.0

    # Push channels
    stream_interval_seconds: float = 1.0
    heartbeat_every: int = 10
    channel_lifetime_seconds: float = 300.0

    usage_history_size: int = 10_000
    default_symbols: list[str] = Field(default_factory=lambda: list(DEFAULT_SYMBOLS))
    log_level: str = "INFO"

    @field_validator("finnhub_api_key", "twelve_data_api_key", "massive_api_key", mode="before")
    @classmethod
    def _blank_key_is_none(cls, value: str | None) -> str | None:
        if isinstance(value, str) and not value.strip():
            return None
        return value.strip() if isinstance(value, str) else value

    @field_validator("default_provider", mode="before")
    @classmethod
    def _normalize_provider(cls, value: str | None) -> str | None:
        if isinstance(value, str):
            value = value.strip().lower()
            return value or None
        return value

    def api_key_for(self, provider: str) -> str | None:
        return getattr(self, f"{provider}_api_key", None)
