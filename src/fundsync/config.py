"""Configuration system using pydantic-settings with environment variable loading."""

from typing import Literal, Self

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from fundsync.window import (
    Explicit,
    LookbackHours,
    SinceLastOrLookbackHours,
    WindowPolicy,
)

SyncMode = Literal["init", "markets", "funding", "stats", "backfill", "exchange_add"]


class SyncSettings(BaseSettings):
    """Sync run behaviour and throughput tunables.

    The window fields are mutually exclusive: set lookback_hours,
    since_last_hours, or both start_ms and end_ms. With none set the run
    resumes from the last stored row (default_lookback_hours on first run).
    """

    model_config = SettingsConfigDict(env_prefix="SYNC_")

    mode: SyncMode = "init"
    exchange: str | None = None  # None = all active exchanges

    max_concurrency: int = Field(default=16, ge=1)  # in-flight per-market fetches
    db_chunk_size: int = Field(default=20_000, ge=1)
    funding_interval_minutes: int = 480  # 8h cadence written onto each exchange
    default_lookback_hours: int = Field(default=24, ge=0)

    lookback_hours: int | None = Field(default=None, ge=0)
    since_last_hours: int | None = Field(default=None, ge=0)
    start_ms: int | None = None
    end_ms: int | None = None

    @model_validator(mode="after")
    def _check_window_fields(self) -> Self:
        if (self.start_ms is None) != (self.end_ms is None):
            raise ValueError("start_ms and end_ms must be given together")
        given = [
            self.lookback_hours is not None,
            self.since_last_hours is not None,
            self.start_ms is not None,
        ]
        if sum(given) > 1:
            raise ValueError(
                "only one of lookback_hours, since_last_hours, start_ms/end_ms may be set"
            )
        return self

    def window_policy(self) -> WindowPolicy:
        """Build the window policy described by these settings."""
        if self.start_ms is not None and self.end_ms is not None:
            return Explicit(self.start_ms, self.end_ms)
        if self.lookback_hours is not None:
            return LookbackHours(self.lookback_hours)
        if self.since_last_hours is not None:
            return SinceLastOrLookbackHours(self.since_last_hours)
        return SinceLastOrLookbackHours(self.default_lookback_hours)


class DatabaseSettings(BaseSettings):
    """SQLite store location and connection pool sizing."""

    model_config = SettingsConfigDict(env_prefix="DB_")

    path: str = "data/funding.db"
    pool_size: int = Field(default=20, ge=2)
    write_headroom: int = Field(default=2, ge=1)  # connections kept free for the writer


class ExchangeApiSettings(BaseSettings):
    """Public exchange API access settings."""

    model_config = SettingsConfigDict(env_prefix="EXCHANGE_")

    testnet: bool = False
    http_timeout: float = 30.0
    paradex_page_size: int = Field(default=1000, ge=1)


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    log_level: str = "INFO"
    log_format: Literal["console", "json"] = "console"
    sync: SyncSettings = Field(default_factory=SyncSettings)
    db: DatabaseSettings = Field(default_factory=DatabaseSettings)
    exchange: ExchangeApiSettings = Field(default_factory=ExchangeApiSettings)

    @model_validator(mode="after")
    def _check_pool_headroom(self) -> Self:
        # Fetch tasks hold a pooled connection for their cursor lookup; the
        # batch writer needs one free as well.
        available = self.db.pool_size - self.db.write_headroom
        if self.sync.max_concurrency > available:
            raise ValueError(
                f"sync.max_concurrency ({self.sync.max_concurrency}) must not exceed "
                f"db.pool_size - db.write_headroom ({available})"
            )
        return self
