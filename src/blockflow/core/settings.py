"""Centralized settings for blockflow.

Manifesto:
    Configuration should be explicit, validated, and environment-driven.
    One cached settings object decides where state is persisted, which
    timer backend drives the scheduler and what the default retry and
    checkpoint policies are.

All fields can be set through ``BLOCKFLOW_*`` environment variables (for
example ``BLOCKFLOW_STORAGE_BACKEND=sqlite``) or a ``.env`` file.

Examples:
    >>> from blockflow.core.settings import get_settings
    >>> settings = get_settings()
    >>> settings.tick_interval_seconds
    60.0

Tags:
    settings, configuration, pydantic, environment, blockflow

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

from enum import Enum
from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StorageBackend(str, Enum):
    MEMORY = "memory"
    FILE = "file"
    SQLITE = "sqlite"


class SchedulerBackendKind(str, Enum):
    THREAD = "thread"
    ASYNCIO = "asyncio"


class BlockflowSettings(BaseSettings):
    """Blockflow configuration.

    Fields
    ──────
    log_level / log_format       : structlog configuration
    data_dir                     : root for file/sqlite persistence
    storage_backend / _path      : KeyValueStore implementation and location
    scheduler_backend            : timer backend driving SchedulerService
    tick_interval_seconds        : how often due schedules are scanned
    checkpoint_interval_seconds  : automatic checkpoint cadence per run
    max_checkpoints              : checkpoints retained per run
    max_state_age_seconds        : age after which terminal runs expire
    default_max_retries / delay  : node retry policy when options omit it
    cron_search_horizon_days     : forward-scan bound for next-run search
    """

    model_config = SettingsConfigDict(
        env_prefix="BLOCKFLOW_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: str = Field(default="console", pattern="^(console|json)$")

    # ── Storage ──────────────────────────────────────────────────
    data_dir: Path = Field(
        default_factory=lambda: Path.home() / ".blockflow",
        description="Persistent data directory",
    )
    storage_backend: StorageBackend = StorageBackend.SQLITE
    storage_path: Path | None = Field(
        default=None,
        description="Store location; defaults to data_dir/blockflow.db or data_dir/store",
    )

    # ── Scheduler ────────────────────────────────────────────────
    scheduler_backend: SchedulerBackendKind = SchedulerBackendKind.THREAD
    tick_interval_seconds: float = Field(default=60.0, gt=0)
    align_ticks_to_minute: bool = True
    cron_search_horizon_days: int = Field(default=366, ge=1)

    # ── Execution state ──────────────────────────────────────────
    checkpoint_interval_seconds: float = Field(default=30.0, ge=0)
    max_checkpoints: int = Field(default=10, ge=1)
    max_state_age_seconds: float = Field(default=7 * 24 * 60 * 60, gt=0)

    # ── Node retry policy ────────────────────────────────────────
    default_max_retries: int = Field(default=3, ge=0)
    default_retry_delay_seconds: float = Field(default=1.0, ge=0)

    @model_validator(mode="after")
    def _default_storage_path(self) -> BlockflowSettings:
        if self.storage_path is None and self.storage_backend != StorageBackend.MEMORY:
            if self.storage_backend == StorageBackend.SQLITE:
                self.storage_path = self.data_dir / "blockflow.db"
            else:
                self.storage_path = self.data_dir / "store"
        return self


@lru_cache(maxsize=1)
def get_settings() -> BlockflowSettings:
    """Return the cached process-wide settings."""
    return BlockflowSettings()


def reset_settings() -> None:
    """Drop the cached settings (tests, reconfiguration)."""
    get_settings.cache_clear()


__all__ = [
    "BlockflowSettings",
    "StorageBackend",
    "SchedulerBackendKind",
    "get_settings",
    "reset_settings",
]
