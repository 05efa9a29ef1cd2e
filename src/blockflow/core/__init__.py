"""Blockflow core -- errors, logging, settings and storage primitives.

Architecture::

    errors.py      BlockflowError hierarchy with categories and context
    logging.py     structlog configuration and scoped log context
    settings.py    BlockflowSettings (pydantic-settings, BLOCKFLOW_* env)
    storage.py     KeyValueStore protocol: memory, file and SQLite
    scheduling/    cron evaluation, schedule repository, scheduler service

The scheduling package is imported on demand; it depends on the
execution and orchestration layers.
"""

from blockflow.core.errors import (
    BlockflowError,
    ErrorCategory,
    StorageError,
    ValidationError,
    categorize_error,
    is_retryable,
)
from blockflow.core.logging import LogContext, configure_logging, get_logger
from blockflow.core.settings import BlockflowSettings, get_settings, reset_settings
from blockflow.core.storage import (
    FileKeyValueStore,
    KeyValueStore,
    MemoryKeyValueStore,
    SQLiteKeyValueStore,
    create_store,
)

__all__ = [
    "BlockflowError",
    "BlockflowSettings",
    "ErrorCategory",
    "FileKeyValueStore",
    "KeyValueStore",
    "LogContext",
    "MemoryKeyValueStore",
    "SQLiteKeyValueStore",
    "StorageError",
    "ValidationError",
    "categorize_error",
    "configure_logging",
    "create_store",
    "get_logger",
    "get_settings",
    "is_retryable",
    "reset_settings",
]
