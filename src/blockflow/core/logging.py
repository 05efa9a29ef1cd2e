"""
Blockflow logging - structured logging for the scheduler and executor.

Manifesto:
    A scheduled run fires at 03:00 with nobody watching.  When it fails,
    the only witness is the log, so every line must say which execution,
    which node and which attempt it belongs to.

    - **Structures:** JSON output for log aggregation
    - **Correlates:** execution_id / workflow propagated via contextvars
    - **Flexes:** colored console in a terminal, JSON everywhere else

Architecture:
    ::

        configure_logging(level="INFO", json_format=None, service="blockflow")
            │
            ▼
        structlog processor chain:
            1. merge_contextvars       (execution_id, workflow, ...)
            2. add_log_level / add_logger_name
            3. TimeStamper(iso, utc)
            4. add_service_metadata
            5. JSONRenderer | ConsoleRenderer

        logger = get_logger(__name__)
        logger.info("workflow.start", node_count=3)

Tags:
    logging, structlog, observability, blockflow

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

_SERVICE_NAME = "blockflow"
_configured = False


def _add_service_metadata(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add service-level metadata to all logs."""
    event_dict.setdefault("service", _SERVICE_NAME)
    return event_dict


def configure_logging(
    level: str | None = None,
    json_format: bool | None = None,
    service: str = "blockflow",
    force: bool = False,
) -> None:
    """Configure structured logging for the application.

    Should be called once at startup (CLI entry, embedding application).
    Subsequent calls are no-ops unless ``force=True``.

    Args:
        level: Log level (overrides BLOCKFLOW_LOG_LEVEL)
        json_format: True for JSON, False for console, None to read
            BLOCKFLOW_LOG_FORMAT and fall back to "JSON if not a tty"
        service: Service name included in every event
        force: Reconfigure even if already configured
    """
    global _SERVICE_NAME, _configured

    if _configured and not force:
        return

    _SERVICE_NAME = service
    log_level = (level or os.environ.get("BLOCKFLOW_LOG_LEVEL", "INFO")).upper()

    if json_format is None:
        env_format = os.environ.get("BLOCKFLOW_LOG_FORMAT", "").lower()
        if env_format:
            json_format = env_format == "json"
        else:
            json_format = not sys.stderr.isatty()

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        _add_service_metadata,
    ]

    if json_format:
        renderer: Processor = structlog.processors.JSONRenderer()
        shared_processors.append(structlog.processors.format_exc_info)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Route stdlib loggers (scheduler backends) through the same renderer
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(getattr(logging, log_level))

    _configured = True


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger.

    Args:
        name: Logger name (usually __name__)
    """
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind context to include in all subsequent logs.

    Example:
        bind_context(execution_id="exec_abc", workflow="storyboard")
        logger.info("node.start")  # Includes execution_id and workflow
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    """Remove specific keys from logging context."""
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    """Clear all bound context."""
    structlog.contextvars.clear_contextvars()


def is_configured() -> bool:
    """Check if logging has been configured."""
    return _configured


class LogContext:
    """Context manager for scoped logging context.

    Example:
        async with LogContext(execution_id="exec_abc"):
            logger.info("node.start")
        # Context cleared here
    """

    def __init__(self, **kwargs: Any):
        self._context = {k: v for k, v in kwargs.items() if v is not None}

    def __enter__(self) -> LogContext:
        bind_context(**self._context)
        return self

    def __exit__(self, *args: Any) -> None:
        unbind_context(*self._context.keys())

    async def __aenter__(self) -> LogContext:
        bind_context(**self._context)
        return self

    async def __aexit__(self, *args: Any) -> None:
        unbind_context(*self._context.keys())


__all__ = [
    "configure_logging",
    "get_logger",
    "bind_context",
    "unbind_context",
    "clear_context",
    "is_configured",
    "LogContext",
]
