"""Structured logging configuration for Productflow.

This module configures structlog with support for:
- JSON and console output formats
- File rotation based on size
- Correlation IDs for request tracing
- Actor and record context binding

The logging system integrates structlog with Python's stdlib logging
for handlers (file rotation), while using structlog exclusively for
actual log emission.

Example usage:
    >>> from productflow.config import LoggingConfig
    >>> from productflow.logging import setup_logging, get_logger, bind_actor_context
    >>>
    >>> setup_logging(LoggingConfig(level="INFO", format="json"))
    >>> logger = get_logger(__name__)
    >>> bind_actor_context(actor_id="user-7", record_id="prod-42")
    >>> logger.info("transition_requested", to_state="REVIEW")
"""

from __future__ import annotations

import contextvars
import logging
import logging.handlers
import sys
from typing import Any

import structlog

from productflow.config import LoggingConfig

_correlation_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "correlation_id", default=None
)


def add_correlation_id(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Add correlation_id to log event if set in context.

    Args:
        logger: Logger instance (unused, required by structlog protocol)
        method_name: Log method name (unused, required by structlog protocol)
        event_dict: Current event dictionary to augment

    Returns:
        Event dictionary with correlation_id added if available
    """
    correlation_id = _correlation_id.get()
    if correlation_id is not None:
        event_dict["correlation_id"] = correlation_id
    return event_dict


def set_correlation_id(correlation_id: str | None) -> None:
    """Set correlation ID for current context."""
    _correlation_id.set(correlation_id)


def get_correlation_id() -> str | None:
    """Get current correlation ID from context."""
    return _correlation_id.get()


def bind_actor_context(actor_id: str, record_id: str | None = None) -> None:
    """Bind actor and record context to all subsequent logs.

    Args:
        actor_id: Identifier of the acting user
        record_id: Optional identifier of the record being worked on
    """
    if record_id is None:
        structlog.contextvars.bind_contextvars(actor_id=actor_id)
    else:
        structlog.contextvars.bind_contextvars(actor_id=actor_id, record_id=record_id)


def setup_logging(config: LoggingConfig) -> None:
    """Configure structlog with the given configuration.

    Sets up the complete logging pipeline including JSON or console
    rendering, optional file rotation, timestamps, log level, logger
    name and correlation ID processors.

    Args:
        config: Logging configuration from ProductflowConfig
    """
    log_level = getattr(logging, config.level)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    if config.file is not None:
        config.file.parent.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = logging.handlers.RotatingFileHandler(
            filename=config.file,
            maxBytes=config.rotation_size_mb * 1024 * 1024,
            backupCount=config.retention_count,
            encoding="utf-8",
        )
    else:
        handler = logging.StreamHandler(sys.stdout)

    handler.setLevel(log_level)
    root_logger.addHandler(handler)

    if config.format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:  # console
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.contextvars.merge_contextvars,
            add_correlation_id,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance.

    Args:
        name: Logger name (typically __name__ of the calling module)

    Returns:
        Configured structlog BoundLogger instance
    """
    return structlog.get_logger(name)
