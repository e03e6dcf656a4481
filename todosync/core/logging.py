"""Logging and observability configuration using Pydantic Logfire.

This module provides standardized logging utilities and configuration.
All modules should use Python's standard logging library (logging.getLogger(__name__)),
and Logfire will automatically capture and enrich these logs.

Standard usage:
    import logging
    logger = logging.getLogger(__name__)
    logger.info("Message", extra={"key": "value"})

Structured logging utilities:
    log_with_context(logger, "info", "Message", task_id="123", operation="update")
"""

import logging

import logfire

from todosync.core.config import settings


def configure_logfire() -> None:
    """Configure Pydantic Logfire with token from environment.

    Nothing is sent unless a token is configured; spans still work locally.
    """
    logfire.configure(
        token=settings.logfire_token,
        service_name="todosync",
        service_version="0.1.0",
        send_to_logfire="if-token-present",
    )

    logger = logging.getLogger(__name__)
    logger.info("Logfire configured successfully")


def instrument_httpx() -> None:
    """Trace every request made through httpx clients (the task service gateway)."""
    logfire.instrument_httpx()
    logger = logging.getLogger(__name__)
    logger.info("httpx instrumentation configured")


def span(name: str, **attributes: object) -> logfire.LogfireSpan:
    """Create a custom span for service layer functions.

    Usage:
        with span("reconciliation.update", task_id=task.id):
            # Your service logic here
            pass
    """
    return logfire.span(name, **attributes)


def log_with_context(
    logger: logging.Logger,
    level: str,
    message: str,
    **context: object,
) -> None:
    """Log a message with structured context fields.

    Args:
        logger: Logger instance to use
        level: Log level ("debug", "info", "warning", "error", "critical")
        message: Log message
        **context: Additional context fields (task_id, operation, error_kind, etc.)

    Usage:
        log_with_context(logger, "info", "Task synced", task_id="123", operation="create")
    """
    log_method = getattr(logger, level.lower())
    log_method(message, extra=context)


def log_with_task_context(
    logger: logging.Logger,
    level: str,
    message: str,
    task_id: str | None = None,
    **extra: object,
) -> None:
    """Log a message with task context.

    Args:
        logger: Logger instance to use
        level: Log level ("debug", "info", "warning", "error", "critical")
        message: Log message
        task_id: Task ID to include in context
        **extra: Additional context fields

    Usage:
        log_with_task_context(logger, "warning", "Remote delete failed", task_id="123", error_kind="api")
    """
    context = {"task_id": task_id, **extra} if task_id else extra
    log_with_context(logger, level, message, **context)
