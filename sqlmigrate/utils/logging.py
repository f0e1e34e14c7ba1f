"""
Structured JSON logging for sqlmigrate.

Provides standardized logging with:
- JSON formatted output to stderr
- UTC timestamps with timezone info
- Structured context fields
- Migration version attached to records that concern a single migration

All logs use Python's standard logging module with custom formatting.
Log level defaults to WARNING, use setup_logging(verbose=True) for DEBUG.
Only stderr is used; stdout is reserved for user output.

Examples:
    >>> import logging
    >>> from sqlmigrate.utils.logging import setup_logging
    >>> setup_logging(verbose=True)
    >>> logger = logging.getLogger("sqlmigrate.storage.db")
    >>> logger.info("Migration applied", extra={"version": 3})
"""

import json
import logging
import sys
from typing import Any

from sqlmigrate.utils.time import utc_timestamp


class JSONFormatter(logging.Formatter):
    """
    Custom formatter that outputs logs as JSON with structured fields.

    Each log record is formatted as a JSON object with:
    - timestamp: ISO 8601 UTC timestamp
    - level: Log level (INFO, WARNING, ERROR, DEBUG)
    - component: Module/component name (from logger name)
    - message: Human-readable log message
    - context: Additional structured data (from 'context' in extra)
    - version: Migration version (from 'version' in extra, if available)
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": utc_timestamp(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        if hasattr(record, "context") and isinstance(record.context, dict):
            log_entry["context"] = record.context

        if hasattr(record, "version"):
            log_entry["version"] = record.version

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def setup_logging(verbose: bool = False) -> None:
    """
    Configure structured JSON logging for the application.

    Sets up:
    - JSON formatter for structured output
    - stderr output (stdout reserved for user-facing content)
    - Log level: DEBUG if verbose=True, WARNING otherwise

    The CLI keeps the default at WARNING so that normal runs only show
    Rich output; --verbose surfaces the per-action INFO records as JSON.

    Args:
        verbose: If True, set log level to DEBUG.
    """
    root_logger = logging.getLogger()
    level = logging.DEBUG if verbose else logging.WARNING
    root_logger.setLevel(level)

    # Remove any existing handlers (prevents duplicate logs)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter())

    root_logger.addHandler(handler)


def log_with_context(
    logger: logging.Logger,
    level: int,
    message: str,
    context: dict[str, Any] | None = None,
    version: int | None = None,
) -> None:
    """
    Log a message with structured context and optional migration version.

    Equivalent to logger.log(level, message, extra={'context': {...}, 'version': N})

    Args:
        logger: Logger instance
        level: Log level (logging.INFO, logging.WARNING, etc.)
        message: Human-readable log message
        context: Optional dict with additional structured data
        version: Optional migration version to include in log

    Example:
        >>> log_with_context(
        ...     logger,
        ...     logging.WARNING,
        ...     "Discarded out-of-order migrations",
        ...     context={"discarded": [2]},
        ...     version=3,
        ... )
    """
    extra = {}

    if context is not None:
        extra["context"] = context

    if version is not None:
        extra["version"] = version

    logger.log(level, message, extra=extra if extra else None)
