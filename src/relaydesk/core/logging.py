"""
relaydesk Structured Logging

Provides consistent logging across the relaydesk package with:
- Environment-based configuration via RELAYDESK_LOG_LEVEL
- Backward compatibility with RELAYDESK_DEBUG
- JSON-formatted output option for machine parsing
- Module-specific loggers
- Per-task context fields (store operation, deletion request) via log_context

Usage:
    from relaydesk.core.logging import get_logger

    logger = get_logger(__name__)
    logger.info("Retention run complete", extra={"deleted": 12})
    logger.error("Vacuum failed", exc_info=True)

    with log_context(request_id=7):
        logger.info("Deleted 3 event(s)")  # record carries request_id=7
"""

from __future__ import annotations

import json
import logging
import sys
import traceback
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Iterator, Optional

from .config import get_settings

# Attributes present on every LogRecord; anything else came in via extra=
_RESERVED_RECORD_KEYS = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "exc_info",
        "exc_text",
        "stack_info",
        "message",
        "taskName",
        "context_keys",
    }
)


_log_context: ContextVar[dict[str, Any]] = ContextVar("relaydesk_log_context", default={})


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """
    Attach fields to every relaydesk record logged inside the block.

    Nested blocks merge; inner values win. Fields passed explicitly via
    extra= take precedence over context fields.
    """
    token = _log_context.set({**_log_context.get(), **fields})
    try:
        yield
    finally:
        _log_context.reset(token)


class ContextFilter(logging.Filter):
    """Copies the active log_context fields onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        fields = _log_context.get()
        keys = []
        for key, value in fields.items():
            if not hasattr(record, key):
                setattr(record, key, value)
                keys.append(key)
        record.context_keys = tuple(keys)
        return True


_context_filter = ContextFilter()


def _get_log_level() -> int:
    return get_settings().log_level_int


def _is_json_output() -> bool:
    return get_settings().log_json


class RelaydeskFormatter(logging.Formatter):
    """
    Formats logs with level, module, and message.

    Supports both human-readable and JSON output.
    """

    def __init__(self, json_output: bool = False) -> None:
        super().__init__()
        self.json_output = json_output

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now(timezone.utc).isoformat(timespec="seconds")

        if self.json_output:
            return self._format_json(record, timestamp)
        return self._format_text(record)

    def _format_text(self, record: logging.LogRecord) -> str:
        """Format as human-readable text."""
        module = record.name.split(".")[-1] if "." in record.name else record.name
        msg = f"[RELAYDESK {record.levelname}] [{module}] {record.getMessage()}"

        context_keys = getattr(record, "context_keys", ())
        if context_keys:
            pairs = " ".join(f"{key}={getattr(record, key)}" for key in context_keys)
            msg += f" ({pairs})"

        if record.exc_info:
            msg += "\n" + "".join(traceback.format_exception(*record.exc_info))

        return msg

    def _format_json(self, record: logging.LogRecord, timestamp: str) -> str:
        """Format as JSON for machine parsing."""
        log_data: dict[str, Any] = {
            "timestamp": timestamp,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_KEYS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = "".join(traceback.format_exception(*record.exc_info))

        return json.dumps(log_data, default=str)


_loggers: dict[str, logging.Logger] = {}
_handler: Optional[logging.Handler] = None


def _get_handler() -> logging.Handler:
    """Get or create the shared stderr handler."""
    global _handler
    if _handler is None:
        _handler = logging.StreamHandler(sys.stderr)
        _handler.setFormatter(RelaydeskFormatter(json_output=_is_json_output()))
    return _handler


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger for the given module name.

    Args:
        name: Module name (typically __name__)

    Returns:
        Configured logger instance
    """
    if name in _loggers:
        return _loggers[name]

    logger = logging.getLogger(name)
    logger.setLevel(_get_log_level())
    logger.addHandler(_get_handler())
    logger.addFilter(_context_filter)
    logger.propagate = False

    _loggers[name] = logger
    return logger


def set_log_level(level: int) -> None:
    """Dynamically set log level for all relaydesk loggers."""
    for logger in _loggers.values():
        logger.setLevel(level)


def debug_enabled() -> bool:
    """Check if debug logging is enabled."""
    return _get_log_level() <= logging.DEBUG


def reset_logging() -> None:
    """
    Reset all relaydesk loggers to default state.

    Restores propagate=True and level=NOTSET on every relaydesk.* logger known
    to the logging manager, detaches the shared handler from cached loggers,
    and drops the handler cache so it is rebuilt from fresh settings.

    Used by test fixtures so caplog can capture records.
    """
    global _handler

    manager = logging.Logger.manager
    for name in list(manager.loggerDict.keys()):
        if name == "relaydesk" or name.startswith("relaydesk."):
            logger_or_placeholder = manager.loggerDict[name]
            # loggerDict can hold PlaceHolder objects
            if isinstance(logger_or_placeholder, logging.Logger):
                logger_or_placeholder.propagate = True
                logger_or_placeholder.setLevel(logging.NOTSET)

    for logger in _loggers.values():
        if _handler is not None:
            logger.removeHandler(_handler)

    _handler = None
