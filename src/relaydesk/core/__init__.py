"""Core configuration, logging and formatting helpers."""

from .config import RelaydeskSettings, get_settings, reset_settings
from .formatters import format_datetime, format_timestamp, get_utc_now, get_utc_timestamp
from .logging import get_logger

__all__ = [
    "RelaydeskSettings",
    "get_settings",
    "reset_settings",
    "get_logger",
    "format_datetime",
    "format_timestamp",
    "get_utc_now",
    "get_utc_timestamp",
]
