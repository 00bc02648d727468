"""
Timestamp formatting helpers shared by the CLI and services.
"""

from __future__ import annotations

from datetime import datetime, timezone


def format_datetime(dt: datetime) -> str:
    """
    Format datetime for display.

    Args:
        dt: datetime object (naive values are assumed to be UTC)

    Returns:
        ISO format string like "2026-01-15T12:30:00Z"
    """
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%SZ")


def format_timestamp(ts: int | None) -> str | None:
    """Format a Unix timestamp, passing None through."""
    if ts is None:
        return None
    return format_datetime(datetime.fromtimestamp(ts, tz=timezone.utc))


def get_utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


def get_utc_timestamp() -> str:
    """Get current UTC timestamp string."""
    return format_datetime(get_utc_now())
