"""
Storage Data Classes.

Records exchanged between the event store, the control store, and the
services built on them. Timestamps are Unix seconds unless noted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Union

# =============================================================================
# Status Constants
# =============================================================================

DELETION_PENDING = "pending"
DELETION_PROCESSED = "processed"
DELETION_FAILED = "failed"
DELETION_TERMINAL = frozenset({DELETION_PROCESSED, DELETION_FAILED})

SYNC_RUNNING = "running"
SYNC_COMPLETED = "completed"
SYNC_FAILED = "failed"
SYNC_CANCELLED = "cancelled"
SYNC_TERMINAL = frozenset({SYNC_COMPLETED, SYNC_FAILED, SYNC_CANCELLED})

ADMIN_REQUEST_PREFIX = "admin-"

DEFAULT_QUERY_LIMIT = 50
MAX_QUERY_LIMIT = 1000

Timestamp = Union[datetime, int]


def to_epoch(value: Timestamp) -> int:
    """Convert a datetime or epoch int to whole Unix seconds."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp())
    return int(value)


# =============================================================================
# Event Store Records
# =============================================================================


@dataclass
class Event:
    """A signed Nostr event as stored by the relay."""

    id: str
    pubkey: str
    created_at: int
    kind: int
    tags: list[list[str]] = field(default_factory=list)
    content: str = ""
    sig: str = ""

    @property
    def created_at_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.created_at, tz=timezone.utc)

    def to_dict(self) -> dict[str, Any]:
        """Canonical NIP-01 JSON shape."""
        return {
            "id": self.id,
            "pubkey": self.pubkey,
            "created_at": self.created_at,
            "kind": self.kind,
            "tags": self.tags,
            "content": self.content,
            "sig": self.sig,
        }


@dataclass
class EventFilter:
    """
    Query parameters for event lookups.

    Empty lists mean "no constraint". ids, authors and mentions are
    64-character hex strings.
    """

    ids: list[str] = field(default_factory=list)
    authors: list[str] = field(default_factory=list)
    kinds: list[int] = field(default_factory=list)
    since: Timestamp | None = None
    until: Timestamp | None = None
    search: str | None = None
    mentions: list[str] = field(default_factory=list)
    limit: int = DEFAULT_QUERY_LIMIT
    offset: int = 0

    @property
    def effective_limit(self) -> int:
        """Limit clamped into (0, MAX_QUERY_LIMIT]."""
        if self.limit <= 0:
            return DEFAULT_QUERY_LIMIT
        return min(self.limit, MAX_QUERY_LIMIT)

    @property
    def effective_offset(self) -> int:
        return max(self.offset, 0)


@dataclass
class DateCount:
    """Event count for one time bucket label."""

    date: str
    count: int


@dataclass
class AuthorCount:
    """Event count for one author."""

    pubkey: str
    event_count: int


@dataclass
class RelayStats:
    """Headline numbers for the event store."""

    total_events: int
    total_pubkeys: int
    events_by_kind: dict[int, int]
    database_size_bytes: int
    oldest_event: int | None
    newest_event: int | None


@dataclass
class PageInfo:
    """SQLite page accounting."""

    page_count: int
    free_pages: int
    page_size: int

    @property
    def reclaimable_bytes(self) -> int:
        return self.free_pages * self.page_size

    @property
    def total_bytes(self) -> int:
        return self.page_count * self.page_size


@dataclass
class IntegrityCheckResult:
    """Outcome of PRAGMA integrity_check."""

    ok: bool
    message: str


# =============================================================================
# Control Store Records
# =============================================================================


@dataclass
class RetentionPolicy:
    """Retention settings stored in app_state."""

    retention_days: int = 0
    exceptions: list[str] = field(default_factory=list)
    honor_nip09: bool = True
    last_run: int | None = None

    @property
    def enabled(self) -> bool:
        """Retention is disabled when retention_days is zero or negative."""
        return self.retention_days > 0


@dataclass
class DeletionRequest:
    """A queued request to remove one or more events."""

    id: int
    event_id: str
    author_pubkey: str
    target_event_ids: list[str]
    reason: str | None
    status: str
    received_at: int
    processed_at: int | None
    events_deleted: int

    @property
    def is_admin(self) -> bool:
        """Admin requests carry a synthesized token instead of a kind 5 event id."""
        return self.event_id.startswith(ADMIN_REQUEST_PREFIX)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "event_id": self.event_id,
            "author_pubkey": self.author_pubkey,
            "target_event_ids": self.target_event_ids,
            "reason": self.reason,
            "status": self.status,
            "received_at": self.received_at,
            "processed_at": self.processed_at,
            "events_deleted": self.events_deleted,
        }


@dataclass
class SyncJob:
    """History row for an import from public relays."""

    id: int
    status: str
    pubkeys: list[str]
    relays: list[str]
    event_kinds: list[int] | None
    since_timestamp: int | None
    started_at: int
    completed_at: int | None
    events_fetched: int
    events_stored: int
    events_skipped: int
    error_message: str | None

    @property
    def is_running(self) -> bool:
        return self.status == SYNC_RUNNING
