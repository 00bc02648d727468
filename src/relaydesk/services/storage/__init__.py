"""
Storage - Control Store and Relay Event Store Access.

The control store (relaydesk.db) is owned by relaydesk. The event store
(nostr.db) is owned by the relay process: it is read through a read-only
pool and written only by short-lived maintenance handles.

Key Components:
- StoreManager: Opens, pools and closes every SQLite handle
- RelayReader: Filtered event browsing and counts
- RelayWriter: Retention deletes, id deletes, vacuum, integrity check
- StatisticsAggregator: Timezone-aware, gap-filled chart data
- EventExporter: Ordered, cancellable streaming of events
- DeletionRequestQueue, SyncJobStore, SettingsStore: Control store tables

Usage:
    from relaydesk.services.storage import EventFilter, RelayReader, StoreManager

    async with StoreManager() as stores:
        reader = RelayReader(stores)
        events = await reader.query_events(EventFilter(kinds=[1], limit=20))
"""

from .connection import StoreManager
from .deletion_queue import DeletionRequestQueue
from .errors import (
    ExportCancelledError,
    InvalidIdentifierError,
    InvalidStateTransitionError,
    RelayNotConnectedError,
    StorageError,
    StorageOperationError,
)
from .export import EventExporter
from .models import (
    AuthorCount,
    DateCount,
    DeletionRequest,
    Event,
    EventFilter,
    IntegrityCheckResult,
    PageInfo,
    RelayStats,
    RetentionPolicy,
    SyncJob,
)
from .relay_reader import RelayReader
from .relay_writer import RelayWriter
from .retention_rules import ExceptionRule, parse_exception_rule, parse_exception_rules
from .settings_store import SettingsStore
from .statistics import StatisticsAggregator
from .sync_jobs import SyncJobStore

__all__ = [
    # Connections
    "StoreManager",
    # Event store
    "RelayReader",
    "RelayWriter",
    "StatisticsAggregator",
    "EventExporter",
    # Control store
    "DeletionRequestQueue",
    "SyncJobStore",
    "SettingsStore",
    # Retention rules
    "ExceptionRule",
    "parse_exception_rule",
    "parse_exception_rules",
    # Models
    "Event",
    "EventFilter",
    "DateCount",
    "AuthorCount",
    "RelayStats",
    "PageInfo",
    "IntegrityCheckResult",
    "RetentionPolicy",
    "DeletionRequest",
    "SyncJob",
    # Errors
    "StorageError",
    "RelayNotConnectedError",
    "InvalidIdentifierError",
    "StorageOperationError",
    "ExportCancelledError",
    "InvalidStateTransitionError",
]
