"""
Storage Errors.

Domain-specific exceptions for event store and control store operations.
These errors are independent of the transport layer (HTTP, CLI, etc.).
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from typing import Iterator

from ...core.logging import log_context


class StorageError(Exception):
    """Base exception for storage operations."""

    pass


class RelayNotConnectedError(StorageError):
    """Raised when the event store is not available."""

    def __init__(self, path: str | None = None):
        self.path = path
        msg = "Relay database not connected"
        if path:
            msg += f": {path}"
        super().__init__(msg)


class InvalidIdentifierError(StorageError, ValueError):
    """Raised when an event id or pubkey is not 64 hex characters."""

    def __init__(self, field: str, value: str):
        self.field = field
        self.value = value
        super().__init__(f"Invalid {field}: {value!r} (expected 64 hex characters)")


class StorageOperationError(StorageError):
    """Raised when the storage engine fails during an operation."""

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"{operation} failed: {reason}")


class ExportCancelledError(StorageError):
    """Raised when an export stream is cancelled by the caller."""

    def __init__(self, delivered: int):
        self.delivered = delivered
        super().__init__(f"Export cancelled after {delivered} event(s)")


class InvalidStateTransitionError(StorageError):
    """Raised when a record is moved to a status its lifecycle does not allow."""

    def __init__(self, entity: str, record_id: int, current: str | None, requested: str):
        self.entity = entity
        self.record_id = record_id
        self.current = current
        self.requested = requested
        if current is None:
            msg = f"{entity} {record_id} not found"
        else:
            msg = f"Cannot move {entity} {record_id} from {current!r} to {requested!r}"
        super().__init__(msg)


@contextmanager
def storage_operation(operation: str) -> Iterator[None]:
    """
    Wrap storage engine failures with the name of the operation that hit them.

    Records logged inside the block carry an `operation` field.

    Usage:
        with storage_operation("query_events"):
            cursor = await conn.execute(...)
    """
    with log_context(operation=operation):
        try:
            yield
        except sqlite3.Error as e:
            raise StorageOperationError(operation, str(e)) from e
