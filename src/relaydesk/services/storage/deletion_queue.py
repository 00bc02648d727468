"""
Deletion request queue in the control store.

Requests arrive two ways: kind 5 events seen by the relay (keyed by the
deletion event id) and operator requests from the admin surface (keyed
by a synthesized admin-<token>). Both share one unique key space.

Lifecycle: pending -> processed | failed. Terminal states are final.
"""

from __future__ import annotations

import json
import sqlite3
import uuid
from typing import TYPE_CHECKING, Any

from ...core.logging import get_logger
from .errors import InvalidStateTransitionError, storage_operation
from .models import (
    ADMIN_REQUEST_PREFIX,
    DELETION_PENDING,
    DELETION_TERMINAL,
    DeletionRequest,
)
from .query import decode_hex_id, decode_hex_ids

if TYPE_CHECKING:
    from .connection import StoreManager

logger = get_logger(__name__)

_COLUMNS = (
    "id, event_id, author_pubkey, target_event_ids, reason, status,"
    " received_at, processed_at, events_deleted"
)


def new_admin_token() -> str:
    """A request key that cannot collide with a hex event id."""
    return f"{ADMIN_REQUEST_PREFIX}{uuid.uuid4().hex}"


def _row_to_request(row: Any) -> DeletionRequest:
    try:
        targets = json.loads(row["target_event_ids"] or "[]")
    except ValueError:
        logger.debug("Request %s has unparseable targets", row["id"])
        targets = []
    if not isinstance(targets, list):
        targets = []

    return DeletionRequest(
        id=row["id"],
        event_id=row["event_id"],
        author_pubkey=row["author_pubkey"],
        target_event_ids=[str(t) for t in targets],
        reason=row["reason"],
        status=row["status"],
        received_at=row["received_at"],
        processed_at=row["processed_at"],
        events_deleted=row["events_deleted"] or 0,
    )


class DeletionRequestQueue:
    """CRUD over the deletion_requests table."""

    def __init__(self, manager: StoreManager):
        self.manager = manager

    async def enqueue(
        self,
        event_id: str,
        requested_by: str,
        reason: str | None = None,
    ) -> int:
        """
        Queue an operator request to delete one event.

        Args:
            event_id: Hex id of the event to delete
            requested_by: Who asked (operator pubkey or admin user name)
            reason: Optional free-text reason

        Returns:
            The new request id.
        """
        decode_hex_id(event_id, "id")
        token = new_admin_token()

        with storage_operation("enqueue deletion request"):
            cursor = await self.manager.app_db.execute(
                """
                INSERT INTO deletion_requests (event_id, author_pubkey, target_event_ids, reason)
                VALUES (?, ?, ?, ?)
                """,
                (token, requested_by, json.dumps([event_id.lower()]), reason),
            )
            await self.manager.app_db.commit()

        logger.info("Queued admin deletion request %d for event %s", cursor.lastrowid, event_id)
        return cursor.lastrowid

    async def record_request(
        self,
        event_id: str,
        author_pubkey: str,
        target_event_ids: list[str],
        reason: str | None = None,
    ) -> int | None:
        """
        Record a kind 5 deletion event.

        Returns:
            The new request id, or None if this deletion event was already recorded.
        """
        decode_hex_id(event_id, "id")
        decode_hex_id(author_pubkey, "author")
        targets = [t.lower() for t in target_event_ids]
        decode_hex_ids(targets, "id")

        with storage_operation("record deletion request"):
            try:
                cursor = await self.manager.app_db.execute(
                    """
                    INSERT INTO deletion_requests (event_id, author_pubkey, target_event_ids, reason)
                    VALUES (?, ?, ?, ?)
                    """,
                    (event_id.lower(), author_pubkey.lower(), json.dumps(targets), reason),
                )
            except sqlite3.IntegrityError:
                await self.manager.app_db.rollback()
                logger.debug("Deletion request %s already recorded", event_id)
                return None
            await self.manager.app_db.commit()
        return cursor.lastrowid

    async def get(self, request_id: int) -> DeletionRequest | None:
        with storage_operation("get deletion request"):
            cursor = await self.manager.app_db.execute(
                f"SELECT {_COLUMNS} FROM deletion_requests WHERE id = ?",
                (request_id,),
            )
            row = await cursor.fetchone()
        return _row_to_request(row) if row else None

    async def list_pending(self) -> list[DeletionRequest]:
        """Pending requests, oldest first, in processing order."""
        with storage_operation("list pending deletion requests"):
            cursor = await self.manager.app_db.execute(
                f"SELECT {_COLUMNS} FROM deletion_requests WHERE status = ?"
                " ORDER BY received_at ASC, id ASC",
                (DELETION_PENDING,),
            )
            rows = await cursor.fetchall()
        return [_row_to_request(row) for row in rows]

    async def list_by_status(self, status: str | None = None) -> list[DeletionRequest]:
        """Requests with the given status (all when None), newest first."""
        sql = f"SELECT {_COLUMNS} FROM deletion_requests"
        params: list[Any] = []
        if status:
            sql += " WHERE status = ?"
            params.append(status)
        sql += " ORDER BY received_at DESC, id DESC"

        with storage_operation("list deletion requests"):
            cursor = await self.manager.app_db.execute(sql, params)
            rows = await cursor.fetchall()
        return [_row_to_request(row) for row in rows]

    async def pending_count(self) -> int:
        with storage_operation("count pending deletion requests"):
            cursor = await self.manager.app_db.execute(
                "SELECT COUNT(*) FROM deletion_requests WHERE status = ?",
                (DELETION_PENDING,),
            )
            row = await cursor.fetchone()
        return row[0] if row else 0

    async def mark_processed(self, request_id: int, status: str, deleted_count: int) -> None:
        """
        Move a pending request to a terminal status.

        Raises:
            InvalidStateTransitionError: status is not terminal, or the request
                is missing or no longer pending.
        """
        if status not in DELETION_TERMINAL:
            raise InvalidStateTransitionError(
                "deletion request", request_id, DELETION_PENDING, status
            )

        with storage_operation("mark deletion request processed"):
            cursor = await self.manager.app_db.execute(
                """
                UPDATE deletion_requests
                SET status = ?, processed_at = strftime('%s', 'now'), events_deleted = ?
                WHERE id = ? AND status = ?
                """,
                (status, deleted_count, request_id, DELETION_PENDING),
            )
            await self.manager.app_db.commit()

        if cursor.rowcount == 0:
            existing = await self.get(request_id)
            raise InvalidStateTransitionError(
                "deletion request",
                request_id,
                existing.status if existing else None,
                status,
            )
