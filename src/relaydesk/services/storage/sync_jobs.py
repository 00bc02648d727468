"""
Sync job history in the control store.

A sync job records one import of events from public relays. Only one job
should be running at a time; callers check get_running() before create().
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from ...core.logging import get_logger
from .errors import InvalidStateTransitionError, storage_operation
from .models import SYNC_RUNNING, SYNC_TERMINAL, SyncJob, Timestamp, to_epoch

if TYPE_CHECKING:
    from .connection import StoreManager

logger = get_logger(__name__)

_COLUMNS = (
    "id, status, pubkeys, relays, event_kinds, since_timestamp, started_at,"
    " completed_at, events_fetched, events_stored, events_skipped, error_message"
)


def _load_list(raw: str | None) -> list[Any] | None:
    if raw is None:
        return None
    try:
        value = json.loads(raw)
    except ValueError:
        return []
    return value if isinstance(value, list) else []


def _row_to_job(row: Any) -> SyncJob:
    return SyncJob(
        id=row["id"],
        status=row["status"],
        pubkeys=_load_list(row["pubkeys"]) or [],
        relays=_load_list(row["relays"]) or [],
        event_kinds=_load_list(row["event_kinds"]),
        since_timestamp=row["since_timestamp"],
        started_at=row["started_at"],
        completed_at=row["completed_at"],
        events_fetched=row["events_fetched"] or 0,
        events_stored=row["events_stored"] or 0,
        events_skipped=row["events_skipped"] or 0,
        error_message=row["error_message"],
    )


class SyncJobStore:
    """CRUD over the sync_jobs table."""

    def __init__(self, manager: StoreManager):
        self.manager = manager

    async def create(
        self,
        pubkeys: list[str],
        relays: list[str],
        event_kinds: list[int] | None = None,
        since: Timestamp | None = None,
    ) -> int:
        """Start a job in the running state. Returns its id."""
        with storage_operation("create sync job"):
            cursor = await self.manager.app_db.execute(
                """
                INSERT INTO sync_jobs (status, pubkeys, relays, event_kinds, since_timestamp)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    SYNC_RUNNING,
                    json.dumps(pubkeys),
                    json.dumps(relays),
                    json.dumps(event_kinds) if event_kinds is not None else None,
                    to_epoch(since) if since is not None else None,
                ),
            )
            await self.manager.app_db.commit()

        logger.info("Sync job %d started (%d pubkeys, %d relays)", cursor.lastrowid, len(pubkeys), len(relays))
        return cursor.lastrowid

    async def update_progress(self, job_id: int, fetched: int, stored: int, skipped: int) -> None:
        """Overwrite the running counters of a job."""
        with storage_operation("update sync job progress"):
            await self.manager.app_db.execute(
                """
                UPDATE sync_jobs
                SET events_fetched = ?, events_stored = ?, events_skipped = ?
                WHERE id = ?
                """,
                (fetched, stored, skipped, job_id),
            )
            await self.manager.app_db.commit()

    async def complete(self, job_id: int, status: str, error_message: str | None = None) -> None:
        """
        Move a running job to a terminal status.

        Raises:
            InvalidStateTransitionError: status is not terminal, or the job
                is missing or not running.
        """
        if status not in SYNC_TERMINAL:
            raise InvalidStateTransitionError("sync job", job_id, SYNC_RUNNING, status)

        with storage_operation("complete sync job"):
            cursor = await self.manager.app_db.execute(
                """
                UPDATE sync_jobs
                SET status = ?, completed_at = strftime('%s', 'now'), error_message = ?
                WHERE id = ? AND status = ?
                """,
                (status, error_message, job_id, SYNC_RUNNING),
            )
            await self.manager.app_db.commit()

        if cursor.rowcount == 0:
            existing = await self.get(job_id)
            raise InvalidStateTransitionError(
                "sync job", job_id, existing.status if existing else None, status
            )

        logger.info("Sync job %d finished: %s", job_id, status)

    async def get(self, job_id: int) -> SyncJob | None:
        with storage_operation("get sync job"):
            cursor = await self.manager.app_db.execute(
                f"SELECT {_COLUMNS} FROM sync_jobs WHERE id = ?",
                (job_id,),
            )
            row = await cursor.fetchone()
        return _row_to_job(row) if row else None

    async def get_running(self) -> SyncJob | None:
        """The most recently started running job, if any."""
        with storage_operation("get running sync job"):
            cursor = await self.manager.app_db.execute(
                f"SELECT {_COLUMNS} FROM sync_jobs WHERE status = ?"
                " ORDER BY started_at DESC, id DESC LIMIT 1",
                (SYNC_RUNNING,),
            )
            row = await cursor.fetchone()
        return _row_to_job(row) if row else None

    async def list_recent(self, limit: int = 20) -> list[SyncJob]:
        with storage_operation("list sync jobs"):
            cursor = await self.manager.app_db.execute(
                f"SELECT {_COLUMNS} FROM sync_jobs ORDER BY started_at DESC, id DESC LIMIT ?",
                (max(limit, 1),),
            )
            rows = await cursor.fetchall()
        return [_row_to_job(row) for row in rows]
