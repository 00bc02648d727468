"""
Maintenance writes against the relay's event store.

A RelayWriter wraps the temporary read-write handle from
StoreManager.open_relay_for_write(). It holds the relay's writer lock
while in use, so callers keep the surrounding block short.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterable

from ...core.logging import get_logger
from .errors import storage_operation
from .models import IntegrityCheckResult, PageInfo, Timestamp, to_epoch
from .query import QueryBuilder, decode_hex_id, decode_hex_ids
from .retention_rules import parse_exception_rules, resolve_exclusions

if TYPE_CHECKING:
    import aiosqlite

logger = get_logger(__name__)

# Stay well below SQLITE_MAX_VARIABLE_NUMBER on older builds
DELETE_CHUNK_SIZE = 500


class RelayWriter:
    """Deletion, vacuum and integrity operations on the event table."""

    def __init__(self, conn: aiosqlite.Connection):
        self.conn = conn

    # -------------------------------------------------------------------------
    # Deletion
    # -------------------------------------------------------------------------

    async def delete_events_before(
        self,
        cutoff: Timestamp,
        exceptions: Iterable[str] = (),
        operator_pubkey: str | None = None,
    ) -> int:
        """
        Delete events created strictly before cutoff, minus exceptions.

        Args:
            cutoff: Events with created_at < cutoff are candidates
            exceptions: Rule strings such as "kind:0" or "pubkey:operator"
            operator_pubkey: Hex pubkey the operator rule resolves to

        Returns:
            Number of events deleted.
        """
        rules = parse_exception_rules(exceptions)
        kinds, authors = resolve_exclusions(rules, operator_pubkey)

        builder = QueryBuilder().where("created_at < ?", to_epoch(cutoff))
        builder.where_not_in("kind", kinds)
        builder.where_not_in("author", authors)

        with storage_operation("delete_events_before"):
            cursor = await self.conn.execute(
                f"DELETE FROM event{builder.where_sql()}",
                builder.params,
            )
            deleted = cursor.rowcount
            await self.conn.commit()

        logger.info(
            "Deleted %d event(s) before %d (%d kind and %d author exception(s))",
            deleted,
            to_epoch(cutoff),
            len(kinds),
            len(authors),
        )
        return deleted

    async def delete_events_by_ids(self, event_ids: Iterable[str]) -> int:
        """
        Delete events by hex id in a single transaction.

        Every id is validated before anything is deleted. Ids that are not
        present are ignored.

        Returns:
            Number of events deleted.
        """
        raw_ids = list(dict.fromkeys(decode_hex_ids(event_ids, "id")))
        if not raw_ids:
            return 0

        deleted = 0
        with storage_operation("delete_events_by_ids"):
            try:
                for start in range(0, len(raw_ids), DELETE_CHUNK_SIZE):
                    chunk = raw_ids[start : start + DELETE_CHUNK_SIZE]
                    builder = QueryBuilder().where_in("event_hash", chunk)
                    cursor = await self.conn.execute(
                        f"DELETE FROM event{builder.where_sql()}",
                        builder.params,
                    )
                    deleted += cursor.rowcount
            except BaseException:
                await self.conn.rollback()
                raise
            await self.conn.commit()

        logger.info("Deleted %d of %d requested event(s)", deleted, len(raw_ids))
        return deleted

    async def get_event_author(self, event_id: str) -> str | None:
        """Hex pubkey of the event's author, or None if it is not stored."""
        raw_id = decode_hex_id(event_id, "id")
        with storage_operation("get_event_author"):
            cursor = await self.conn.execute(
                "SELECT author FROM event WHERE event_hash = ?",
                (raw_id,),
            )
            row = await cursor.fetchone()
        if row is None or row["author"] is None:
            return None
        return bytes(row["author"]).hex()

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    async def page_info(self) -> PageInfo:
        """Page count, free pages and page size of the event store."""
        with storage_operation("page_info"):
            page_count = await self._pragma_int("page_count")
            free_pages = await self._pragma_int("freelist_count")
            page_size = await self._pragma_int("page_size")
        return PageInfo(page_count=page_count, free_pages=free_pages, page_size=page_size)

    async def vacuum(self) -> None:
        """Rebuild the database file, returning free pages to the OS."""
        with storage_operation("vacuum"):
            await self.conn.execute("VACUUM")
        logger.info("Relay database vacuumed")

    async def integrity_check(self) -> IntegrityCheckResult:
        """Run PRAGMA integrity_check."""
        with storage_operation("integrity_check"):
            cursor = await self.conn.execute("PRAGMA integrity_check")
            rows = await cursor.fetchall()

        messages = [str(row[0]) for row in rows]
        message = "\n".join(messages) if messages else "no result"
        ok = messages == ["ok"]
        if not ok:
            logger.warning("Relay database integrity check failed: %s", message)
        return IntegrityCheckResult(ok=ok, message=message)

    async def _pragma_int(self, name: str) -> int:
        cursor = await self.conn.execute(f"PRAGMA {name}")
        row = await cursor.fetchone()
        return int(row[0]) if row else 0
