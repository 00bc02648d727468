"""
Read-only queries against the relay's event store.

Every method leases a connection from the StoreManager's read-only pool
and raises RelayNotConnectedError immediately when the event store is
not open.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from ...core.logging import get_logger
from .errors import storage_operation
from .models import Event, EventFilter, RelayStats, Timestamp, to_epoch
from .query import (
    EVENT_COLUMNS,
    QueryBuilder,
    apply_event_filter,
    decode_event_row,
    decode_hex_id,
    decode_hex_ids,
)

if TYPE_CHECKING:
    from .connection import StoreManager

logger = get_logger(__name__)

# Approximate bytes added per event by the id, pubkey, sig and JSON framing
EVENT_SIZE_OVERHEAD = 340
DEFAULT_EVENT_SIZE = 500


class RelayReader:
    """Browsing, counting and summary queries over the event table."""

    def __init__(self, manager: StoreManager):
        self.manager = manager

    # -------------------------------------------------------------------------
    # Event lookups
    # -------------------------------------------------------------------------

    async def get_event(self, event_id: str) -> Event | None:
        """Fetch a single event by its hex id."""
        raw_id = decode_hex_id(event_id, "id")
        async with self.manager.relay_connection() as conn:
            with storage_operation("get_event"):
                cursor = await conn.execute(
                    f"SELECT {EVENT_COLUMNS} FROM event WHERE event_hash = ?",
                    (raw_id,),
                )
                row = await cursor.fetchone()
        if row is None:
            return None
        return decode_event_row(row)

    async def query_events(self, event_filter: EventFilter) -> list[Event]:
        """
        Events matching the filter, newest first.

        Ties on created_at are broken by storage order, newest insert first.
        """
        builder = apply_event_filter(QueryBuilder(), event_filter)
        sql = (
            f"SELECT {EVENT_COLUMNS} FROM event{builder.where_sql()}"
            " ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?"
        )
        params = builder.params + [event_filter.effective_limit, event_filter.effective_offset]

        async with self.manager.relay_connection() as conn:
            with storage_operation("query_events"):
                cursor = await conn.execute(sql, params)
                rows = await cursor.fetchall()

        return [decode_event_row(row) for row in rows]

    async def count_events(self, event_filter: EventFilter | None = None) -> int:
        """Count events matching the filter, ignoring limit and offset."""
        builder = QueryBuilder()
        if event_filter is not None:
            apply_event_filter(builder, event_filter)

        async with self.manager.relay_connection() as conn:
            with storage_operation("count_events"):
                cursor = await conn.execute(
                    f"SELECT COUNT(*) FROM event{builder.where_sql()}",
                    builder.params,
                )
                row = await cursor.fetchone()
        return row[0] if row else 0

    async def recent_events(self, limit: int = 20) -> list[Event]:
        """Most recent events across all authors and kinds."""
        return await self.query_events(EventFilter(limit=limit))

    # -------------------------------------------------------------------------
    # Summaries
    # -------------------------------------------------------------------------

    async def get_relay_stats(self) -> RelayStats:
        """Totals, per-kind counts and the time span of stored events."""
        async with self.manager.relay_connection() as conn:
            with storage_operation("get_relay_stats"):
                cursor = await conn.execute(
                    """
                    SELECT COUNT(*) AS total,
                           COUNT(DISTINCT author) AS pubkeys,
                           MIN(created_at) AS oldest,
                           MAX(created_at) AS newest
                    FROM event
                    """
                )
                summary = await cursor.fetchone()

                cursor = await conn.execute(
                    "SELECT kind, COUNT(*) AS count FROM event GROUP BY kind"
                )
                by_kind = {row["kind"]: row["count"] for row in await cursor.fetchall()}

        return RelayStats(
            total_events=summary["total"],
            total_pubkeys=summary["pubkeys"],
            events_by_kind=by_kind,
            database_size_bytes=await self.manager.relay_database_size(),
            oldest_event=summary["oldest"],
            newest_event=summary["newest"],
        )

    async def count_events_by_pubkey(self, pubkeys: list[str]) -> dict[str, int]:
        """
        Event counts for each pubkey, in one grouped query.

        Pubkeys with no events are reported as zero.
        """
        if not pubkeys:
            return {}
        raw = decode_hex_ids(pubkeys, "author")
        counts = {p.lower(): 0 for p in pubkeys}

        builder = QueryBuilder().where_in("author", raw)
        async with self.manager.relay_connection() as conn:
            with storage_operation("count_events_by_pubkey"):
                cursor = await conn.execute(
                    f"SELECT author, COUNT(*) AS count FROM event{builder.where_sql()}"
                    " GROUP BY author",
                    builder.params,
                )
                rows = await cursor.fetchall()

        for row in rows:
            counts[bytes(row["author"]).hex()] = row["count"]
        return counts

    async def count_events_before(self, before: Timestamp) -> int:
        """Number of events a retention run with this cutoff would consider."""
        async with self.manager.relay_connection() as conn:
            with storage_operation("count_events_before"):
                cursor = await conn.execute(
                    "SELECT COUNT(*) FROM event WHERE created_at < ?",
                    (to_epoch(before),),
                )
                row = await cursor.fetchone()
        return row[0] if row else 0

    async def estimate_event_size(self) -> int:
        """Rough average on-disk size of one event, in bytes."""
        async with self.manager.relay_connection() as conn:
            with storage_operation("estimate_event_size"):
                cursor = await conn.execute("SELECT AVG(LENGTH(content)) FROM event")
                row = await cursor.fetchone()

        if row is None or row[0] is None:
            return DEFAULT_EVENT_SIZE
        return int(row[0]) + EVENT_SIZE_OVERHEAD
