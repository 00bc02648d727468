"""
Streaming event export.

Walks every event matching a filter, oldest first, handing each one to a
callback without loading the result set into memory. A cancel event is
checked before every row; the surrounding task can also be cancelled.
"""

from __future__ import annotations

import asyncio
import inspect
import json
from typing import IO, TYPE_CHECKING, Any, Awaitable, Callable, Union

from ...core.logging import get_logger
from .errors import ExportCancelledError, storage_operation
from .models import Event, EventFilter
from .query import EVENT_COLUMNS, QueryBuilder, apply_event_filter, decode_event_row

if TYPE_CHECKING:
    from .connection import StoreManager

logger = get_logger(__name__)

EventCallback = Callable[[Event], Union[None, Awaitable[None]]]

FETCH_BATCH_SIZE = 500


class EventExporter:
    """Unbounded, ordered delivery of events to a callback."""

    def __init__(self, manager: StoreManager):
        self.manager = manager

    async def stream(
        self,
        event_filter: EventFilter,
        callback: EventCallback,
        cancel_event: asyncio.Event | None = None,
    ) -> int:
        """
        Deliver every matching event to callback in ascending created_at order.

        The filter's limit and offset are ignored. Exceptions raised by the
        callback stop the stream and propagate unchanged.

        Args:
            event_filter: Which events to export
            callback: Called once per event; may be a coroutine function
            cancel_event: When set, the stream stops before the next row

        Returns:
            Number of events delivered.

        Raises:
            ExportCancelledError: cancel_event was set before the scan finished.
        """
        builder = apply_event_filter(QueryBuilder(), event_filter)
        sql = (
            f"SELECT {EVENT_COLUMNS} FROM event{builder.where_sql()}"
            " ORDER BY created_at ASC, rowid ASC"
        )

        delivered = 0
        async with self.manager.relay_connection() as conn:
            with storage_operation("export"):
                cursor = await conn.execute(sql, builder.params)
            try:
                while True:
                    if cancel_event is not None and cancel_event.is_set():
                        raise ExportCancelledError(delivered)
                    with storage_operation("export"):
                        rows = await cursor.fetchmany(FETCH_BATCH_SIZE)
                    if not rows:
                        break
                    for row in rows:
                        if cancel_event is not None and cancel_event.is_set():
                            raise ExportCancelledError(delivered)
                        result = callback(decode_event_row(row))
                        if inspect.isawaitable(result):
                            await result
                        delivered += 1
            finally:
                await cursor.close()

        logger.debug("Exported %d event(s)", delivered)
        return delivered

    async def export_jsonl(
        self,
        event_filter: EventFilter,
        fh: IO[str],
        cancel_event: asyncio.Event | None = None,
    ) -> int:
        """Write one canonical JSON event per line to an open text file."""

        def write(event: Event) -> None:
            fh.write(json.dumps(event.to_dict(), separators=(",", ":"), ensure_ascii=False))
            fh.write("\n")

        return await self.stream(event_filter, write, cancel_event)

    async def count(self, event_filter: EventFilter) -> int:
        """Number of events stream() would deliver, for progress reporting."""
        builder = apply_event_filter(QueryBuilder(), event_filter)
        async with self.manager.relay_connection() as conn:
            with storage_operation("export count"):
                cursor = await conn.execute(
                    f"SELECT COUNT(*) FROM event{builder.where_sql()}",
                    builder.params,
                )
                row: Any = await cursor.fetchone()
        return row[0] if row else 0
