"""
Connection Manager for the Control Store and Event Store.

The control store is owned by relaydesk: one read-write connection, WAL,
migrations applied on open. The event store is owned by the relay
process: it is read through a small pool of read-only connections and
written only through a short-lived maintenance handle.

Connection configuration (control store and maintenance writer):
    PRAGMA journal_mode=WAL
    PRAGMA busy_timeout=<ms>
    PRAGMA synchronous=NORMAL
"""

from __future__ import annotations

import asyncio
import shutil
import sqlite3
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, AsyncIterator

import aiosqlite

from ...core.config import get_settings
from ...core.logging import get_logger
from .errors import RelayNotConnectedError, storage_operation
from .migrations import MigrationRunner

if TYPE_CHECKING:
    from .relay_writer import RelayWriter

logger = get_logger(__name__)


class StoreManager:
    """
    Owns every SQLite handle used by relaydesk.

    Usage:
        async with StoreManager() as stores:
            async with stores.relay_connection() as conn:
                ...
            async with stores.relay_writer() as writer:
                await writer.delete_events_by_ids([...])
    """

    def __init__(
        self,
        app_db_path: Path | str | None = None,
        relay_db_path: Path | str | None = None,
        *,
        relay_read_connections: int | None = None,
        busy_timeout_ms: int | None = None,
        maintenance_busy_timeout_ms: int | None = None,
    ):
        """
        Initialize the manager. Nothing is opened until open() is awaited.

        Args:
            app_db_path: Control store path. Defaults to {instance_root}/data/relaydesk.db.
            relay_db_path: Event store path. Defaults to {instance_root}/data/relay/nostr.db.
            relay_read_connections: Size of the read-only event store pool.
            busy_timeout_ms: Busy timeout for the control store and readers.
            maintenance_busy_timeout_ms: Busy timeout for the maintenance writer.
        """
        settings = get_settings()

        self.app_db_path = Path(app_db_path or settings.resolved_app_db_path)
        self._relay_db_path = Path(relay_db_path or settings.resolved_relay_db_path)
        self.relay_read_connections = relay_read_connections or settings.relay_read_connections
        self.busy_timeout_ms = (
            busy_timeout_ms if busy_timeout_ms is not None else settings.busy_timeout_ms
        )
        self.maintenance_busy_timeout_ms = (
            maintenance_busy_timeout_ms
            if maintenance_busy_timeout_ms is not None
            else settings.maintenance_busy_timeout_ms
        )

        self._app_db: aiosqlite.Connection | None = None
        self._relay_pool: _ReaderPool | None = None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def open(self) -> None:
        """
        Open the control store (creating and migrating it if needed) and try
        to open the event store.

        A missing event store is not an error here: the relay may not have
        created its database yet. Event store operations will raise
        RelayNotConnectedError until reconnect_relay() succeeds.
        """
        self.app_db_path.parent.mkdir(parents=True, exist_ok=True)

        with storage_operation("open control store"):
            db = await aiosqlite.connect(self.app_db_path)
            try:
                await db.execute("PRAGMA journal_mode=WAL")
                await db.execute(f"PRAGMA busy_timeout={int(self.busy_timeout_ms)}")
                await db.execute("PRAGMA synchronous=NORMAL")
                await db.execute("PRAGMA foreign_keys=ON")

                runner = MigrationRunner(db)
                await runner.run_migrations()
            except BaseException:
                await db.close()
                raise

        db.row_factory = aiosqlite.Row
        self._app_db = db

        logger.info("Control store opened: %s", self.app_db_path)

        await self._open_relay_pool()

    async def close(self) -> None:
        """Close every handle. Safe to call more than once."""
        await self._close_relay_pool()
        if self._app_db is not None:
            await self._app_db.close()
            self._app_db = None
            logger.info("Control store closed")

    async def __aenter__(self) -> StoreManager:
        await self.open()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # -------------------------------------------------------------------------
    # Control Store
    # -------------------------------------------------------------------------

    @property
    def app_db(self) -> aiosqlite.Connection:
        """Get the control store connection, raising if not opened."""
        if self._app_db is None:
            raise RuntimeError("Store manager not opened. Call open() first.")
        return self._app_db

    # -------------------------------------------------------------------------
    # Event Store: read-only pool
    # -------------------------------------------------------------------------

    @property
    def relay_path(self) -> Path:
        return self._relay_db_path

    @property
    def is_relay_connected(self) -> bool:
        return self._relay_pool is not None

    async def reconnect_relay(self) -> bool:
        """
        Close and reopen the read-only event store pool.

        Returns:
            True if the event store is connected afterwards.
        """
        await self._close_relay_pool()
        return await self._open_relay_pool()

    async def ensure_relay_connected(self) -> bool:
        """Connect the event store if it was missing and has since appeared."""
        if self.is_relay_connected:
            return True
        if not self._relay_db_path.exists():
            return False
        return await self._open_relay_pool()

    @asynccontextmanager
    async def relay_connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Lease one read-only event store connection.

        Raises:
            RelayNotConnectedError: The event store is not open,
                or it was closed or reconnected while waiting for a lease.
        """
        pool = self._relay_pool
        if pool is None:
            raise RelayNotConnectedError(str(self._relay_db_path))

        conn = await pool.acquire()
        try:
            yield conn
        finally:
            await pool.release(conn)

    async def _open_relay_pool(self) -> bool:
        path = self._relay_db_path
        if not path.exists():
            logger.warning("Relay database not found, event store not connected: %s", path)
            return False

        pool = _ReaderPool(path)
        opened: list[aiosqlite.Connection] = []
        try:
            for _ in range(self.relay_read_connections):
                conn = await aiosqlite.connect(f"file:{path}?mode=ro", uri=True)
                opened.append(conn)
                await conn.execute("PRAGMA query_only=ON")
                await conn.execute(f"PRAGMA busy_timeout={int(self.busy_timeout_ms)}")
                conn.row_factory = aiosqlite.Row
                pool.add(conn)
        except sqlite3.Error as e:
            for conn in opened:
                await conn.close()
            logger.warning("Could not open relay database %s: %s", path, e)
            return False

        self._relay_pool = pool
        logger.info(
            "Relay database connected read-only: %s (%d connections)",
            path,
            len(opened),
        )
        return True

    async def _close_relay_pool(self) -> None:
        pool = self._relay_pool
        if pool is None:
            return
        self._relay_pool = None
        await pool.close()
        logger.info("Relay database disconnected")

    # -------------------------------------------------------------------------
    # Event Store: maintenance writer
    # -------------------------------------------------------------------------

    @asynccontextmanager
    async def open_relay_for_write(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Open a temporary read-write connection to the event store.

        The connection holds the relay's writer lock while in use and is
        always closed on exit. Keep the block short.

        Raises:
            RelayNotConnectedError: The event store file does not exist.
        """
        path = self._relay_db_path
        if not path.exists():
            raise RelayNotConnectedError(str(path))

        with storage_operation("open relay database for write"):
            conn = await aiosqlite.connect(path)
            try:
                await conn.execute("PRAGMA journal_mode=WAL")
                await conn.execute(f"PRAGMA busy_timeout={int(self.maintenance_busy_timeout_ms)}")
            except BaseException:
                await conn.close()
                raise
        conn.row_factory = aiosqlite.Row

        try:
            yield conn
        finally:
            await conn.close()

    @asynccontextmanager
    async def relay_writer(self) -> AsyncIterator[RelayWriter]:
        """Open the maintenance handle wrapped in a RelayWriter."""
        from .relay_writer import RelayWriter

        async with self.open_relay_for_write() as conn:
            yield RelayWriter(conn)

    # -------------------------------------------------------------------------
    # File-system information
    # -------------------------------------------------------------------------

    async def relay_database_size(self) -> int:
        """Size of the event store file plus its WAL, in bytes."""
        return _file_size(self._relay_db_path) + _file_size(_wal_path(self._relay_db_path))

    async def app_database_size(self) -> int:
        """Size of the control store file plus its WAL, in bytes."""
        return _file_size(self.app_db_path) + _file_size(_wal_path(self.app_db_path))

    async def disk_space(self) -> tuple[int, int]:
        """
        Total and available bytes on the volume holding the event store.

        Falls back to the nearest existing parent directory.
        """
        target = self._relay_db_path.parent
        while not target.exists() and target != target.parent:
            target = target.parent
        usage = shutil.disk_usage(target)
        return usage.total, usage.free


class _ReaderPool:
    """
    Read-only event store connections shared by leasing callers.

    Closing the pool wakes every caller waiting for a lease; they raise
    RelayNotConnectedError instead of waiting for a connection that will
    never come back.
    """

    def __init__(self, path: Path):
        self.path = path
        self.closed = False
        self._idle: asyncio.Queue[aiosqlite.Connection | None] = asyncio.Queue()
        self._waiting = 0

    def add(self, conn: aiosqlite.Connection) -> None:
        self._idle.put_nowait(conn)

    async def acquire(self) -> aiosqlite.Connection:
        if self.closed:
            raise RelayNotConnectedError(str(self.path))

        self._waiting += 1
        try:
            conn = await self._idle.get()
        finally:
            self._waiting -= 1

        if conn is None:
            raise RelayNotConnectedError(str(self.path))
        if self.closed:
            await conn.close()
            raise RelayNotConnectedError(str(self.path))
        return conn

    async def release(self, conn: aiosqlite.Connection) -> None:
        if self.closed:
            # Pool was replaced or closed while leased
            await conn.close()
        else:
            self._idle.put_nowait(conn)

    async def close(self) -> None:
        self.closed = True
        while not self._idle.empty():
            conn = self._idle.get_nowait()
            if conn is not None:
                await conn.close()
        # None wakes a waiter
        for _ in range(self._waiting):
            self._idle.put_nowait(None)


def _wal_path(path: Path) -> Path:
    return path.with_name(path.name + "-wal")


def _file_size(path: Path) -> int:
    try:
        return path.stat().st_size
    except FileNotFoundError:
        return 0
