"""Event store stand-in and event builders shared by storage tests."""

from __future__ import annotations

import hashlib
import json
import sqlite3
from pathlib import Path

from relaydesk.services.storage import Event

# Fixed reference time: 2026-03-10 12:00:00 UTC
BASE_TS = 1773144000

AUTHOR_A = "a" * 64
AUTHOR_B = "b" * 64
OPERATOR = "0f" * 32

RELAY_SCHEMA = """
CREATE TABLE IF NOT EXISTS event (
    id INTEGER PRIMARY KEY,
    event_hash BLOB NOT NULL,
    first_seen INTEGER NOT NULL,
    created_at INTEGER NOT NULL,
    author BLOB NOT NULL,
    delegated_by BLOB,
    kind INTEGER NOT NULL,
    hidden INTEGER DEFAULT FALSE,
    content TEXT NOT NULL
);
CREATE UNIQUE INDEX IF NOT EXISTS event_hash_index ON event(event_hash);
CREATE INDEX IF NOT EXISTS author_index ON event(author);
CREATE INDEX IF NOT EXISTS kind_index ON event(kind);
CREATE INDEX IF NOT EXISTS created_at_index ON event(created_at);
"""


def event_id_for(n: int) -> str:
    """Deterministic 64-hex event id."""
    return hashlib.sha256(f"event-{n}".encode()).hexdigest()


def make_event(
    n: int,
    *,
    author: str = AUTHOR_A,
    kind: int = 1,
    created_at: int = BASE_TS,
    tags: list[list[str]] | None = None,
    content: str = "hello",
) -> Event:
    return Event(
        id=event_id_for(n),
        pubkey=author,
        created_at=created_at,
        kind=kind,
        tags=tags or [],
        content=content,
        sig="cd" * 64,
    )


class RelayDatabase:
    """
    Stands in for the relay process: owns the event table and writes to it
    with plain sqlite3, the way an external writer would.
    """

    def __init__(self, path: Path):
        self.path = path
        path.parent.mkdir(parents=True, exist_ok=True)
        conn = self._connect()
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(RELAY_SCHEMA)
        finally:
            conn.close()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.path)

    def insert(self, *events: Event) -> None:
        self._insert_rows(
            (
                event.id,
                event.pubkey,
                event.created_at,
                event.kind,
                json.dumps(event.to_dict(), separators=(",", ":")),
            )
            for event in events
        )

    def insert_raw(
        self,
        event_id: str,
        author: str,
        created_at: int,
        kind: int,
        payload: str,
    ) -> None:
        """Insert a row with an arbitrary payload, parseable or not."""
        self._insert_rows([(event_id, author, created_at, kind, payload)])

    def _insert_rows(self, rows) -> None:
        conn = self._connect()
        try:
            conn.executemany(
                """
                INSERT INTO event (event_hash, first_seen, created_at, author, kind, content)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        bytes.fromhex(event_id),
                        created_at,
                        created_at,
                        bytes.fromhex(author),
                        kind,
                        payload,
                    )
                    for event_id, author, created_at, kind, payload in rows
                ],
            )
            conn.commit()
        finally:
            conn.close()

    def count(self) -> int:
        conn = self._connect()
        try:
            return conn.execute("SELECT COUNT(*) FROM event").fetchone()[0]
        finally:
            conn.close()

    def ids(self) -> set[str]:
        conn = self._connect()
        try:
            return {bytes(r[0]).hex() for r in conn.execute("SELECT event_hash FROM event")}
        finally:
            conn.close()


