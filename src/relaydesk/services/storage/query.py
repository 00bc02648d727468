"""
Event filter translation.

Turns an EventFilter into a parameterized WHERE clause for the relay's
event table, and decodes event rows back into Event records.

Event table (owned by the relay):
    event_hash BLOB   32-byte event id
    author     BLOB   32-byte pubkey
    created_at INTEGER
    kind       INTEGER
    content    TEXT   canonical JSON of the full event
"""

from __future__ import annotations

import json
import re
from typing import Any, Iterable, Sequence

from ...core.logging import get_logger
from .errors import InvalidIdentifierError
from .models import Event, EventFilter, to_epoch

logger = get_logger(__name__)

EVENT_COLUMNS = "event_hash, author, created_at, kind, content"

_HEX_ID_RE = re.compile(r"[0-9a-fA-F]{64}")


class QueryBuilder:
    """
    Accumulates AND-chained predicates and their parameters in order.

    Example:
        builder = QueryBuilder()
        builder.where("created_at >= ?", since)
        builder.where_in("kind", [1, 7])
        sql = f"SELECT ... FROM event{builder.where_sql()}"
        await conn.execute(sql, builder.params)
    """

    def __init__(self) -> None:
        self._clauses: list[str] = []
        self._params: list[Any] = []

    def where(self, clause: str, *params: Any) -> QueryBuilder:
        self._clauses.append(clause)
        self._params.extend(params)
        return self

    def where_in(self, column: str, values: Sequence[Any]) -> QueryBuilder:
        """Add `column IN (...)`; an empty sequence adds nothing."""
        if values:
            placeholders = ",".join("?" * len(values))
            self.where(f"{column} IN ({placeholders})", *values)
        return self

    def where_not_in(self, column: str, values: Sequence[Any]) -> QueryBuilder:
        """Add `column NOT IN (...)`; an empty sequence adds nothing."""
        if values:
            placeholders = ",".join("?" * len(values))
            self.where(f"{column} NOT IN ({placeholders})", *values)
        return self

    def where_sql(self) -> str:
        """Return ` WHERE a AND b ...`, or an empty string."""
        if not self._clauses:
            return ""
        return " WHERE " + " AND ".join(self._clauses)

    @property
    def params(self) -> list[Any]:
        return list(self._params)

    def __len__(self) -> int:
        return len(self._clauses)


# =============================================================================
# Identifier handling
# =============================================================================


def decode_hex_id(value: str, field: str = "id") -> bytes:
    """
    Decode a 64-character hex id or pubkey to 32 bytes.

    Raises:
        InvalidIdentifierError: value is not exactly 64 hex digits.
    """
    if not isinstance(value, str):
        raise InvalidIdentifierError(field, repr(value))
    # bytes.fromhex skips whitespace, so check the shape first
    if not _HEX_ID_RE.fullmatch(value):
        raise InvalidIdentifierError(field, value)
    return bytes.fromhex(value)


def decode_hex_ids(values: Iterable[str], field: str = "id") -> list[bytes]:
    """Decode every value, failing on the first invalid one."""
    return [decode_hex_id(v, field) for v in values]


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def mention_pattern(pubkey: str) -> str:
    """LIKE pattern matching a ["p","<hex>" tag in the serialized event."""
    decode_hex_id(pubkey, "mention")
    return f'%["p","{pubkey.lower()}"%'


# =============================================================================
# Filter translation
# =============================================================================


def apply_event_filter(
    builder: QueryBuilder,
    event_filter: EventFilter,
) -> QueryBuilder:
    """
    Add the predicates for every populated field of the filter.

    Identifiers are validated before anything is added, so an invalid
    filter never reaches the database.
    """
    ids = decode_hex_ids(event_filter.ids, "id")
    authors = decode_hex_ids(event_filter.authors, "author")
    mentions = [mention_pattern(p) for p in event_filter.mentions]

    builder.where_in("event_hash", ids)
    builder.where_in("author", authors)
    builder.where_in("kind", list(event_filter.kinds))

    if event_filter.since is not None:
        builder.where("created_at >= ?", to_epoch(event_filter.since))
    if event_filter.until is not None:
        builder.where("created_at <= ?", to_epoch(event_filter.until))

    if event_filter.search:
        builder.where(
            "content LIKE ? ESCAPE '\\'",
            f"%{_escape_like(event_filter.search)}%",
        )

    if mentions:
        clause = " OR ".join("content LIKE ?" for _ in mentions)
        builder.where(f"({clause})", *mentions)

    return builder


# =============================================================================
# Row decoding
# =============================================================================


def _hex(value: Any) -> str:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    if value is None:
        return ""
    return str(value)


def decode_event_row(row: Any) -> Event:
    """
    Build an Event from an event table row.

    The JSON in the content column is authoritative for tags, content and
    sig. A row whose payload cannot be parsed is returned with empty tags,
    an empty sig and the raw payload as its content.
    """
    payload = row["content"]
    if isinstance(payload, (bytes, bytearray, memoryview)):
        payload = bytes(payload).decode("utf-8", errors="replace")
    payload = payload or ""

    event = Event(
        id=_hex(row["event_hash"]),
        pubkey=_hex(row["author"]),
        created_at=int(row["created_at"] or 0),
        kind=int(row["kind"] or 0),
        content=payload,
    )

    try:
        data = json.loads(payload)
    except (ValueError, TypeError):
        logger.debug("Undecodable payload for event %s", event.id)
        return event

    if not isinstance(data, dict):
        logger.debug("Non-object payload for event %s", event.id)
        return event

    tags = data.get("tags")
    content = data.get("content")
    sig = data.get("sig")

    if isinstance(tags, list):
        event.tags = [list(t) for t in tags if isinstance(t, list)]
    event.content = content if isinstance(content, str) else ""
    event.sig = sig if isinstance(sig, str) else ""
    return event
