"""
Dashboard statistics over the relay's event store.

Time bucketing happens in SQLite. Each call derives one fixed UTC offset
from the requested timezone at the `since` instant and shifts created_at
by it before truncating to a date or hour, so buckets follow the caller's
local calendar. Results are gap-filled so charts never see missing
buckets.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import TYPE_CHECKING, Any, Literal, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ...core.config import get_settings
from ...core.logging import get_logger
from .errors import storage_operation
from .models import AuthorCount, DateCount, Timestamp, to_epoch
from .query import QueryBuilder

if TYPE_CHECKING:
    from .connection import StoreManager

logger = get_logger(__name__)

Granularity = Literal["daily", "hourly"]

DEFAULT_TOP_AUTHORS = 10
MAX_TOP_AUTHORS = 100

HOURLY_BUCKET_SQL = "strftime('%Y-%m-%d %H:00', datetime(created_at + ?, 'unixepoch'))"
DAILY_BUCKET_SQL = "DATE(datetime(created_at + ?, 'unixepoch'))"


def resolve_timezone(tz: tzinfo | str | None) -> tzinfo:
    """
    Resolve a tzinfo or IANA zone name.

    None means the configured default. Unknown names fall back to UTC.
    """
    if isinstance(tz, tzinfo):
        return tz
    name = tz or get_settings().timezone
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r, using UTC", name)
        return timezone.utc


def _as_utc(value: Timestamp) -> datetime:
    return datetime.fromtimestamp(to_epoch(value), tz=timezone.utc)


def _fixed_offset(zone: tzinfo, at: datetime) -> timezone:
    """The zone's offset at one instant, as a fixed-offset tzinfo."""
    offset = at.astimezone(zone).utcoffset() or timedelta(0)
    return timezone(offset)


def _start_of_day(moment: datetime, zone: tzinfo) -> datetime:
    local_day = moment.astimezone(zone).date()
    return datetime.combine(local_day, time(0), tzinfo=zone)


def hourly_labels(day: date) -> list[str]:
    """The 24 hour labels for a calendar day."""
    return [f"{day.isoformat()} {hour:02d}:00" for hour in range(24)]


def daily_labels(first: date, last: date) -> list[str]:
    """Every calendar day from first to last inclusive."""
    labels = []
    current = first
    while current <= last:
        labels.append(current.isoformat())
        current += timedelta(days=1)
    return labels


def gap_fill(labels: Sequence[str], counts: dict[str, int]) -> list[DateCount]:
    """One DateCount per label, zero where no bucket exists."""
    return [DateCount(date=label, count=counts.get(label, 0)) for label in labels]


class StatisticsAggregator:
    """Grouped counts for charts and summary tiles."""

    def __init__(self, manager: StoreManager):
        self.manager = manager

    async def events_over_time(
        self,
        since: Timestamp | None = None,
        until: Timestamp | None = None,
        granularity: Granularity = "daily",
        tz: tzinfo | str | None = None,
    ) -> list[DateCount]:
        """
        Event counts per local day or hour.

        Hourly results are exactly the 24 hours of the local day containing
        `since` (today when `since` is omitted). Daily results cover every
        local day from `since` to `until` inclusive; with either bound
        missing only the days that have events are returned.
        """
        if granularity not in ("daily", "hourly"):
            raise ValueError(f"Unknown granularity: {granularity!r}")

        zone = resolve_timezone(tz)

        if granularity == "hourly" and since is None:
            since_dt = _start_of_day(datetime.now(timezone.utc), zone)
        elif since is not None:
            since_dt = _as_utc(since)
        else:
            since_dt = datetime.now(timezone.utc)

        offset = _fixed_offset(zone, since_dt)
        offset_seconds = int(offset.utcoffset(None).total_seconds())

        bucket_sql = HOURLY_BUCKET_SQL if granularity == "hourly" else DAILY_BUCKET_SQL
        builder = QueryBuilder()
        if granularity == "hourly" or since is not None:
            builder.where("created_at >= ?", int(since_dt.timestamp()))
        if until is not None:
            builder.where("created_at <= ?", to_epoch(until))

        rows = await self._fetch_all(
            "events_over_time",
            f"SELECT {bucket_sql} AS bucket, COUNT(*) AS count FROM event"
            f"{builder.where_sql()} GROUP BY bucket ORDER BY bucket",
            [offset_seconds, *builder.params],
        )
        counts = {row["bucket"]: row["count"] for row in rows if row["bucket"] is not None}

        if granularity == "hourly":
            return gap_fill(hourly_labels(since_dt.astimezone(offset).date()), counts)

        if since is None or until is None:
            return [DateCount(date=label, count=count) for label, count in sorted(counts.items())]

        first = since_dt.astimezone(offset).date()
        last = _as_utc(until).astimezone(offset).date()
        return gap_fill(daily_labels(first, last), counts)

    async def events_by_kind(
        self,
        since: Timestamp | None = None,
        until: Timestamp | None = None,
    ) -> dict[int, int]:
        """Event count per kind, largest first."""
        builder = self._time_range(since, until)
        rows = await self._fetch_all(
            "events_by_kind",
            f"SELECT kind, COUNT(*) AS count FROM event{builder.where_sql()}"
            " GROUP BY kind ORDER BY count DESC",
            builder.params,
        )
        return {row["kind"]: row["count"] for row in rows}

    async def top_authors(
        self,
        limit: int = DEFAULT_TOP_AUTHORS,
        since: Timestamp | None = None,
        until: Timestamp | None = None,
    ) -> list[AuthorCount]:
        """
        Authors with the most events.

        The limit is clamped to 1..100; non-positive values use the default.
        Ties keep storage order.
        """
        if limit <= 0:
            limit = DEFAULT_TOP_AUTHORS
        limit = min(limit, MAX_TOP_AUTHORS)

        builder = self._time_range(since, until)
        rows = await self._fetch_all(
            "top_authors",
            f"SELECT author, COUNT(*) AS count FROM event{builder.where_sql()}"
            " GROUP BY author ORDER BY count DESC LIMIT ?",
            [*builder.params, limit],
        )
        return [
            AuthorCount(pubkey=bytes(row["author"]).hex(), event_count=row["count"])
            for row in rows
            if row["author"] is not None
        ]

    async def total_events(self) -> int:
        rows = await self._fetch_all("total_events", "SELECT COUNT(*) FROM event", [])
        return rows[0][0] if rows else 0

    async def events_today(
        self,
        tz: tzinfo | str | None = None,
        now: datetime | None = None,
    ) -> int:
        """Events since local midnight in the given timezone."""
        zone = resolve_timezone(tz)
        now = now or datetime.now(timezone.utc)
        start = _start_of_day(now, zone)
        rows = await self._fetch_all(
            "events_today",
            "SELECT COUNT(*) FROM event WHERE created_at >= ?",
            [int(start.timestamp())],
        )
        return rows[0][0] if rows else 0

    @staticmethod
    def _time_range(since: Timestamp | None, until: Timestamp | None) -> QueryBuilder:
        builder = QueryBuilder()
        if since is not None:
            builder.where("created_at >= ?", to_epoch(since))
        if until is not None:
            builder.where("created_at <= ?", to_epoch(until))
        return builder

    async def _fetch_all(self, operation: str, sql: str, params: list[Any]) -> list[Any]:
        async with self.manager.relay_connection() as conn:
            with storage_operation(operation):
                cursor = await conn.execute(sql, params)
                return list(await cursor.fetchall())
