"""
Relay Storage CLI Commands.

Browsing, statistics, retention, deletion and maintenance commands over
the relay event store and the relaydesk control store.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import datetime
from typing import Any, Awaitable, Callable

from ..core import format_timestamp, get_utc_timestamp
from ..core.logging import get_logger
from ..services.storage import (
    DeletionRequestQueue,
    EventExporter,
    EventFilter,
    RelayReader,
    StatisticsAggregator,
    StorageError,
    StoreManager,
)
from ..services.storage.errors import InvalidIdentifierError, RelayNotConnectedError
from ..services.storage.models import DEFAULT_QUERY_LIMIT, to_epoch

logger = get_logger(__name__)


# =============================================================================
# Helpers
# =============================================================================


def parse_time(value: str) -> int:
    """Parse a Unix timestamp or an ISO 8601 date/datetime (naive means UTC)."""
    if value.lstrip("-").isdigit():
        return int(value)
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return to_epoch(dt)


def _time_arg(value: str) -> int:
    try:
        return parse_time(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a timestamp or ISO date: {value!r}") from None


def _filter_from_args(args: argparse.Namespace) -> EventFilter:
    return EventFilter(
        ids=args.ids or [],
        authors=args.authors or [],
        kinds=args.kinds or [],
        since=args.since,
        until=args.until,
        search=args.search,
        mentions=args.mentions or [],
        limit=getattr(args, "limit", DEFAULT_QUERY_LIMIT),
        offset=getattr(args, "offset", 0),
    )


def _error(error_type: str, message: str, **extra: Any) -> dict:
    result = {
        "error": error_type,
        "message": message,
        "query_timestamp": get_utc_timestamp(),
    }
    result.update(extra)
    return result


def run_with_stores(
    args: argparse.Namespace,
    work: Callable[[StoreManager], Awaitable[dict]],
) -> dict:
    """
    Open the stores, run one async operation, and map storage errors to
    JSON error responses.
    """

    async def runner() -> dict:
        async with StoreManager(args.app_db, args.relay_db) as stores:
            return await work(stores)

    try:
        return asyncio.run(runner())
    except RelayNotConnectedError as e:
        return _error(
            "relay_not_connected",
            str(e),
            hint="Start the relay or pass --relay-db",
        )
    except InvalidIdentifierError as e:
        return _error("invalid_identifier", str(e), field=e.field)
    except StorageError as e:
        logger.error("Storage command failed: %s", e)
        return _error("storage_error", str(e))


# =============================================================================
# Commands
# =============================================================================


def cmd_stats(args: argparse.Namespace) -> dict:
    """Relay totals, sizes and queue depth."""

    async def work(stores: StoreManager) -> dict:
        stats = await RelayReader(stores).get_relay_stats()
        total, available = await stores.disk_space()
        return {
            "query_timestamp": get_utc_timestamp(),
            "total_events": stats.total_events,
            "total_pubkeys": stats.total_pubkeys,
            "events_by_kind": {str(k): v for k, v in stats.events_by_kind.items()},
            "oldest_event": format_timestamp(stats.oldest_event),
            "newest_event": format_timestamp(stats.newest_event),
            "relay_db_bytes": stats.database_size_bytes,
            "app_db_bytes": await stores.app_database_size(),
            "disk_total_bytes": total,
            "disk_available_bytes": available,
            "pending_deletions": await DeletionRequestQueue(stores).pending_count(),
        }

    return run_with_stores(args, work)


def cmd_events(args: argparse.Namespace) -> dict:
    """Browse events, newest first."""
    event_filter = _filter_from_args(args)

    async def work(stores: StoreManager) -> dict:
        reader = RelayReader(stores)
        events = await reader.query_events(event_filter)
        total = await reader.count_events(event_filter)
        return {
            "query_timestamp": get_utc_timestamp(),
            "total": total,
            "limit": event_filter.effective_limit,
            "offset": event_filter.effective_offset,
            "events": [e.to_dict() for e in events],
        }

    return run_with_stores(args, work)


def cmd_events_over_time(args: argparse.Namespace) -> dict:
    """Gap-filled event counts per day or hour."""

    async def work(stores: StoreManager) -> dict:
        buckets = await StatisticsAggregator(stores).events_over_time(
            since=args.since,
            until=args.until,
            granularity=args.granularity,
            tz=args.tz,
        )
        return {
            "query_timestamp": get_utc_timestamp(),
            "granularity": args.granularity,
            "buckets": [{"date": b.date, "count": b.count} for b in buckets],
        }

    return run_with_stores(args, work)


def cmd_top_authors(args: argparse.Namespace) -> dict:
    """Authors with the most events."""

    async def work(stores: StoreManager) -> dict:
        authors = await StatisticsAggregator(stores).top_authors(
            limit=args.limit, since=args.since, until=args.until
        )
        return {
            "query_timestamp": get_utc_timestamp(),
            "authors": [{"pubkey": a.pubkey, "event_count": a.event_count} for a in authors],
        }

    return run_with_stores(args, work)


def cmd_retention_run(args: argparse.Namespace) -> dict:
    """Apply the retention policy once."""
    from ..services.retention import RetentionTask

    async def work(stores: StoreManager) -> dict:
        result = await RetentionTask(stores).run_once()
        return {
            "query_timestamp": get_utc_timestamp(),
            "enabled": result.enabled,
            "retention_days": result.retention_days,
            "cutoff": format_timestamp(result.cutoff),
            "events_deleted": result.events_deleted,
            "deletion_requests_processed": result.deletions.processed,
            "deletion_requests_failed": result.deletions.failed,
            "duration_seconds": round(result.duration_seconds, 3),
        }

    return run_with_stores(args, work)


def cmd_deletions_list(args: argparse.Namespace) -> dict:
    """List deletion requests."""

    async def work(stores: StoreManager) -> dict:
        requests = await DeletionRequestQueue(stores).list_by_status(args.status)
        return {
            "query_timestamp": get_utc_timestamp(),
            "count": len(requests),
            "requests": [r.to_dict() for r in requests],
        }

    return run_with_stores(args, work)


def cmd_deletions_process(args: argparse.Namespace) -> dict:
    """Process pending deletion requests (or one by id)."""
    from ..services.deletion import DeletionProcessor

    async def work(stores: StoreManager) -> dict:
        processor = DeletionProcessor(stores)
        if args.id is not None:
            result = await processor.process_request(args.id)
        else:
            result = await processor.process_pending()
        return {
            "query_timestamp": get_utc_timestamp(),
            "processed": result.processed,
            "events_deleted": result.events_deleted,
            "failed": result.failed,
            "skipped": result.skipped,
        }

    return run_with_stores(args, work)


def cmd_delete_event(args: argparse.Namespace) -> dict:
    """Queue an operator deletion, optionally processing it immediately."""
    from ..services.deletion import DeletionProcessor

    async def work(stores: StoreManager) -> dict:
        request_id = await DeletionRequestQueue(stores).enqueue(
            args.event_id, args.requested_by, args.reason
        )
        result: dict[str, Any] = {
            "query_timestamp": get_utc_timestamp(),
            "request_id": request_id,
            "status": "pending",
        }
        if args.now:
            outcome = await DeletionProcessor(stores).process_request(request_id)
            result["status"] = "failed" if outcome.failed else "processed"
            result["events_deleted"] = outcome.events_deleted
        return result

    return run_with_stores(args, work)


def cmd_vacuum(args: argparse.Namespace) -> dict:
    """VACUUM the relay event store."""
    from ..services.maintenance import run_relay_vacuum

    async def work(stores: StoreManager) -> dict:
        result = await run_relay_vacuum(stores)
        return {
            "query_timestamp": get_utc_timestamp(),
            "size_before": result.size_before,
            "size_after": result.size_after,
            "reclaimed_bytes": result.reclaimed_bytes,
            "duration_seconds": round(result.duration_seconds, 3),
        }

    return run_with_stores(args, work)


def cmd_integrity_check(args: argparse.Namespace) -> dict:
    """Run an integrity check on the relay event store."""
    from ..services.maintenance import run_relay_integrity_check

    async def work(stores: StoreManager) -> dict:
        result = await run_relay_integrity_check(stores)
        return {
            "query_timestamp": get_utc_timestamp(),
            "ok": result.ok,
            "message": result.message,
        }

    return run_with_stores(args, work)


def cmd_export(args: argparse.Namespace) -> dict:
    """Export matching events as JSON lines, oldest first."""
    event_filter = _filter_from_args(args)

    async def work(stores: StoreManager) -> dict:
        exporter = EventExporter(stores)
        if args.output:
            with open(args.output, "w", encoding="utf-8") as fh:
                exported = await exporter.export_jsonl(event_filter, fh)
            return {
                "query_timestamp": get_utc_timestamp(),
                "output": args.output,
                "exported": exported,
            }

        exported = await exporter.export_jsonl(event_filter, sys.stdout)
        logger.info("Exported %d event(s) to stdout", exported)
        return {}

    return run_with_stores(args, work)


# =============================================================================
# Parser Registration
# =============================================================================


def _add_filter_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--id", dest="ids", action="append", help="Event id (repeatable)")
    parser.add_argument("--author", dest="authors", action="append", help="Author pubkey (repeatable)")
    parser.add_argument("--kind", dest="kinds", type=int, action="append", help="Event kind (repeatable)")
    parser.add_argument("--mention", dest="mentions", action="append", help="Mentioned pubkey (repeatable)")
    parser.add_argument("--search", help="Substring to match in the event")
    _add_range_arguments(parser)


def _add_range_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--since", type=_time_arg, help="Unix timestamp or ISO date")
    parser.add_argument("--until", type=_time_arg, help="Unix timestamp or ISO date")


def register_parsers(subparsers) -> None:
    """Register storage command parsers."""

    # stats
    stats_parser = subparsers.add_parser("stats", help="Relay totals, sizes and queue depth")
    stats_parser.set_defaults(func=cmd_stats)

    # events
    events_parser = subparsers.add_parser("events", help="Browse events, newest first")
    _add_filter_arguments(events_parser)
    events_parser.add_argument("--limit", type=int, default=DEFAULT_QUERY_LIMIT, help="Max events (1-1000)")
    events_parser.add_argument("--offset", type=int, default=0, help="Events to skip")
    events_parser.set_defaults(func=cmd_events)

    # events-over-time
    eot_parser = subparsers.add_parser("events-over-time", help="Event counts per day or hour")
    _add_range_arguments(eot_parser)
    eot_parser.add_argument(
        "--granularity",
        choices=["daily", "hourly"],
        default="daily",
        help="Bucket size (default: daily)",
    )
    eot_parser.add_argument("--tz", help="IANA timezone (default: RELAYDESK_TIMEZONE)")
    eot_parser.set_defaults(func=cmd_events_over_time)

    # top-authors
    authors_parser = subparsers.add_parser("top-authors", help="Authors with the most events")
    _add_range_arguments(authors_parser)
    authors_parser.add_argument("--limit", type=int, default=10, help="Authors to show (1-100)")
    authors_parser.set_defaults(func=cmd_top_authors)

    # retention-run
    retention_parser = subparsers.add_parser("retention-run", help="Apply the retention policy now")
    retention_parser.set_defaults(func=cmd_retention_run)

    # deletions-list
    list_parser = subparsers.add_parser("deletions-list", help="List deletion requests")
    list_parser.add_argument(
        "--status",
        choices=["pending", "processed", "failed"],
        help="Only requests with this status",
    )
    list_parser.set_defaults(func=cmd_deletions_list)

    # deletions-process
    process_parser = subparsers.add_parser("deletions-process", help="Process pending deletion requests")
    process_parser.add_argument("--id", type=int, help="Process a single request")
    process_parser.set_defaults(func=cmd_deletions_process)

    # delete-event
    delete_parser = subparsers.add_parser("delete-event", help="Queue an operator deletion")
    delete_parser.add_argument("event_id", help="Hex id of the event to delete")
    delete_parser.add_argument("--requested-by", default="admin", help="Who requested the deletion")
    delete_parser.add_argument("--reason", help="Reason for the deletion")
    delete_parser.add_argument("--now", action="store_true", help="Process the request immediately")
    delete_parser.set_defaults(func=cmd_delete_event)

    # vacuum
    vacuum_parser = subparsers.add_parser("vacuum", help="VACUUM the relay event store")
    vacuum_parser.set_defaults(func=cmd_vacuum)

    # integrity-check
    integrity_parser = subparsers.add_parser("integrity-check", help="Check relay database integrity")
    integrity_parser.set_defaults(func=cmd_integrity_check)

    # export
    export_parser = subparsers.add_parser("export", help="Export events as JSON lines")
    _add_filter_arguments(export_parser)
    export_parser.add_argument("--output", "-o", help="Output file (default: stdout)")
    export_parser.set_defaults(func=cmd_export)
