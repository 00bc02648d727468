"""
Retention Task for the Event Store.

Applies the configured retention policy once:
- Pending deletion requests are processed first
- Events older than retention_days are deleted, minus exception rules
- The run is recorded in app_state and the audit log

Scheduling is left to the caller.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from ..core.logging import get_logger
from .deletion import DeletionProcessor, DeletionResult
from .storage.connection import StoreManager
from .storage.models import to_epoch
from .storage.settings_store import SettingsStore

logger = get_logger(__name__)

AUDIT_ACTION_RETENTION = "retention_job_run"


@dataclass
class RetentionRunResult:
    """Statistics from a retention run."""

    enabled: bool = False
    retention_days: int = 0
    cutoff: int | None = None
    events_deleted: int = 0
    deletions: DeletionResult = field(default_factory=DeletionResult)
    duration_seconds: float = 0.0


class RetentionTask:
    """Runs the retention policy against the event store."""

    def __init__(self, manager: StoreManager):
        self.manager = manager
        self.settings = SettingsStore(manager)
        self.deletions = DeletionProcessor(manager)

    async def run_once(self, now: datetime | None = None) -> RetentionRunResult:
        """
        Run a single retention cycle.

        Args:
            now: Reference time for the cutoff (defaults to the current time).
                A naive value is read as UTC.

        Returns:
            Statistics from the run
        """
        start_time = time.time()
        now = now or datetime.now(timezone.utc)
        result = RetentionRunResult()

        try:
            policy = await self.settings.get_retention_policy()
            result.retention_days = policy.retention_days

            result.deletions = await self.deletions.process_pending()

            if not policy.enabled:
                logger.info("Retention policy disabled (keep forever)")
                await self.settings.set_last_retention_run(to_epoch(now))
                result.duration_seconds = time.time() - start_time
                return result

            result.enabled = True
            cutoff = now - timedelta(days=policy.retention_days)
            result.cutoff = to_epoch(cutoff)

            operator_pubkey = await self.settings.get_operator_pubkey()

            async with self.manager.relay_writer() as writer:
                result.events_deleted = await writer.delete_events_before(
                    cutoff, policy.exceptions, operator_pubkey
                )

            await self.settings.set_last_retention_run(to_epoch(now))
            await self.settings.add_audit_log(
                AUDIT_ACTION_RETENTION,
                {
                    "retention_days": policy.retention_days,
                    "cutoff": result.cutoff,
                    "deleted": result.events_deleted,
                },
            )

        except Exception as e:
            logger.error("Retention run failed: %s", e, exc_info=True)
            raise

        result.duration_seconds = time.time() - start_time
        logger.info(
            "Retention run complete: deleted %d event(s) older than %s in %.2fs",
            result.events_deleted,
            cutoff.isoformat(),
            result.duration_seconds,
        )
        return result
