"""
Event store maintenance: vacuum and integrity check.

Both run on the temporary maintenance writer and record when they last
ran in app_state.
"""

from __future__ import annotations

import time
from dataclasses import dataclass

from ..core.logging import get_logger
from .storage.connection import StoreManager
from .storage.models import IntegrityCheckResult
from .storage.settings_store import SettingsStore

logger = get_logger(__name__)


@dataclass
class VacuumResult:
    size_before: int
    size_after: int
    reclaimable_before: int
    duration_seconds: float

    @property
    def reclaimed_bytes(self) -> int:
        return max(self.size_before - self.size_after, 0)


async def run_relay_vacuum(manager: StoreManager, settings: SettingsStore | None = None) -> VacuumResult:
    """VACUUM the event store and record the run."""
    settings = settings or SettingsStore(manager)
    start_time = time.time()

    async with manager.relay_writer() as writer:
        before = await writer.page_info()
        await writer.vacuum()
        after = await writer.page_info()

    await settings.set_last_vacuum_run()

    result = VacuumResult(
        size_before=before.total_bytes,
        size_after=after.total_bytes,
        reclaimable_before=before.reclaimable_bytes,
        duration_seconds=time.time() - start_time,
    )
    logger.info(
        "Relay vacuum reclaimed %d bytes in %.2fs",
        result.reclaimed_bytes,
        result.duration_seconds,
    )
    return result


async def run_relay_integrity_check(
    manager: StoreManager,
    settings: SettingsStore | None = None,
) -> IntegrityCheckResult:
    """Run PRAGMA integrity_check on the event store and record the run."""
    settings = settings or SettingsStore(manager)

    async with manager.relay_writer() as writer:
        result = await writer.integrity_check()

    await settings.set_last_integrity_check()
    return result
