"""Tests for event store maintenance."""

from __future__ import annotations

import pytest
from relay_helpers import BASE_TS, RelayDatabase, make_event

from relaydesk.services.maintenance import run_relay_integrity_check, run_relay_vacuum
from relaydesk.services.storage import RelayNotConnectedError, SettingsStore, StoreManager

pytestmark = pytest.mark.asyncio


class TestVacuum:
    async def test_reclaims_space(self, stores: StoreManager, relay_db: RelayDatabase) -> None:
        relay_db.insert(*(make_event(n, content="x" * 4000) for n in range(100)))
        async with stores.relay_writer() as writer:
            await writer.delete_events_before(BASE_TS + 1)

        result = await run_relay_vacuum(stores)

        assert result.reclaimable_before > 0
        assert result.reclaimed_bytes > 0
        assert result.size_after < result.size_before
        assert await SettingsStore(stores).get_last_vacuum_run() is not None

    async def test_missing_event_store(self, app_only: StoreManager) -> None:
        with pytest.raises(RelayNotConnectedError):
            await run_relay_vacuum(app_only)
        assert await SettingsStore(app_only).get_last_vacuum_run() is None


class TestIntegrityCheck:
    async def test_healthy_store(self, stores: StoreManager, relay_db: RelayDatabase) -> None:
        relay_db.insert(make_event(1))

        result = await run_relay_integrity_check(stores)

        assert result.ok
        assert await SettingsStore(stores).get_last_integrity_check() is not None
