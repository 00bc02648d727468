"""Tests for RetentionTask."""

from __future__ import annotations

import os
import time
from datetime import datetime, timezone

import pytest
from relay_helpers import AUTHOR_A, BASE_TS, OPERATOR, RelayDatabase, event_id_for, make_event

from relaydesk.services.retention import AUDIT_ACTION_RETENTION, RetentionTask
from relaydesk.services.storage import (
    DeletionRequestQueue,
    RelayNotConnectedError,
    SettingsStore,
    StoreManager,
)

pytestmark = pytest.mark.asyncio

DAY = 86400
NOW = datetime.fromtimestamp(BASE_TS, tz=timezone.utc)


@pytest.fixture
def settings(stores: StoreManager) -> SettingsStore:
    return SettingsStore(stores)


@pytest.fixture
def eastern_local_time():
    """Run with a process-local timezone far from UTC."""
    previous = os.environ.get("TZ")
    os.environ["TZ"] = "America/New_York"
    time.tzset()
    yield
    if previous is None:
        del os.environ["TZ"]
    else:
        os.environ["TZ"] = previous
    time.tzset()


@pytest.fixture
def seeded(relay_db: RelayDatabase) -> RelayDatabase:
    relay_db.insert(
        make_event(1, kind=1, created_at=BASE_TS - 31 * DAY),
        make_event(2, kind=0, created_at=BASE_TS - 31 * DAY),
        make_event(3, author=OPERATOR, kind=1, created_at=BASE_TS - 40 * DAY),
        make_event(4, kind=1, created_at=BASE_TS - 5 * DAY),
    )
    return relay_db


class TestRetentionTask:
    """Tests for a single retention cycle."""

    async def test_disabled_policy_keeps_everything(
        self, stores: StoreManager, settings: SettingsStore, seeded: RelayDatabase
    ) -> None:
        result = await RetentionTask(stores).run_once(now=NOW)

        assert not result.enabled
        assert result.events_deleted == 0
        assert seeded.count() == 4
        assert (await settings.get_retention_policy()).last_run == BASE_TS
        assert await settings.list_audit_log(action=AUDIT_ACTION_RETENTION) == []

    async def test_deletes_old_events_with_exceptions(
        self, stores: StoreManager, settings: SettingsStore, seeded: RelayDatabase
    ) -> None:
        await settings.set_operator_pubkey(OPERATOR)
        await settings.set_retention_policy(
            retention_days=30, exceptions=["kind:0", "pubkey:operator"]
        )

        result = await RetentionTask(stores).run_once(now=NOW)

        assert result.enabled
        assert result.retention_days == 30
        assert result.cutoff == BASE_TS - 30 * DAY
        assert result.events_deleted == 1
        assert seeded.ids() == {event_id_for(2), event_id_for(3), event_id_for(4)}

    async def test_records_run(
        self, stores: StoreManager, settings: SettingsStore, seeded: RelayDatabase
    ) -> None:
        await settings.set_retention_policy(retention_days=30)

        await RetentionTask(stores).run_once(now=NOW)

        assert (await settings.get_retention_policy()).last_run == BASE_TS
        [entry] = await settings.list_audit_log(action=AUDIT_ACTION_RETENTION)
        assert entry["details"] == {
            "retention_days": 30,
            "cutoff": BASE_TS - 30 * DAY,
            "deleted": 3,
        }

    async def test_naive_now_is_utc(
        self,
        stores: StoreManager,
        settings: SettingsStore,
        seeded: RelayDatabase,
        eastern_local_time: None,
    ) -> None:
        await settings.set_retention_policy(retention_days=30)
        result = await RetentionTask(stores).run_once(now=NOW.replace(tzinfo=None))

        assert result.cutoff == BASE_TS - 30 * DAY
        assert (await settings.get_retention_policy()).last_run == BASE_TS

    async def test_second_run_deletes_nothing(
        self, stores: StoreManager, settings: SettingsStore, seeded: RelayDatabase
    ) -> None:
        await settings.set_retention_policy(retention_days=30)
        task = RetentionTask(stores)

        assert (await task.run_once(now=NOW)).events_deleted == 3
        assert (await task.run_once(now=NOW)).events_deleted == 0

    async def test_processes_deletion_requests_first(
        self, stores: StoreManager, settings: SettingsStore, seeded: RelayDatabase
    ) -> None:
        await DeletionRequestQueue(stores).record_request(
            event_id_for(500), AUTHOR_A, [event_id_for(4)]
        )

        result = await RetentionTask(stores).run_once(now=NOW)

        assert result.deletions.processed == 1
        assert result.deletions.events_deleted == 1
        assert event_id_for(4) not in seeded.ids()

    async def test_missing_event_store_raises(self, app_only: StoreManager) -> None:
        await SettingsStore(app_only).set_retention_policy(retention_days=7)

        with pytest.raises(RelayNotConnectedError):
            await RetentionTask(app_only).run_once(now=NOW)
