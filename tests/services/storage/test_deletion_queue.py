"""Tests for DeletionRequestQueue."""

from __future__ import annotations

import pytest
from relay_helpers import AUTHOR_A, AUTHOR_B, event_id_for

from relaydesk.services.storage import (
    DeletionRequestQueue,
    InvalidIdentifierError,
    InvalidStateTransitionError,
    StoreManager,
)
from relaydesk.services.storage.deletion_queue import new_admin_token

pytestmark = pytest.mark.asyncio


@pytest.fixture
def queue(app_only: StoreManager) -> DeletionRequestQueue:
    return DeletionRequestQueue(app_only)


class TestRecording:
    """Tests for enqueue and record_request."""

    async def test_enqueue_admin_request(self, queue: DeletionRequestQueue) -> None:
        request_id = await queue.enqueue(event_id_for(1), "admin", "spam")

        request = await queue.get(request_id)
        assert request is not None
        assert request.is_admin
        assert request.event_id.startswith("admin-")
        assert request.author_pubkey == "admin"
        assert request.target_event_ids == [event_id_for(1)]
        assert request.reason == "spam"
        assert request.status == "pending"
        assert request.processed_at is None
        assert request.events_deleted == 0

    async def test_admin_tokens_are_unique(self, queue: DeletionRequestQueue) -> None:
        first = await queue.enqueue(event_id_for(1), "admin")
        second = await queue.enqueue(event_id_for(1), "admin")
        assert first != second
        assert new_admin_token() != new_admin_token()

    async def test_enqueue_rejects_bad_id(self, queue: DeletionRequestQueue) -> None:
        with pytest.raises(InvalidIdentifierError):
            await queue.enqueue("abc", "admin")
        assert await queue.pending_count() == 0

    async def test_record_request(self, queue: DeletionRequestQueue) -> None:
        deletion_id = event_id_for(100)
        request_id = await queue.record_request(
            deletion_id, AUTHOR_A, [event_id_for(1), event_id_for(2)], "oops"
        )

        assert request_id is not None
        request = await queue.get(request_id)
        assert request is not None
        assert not request.is_admin
        assert request.event_id == deletion_id
        assert request.author_pubkey == AUTHOR_A
        assert request.target_event_ids == [event_id_for(1), event_id_for(2)]

    async def test_record_request_is_deduplicated(self, queue: DeletionRequestQueue) -> None:
        deletion_id = event_id_for(100)
        assert await queue.record_request(deletion_id, AUTHOR_A, [event_id_for(1)]) is not None
        assert await queue.record_request(deletion_id, AUTHOR_A, [event_id_for(1)]) is None
        assert await queue.pending_count() == 1

    async def test_record_request_normalizes_case(self, queue: DeletionRequestQueue) -> None:
        request_id = await queue.record_request(
            event_id_for(100).upper(), AUTHOR_B.upper(), [event_id_for(1).upper()]
        )
        request = await queue.get(request_id)
        assert request.event_id == event_id_for(100)
        assert request.author_pubkey == AUTHOR_B
        assert request.target_event_ids == [event_id_for(1)]

    async def test_record_request_rejects_bad_target(self, queue: DeletionRequestQueue) -> None:
        with pytest.raises(InvalidIdentifierError):
            await queue.record_request(event_id_for(100), AUTHOR_A, ["zz"])


class TestListing:
    async def test_list_pending_oldest_first(self, queue: DeletionRequestQueue) -> None:
        ids = [await queue.enqueue(event_id_for(n), "admin") for n in range(3)]
        pending = await queue.list_pending()
        assert [r.id for r in pending] == ids

    async def test_list_by_status_newest_first(self, queue: DeletionRequestQueue) -> None:
        ids = [await queue.enqueue(event_id_for(n), "admin") for n in range(3)]
        await queue.mark_processed(ids[1], "processed", 1)

        assert [r.id for r in await queue.list_by_status()] == list(reversed(ids))
        assert [r.id for r in await queue.list_by_status("processed")] == [ids[1]]
        assert [r.id for r in await queue.list_by_status("pending")] == [ids[2], ids[0]]

    async def test_get_missing(self, queue: DeletionRequestQueue) -> None:
        assert await queue.get(999) is None

    async def test_unparseable_targets_degrade(self, queue: DeletionRequestQueue, app_only: StoreManager) -> None:
        await app_only.app_db.execute(
            "INSERT INTO deletion_requests (event_id, author_pubkey, target_event_ids)"
            " VALUES ('legacy', 'someone', 'not json')"
        )
        await app_only.app_db.commit()

        [request] = await queue.list_pending()
        assert request.target_event_ids == []


class TestMarkProcessed:
    """Tests for the pending -> terminal transition."""

    async def test_mark_processed(self, queue: DeletionRequestQueue) -> None:
        request_id = await queue.enqueue(event_id_for(1), "admin")
        await queue.mark_processed(request_id, "processed", 1)

        request = await queue.get(request_id)
        assert request.status == "processed"
        assert request.events_deleted == 1
        assert request.processed_at is not None
        assert await queue.pending_count() == 0

    async def test_mark_failed(self, queue: DeletionRequestQueue) -> None:
        request_id = await queue.enqueue(event_id_for(1), "admin")
        await queue.mark_processed(request_id, "failed", 0)
        assert (await queue.get(request_id)).status == "failed"

    async def test_terminal_state_is_final(self, queue: DeletionRequestQueue) -> None:
        request_id = await queue.enqueue(event_id_for(1), "admin")
        await queue.mark_processed(request_id, "processed", 1)

        with pytest.raises(InvalidStateTransitionError) as exc_info:
            await queue.mark_processed(request_id, "failed", 0)

        assert exc_info.value.current == "processed"
        assert exc_info.value.requested == "failed"
        assert (await queue.get(request_id)).status == "processed"

    async def test_non_terminal_target_status(self, queue: DeletionRequestQueue) -> None:
        request_id = await queue.enqueue(event_id_for(1), "admin")
        with pytest.raises(InvalidStateTransitionError):
            await queue.mark_processed(request_id, "pending", 0)

    async def test_missing_request(self, queue: DeletionRequestQueue) -> None:
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            await queue.mark_processed(999, "processed", 0)
        assert exc_info.value.current is None
