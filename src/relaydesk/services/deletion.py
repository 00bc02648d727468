"""
Deletion request processing.

Drains the deletion request queue against the event store. Requests that
came from kind 5 events may only remove events written by the same
author; operator requests skip that check. Targets that are no longer
stored count as already deleted.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..core.logging import get_logger, log_context
from .storage.connection import StoreManager
from .storage.deletion_queue import DeletionRequestQueue
from .storage.errors import InvalidIdentifierError, StorageOperationError
from .storage.models import DELETION_FAILED, DELETION_PENDING, DELETION_PROCESSED, DeletionRequest
from .storage.relay_writer import RelayWriter
from .storage.settings_store import SettingsStore

logger = get_logger(__name__)


@dataclass
class DeletionResult:
    """Outcome of one processing pass."""

    processed: int = 0
    events_deleted: int = 0
    failed: int = 0
    skipped: int = 0


class DeletionProcessor:
    """Applies pending deletion requests using the maintenance writer."""

    def __init__(self, manager: StoreManager):
        self.manager = manager
        self.queue = DeletionRequestQueue(manager)
        self.settings = SettingsStore(manager)

    async def process_pending(self) -> DeletionResult:
        """
        Process every pending request, oldest first.

        When the policy does not honor kind 5 deletions, protocol requests
        stay pending and only operator requests are applied.
        """
        result = DeletionResult()

        policy = await self.settings.get_retention_policy()
        requests = await self.queue.list_pending()

        actionable = []
        for request in requests:
            if request.is_admin or policy.honor_nip09:
                actionable.append(request)
            else:
                result.skipped += 1

        if result.skipped:
            logger.info(
                "Deletion requests not honored by policy, leaving %d pending",
                result.skipped,
            )

        if not actionable:
            return result

        async with self.manager.relay_writer() as writer:
            for request in actionable:
                deleted = await self._apply(writer, request)
                if deleted is None:
                    result.failed += 1
                else:
                    result.processed += 1
                    result.events_deleted += deleted

        logger.info(
            "Processed %d deletion request(s), deleted %d event(s), %d failed",
            result.processed,
            result.events_deleted,
            result.failed,
        )
        return result

    async def process_request(self, request_id: int) -> DeletionResult:
        """
        Process one request by id, regardless of the kind 5 policy.

        A missing or already finished request is a no-op.
        """
        result = DeletionResult()
        request = await self.queue.get(request_id)
        if request is None or request.status != DELETION_PENDING:
            logger.debug("Deletion request %d is not pending", request_id)
            return result

        async with self.manager.relay_writer() as writer:
            deleted = await self._apply(writer, request)

        if deleted is None:
            result.failed = 1
        else:
            result.processed = 1
            result.events_deleted = deleted
        return result

    async def _apply(self, writer: RelayWriter, request: DeletionRequest) -> int | None:
        """
        Delete the permitted targets of one request and record the outcome.

        Returns:
            Events deleted, or None if the deletion itself failed.
        """
        with log_context(request_id=request.id):
            targets = await self._permitted_targets(writer, request)

            deleted = 0
            if targets:
                try:
                    deleted = await writer.delete_events_by_ids(targets)
                except StorageOperationError as e:
                    logger.error("Failed to delete events for request %d: %s", request.id, e)
                    await self.queue.mark_processed(request.id, DELETION_FAILED, 0)
                    return None

            await self.queue.mark_processed(request.id, DELETION_PROCESSED, deleted)
            return deleted

    async def _permitted_targets(self, writer: RelayWriter, request: DeletionRequest) -> list[str]:
        permitted: list[str] = []
        requester = request.author_pubkey.lower()

        for target in request.target_event_ids:
            try:
                author = await writer.get_event_author(target)
            except InvalidIdentifierError:
                logger.warning("Request %d has invalid target id %r", request.id, target)
                continue

            if author is None:
                # Already gone
                continue

            if request.is_admin or author == requester:
                permitted.append(target)
            else:
                logger.info(
                    "Rejecting deletion of event %s: requester %s is not author %s",
                    target,
                    requester[:16],
                    author[:16],
                )
        return permitted
