"""Meeting use cases behind the HTTP endpoints."""
from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from meetnotes.core.errors import InvalidStateError
from meetnotes.db.models import Meeting
from meetnotes.db.repositories import MeetingStore
from meetnotes.pipelines.interfaces import BlobStoreProtocol, ProcessingDispatcherProtocol
from meetnotes.services.usage import PlanEntitlement, UsageService

logger = logging.getLogger(__name__)


class MeetingService:
    def __init__(
        self,
        store: MeetingStore,
        dispatcher: ProcessingDispatcherProtocol,
        blobs: BlobStoreProtocol,
        usage: UsageService,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._blobs = blobs
        self._usage = usage

    async def register_upload(
        self,
        owner_id: str,
        entitlement: PlanEntitlement,
        *,
        title: str | None,
        recording_locator: str,
        description: str | None = None,
        metadata: dict[str, Any] | None = None,
        start_processing: bool = True,
    ) -> Meeting:
        """Create a pending meeting and hand it to the background processor.

        Returns as soon as processing is dispatched; the outcome is only
        visible through later status reads.
        """
        await self._usage.ensure_can_upload(owner_id, entitlement)
        meeting = await self._store.create(
            owner_id,
            title,
            recording_locator,
            description=description,
            metadata=metadata,
        )
        logger.info(f"Created meeting {meeting.id} for user {owner_id}")
        if start_processing:
            await self._dispatcher.start(meeting.id)
        return meeting

    async def start_processing(self, owner_id: str, meeting_id: str) -> Meeting:
        meeting = await self._store.get(owner_id, meeting_id)
        if meeting.status_enum.is_terminal:
            raise InvalidStateError(f"Meeting is already {meeting.status}")
        await self._dispatcher.start(meeting.id)
        return meeting

    async def get(self, owner_id: str, meeting_id: str) -> Meeting:
        return await self._store.get(owner_id, meeting_id)

    async def list_recent(self, owner_id: str, limit: int = 50) -> Sequence[Meeting]:
        return await self._store.list_recent(owner_id, limit)

    async def update_content(self, owner_id: str, meeting_id: str, changes: dict[str, Any]) -> Meeting:
        return await self._store.update_content(owner_id, meeting_id, changes)

    async def delete_meeting(self, owner_id: str, meeting_id: str) -> None:
        """Delete the recording blob (best effort) and then the meeting row."""
        meeting = await self._store.get(owner_id, meeting_id)
        if meeting.recording_locator:
            try:
                await self._blobs.delete(meeting.recording_locator)
            except Exception as exc:
                logger.warning(f"Failed to delete recording for meeting {meeting_id}: {exc}")
        await self._store.delete(owner_id, meeting_id)
        logger.info(f"Deleted meeting {meeting_id}")
