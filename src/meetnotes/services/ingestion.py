"""Ingestion of recordings delivered by the Microsoft Teams collaborator."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from meetnotes.db.models import Meeting, MeetingSource
from meetnotes.db.repositories import MeetingStore
from meetnotes.pipelines.interfaces import ProcessingDispatcherProtocol

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TeamsRecording:
    call_id: str
    recording_locator: str
    subject: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    participants: list[dict[str, Any]] = field(default_factory=list)
    duration_seconds: int | None = None

    def title(self) -> str:
        if self.subject:
            return self.subject
        if self.start_time:
            return f"Teams Meeting - {self.start_time:%Y-%m-%d}"
        return "Teams Meeting"

    def metadata(self) -> dict[str, Any]:
        return {
            "teams_call_id": self.call_id,
            "participants": self.participants,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration": self.duration_seconds,
        }


class TeamsIngestionService:
    def __init__(self, store: MeetingStore, dispatcher: ProcessingDispatcherProtocol) -> None:
        self._store = store
        self._dispatcher = dispatcher

    async def ingest(self, owner_id: str, recording: TeamsRecording) -> tuple[Meeting, bool]:
        """Create the meeting for a call (once per call id) and start processing it.

        Redelivery of the same call returns the existing meeting without
        triggering another run.
        """
        meeting, created = await self._store.create_or_get_external(
            owner_id,
            recording.call_id,
            recording.title(),
            recording.recording_locator,
            description=f"Teams call from {recording.start_time.isoformat()}" if recording.start_time else None,
            metadata=recording.metadata(),
            source=MeetingSource.TEAMS,
        )
        if created:
            logger.info(f"Ingested Teams call {recording.call_id} as meeting {meeting.id}")
            await self._dispatcher.start(meeting.id)
        else:
            logger.info(f"Teams call {recording.call_id} already ingested as meeting {meeting.id}")
        return meeting, created
