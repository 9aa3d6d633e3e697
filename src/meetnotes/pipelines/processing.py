"""Meeting processing orchestrator.

Drives one meeting through ``pending -> processing -> completed | failed``:

* the meeting is loaded; a missing meeting or recording locator is fatal and
  nothing is written;
* status moves to ``processing`` (a no-op when it already is);
* transcription, then analysis, then one UPDATE writing the transcript, every
  analysis field, ``processed_at`` and ``completed``;
* any stage error sets ``failed`` (and nothing else) unless the meeting was
  deleted meanwhile, then the original error is re-raised.

Terminal meetings are never re-entered and a per-meeting lock keeps duplicate
triggers from running side by side.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from meetnotes.core.errors import InvalidStateError, NotFoundError, ValidationError
from meetnotes.db.models import Meeting, MeetingStatus, utcnow
from meetnotes.db.repositories import MeetingStore
from meetnotes.pipelines.analysis import AnalysisStage
from meetnotes.pipelines.transcription import TranscriptionStage
from meetnotes.tasks.locks import ProcessingLockProtocol

logger = logging.getLogger(__name__)

MAX_ERROR_DETAIL = 2000


@dataclass(slots=True)
class ProcessingOutcome:
    meeting_id: str
    status: MeetingStatus
    transcript_chars: int
    action_items: int
    results_saved: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "meeting_id": self.meeting_id,
            "status": self.status.value,
            "transcript_chars": self.transcript_chars,
            "action_items": self.action_items,
            "results_saved": self.results_saved,
        }


class MeetingProcessor:
    def __init__(
        self,
        store: MeetingStore,
        transcription: TranscriptionStage,
        analysis: AnalysisStage,
        lock: ProcessingLockProtocol,
        *,
        persist_failure_detail: bool = False,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._transcription = transcription
        self._analysis = analysis
        self._lock = lock
        self._persist_failure_detail = persist_failure_detail
        self._clock = clock

    async def process(self, meeting_id: str) -> ProcessingOutcome:
        meeting = await self._store.get_for_processing(meeting_id)
        if meeting is None:
            raise NotFoundError(f"Meeting {meeting_id} not found")
        if not meeting.recording_locator:
            raise ValidationError(f"Meeting {meeting_id} has no recording")
        if meeting.status_enum.is_terminal:
            raise InvalidStateError(f"Meeting {meeting_id} is already {meeting.status}")

        async with self._lock.hold(meeting_id):
            return await self._run(meeting)

    async def _run(self, meeting: Meeting) -> ProcessingOutcome:
        if not await self._store.mark_processing(meeting.id):
            raise InvalidStateError(f"Meeting {meeting.id} left the pending state before processing began")

        try:
            logger.info(f"Transcribing meeting {meeting.id}...")
            transcript = await self._transcription.transcribe(meeting.recording_locator or "")

            logger.info(f"Analyzing meeting {meeting.id}...")
            analysis = await self._analysis.analyze(transcript, meeting.title)

            saved = await self._store.update_processing_result(
                meeting.id,
                {
                    "status": MeetingStatus.COMPLETED,
                    "transcript": transcript,
                    **analysis.to_fields(),
                    "processed_at": self._clock(),
                },
                from_statuses=(MeetingStatus.PROCESSING,),
            )
        except Exception as exc:
            logger.error(f"Error processing meeting {meeting.id}: {exc}")
            await self._record_failure(meeting.id, exc)
            raise

        if saved:
            logger.info(f"Meeting {meeting.id} processed successfully")
        else:
            logger.warning(f"Meeting {meeting.id} was deleted or changed during processing; results discarded")
        return ProcessingOutcome(
            meeting_id=meeting.id,
            status=MeetingStatus.COMPLETED,
            transcript_chars=len(transcript),
            action_items=len(analysis.action_items),
            results_saved=saved,
        )

    async def _record_failure(self, meeting_id: str, error: Exception) -> None:
        """Flip the meeting to ``failed``; never masks the original error."""
        try:
            if not await self._store.exists(meeting_id):
                logger.warning(f"Meeting {meeting_id} no longer exists, skipping status update")
                return
            fields: dict[str, Any] = {"status": MeetingStatus.FAILED}
            if self._persist_failure_detail:
                fields["error_message"] = str(error)[:MAX_ERROR_DETAIL]
            await self._store.update_processing_result(
                meeting_id, fields, from_statuses=(MeetingStatus.PROCESSING,)
            )
        except Exception:
            logger.exception(f"Failed to update meeting {meeting_id} status to failed")
