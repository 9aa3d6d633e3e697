"""Fire-and-forget dispatchers that start meeting processing."""
from __future__ import annotations

import asyncio
import logging

from celery import Celery

from meetnotes.pipelines.processing import MeetingProcessor
from meetnotes.tasks import PROCESS_MEETING_TASK
from meetnotes.tasks.runner import BackgroundTaskRunner

logger = logging.getLogger(__name__)


class InlineDispatcher:
    """Runs the processor as an asyncio task in the current process."""

    def __init__(self, runner: BackgroundTaskRunner, processor: MeetingProcessor) -> None:
        self._runner = runner
        self._processor = processor

    async def start(self, meeting_id: str) -> None:
        self._runner.spawn(f"process-meeting:{meeting_id}", lambda: self._processor.process(meeting_id))
        logger.info(f"Processing started for meeting {meeting_id}")


class CeleryDispatcher:
    """Enqueues processing on the Celery ``processing`` queue."""

    def __init__(self, app: Celery) -> None:
        self._app = app

    async def start(self, meeting_id: str) -> None:
        result = await asyncio.to_thread(self._app.send_task, PROCESS_MEETING_TASK, args=[meeting_id])
        logger.info(f"Processing enqueued for meeting {meeting_id} (task {result.id})")
