"""Celery tasks for meetnotes.

Start a worker with::

    celery -A meetnotes.tasks.worker worker -Q processing
"""
from __future__ import annotations

import asyncio
from typing import Any

from celery.exceptions import SoftTimeLimitExceeded
from celery.utils.log import get_task_logger

from meetnotes.container import build_container
from meetnotes.core.errors import AppError
from meetnotes.tasks import PROCESS_MEETING_TASK, get_celery_app

logger = get_task_logger(__name__)

app = get_celery_app()


# No autoretry: a failed run leaves the meeting in the terminal failed state
@app.task(bind=True, name=PROCESS_MEETING_TASK)  # type: ignore[misc]
def process_meeting(self: Any, meeting_id: str) -> dict[str, Any]:
    """Run the processing pipeline for one meeting."""
    logger.info(f"Task {self.request.id}: processing meeting {meeting_id}")
    try:
        return asyncio.run(_process_meeting_async(meeting_id))
    except SoftTimeLimitExceeded:
        logger.error(f"Processing meeting {meeting_id} timed out")
        return {"meeting_id": meeting_id, "status": "timeout", "error": "Processing timed out"}
    except AppError as e:
        logger.error(f"Processing meeting {meeting_id} failed: {e.code} - {e.message}")
        return {"meeting_id": meeting_id, "status": "failed", "error": e.message, "code": e.code}


async def _process_meeting_async(meeting_id: str) -> dict[str, Any]:
    container = build_container()
    try:
        outcome = await container.processor.process(meeting_id)
        return outcome.to_dict()
    finally:
        await container.aclose()
