"""Microsoft Teams integration endpoints.

OAuth and Graph subscriptions live in the Teams collaborator; it delivers
finished call recordings here.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Body, Depends, Query, status
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from pydantic import BaseModel, Field

from meetnotes.routers.dependencies import get_current_user, get_ingestion_service
from meetnotes.routers.meetings import MeetingOut
from meetnotes.services.ingestion import TeamsIngestionService, TeamsRecording

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/integrations/teams", tags=["integrations"])

CALL_RECORD_MARKER = "/communications/callRecords/"


class TeamsRecordingIn(BaseModel):
    call_id: str = Field(min_length=1)
    recording_url: str = Field(min_length=1)
    subject: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    participants: list[dict[str, Any]] = Field(default_factory=list)
    duration_seconds: int | None = None


@router.post("/recordings", response_model=MeetingOut)
async def ingest_recording(
    payload: TeamsRecordingIn,
    user_id: str = Depends(get_current_user),  # noqa: B008
    service: TeamsIngestionService = Depends(get_ingestion_service),  # noqa: B008
) -> JSONResponse:
    meeting, created = await service.ingest(
        user_id,
        TeamsRecording(
            call_id=payload.call_id,
            recording_locator=payload.recording_url,
            subject=payload.subject,
            start_time=payload.start_time,
            end_time=payload.end_time,
            participants=payload.participants,
            duration_seconds=payload.duration_seconds,
        ),
    )
    return JSONResponse(
        status_code=status.HTTP_201_CREATED if created else status.HTTP_200_OK,
        content=MeetingOut.from_orm_obj(meeting).model_dump(mode="json"),
    )


def call_ids_from_notifications(body: dict[str, Any]) -> list[str]:
    """Extract call record ids from a Graph change-notification batch."""
    call_ids = []
    for notification in body.get("value") or []:
        resource = notification.get("resource") if isinstance(notification, dict) else None
        if not resource or CALL_RECORD_MARKER not in resource:
            continue
        call_id = resource.split(CALL_RECORD_MARKER, 1)[1].split("?", 1)[0]
        if call_id:
            call_ids.append(call_id)
    return call_ids


@router.post("/webhook")
async def teams_webhook(
    validation_token: str | None = Query(default=None, alias="validationToken"),
    body: dict[str, Any] | None = Body(default=None),  # noqa: B008
) -> Response:
    """Graph subscription endpoint: echoes validation tokens and acknowledges notifications."""
    token = validation_token or (body or {}).get("validationToken")
    if token:
        return PlainTextResponse(token)

    call_ids = call_ids_from_notifications(body or {})
    for call_id in call_ids:
        logger.info(f"Teams call record notification received for call {call_id}")
    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content={"status": "ok", "call_ids": call_ids},
    )
