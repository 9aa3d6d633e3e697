"""Meeting endpoints: upload registration, reads, edits, processing trigger and export."""
from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, ConfigDict, Field

from meetnotes.core.errors import ErrorResponse
from meetnotes.db.models import Meeting
from meetnotes.routers.dependencies import get_current_user, get_entitlement, get_meeting_service
from meetnotes.services.export import export_meeting
from meetnotes.services.meetings import MeetingService
from meetnotes.services.usage import PlanEntitlement

router = APIRouter(
    prefix="/meetings",
    tags=["meetings"],
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)


class MeetingCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str | None = Field(default=None, max_length=200)
    description: str | None = None
    recording_locator: str = Field(alias="recordingUrl", min_length=1)
    metadata: dict[str, Any] | None = None
    process: bool = True


class MeetingUpdate(BaseModel):
    title: str | None = Field(default=None, max_length=200)
    description: str | None = None


class MeetingListItem(BaseModel):
    id: str
    title: str
    description: str | None = None
    status: str
    summary: str | None = None
    created_at: datetime

    @classmethod
    def from_orm_obj(cls, meeting: Meeting) -> MeetingListItem:
        return cls(
            id=meeting.id,
            title=meeting.title,
            description=meeting.description,
            status=meeting.status,
            summary=meeting.summary,
            created_at=meeting.created_at,
        )


class MeetingOut(MeetingListItem):
    source: str
    recording_locator: str | None = None
    transcript: str | None = None
    action_items: list[dict[str, Any]] = Field(default_factory=list)
    key_decisions: list[dict[str, Any]] = Field(default_factory=list)
    topics: list[dict[str, Any]] = Field(default_factory=list)
    duration_seconds: int | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    error_message: str | None = None
    processed_at: datetime | None = None

    @classmethod
    def from_orm_obj(cls, meeting: Meeting) -> MeetingOut:
        return cls(
            id=meeting.id,
            title=meeting.title,
            description=meeting.description,
            status=meeting.status,
            summary=meeting.summary,
            created_at=meeting.created_at,
            source=meeting.source,
            recording_locator=meeting.recording_locator,
            transcript=meeting.transcript,
            action_items=meeting.action_items or [],
            key_decisions=meeting.key_decisions or [],
            topics=meeting.topics or [],
            duration_seconds=meeting.duration_seconds,
            metadata=meeting.metadata_json or {},
            error_message=meeting.error_message,
            processed_at=meeting.processed_at,
        )


class MeetingStatusOut(BaseModel):
    id: str
    status: str
    processed_at: datetime | None = None
    error_message: str | None = None


@router.post("", status_code=status.HTTP_201_CREATED, response_model=MeetingOut)
async def create_meeting(
    payload: MeetingCreate,
    user_id: str = Depends(get_current_user),  # noqa: B008
    entitlement: PlanEntitlement = Depends(get_entitlement),  # noqa: B008
    service: MeetingService = Depends(get_meeting_service),  # noqa: B008
) -> MeetingOut:
    meeting = await service.register_upload(
        user_id,
        entitlement,
        title=payload.title,
        description=payload.description,
        recording_locator=payload.recording_locator,
        metadata=payload.metadata,
        start_processing=payload.process,
    )
    return MeetingOut.from_orm_obj(meeting)


@router.get("", response_model=list[MeetingListItem])
async def list_meetings(
    limit: int = Query(default=50, ge=1, le=200),
    user_id: str = Depends(get_current_user),  # noqa: B008
    service: MeetingService = Depends(get_meeting_service),  # noqa: B008
) -> list[MeetingListItem]:
    meetings = await service.list_recent(user_id, limit)
    return [MeetingListItem.from_orm_obj(m) for m in meetings]


@router.get("/{meeting_id}", response_model=MeetingOut)
async def get_meeting(
    meeting_id: str,
    user_id: str = Depends(get_current_user),  # noqa: B008
    service: MeetingService = Depends(get_meeting_service),  # noqa: B008
) -> MeetingOut:
    return MeetingOut.from_orm_obj(await service.get(user_id, meeting_id))


@router.get("/{meeting_id}/status", response_model=MeetingStatusOut)
async def get_meeting_status(
    meeting_id: str,
    user_id: str = Depends(get_current_user),  # noqa: B008
    service: MeetingService = Depends(get_meeting_service),  # noqa: B008
) -> MeetingStatusOut:
    meeting = await service.get(user_id, meeting_id)
    return MeetingStatusOut(
        id=meeting.id,
        status=meeting.status,
        processed_at=meeting.processed_at,
        error_message=meeting.error_message,
    )


@router.patch("/{meeting_id}", response_model=MeetingOut)
async def update_meeting(
    meeting_id: str,
    payload: MeetingUpdate,
    user_id: str = Depends(get_current_user),  # noqa: B008
    service: MeetingService = Depends(get_meeting_service),  # noqa: B008
) -> MeetingOut:
    changes = payload.model_dump(exclude_unset=True)
    meeting = await service.update_content(user_id, meeting_id, changes)
    return MeetingOut.from_orm_obj(meeting)


@router.delete("/{meeting_id}")
async def delete_meeting(
    meeting_id: str,
    user_id: str = Depends(get_current_user),  # noqa: B008
    service: MeetingService = Depends(get_meeting_service),  # noqa: B008
) -> dict[str, bool]:
    await service.delete_meeting(user_id, meeting_id)
    return {"success": True}


@router.post("/{meeting_id}/process", status_code=status.HTTP_202_ACCEPTED)
async def process_meeting(
    meeting_id: str,
    user_id: str = Depends(get_current_user),  # noqa: B008
    service: MeetingService = Depends(get_meeting_service),  # noqa: B008
) -> dict[str, str]:
    meeting = await service.start_processing(user_id, meeting_id)
    return {"id": meeting.id, "message": "Processing started"}


@router.get("/{meeting_id}/export")
async def export_meeting_notes(
    meeting_id: str,
    format: str = Query(default="txt", pattern="^(txt|docx|pdf)$"),
    user_id: str = Depends(get_current_user),  # noqa: B008
    service: MeetingService = Depends(get_meeting_service),  # noqa: B008
) -> Response:
    meeting = await service.get(user_id, meeting_id)
    document = export_meeting(meeting, format)
    return Response(
        content=document.content,
        media_type=document.media_type,
        headers={"Content-Disposition": f'attachment; filename="{document.filename}"'},
    )
