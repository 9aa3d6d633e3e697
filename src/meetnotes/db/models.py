"""ORM models for core entities."""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from sqlalchemy import JSON, DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class MeetingStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (MeetingStatus.COMPLETED, MeetingStatus.FAILED)


class MeetingSource(str, Enum):
    UPLOAD = "upload"
    TEAMS = "teams"


def _new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Meeting(Base):
    __tablename__ = "meetings"
    __table_args__ = (UniqueConstraint("owner_id", "external_id", name="uq_meetings_owner_external"),)

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    owner_id: Mapped[str] = mapped_column(String(64), index=True)
    title: Mapped[str] = mapped_column(String(200))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    recording_locator: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=MeetingStatus.PENDING.value, index=True)
    source: Mapped[str] = mapped_column(String(20), default=MeetingSource.UPLOAD.value)
    external_id: Mapped[str | None] = mapped_column(String(200), nullable=True, index=True)
    metadata_json: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)

    # Written by the processing pipeline only
    transcript: Mapped[str | None] = mapped_column(Text, nullable=True)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    action_items: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)
    key_decisions: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)
    topics: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)
    duration_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def status_enum(self) -> MeetingStatus:
        return MeetingStatus(self.status)
