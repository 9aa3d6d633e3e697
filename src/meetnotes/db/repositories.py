"""Repository implementations using SQLAlchemy async sessions."""
from __future__ import annotations

import dataclasses
from collections.abc import Awaitable, Callable, Iterable, Sequence
from datetime import datetime
from typing import Any, TypeVar

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from meetnotes.core.errors import NotFoundError, ValidationError
from meetnotes.services.resilience import ResilientExecutor, RetryPolicies

from .models import Meeting, MeetingSource, MeetingStatus

T = TypeVar("T")

DEFAULT_TITLE = "Untitled Meeting"
EDITABLE_FIELDS = frozenset({"title", "description"})
PROCESSING_FIELDS = frozenset(
    {
        "status",
        "transcript",
        "summary",
        "action_items",
        "key_decisions",
        "topics",
        "duration_seconds",
        "processed_at",
        "error_message",
    }
)


class MeetingStore:
    """Owner-scoped access to meetings.

    Each call runs in its own short-lived session through the resilient
    executor, so a retried call never reuses a broken connection.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        executor: ResilientExecutor,
        policies: RetryPolicies,
    ) -> None:
        self._session_factory = session_factory
        self._executor = executor
        self._policies = policies

    async def _run(
        self,
        name: str,
        work: Callable[[AsyncSession], Awaitable[T]],
        *,
        critical: bool = False,
        retryable: bool = True,
    ) -> T:
        policy = self._policies.critical_db if critical else self._policies.db
        if not retryable:
            policy = dataclasses.replace(policy, max_retries=0)

        async def operation() -> T:
            async with self._session_factory() as session:
                result = await work(session)
                await session.commit()
                return result

        return await self._executor.run(operation, policy, name=f"meetings.{name}")

    async def create(
        self,
        owner_id: str,
        title: str | None,
        recording_locator: str | None,
        *,
        description: str | None = None,
        metadata: dict[str, Any] | None = None,
        source: MeetingSource = MeetingSource.UPLOAD,
    ) -> Meeting:
        if not owner_id:
            raise ValidationError("owner_id is required")
        if not recording_locator:
            raise ValidationError("recording_locator is required")

        async def work(session: AsyncSession) -> Meeting:
            meeting = Meeting(
                owner_id=owner_id,
                title=(title or "").strip() or DEFAULT_TITLE,
                description=description,
                recording_locator=recording_locator,
                metadata_json=metadata or {},
                source=source.value,
                status=MeetingStatus.PENDING.value,
            )
            session.add(meeting)
            await session.flush()  # assign id/defaults
            return meeting

        # plain inserts are not idempotent
        return await self._run("create", work, retryable=False)

    async def create_or_get_external(
        self,
        owner_id: str,
        external_id: str,
        title: str | None,
        recording_locator: str | None,
        *,
        description: str | None = None,
        metadata: dict[str, Any] | None = None,
        source: MeetingSource = MeetingSource.TEAMS,
    ) -> tuple[Meeting, bool]:
        """Insert keyed by ``(owner_id, external_id)``; returns ``(meeting, created)``.

        Safe to retry: a repeated call finds the row written by an earlier attempt.
        """
        if not owner_id or not external_id:
            raise ValidationError("owner_id and external_id are required")
        if not recording_locator:
            raise ValidationError("recording_locator is required")

        async def work(session: AsyncSession) -> tuple[Meeting, bool]:
            existing = await self._select_external(session, owner_id, external_id)
            if existing is not None:
                return existing, False
            meeting = Meeting(
                owner_id=owner_id,
                external_id=external_id,
                title=(title or "").strip() or DEFAULT_TITLE,
                description=description,
                recording_locator=recording_locator,
                metadata_json=metadata or {},
                source=source.value,
                status=MeetingStatus.PENDING.value,
            )
            session.add(meeting)
            try:
                await session.flush()
            except IntegrityError:
                await session.rollback()
                existing = await self._select_external(session, owner_id, external_id)
                if existing is None:
                    raise
                return existing, False
            return meeting, True

        return await self._run("create_or_get_external", work, critical=True)

    async def find_by_external_id(self, owner_id: str, external_id: str) -> Meeting | None:
        async def work(session: AsyncSession) -> Meeting | None:
            return await self._select_external(session, owner_id, external_id)

        return await self._run("find_by_external_id", work)

    async def get(self, owner_id: str, meeting_id: str) -> Meeting:
        async def work(session: AsyncSession) -> Meeting | None:
            return await self._select_owned(session, owner_id, meeting_id)

        meeting = await self._run("get", work)
        if meeting is None:
            raise NotFoundError()
        return meeting

    async def get_for_processing(self, meeting_id: str) -> Meeting | None:
        """Unscoped read used by the background processor."""

        async def work(session: AsyncSession) -> Meeting | None:
            result = await session.execute(select(Meeting).where(Meeting.id == meeting_id))
            return result.scalar_one_or_none()

        return await self._run("get_for_processing", work)

    async def exists(self, meeting_id: str) -> bool:
        async def work(session: AsyncSession) -> bool:
            result = await session.execute(select(Meeting.id).where(Meeting.id == meeting_id))
            return result.scalar_one_or_none() is not None

        return await self._run("exists", work)

    async def update_content(self, owner_id: str, meeting_id: str, changes: dict[str, Any]) -> Meeting:
        """Edit title/description; never touches status or pipeline output."""
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")
        if "title" in changes and not (changes["title"] or "").strip():
            raise ValidationError("title must not be empty")

        async def work(session: AsyncSession) -> Meeting | None:
            meeting = await self._select_owned(session, owner_id, meeting_id)
            if meeting is None:
                return None
            for key, value in changes.items():
                setattr(meeting, key, value.strip() if key == "title" else value)
            await session.flush()
            return meeting

        meeting = await self._run("update_content", work)
        if meeting is None:
            raise NotFoundError()
        return meeting

    async def update_processing_result(
        self,
        meeting_id: str,
        fields: dict[str, Any],
        *,
        from_statuses: Iterable[MeetingStatus] | None = None,
    ) -> bool:
        """Write status/pipeline fields in a single UPDATE.

        Not owner scoped. With ``from_statuses`` the row is only touched while
        its status is one of them. Returns whether a row was updated.
        """
        unknown = set(fields) - PROCESSING_FIELDS
        if unknown:
            raise ValidationError(f"Not a processing field: {', '.join(sorted(unknown))}")
        values = {
            key: (value.value if isinstance(value, MeetingStatus) else value)
            for key, value in fields.items()
        }
        stmt = update(Meeting).where(Meeting.id == meeting_id)
        if from_statuses is not None:
            stmt = stmt.where(Meeting.status.in_([s.value for s in from_statuses]))
        stmt = stmt.values(**values).execution_options(synchronize_session=False)

        async def work(session: AsyncSession) -> bool:
            result = await session.execute(stmt)
            return bool(result.rowcount)

        return await self._run("update_processing_result", work)

    async def mark_processing(self, meeting_id: str) -> bool:
        """pending/processing -> processing; False when the meeting left those states."""
        return await self.update_processing_result(
            meeting_id,
            {"status": MeetingStatus.PROCESSING},
            from_statuses=(MeetingStatus.PENDING, MeetingStatus.PROCESSING),
        )

    async def delete(self, owner_id: str, meeting_id: str) -> None:
        async def work(session: AsyncSession) -> bool:
            meeting = await self._select_owned(session, owner_id, meeting_id)
            if meeting is None:
                return False
            await session.delete(meeting)
            return True

        if not await self._run("delete", work):
            raise NotFoundError()

    async def list_recent(self, owner_id: str, limit: int = 50) -> Sequence[Meeting]:
        async def work(session: AsyncSession) -> Sequence[Meeting]:
            result = await session.execute(
                select(Meeting)
                .where(Meeting.owner_id == owner_id)
                .order_by(Meeting.created_at.desc())
                .limit(limit)
            )
            return list(result.scalars())

        return await self._run("list_recent", work)

    async def count_created_since(self, owner_id: str, since: datetime) -> int:
        async def work(session: AsyncSession) -> int:
            result = await session.execute(
                select(func.count(Meeting.id)).where(
                    Meeting.owner_id == owner_id, Meeting.created_at >= since
                )
            )
            return int(result.scalar_one())

        return await self._run("count_created_since", work)

    @staticmethod
    async def _select_owned(session: AsyncSession, owner_id: str, meeting_id: str) -> Meeting | None:
        result = await session.execute(
            select(Meeting).where(Meeting.id == meeting_id, Meeting.owner_id == owner_id)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def _select_external(session: AsyncSession, owner_id: str, external_id: str) -> Meeting | None:
        result = await session.execute(
            select(Meeting).where(Meeting.owner_id == owner_id, Meeting.external_id == external_id)
        )
        return result.scalar_one_or_none()
