"""Owner-scoped persistence of meetings."""
from __future__ import annotations

from datetime import timedelta

import pytest
from fakes import RECORDING_URL
from sqlalchemy.exc import OperationalError

from meetnotes.core.errors import NotFoundError, RetryExhaustedError, ValidationError
from meetnotes.db.models import MeetingSource, MeetingStatus, utcnow
from meetnotes.db.repositories import DEFAULT_TITLE, MeetingStore
from meetnotes.services.resilience import ResilientExecutor, build_retry_policies


@pytest.mark.asyncio
async def test_create_defaults(store):
    meeting = await store.create("user-1", "  ", RECORDING_URL, metadata={"fileSize": 10})

    assert meeting.id
    assert meeting.title == DEFAULT_TITLE
    assert meeting.status == MeetingStatus.PENDING.value
    assert meeting.source == MeetingSource.UPLOAD.value
    assert meeting.metadata_json == {"fileSize": 10}
    assert meeting.transcript is None
    assert meeting.processed_at is None


@pytest.mark.asyncio
async def test_create_requires_recording_locator(store):
    with pytest.raises(ValidationError):
        await store.create("user-1", "Standup", None)


@pytest.mark.asyncio
async def test_reads_are_owner_scoped(store):
    meeting = await store.create("user-1", "Standup", RECORDING_URL)

    assert (await store.get("user-1", meeting.id)).title == "Standup"
    with pytest.raises(NotFoundError):
        await store.get("user-2", meeting.id)
    with pytest.raises(NotFoundError):
        await store.update_content("user-2", meeting.id, {"title": "Hijacked"})
    with pytest.raises(NotFoundError):
        await store.delete("user-2", meeting.id)
    assert await store.exists(meeting.id)


@pytest.mark.parametrize("status", list(MeetingStatus))
@pytest.mark.asyncio
async def test_content_edits_never_touch_pipeline_fields(store, status):
    meeting = await store.create("user-1", "Standup", RECORDING_URL)
    await store.update_processing_result(
        meeting.id,
        {"status": status, "transcript": "hello", "summary": "s", "action_items": [{"text": "a"}]},
    )

    updated = await store.update_content("user-1", meeting.id, {"title": "Renamed", "description": "Weekly"})

    assert updated.title == "Renamed"
    assert updated.description == "Weekly"
    assert updated.status == status.value
    assert updated.transcript == "hello"
    assert updated.summary == "s"
    assert updated.action_items == [{"text": "a"}]


@pytest.mark.asyncio
async def test_update_content_rejects_other_fields(store):
    meeting = await store.create("user-1", "Standup", RECORDING_URL)

    with pytest.raises(ValidationError):
        await store.update_content("user-1", meeting.id, {"status": "completed"})
    with pytest.raises(ValidationError):
        await store.update_content("user-1", meeting.id, {"title": ""})


@pytest.mark.asyncio
async def test_conditional_processing_update(store):
    meeting = await store.create("user-1", "Standup", RECORDING_URL)

    assert await store.mark_processing(meeting.id)
    assert await store.update_processing_result(
        meeting.id, {"status": MeetingStatus.COMPLETED}, from_statuses=(MeetingStatus.PROCESSING,)
    )
    # completed is terminal
    assert not await store.mark_processing(meeting.id)
    assert not await store.update_processing_result(
        meeting.id, {"status": MeetingStatus.FAILED}, from_statuses=(MeetingStatus.PROCESSING,)
    )
    assert (await store.get("user-1", meeting.id)).status == MeetingStatus.COMPLETED.value


@pytest.mark.asyncio
async def test_processing_update_rejects_content_fields(store):
    meeting = await store.create("user-1", "Standup", RECORDING_URL)

    with pytest.raises(ValidationError):
        await store.update_processing_result(meeting.id, {"title": "x"})


@pytest.mark.asyncio
async def test_update_missing_meeting_reports_no_row(store):
    assert not await store.update_processing_result("missing", {"status": MeetingStatus.FAILED})


@pytest.mark.asyncio
async def test_delete(store):
    meeting = await store.create("user-1", "Standup", RECORDING_URL)

    await store.delete("user-1", meeting.id)

    assert not await store.exists(meeting.id)
    with pytest.raises(NotFoundError):
        await store.delete("user-1", meeting.id)


@pytest.mark.asyncio
async def test_list_recent_newest_first_and_scoped(store):
    first = await store.create("user-1", "First", RECORDING_URL)
    second = await store.create("user-1", "Second", RECORDING_URL)
    await store.create("user-2", "Other", RECORDING_URL)

    meetings = await store.list_recent("user-1")

    assert [m.id for m in meetings] == [second.id, first.id]
    assert len(await store.list_recent("user-1", limit=1)) == 1


@pytest.mark.asyncio
async def test_count_created_since(store):
    await store.create("user-1", "One", RECORDING_URL)
    await store.create("user-1", "Two", RECORDING_URL)

    assert await store.count_created_since("user-1", utcnow() - timedelta(days=1)) == 2
    assert await store.count_created_since("user-1", utcnow() + timedelta(days=1)) == 0
    assert await store.count_created_since("user-2", utcnow() - timedelta(days=1)) == 0


@pytest.mark.asyncio
async def test_external_create_is_idempotent(store):
    meeting, created = await store.create_or_get_external(
        "user-1", "call-1", "Teams sync", RECORDING_URL, source=MeetingSource.TEAMS
    )
    again, created_again = await store.create_or_get_external(
        "user-1", "call-1", "Teams sync", RECORDING_URL, source=MeetingSource.TEAMS
    )

    assert created and not created_again
    assert again.id == meeting.id
    assert (await store.find_by_external_id("user-1", "call-1")).id == meeting.id
    assert await store.find_by_external_id("user-2", "call-1") is None


class DroppedConnection:
    """Session stand-in whose first use fails like a terminated connection."""

    async def __aenter__(self):
        raise OperationalError("SELECT 1", {}, Exception("connection terminated unexpectedly"))

    async def __aexit__(self, *exc_info):
        return False


class FlakySessionFactory:
    def __init__(self, factory, failures=1):
        self._factory = factory
        self.failures = failures
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.failures:
            self.failures -= 1
            return DroppedConnection()
        return self._factory()


def flaky_store(database, settings, sleep, failures=1):
    factory = FlakySessionFactory(database.session_factory, failures)
    return MeetingStore(factory, ResilientExecutor(sleep=sleep), build_retry_policies(settings)), factory


@pytest.mark.asyncio
async def test_plain_create_is_never_retried(database, settings, sleep, store):
    flaky, factory = flaky_store(database, settings, sleep)

    with pytest.raises(RetryExhaustedError) as excinfo:
        await flaky.create("user-1", "Standup", RECORDING_URL)

    assert excinfo.value.attempts == 1
    assert factory.calls == 1
    assert sleep.delays == []
    assert await store.list_recent("user-1") == []


@pytest.mark.asyncio
async def test_external_create_retries_with_critical_policy(database, settings, sleep, store):
    flaky, factory = flaky_store(database, settings, sleep)

    meeting, created = await flaky.create_or_get_external(
        "user-1", "call-9", "Teams sync", RECORDING_URL, source=MeetingSource.TEAMS
    )
    again, created_again = await flaky.create_or_get_external(
        "user-1", "call-9", "Teams sync", RECORDING_URL, source=MeetingSource.TEAMS
    )

    assert created and not created_again
    assert again.id == meeting.id
    assert factory.calls == 3
    assert sleep.delays == pytest.approx([0.05])
    assert [m.id for m in await store.list_recent("user-1")] == [meeting.id]


@pytest.mark.asyncio
async def test_critical_retries_are_bounded(database, settings, sleep):
    flaky, factory = flaky_store(database, settings, sleep, failures=10)

    with pytest.raises(RetryExhaustedError):
        await flaky.create_or_get_external("user-1", "call-9", "Teams sync", RECORDING_URL)

    assert factory.calls == settings.critical_db_max_retries + 1
    assert sleep.delays == pytest.approx([0.05, 0.10])
