"""Upload registration, explicit processing triggers, deletion and Teams ingestion."""
from __future__ import annotations

from datetime import datetime, timezone

import pytest
from fakes import RECORDING_URL

from meetnotes.core.errors import InvalidStateError, NotFoundError, UsageLimitExceededError
from meetnotes.db.models import MeetingSource, MeetingStatus
from meetnotes.services.ingestion import TeamsRecording
from meetnotes.services.usage import PlanEntitlement


@pytest.mark.asyncio
async def test_register_upload_returns_before_processing_finishes(container):
    meeting = await container.meetings.register_upload(
        "user-1", PlanEntitlement(), title="Standup", recording_locator=RECORDING_URL
    )

    assert meeting.status == MeetingStatus.PENDING.value
    assert container.runner.pending == 1

    await container.runner.drain(timeout=10)
    saved = await container.store.get("user-1", meeting.id)
    assert saved.status == MeetingStatus.COMPLETED.value
    assert saved.summary == "The team agreed on the release plan."


@pytest.mark.asyncio
async def test_background_failure_is_only_visible_through_status(container, speech):
    speech.results.append(ValueError("unsupported codec"))

    meeting = await container.meetings.register_upload(
        "user-1", PlanEntitlement(), title="Broken", recording_locator=RECORDING_URL
    )
    await container.runner.drain(timeout=10)

    saved = await container.store.get("user-1", meeting.id)
    assert saved.status == MeetingStatus.FAILED.value
    assert container.runner.failures[-1].name == f"process-meeting:{meeting.id}"


@pytest.mark.asyncio
async def test_register_upload_enforces_usage_limit(container):
    for i in range(3):
        await container.meetings.register_upload(
            "user-1", PlanEntitlement(), title=f"M{i}", recording_locator=RECORDING_URL, start_processing=False
        )

    with pytest.raises(UsageLimitExceededError):
        await container.meetings.register_upload(
            "user-1", PlanEntitlement(), title="One too many", recording_locator=RECORDING_URL
        )
    assert len(await container.store.list_recent("user-1")) == 3


@pytest.mark.asyncio
async def test_start_processing_checks_owner_and_state(container):
    meeting = await container.meetings.register_upload(
        "user-1", PlanEntitlement(), title="Later", recording_locator=RECORDING_URL, start_processing=False
    )

    with pytest.raises(NotFoundError):
        await container.meetings.start_processing("user-2", meeting.id)

    await container.meetings.start_processing("user-1", meeting.id)
    await container.runner.drain(timeout=10)

    with pytest.raises(InvalidStateError):
        await container.meetings.start_processing("user-1", meeting.id)


@pytest.mark.asyncio
async def test_delete_survives_blob_delete_failure(container, blobs):
    blobs.delete_error = RuntimeError("storage offline")
    meeting = await container.meetings.register_upload(
        "user-1", PlanEntitlement(), title="Gone", recording_locator=RECORDING_URL, start_processing=False
    )

    await container.meetings.delete_meeting("user-1", meeting.id)

    assert not await container.store.exists(meeting.id)


@pytest.mark.asyncio
async def test_delete_removes_blob(container, blobs):
    meeting = await container.meetings.register_upload(
        "user-1", PlanEntitlement(), title="Gone", recording_locator=RECORDING_URL, start_processing=False
    )

    await container.meetings.delete_meeting("user-1", meeting.id)

    assert blobs.deleted == [RECORDING_URL]


@pytest.mark.asyncio
async def test_teams_ingestion_is_idempotent(container, speech):
    recording = TeamsRecording(
        call_id="call-42",
        recording_locator=RECORDING_URL,
        start_time=datetime(2026, 6, 1, 14, 0, tzinfo=timezone.utc),
        participants=[{"name": "Alice"}],
    )

    meeting, created = await container.ingestion.ingest("user-1", recording)
    again, created_again = await container.ingestion.ingest("user-1", recording)
    await container.runner.drain(timeout=10)

    assert created and not created_again
    assert again.id == meeting.id
    assert meeting.title == "Teams Meeting - 2026-06-01"
    assert meeting.source == MeetingSource.TEAMS.value
    assert meeting.external_id == "call-42"
    assert meeting.metadata_json["participants"] == [{"name": "Alice"}]
    assert len(speech.calls) == 1


def test_teams_title_prefers_subject():
    assert TeamsRecording(call_id="c", recording_locator="u", subject="Design review").title() == "Design review"
    assert TeamsRecording(call_id="c", recording_locator="u").title() == "Teams Meeting"
