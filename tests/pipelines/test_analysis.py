"""Structured analysis parsing and defaults."""
from __future__ import annotations

import json

import pytest
from fakes import ANALYSIS_JSON, FakeLanguageModel, RecordingSleep, ServiceError

from meetnotes.core.errors import AnalysisFailedError
from meetnotes.pipelines.analysis import (
    DEFAULT_SUMMARY,
    AnalysisStage,
    MeetingAnalysis,
    parse_analysis,
)
from meetnotes.services.resilience import ResilientExecutor, RetryPolicy, is_transient_api_error

AI_POLICY = RetryPolicy(max_retries=3, base_delay=2.0, is_transient=is_transient_api_error)


def make_stage(model, sleep=None):
    return AnalysisStage(model, ResilientExecutor(sleep=sleep or RecordingSleep()), AI_POLICY)


@pytest.mark.asyncio
async def test_analyze_returns_typed_records():
    model = FakeLanguageModel(ANALYSIS_JSON)

    analysis = await make_stage(model).analyze("Alice will finalize the API spec.", "Sprint Planning")

    assert analysis.summary == "The team agreed on the release plan."
    assert analysis.action_items[0].text == "Finalize the API spec"
    assert analysis.action_items[0].assignee == "Alice"
    assert analysis.action_items[0].due_date == "Friday"
    assert [d.text for d in analysis.key_decisions] == ["Postpone the refactor"]
    assert analysis.topics[0].name == "Release"
    assert analysis.duration_seconds == 1800

    call = model.calls[0]
    assert call["temperature"] == 0.3
    assert call["json_mode"] is True
    assert "Meeting Title: Sprint Planning" in call["prompt"]
    assert "Alice will finalize the API spec." in call["prompt"]


@pytest.mark.parametrize("transcript", ["", "   \n"])
@pytest.mark.asyncio
async def test_blank_transcript_yields_defaults_without_model_call(transcript):
    model = FakeLanguageModel()

    analysis = await make_stage(model).analyze(transcript, "Silent")

    assert analysis == MeetingAnalysis()
    assert analysis.summary == DEFAULT_SUMMARY
    assert model.calls == []


def test_missing_fields_default():
    analysis = parse_analysis("{}")

    assert analysis.summary == DEFAULT_SUMMARY
    assert analysis.action_items == []
    assert analysis.key_decisions == []
    assert analysis.topics == []
    assert analysis.duration_seconds is None


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("1800", 1800),
        ("95.7", 95),
        ("1e999", None),
        ("Infinity", None),
        ("NaN", None),
        ("1" + "0" * 400, None),
        ("100000000000000000000", None),
        ("0", None),
        ("-30", None),
        ('"1e999"', None),
        ('"soon"', None),
    ],
)
def test_duration_out_of_range_defaults(raw, expected):
    analysis = parse_analysis(f'{{"summary": "s", "duration": {raw}}}')

    assert analysis.duration_seconds == expected
    assert analysis.summary == "s"


def test_loose_shapes_are_coerced_and_junk_dropped():
    content = json.dumps(
        {
            "summary": "   ",
            "actionItems": ["Send notes", {"text": "Book room", "assignee": "null", "dueDate": ""}, 42, {}],
            "keyDecisions": "not a list",
            "topics": [{"name": "Budget", "description": None}, {"description": "no name"}],
            "duration": "unknown",
        }
    )

    analysis = parse_analysis(content)

    assert analysis.summary == DEFAULT_SUMMARY
    assert [item.text for item in analysis.action_items] == ["Send notes", "Book room"]
    assert analysis.action_items[1].assignee is None
    assert analysis.action_items[1].due_date is None
    assert analysis.key_decisions == []
    assert [topic.name for topic in analysis.topics] == ["Budget"]
    assert analysis.duration_seconds is None


def test_to_fields_uses_column_names():
    fields = parse_analysis(ANALYSIS_JSON).to_fields()

    assert fields["action_items"] == [{"text": "Finalize the API spec", "assignee": "Alice", "due_date": "Friday"}]
    assert fields["key_decisions"] == [{"text": "Postpone the refactor"}]
    assert fields["topics"] == [{"name": "Release", "description": "Timeline for v2"}]


@pytest.mark.parametrize("content", ["not json", "[1, 2]"])
def test_malformed_response_fails(content):
    with pytest.raises(AnalysisFailedError):
        parse_analysis(content)


@pytest.mark.asyncio
async def test_empty_response_fails():
    with pytest.raises(AnalysisFailedError, match="No response"):
        await make_stage(FakeLanguageModel(None)).analyze("hello", "t")


@pytest.mark.asyncio
async def test_rate_limit_retried_then_reported():
    sleep = RecordingSleep()
    model = FakeLanguageModel(*[ServiceError(429)] * 4)

    with pytest.raises(AnalysisFailedError) as excinfo:
        await make_stage(model, sleep).analyze("hello", "t")

    assert excinfo.value.retryable
    assert "rate limit" in excinfo.value.message
    assert len(model.calls) == 4
    assert sleep.delays == [2.0, 4.0, 8.0]


@pytest.mark.asyncio
async def test_non_transient_model_error_is_not_retried():
    model = FakeLanguageModel(ServiceError(401, "Incorrect API key"))

    with pytest.raises(AnalysisFailedError, match="Incorrect API key"):
        await make_stage(model).analyze("hello", "t")
    assert len(model.calls) == 1
