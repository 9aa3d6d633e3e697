"""Analysis stage: structured extraction of meeting insights from a transcript."""
from __future__ import annotations

import json
import logging
import math
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from meetnotes.core.errors import AnalysisFailedError, AppError, RetryExhaustedError
from meetnotes.pipelines.interfaces import LanguageModelProtocol
from meetnotes.services.resilience import ResilientExecutor, RetryPolicy, extract_status_code

logger = logging.getLogger(__name__)

DEFAULT_SUMMARY = "No summary available"
# Largest value the duration_seconds column holds
MAX_DURATION_SECONDS = 2**31 - 1

SYSTEM_PROMPT = "You are a meeting analysis assistant. Always respond with valid JSON only."

ANALYSIS_PROMPT = """You are an AI assistant that analyzes meeting transcripts. Analyze the following meeting transcript and provide:

1. A concise executive summary (2-3 paragraphs)
2. Action items (extract tasks mentioned, identify who is responsible if mentioned, and when it's due if mentioned)
3. Key decisions made during the meeting
4. Main topics discussed

Meeting Title: {title}

Transcript:
{transcript}

Please respond in the following JSON format:
{{
  "summary": "Executive summary here",
  "actionItems": [
    {{"text": "Task description", "assignee": "Name or null", "dueDate": "Date or null"}}
  ],
  "keyDecisions": [
    {{"text": "Decision description"}}
  ],
  "topics": [
    {{"name": "Topic name", "description": "Brief description"}}
  ],
  "duration": estimated duration in seconds (if mentioned in transcript, otherwise null)
}}

Only return valid JSON, no additional text."""


def _blank_to_none(value: Any) -> Any:
    if value is None:
        return None
    text = str(value).strip()
    return text if text and text.lower() not in {"null", "none", "n/a"} else None


class ActionItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    text: str
    assignee: str | None = None
    due_date: str | None = Field(default=None, alias="dueDate")

    @field_validator("assignee", "due_date", mode="before")
    @classmethod
    def blank_to_none(cls, value: Any) -> Any:
        return _blank_to_none(value)


class KeyDecision(BaseModel):
    model_config = ConfigDict(extra="ignore")

    text: str


class Topic(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    description: str | None = None

    @field_validator("description", mode="before")
    @classmethod
    def blank_to_none(cls, value: Any) -> Any:
        return _blank_to_none(value)


class MeetingAnalysis(BaseModel):
    summary: str = DEFAULT_SUMMARY
    action_items: list[ActionItem] = Field(default_factory=list)
    key_decisions: list[KeyDecision] = Field(default_factory=list)
    topics: list[Topic] = Field(default_factory=list)
    duration_seconds: int | None = None

    def to_fields(self) -> dict[str, Any]:
        """Column values for the meeting row."""
        return {
            "summary": self.summary,
            "action_items": [item.model_dump() for item in self.action_items],
            "key_decisions": [item.model_dump() for item in self.key_decisions],
            "topics": [item.model_dump() for item in self.topics],
            "duration_seconds": self.duration_seconds,
        }


def _coerce_records(raw: Any, model: type[BaseModel], text_key: str) -> list[Any]:
    """Validate a list of records, accepting bare strings and dropping junk."""
    if not isinstance(raw, list):
        return []
    records = []
    for item in raw:
        if isinstance(item, str):
            item = {text_key: item}
        if not isinstance(item, dict) or not str(item.get(text_key) or "").strip():
            logger.debug(f"Dropping malformed {model.__name__}: {item!r}")
            continue
        try:
            records.append(model.model_validate(item))
        except ValidationError:
            logger.debug(f"Dropping invalid {model.__name__}: {item!r}")
    return records


def _coerce_duration(raw: Any) -> int | None:
    if isinstance(raw, bool) or raw is None:
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError, OverflowError):
        return None
    if not math.isfinite(value):
        return None
    seconds = int(value)
    return seconds if 0 < seconds <= MAX_DURATION_SECONDS else None


def parse_analysis(content: str) -> MeetingAnalysis:
    """Parse the model's JSON, defaulting any field it left out."""
    try:
        data = json.loads(content)
    except json.JSONDecodeError as err:
        raise AnalysisFailedError(f"Model returned malformed JSON: {err}") from err
    if not isinstance(data, dict):
        raise AnalysisFailedError("Model returned JSON that is not an object")

    summary = data.get("summary")
    return MeetingAnalysis(
        summary=summary.strip() if isinstance(summary, str) and summary.strip() else DEFAULT_SUMMARY,
        action_items=_coerce_records(data.get("actionItems"), ActionItem, "text"),
        key_decisions=_coerce_records(data.get("keyDecisions"), KeyDecision, "text"),
        topics=_coerce_records(data.get("topics"), Topic, "name"),
        duration_seconds=_coerce_duration(data.get("duration")),
    )


class AnalysisStage:
    def __init__(
        self,
        model: LanguageModelProtocol,
        executor: ResilientExecutor,
        policy: RetryPolicy,
        *,
        temperature: float = 0.3,
    ) -> None:
        self._model = model
        self._executor = executor
        self._policy = policy
        self.temperature = temperature

    async def analyze(self, transcript: str, meeting_title: str) -> MeetingAnalysis:
        if not transcript or not transcript.strip():
            logger.warning("Empty transcript provided; skipping model call")
            return MeetingAnalysis()

        prompt = ANALYSIS_PROMPT.format(title=meeting_title, transcript=transcript)
        try:
            content = await self._executor.run(
                lambda: self._model.complete(
                    SYSTEM_PROMPT, prompt, temperature=self.temperature, json_mode=True
                ),
                self._policy,
                name="analysis",
            )
        except RetryExhaustedError as err:
            raise AnalysisFailedError(self._describe(err.last_error), retryable=True) from err
        except AppError:
            raise
        except Exception as err:
            raise AnalysisFailedError(self._describe(err)) from err

        if not content:
            raise AnalysisFailedError("No response from language model")
        return parse_analysis(content)

    @staticmethod
    def _describe(error: BaseException) -> str:
        status_code = extract_status_code(error)
        if status_code in (502, 503):
            return "AI service is temporarily unavailable. Please try again in a few minutes."
        if status_code == 429:
            return "AI service rate limit exceeded. Please try again in a few minutes."
        message = str(error) or type(error).__name__
        if "<!DOCTYPE html>" in message or "Bad gateway" in message:
            return "AI service is temporarily unavailable. Please try again later."
        return message
