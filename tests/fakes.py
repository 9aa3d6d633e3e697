"""In-memory stand-ins for the blob store and AI services."""
from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from meetnotes.core.errors import FetchError
from meetnotes.pipelines.interfaces import BlobStream

RECORDING_URL = "https://blob.example.com/recordings/standup.mp3"
ANALYSIS_JSON = (
    '{"summary": "The team agreed on the release plan.",'
    ' "actionItems": [{"text": "Finalize the API spec", "assignee": "Alice", "dueDate": "Friday"}],'
    ' "keyDecisions": [{"text": "Postpone the refactor"}],'
    ' "topics": [{"name": "Release", "description": "Timeline for v2"}],'
    ' "duration": 1800}'
)


class ServiceError(Exception):
    """Stand-in for an SDK error carrying an HTTP status."""

    def __init__(self, status_code: int, message: str = "") -> None:
        super().__init__(message or f"HTTP {status_code}")
        self.status_code = status_code


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeSpeechToText:
    """Returns queued results in order; exceptions in the queue are raised."""

    def __init__(self, *results: Any, default: str = "Alice will finalize the API spec by Friday.") -> None:
        self.results = list(results)
        self.default = default
        self.calls: list[dict[str, Any]] = []

    async def transcribe(self, audio: bytes, *, filename: str, content_type: str, language: str) -> str:
        self.calls.append(
            {"size": len(audio), "filename": filename, "content_type": content_type, "language": language}
        )
        result = self.results.pop(0) if self.results else self.default
        if isinstance(result, BaseException):
            raise result
        return result


class FakeLanguageModel:
    def __init__(self, *results: Any, default: str | None = ANALYSIS_JSON) -> None:
        self.results = list(results)
        self.default = default
        self.calls: list[dict[str, Any]] = []

    async def complete(
        self, system: str, prompt: str, *, temperature: float, json_mode: bool = True
    ) -> str | None:
        self.calls.append({"system": system, "prompt": prompt, "temperature": temperature, "json_mode": json_mode})
        result = self.results.pop(0) if self.results else self.default
        if isinstance(result, BaseException):
            raise result
        return result


class FakeBlobStore:
    def __init__(self) -> None:
        self.blobs: dict[str, tuple[bytes, str | None, int | None]] = {}
        self.deleted: list[str] = []
        self.delete_error: Exception | None = None
        self.bytes_read = 0

    def add(
        self,
        locator: str,
        data: bytes = b"ID3 fake audio",
        *,
        content_type: str | None = "audio/mpeg",
        content_length: int | None = -1,
    ) -> None:
        declared = len(data) if content_length == -1 else content_length
        self.blobs[locator] = (data, content_type, declared)

    @asynccontextmanager
    async def open(self, locator: str) -> AsyncIterator[BlobStream]:
        if locator not in self.blobs:
            raise FetchError(locator, 404, "Not Found")
        data, content_type, declared = self.blobs[locator]

        async def chunks() -> AsyncIterator[bytes]:
            step = 1024 * 1024
            for start in range(0, len(data), step):
                chunk = data[start : start + step]
                self.bytes_read += len(chunk)
                yield chunk

        yield BlobStream(locator=locator, content_length=declared, content_type=content_type, chunks=chunks())

    async def delete(self, locator: str) -> None:
        if self.delete_error is not None:
            raise self.delete_error
        self.deleted.append(locator)


