"""Interfaces (Protocols) and DTOs bridging collaborators and pipeline orchestration."""
from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from typing import Protocol


@dataclass(slots=True)
class BlobStream:
    """An opened recording: headers are known, the body is still unread."""

    locator: str
    content_length: int | None
    content_type: str | None
    chunks: AsyncIterator[bytes]


class BlobStoreProtocol(Protocol):
    def open(self, locator: str) -> AbstractAsyncContextManager[BlobStream]: ...
    async def delete(self, locator: str) -> None: ...


class SpeechToTextProtocol(Protocol):
    async def transcribe(
        self,
        audio: bytes,
        *,
        filename: str,
        content_type: str,
        language: str,
    ) -> str: ...


class LanguageModelProtocol(Protocol):
    async def complete(
        self,
        system: str,
        prompt: str,
        *,
        temperature: float,
        json_mode: bool = True,
    ) -> str | None: ...


class ProcessingDispatcherProtocol(Protocol):
    async def start(self, meeting_id: str) -> None: ...
