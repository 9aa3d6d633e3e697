"""OpenAI-backed speech-to-text and language-model adapters."""
from __future__ import annotations

from fastapi import status
from openai import AsyncOpenAI

from meetnotes.core.errors import AppError


class OpenAISpeechToText:
    def __init__(self, client: AsyncOpenAI, model: str = "whisper-1") -> None:
        self._client = client
        self.model = model

    async def transcribe(
        self,
        audio: bytes,
        *,
        filename: str,
        content_type: str,
        language: str,
    ) -> str:
        transcription = await self._client.audio.transcriptions.create(
            file=(filename, audio, content_type),
            model=self.model,
            language=language,
        )
        return transcription.text


class OpenAILanguageModel:
    def __init__(self, client: AsyncOpenAI, model: str = "gpt-4o-mini") -> None:
        self._client = client
        self.model = model

    async def complete(
        self,
        system: str,
        prompt: str,
        *,
        temperature: float,
        json_mode: bool = True,
    ) -> str | None:
        kwargs = {"response_format": {"type": "json_object"}} if json_mode else {}
        completion = await self._client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            temperature=temperature,
            **kwargs,
        )
        if not completion.choices:
            return None
        return completion.choices[0].message.content


class UnconfiguredAIService:
    """Stands in for both adapters when no API key is configured; every call fails."""

    @staticmethod
    def _error() -> AppError:
        return AppError(
            "OPENAI_API_KEY is not set",
            code="configuration_error",
            http_status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    async def transcribe(self, audio: bytes, *, filename: str, content_type: str, language: str) -> str:
        raise self._error()

    async def complete(
        self, system: str, prompt: str, *, temperature: float, json_mode: bool = True
    ) -> str | None:
        raise self._error()
