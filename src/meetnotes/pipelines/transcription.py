"""Transcription stage: download a recording and turn it into text."""
from __future__ import annotations

import logging
from pathlib import PurePosixPath
from urllib.parse import urlparse

from meetnotes.core.errors import (
    AppError,
    FetchError,
    FileTooLargeError,
    PipelineError,
    RateLimitedError,
    RetryExhaustedError,
    ServiceUnavailableError,
    TranscriptionFailedError,
)
from meetnotes.core.settings import MAX_RECORDING_BYTES
from meetnotes.pipelines.interfaces import BlobStoreProtocol, SpeechToTextProtocol
from meetnotes.services.resilience import ResilientExecutor, RetryPolicy, extract_status_code

logger = logging.getLogger(__name__)

DEFAULT_FILENAME = "audio.mp4"
DEFAULT_CONTENT_TYPE = "audio/mpeg"
_SIZE_LIMIT_MARKERS = ("25mb", "26214400", "maximum content size", "too large")
_GATEWAY_MARKERS = ("<!doctype html>", "bad gateway")


class TranscriptionStage:
    """Fetches a recording, enforces the size ceiling, and calls speech-to-text.

    The ceiling is checked against ``content-length`` and again while
    streaming, so an oversized file never reaches the transcription service.
    """

    def __init__(
        self,
        blobs: BlobStoreProtocol,
        speech: SpeechToTextProtocol,
        executor: ResilientExecutor,
        policy: RetryPolicy,
        *,
        max_bytes: int = MAX_RECORDING_BYTES,
        language: str = "en",
    ) -> None:
        self._blobs = blobs
        self._speech = speech
        self._executor = executor
        self._policy = policy
        self.max_bytes = max_bytes
        self.language = language

    async def transcribe(self, recording_locator: str) -> str:
        audio, content_type = await self._download(recording_locator)
        logger.info(f"Downloaded recording ({len(audio)} bytes, {content_type})")

        filename = PurePosixPath(urlparse(recording_locator).path).name or DEFAULT_FILENAME
        try:
            return await self._executor.run(
                lambda: self._speech.transcribe(
                    audio,
                    filename=filename,
                    content_type=content_type,
                    language=self.language,
                ),
                self._policy,
                name="transcription",
            )
        except RetryExhaustedError as err:
            raise self._map_service_error(err.last_error, len(audio)) from err
        except AppError:
            # configuration errors keep their own code
            raise
        except Exception as err:
            raise self._map_service_error(err, len(audio)) from err

    async def _download(self, locator: str) -> tuple[bytes, str]:
        try:
            async with self._blobs.open(locator) as blob:
                if blob.content_length is not None:
                    self._check_size(blob.content_length)
                buffer = bytearray()
                async for chunk in blob.chunks:
                    buffer.extend(chunk)
                    self._check_size(len(buffer))
                return bytes(buffer), blob.content_type or DEFAULT_CONTENT_TYPE
        except PipelineError:
            raise
        except Exception as err:
            raise FetchError(locator, None, str(err)) from err

    def _check_size(self, size: int) -> None:
        if size > self.max_bytes:
            raise FileTooLargeError(size, self.max_bytes)

    def _map_service_error(self, error: BaseException, size: int) -> PipelineError:
        status_code = extract_status_code(error)
        message = str(error) or type(error).__name__
        lowered = message.lower()

        if status_code == 413 or any(marker in lowered for marker in _SIZE_LIMIT_MARKERS):
            return FileTooLargeError(size, self.max_bytes)
        if status_code in (502, 503) or any(marker in lowered for marker in _GATEWAY_MARKERS):
            return ServiceUnavailableError(stage="transcription")
        if status_code == 429:
            return RateLimitedError(stage="transcription")
        return TranscriptionFailedError(message)
