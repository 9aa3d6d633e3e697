"""Error handling utilities and custom exceptions."""
from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from fastapi import Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

logger = logging.getLogger(__name__)


class ErrorCode(Enum):
    """Stable machine-readable error codes."""

    VALIDATION_ERROR = "validation_error"
    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"
    INVALID_STATE = "invalid_state"
    PROCESSING_CONFLICT = "processing_conflict"
    USAGE_LIMIT_EXCEEDED = "usage_limit_exceeded"
    RETRY_EXHAUSTED = "retry_exhausted"

    # Pipeline errors
    FETCH_FAILED = "fetch_failed"
    FILE_TOO_LARGE = "file_too_large"
    SERVICE_UNAVAILABLE = "service_unavailable"
    RATE_LIMITED = "rate_limited"
    TRANSCRIPTION_FAILED = "transcription_failed"
    ANALYSIS_FAILED = "analysis_failed"

    EXPORT_FORMAT_NOT_SUPPORTED = "export_format_not_supported"


class AppError(Exception):
    """Base application error."""

    def __init__(
        self,
        message: str,
        *,
        code: str = "app_error",
        http_status: int = status.HTTP_400_BAD_REQUEST,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.http_status = http_status

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message}


class ErrorResponse(BaseModel):
    error: str
    message: str


class ValidationError(AppError):
    def __init__(self, message: str) -> None:
        super().__init__(
            message,
            code=ErrorCode.VALIDATION_ERROR.value,
            http_status=status.HTTP_400_BAD_REQUEST,
        )


class NotFoundError(AppError):
    def __init__(self, message: str = "Meeting not found or you don't have access to it.") -> None:
        super().__init__(message, code=ErrorCode.NOT_FOUND.value, http_status=status.HTTP_404_NOT_FOUND)


class UnauthorizedError(AppError):
    def __init__(self, message: str = "Please sign in to continue.") -> None:
        super().__init__(
            message, code=ErrorCode.UNAUTHORIZED.value, http_status=status.HTTP_401_UNAUTHORIZED
        )


class InvalidStateError(AppError):
    """A status transition that the meeting lifecycle does not allow."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code=ErrorCode.INVALID_STATE.value, http_status=status.HTTP_409_CONFLICT)


class ProcessingConflictError(AppError):
    """Another run already holds the processing lock for this meeting."""

    def __init__(self, meeting_id: str) -> None:
        super().__init__(
            f"Meeting {meeting_id} is already being processed",
            code=ErrorCode.PROCESSING_CONFLICT.value,
            http_status=status.HTTP_409_CONFLICT,
        )
        self.meeting_id = meeting_id


class UsageLimitExceededError(AppError):
    def __init__(self, message: str, limits: dict[str, Any] | None = None) -> None:
        super().__init__(
            message, code=ErrorCode.USAGE_LIMIT_EXCEEDED.value, http_status=status.HTTP_403_FORBIDDEN
        )
        self.limits = limits or {}

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "limits": self.limits}


class RetryExhaustedError(AppError):
    """Raised when a transient failure persists through every allowed retry."""

    def __init__(self, operation: str, attempts: int, last_error: BaseException) -> None:
        super().__init__(
            f"{operation} failed after {attempts} attempt(s): {last_error}",
            code=ErrorCode.RETRY_EXHAUSTED.value,
            http_status=status.HTTP_503_SERVICE_UNAVAILABLE,
        )
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error


# Pipeline errors


class PipelineError(AppError):
    """Base for failures raised by the transcription and analysis stages."""

    stage = "pipeline"
    retryable = False

    def __init__(
        self,
        message: str,
        *,
        code: str,
        http_status: int = status.HTTP_502_BAD_GATEWAY,
        stage: str | None = None,
    ) -> None:
        super().__init__(message, code=code, http_status=http_status)
        if stage is not None:
            self.stage = stage


class FetchError(PipelineError):
    stage = "transcription"

    def __init__(self, locator: str, status_code: int | None, reason: str = "") -> None:
        message = "Failed to fetch recording"
        if status_code is not None:
            message += f": {status_code} {reason}".rstrip()
        elif reason:
            message += f": {reason}"
        super().__init__(
            message,
            code=ErrorCode.FETCH_FAILED.value,
        )
        self.locator = locator
        self.status_code = status_code


class FileTooLargeError(PipelineError):
    stage = "transcription"

    def __init__(self, size_bytes: int, limit_bytes: int) -> None:
        size_mb = size_bytes / (1024 * 1024)
        limit_mb = limit_bytes / (1024 * 1024)
        super().__init__(
            f"File size ({size_mb:.1f}MB) exceeds the {limit_mb:.0f}MB transcription limit. "
            "Please compress or split your file.",
            code=ErrorCode.FILE_TOO_LARGE.value,
            http_status=413,
        )
        self.size_bytes = size_bytes
        self.limit_bytes = limit_bytes


class ServiceUnavailableError(PipelineError):
    retryable = True

    def __init__(self, stage: str) -> None:
        super().__init__(
            "AI service is temporarily unavailable. Please try again in a few minutes.",
            code=ErrorCode.SERVICE_UNAVAILABLE.value,
            http_status=status.HTTP_503_SERVICE_UNAVAILABLE,
            stage=stage,
        )


class RateLimitedError(PipelineError):
    retryable = True

    def __init__(self, stage: str) -> None:
        super().__init__(
            "AI service rate limit exceeded. Please try again in a few minutes.",
            code=ErrorCode.RATE_LIMITED.value,
            http_status=status.HTTP_429_TOO_MANY_REQUESTS,
            stage=stage,
        )


class TranscriptionFailedError(PipelineError):
    stage = "transcription"

    def __init__(self, original_message: str) -> None:
        super().__init__(
            f"Transcription failed: {original_message}",
            code=ErrorCode.TRANSCRIPTION_FAILED.value,
        )
        self.original_message = original_message


class AnalysisFailedError(PipelineError):
    stage = "analysis"

    def __init__(self, original_message: str, *, retryable: bool = False) -> None:
        super().__init__(
            f"Analysis failed: {original_message}",
            code=ErrorCode.ANALYSIS_FAILED.value,
        )
        self.original_message = original_message
        self.retryable = retryable


class ExportFormatNotSupportedError(AppError):
    def __init__(self, fmt: str) -> None:
        super().__init__(
            f"{fmt.upper()} export coming soon. Use TXT or DOCX for now.",
            code=ErrorCode.EXPORT_FORMAT_NOT_SUPPORTED.value,
            http_status=status.HTTP_501_NOT_IMPLEMENTED,
        )


async def app_error_handler(_: Request, exc: AppError) -> JSONResponse:
    if exc.http_status >= 500:
        logger.error(f"Request failed: {exc.code} - {exc.message}")
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


async def validation_error_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={
            "error": "validation_error",
            "message": "Invalid request payload",
            "details": jsonable_encoder(exc.errors()),
        },
    )
