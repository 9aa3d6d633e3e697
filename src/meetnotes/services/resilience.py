"""Retry-with-backoff execution for store and AI service calls.

Every external call in the pipeline goes through :class:`ResilientExecutor`
with a :class:`RetryPolicy`. Transient failures (connection resets, timeouts,
HTTP 429/500/502/503) are retried with linear or exponential backoff; anything
else is re-raised immediately. A transient failure that survives the last
allowed attempt surfaces as :class:`RetryExhaustedError`.
"""
from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

import httpx
import openai
from sqlalchemy import exc as sa_exc
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
)

from meetnotes.core.errors import RetryExhaustedError
from meetnotes.core.settings import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_STATUS_CODES = frozenset({429, 500, 502, 503})

_DB_TRANSIENT_MARKERS = (
    "connection terminated",
    "connection timeout",
    "connection refused",
    "timeout exceeded",
    "timed out",
    "database is locked",
)
_API_TRANSIENT_MARKERS = ("502", "503", "bad gateway", "service unavailable")


def extract_status_code(error: BaseException) -> int | None:
    """Return the HTTP status carried by an SDK or httpx error, if any."""
    status_code = getattr(error, "status_code", None)
    if isinstance(status_code, int):
        return status_code
    response = getattr(error, "response", None)
    status_code = getattr(response, "status_code", None)
    return status_code if isinstance(status_code, int) else None


def is_transient_db_error(error: BaseException) -> bool:
    """Connection/timeout-class persistence failures."""
    if isinstance(error, (sa_exc.DisconnectionError, sa_exc.TimeoutError)):
        return True
    if isinstance(error, sa_exc.DBAPIError):
        if error.connection_invalidated:
            return True
        message = str(error.orig if error.orig is not None else error).lower()
        return any(marker in message for marker in _DB_TRANSIENT_MARKERS)
    return isinstance(error, (ConnectionError, TimeoutError))


def is_transient_api_error(error: BaseException) -> bool:
    """Rate limits, 5xx gateway errors and network failures from AI services."""
    status_code = extract_status_code(error)
    if status_code is not None:
        return status_code in TRANSIENT_STATUS_CODES
    if isinstance(error, (openai.APIConnectionError, httpx.TransportError)):
        return True
    if isinstance(error, (ConnectionError, TimeoutError)):
        return True
    message = str(error).lower()
    return any(marker in message for marker in _API_TRANSIENT_MARKERS)


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to retry, how long to wait, and what counts as transient.

    ``max_retries`` counts retries, not attempts: a policy with
    ``max_retries=3`` runs the operation at most four times.
    """

    max_retries: int = 0
    base_delay: float = 0.1
    fast_mode: bool = False
    jitter: float = 0.0
    is_transient: Callable[[BaseException], bool] = field(default=is_transient_db_error)

    def compute_delay(self, retry_number: int) -> float:
        """Seconds to wait before the ``retry_number``-th retry (1-based)."""
        if self.fast_mode:
            return self.base_delay * retry_number
        delay = self.base_delay * 2 ** (retry_number - 1)
        if self.jitter > 0:
            delay += random.uniform(0, self.jitter)
        return delay


@dataclass(frozen=True)
class RetryPolicies:
    db: RetryPolicy
    critical_db: RetryPolicy
    ai: RetryPolicy


def build_retry_policies(settings: Settings) -> RetryPolicies:
    return RetryPolicies(
        db=RetryPolicy(
            max_retries=settings.db_max_retries,
            base_delay=settings.db_retry_delay,
            is_transient=is_transient_db_error,
        ),
        critical_db=RetryPolicy(
            max_retries=settings.critical_db_max_retries,
            base_delay=settings.critical_db_retry_delay,
            fast_mode=True,
            is_transient=is_transient_db_error,
        ),
        ai=RetryPolicy(
            max_retries=settings.ai_max_retries,
            base_delay=settings.ai_retry_delay,
            jitter=settings.ai_retry_jitter,
            is_transient=is_transient_api_error,
        ),
    )


class ResilientExecutor:
    """Runs zero-argument async operations under a retry policy."""

    def __init__(self, sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep) -> None:
        self._sleep = sleep

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: RetryPolicy,
        *,
        name: str = "operation",
    ) -> T:
        def _wait(retry_state: RetryCallState) -> float:
            return policy.compute_delay(retry_state.attempt_number)

        def _log_retry(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
            logger.warning(
                f"{name} failed ({type(error).__name__}: {error}), retrying in {delay:.2f}s "
                f"({retry_state.attempt_number}/{policy.max_retries})"
            )

        retrying = AsyncRetrying(
            sleep=self._sleep,
            stop=stop_after_attempt(policy.max_retries + 1),
            wait=_wait,
            retry=retry_if_exception(policy.is_transient),
            before_sleep=_log_retry,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    result = await operation()
        except RetryError as err:
            last_attempt = err.last_attempt
            last_error = last_attempt.exception()
            if last_error is None:
                raise
            logger.error(f"{name} gave up after {last_attempt.attempt_number} attempt(s): {last_error}")
            raise RetryExhaustedError(name, last_attempt.attempt_number, last_error) from last_error

        return result
