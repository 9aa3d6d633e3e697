"""Adaptive status polling until a meeting reaches a terminal state.

The schedule starts at 3 s. After five successful polls the interval grows by
x1.2 per poll up to 10 s; a failed poll grows it by x1.5 up to 15 s. Polling
stops for good on ``completed`` or ``failed``. Cancellation is cooperative:
cancelling the poller drops the pending sleep so nothing fires afterwards.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from types import TracebackType
from typing import Any

import httpx

from meetnotes.db.models import MeetingStatus

logger = logging.getLogger(__name__)

StatusFetch = Callable[[], Awaitable[dict[str, Any]]]


@dataclass(frozen=True)
class PollSchedule:
    initial: float = 3.0
    growth: float = 1.2
    max_interval: float = 10.0
    error_growth: float = 1.5
    error_max: float = 15.0
    steady_polls: int = 5

    def after_success(self, interval: float, poll_count: int) -> float:
        if poll_count > self.steady_polls:
            return min(interval * self.growth, self.max_interval)
        return interval

    def after_error(self, interval: float) -> float:
        return min(interval * self.error_growth, self.error_max)


class StatusPoller:
    """Polls ``fetch`` on a :class:`PollSchedule` until the status is terminal."""

    def __init__(
        self,
        fetch: StatusFetch,
        schedule: PollSchedule | None = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        on_update: Callable[[dict[str, Any]], None] | None = None,
    ) -> None:
        self._fetch = fetch
        self.schedule = schedule or PollSchedule()
        self._sleep = sleep
        self._on_update = on_update
        self._task: asyncio.Task[dict[str, Any]] | None = None
        self.poll_count = 0
        self.interval = self.schedule.initial
        self.intervals: list[float] = []

    async def run(self) -> dict[str, Any]:
        """Poll until terminal and return the final status payload."""
        while True:
            self.intervals.append(self.interval)
            await self._sleep(self.interval)
            try:
                payload = await self._fetch()
            except Exception as exc:
                logger.warning(f"Error polling meeting status: {exc}")
                self.interval = self.schedule.after_error(self.interval)
                continue

            if self._on_update is not None:
                self._on_update(payload)
            if _is_terminal(payload.get("status")):
                return payload

            self.poll_count += 1
            self.interval = self.schedule.after_success(self.interval, self.poll_count)

    def start(self) -> asyncio.Task[dict[str, Any]]:
        if self._task is None:
            self._task = asyncio.create_task(self.run(), name="status-poller")
        return self._task

    async def cancel(self) -> None:
        if self._task is None or self._task.done():
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass

    async def __aenter__(self) -> StatusPoller:
        self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.cancel()


def _is_terminal(value: Any) -> bool:
    try:
        return MeetingStatus(value).is_terminal
    except ValueError:
        return False


class HttpStatusFetcher:
    """Reads ``GET {api_prefix}/meetings/{id}/status`` as the given user."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        meeting_id: str,
        user_id: str,
        *,
        api_prefix: str = "/api",
    ) -> None:
        self._client = client
        self._path = f"{api_prefix}/meetings/{meeting_id}/status"
        self._headers = {"X-User-Id": user_id}

    async def __call__(self) -> dict[str, Any]:
        response = await self._client.get(self._path, headers=self._headers)
        response.raise_for_status()
        return response.json()  # type: ignore[no-any-return]
