"""Per-meeting processing locks so one meeting is never processed twice at once."""
from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Protocol

import redis.asyncio as redis
from redis.exceptions import LockError

from meetnotes.core.errors import ProcessingConflictError

logger = logging.getLogger(__name__)


class ProcessingLockProtocol(Protocol):
    def hold(self, meeting_id: str) -> AbstractAsyncContextManager[None]: ...


class InMemoryProcessingLock:
    """Process-local lock for the inline (same event loop) backend."""

    def __init__(self) -> None:
        self._held: set[str] = set()

    def is_held(self, meeting_id: str) -> bool:
        return meeting_id in self._held

    @asynccontextmanager
    async def hold(self, meeting_id: str) -> AsyncIterator[None]:
        if meeting_id in self._held:
            raise ProcessingConflictError(meeting_id)
        self._held.add(meeting_id)
        try:
            yield
        finally:
            self._held.discard(meeting_id)


class RedisProcessingLock:
    """Cross-process lock for Celery workers, expiring after ``ttl`` seconds."""

    def __init__(self, client: redis.Redis, *, ttl: int = 1800, prefix: str = "meetnotes:processing") -> None:
        self._client = client
        self._ttl = ttl
        self._prefix = prefix

    @asynccontextmanager
    async def hold(self, meeting_id: str) -> AsyncIterator[None]:
        lock = self._client.lock(f"{self._prefix}:{meeting_id}", timeout=self._ttl, blocking=False)
        if not await lock.acquire():
            raise ProcessingConflictError(meeting_id)
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError:
                logger.warning(f"Processing lock for meeting {meeting_id} expired before release")
