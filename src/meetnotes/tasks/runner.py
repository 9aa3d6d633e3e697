"""In-process background task runner with an error channel."""
from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from meetnotes.core.errors import AppError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TaskFailure:
    name: str
    error: BaseException
    failed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "error": str(self.error),
            "error_type": type(self.error).__name__,
            "failed_at": self.failed_at.isoformat(),
        }


class BackgroundTaskRunner:
    """Spawns detached asyncio tasks and keeps them referenced until they finish.

    A failing task never propagates to whoever spawned it; the error is logged
    and appended to :attr:`failures`.
    """

    def __init__(self, *, max_failures: int = 100) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()
        self.failures: deque[TaskFailure] = deque(maxlen=max_failures)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, name: str, factory: Callable[[], Awaitable[Any]]) -> asyncio.Task[Any]:
        task = asyncio.create_task(self._guard(name, factory), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _guard(self, name: str, factory: Callable[[], Awaitable[Any]]) -> Any:
        try:
            return await factory()
        except AppError as exc:
            logger.warning(f"Background task {name} failed: {exc.code} - {exc.message}")
            self.failures.append(TaskFailure(name, exc))
        except Exception as exc:
            logger.exception(f"Background task {name} crashed")
            self.failures.append(TaskFailure(name, exc))
        return None

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for every task spawned so far (and any they spawn) to finish."""
        while self._tasks:
            await asyncio.wait_for(asyncio.gather(*self._tasks), timeout=timeout)

    async def aclose(self, timeout: float = 30.0) -> None:
        if not self._tasks:
            return
        done, still_running = await asyncio.wait(self._tasks, timeout=timeout)
        for task in still_running:
            logger.warning(f"Cancelling background task {task.get_name()} at shutdown")
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)
