"""Drain worker: turns drain hints into dispatches of pending tasks."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from redis.asyncio import Redis

from ..failures import FailureHandler
from ..models import Task
from ..store import Store
from .base import StreamWorker

logger = logging.getLogger(__name__)

TaskHandler = Callable[[Task], Awaitable[Any]]


class TaskWorker(StreamWorker):
    def __init__(
        self,
        redis: Redis,
        *,
        store: Store,
        failures: FailureHandler,
        handlers: Mapping[str, TaskHandler],
        stream: str,
        max_retries: int = 3,
        group: str = "council-drain",
    ) -> None:
        super().__init__(redis, stream=stream, group=group, name="drain")
        self._store = store
        self._failures = failures
        self._handlers = dict(handlers)
        self._max_retries = max_retries

    async def process(self, payload: dict[str, Any]) -> None:
        try:
            limit = int(payload.get("limit", 1))
        except (TypeError, ValueError):
            limit = 1
        await self.drain(max(1, limit))

    async def drain(self, limit: int) -> list[str]:
        """Dispatch up to ``limit`` pending tasks. Returns the ids that were dispatched."""
        requeued = await self._store.requeue_failed_tasks(self._max_retries)
        if requeued:
            logger.info("Requeued %d failed task(s)", len(requeued))

        dispatched: list[str] = []
        for task in await self._store.next_pending_tasks(limit):
            task_id = str(task.id)
            if not await self._claim(f"task:{task_id}:{task.retry_count}"):
                logger.debug("Task %s already dispatched", task_id)
                continue

            handler = self._handlers.get(task.type)
            if handler is None:
                await self._failures.fail(task_id, f"No handler for task type {task.type}", requeue=False)
                continue

            await self._store.mark_task_running(task_id)
            dispatched.append(task_id)
            try:
                await handler(task)
            except Exception as exc:
                # Handlers record the task failure themselves before re-raising.
                logger.warning("Task %s (%s) failed: %s", task_id, task.type, exc)
        return dispatched
