"""Follow-on task queue: persisted pending tasks plus a Redis Streams drain hint."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any, Protocol, cast

from redis.asyncio import Redis

from .errors import QueueFullError
from .events import EventEmitter, EventType, event_bus
from .models import Task
from .store import Store

logger = logging.getLogger(__name__)

DRAIN_STREAM = "stream:tasks:drain"

PRIORITY_SCORES = {
    "critical": 100,
    "high": 75,
    "medium": 50,
    "low": 25,
}


def priority_to_score(priority: str | None) -> int:
    """Triage priority label to queue priority. Unknown labels rank lowest."""
    if not isinstance(priority, str):
        return PRIORITY_SCORES["low"]
    return PRIORITY_SCORES.get(priority.strip().lower(), PRIORITY_SCORES["low"])


class DrainSignal(Protocol):
    async def signal_drain(self, limit: int) -> None: ...


class RedisDrainSignal:
    """Posts drain hints to a Redis stream consumed by :class:`TaskWorker`."""

    def __init__(self, redis: Redis, *, stream: str = DRAIN_STREAM, max_depth: int = 100) -> None:
        self._redis = redis
        self.stream = stream
        self.max_depth = max_depth

    async def _ensure_capacity(self) -> None:
        length = await self._redis.xlen(self.stream)
        if length >= self.max_depth:
            raise QueueFullError(f"Stream {self.stream} at capacity ({length})")

    async def signal_drain(self, limit: int) -> None:
        await self._ensure_capacity()
        payload = {"limit": str(max(1, limit)), "requested_at": datetime.now(UTC).isoformat()}
        await self._redis.xadd(self.stream, cast(dict[Any, Any], payload))


class TaskQueue:
    """Enqueue follow-on work and nudge the scheduler to dispatch it."""

    def __init__(
        self,
        store: Store,
        signal: DrainSignal,
        *,
        events: EventEmitter | None = None,
    ) -> None:
        self._store = store
        self._signal = signal
        self._events = events or event_bus

    async def enqueue(
        self,
        task_type: str,
        issue_id: str | None,
        payload: dict[str, Any],
        priority: int = 50,
    ) -> Task:
        task = await self._store.enqueue_task(task_type, issue_id, payload, priority)
        await self._events.publish(
            EventType.TASK_ENQUEUED,
            f"Enqueued {task_type} task {task.id} (priority {priority})",
            task_id=str(task.id),
            issue_id=issue_id,
            data={"type": str(task_type), "priority": priority},
        )
        return task

    async def signal_drain(self, limit: int = 1) -> None:
        """Advisory hint; a full stream is logged, not raised."""
        try:
            await self._signal.signal_drain(limit)
        except QueueFullError as exc:
            logger.warning("Drain hint dropped: %s", exc)
