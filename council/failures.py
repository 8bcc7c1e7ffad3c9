"""Task finalization: complete, or fail with an explicit requeue hint."""

from __future__ import annotations

import logging
from typing import Any

from .errors import PermanentProviderError, SandboxNotFoundError, StepFailedError
from .events import EventEmitter, EventType, event_bus
from .store import Store

logger = logging.getLogger(__name__)


def should_requeue(exc: BaseException, default: bool = True) -> bool:
    """``StepFailedError`` carries its own hint; auth/quota failures are not requeued."""
    if isinstance(exc, StepFailedError):
        return exc.requeue
    if isinstance(exc, PermanentProviderError) and not isinstance(exc, SandboxNotFoundError):
        return False
    return default


class FailureHandler:
    def __init__(self, store: Store, *, events: EventEmitter | None = None) -> None:
        self._store = store
        self._events = events or event_bus

    async def complete(self, task_id: str, result: dict[str, Any]) -> None:
        await self._store.complete_task(task_id, result)
        await self._events.publish(
            EventType.TASK_COMPLETED, f"Task {task_id} completed", task_id=task_id, data=result
        )

    async def fail(
        self,
        task_id: str,
        exc: BaseException | str,
        *,
        requeue: bool | None = None,
    ) -> bool:
        """Mark the task failed. Returns the requeue decision that was recorded.

        A failure to record the failure is logged; the caller re-raises the original.
        """
        message = str(exc) or type(exc).__name__
        if requeue is None:
            requeue = should_requeue(exc) if isinstance(exc, BaseException) else True
        try:
            await self._store.fail_task(task_id, message, requeue=requeue)
        except Exception as store_exc:
            logger.error("Could not record failure of task %s: %s", task_id, store_exc)
            return requeue
        await self._events.publish(
            EventType.TASK_FAILED,
            f"Task {task_id} failed: {message}",
            task_id=task_id,
            data={"error": message, "requeue": requeue},
        )
        return requeue
