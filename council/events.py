"""
Standardized event system for council pipelines.
"""

from __future__ import annotations

import inspect
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    SANDBOX_CREATED = "sandbox.created"
    SANDBOX_RECONNECTED = "sandbox.reconnected"
    SANDBOX_RELEASED = "sandbox.released"

    STEP_COMPLETED = "step.completed"
    STEP_SKIPPED = "step.skipped"

    VOTE_RECORDED = "council.vote_recorded"
    CONSENSUS_CALCULATED = "consensus.calculated"

    TASK_ENQUEUED = "task.enqueued"
    TASK_COMPLETED = "task.completed"
    TASK_FAILED = "task.failed"


@dataclass
class CouncilEvent:
    """Standardized event for the council system."""

    id: UUID = field(default_factory=uuid4)
    type: EventType = EventType.STEP_COMPLETED
    task_id: str | None = None
    issue_id: str | None = None
    agent: str | None = None
    message: str = ""
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "type": self.type.value,
            "task_id": self.task_id,
            "issue_id": self.issue_id,
            "agent": self.agent,
            "message": self.message,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }


EventHandler = Callable[[CouncilEvent], Awaitable[None] | None]


class EventEmitter:
    """Emits events to registered handlers. A failing handler never affects the caller."""

    def __init__(self) -> None:
        self._handlers: list[EventHandler] = []

    def on_event(self, handler: EventHandler) -> None:
        self._handlers.append(handler)

    def remove(self, handler: EventHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    async def emit(self, event: CouncilEvent) -> None:
        for handler in self._handlers:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                logger.warning("Event handler error for %s: %s", event.type.value, exc)

    async def publish(self, event_type: EventType, message: str, **kwargs: Any) -> CouncilEvent:
        event = CouncilEvent(type=event_type, message=message, **kwargs)
        await self.emit(event)
        return event


def log_event_handler(event: CouncilEvent) -> None:
    """Handler that writes events to the module logger."""
    level = logging.WARNING if event.type == EventType.TASK_FAILED else logging.INFO
    logger.log(level, "[%s] %s", event.type.value, event.message, extra={"event": event.to_dict()})


class RedisEventPublisher:
    """Handler that publishes events to Redis Pub/Sub on ``channel:task:<id>``."""

    def __init__(self, redis: Any) -> None:
        self._redis = redis

    async def __call__(self, event: CouncilEvent) -> None:
        key = event.task_id or event.issue_id
        if not key:
            return
        await self._redis.publish(f"channel:task:{key}", json.dumps(event.to_dict()))


def configure_logging(level: str = "INFO") -> None:
    """Install a single stream handler on the ``council`` logger."""
    root = logging.getLogger("council")
    if any(getattr(h, "_council_handler", False) for h in root.handlers):
        root.setLevel(level.upper())
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    handler._council_handler = True  # type: ignore[attr-defined]
    root.addHandler(handler)
    root.setLevel(level.upper())


event_bus = EventEmitter()
event_bus.on_event(log_event_handler)
