"""
Base workflow abstractions: named steps, a replay journal and a sequential runner.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, TypeVar

from ..events import EventEmitter, EventType, event_bus

if TYPE_CHECKING:
    from ..sandbox import PersistSandboxId, SandboxManager

logger = logging.getLogger(__name__)

T = TypeVar("T")


class WorkflowStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class StepJournal:
    """Recorded outputs of completed steps, keyed by step name.

    Stands in for the external scheduler's memoization: handing the same journal to a
    replayed pipeline makes it skip every step recorded here.
    """

    def __init__(self, entries: dict[str, Any] | None = None) -> None:
        self._entries: dict[str, Any] = dict(entries or {})

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def get(self, name: str) -> Any:
        return self._entries[name]

    def record(self, name: str, output: Any) -> None:
        self._entries[name] = output

    def completed_steps(self) -> list[str]:
        return list(self._entries)

    def to_dict(self) -> dict[str, Any]:
        return dict(self._entries)


class Steps:
    """Runs named steps at most once per journal."""

    def __init__(
        self,
        journal: StepJournal | None = None,
        *,
        events: EventEmitter | None = None,
        run_id: str | None = None,
    ) -> None:
        self.journal = journal if journal is not None else StepJournal()
        self._events = events or event_bus
        self._run_id = run_id

    async def run(self, name: str, fn: Callable[[], Awaitable[T]]) -> T:
        if name in self.journal:
            await self._events.publish(
                EventType.STEP_SKIPPED, f"Step {name} already completed", task_id=self._run_id
            )
            return self.journal.get(name)

        output = await fn()
        self.journal.record(name, output)
        await self._events.publish(
            EventType.STEP_COMPLETED, f"Step {name} completed", task_id=self._run_id
        )
        return output


@dataclass
class WorkflowContext:
    """Context passed through workflow execution. ``state`` holds ids and plain data only."""

    steps: Steps
    task_id: str
    issue_id: str | None = None
    sandboxes: SandboxManager | None = None
    persist_sandbox_id: PersistSandboxId | None = None
    state: dict[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        return self.state.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self.state[key] = value


@dataclass
class WorkflowResult:
    """Result of a workflow or step."""

    status: WorkflowStatus
    output: Any = None
    error: str | None = None
    failed_step: str | None = None
    exception: BaseException | None = None

    @classmethod
    def success(cls, output: Any = None) -> WorkflowResult:
        return cls(status=WorkflowStatus.COMPLETED, output=output)

    @classmethod
    def failed(cls, error: str, *, step: str | None = None, exception: BaseException | None = None) -> WorkflowResult:
        return cls(status=WorkflowStatus.FAILED, error=error, failed_step=step, exception=exception)


class WorkflowStep(ABC):
    """One named, independently resumable unit of a pipeline.

    ``execute`` returns the step's JSON-compatible output or raises.
    """

    name: str
    description: str = ""

    @abstractmethod
    async def execute(self, ctx: WorkflowContext) -> Any:
        pass

    async def on_start(self, ctx: WorkflowContext) -> None:
        del ctx

    async def on_complete(self, ctx: WorkflowContext, output: Any) -> None:
        ctx.set(self.name, output)

    async def on_error(self, ctx: WorkflowContext, error: Exception) -> None:
        del ctx
        logger.warning("Step %s failed: %s", self.name, error)


class SequentialWorkflow:
    """Executes steps in order through the context's journal; stops at the first failure."""

    def __init__(self, name: str, steps: list[WorkflowStep]):
        self.name = name
        self.steps = steps

    async def execute(self, ctx: WorkflowContext) -> WorkflowResult:
        outputs: dict[str, Any] = {}
        for step in self.steps:
            await step.on_start(ctx)
            try:
                output = await ctx.steps.run(step.name, lambda step=step: step.execute(ctx))
            except Exception as exc:
                await step.on_error(ctx, exc)
                return WorkflowResult.failed(str(exc), step=step.name, exception=exc)
            await step.on_complete(ctx, output)
            outputs[step.name] = output
        return WorkflowResult.success(outputs)
