import pytest

from council.events import EventType
from council.workflow.base import (
    SequentialWorkflow,
    StepJournal,
    Steps,
    WorkflowContext,
    WorkflowStatus,
    WorkflowStep,
)


class _CountingStep(WorkflowStep):
    def __init__(self, name: str, output, *, fail: bool = False) -> None:
        self.name = name
        self.output = output
        self.fail = fail
        self.calls = 0

    async def execute(self, ctx: WorkflowContext):
        self.calls += 1
        if self.fail:
            raise RuntimeError(f"{self.name} exploded")
        return self.output


@pytest.mark.asyncio
async def test_completed_step_is_not_run_again(events) -> None:
    journal = StepJournal()
    calls: list[str] = []

    async def work() -> str:
        calls.append("ran")
        return "sbx-1"

    first = await Steps(journal, events=events).run("create-sandbox", work)
    second = await Steps(journal, events=events).run("create-sandbox", work)

    assert first == second == "sbx-1"
    assert calls == ["ran"]
    assert journal.completed_steps() == ["create-sandbox"]


@pytest.mark.asyncio
async def test_failed_step_is_not_recorded(events) -> None:
    journal = StepJournal()

    async def boom() -> None:
        raise RuntimeError("nope")

    with pytest.raises(RuntimeError):
        await Steps(journal, events=events).run("clone-repository", boom)

    assert "clone-repository" not in journal


@pytest.mark.asyncio
async def test_step_events(events) -> None:
    seen: list[EventType] = []
    events.on_event(lambda event: seen.append(event.type))
    steps = Steps(StepJournal({"load-issue": {"id": "issue-1"}}), events=events, run_id="task-1")

    async def work() -> int:
        return 1

    await steps.run("load-issue", work)
    await steps.run("git-status", work)

    assert seen == [EventType.STEP_SKIPPED, EventType.STEP_COMPLETED]


@pytest.mark.asyncio
async def test_sequential_workflow_stops_at_first_failure(events) -> None:
    journal = StepJournal()
    ctx = WorkflowContext(steps=Steps(journal, events=events), task_id="task-1")
    first = _CountingStep("one", {"ok": True})
    broken = _CountingStep("two", None, fail=True)
    never = _CountingStep("three", "unreached")

    result = await SequentialWorkflow("demo", [first, broken, never]).execute(ctx)

    assert result.status == WorkflowStatus.FAILED
    assert result.failed_step == "two"
    assert isinstance(result.exception, RuntimeError)
    assert never.calls == 0
    assert ctx.get("one") == {"ok": True}
    assert journal.completed_steps() == ["one"]


@pytest.mark.asyncio
async def test_replayed_workflow_resumes_after_last_success(events) -> None:
    journal = StepJournal({"one": "done"})
    ctx = WorkflowContext(steps=Steps(journal, events=events), task_id="task-1")
    first = _CountingStep("one", "fresh")
    second = _CountingStep("two", "second")

    result = await SequentialWorkflow("demo", [first, second]).execute(ctx)

    assert result.status == WorkflowStatus.COMPLETED
    assert first.calls == 0
    assert second.calls == 1
    # The journaled output wins over a fresh computation.
    assert result.output == {"one": "done", "two": "second"}
