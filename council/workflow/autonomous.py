"""
Code-change pipeline: clone, branch, install, capture status, hand off to PR creation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from ..config import Settings
from ..errors import StepFailedError
from ..events import EventEmitter, event_bus
from ..failures import FailureHandler
from ..github import anonymous_git_url, build_authenticated_git_url, generate_branch_name
from ..models import IssueStatus, TaskType
from ..queue import TaskQueue
from ..sandbox import SandboxManager
from ..store import Store
from .base import SequentialWorkflow, StepJournal, Steps, WorkflowContext
from .git_steps import build_git_steps

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TriggerEvent:
    """Inbound event that starts a pipeline run."""

    task_id: str
    repo_full_name: str
    issue_id: str | None = None
    instruction: str | None = None
    access_token: str | None = None
    base_branch: str | None = None
    branch_name: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TriggerEvent:
        def pick(*keys: str) -> Any:
            for key in keys:
                if data.get(key) is not None:
                    return data[key]
            return None

        task_id = pick("taskId", "task_id")
        repo = pick("repoFullName", "repo_full_name")
        if not task_id or not repo:
            raise ValueError("Trigger event requires taskId and repoFullName")
        return cls(
            task_id=str(task_id),
            repo_full_name=str(repo),
            issue_id=pick("issueId", "issue_id"),
            instruction=pick("instruction", "instructions"),
            access_token=pick("accessToken", "access_token"),
            base_branch=pick("baseBranch", "base_branch"),
            branch_name=pick("branchName", "branch_name"),
        )


async def run_autonomous_pipeline(
    event: TriggerEvent,
    *,
    store: Store,
    sandboxes: SandboxManager,
    queue: TaskQueue,
    failures: FailureHandler,
    settings: Settings,
    journal: StepJournal | None = None,
    events: EventEmitter | None = None,
) -> dict[str, Any]:
    """Run the git operations pipeline for one CODEGEN task.

    The sandbox is released exactly once in ``finally`` whatever happens. Any failure
    marks the task failed (requeue unless the error says otherwise) and re-raises.
    """
    events = events or event_bus
    steps = Steps(journal, events=events, run_id=event.task_id)
    ctx = WorkflowContext(steps=steps, task_id=event.task_id, issue_id=event.issue_id, sandboxes=sandboxes)

    async def persist_sandbox_id(sandbox_id: str) -> None:
        ctx.set("sandbox_id", sandbox_id)
        if event.issue_id:
            await store.update_issue_sandbox(event.issue_id, sandbox_id)

    ctx.persist_sandbox_id = persist_sandbox_id

    try:
        issue = await steps.run("load-issue", lambda: _load_issue(store, event.issue_id))
        if issue is None:
            raise StepFailedError("load-issue", "Issue not found", requeue=False)

        try:
            await steps.run(
                "mark-issue-in-progress",
                lambda: _mark_in_progress(store, issue["id"]),
            )
        except Exception as exc:
            logger.warning("Could not mark issue %s in progress: %s", issue["id"], exc)

        async def create_sandbox() -> str:
            async with sandboxes.session(None, persist_id=persist_sandbox_id) as handle:
                return handle.id

        ctx.set("sandbox_id", await steps.run("create-sandbox", create_sandbox))

        branch_name = event.branch_name or generate_branch_name(
            issue.get("issue_number") or issue["id"], issue.get("title") or ""
        )
        token = event.access_token or settings.github_automation_token
        clone_url = (
            build_authenticated_git_url(event.repo_full_name, token)
            if token
            else anonymous_git_url(event.repo_full_name)
        )

        workflow = SequentialWorkflow("git-operations", build_git_steps(clone_url, branch_name, token=token))
        result = await workflow.execute(ctx)
        if result.exception is not None:
            raise result.exception
        status_snapshot = ctx.get("git-status", "")

        task_result = {"branchName": branch_name, "status": status_snapshot}

        async def complete() -> dict[str, Any]:
            await failures.complete(event.task_id, task_result)
            return task_result

        await steps.run("complete-task", complete)

        pr_task_id = None
        if token:
            payload: dict[str, Any] = {
                "repoFullName": event.repo_full_name,
                "branchName": branch_name,
                "baseBranch": event.base_branch or settings.default_base_branch,
                "title": issue.get("title"),
                "summary": event.instruction,
            }
            if event.access_token:
                payload["accessToken"] = event.access_token

            async def enqueue_pr() -> str:
                task = await queue.enqueue(
                    TaskType.PR_CREATION, event.issue_id, payload, settings.pr_creation_priority
                )
                await queue.signal_drain(1)
                return str(task.id)

            pr_task_id = await steps.run("enqueue-pr-creation", enqueue_pr)

        return {**task_result, "prTaskId": pr_task_id}
    except Exception as exc:
        await failures.fail(event.task_id, exc)
        raise
    finally:
        await sandboxes.release(ctx.get("sandbox_id"))


async def _load_issue(store: Store, issue_id: str | None) -> dict[str, Any] | None:
    if not issue_id:
        return None
    issue = await store.get_issue(issue_id)
    if issue is None:
        return None
    return {
        "id": str(issue.id),
        "issue_number": issue.issue_number,
        "title": issue.title,
        "sandbox_id": issue.sandbox_id,
    }


async def _mark_in_progress(store: Store, issue_id: str) -> str:
    await store.update_issue_status(issue_id, IssueStatus.IN_PROGRESS)
    return IssueStatus.IN_PROGRESS.value
