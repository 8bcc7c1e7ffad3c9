"""Persistence surface used by pipeline code.

Pipelines only ever address records by id through :class:`Store`, so nothing
live crosses a step boundary. :class:`SqlStore` is the PostgreSQL-backed
implementation; tests substitute an in-memory fake.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

from . import db
from .models import Issue, PullRequestRecord, Task, TaskStatus

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession


class Store(Protocol):
    async def get_task(self, task_id: str) -> Task | None: ...

    async def mark_task_running(self, task_id: str) -> None: ...

    async def complete_task(self, task_id: str, result: dict[str, Any]) -> None: ...

    async def fail_task(self, task_id: str, error: str, *, requeue: bool) -> None: ...

    async def enqueue_task(
        self,
        task_type: str,
        issue_id: str | None,
        payload: dict[str, Any],
        priority: int,
    ) -> Task: ...

    async def next_pending_tasks(self, limit: int) -> list[Task]: ...

    async def requeue_failed_tasks(self, max_retries: int) -> list[Task]: ...

    async def get_issue(self, issue_id: str) -> Issue | None: ...

    async def update_issue_status(self, issue_id: str, status: str) -> None: ...

    async def update_issue_sandbox(self, issue_id: str, sandbox_id: str) -> None: ...

    async def append_decision(
        self,
        issue_id: str,
        *,
        step: str,
        agents: list[str],
        verdict: str,
        reasoning: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None: ...

    async def save_pull_request(
        self,
        *,
        issue_id: str,
        repo_full_name: str,
        branch_name: str,
        title: str,
        description: str,
        pr_number: int,
        pr_url: str,
        status: str,
    ) -> PullRequestRecord: ...


class RecordNotFoundError(LookupError):
    """Raised when a mutation targets a record id that does not exist."""


class SqlStore:
    """:class:`Store` backed by :class:`council.db.Database`."""

    def __init__(self, database: db.Database) -> None:
        self._db = database

    async def _require_task(self, session: AsyncSession, task_id: str) -> Task:
        task = await db.get_task_by_id(session, task_id)
        if task is None:
            raise RecordNotFoundError(f"Task not found: {task_id}")
        return task

    async def _require_issue(self, session: AsyncSession, issue_id: str) -> Issue:
        issue = await db.get_issue_by_id(session, issue_id)
        if issue is None:
            raise RecordNotFoundError(f"Issue not found: {issue_id}")
        return issue

    async def get_task(self, task_id: str) -> Task | None:
        async with self._db.session() as session:
            return await db.get_task_by_id(session, task_id)

    async def mark_task_running(self, task_id: str) -> None:
        async with self._db.session() as session:
            task = await self._require_task(session, task_id)
            await db.update_task_status(session, task, TaskStatus.RUNNING)

    async def complete_task(self, task_id: str, result: dict[str, Any]) -> None:
        async with self._db.session() as session:
            task = await self._require_task(session, task_id)
            await db.complete_task(session, task, result)

    async def fail_task(self, task_id: str, error: str, *, requeue: bool) -> None:
        async with self._db.session() as session:
            task = await self._require_task(session, task_id)
            await db.fail_task(session, task, error, requeue=requeue)

    async def enqueue_task(
        self,
        task_type: str,
        issue_id: str | None,
        payload: dict[str, Any],
        priority: int,
    ) -> Task:
        async with self._db.session() as session:
            return await db.create_task(session, task_type, issue_id, payload, priority)

    async def next_pending_tasks(self, limit: int) -> list[Task]:
        async with self._db.session() as session:
            return await db.get_pending_tasks(session, limit)

    async def requeue_failed_tasks(self, max_retries: int) -> list[Task]:
        async with self._db.session() as session:
            return await db.requeue_failed_tasks(session, max_retries)

    async def get_issue(self, issue_id: str) -> Issue | None:
        async with self._db.session() as session:
            return await db.get_issue_by_id(session, issue_id)

    async def update_issue_status(self, issue_id: str, status: str) -> None:
        async with self._db.session() as session:
            issue = await self._require_issue(session, issue_id)
            await db.update_issue_status(session, issue, status)

    async def update_issue_sandbox(self, issue_id: str, sandbox_id: str) -> None:
        async with self._db.session() as session:
            issue = await self._require_issue(session, issue_id)
            await db.update_issue_sandbox(session, issue, sandbox_id)

    async def append_decision(
        self,
        issue_id: str,
        *,
        step: str,
        agents: list[str],
        verdict: str,
        reasoning: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        async with self._db.session() as session:
            issue = await self._require_issue(session, issue_id)
            await db.append_decision(
                session,
                issue,
                step=step,
                agents=agents,
                verdict=verdict,
                reasoning=reasoning,
                metadata=metadata,
            )

    async def save_pull_request(
        self,
        *,
        issue_id: str,
        repo_full_name: str,
        branch_name: str,
        title: str,
        description: str,
        pr_number: int,
        pr_url: str,
        status: str,
    ) -> PullRequestRecord:
        async with self._db.session() as session:
            return await db.save_pull_request(
                session,
                issue_id=issue_id,
                repo_full_name=repo_full_name,
                branch_name=branch_name,
                title=title,
                description=description,
                pr_number=pr_number,
                pr_url=pr_url,
                status=status,
            )
