"""Async database connection and record operations for the council orchestrator."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .config import Settings
from .errors import SchemaNotInitializedError, is_schema_missing_error, schema_not_initialized_message
from .models import (
    Base,
    DecisionLogEntry,
    Issue,
    PullRequestRecord,
    Task,
    TaskStatus,
)


class Database:
    """Engine and session factory, constructed once per process."""

    def __init__(self, settings: Settings, *, echo: bool = False) -> None:
        self.engine: AsyncEngine = create_async_engine(
            settings.async_database_url, echo=echo, pool_pre_ping=True
        )
        self.session_factory = async_sessionmaker(self.engine, expire_on_commit=False)

    async def init_db(self) -> None:
        """Create all tables (for development/testing)."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession]:
        """Async context manager for database sessions."""
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception as exc:
                await session.rollback()
                if isinstance(exc, SQLAlchemyError) and is_schema_missing_error(exc):
                    raise SchemaNotInitializedError(
                        schema_not_initialized_message(exc)
                    ) from exc
                raise


# =============================================================================
# Task Operations
# =============================================================================


async def get_task_by_id(session: AsyncSession, task_id: str) -> Task | None:
    """Get a task by its ID."""
    result = await session.execute(select(Task).where(Task.id == task_id))
    return result.scalar_one_or_none()


async def create_task(
    session: AsyncSession,
    task_type: str,
    issue_id: str | None,
    payload: dict[str, Any] | None = None,
    priority: int = 50,
) -> Task:
    """Create a new pending task."""
    task = Task(
        type=task_type,
        issue_id=issue_id,
        payload=payload or {},
        priority=priority,
        status=TaskStatus.PENDING.value,
        retry_count=0,
        requeue=False,
    )
    session.add(task)
    await session.flush()
    return task


async def update_task_status(
    session: AsyncSession,
    task: Task,
    new_status: str,
    error_message: str | None = None,
) -> Task:
    """Move a task to a new status."""
    task.status = new_status
    task.updated_at = datetime.now(UTC)

    if error_message:
        task.error_message = error_message

    if new_status in (TaskStatus.COMPLETED, TaskStatus.FAILED):
        task.completed_at = datetime.now(UTC)

    return task


async def complete_task(session: AsyncSession, task: Task, result: dict[str, Any]) -> Task:
    task.result = result
    task.requeue = False
    return await update_task_status(session, task, TaskStatus.COMPLETED)


async def fail_task(session: AsyncSession, task: Task, error: str, *, requeue: bool) -> Task:
    """Mark a task failed. ``requeue`` only flags it; the worker re-pends it later."""
    task.requeue = requeue
    if requeue:
        task.retry_count = (task.retry_count or 0) + 1
    return await update_task_status(session, task, TaskStatus.FAILED, error_message=error)


async def requeue_failed_tasks(session: AsyncSession, max_retries: int) -> list[Task]:
    """Move failed tasks flagged for requeue back to ``pending`` while under the retry ceiling."""
    result = await session.execute(
        select(Task).where(
            Task.status == TaskStatus.FAILED.value,
            Task.requeue.is_(True),
            Task.retry_count <= max_retries,
        )
    )
    tasks = list(result.scalars().all())
    for task in tasks:
        task.requeue = False
        task.completed_at = None
        await update_task_status(session, task, TaskStatus.PENDING)
    return tasks


async def get_pending_tasks(session: AsyncSession, limit: int) -> list[Task]:
    """Pending tasks, highest priority first, then oldest first."""
    result = await session.execute(
        select(Task)
        .where(Task.status == TaskStatus.PENDING.value)
        .order_by(Task.priority.desc(), Task.created_at)
        .limit(limit)
    )
    return list(result.scalars().all())


# =============================================================================
# Issue Operations
# =============================================================================


async def get_issue_by_id(session: AsyncSession, issue_id: str) -> Issue | None:
    result = await session.execute(select(Issue).where(Issue.id == issue_id))
    return result.scalar_one_or_none()


async def update_issue_status(session: AsyncSession, issue: Issue, new_status: str) -> Issue:
    issue.status = new_status
    issue.updated_at = datetime.now(UTC)
    return issue


async def update_issue_sandbox(session: AsyncSession, issue: Issue, sandbox_id: str) -> Issue:
    issue.sandbox_id = sandbox_id
    issue.updated_at = datetime.now(UTC)
    return issue


async def append_decision(
    session: AsyncSession,
    issue: Issue,
    *,
    step: str,
    agents: list[str],
    verdict: str,
    reasoning: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> DecisionLogEntry:
    entry = DecisionLogEntry(
        issue_id=issue.id,
        step=step,
        agents=agents,
        verdict=verdict,
        reasoning=reasoning,
        metadata_=metadata or {},
    )
    session.add(entry)
    await session.flush()
    return entry


# =============================================================================
# Pull Request Operations
# =============================================================================


async def save_pull_request(
    session: AsyncSession,
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
    record = PullRequestRecord(
        issue_id=issue_id,
        repo_full_name=repo_full_name,
        branch_name=branch_name,
        title=title,
        description=description,
        pr_number=pr_number,
        pr_url=pr_url,
        status=status,
    )
    session.add(record)
    await session.flush()
    return record
