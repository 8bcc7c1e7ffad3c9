"""Turns an approved branch into a pull request."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from .failures import FailureHandler
from .github import VCSHost
from .models import IssueStatus, PullRequestStatus
from .store import Store

logger = logging.getLogger(__name__)


@dataclass
class PublishRequest:
    repo: str
    branch_name: str
    base: str
    token: str
    title: str | None = None
    summary: str | None = None
    work_items: Sequence[str] = field(default_factory=list)
    testing: str | None = None
    issue_id: str | None = None
    task_id: str | None = None
    draft: bool = True

    @classmethod
    def from_task_payload(
        cls,
        payload: dict[str, Any],
        *,
        token: str | None,
        default_base: str = "main",
        issue_id: str | None = None,
        task_id: str | None = None,
    ) -> PublishRequest:
        resolved = payload.get("accessToken") or token
        if not resolved:
            raise ValueError("No access token available for pull request creation")
        return cls(
            repo=payload["repoFullName"],
            branch_name=payload["branchName"],
            base=payload.get("baseBranch") or default_base,
            token=resolved,
            title=payload.get("title"),
            summary=payload.get("summary"),
            work_items=list(payload.get("workItems") or []),
            testing=payload.get("testing"),
            issue_id=issue_id,
            task_id=task_id,
        )


def build_pr_description(
    *,
    summary: str | None = None,
    work_items: Sequence[str] | None = None,
    testing: str | None = None,
) -> str:
    """Assemble a PR body from the sections that have content. Absent sections get no heading."""
    sections: list[str] = []
    if summary and summary.strip():
        sections.append(f"## Summary\n\n{summary.strip()}")
    items = [item.strip() for item in work_items or [] if item and item.strip()]
    if items:
        sections.append("## Work Items\n\n" + "\n".join(f"- {item}" for item in items))
    if testing and testing.strip():
        sections.append(f"## Testing\n\n{testing.strip()}")
    sections.append("_Opened automatically by the council orchestrator._")
    return "\n\n".join(sections)


class PullRequestPublisher:
    def __init__(self, store: Store, host: VCSHost, failures: FailureHandler) -> None:
        self._store = store
        self._host = host
        self._failures = failures

    async def publish(self, request: PublishRequest) -> dict[str, Any]:
        """Create the PR and record it. Any failure fails the task without requeue and re-raises."""
        title = request.title or f"Council changes from {request.branch_name}"
        description = build_pr_description(
            summary=request.summary, work_items=request.work_items, testing=request.testing
        )
        try:
            created = await self._host.create_pull_request(
                repo=request.repo,
                title=title,
                head=request.branch_name,
                base=request.base,
                body=description,
                draft=request.draft,
                token=request.token,
            )
            # The host decides whether the PR ended up as a draft.
            status = PullRequestStatus.DRAFT if created.draft else PullRequestStatus.OPEN
            if request.issue_id:
                await self._store.save_pull_request(
                    issue_id=request.issue_id,
                    repo_full_name=request.repo,
                    branch_name=request.branch_name,
                    title=created.title,
                    description=description,
                    pr_number=created.number,
                    pr_url=created.html_url,
                    status=status.value,
                )
                await self._store.update_issue_status(request.issue_id, IssueStatus.COMPLETED)
            result = {"prNumber": created.number, "url": created.html_url}
            if request.task_id:
                await self._failures.complete(request.task_id, result)
        except Exception as exc:
            logger.error("Pull request creation for %s failed: %s", request.branch_name, exc)
            if request.task_id:
                await self._failures.fail(request.task_id, exc, requeue=False)
            raise

        logger.info("Published %s as #%s (%s)", request.branch_name, created.number, status.value)
        return {**result, "status": status.value}
