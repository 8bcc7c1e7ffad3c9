"""
Background council pipeline: run the council for a job and log every decision.
"""

from __future__ import annotations

import logging
from typing import Any

from ..events import EventEmitter, event_bus
from ..models import IssueStatus
from ..role_config import COUNCIL_ORDER
from ..run_agent import InferenceClient, run_council
from ..sandbox import SandboxManager
from ..store import Store
from .base import StepJournal, Steps

logger = logging.getLogger(__name__)


async def run_background_council(
    job_id: str,
    instruction: str,
    *,
    store: Store,
    sandboxes: SandboxManager,
    inference: InferenceClient,
    journal: StepJournal | None = None,
    events: EventEmitter | None = None,
) -> dict[str, Any]:
    """Run the council against a sandbox bound to ``job_id``.

    Returns the recorded council result (summary, consensus, votes). A failure in any
    step marks the job failed and re-raises.
    """
    events = events or event_bus
    steps = Steps(journal, events=events, run_id=job_id)

    async def persist_sandbox_id(sandbox_id: str) -> None:
        await store.update_issue_sandbox(job_id, sandbox_id)

    async def update_status() -> str:
        await store.update_issue_status(job_id, IssueStatus.IN_PROGRESS)
        return IssueStatus.IN_PROGRESS.value

    async def create_sandbox() -> str:
        job = await store.get_issue(job_id)
        if job is None:
            raise LookupError(f"Job {job_id} not found in database")
        async with sandboxes.session(job.sandbox_id, persist_id=persist_sandbox_id) as handle:
            return handle.id

    try:
        await steps.run("update-status", update_status)
        sandbox_id = await steps.run("create-sandbox", create_sandbox)

        async def council_step() -> dict[str, Any]:
            current_id = sandbox_id

            async def persist_replacement(new_id: str) -> None:
                nonlocal current_id
                current_id = new_id
                await persist_sandbox_id(new_id)

            try:
                async with sandboxes.session(sandbox_id, persist_id=persist_replacement) as handle:
                    logger.info("[council] starting job %s on sandbox %s", job_id, handle.id)
                    result = await run_council(handle, inference, instruction, events=events, job_id=job_id)
                return result.to_dict()
            finally:
                await sandboxes.release(current_id)

        council = await steps.run("run-council", council_step)

        async def log_completion() -> str:
            consensus = council["consensus"]
            for vote in council["votes"]:
                await store.append_decision(
                    job_id,
                    step=f"council-vote-{vote['agentName']}",
                    agents=[vote["agentName"]],
                    verdict=vote["decision"],
                    reasoning=vote["reasoning"],
                    metadata={"confidence": vote["confidence"], "agentName": vote["agentName"]},
                )

            total = consensus["totalVotes"]
            approval_rate = consensus["agreeCount"] / total * 100 if total > 0 else 0
            await store.append_decision(
                job_id,
                step="council-consensus",
                agents=[role.value for role in COUNCIL_ORDER],
                verdict=consensus["finalDecision"],
                reasoning=f"Council consensus: {consensus['agreeCount']}/{total} agents approved",
                metadata={"consensus": consensus, "totalVotes": total, "approvalRate": approval_rate},
            )
            await store.update_issue_status(job_id, IssueStatus.COMPLETED)
            return IssueStatus.COMPLETED.value

        await steps.run("log-completion", log_completion)
    except Exception:
        logger.exception("Council job %s failed", job_id)
        try:
            await store.update_issue_status(job_id, IssueStatus.FAILED)
        except Exception as status_exc:
            logger.error("Could not mark job %s failed: %s", job_id, status_exc)
        raise
    return council
