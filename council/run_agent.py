"""Council runner: drives planner, implementer and reviewer against one sandbox."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

from .consensus import (
    ConsensusDecision,
    CouncilOrchestrator,
    Decision,
    Vote,
    extract_votes_from_history,
    merge_vote_sources,
)
from .events import EventEmitter, EventType, event_bus
from .role_config import COUNCIL_ORDER, Role, RoleConfig, resolve_role
from .tools.agent_tool import RunState, ToolCall, ToolContext, ToolRegistry
from .tools.sandbox_tools import build_council_tools

if TYPE_CHECKING:
    from .sandbox import SandboxHandle

logger = logging.getLogger(__name__)

CONSENSUS_NOTE = "Orchestrator consensus: Council reached agreement after review."


@dataclass
class AgentResult:
    """Result from running one council agent."""

    agent: str
    success: bool
    raw_output: str
    error: str | None = None
    duration_seconds: int = 0
    tool_rounds: int = 0
    model_used: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "agent": self.agent,
            "success": self.success,
            "output": self.raw_output,
            "error": self.error,
            "durationSeconds": self.duration_seconds,
            "toolRounds": self.tool_rounds,
            "model": self.model_used,
        }


class InferenceClient(Protocol):
    """Opaque model capability. Implementations call tools through ``tools.invoke``."""

    async def run_agent(
        self,
        *,
        role: Role,
        config: RoleConfig,
        prompt: str,
        tools: ToolRegistry,
        ctx: ToolContext,
    ) -> AgentResult: ...


@dataclass
class CouncilResult:
    summary: str
    consensus: ConsensusDecision
    votes: list[Vote]
    agents: list[AgentResult] = field(default_factory=list)
    history: list[ToolCall] = field(default_factory=list)
    files: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """JSON-compatible form, safe to record in a step journal."""
        return {
            "summary": self.summary,
            "consensus": self.consensus.to_dict(),
            "votes": [v.to_dict() for v in self.votes],
            "agents": [a.to_dict() for a in self.agents],
            "files": sorted(self.files),
        }


def build_prompt(instruction: str, previous: list[AgentResult]) -> str:
    if not previous:
        return instruction
    notes = "\n\n".join(f"[{r.agent}]\n{r.raw_output}" for r in previous if r.raw_output)
    if not notes:
        return instruction
    return f"{instruction}\n\n---\n\nCOUNCIL NOTES SO FAR:\n\n{notes}"


async def run_council(
    sandbox: SandboxHandle,
    inference: InferenceClient,
    instruction: str,
    *,
    events: EventEmitter | None = None,
    job_id: str | None = None,
) -> CouncilResult:
    """Run every council role in order, then adjudicate their votes.

    Votes stored by ``submitVote`` in the shared run state are merged with votes
    recovered from the transcript, transcript last.
    """
    events = events or event_bus
    state = RunState()
    registry = build_council_tools()
    results: list[AgentResult] = []

    for role in COUNCIL_ORDER:
        config = resolve_role(role)
        tools = ToolRegistry([t for name in config.get("tools", []) if (t := registry.get(name))])
        ctx = ToolContext(sandbox=sandbox, agent_name=role.value, state=state)

        logger.info("[council] running %s (%s)", role.value, config.get("model"))
        started = time.monotonic()
        result = await inference.run_agent(
            role=role,
            config=config,
            prompt=build_prompt(instruction, results),
            tools=tools,
            ctx=ctx,
        )
        result.duration_seconds = int(time.monotonic() - started)
        results.append(result)

    votes = merge_vote_sources(state.votes, extract_votes_from_history(state.history))
    orchestrator = CouncilOrchestrator()
    orchestrator.record_votes(votes)
    for vote in votes.values():
        await events.publish(
            EventType.VOTE_RECORDED,
            f"{vote.agent_name} voted {vote.decision.value}",
            issue_id=job_id,
            agent=vote.agent_name,
            data=vote.to_dict(),
        )

    consensus = orchestrator.get_consensus()
    if consensus.final_decision != Decision.REVISE:
        consensus.orchestrator_note = CONSENSUS_NOTE
    await events.publish(
        EventType.CONSENSUS_CALCULATED,
        f"Consensus {consensus.final_decision.value} "
        f"({consensus.agree_count}/{consensus.total_votes} approve)",
        issue_id=job_id,
        data={**consensus.to_dict(), "no_votes": consensus.total_votes == 0},
    )

    implementer = next((r for r in results if r.agent == Role.IMPLEMENTER.value), None)
    summary = (implementer.raw_output if implementer else "") or instruction or "Task completed"
    return CouncilResult(
        summary=summary,
        consensus=consensus,
        votes=list(votes.values()),
        agents=results,
        history=list(state.history),
        files=dict(state.files),
    )
