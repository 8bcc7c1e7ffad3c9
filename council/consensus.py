"""
Vote collection and majority consensus for council runs.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)

SUBMIT_VOTE_TOOL = "submitVote"
NO_VOTES_NOTE = "No votes recorded"
DEFAULT_CONFIDENCE = 0.5


class Decision(StrEnum):
    APPROVE = "approve"
    REJECT = "reject"
    REVISE = "revise"


@dataclass(frozen=True)
class Vote:
    agent_name: str
    decision: Decision
    confidence: float = DEFAULT_CONFIDENCE
    reasoning: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "agentName": self.agent_name,
            "decision": self.decision.value,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
        }


@dataclass
class ConsensusDecision:
    final_decision: Decision
    agree_count: int
    total_votes: int
    votes: list[Vote] = field(default_factory=list)
    orchestrator_note: str = ""

    @property
    def approval_rate(self) -> float:
        """Percentage of approve votes, 0 for an empty council."""
        if self.total_votes == 0:
            return 0.0
        return self.agree_count / self.total_votes * 100

    def to_dict(self) -> dict[str, Any]:
        return {
            "finalDecision": self.final_decision.value,
            "agreeCount": self.agree_count,
            "totalVotes": self.total_votes,
            "votes": [v.to_dict() for v in self.votes],
            "orchestratorNote": self.orchestrator_note,
        }


def parse_decision(value: Any) -> Decision | None:
    if not isinstance(value, str):
        return None
    try:
        return Decision(value.strip().lower())
    except ValueError:
        return None


def normalize_confidence(value: Any) -> float:
    """Clamp into [0, 1]; anything unparsable becomes 0.5."""
    if isinstance(value, bool):
        return DEFAULT_CONFIDENCE
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return DEFAULT_CONFIDENCE
    if confidence != confidence:  # NaN
        return DEFAULT_CONFIDENCE
    return min(1.0, max(0.0, confidence))


def build_vote(agent_name: str, payload: Mapping[str, Any]) -> Vote | None:
    """Build a vote from loosely typed input, or None if ``decision`` is invalid."""
    decision = parse_decision(payload.get("decision"))
    if decision is None:
        return None
    reasoning = payload.get("reasoning")
    return Vote(
        agent_name=agent_name,
        decision=decision,
        confidence=normalize_confidence(payload.get("confidence")),
        reasoning=reasoning if isinstance(reasoning, str) else "",
    )


def _field(item: Any, *names: str) -> Any:
    for name in names:
        if isinstance(item, Mapping):
            if name in item:
                return item[name]
        elif hasattr(item, name):
            return getattr(item, name)
    return None


def extract_votes_from_history(transcript: Iterable[Any]) -> dict[str, Vote]:
    """Recover votes from the ordered tool-call history of a council run.

    Entries may be ``ToolCall`` objects or plain mappings. Anything that is not a
    well-formed ``submitVote`` call is skipped; a later call from the same agent
    replaces an earlier one.
    """
    votes: dict[str, Vote] = {}
    for entry in transcript or ():
        if _field(entry, "name", "tool_name", "toolName") != SUBMIT_VOTE_TOOL:
            continue
        agent = _field(entry, "agent", "agent_name", "agentName")
        payload = _field(entry, "input", "args", "arguments")
        if not isinstance(agent, str) or not agent or not isinstance(payload, Mapping):
            logger.warning("Dropping malformed submitVote record from transcript")
            continue
        vote = build_vote(agent, payload)
        if vote is None:
            logger.warning("Dropping vote from %s with invalid decision %r", agent, payload.get("decision"))
            continue
        votes[agent] = vote
    return votes


def merge_vote_sources(*sources: Mapping[str, Vote] | None) -> dict[str, Vote]:
    """Union agent->vote maps in order; later sources win."""
    merged: dict[str, Vote] = {}
    for source in sources:
        if source:
            merged.update(source)
    return merged


def get_consensus(votes: Iterable[Vote], note: str | None = None) -> ConsensusDecision:
    vote_list = list(votes)
    total = len(vote_list)
    if total == 0:
        return ConsensusDecision(
            final_decision=Decision.REVISE,
            agree_count=0,
            total_votes=0,
            votes=[],
            orchestrator_note=NO_VOTES_NOTE,
        )

    approve = sum(1 for v in vote_list if v.decision == Decision.APPROVE)
    reject = sum(1 for v in vote_list if v.decision == Decision.REJECT)

    if approve > total / 2:
        final = Decision.APPROVE
    elif reject > total / 2:
        final = Decision.REJECT
    else:
        final = Decision.REVISE

    return ConsensusDecision(
        final_decision=final,
        agree_count=approve,
        total_votes=total,
        votes=vote_list,
        orchestrator_note=note or f"{approve}/{total} agents approved",
    )


class CouncilOrchestrator:
    """Collects votes for one council run and adjudicates them."""

    def __init__(self) -> None:
        self._votes: dict[str, Vote] = {}

    def record_vote(self, vote: Vote) -> None:
        self._votes[vote.agent_name] = vote
        logger.info(
            "[council] %s voted %s (confidence %.2f)",
            vote.agent_name,
            vote.decision.value,
            vote.confidence,
        )

    def record_votes(self, votes: Mapping[str, Vote]) -> None:
        for vote in votes.values():
            self.record_vote(vote)

    @property
    def votes(self) -> list[Vote]:
        return list(self._votes.values())

    def get_consensus(self, note: str | None = None) -> ConsensusDecision:
        decision = get_consensus(self.votes, note)
        if decision.total_votes == 0:
            logger.warning("[council] no votes recorded; defaulting to %s", decision.final_decision.value)
        else:
            logger.info(
                "[council] consensus %s (%d/%d approve)",
                decision.final_decision.value,
                decision.agree_count,
                decision.total_votes,
            )
        return decision
