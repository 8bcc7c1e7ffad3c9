import pytest

from council.consensus import (
    NO_VOTES_NOTE,
    CouncilOrchestrator,
    Decision,
    Vote,
    extract_votes_from_history,
    get_consensus,
    merge_vote_sources,
    normalize_confidence,
    parse_decision,
)
from council.tools.agent_tool import ToolCall


def _vote(agent: str, decision: str, confidence: float = 0.8, reasoning: str = "") -> Vote:
    return Vote(agent_name=agent, decision=Decision(decision), confidence=confidence, reasoning=reasoning)


def test_unanimous_approve() -> None:
    votes = [
        _vote("planner", "approve", 0.9),
        _vote("implementer", "approve", 0.85),
        _vote("reviewer", "approve", 0.8),
    ]

    decision = get_consensus(votes)

    assert decision.final_decision == Decision.APPROVE
    assert decision.agree_count == 3
    assert decision.total_votes == 3
    assert decision.votes == votes


def test_three_way_split_revises() -> None:
    votes = [_vote("planner", "approve"), _vote("implementer", "reject"), _vote("reviewer", "revise")]

    decision = get_consensus(votes)

    assert decision.final_decision == Decision.REVISE
    assert decision.agree_count == 1


def test_reject_majority() -> None:
    votes = [_vote("planner", "reject"), _vote("implementer", "reject"), _vote("reviewer", "approve")]
    assert get_consensus(votes).final_decision == Decision.REJECT


def test_tie_is_not_a_majority() -> None:
    votes = [_vote("planner", "approve"), _vote("reviewer", "reject")]
    assert get_consensus(votes).final_decision == Decision.REVISE


def test_empty_votes_revise_with_note() -> None:
    decision = get_consensus([])

    assert decision.final_decision == Decision.REVISE
    assert decision.total_votes == 0
    assert decision.agree_count == 0
    assert decision.orchestrator_note == NO_VOTES_NOTE
    assert decision.approval_rate == 0.0


def test_consensus_is_deterministic() -> None:
    votes = [_vote("a", "approve"), _vote("b", "revise"), _vote("c", "approve")]
    first = get_consensus(votes)
    second = get_consensus(list(votes))
    assert first.to_dict() == second.to_dict()


def test_merge_last_source_wins() -> None:
    merged = merge_vote_sources({"A": _vote("A", "approve")}, {"A": _vote("A", "reject")})
    assert list(merged) == ["A"]
    assert merged["A"].decision == Decision.REJECT


def test_merge_unions_agents_and_ignores_empty_sources() -> None:
    merged = merge_vote_sources(None, {"A": _vote("A", "approve")}, {}, {"B": _vote("B", "revise")})
    assert set(merged) == {"A", "B"}


def test_extract_votes_skips_invalid_and_keeps_latest() -> None:
    transcript = [
        ToolCall(agent="planner", name="submitVote", input={"decision": "approve", "confidence": 0.7}),
        ToolCall(agent="planner", name="runCommand", input={"command": "ls"}),
        ToolCall(agent="reviewer", name="submitVote", input={"decision": "maybe", "confidence": 1}),
        {"agent": "implementer", "name": "submitVote", "input": {"decision": "revise", "reasoning": "x"}},
        ToolCall(agent="planner", name="submitVote", input={"decision": "REJECT", "confidence": "high"}),
        {"name": "submitVote", "input": {"decision": "approve"}},
    ]

    votes = extract_votes_from_history(transcript)

    assert set(votes) == {"planner", "implementer"}
    assert votes["planner"].decision == Decision.REJECT
    assert votes["planner"].confidence == 0.5
    assert votes["implementer"].reasoning == "x"


def test_extract_votes_from_empty_history() -> None:
    assert extract_votes_from_history([]) == {}


@pytest.mark.parametrize(
    ("raw", "expected"),
    [(0.3, 0.3), (7, 1.0), (-2, 0.0), ("0.25", 0.25), ("nope", 0.5), (None, 0.5), (float("nan"), 0.5)],
)
def test_normalize_confidence(raw: object, expected: float) -> None:
    assert normalize_confidence(raw) == expected


def test_parse_decision() -> None:
    assert parse_decision(" Approve ") == Decision.APPROVE
    assert parse_decision("ship-it") is None
    assert parse_decision(1) is None


def test_orchestrator_last_vote_per_agent() -> None:
    orchestrator = CouncilOrchestrator()
    orchestrator.record_vote(_vote("reviewer", "reject"))
    orchestrator.record_vote(_vote("reviewer", "approve"))
    orchestrator.record_vote(_vote("planner", "approve"))

    decision = orchestrator.get_consensus("note")

    assert decision.total_votes == 2
    assert decision.final_decision == Decision.APPROVE
    assert decision.orchestrator_note == "note"
    assert decision.approval_rate == 100.0
