"""
Consensus Analysis Example

Demonstrates how council votes are recovered from a tool-call transcript and
adjudicated into a final decision.

Usage:
    python examples/consensus_analysis.py
"""

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from council.consensus import (
    ConsensusDecision,
    Decision,
    Vote,
    extract_votes_from_history,
    get_consensus,
    merge_vote_sources,
)
from council.tools.agent_tool import ToolCall

console = Console()


def vote_call(agent: str, decision: str, confidence: float, reasoning: str) -> ToolCall:
    """Helper to build a submitVote transcript entry."""
    return ToolCall(
        agent=agent,
        name="submitVote",
        input={"decision": decision, "confidence": confidence, "reasoning": reasoning},
    )


def example_majority_approve() -> None:
    console.print("\n[bold]Example 1: Majority approve[/bold]")
    transcript = [
        vote_call("planner", "approve", 0.8, "Plan covers the redirect edge cases"),
        ToolCall(agent="implementer", name="runCommand", input={"command": "npm test"}),
        vote_call("implementer", "approve", 0.9, "Tests pass"),
        vote_call("reviewer", "revise", 0.7, "Missing a regression test"),
    ]
    display_consensus_results(get_consensus(extract_votes_from_history(transcript).values()))


def example_split_council() -> None:
    console.print("\n[bold]Example 2: Split council[/bold]")
    transcript = [
        vote_call("planner", "approve", 0.6, "Looks fine"),
        vote_call("implementer", "reject", 0.9, "Dependency conflict"),
        # An agent changing its mind: the later call wins.
        vote_call("planner", "revise", 0.7, "Second look: needs a migration"),
    ]
    display_consensus_results(get_consensus(extract_votes_from_history(transcript).values()))


def example_merged_sources() -> None:
    console.print("\n[bold]Example 3: Votes from state and transcript[/bold]")
    from_state = {"reviewer": Vote(agent_name="reviewer", decision=Decision.REJECT, confidence=0.5)}
    from_transcript = extract_votes_from_history(
        [vote_call("reviewer", "approve", 0.95, "Fixed after review")]
    )
    merged = merge_vote_sources(from_state, from_transcript)
    display_consensus_results(get_consensus(merged.values()))


def example_no_votes() -> None:
    console.print("\n[bold]Example 4: Nobody voted[/bold]")
    display_consensus_results(get_consensus([]))


def display_consensus_results(decision: ConsensusDecision) -> None:
    table = Table(title="Council Votes")
    table.add_column("Agent", style="cyan")
    table.add_column("Decision", style="magenta")
    table.add_column("Confidence", justify="right")
    table.add_column("Reasoning")

    for vote in decision.votes:
        table.add_row(vote.agent_name, str(vote.decision), f"{vote.confidence:.2f}", vote.reasoning)

    console.print(table)
    console.print(
        Panel(
            f"[bold]{decision.final_decision.upper()}[/bold] "
            f"({decision.agree_count}/{decision.total_votes} approve, {decision.approval_rate:.0f}%)\n"
            f"{decision.orchestrator_note}",
            title="Consensus",
        )
    )


def main() -> None:
    console.print("[bold blue]Council Consensus Examples[/bold blue]")
    example_majority_approve()
    example_split_council()
    example_merged_sources()
    example_no_votes()


if __name__ == "__main__":
    main()
