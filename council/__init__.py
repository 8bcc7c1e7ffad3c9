"""
Council Orchestrator

Runs a council of sandboxed agents (planner, implementer, reviewer) against an
ephemeral compute session, adjudicates their votes by majority, and turns approved
code changes into pull requests. State lives in PostgreSQL; steps address it by id.
"""

__version__ = "0.1.0"

# Configuration
from council.config import Settings

# Consensus
from council.consensus import (
    ConsensusDecision,
    CouncilOrchestrator,
    Decision,
    Vote,
    extract_votes_from_history,
    get_consensus,
    merge_vote_sources,
)

# Errors
from council.errors import (
    CouncilError,
    PathValidationError,
    PermanentProviderError,
    StepFailedError,
    TransientProviderError,
)

# Core models
from council.models import Issue, PullRequestRecord, Task, TaskStatus, TaskType

# Roles
from council.role_config import Role, RoleConfig

# Agent runner
from council.run_agent import AgentResult, CouncilResult, run_council

__all__ = [
    # Version
    "__version__",
    # Models
    "Task",
    "Issue",
    "PullRequestRecord",
    "TaskStatus",
    "TaskType",
    # Config
    "Settings",
    # Consensus
    "Decision",
    "Vote",
    "ConsensusDecision",
    "CouncilOrchestrator",
    "get_consensus",
    "merge_vote_sources",
    "extract_votes_from_history",
    # Errors
    "CouncilError",
    "TransientProviderError",
    "PermanentProviderError",
    "PathValidationError",
    "StepFailedError",
    # Agent
    "AgentResult",
    "CouncilResult",
    "run_council",
    # Roles
    "Role",
    "RoleConfig",
]
