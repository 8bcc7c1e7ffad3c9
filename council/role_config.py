from __future__ import annotations

import os
from enum import StrEnum
from typing import TypedDict


class Role(StrEnum):
    PLANNER = "planner"
    IMPLEMENTER = "implementer"
    REVIEWER = "reviewer"


class RoleConfig(TypedDict, total=False):
    model: str
    description: str
    system: str
    tools: list[str]


COUNCIL_ORDER: tuple[Role, ...] = (Role.PLANNER, Role.IMPLEMENTER, Role.REVIEWER)

DEFAULT_ROLE_CONFIG: dict[str, RoleConfig] = {
    "planner": {
        "model": "xai/grok-4",
        "description": "Fast reasoning planner that produces a step-by-step execution plan",
        "system": (
            "You are the council planner. Break the task into concrete steps with success "
            "criteria, then call submitVote with your assessment of the plan."
        ),
        "tools": ["readFiles", "submitVote"],
    },
    "implementer": {
        "model": "openai/gpt-5.1-codex",
        "description": "Implementation agent that executes the plan inside the sandbox",
        "system": (
            "You are the council implementer. Execute the plan using runCommand, writeFiles "
            "and readFiles, then call submitVote on whether the implementation is ready."
        ),
        "tools": ["runCommand", "writeFiles", "readFiles", "submitVote"],
    },
    "reviewer": {
        "model": "anthropic/claude-sonnet-4.5",
        "description": "Quality and security reviewer",
        "system": (
            "You are the council reviewer. Inspect the implementation for bugs and security "
            "issues, then call submitVote with approve, reject or revise."
        ),
        "tools": ["runCommand", "readFiles", "submitVote"],
    },
}


def get_env_keys(role: Role) -> dict[str, str]:
    role_upper = role.value.upper()
    return {
        "model": f"COUNCIL_ROLE_{role_upper}_MODEL",
        "system": f"COUNCIL_ROLE_{role_upper}_SYSTEM",
    }


def get_role_from_env(role: Role) -> dict[str, str]:
    result = {}
    for field, env_key in get_env_keys(role).items():
        value = os.getenv(env_key)
        if value:
            result[field] = value
    return result


def resolve_role(role: Role) -> RoleConfig:
    """Default role configuration with environment overrides applied."""
    config = RoleConfig(**DEFAULT_ROLE_CONFIG[role.value])
    config.update(get_role_from_env(role))  # type: ignore[typeddict-item]
    return config
