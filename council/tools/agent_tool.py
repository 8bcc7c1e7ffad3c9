"""
Tool contract shared by council agents.

A tool declares a name, a description and a JSON parameter schema, and is invoked
with ``(input, context)``. The context binds the tool to one live sandbox handle for
the current step plus the run state shared by the council.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ..consensus import Vote

if TYPE_CHECKING:
    from ..sandbox import SandboxHandle

logger = logging.getLogger(__name__)


@dataclass
class ToolResult:
    """Result from a tool invocation."""

    success: bool
    output: Any
    error: str | None = None
    metadata: dict[str, Any] | None = None

    def __post_init__(self) -> None:
        if self.metadata is None:
            self.metadata = {}

    def to_dict(self) -> dict[str, Any]:
        if self.success:
            return {"ok": True, "output": self.output}
        return {"ok": False, "error": self.error, "output": self.output}


@dataclass
class ToolCall:
    """One entry of a council transcript."""

    agent: str
    name: str
    input: dict[str, Any]
    output: Any = None


@dataclass
class RunState:
    """State shared by all agents of one council run, scoped to a single step."""

    files: dict[str, str] = field(default_factory=dict)
    votes: dict[str, Vote] = field(default_factory=dict)
    history: list[ToolCall] = field(default_factory=list)


@dataclass
class ToolContext:
    sandbox: SandboxHandle
    agent_name: str
    state: RunState


class BaseTool(ABC):
    """Base class for all tools."""

    name: str
    description: str
    parameters: dict[str, Any]

    @abstractmethod
    async def run(self, input: dict[str, Any], ctx: ToolContext) -> ToolResult:
        pass

    def schema(self) -> dict[str, Any]:
        """Function-calling schema advertised to the inference gateway."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


class ToolRegistry:
    """Registry of available tools."""

    def __init__(self, tools: list[BaseTool] | None = None) -> None:
        self._tools: dict[str, BaseTool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: BaseTool) -> None:
        self._tools[tool.name] = tool

    def get(self, name: str) -> BaseTool | None:
        return self._tools.get(name)

    def list_tools(self) -> list[str]:
        return list(self._tools.keys())

    def schemas(self) -> list[dict[str, Any]]:
        return [tool.schema() for tool in self._tools.values()]

    async def invoke(self, name: str, input: dict[str, Any], ctx: ToolContext) -> ToolResult:
        """Run a tool and record the call in the run history."""
        tool = self.get(name)
        if tool is None:
            result = ToolResult(success=False, output=None, error=f"Unknown tool: {name}")
        else:
            try:
                result = await tool.run(input, ctx)
            except Exception as exc:
                # Reported back to the agent; one failing call must not end the council run.
                logger.warning("Tool %s for %s raised: %s", name, ctx.agent_name, exc)
                result = ToolResult(success=False, output=None, error=f"{type(exc).__name__}: {exc}")
        ctx.state.history.append(
            ToolCall(agent=ctx.agent_name, name=name, input=dict(input), output=result.to_dict())
        )
        if not result.success:
            logger.debug("Tool %s for %s failed: %s", name, ctx.agent_name, result.error)
        return result
