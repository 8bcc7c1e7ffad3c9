"""
Sandbox-bound tools: run commands, read and write files, submit a vote.
"""

from __future__ import annotations

import base64
import logging
import posixpath
import shlex
from typing import Any

from ..consensus import SUBMIT_VOTE_TOOL, Decision, build_vote
from ..errors import PathValidationError
from .agent_tool import BaseTool, ToolContext, ToolRegistry, ToolResult

logger = logging.getLogger(__name__)


def sanitize_file_path(path: str) -> str:
    """Return ``path`` unchanged if it stays inside the working directory.

    Raises :class:`PathValidationError` for absolute paths and ``..`` segments.
    """
    if not isinstance(path, str) or not path.strip():
        raise PathValidationError("File path must be a non-empty string")
    if "\x00" in path:
        raise PathValidationError(f"File path contains a NUL byte: {path!r}")
    if path.startswith("/"):
        raise PathValidationError(f"Absolute paths are not allowed: {path}")
    if any(segment == ".." for segment in path.replace("\\", "/").split("/")):
        raise PathValidationError(f"Path traversal is not allowed: {path}")
    return path


def build_write_command(path: str, content: str) -> str:
    """Shell command that writes ``content`` to ``path`` without interpreting it."""
    safe_path = sanitize_file_path(path)
    payload = base64.b64encode(content.encode("utf-8")).decode("ascii")
    parts = [f"printf '%s' {shlex.quote(payload)} | base64 -d > {shlex.quote(safe_path)}"]
    parent = posixpath.dirname(safe_path)
    if parent:
        parts.insert(0, f"mkdir -p {shlex.quote(parent)}")
    return " && ".join(parts)


class RunCommandTool(BaseTool):
    name = "runCommand"
    description = "Run a shell command inside the sandbox and return stdout, stderr and exit code."
    parameters = {
        "type": "object",
        "properties": {"command": {"type": "string", "description": "Shell command to run"}},
        "required": ["command"],
    }

    async def run(self, input: dict[str, Any], ctx: ToolContext) -> ToolResult:
        command = input.get("command")
        if not isinstance(command, str) or not command.strip():
            return ToolResult(success=False, output=None, error="command is required")
        result = await ctx.sandbox.run(command)
        # Non-zero exit is reported, not raised.
        return ToolResult(
            success=True,
            output={"stdout": result.stdout, "stderr": result.stderr, "exitCode": result.exit_code},
        )


class WriteFilesTool(BaseTool):
    name = "writeFiles"
    description = "Create or overwrite files in the sandbox working directory."
    parameters = {
        "type": "object",
        "properties": {
            "files": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "path": {"type": "string"},
                        "content": {"type": "string"},
                    },
                    "required": ["path", "content"],
                },
            }
        },
        "required": ["files"],
    }

    async def run(self, input: dict[str, Any], ctx: ToolContext) -> ToolResult:
        files = input.get("files")
        if not isinstance(files, list):
            return ToolResult(success=False, output=None, error="files must be a list")

        written: list[str] = []
        errors: list[dict[str, str]] = []
        for entry in files:
            path = entry.get("path") if isinstance(entry, dict) else None
            content = entry.get("content") if isinstance(entry, dict) else None
            if not isinstance(content, str):
                errors.append({"path": str(path), "error": "content must be a string"})
                continue
            try:
                command = build_write_command(path, content)
            except PathValidationError as exc:
                logger.warning("[%s] rejected write: %s", ctx.agent_name, exc)
                errors.append({"path": str(path), "error": str(exc)})
                continue

            try:
                result = await ctx.sandbox.run(command)
            except Exception as exc:
                logger.warning("[%s] write of %s failed: %s", ctx.agent_name, path, exc)
                errors.append({"path": path, "error": str(exc)})
                continue
            if not result.ok:
                errors.append({"path": path, "error": result.stderr or f"exit code {result.exit_code}"})
                continue
            ctx.state.files[path] = content
            written.append(path)

        return ToolResult(
            success=not errors,
            output={"written": written, "errors": errors},
            error="; ".join(f"{e['path']}: {e['error']}" for e in errors) or None,
        )


class ReadFilesTool(BaseTool):
    name = "readFiles"
    description = "Read files from the sandbox working directory."
    parameters = {
        "type": "object",
        "properties": {"paths": {"type": "array", "items": {"type": "string"}}},
        "required": ["paths"],
    }

    async def run(self, input: dict[str, Any], ctx: ToolContext) -> ToolResult:
        paths = input.get("paths")
        if not isinstance(paths, list):
            return ToolResult(success=False, output=None, error="paths must be a list")

        contents: list[dict[str, str]] = []
        for path in paths:
            try:
                safe_path = sanitize_file_path(path)
                content = await ctx.sandbox.read_file(safe_path)
            except PathValidationError as exc:
                contents.append({"path": str(path), "content": "", "error": str(exc)})
            except Exception as exc:
                logger.warning("[%s] could not read %s: %s", ctx.agent_name, path, exc)
                contents.append({"path": str(path), "content": "", "error": str(exc)})
            else:
                contents.append({"path": safe_path, "content": content})
        return ToolResult(success=True, output=contents)


class SubmitVoteTool(BaseTool):
    name = SUBMIT_VOTE_TOOL
    description = "Submit your final decision on the task. Call this exactly once when done."
    parameters = {
        "type": "object",
        "properties": {
            "decision": {"type": "string", "enum": [d.value for d in Decision]},
            "confidence": {"type": "number", "minimum": 0, "maximum": 1},
            "reasoning": {"type": "string"},
        },
        "required": ["decision", "confidence", "reasoning"],
    }

    async def run(self, input: dict[str, Any], ctx: ToolContext) -> ToolResult:
        vote = build_vote(ctx.agent_name, input)
        if vote is None:
            return ToolResult(
                success=False,
                output=None,
                error=f"decision must be one of {', '.join(d.value for d in Decision)}",
            )
        ctx.state.votes[ctx.agent_name] = vote
        return ToolResult(success=True, output=vote.to_dict())


def build_council_tools() -> ToolRegistry:
    return ToolRegistry([RunCommandTool(), WriteFilesTool(), ReadFilesTool(), SubmitVoteTool()])
