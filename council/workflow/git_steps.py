"""
Git operations steps for code-change tasks.

Each step reconnects to the run's sandbox by id, does its work and drops the handle.
Any non-zero exit raises :class:`StepFailedError` with ``requeue=True``.
"""

from __future__ import annotations

import logging
import shlex
from typing import Any

from ..errors import StepFailedError
from ..github import redact_token
from ..sandbox import CommandResult, SandboxHandle
from .base import WorkflowContext, WorkflowStep

logger = logging.getLogger(__name__)

WORKSPACE_DIR = "workspace"

# First match wins; lockfiles before bare manifests.
INSTALL_COMMANDS: tuple[tuple[str, str], ...] = (
    ("bun.lock", "bun install"),
    ("bun.lockb", "bun install"),
    ("pnpm-lock.yaml", "pnpm install --frozen-lockfile"),
    ("yarn.lock", "yarn install --frozen-lockfile"),
    ("package-lock.json", "npm ci"),
    ("package.json", "npm install"),
    ("uv.lock", "uv sync"),
    ("requirements.txt", "pip install -r requirements.txt"),
    ("pyproject.toml", "pip install -e ."),
)


def detect_install_command(entries: list[str]) -> tuple[str, str] | None:
    present = set(entries)
    for manifest, command in INSTALL_COMMANDS:
        if manifest in present:
            return manifest, command
    return None


def _failure_detail(result: CommandResult) -> str:
    return result.stderr or result.stdout or f"exit code {result.exit_code}"


class SandboxStep(WorkflowStep):
    """Step that runs against the pipeline's sandbox session."""

    async def execute(self, ctx: WorkflowContext) -> Any:
        if ctx.sandboxes is None:
            raise RuntimeError(f"Step {self.name} needs a sandbox manager")
        async with ctx.sandboxes.session(
            ctx.get("sandbox_id"), persist_id=ctx.persist_sandbox_id
        ) as handle:
            return await self.run_in_sandbox(handle, ctx)

    async def run_in_sandbox(self, handle: SandboxHandle, ctx: WorkflowContext) -> Any:
        raise NotImplementedError


class CloneRepositoryStep(SandboxStep):
    name = "clone-repository"
    description = "Shallow-clone the target repository into the workspace"

    def __init__(self, clone_url: str, *, token: str | None = None) -> None:
        self.clone_url = clone_url
        self._token = token

    async def run_in_sandbox(self, handle: SandboxHandle, ctx: WorkflowContext) -> str:
        workspace = shlex.quote(WORKSPACE_DIR)
        command = (
            f"if [ -d {workspace}/.git ]; then echo 'workspace already cloned'; "
            f"else GIT_TERMINAL_PROMPT=0 git clone --depth=1 {shlex.quote(self.clone_url)} {workspace}; fi"
        )
        result = await handle.run(command)
        if not result.ok:
            detail = redact_token(_failure_detail(result), self._token)
            raise StepFailedError(self.name, f"Clone failed: {detail}", requeue=True)
        return redact_token(result.stdout, self._token)


class CheckoutBranchStep(SandboxStep):
    name = "checkout-branch"
    description = "Create and check out the working branch"

    def __init__(self, branch_name: str) -> None:
        self.branch_name = branch_name

    async def run_in_sandbox(self, handle: SandboxHandle, ctx: WorkflowContext) -> str:
        # -B so a re-run lands on the same branch instead of failing.
        result = await handle.run(
            f"cd {shlex.quote(WORKSPACE_DIR)} && git checkout -B {shlex.quote(self.branch_name)}"
        )
        if not result.ok:
            raise StepFailedError(
                self.name, f"Branch creation failed: {_failure_detail(result)}", requeue=True
            )
        return self.branch_name


class InstallDependenciesStep(SandboxStep):
    name = "install-dependencies"
    description = "Install dependencies when the repository has a manifest"

    async def run_in_sandbox(self, handle: SandboxHandle, ctx: WorkflowContext) -> dict[str, Any]:
        listing = await handle.run(f"ls -1A {shlex.quote(WORKSPACE_DIR)}")
        if not listing.ok:
            raise StepFailedError(
                self.name, f"Could not list workspace: {_failure_detail(listing)}", requeue=True
            )

        detected = detect_install_command(listing.stdout.splitlines())
        if detected is None:
            logger.info("No dependency manifest found; skipping install")
            return {"skipped": True, "manifest": None}

        manifest, install = detected
        result = await handle.run(f"cd {shlex.quote(WORKSPACE_DIR)} && {install}", timeout=600)
        if not result.ok:
            raise StepFailedError(
                self.name, f"Dependency install failed ({install}): {_failure_detail(result)}", requeue=True
            )
        return {"skipped": False, "manifest": manifest, "command": install}


class GitStatusStep(SandboxStep):
    name = "git-status"
    description = "Capture repository status"

    async def run_in_sandbox(self, handle: SandboxHandle, ctx: WorkflowContext) -> str:
        result = await handle.run(f"cd {shlex.quote(WORKSPACE_DIR)} && git status -sb")
        if not result.ok:
            raise StepFailedError(
                self.name, f"git status failed: {_failure_detail(result)}", requeue=True
            )
        return result.stdout


def build_git_steps(clone_url: str, branch_name: str, *, token: str | None = None) -> list[WorkflowStep]:
    return [
        CloneRepositoryStep(clone_url, token=token),
        CheckoutBranchStep(branch_name),
        InstallDependenciesStep(),
        GitStatusStep(),
    ]
