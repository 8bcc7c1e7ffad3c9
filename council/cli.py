"""Main CLI entry point for the council orchestrator."""

import asyncio
import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

import click
from redis.asyncio import Redis
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .config import Settings, settings
from .consensus import build_vote, get_consensus
from .db import Database
from .events import RedisEventPublisher, configure_logging, event_bus
from .failures import FailureHandler
from .github import GitHubClient
from .inference_client import GatewayInferenceClient
from .models import Task, TaskType
from .publisher import PublishRequest, PullRequestPublisher
from .queue import RedisDrainSignal, TaskQueue
from .redis_client import create_redis_client
from .sandbox import E2BSandboxProvider, SandboxManager
from .store import SqlStore
from .workers.task_worker import TaskWorker
from .workflow.autonomous import TriggerEvent, run_autonomous_pipeline
from .workflow.background import run_background_council

console = Console()


@dataclass
class Runtime:
    """Process-wide collaborators, built once and injected into pipelines."""

    settings: Settings
    database: Database
    redis: Redis
    store: SqlStore
    sandboxes: SandboxManager
    queue: TaskQueue
    failures: FailureHandler
    github: GitHubClient
    publisher: PullRequestPublisher
    inference: GatewayInferenceClient

    async def publish_task(self, task: Task) -> dict[str, Any]:
        try:
            request = PublishRequest.from_task_payload(
                task.payload,
                token=self.settings.github_automation_token,
                default_base=self.settings.default_base_branch,
                issue_id=str(task.issue_id) if task.issue_id else None,
                task_id=str(task.id),
            )
        except (KeyError, ValueError) as exc:
            await self.failures.fail(str(task.id), f"Invalid PR task payload: {exc}", requeue=False)
            raise
        return await self.publisher.publish(request)

    async def run_codegen_task(self, task: Task) -> dict[str, Any]:
        try:
            event = TriggerEvent.from_dict(
                {
                    **(task.payload or {}),
                    "taskId": str(task.id),
                    "issueId": str(task.issue_id) if task.issue_id else None,
                }
            )
        except (TypeError, ValueError) as exc:
            await self.failures.fail(str(task.id), f"Invalid CODEGEN task payload: {exc}", requeue=False)
            raise
        return await self.run_pipeline(event)

    async def run_pipeline(self, event: TriggerEvent) -> dict[str, Any]:
        return await run_autonomous_pipeline(
            event,
            store=self.store,
            sandboxes=self.sandboxes,
            queue=self.queue,
            failures=self.failures,
            settings=self.settings,
        )


@asynccontextmanager
async def open_runtime(cfg: Settings) -> AsyncIterator[Runtime]:
    database = Database(cfg)
    redis = create_redis_client(cfg)
    github = GitHubClient(base_url=cfg.github_api_url)
    inference = GatewayInferenceClient.from_settings(cfg)
    publisher_handler = RedisEventPublisher(redis) if cfg.redis_events_enabled else None
    if publisher_handler is not None:
        event_bus.on_event(publisher_handler)

    store = SqlStore(database)
    failures = FailureHandler(store)
    try:
        yield Runtime(
            settings=cfg,
            database=database,
            redis=redis,
            store=store,
            sandboxes=SandboxManager(E2BSandboxProvider(cfg.e2b_api_key), cfg),
            queue=TaskQueue(
                store,
                RedisDrainSignal(redis, stream=cfg.drain_stream, max_depth=cfg.redis_queue_max_depth),
            ),
            failures=failures,
            github=github,
            publisher=PullRequestPublisher(store, github, failures),
            inference=inference,
        )
    finally:
        if publisher_handler is not None:
            event_bus.remove(publisher_handler)
        await inference.aclose()
        await github.aclose()
        await redis.aclose()
        await database.dispose()


def _print_json(data: Any, title: str) -> None:
    console.print(Panel(json.dumps(data, indent=2, default=str), title=title))


@click.group()
@click.version_option(version="0.1.0")
def main() -> None:
    """Council orchestrator CLI.

    Run sandboxed agent councils and turn approved work into pull requests.
    """
    configure_logging(settings.log_level)


@main.command(name="run-agent")
@click.argument("event_json")
def run_agent(event_json: str) -> None:
    """Run the code-change pipeline for a trigger event.

    EVENT_JSON: {"taskId", "issueId", "repoFullName", "accessToken"?, "baseBranch"?, "branchName"?}
    """
    try:
        event = TriggerEvent.from_dict(json.loads(event_json))
    except (json.JSONDecodeError, ValueError) as exc:
        raise click.BadParameter(str(exc), param_hint="EVENT_JSON") from exc

    async def go() -> dict[str, Any]:
        async with open_runtime(settings) as rt:
            return await rt.run_pipeline(event)

    _print_json(asyncio.run(go()), "Pipeline result")


@main.command()
@click.argument("job_id")
@click.argument("instruction")
def council(job_id: str, instruction: str) -> None:
    """Run the agent council for a background job.

    JOB_ID: Issue/job id the council works on
    INSTRUCTION: What the council should do
    """

    async def go() -> dict[str, Any]:
        async with open_runtime(settings) as rt:
            return await run_background_council(
                job_id,
                instruction,
                store=rt.store,
                sandboxes=rt.sandboxes,
                inference=rt.inference,
            )

    result = asyncio.run(go())
    consensus = result["consensus"]

    table = Table(title="Council Votes")
    table.add_column("Agent", style="cyan")
    table.add_column("Decision")
    table.add_column("Confidence", justify="right")
    table.add_column("Reasoning")
    for vote in result["votes"]:
        table.add_row(vote["agentName"], vote["decision"], f"{vote['confidence']:.2f}", vote["reasoning"][:80])
    console.print(table)
    console.print(
        Panel(
            f"[bold]{consensus['finalDecision']}[/bold] "
            f"({consensus['agreeCount']}/{consensus['totalVotes']} approve)\n\n"
            f"{consensus['orchestratorNote']}",
            title="Consensus",
        )
    )


@main.command(name="publish-pr")
@click.argument("task_id")
def publish_pr(task_id: str) -> None:
    """Create the pull request for a PR_CREATION task.

    TASK_ID: The PR creation task id
    """

    async def go() -> dict[str, Any]:
        async with open_runtime(settings) as rt:
            task = await rt.store.get_task(task_id)
            if task is None:
                raise click.ClickException(f"Task not found: {task_id}")
            if task.type != TaskType.PR_CREATION:
                raise click.ClickException(f"Task {task_id} is {task.type}, not {TaskType.PR_CREATION}")
            await rt.store.mark_task_running(task_id)
            return await rt.publish_task(task)

    _print_json(asyncio.run(go()), "Pull request")


@main.command()
@click.argument("task_id")
def status(task_id: str) -> None:
    """Show status of a task.

    TASK_ID: The task id
    """

    async def show_status() -> None:
        database = Database(settings)
        try:
            task = await SqlStore(database).get_task(task_id)
        finally:
            await database.dispose()
        if task is None:
            console.print(f"[red]Task not found: {task_id}[/red]")
            return

        lines = [
            f"Type: [bold]{task.type}[/bold]",
            f"Status: [cyan]{task.status}[/cyan]",
            f"Priority: {task.priority}",
            f"Retries: {task.retry_count}",
        ]
        if task.status == "failed":
            lines.append(f"Requeue: {'yes' if task.requeue else 'no'}")
        if task.error_message:
            lines.append(f"Error: [red]{task.error_message}[/red]")
        if task.result:
            lines.append(f"Result: {json.dumps(task.result, default=str)}")
        console.print(Panel("\n".join(lines), title=f"Task: {task_id}"))

    asyncio.run(show_status())


@main.command()
def worker() -> None:
    """Consume drain hints and dispatch pending tasks."""

    async def go() -> None:
        async with open_runtime(settings) as rt:
            task_worker = TaskWorker(
                rt.redis,
                store=rt.store,
                failures=rt.failures,
                handlers={
                    TaskType.PR_CREATION: rt.publish_task,
                    TaskType.CODEGEN: rt.run_codegen_task,
                },
                stream=rt.settings.drain_stream,
                max_retries=rt.settings.task_max_retries,
            )
            await task_worker.run_forever()

    console.print(f"[bold]Council worker[/bold] listening on {settings.drain_stream}")
    asyncio.run(go())


@main.command()
@click.argument("votes_json")
def consensus(votes_json: str) -> None:
    """Compute consensus for a list of votes, offline.

    VOTES_JSON: [{"agentName", "decision", "confidence", "reasoning"}, ...]
    """
    try:
        raw = json.loads(votes_json)
    except json.JSONDecodeError as exc:
        raise click.BadParameter(str(exc), param_hint="VOTES_JSON") from exc
    if not isinstance(raw, list):
        raise click.BadParameter("expected a JSON list", param_hint="VOTES_JSON")

    votes = {}
    for item in raw:
        if not isinstance(item, dict):
            continue
        agent = item.get("agentName") or item.get("agent_name")
        vote = build_vote(agent, item) if isinstance(agent, str) else None
        if vote is None:
            console.print(f"[yellow]Skipping invalid vote: {item}[/yellow]")
            continue
        votes[agent] = vote

    _print_json(get_consensus(votes.values()).to_dict(), "Consensus")


if __name__ == "__main__":
    main()
