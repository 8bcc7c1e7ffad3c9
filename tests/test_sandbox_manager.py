import pytest

from council.circuit_breaker import CircuitBreaker
from council.errors import (
    CircuitOpenError,
    PermanentProviderError,
    TransientProviderError,
)
from council.events import EventType
from council.sandbox import SandboxManager, SandboxReleasedError

from .fakes import FakeProvider


@pytest.mark.asyncio
async def test_acquire_creates_when_no_existing_id(sandboxes, provider) -> None:
    persisted: list[str] = []

    async def persist(sandbox_id: str) -> None:
        persisted.append(sandbox_id)

    handle = await sandboxes.acquire(persist_id=persist)

    assert handle.id == "sbx-1"
    assert provider.created == ["sbx-1"]
    assert persisted == ["sbx-1"]


@pytest.mark.asyncio
async def test_acquire_reconnects_without_persisting(sandboxes, provider) -> None:
    provider.live.add("sbx-existing")
    persisted: list[str] = []

    async def persist(sandbox_id: str) -> None:
        persisted.append(sandbox_id)

    handle = await sandboxes.acquire("sbx-existing", persist_id=persist)

    assert handle.id == "sbx-existing"
    assert provider.created == []
    assert persisted == []


@pytest.mark.asyncio
async def test_missing_session_creates_once_and_persists_once(sandboxes, provider, store) -> None:
    store.add_issue("issue-1", sandbox_id="sbx-expired")

    async def persist(sandbox_id: str) -> None:
        await store.update_issue_sandbox("issue-1", sandbox_id)

    handle = await sandboxes.acquire("sbx-expired", persist_id=persist)

    assert handle.id == "sbx-1"
    assert provider.created == ["sbx-1"]
    assert store.sandbox_updates == [("issue-1", "sbx-1")]
    assert store.issues["issue-1"].sandbox_id == "sbx-1"


@pytest.mark.asyncio
async def test_reconnect_transient_error_propagates(sandboxes, provider) -> None:
    provider.reconnect_error = RuntimeError("connection reset by peer")

    with pytest.raises(TransientProviderError):
        await sandboxes.acquire("sbx-9")
    assert provider.created == []


@pytest.mark.asyncio
async def test_create_retries_transient_errors_with_backoff(sandboxes, provider, sleep) -> None:
    provider.create_errors = [RuntimeError("503 Service Unavailable"), RuntimeError("request timed out")]

    handle = await sandboxes.acquire()

    assert handle.id == "sbx-1"
    assert len(sleep.delays) == 2


@pytest.mark.asyncio
async def test_create_fails_fast_on_permanent_error(sandboxes, provider, sleep) -> None:
    provider.create_errors = [RuntimeError("401 Unauthorized: invalid API key")]

    with pytest.raises(PermanentProviderError):
        await sandboxes.acquire()
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_create_gives_up_after_retry_ceiling(sandboxes, provider, sleep) -> None:
    provider.create_errors = [RuntimeError("ETIMEDOUT")] * 5

    with pytest.raises(TransientProviderError):
        await sandboxes.acquire()
    assert len(sleep.delays) == 2
    assert len(provider.create_errors) == 2


@pytest.mark.asyncio
async def test_rate_limit_uses_long_backoff(sandboxes, provider, sleep, settings) -> None:
    provider.create_errors = [RuntimeError("429 Too Many Requests")]

    await sandboxes.acquire()

    assert sleep.delays == [settings.sandbox_rate_limit_backoff_seconds]


@pytest.mark.asyncio
async def test_open_circuit_rejects_without_calling_provider(provider, settings, events, sleep) -> None:
    breaker = CircuitBreaker(threshold=1, reset_timeout=60, clock=lambda: 0.0)
    manager = SandboxManager(provider, settings, breaker=breaker, events=events, sleep=sleep)
    provider.create_errors = [RuntimeError("401 unauthorized")]
    with pytest.raises(PermanentProviderError):
        await manager.acquire()

    with pytest.raises(CircuitOpenError):
        await manager.acquire()
    assert provider.created == []


@pytest.mark.asyncio
async def test_release_is_idempotent_and_swallows_errors(sandboxes, provider) -> None:
    handle = await sandboxes.acquire()
    provider.terminate_error = RuntimeError("provider down")

    await sandboxes.release(handle)
    await sandboxes.release(handle)
    await sandboxes.release(handle.id)
    await sandboxes.release(None)

    assert provider.terminated == ["sbx-1"]
    with pytest.raises(SandboxReleasedError):
        await handle.run("echo hi")


@pytest.mark.asyncio
async def test_session_scope_drops_handle_but_keeps_sandbox(sandboxes, provider) -> None:
    provider.live.add("sbx-7")

    async with sandboxes.session("sbx-7") as handle:
        await handle.run("echo hi")

    assert handle.released
    assert provider.terminated == []
    assert "sbx-7" in provider.live


@pytest.mark.asyncio
async def test_events_emitted_for_lifecycle(provider, settings, events, sleep) -> None:
    seen: list[EventType] = []
    events.on_event(lambda event: seen.append(event.type))
    manager = SandboxManager(provider, settings, events=events, sleep=sleep)

    handle = await manager.acquire()
    await manager.release(handle)

    assert seen == [EventType.SANDBOX_CREATED, EventType.SANDBOX_RELEASED]


@pytest.mark.asyncio
async def test_validate_health(sandboxes, provider) -> None:
    from council.sandbox import CommandResult

    handle = await sandboxes.acquire()
    provider.responses["health_check"] = CommandResult(stdout="health_check", stderr="", exit_code=0)
    assert await sandboxes.validate_health(handle) is True

    provider.responses["health_check"] = CommandResult(stdout="", stderr="gone", exit_code=1)
    assert await sandboxes.validate_health(handle) is False


@pytest.mark.asyncio
async def test_validate_health_never_raises() -> None:
    provider = FakeProvider()
    from council.config import Settings

    manager = SandboxManager(provider, Settings(_env_file=None))
    handle = await manager.acquire()
    handle.released = True
    assert await manager.validate_health(handle) is False


@pytest.mark.asyncio
async def test_released_id_memory_is_bounded(provider, settings, events, sleep) -> None:
    manager = SandboxManager(provider, settings, events=events, sleep=sleep, max_tracked_releases=2)

    for sandbox_id in ("sbx-a", "sbx-b", "sbx-c"):
        await manager.release(sandbox_id)
    await manager.release("sbx-c")
    await manager.release("sbx-b")

    assert provider.terminated == ["sbx-a", "sbx-b", "sbx-c"]
    assert len(manager._terminated) == 2

    # The oldest id has been forgotten; releasing it again reaches the provider.
    await manager.release("sbx-a")
    assert provider.terminated[-1] == "sbx-a"
