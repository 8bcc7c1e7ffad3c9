"""Sandbox session lifecycle: create, reconnect and tear down remote compute sessions.

Only a session's id is durable. A :class:`SandboxHandle` is the live, step-local
binding to that id; it is obtained by reconnecting inside a step and dropped when
the step ends. :class:`SandboxManager` is the only component that talks to the
compute provider.
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Protocol

from e2b import AsyncSandbox, CommandExitException

from .circuit_breaker import CircuitBreaker
from .config import Settings
from .errors import (
    CircuitOpenError,
    CouncilError,
    PermanentProviderError,
    SandboxNotFoundError,
    classify_provider_error,
    is_not_found_error,
    is_rate_limit_error,
    is_transient_error,
)
from .events import EventEmitter, EventType, event_bus

logger = logging.getLogger(__name__)

# Released ids remembered so a repeated release stays a no-op.
MAX_TRACKED_RELEASES = 4096

PersistSandboxId = Callable[[str], Awaitable[None]]


@dataclass(frozen=True)
class CommandResult:
    stdout: str
    stderr: str
    exit_code: int

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def to_dict(self) -> dict[str, object]:
        return {"stdout": self.stdout, "stderr": self.stderr, "exit_code": self.exit_code}


class ProviderSession(Protocol):
    """A live session object as returned by the compute provider."""

    sandbox_id: str

    async def run(self, command: str, *, timeout: float | None = None) -> CommandResult: ...

    async def read_file(self, path: str) -> str: ...


class SandboxProvider(Protocol):
    async def create(self, template: str, lifetime_seconds: int) -> ProviderSession: ...

    async def reconnect(self, sandbox_id: str) -> ProviderSession:
        """Raise :class:`SandboxNotFoundError` when the session no longer exists."""
        ...

    async def terminate(self, sandbox_id: str) -> None: ...


class SandboxReleasedError(CouncilError):
    """Raised when a handle is used after its session was released."""


class SandboxHandle:
    """Step-local handle bound to one sandbox id."""

    def __init__(self, session: ProviderSession) -> None:
        self._session = session
        self.id = session.sandbox_id
        self.released = False

    def _live(self) -> ProviderSession:
        if self.released:
            raise SandboxReleasedError(f"Sandbox {self.id} has been released")
        return self._session

    async def run(self, command: str, *, timeout: float | None = None) -> CommandResult:
        """Run a shell command. Never raises on non-zero exit; inspect ``exit_code``."""
        result = await self._live().run(command, timeout=timeout)
        return CommandResult(
            stdout=(result.stdout or "").strip(),
            stderr=(result.stderr or "").strip(),
            exit_code=result.exit_code,
        )

    async def read_file(self, path: str) -> str:
        return await self._live().read_file(path)

    def __repr__(self) -> str:
        return f"SandboxHandle(id={self.id!r}, released={self.released})"


class SandboxManager:
    """Acquire and release sandbox sessions for pipeline steps."""

    def __init__(
        self,
        provider: SandboxProvider,
        settings: Settings,
        *,
        breaker: CircuitBreaker | None = None,
        events: EventEmitter | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        max_tracked_releases: int = MAX_TRACKED_RELEASES,
    ) -> None:
        self._provider = provider
        self._settings = settings
        self._breaker = breaker or CircuitBreaker(
            threshold=settings.circuit_breaker_threshold,
            reset_timeout=settings.circuit_breaker_reset_seconds,
        )
        self._events = events or event_bus
        self._sleep = sleep
        self._max_tracked_releases = max_tracked_releases
        self._terminated: OrderedDict[str, None] = OrderedDict()

    async def acquire(
        self,
        existing_id: str | None = None,
        *,
        persist_id: PersistSandboxId | None = None,
    ) -> SandboxHandle:
        """Reconnect to ``existing_id`` or create a new session.

        A missing or expired session falls through to creation. Whenever a new
        session is created, ``persist_id`` is called once with its id so it becomes
        the session of record.
        """
        if existing_id:
            try:
                session = await self._provider.reconnect(existing_id)
            except Exception as exc:
                if not is_not_found_error(exc):
                    raise classify_provider_error(exc) from exc
                logger.warning(
                    "Sandbox %s not found (expired or reclaimed); creating a new one", existing_id
                )
            else:
                await self._events.publish(
                    EventType.SANDBOX_RECONNECTED,
                    f"Reconnected to sandbox {existing_id}",
                    data={"sandbox_id": existing_id},
                )
                return SandboxHandle(session)

        session = await self._create_with_retry()
        if persist_id is not None:
            await persist_id(session.sandbox_id)
        await self._events.publish(
            EventType.SANDBOX_CREATED,
            f"Created sandbox {session.sandbox_id}",
            data={"sandbox_id": session.sandbox_id, "replaced": existing_id},
        )
        return SandboxHandle(session)

    @asynccontextmanager
    async def session(
        self,
        sandbox_id: str | None,
        *,
        persist_id: PersistSandboxId | None = None,
    ) -> AsyncIterator[SandboxHandle]:
        """Step-scoped handle. The session itself stays alive; only the handle is dropped."""
        handle = await self.acquire(sandbox_id, persist_id=persist_id)
        try:
            yield handle
        finally:
            handle.released = True

    async def release(self, handle: SandboxHandle | str | None) -> None:
        """Terminate a session. Errors are logged and swallowed; repeated calls are no-ops."""
        if handle is None:
            return
        sandbox_id = handle if isinstance(handle, str) else handle.id
        if not isinstance(handle, str):
            handle.released = True
        if sandbox_id in self._terminated:
            return
        self._terminated[sandbox_id] = None
        while len(self._terminated) > self._max_tracked_releases:
            self._terminated.popitem(last=False)

        try:
            await self._provider.terminate(sandbox_id)
        except Exception as exc:
            logger.warning("Failed to terminate sandbox %s: %s", sandbox_id, exc)
            return
        await self._events.publish(
            EventType.SANDBOX_RELEASED,
            f"Released sandbox {sandbox_id}",
            data={"sandbox_id": sandbox_id},
        )

    async def validate_health(self, handle: SandboxHandle) -> bool:
        try:
            result = await handle.run("echo 'health_check'", timeout=5)
        except Exception as exc:
            logger.warning("Sandbox %s health check failed: %s", handle.id, exc)
            return False
        healthy = result.ok and "health_check" in result.stdout
        if not healthy:
            logger.warning("Sandbox %s health check returned unexpected output", handle.id)
        return healthy

    async def _create_with_retry(self) -> ProviderSession:
        max_retries = max(1, self._settings.sandbox_create_max_retries)
        template = self._settings.sandbox_template
        lifetime = self._settings.sandbox_timeout_seconds

        for attempt in range(1, max_retries + 1):
            try:
                return await self._breaker.call(
                    lambda: self._provider.create(template, lifetime)
                )
            except CircuitOpenError:
                raise
            except Exception as exc:
                error = classify_provider_error(exc)
                logger.warning(
                    "Sandbox create attempt %d/%d for template %s failed: %s",
                    attempt,
                    max_retries,
                    template,
                    exc,
                )
                if isinstance(error, PermanentProviderError):
                    raise error from exc
                if attempt >= max_retries:
                    raise error from exc
                await self._sleep(self._backoff_delay(attempt, exc))

        raise AssertionError("unreachable")

    def _backoff_delay(self, attempt: int, exc: BaseException) -> float:
        s = self._settings
        if is_rate_limit_error(exc):
            return s.sandbox_rate_limit_backoff_seconds
        if is_transient_error(exc):
            return min(s.sandbox_backoff_base_seconds * 2 ** (attempt - 1), s.sandbox_backoff_max_seconds)
        return min(2.0 * 2 ** (attempt - 1), 15.0)


# =============================================================================
# E2B provider
# =============================================================================


class E2BSession:
    """Adapts an ``e2b.AsyncSandbox`` to :class:`ProviderSession`."""

    def __init__(self, sandbox: AsyncSandbox) -> None:
        self._sandbox = sandbox
        self.sandbox_id = sandbox.sandbox_id

    async def run(self, command: str, *, timeout: float | None = None) -> CommandResult:
        try:
            result = await self._sandbox.commands.run(command, timeout=timeout or 60)
        except CommandExitException as exc:
            # e2b raises on non-zero exit; fold it back into a result.
            return CommandResult(stdout=exc.stdout, stderr=exc.stderr, exit_code=exc.exit_code)
        return CommandResult(stdout=result.stdout, stderr=result.stderr, exit_code=result.exit_code)

    async def read_file(self, path: str) -> str:
        return await self._sandbox.files.read(path)


class E2BSandboxProvider:
    """:class:`SandboxProvider` backed by the E2B SDK."""

    def __init__(self, api_key: str | None) -> None:
        self._api_key = api_key

    async def create(self, template: str, lifetime_seconds: int) -> E2BSession:
        try:
            sandbox = await AsyncSandbox.create(
                template=template, timeout=lifetime_seconds, api_key=self._api_key
            )
        except Exception as exc:
            raise classify_provider_error(exc) from exc
        return E2BSession(sandbox)

    async def reconnect(self, sandbox_id: str) -> E2BSession:
        try:
            sandbox = await AsyncSandbox.connect(sandbox_id, api_key=self._api_key)
        except Exception as exc:
            raise classify_provider_error(exc) from exc
        return E2BSession(sandbox)

    async def terminate(self, sandbox_id: str) -> None:
        try:
            killed = await AsyncSandbox.kill(sandbox_id, api_key=self._api_key)
        except Exception as exc:
            raise classify_provider_error(exc) from exc
        if not killed:
            raise SandboxNotFoundError(f"Sandbox {sandbox_id} was not running")
