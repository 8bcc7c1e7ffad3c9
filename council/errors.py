"""Error types and helpers for the council orchestrator."""

from __future__ import annotations

import re

import click


class CouncilError(Exception):
    """Base class for orchestrator errors."""


class ProviderError(CouncilError):
    """Raised when an external provider (sandbox, VCS host) call fails."""


class TransientProviderError(ProviderError):
    """A provider failure worth retrying: network blips, 5xx, rate limits."""


class PermanentProviderError(ProviderError):
    """A provider failure that retrying cannot fix: auth, quota, not found."""


class SandboxNotFoundError(PermanentProviderError):
    """The sandbox session no longer exists (expired, reclaimed or killed)."""


class CircuitOpenError(TransientProviderError):
    """Raised when the circuit breaker refuses a call."""


class PathValidationError(CouncilError, ValueError):
    """Raised when a sandbox file path escapes the working directory."""


class QueueFullError(CouncilError):
    """Raised when a Redis stream reaches capacity."""


class StepFailedError(CouncilError):
    """A step-fatal condition. ``requeue`` tells the failure handler what to do next."""

    def __init__(self, step: str, message: str, *, requeue: bool = True) -> None:
        super().__init__(message)
        self.step = step
        self.requeue = requeue


class SchemaNotInitializedError(click.ClickException):
    """Raised when the database schema/migrations have not been applied."""


_TRANSIENT_MARKERS = (
    "timeout",
    "timed out",
    "connection reset",
    "econnreset",
    "etimedout",
    "502",
    "503",
    "504",
)
_RATE_LIMIT_MARKERS = (
    "rate limit",
    "too many requests",
    "service unavailable",
    "internal server error",
    "429",
    "500",
)
_PERMANENT_MARKERS = (
    "authentication",
    "unauthorized",
    "forbidden",
    "401",
    "403",
    "quota",
    "not found",
    "not exist",
    "404",
)
_NOT_FOUND_MARKERS = ("not found", "not exist", "404")

_PG_MISSING_RELATION_RE = re.compile(r'relation "(?P<table>[^"]+)" does not exist', re.IGNORECASE)
_SQLITE_MISSING_TABLE_RE = re.compile(r"no such table:\s*(?P<table>[A-Za-z0-9_]+)", re.IGNORECASE)


def _unwrap_exception_chain(exc: BaseException) -> list[BaseException]:
    chain: list[BaseException] = []
    current: BaseException | None = exc
    while current is not None and current not in chain:
        chain.append(current)
        current = current.__cause__ or current.__context__
    return chain


def _message(exc: BaseException) -> str:
    return " ".join(str(e) for e in _unwrap_exception_chain(exc)).lower()


def is_permanent_error(exc: BaseException) -> bool:
    if isinstance(exc, PermanentProviderError):
        return True
    if isinstance(exc, TransientProviderError):
        return False
    message = _message(exc)
    return any(marker in message for marker in _PERMANENT_MARKERS)


def is_not_found_error(exc: BaseException) -> bool:
    if isinstance(exc, SandboxNotFoundError):
        return True
    message = _message(exc)
    return any(marker in message for marker in _NOT_FOUND_MARKERS)


def is_transient_error(exc: BaseException) -> bool:
    if isinstance(exc, TransientProviderError):
        return True
    if is_permanent_error(exc):
        return False
    message = _message(exc)
    return any(marker in message for marker in _TRANSIENT_MARKERS)


def is_rate_limit_error(exc: BaseException) -> bool:
    if is_permanent_error(exc):
        return False
    message = _message(exc)
    return any(marker in message for marker in _RATE_LIMIT_MARKERS)


def classify_provider_error(exc: BaseException) -> ProviderError:
    """Wrap a raw SDK/HTTP exception into the provider error taxonomy.

    Permanent markers win over transient ones, so "404 ... timeout" is permanent.
    Anything unrecognised is treated as transient and left to the retry ceiling.
    """
    if isinstance(exc, ProviderError):
        return exc
    if is_not_found_error(exc):
        return SandboxNotFoundError(str(exc))
    if is_permanent_error(exc):
        return PermanentProviderError(str(exc))
    return TransientProviderError(str(exc))


def missing_table_name(exc: BaseException) -> str | None:
    """Best-effort extraction of the missing table name from a DB exception."""
    for e in _unwrap_exception_chain(exc):
        message = str(e)
        match = _PG_MISSING_RELATION_RE.search(message) or _SQLITE_MISSING_TABLE_RE.search(message)
        if match:
            return match.group("table")
    return None


def is_schema_missing_error(exc: BaseException) -> bool:
    """Return True if the exception looks like a missing-table / missing-schema error."""
    if missing_table_name(exc):
        return True

    # Fallback for drivers that don't format errors consistently.
    for e in _unwrap_exception_chain(exc):
        message = str(e).lower()
        if "undefinedtableerror" in message:
            return True
        if "does not exist" in message and "relation" in message:
            return True
    return False


def schema_not_initialized_message(exc: BaseException) -> str:
    table = missing_table_name(exc)
    table_hint = f" (missing table `{table}`)" if table else ""

    lines: list[str] = [
        f"Database schema is not initialized{table_hint}.",
        "Run: `uv run alembic upgrade head`",
    ]
    return "\n".join(lines)
