import pytest

from council.errors import (
    PermanentProviderError,
    SandboxNotFoundError,
    StepFailedError,
    TransientProviderError,
    classify_provider_error,
    is_rate_limit_error,
    is_schema_missing_error,
    missing_table_name,
)
from council.failures import should_requeue


@pytest.mark.parametrize(
    ("message", "expected"),
    [
        ("Sandbox abc not found", SandboxNotFoundError),
        ("404 page", SandboxNotFoundError),
        ("401 Unauthorized", PermanentProviderError),
        ("quota exceeded for team", PermanentProviderError),
        ("ECONNRESET", TransientProviderError),
        ("something odd happened", TransientProviderError),
    ],
)
def test_classify_provider_error(message: str, expected: type) -> None:
    assert type(classify_provider_error(RuntimeError(message))) is expected


def test_permanent_wins_over_transient_markers() -> None:
    assert isinstance(classify_provider_error(RuntimeError("403 forbidden after timeout")), PermanentProviderError)


def test_classification_follows_cause_chain() -> None:
    try:
        try:
            raise RuntimeError("401 unauthorized")
        except RuntimeError as inner:
            raise ValueError("sandbox call failed") from inner
    except ValueError as outer:
        assert isinstance(classify_provider_error(outer), PermanentProviderError)


def test_rate_limit_detection() -> None:
    assert is_rate_limit_error(RuntimeError("429 Too Many Requests"))
    assert not is_rate_limit_error(RuntimeError("401 unauthorized"))


def test_should_requeue() -> None:
    assert should_requeue(StepFailedError("clone-repository", "boom")) is True
    assert should_requeue(StepFailedError("load-issue", "gone", requeue=False)) is False
    assert should_requeue(PermanentProviderError("invalid api key")) is False
    assert should_requeue(SandboxNotFoundError("expired")) is True
    assert should_requeue(RuntimeError("anything")) is True


def test_missing_table_detection() -> None:
    exc = RuntimeError('relation "tasks" does not exist')
    assert missing_table_name(exc) == "tasks"
    assert is_schema_missing_error(exc)
    assert not is_schema_missing_error(RuntimeError("deadlock detected"))
