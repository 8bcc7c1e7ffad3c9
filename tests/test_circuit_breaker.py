import pytest

from council.circuit_breaker import CircuitBreaker, CircuitState
from council.errors import CircuitOpenError


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


async def _ok() -> str:
    return "ok"


async def _boom() -> str:
    raise RuntimeError("boom")


@pytest.mark.asyncio
async def test_opens_after_threshold_and_rejects() -> None:
    clock = _Clock()
    breaker = CircuitBreaker(threshold=2, reset_timeout=10, clock=clock)

    for _ in range(2):
        with pytest.raises(RuntimeError):
            await breaker.call(_boom)

    assert breaker.state == CircuitState.OPEN
    with pytest.raises(CircuitOpenError):
        await breaker.call(_ok)


@pytest.mark.asyncio
async def test_half_open_success_closes() -> None:
    clock = _Clock()
    breaker = CircuitBreaker(threshold=1, reset_timeout=10, clock=clock)
    with pytest.raises(RuntimeError):
        await breaker.call(_boom)

    clock.now = 11
    assert await breaker.call(_ok) == "ok"
    assert breaker.state == CircuitState.CLOSED
    assert breaker.failures == 0


@pytest.mark.asyncio
async def test_half_open_failure_reopens() -> None:
    clock = _Clock()
    breaker = CircuitBreaker(threshold=1, reset_timeout=10, clock=clock)
    with pytest.raises(RuntimeError):
        await breaker.call(_boom)

    clock.now = 11
    with pytest.raises(RuntimeError):
        await breaker.call(_boom)
    assert breaker.state == CircuitState.OPEN


@pytest.mark.asyncio
async def test_success_decrements_failures() -> None:
    breaker = CircuitBreaker(threshold=3)
    with pytest.raises(RuntimeError):
        await breaker.call(_boom)
    with pytest.raises(RuntimeError):
        await breaker.call(_boom)

    await breaker.call(_ok)

    assert breaker.failures == 1
    assert breaker.state == CircuitState.CLOSED
