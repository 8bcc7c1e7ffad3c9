"""Circuit breaker guarding calls to the sandbox provider."""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import TypeVar

from .errors import CircuitOpenError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(StrEnum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitBreaker:
    """CLOSED passes calls through; OPEN rejects them until ``reset_timeout`` elapses;
    HALF_OPEN lets one trial call decide whether to close again.
    """

    def __init__(
        self,
        *,
        threshold: int = 5,
        reset_timeout: float = 60.0,
        name: str = "sandbox",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.threshold = threshold
        self.reset_timeout = reset_timeout
        self.name = name
        self._clock = clock
        self.failures = 0
        self.last_failure_time = 0.0
        self._state = CircuitState.CLOSED

    @property
    def state(self) -> CircuitState:
        return self._state

    async def call(self, fn: Callable[[], Awaitable[T]]) -> T:
        if self._state == CircuitState.OPEN:
            elapsed = self._clock() - self.last_failure_time
            if elapsed > self.reset_timeout:
                logger.info("[%s] circuit HALF_OPEN, testing provider recovery", self.name)
                self._state = CircuitState.HALF_OPEN
            else:
                remaining = max(0.0, self.reset_timeout - elapsed)
                raise CircuitOpenError(
                    f"Circuit breaker {self.name} is OPEN; retry in {remaining:.0f}s"
                )

        try:
            result = await fn()
        except Exception:
            self._on_failure()
            raise
        self._on_success()
        return result

    def reset(self) -> None:
        self.failures = 0
        self.last_failure_time = 0.0
        self._state = CircuitState.CLOSED

    def _on_success(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            logger.info("[%s] provider recovered, circuit CLOSED", self.name)
            self.reset()
        elif self.failures > 0:
            self.failures -= 1

    def _on_failure(self) -> None:
        self.failures += 1
        self.last_failure_time = self._clock()

        if self._state == CircuitState.HALF_OPEN:
            logger.error("[%s] recovery test failed, circuit OPEN", self.name)
            self._state = CircuitState.OPEN
        elif self.failures >= self.threshold:
            logger.error("[%s] circuit OPEN after %d failures", self.name, self.failures)
            self._state = CircuitState.OPEN
        else:
            logger.warning("[%s] failure %d/%d", self.name, self.failures, self.threshold)
