"""Shared test fixtures and configuration for pytest."""

import pytest

from council.config import Settings
from council.events import EventEmitter
from council.failures import FailureHandler
from council.queue import TaskQueue
from council.sandbox import SandboxManager

from .fakes import FakeProvider, FakeSignal, FakeStore, RecordingSleep


@pytest.fixture
def settings() -> Settings:
    return Settings(
        github_automation_token=None,
        sandbox_create_max_retries=3,
        circuit_breaker_threshold=5,
        _env_file=None,
    )


@pytest.fixture
def events() -> EventEmitter:
    return EventEmitter()


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def sandboxes(provider: FakeProvider, settings: Settings, events: EventEmitter, sleep: RecordingSleep) -> SandboxManager:
    return SandboxManager(provider, settings, events=events, sleep=sleep)


@pytest.fixture
def failures(store: FakeStore, events: EventEmitter) -> FailureHandler:
    return FailureHandler(store, events=events)


@pytest.fixture
def signal() -> FakeSignal:
    return FakeSignal()


@pytest.fixture
def queue(store: FakeStore, signal: FakeSignal, events: EventEmitter) -> TaskQueue:
    return TaskQueue(store, signal, events=events)
