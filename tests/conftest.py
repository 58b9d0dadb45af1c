"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
Environment variables are set before any import that loads settings so no
developer .env file or real Redis server is picked up.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["APP_ENV"] = "testing"
os.environ["STORE_BACKEND"] = "memory"
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("APP_RATE_LIMIT_ENABLED", "true")
os.environ.setdefault("APP_RATE_LIMIT_REQUESTS", "100")
os.environ.setdefault("APP_RATE_LIMIT_WINDOW_SECONDS", "60")

import threading

import pytest

from quotagate.adapters.bucket_store.base import AbstractBucketStore, ConsumeResult
from quotagate.core import rate_limit
from quotagate.core.errors import StoreUnavailableError
from quotagate.services.events import AbstractEventSink, AdmissionEvent


class FakeTime:
    """Deterministic clock used to test window and expiry logic."""

    def __init__(self, start: float = 1_000_020.0) -> None:
        self.current = start

    def time(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


class FailingStore(AbstractBucketStore):
    """Store whose every call fails as if the backend were down."""

    backend_name = "failing"

    def __init__(self) -> None:
        self.calls = 0

    def consume(self, key: str, *, limit: int, ttl_seconds: int) -> ConsumeResult:
        self.calls += 1
        raise StoreUnavailableError(code="store_unavailable", message="store is down")

    def ping(self) -> bool:
        raise StoreUnavailableError(code="store_unavailable", message="store is down")


class RecordingSink(AbstractEventSink):
    """Collects emitted admission events in memory."""

    def __init__(self) -> None:
        self.events: list[AdmissionEvent] = []
        self._lock = threading.Lock()

    def emit(self, event: AdmissionEvent) -> None:
        with self._lock:
            self.events.append(event)


@pytest.fixture
def fake_time() -> FakeTime:
    return FakeTime()


@pytest.fixture
def failing_store() -> FailingStore:
    return FailingStore()


@pytest.fixture
def recording_sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture(autouse=True)
def _fresh_admission_engine():
    """Each test starts with an empty process-wide engine and store."""
    rate_limit.reset_admission_engine()
    yield
    rate_limit.reset_admission_engine()


@pytest.fixture
def install_engine(monkeypatch):
    """Install a prebuilt engine as the process-wide engine."""

    def _install(engine) -> None:
        monkeypatch.setattr(rate_limit, "_cached", (rate_limit._current_engine_config(), engine))

    return _install
