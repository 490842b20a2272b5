"""Shared fixtures: a controllable clock and a cache over an in-memory store."""

from datetime import datetime, timedelta, timezone

import pytest

from github_analytics.cache import GitHubCache
from github_analytics.coalescer import RequestCoalescer
from github_analytics.settings import settings
from github_analytics.stores import MemoryStore

UTC = timezone.utc


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 10, 10, 0, 0, tzinfo=UTC))


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def cache(store, clock) -> GitHubCache:
    return GitHubCache(store, clock=clock, cutover_hour=18)


@pytest.fixture
def coalescer() -> RequestCoalescer:
    return RequestCoalescer()


@pytest.fixture(autouse=True)
def _no_backoff(monkeypatch):
    """Retries in the GitHub client must not sleep during tests."""
    monkeypatch.setattr(settings, "http_backoff_base", 0.0)
