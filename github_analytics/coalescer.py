"""
Request coalescing (cache stampede prevention).

When a cache entry expires and many dashboard users ask for the same data at
once, only the first caller starts the upstream fetch. Everyone else awaits
the same future and receives the same result or the same exception.

Usage:
    coalescer = RequestCoalescer()
    data = await coalescer.coalesce(cache_key, lambda: fetch_from_github())

Single event loop only: there is no suspension point between the registry
lookup and the insert, so no lock is needed. Nothing is shared across
processes.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, TypeVar

logger = logging.getLogger("github_analytics.coalescer")

T = TypeVar("T")


class RequestCoalescer:
    """Deduplicate concurrent fetches by key."""

    def __init__(self) -> None:
        self._inflight: dict[str, asyncio.Future[Any]] = {}

    def coalesce(self, key: str, factory: Callable[[], Awaitable[T]]) -> asyncio.Future[T]:
        """Return the pending future for ``key``, starting ``factory`` if there is none.

        Must be called from a running event loop. Each caller gets its own
        shield over the shared task: cancelling one caller leaves the fetch
        running for the others.
        """
        pending = self._inflight.get(key)
        if pending is not None:
            logger.debug("Coalescing request for %s", key)
            return asyncio.shield(pending)

        future = asyncio.ensure_future(factory())
        self._inflight[key] = future
        # Registered before any awaiter, so the key is gone by the time they resume.
        future.add_done_callback(lambda done: self._forget(key, done))
        logger.debug("Started upstream fetch for %s", key)
        return asyncio.shield(future)

    def _forget(self, key: str, future: asyncio.Future[Any]) -> None:
        if self._inflight.get(key) is future:
            del self._inflight[key]

    def inflight_count(self) -> int:
        return len(self._inflight)

    def inflight_keys(self) -> list[str]:
        return list(self._inflight)
