"""
Key/value stores behind the GitHub response cache.

- ``MemoryStore``   process-local dict with per-key expiry.
- ``RedisStore``    shared Redis instance (``redis.asyncio``).
- ``FallbackStore`` Redis first, in-memory when Redis is down or erroring.

Values are JSON strings. Every store expires keys after ``ttl`` seconds on
its own, independently of the expiry recorded inside the cached entry.
"""

from __future__ import annotations

import asyncio
import fnmatch
import logging
import time
from typing import Any, Protocol

import redis.asyncio as aioredis

from github_analytics.settings import Settings

logger = logging.getLogger("github_analytics.stores")


class KeyValueStore(Protocol):
    name: str

    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any, ttl: int) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def delete_pattern(self, pattern: str) -> int: ...


# ── In-memory ──────────────────────────────────────────────────
class MemoryStore:
    """Async-safe in-memory store with per-entry TTL."""

    name = "memory"

    def __init__(self) -> None:
        self._store: dict[str, tuple[float, Any]] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Any | None:
        async with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            deadline, value = entry
            if time.monotonic() >= deadline:
                del self._store[key]
                return None
            return value

    async def set(self, key: str, value: Any, ttl: int) -> None:
        async with self._lock:
            self._store[key] = (time.monotonic() + ttl, value)

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._store.pop(key, None)

    async def delete_pattern(self, pattern: str) -> int:
        async with self._lock:
            matched = [k for k in self._store if fnmatch.fnmatchcase(k, pattern)]
            for k in matched:
                del self._store[k]
            return len(matched)

    async def clear(self) -> None:
        async with self._lock:
            self._store.clear()

    def __len__(self) -> int:
        return len(self._store)


# ── Redis ──────────────────────────────────────────────────────
class RedisStore:
    """Thin async wrapper over a Redis client. Errors propagate to the caller."""

    name = "redis"

    def __init__(self, url: str, *, socket_timeout: float = 5.0, client: Any = None) -> None:
        self._url = url
        self._client = client or aioredis.from_url(
            url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
            retry_on_timeout=True,
        )

    async def ping(self) -> None:
        await self._client.ping()

    async def get(self, key: str) -> Any | None:
        return await self._client.get(key)

    async def set(self, key: str, value: Any, ttl: int) -> None:
        await self._client.set(key, value, ex=ttl)

    async def delete(self, key: str) -> None:
        await self._client.delete(key)

    async def delete_pattern(self, pattern: str) -> int:
        count = 0
        async for key in self._client.scan_iter(match=pattern, count=100):
            await self._client.delete(key)
            count += 1
        return count

    async def aclose(self) -> None:
        await self._client.aclose()


# ── Redis with in-memory fallback ──────────────────────────────
class FallbackStore:
    """Use ``primary`` while it is reachable, ``fallback`` otherwise.

    A failed primary call degrades that call to the fallback and marks the
    primary as unavailable. Once ``retry_interval`` seconds have passed since
    the last attempt, the next call pings the primary again and switches back
    to it when the ping succeeds.
    """

    def __init__(
        self,
        primary: RedisStore,
        fallback: MemoryStore | None = None,
        *,
        retry_interval: float = 30.0,
    ) -> None:
        self.primary = primary
        self.fallback = fallback or MemoryStore()
        self.retry_interval = retry_interval
        self.connected = False
        self._last_attempt: float | None = None
        self._closed = False

    @property
    def name(self) -> str:
        return self.primary.name if self.connected else self.fallback.name

    async def connect(self) -> bool:
        self._last_attempt = time.monotonic()
        try:
            await self.primary.ping()
        except Exception as exc:
            logger.warning("Redis not available, falling back to in-memory cache: %s", exc)
            self.connected = False
        else:
            logger.info("Redis connected and ready")
            self.connected = True
        return self.connected

    async def _use_primary(self) -> bool:
        if self.connected:
            return True
        if self._closed:
            return False
        if (
            self._last_attempt is not None
            and time.monotonic() - self._last_attempt < self.retry_interval
        ):
            return False
        return await self.connect()

    def _degrade(self, op: str, key: str, exc: Exception) -> None:
        logger.warning("Redis %s failed for %s, using in-memory cache: %s", op, key, exc)
        self.connected = False
        self._last_attempt = time.monotonic()

    async def get(self, key: str) -> Any | None:
        if await self._use_primary():
            try:
                return await self.primary.get(key)
            except Exception as exc:
                self._degrade("GET", key, exc)
        return await self.fallback.get(key)

    async def set(self, key: str, value: Any, ttl: int) -> None:
        if await self._use_primary():
            try:
                await self.primary.set(key, value, ttl)
                return
            except Exception as exc:
                self._degrade("SET", key, exc)
        await self.fallback.set(key, value, ttl)

    async def delete(self, key: str) -> None:
        if await self._use_primary():
            try:
                await self.primary.delete(key)
            except Exception as exc:
                self._degrade("DEL", key, exc)
        await self.fallback.delete(key)

    async def delete_pattern(self, pattern: str) -> int:
        count = 0
        if await self._use_primary():
            try:
                count = await self.primary.delete_pattern(pattern)
            except Exception as exc:
                self._degrade("SCAN", pattern, exc)
        return count + await self.fallback.delete_pattern(pattern)

    async def aclose(self) -> None:
        self._closed = True
        try:
            await self.primary.aclose()
        except Exception as exc:
            logger.warning("Error disconnecting Redis: %s", exc)
        self.connected = False


def build_store(cfg: Settings) -> MemoryStore | FallbackStore:
    """Redis with in-memory fallback when ``REDIS_URL`` is set, memory otherwise."""
    if not cfg.redis_url:
        logger.info("Redis cache disabled (REDIS_URL not set), using in-memory cache")
        return MemoryStore()
    return FallbackStore(
        RedisStore(cfg.redis_url.strip(), socket_timeout=cfg.redis_socket_timeout),
        retry_interval=cfg.redis_retry_interval,
    )
