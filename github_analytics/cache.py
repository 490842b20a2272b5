"""
GitHub API response cache with a daily cutover expiry.

Key strategy
------------
  github:<resource>:<owner>_<repo>[:<extra>...]
  e.g. github:commits:psf_requests:this-week

Every write expires at the next cutover (see ``ttl.py``), both inside the
entry (``expiresAt``) and at the store level, so the store reclaims the key
at the same boundary the read path enforces.

Reads accept every payload shape earlier deployments wrote:
  1. a raw JSON string
  2. a wrapper ``{"data": <entry>, "timestamp": ..., "etag": ...}``
  3. the entry itself
Entries without ``expiresAt`` fall back to ``timestamp + ttlSeconds``.

Caching is best-effort: no method of ``GitHubCache`` raises on store or
payload errors. Reads degrade to a miss, writes to a no-op.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from github_analytics.models import CacheEntry
from github_analytics.settings import settings
from github_analytics.stores import KeyValueStore
from github_analytics.ttl import cutover_window, next_cutover

logger = logging.getLogger("github_analytics.cache")

_EXPIRY_FIELDS = ("expiresAt", "_expiresAt")
_ENTRY_MARKERS = _EXPIRY_FIELDS + ("timestamp",)


# ── Payload shape parsing ──────────────────────────────────────
def _decode_json(raw: Any) -> Any:
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8")
    if isinstance(raw, str):
        return json.loads(raw)
    return raw


def _unwrap(payload: dict) -> tuple[dict, str | None]:
    """Return ``(entry, outer_etag)`` for wrapped payloads, ``(payload, None)`` otherwise.

    A wrapper carries no expiry of its own and holds a complete entry
    (``data`` plus an expiry or timestamp field) under ``data``.
    """
    if any(f in payload for f in _EXPIRY_FIELDS):
        return payload, None
    inner = payload.get("data")
    if isinstance(inner, dict) and "data" in inner and any(m in inner for m in _ENTRY_MARKERS):
        return inner, payload.get("etag")
    return payload, None


def _parse_instant(value: Any) -> datetime:
    """Accept epoch millis or an ISO-8601 string; naive values are UTC."""
    if isinstance(value, bool):
        raise ValueError(f"Not a timestamp: {value!r}")
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    raise ValueError(f"Not a timestamp: {value!r}")


def parse_entry(
    raw: Any, *, now: datetime, legacy_ttl: int, cutover_hour: int | None = None,
) -> CacheEntry:
    """Normalize a stored payload into a ``CacheEntry``.

    Raises ``ValueError`` (or ``json.JSONDecodeError``) for payloads that
    match none of the known shapes.
    """
    payload = _decode_json(raw)
    if not isinstance(payload, dict):
        raise ValueError(f"Unexpected cache payload type: {type(payload).__name__}")

    entry, outer_etag = _unwrap(payload)
    data = entry["data"] if "data" in entry else entry
    etag = entry.get("etag") or outer_etag or None

    timestamp = None
    if entry.get("timestamp") is not None:
        timestamp = _parse_instant(entry["timestamp"])

    expires_raw = entry.get("expiresAt") or entry.get("_expiresAt")
    if expires_raw:
        expires_at = _parse_instant(expires_raw)
    elif timestamp is not None:
        ttl_seconds = entry.get("ttlSeconds") or legacy_ttl
        expires_at = timestamp + timedelta(seconds=ttl_seconds)
    else:
        # No temporal fields at all: trust the store-level expiry.
        expires_at = next_cutover(now, cutover_hour)

    return CacheEntry(data=data, etag=etag, expires_at=expires_at, timestamp=timestamp)


# ── Cache facade ───────────────────────────────────────────────
class GitHubCache:
    """Get/set/delete of GitHub responses, expiring at the daily cutover."""

    def __init__(
        self,
        store: KeyValueStore,
        *,
        namespace: str | None = None,
        clock: Callable[[], datetime] | None = None,
        cutover_hour: int | None = None,
        legacy_ttl: int | None = None,
    ) -> None:
        self.store = store
        self.namespace = namespace or settings.cache_namespace
        self._clock = clock or (lambda: datetime.now().astimezone())
        self.cutover_hour = cutover_hour
        self.legacy_ttl = legacy_ttl or settings.cache_legacy_ttl_seconds

    def now(self) -> datetime:
        return self._clock()

    def build_key(self, resource_type: str, repo_full_name: str, *extras: Any) -> str:
        """Build ``<namespace>:<resource>:<owner_repo>[:<extra>...]``.

        Falsy extras (``None``, ``""``, ``0``, ``False``) are skipped, never
        rendered as empty segments.
        """
        if not resource_type:
            raise ValueError("resource_type must not be empty.")
        if not repo_full_name:
            raise ValueError("repo_full_name must not be empty.")
        parts = [self.namespace, resource_type, repo_full_name.replace("/", "_")]
        parts.extend(str(extra) for extra in extras if extra)
        return ":".join(parts)

    def repo_patterns(self, repo_full_name: str) -> tuple[str, str]:
        """Glob patterns matching every key of one repository, with or without extras."""
        repo = repo_full_name.replace("/", "_")
        return f"{self.namespace}:*:{repo}", f"{self.namespace}:*:{repo}:*"

    async def get(self, key: str) -> CacheEntry | None:
        try:
            raw = await self.store.get(key)
        except Exception as exc:
            logger.warning("Cache read failed for %s: %s", key, exc)
            return None
        if raw is None:
            logger.debug("Cache MISS %s", key)
            return None

        now = self.now()
        try:
            entry = parse_entry(
                raw, now=now, legacy_ttl=self.legacy_ttl, cutover_hour=self.cutover_hour,
            )
            valid = entry.is_valid(now)
        except Exception as exc:
            logger.warning("Discarding unreadable cache entry %s: %s", key, exc)
            return None

        if not valid:
            logger.debug("Cache EXPIRED %s (expired at %s)", key, entry.expires_at.isoformat())
            return None
        logger.debug("Cache HIT %s (expires at %s)", key, entry.expires_at.isoformat())
        return entry

    async def set(self, key: str, data: Any, etag: str | None = None) -> None:
        now = self.now()
        expires_at, ttl = cutover_window(now, self.cutover_hour)
        entry = CacheEntry(data=data, etag=etag or None, expires_at=expires_at, timestamp=now)
        try:
            payload = json.dumps(entry.to_wire())
            await self.store.set(key, payload, ttl)
        except Exception as exc:
            logger.warning("Cache write failed for %s: %s", key, exc)
            return
        logger.info("Cache SET %s (expires at %s, TTL %ds)", key, expires_at.isoformat(), ttl)

    async def refresh(self, key: str, data: Any, etag: str | None = None) -> None:
        """Rewrite an entry unchanged to push its expiry to the next cutover."""
        await self.set(key, data, etag)
        logger.debug("Cache REFRESHED %s", key)

    async def get_etag(self, key: str) -> str | None:
        entry = await self.get(key)
        return entry.etag if entry else None

    async def delete(self, key: str) -> None:
        try:
            await self.store.delete(key)
        except Exception as exc:
            logger.warning("Cache delete failed for %s: %s", key, exc)
            return
        logger.debug("Cache DELETE %s", key)

    async def invalidate_repo(self, repo_full_name: str) -> int:
        """Delete every cached resource of one repository. Returns the count."""
        count = 0
        for pattern in self.repo_patterns(repo_full_name):
            try:
                count += await self.store.delete_pattern(pattern)
            except Exception as exc:
                logger.warning("Cache invalidation failed for %s: %s", pattern, exc)
        logger.info("Cleared %d cache entries for %s", count, repo_full_name)
        return count
