"""
Daily cutover TTL helpers.

Every cached analytics entry expires at the same wall-clock instant
(``settings.cache_cutover_hour``, 18:00 by default) so the whole cache resets
together once a day regardless of when each entry was written.

Rules:
  now <  today's cutover  →  expires today at the cutover
  now >= today's cutover  →  expires tomorrow at the cutover

Local time is whatever the process runs in. The UTC offset of ``now`` is
used for both instants, so on a DST transition day the boundary may be off
by one hour.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta

from github_analytics.settings import settings


def _local_now(now: datetime | None) -> datetime:
    if now is None:
        return datetime.now().astimezone()
    if now.tzinfo is None:
        return now.astimezone()
    return now


def _today_cutover(now: datetime, hour: int | None) -> datetime:
    if hour is None:
        hour = settings.cache_cutover_hour
    return now.replace(hour=hour, minute=0, second=0, microsecond=0)


def next_cutover(now: datetime | None = None, hour: int | None = None) -> datetime:
    """Return the next cutover instant strictly after ``now``."""
    now = _local_now(now)
    cutover = _today_cutover(now, hour)
    if now < cutover:
        return cutover
    return cutover + timedelta(days=1)


def ttl_until_cutover(now: datetime | None = None, hour: int | None = None) -> int:
    """Whole seconds (rounded up) until the next cutover. Never below 1."""
    now = _local_now(now)
    delta = next_cutover(now, hour) - now
    return max(1, math.ceil(delta.total_seconds()))


def cutover_window(now: datetime | None = None, hour: int | None = None) -> tuple[datetime, int]:
    """Return ``(expires_at, ttl_seconds)`` computed from a single clock sample."""
    now = _local_now(now)
    return next_cutover(now, hour), ttl_until_cutover(now, hour)


def is_past_cutover(now: datetime | None = None, hour: int | None = None) -> bool:
    """True once today's cutover has been reached."""
    now = _local_now(now)
    return now >= _today_cutover(now, hour)
