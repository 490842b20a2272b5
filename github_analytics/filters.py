"""
Query parameter parsing and validation for analytics routes.

Accepted repo forms:
  owner/repo
  https://github.com/owner/repo   (optionally with trailing "/" or ".git")

Accepted period filters:
  today, yesterday, this-week, last-week, this-month, month-MM-YYYY
  ("all" is additionally accepted where a route allows it)

Anything else raises ValueError with a human-readable message.
"""

from __future__ import annotations

import calendar
import re
from datetime import datetime, time, timedelta

VALID_FILTERS = ("today", "yesterday", "this-week", "last-week", "this-month")
ALL_FILTER = "all"

_MONTH_FILTER_RE = re.compile(r"^month-(?P<month>\d{2})-(?P<year>\d{4})$")

_REPO_RE = re.compile(
    r"^(?:https?://github\.com/)?"
    r"(?P<owner>[A-Za-z0-9\-_.]+)/"
    r"(?P<repo>[A-Za-z0-9\-_.]+?)"
    r"(?:\.git)?/?$"
)


class InvalidFilterError(ValueError):
    """Period filter outside the accepted set."""


def parse_repo(value: str | None) -> tuple[str, str]:
    """Return (owner, repo) from ``owner/repo`` or a GitHub URL."""
    if not value or not value.strip():
        raise ValueError("Repository is required. Use ?repo=owner/name")

    value = value.strip()
    match = _REPO_RE.match(value)
    if not match:
        raise ValueError(
            f"Invalid repository: '{value}'. "
            "Expected format: owner/name or https://github.com/owner/name"
        )
    return match.group("owner"), match.group("repo")


def validate_filter(value: str | None, *, allow_all: bool = False) -> str:
    """Return ``value`` unchanged if it is an accepted filter, else raise."""
    accepted = ((ALL_FILTER,) if allow_all else ()) + VALID_FILTERS
    if value in accepted:
        return value
    if value and _MONTH_FILTER_RE.match(value):
        month = int(value[6:8])
        if 1 <= month <= 12:
            return value
    raise InvalidFilterError(
        f"Invalid filter. Must be one of: {', '.join(accepted)}, "
        "or a custom month format (month-MM-YYYY)"
    )


def date_range(filter_name: str, now: datetime | None = None) -> tuple[datetime, datetime]:
    """Return the inclusive ``(start, end)`` datetimes for a period filter.

    Weeks start on Monday. Ranges ending "now" run to the end of today.
    """
    now = now or datetime.now().astimezone()
    start_of_today = datetime.combine(now.date(), time.min, tzinfo=now.tzinfo)
    end_of_today = datetime.combine(now.date(), time.max, tzinfo=now.tzinfo)

    match = _MONTH_FILTER_RE.match(filter_name or "")
    if match:
        year, month = int(match.group("year")), int(match.group("month"))
        last_day = calendar.monthrange(year, month)[1]
        start = datetime(year, month, 1, tzinfo=now.tzinfo)
        end = datetime.combine(start.date().replace(day=last_day), time.max, tzinfo=now.tzinfo)
        return start, end

    if filter_name == "yesterday":
        start = start_of_today - timedelta(days=1)
        return start, end_of_today - timedelta(days=1)

    if filter_name == "this-week":
        return start_of_today - timedelta(days=now.weekday()), end_of_today

    if filter_name == "last-week":
        start = start_of_today - timedelta(days=now.weekday() + 7)
        end = datetime.combine((start + timedelta(days=6)).date(), time.max, tzinfo=now.tzinfo)
        return start, end

    if filter_name == "this-month":
        return start_of_today.replace(day=1), end_of_today

    return start_of_today, end_of_today
