"""Tests for github_analytics.filters — repo parsing, filter validation, date ranges."""

from datetime import datetime, timezone

import pytest

from github_analytics.filters import (
    InvalidFilterError,
    date_range,
    parse_repo,
    validate_filter,
)

UTC = timezone.utc
# A Wednesday
NOW = datetime(2026, 3, 11, 15, 30, tzinfo=UTC)


# ── Repos ───────────────────────────────────────────────────────
@pytest.mark.parametrize(
    "value, expected",
    [
        ("psf/requests", ("psf", "requests")),
        ("  psf/requests  ", ("psf", "requests")),
        ("https://github.com/fastapi/fastapi", ("fastapi", "fastapi")),
        ("https://github.com/owner/repo/", ("owner", "repo")),
        ("https://github.com/owner/repo.git", ("owner", "repo")),
        ("some-org/my_repo.py", ("some-org", "my_repo.py")),
    ],
)
def test_parse_valid_repo(value: str, expected: tuple[str, str]):
    assert parse_repo(value) == expected


@pytest.mark.parametrize(
    "value",
    [None, "", "   ", "requests", "psf/", "/requests", "a/b/c", "https://gitlab.com/owner/repo"],
)
def test_parse_invalid_repo(value):
    with pytest.raises(ValueError):
        parse_repo(value)


# ── Filters ─────────────────────────────────────────────────────
@pytest.mark.parametrize(
    "value",
    ["today", "yesterday", "this-week", "last-week", "this-month", "month-01-2024", "month-12-2025"],
)
def test_valid_filters(value: str):
    assert validate_filter(value) == value


@pytest.mark.parametrize(
    "value",
    ["", None, "tomorrow", "all", "month-1-2024", "month-13-2024", "month-00-2024", "month-01-24", "TODAY"],
)
def test_invalid_filters(value):
    with pytest.raises(InvalidFilterError):
        validate_filter(value)


def test_all_only_where_allowed():
    assert validate_filter("all", allow_all=True) == "all"


def test_error_message_lists_accepted_values():
    with pytest.raises(InvalidFilterError) as exc_info:
        validate_filter("bogus")
    message = str(exc_info.value)
    for accepted in ("today", "yesterday", "this-week", "last-week", "this-month", "month-MM-YYYY"):
        assert accepted in message


def test_invalid_filter_is_a_value_error():
    assert issubclass(InvalidFilterError, ValueError)


# ── Date ranges ─────────────────────────────────────────────────
def _day(d: datetime) -> tuple[int, int, int]:
    return d.year, d.month, d.day


def test_today():
    start, end = date_range("today", NOW)
    assert start == datetime(2026, 3, 11, tzinfo=UTC)
    assert _day(end) == (2026, 3, 11)
    assert (end.hour, end.minute, end.second) == (23, 59, 59)


def test_yesterday():
    start, end = date_range("yesterday", NOW)
    assert start == datetime(2026, 3, 10, tzinfo=UTC)
    assert _day(end) == (2026, 3, 10)


def test_this_week_starts_monday():
    start, end = date_range("this-week", NOW)
    assert start == datetime(2026, 3, 9, tzinfo=UTC)
    assert _day(end) == (2026, 3, 11)


def test_this_week_on_sunday():
    start, _ = date_range("this-week", datetime(2026, 3, 15, 9, 0, tzinfo=UTC))
    assert start == datetime(2026, 3, 9, tzinfo=UTC)


def test_last_week():
    start, end = date_range("last-week", NOW)
    assert start == datetime(2026, 3, 2, tzinfo=UTC)
    assert _day(end) == (2026, 3, 8)


def test_this_month():
    start, end = date_range("this-month", NOW)
    assert start == datetime(2026, 3, 1, tzinfo=UTC)
    assert _day(end) == (2026, 3, 11)


def test_custom_month_covers_whole_month():
    start, end = date_range("month-02-2024", NOW)
    assert start == datetime(2024, 2, 1, tzinfo=UTC)
    assert _day(end) == (2024, 2, 29)
