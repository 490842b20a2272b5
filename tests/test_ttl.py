"""Tests for github_analytics.ttl — daily cutover boundary math."""

from datetime import datetime, timedelta, timezone

import pytest

from github_analytics.ttl import cutover_window, is_past_cutover, next_cutover, ttl_until_cutover

UTC = timezone.utc


def at(hour: int, minute: int = 0, second: int = 0, micro: int = 0) -> datetime:
    return datetime(2026, 3, 10, hour, minute, second, micro, tzinfo=UTC)


# ── ttl_until_cutover ──────────────────────────────────────────
@pytest.mark.parametrize(
    "now, expected",
    [
        (at(17, 59, 30), 30),
        (at(18, 0, 0), 24 * 3600),
        (at(18, 0, 1), 24 * 3600 - 1),
        (at(0, 0, 0), 18 * 3600),
        (at(23, 59, 59), 18 * 3600 + 1),
        (at(17, 59, 59, 500_000), 1),
        (at(17, 59, 58, 1), 2),
    ],
)
def test_ttl_until_cutover(now: datetime, expected: int):
    assert ttl_until_cutover(now, hour=18) == expected


def test_ttl_is_never_zero_just_before_cutover():
    assert ttl_until_cutover(at(17, 59, 59, 999_999), hour=18) == 1


def test_ttl_respects_custom_hour():
    assert ttl_until_cutover(at(8, 0, 0), hour=9) == 3600


# ── next_cutover ───────────────────────────────────────────────
def test_next_cutover_before_boundary_is_today():
    assert next_cutover(at(9, 15), hour=18) == at(18)


def test_next_cutover_at_boundary_is_tomorrow():
    assert next_cutover(at(18), hour=18) == at(18) + timedelta(days=1)


def test_next_cutover_after_boundary_is_tomorrow():
    assert next_cutover(at(21, 30), hour=18) == at(18) + timedelta(days=1)


def test_next_cutover_rolls_over_month_end():
    now = datetime(2026, 1, 31, 19, 0, tzinfo=UTC)
    assert next_cutover(now, hour=18) == datetime(2026, 2, 1, 18, 0, tzinfo=UTC)


def test_next_cutover_keeps_timezone_of_now():
    tz = timezone(timedelta(hours=5, minutes=30))
    now = datetime(2026, 3, 10, 12, 0, tzinfo=tz)
    result = next_cutover(now, hour=18)
    assert result.tzinfo == tz
    assert (result.hour, result.minute) == (18, 0)


def test_naive_now_is_treated_as_local_time():
    result = next_cutover(datetime(2026, 3, 10, 12, 0), hour=18)
    assert result.tzinfo is not None
    assert result.hour == 18


def test_defaults_to_current_time():
    ttl = ttl_until_cutover()
    assert 1 <= ttl <= 24 * 3600
    assert next_cutover() > datetime.now().astimezone()


# ── consistency ────────────────────────────────────────────────
@pytest.mark.parametrize("now", [at(0), at(12, 34, 56, 789), at(18), at(23, 0)])
def test_window_is_consistent(now: datetime):
    expires_at, ttl = cutover_window(now, hour=18)
    assert expires_at == next_cutover(now, hour=18)
    assert ttl == ttl_until_cutover(now, hour=18)
    assert timedelta(seconds=ttl - 1) < expires_at - now <= timedelta(seconds=ttl)


# ── is_past_cutover ────────────────────────────────────────────
@pytest.mark.parametrize(
    "now, expected",
    [
        (at(17, 59, 59, 999_999), False),
        (at(18), True),
        (at(23, 59), True),
        (at(0), False),
    ],
)
def test_is_past_cutover(now: datetime, expected: bool):
    assert is_past_cutover(now, hour=18) is expected
