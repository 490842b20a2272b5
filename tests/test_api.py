"""
API integration tests — all GitHub calls fully mocked.
No real HTTP traffic leaves this process.
"""

import pytest
import httpx
import respx
from fastapi.testclient import TestClient

from github_analytics.main import app, state
from github_analytics.settings import settings

API = "https://api.github.com"
COMMITS_URL = f"{API}/repos/psf/requests/commits"
ISSUES_URL = f"{API}/repos/psf/requests/issues"


@pytest.fixture(autouse=True)
def _reset_state(monkeypatch):
    """Reset shared state between tests so cache doesn't leak."""
    monkeypatch.setattr(settings, "redis_url", None)
    state.github_client = None
    state.cache = None
    state.coalescer = None
    state.analytics = None
    yield
    state.github_client = None
    state.cache = None
    state.coalescer = None
    state.analytics = None


# ── Mock Data ──────────────────────────────────────────────────
COMMITS = [
    {"sha": "a1", "author": {"login": "kennethreitz"}},
    {"sha": "a2", "author": {"login": "sigmavirus24"}},
    {"sha": "a3", "author": {"login": "kennethreitz"}},
]


def _mock_commits():
    return respx.get(COMMITS_URL).mock(
        return_value=httpx.Response(200, json=COMMITS, headers={"etag": '"c1"'})
    )


# ── Health ─────────────────────────────────────────────────────
def test_health():
    with TestClient(app) as client:
        resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "cache_backend": "memory", "inflight": 0}
    assert resp.headers["X-Request-Id"]


# ── Validation ─────────────────────────────────────────────────
def test_invalid_filter_lists_accepted_values():
    with TestClient(app) as client:
        resp = client.get("/api/github/commits", params={"repo": "psf/requests", "filter": "tomorrow"})

    assert resp.status_code == 400
    body = resp.json()
    assert body["status"] == "error"
    for accepted in ("today", "yesterday", "this-week", "last-week", "this-month", "month-MM-YYYY"):
        assert accepted in body["message"]


def test_missing_repo():
    with TestClient(app) as client:
        resp = client.get("/api/github/issues")

    assert resp.status_code == 400
    assert resp.json() == {
        "status": "error",
        "message": "Repository is required. Use ?repo=owner/name",
    }


def test_all_filter_only_for_languages():
    with TestClient(app) as client:
        resp = client.get("/api/github/commits", params={"repo": "psf/requests", "filter": "all"})
    assert resp.status_code == 400


# ── Happy paths ────────────────────────────────────────────────
@respx.mock
def test_commits_happy_path():
    _mock_commits()

    with TestClient(app) as client:
        resp = client.get("/api/github/commits", params={"repo": "psf/requests"})

    assert resp.status_code == 200
    assert resp.json() == {
        "success": True,
        "data": [
            {"username": "kennethreitz", "commits": 2, "total": 2},
            {"username": "sigmavirus24", "commits": 1, "total": 1},
        ],
        "repo": "psf/requests",
        "filter": "today",
    }


@respx.mock
def test_repo_url_is_accepted():
    _mock_commits()

    with TestClient(app) as client:
        resp = client.get(
            "/api/github/commits",
            params={"repo": "https://github.com/psf/requests", "filter": "this-week"},
        )

    assert resp.status_code == 200
    assert resp.json()["repo"] == "psf/requests"
    assert resp.json()["filter"] == "this-week"


@respx.mock
def test_cache_hit():
    """Second request for the same repo and filter must not reach GitHub."""
    route = _mock_commits()

    with TestClient(app) as client:
        resp1 = client.get("/api/github/commits", params={"repo": "psf/requests"})
        resp2 = client.get("/api/github/commits", params={"repo": "psf/requests"})

    assert resp1.status_code == resp2.status_code == 200
    assert resp2.json() == resp1.json()
    assert route.call_count == 1


@respx.mock
def test_refresh_revalidates_cached_entry():
    route = respx.get(COMMITS_URL).mock(
        side_effect=[
            httpx.Response(200, json=COMMITS, headers={"etag": '"c1"'}),
            httpx.Response(304),
        ]
    )

    with TestClient(app) as client:
        first = client.get("/api/github/commits", params={"repo": "psf/requests"})
        second = client.get("/api/github/commits", params={"repo": "psf/requests", "refresh": "true"})

    assert second.json() == first.json()
    assert route.call_count == 2
    assert route.calls.last.request.headers["if-none-match"] == '"c1"'


@respx.mock
def test_languages_default_to_all():
    respx.get(COMMITS_URL).mock(return_value=httpx.Response(200, json=[]))

    with TestClient(app) as client:
        resp = client.get("/api/github/languages", params={"repo": "psf/requests"})

    assert resp.status_code == 200
    assert resp.json()["filter"] == "all"
    assert resp.json()["data"] == []


@respx.mock
def test_rankings():
    _mock_commits()
    respx.get(ISSUES_URL).mock(return_value=httpx.Response(200, json=[]))

    with TestClient(app) as client:
        resp = client.get("/api/github/rankings", params={"repo": "psf/requests"})

    assert resp.status_code == 200
    ranks = [(r["rank"], r["username"], r["score"]) for r in resp.json()["data"]]
    assert ranks == [(1, "kennethreitz", 2), (2, "sigmavirus24", 1)]


# ── Upstream errors ────────────────────────────────────────────
@respx.mock
def test_repo_not_found():
    respx.get(f"{API}/repos/owner/nonexistent/commits").mock(
        return_value=httpx.Response(404, json={"message": "Not Found"})
    )

    with TestClient(app) as client:
        resp = client.get("/api/github/commits", params={"repo": "owner/nonexistent"})

    assert resp.status_code == 404
    data = resp.json()
    assert data["status"] == "error"
    assert "not found" in data["message"].lower()


@respx.mock
def test_rate_limited():
    respx.get(COMMITS_URL).mock(
        return_value=httpx.Response(
            429,
            json={"message": "rate limit exceeded"},
            headers={
                "x-ratelimit-remaining": "0",
                "x-ratelimit-reset": "1700000000",
            },
        )
    )

    with TestClient(app) as client:
        resp = client.get("/api/github/commits", params={"repo": "psf/requests"})

    assert resp.status_code == 429
    assert resp.json()["status"] == "error"


@respx.mock
def test_upstream_failure_is_bad_gateway():
    respx.get(COMMITS_URL).mock(return_value=httpx.Response(500))

    with TestClient(app) as client:
        resp = client.get("/api/github/commits", params={"repo": "psf/requests"})

    assert resp.status_code == 502
    assert resp.json()["status"] == "error"


# ── Cache endpoints ────────────────────────────────────────────
@respx.mock
def test_cache_check_and_invalidate():
    _mock_commits()

    with TestClient(app) as client:
        before = client.get("/api/github/cache-check", params={"repo": "psf/requests"}).json()
        client.get("/api/github/commits", params={"repo": "psf/requests"})
        after = client.get("/api/github/cache-check", params={"repo": "psf/requests"}).json()

        deleted = client.delete("/api/github/cache", params={"repo": "psf/requests"})
        cleared = client.get("/api/github/cache-check", params={"repo": "psf/requests"}).json()

    assert before["cached"] is False
    assert before["key"] == "github:commits:psf_requests:today"

    assert after["cached"] is True
    assert after["etag"] == '"c1"'
    assert after["expiresAt"] is not None

    assert deleted.status_code == 200
    assert deleted.json() == {"success": True, "deleted": 1, "repo": "psf/requests"}
    assert cleared["cached"] is False


@respx.mock
def test_has_changes():
    respx.get(ISSUES_URL).mock(
        side_effect=[
            httpx.Response(200, json=[], headers={"etag": '"i1"'}),
            httpx.Response(304),
        ]
    )

    with TestClient(app) as client:
        first = client.get("/api/github/has-changes", params={"repo": "psf/requests"})
        second = client.get("/api/github/has-changes", params={"repo": "psf/requests"})

    assert first.json() == {"success": True, "changed": True, "repo": "psf/requests"}
    assert second.json()["changed"] is False
