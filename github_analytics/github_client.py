"""
Async GitHub REST API client.

Features:
- httpx.AsyncClient with configurable timeouts.
- Retries with exponential backoff on 5xx / network errors.
- ETag / If-None-Match conditional requests; 304 is returned, never raised.
- Proper 403 rate-limit handling (reads X-RateLimit-Reset header).
- Link-header pagination for commit and issue listings.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from github_analytics.settings import settings

logger = logging.getLogger("github_analytics.github_client")


# ── Custom exceptions ──────────────────────────────────────────
class GitHubError(Exception):
    """Base for GitHub-related errors."""


class RepoNotFoundError(GitHubError):
    """404 — repository doesn't exist or is private."""


class RateLimitError(GitHubError):
    """403/429 — rate limit exceeded."""

    def __init__(self, message: str, reset_timestamp: int | None = None):
        super().__init__(message)
        self.reset_timestamp = reset_timestamp


class UpstreamError(GitHubError):
    """5xx, network failure, or an unexpected status from GitHub."""


# ── Helpers ─────────────────────────────────────────────────────
def _rate_limit_reset(response: httpx.Response) -> int | None:
    """Extract X-RateLimit-Reset header (unix timestamp) if present."""
    val = response.headers.get("x-ratelimit-reset")
    if val:
        try:
            return int(val)
        except ValueError:
            pass
    return None


def _check_rate_limit(response: httpx.Response) -> None:
    """Raise RateLimitError if response indicates rate limiting."""
    if response.status_code in (403, 429):
        remaining = response.headers.get("x-ratelimit-remaining")
        # GitHub returns 403 with remaining=0 when rate-limited
        if response.status_code == 429 or remaining == "0":
            reset_ts = _rate_limit_reset(response)
            hint = " Try again later."
            if reset_ts:
                reset_dt = dt.datetime.fromtimestamp(reset_ts, tz=dt.timezone.utc)
                hint = f" Try again after {reset_dt.strftime('%Y-%m-%d %H:%M:%S UTC')}."

            token_hint = ""
            if not settings.github_token:
                token_hint = " Set GITHUB_TOKEN for higher limits."

            raise RateLimitError(
                f"GitHub rate limit hit.{hint}{token_hint}",
                reset_timestamp=reset_ts,
            )


def _iso(value: dt.datetime) -> str:
    return value.astimezone(dt.timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass
class GitHubResponse:
    status: int
    data: Any = None
    etag: str | None = None
    has_next: bool = False

    @property
    def not_modified(self) -> bool:
        return self.status == 304


# ── Client ──────────────────────────────────────────────────────
class GitHubClient:
    """Async GitHub REST API wrapper."""

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        headers: dict[str, str] = {
            "Accept": "application/vnd.github+json",
            "User-Agent": "github-analytics/1.0",
        }
        if settings.github_token:
            headers["Authorization"] = f"Bearer {settings.github_token}"

        self._client = client or httpx.AsyncClient(
            base_url=settings.github_api_base,
            headers=headers,
            timeout=httpx.Timeout(
                connect=settings.http_connect_timeout,
                read=settings.http_read_timeout,
                write=settings.http_read_timeout,
                pool=settings.http_read_timeout,
            ),
        )

    # ── Low-level request with retries ─────────────────────────
    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        etag: str | None = None,
    ) -> httpx.Response:
        """Fire an HTTP request with retry + backoff on transient failures."""
        extra_headers: dict[str, str] = {}
        if etag:
            extra_headers["If-None-Match"] = etag

        last_exc: Exception | None = None
        for attempt in range(1, settings.http_max_retries + 1):
            try:
                resp = await self._client.request(
                    method, path, params=params, headers=extra_headers
                )

                # 304 Not Modified: caller reuses its cached body
                if resp.status_code == 304:
                    return resp

                _check_rate_limit(resp)

                if resp.status_code == 404:
                    raise RepoNotFoundError(
                        f"Repository not found or private: {path}"
                    )

                # 5xx: retry
                if resp.status_code >= 500:
                    last_exc = UpstreamError(
                        f"GitHub returned {resp.status_code} for {path}"
                    )
                    await self._backoff(attempt)
                    continue

                if resp.status_code >= 400:
                    raise UpstreamError(
                        f"GitHub returned {resp.status_code} for {path}"
                    )

                return resp

            except GitHubError:
                raise
            except httpx.HTTPError as exc:  # network errors
                last_exc = exc
                logger.warning(
                    "GitHub request failed (attempt %d/%d): %s",
                    attempt, settings.http_max_retries, exc,
                )
                await self._backoff(attempt)

        raise UpstreamError(
            f"GitHub request failed after {settings.http_max_retries} retries"
        ) from last_exc

    @staticmethod
    async def _backoff(attempt: int) -> None:
        wait = settings.http_backoff_base * (2 ** (attempt - 1))
        await asyncio.sleep(wait)

    async def get_json(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        *,
        etag: str | None = None,
    ) -> GitHubResponse:
        """GET a JSON resource, optionally conditional on ``etag``."""
        resp = await self._request("GET", path, params=params, etag=etag)
        if resp.status_code == 304:
            return GitHubResponse(status=304, etag=etag)
        return GitHubResponse(
            status=resp.status_code,
            data=resp.json(),
            etag=resp.headers.get("etag"),
            has_next='rel="next"' in resp.headers.get("link", ""),
        )

    # ── High-level fetch methods ───────────────────────────────
    async def list_commits(
        self,
        owner: str,
        repo: str,
        *,
        since: dt.datetime | None = None,
        until: dt.datetime | None = None,
        page: int = 1,
        etag: str | None = None,
    ) -> GitHubResponse:
        params: dict[str, Any] = {"per_page": 100, "page": page}
        if since is not None:
            params["since"] = _iso(since)
        if until is not None:
            params["until"] = _iso(until)
        return await self.get_json(f"/repos/{owner}/{repo}/commits", params, etag=etag)

    async def get_commit(self, owner: str, repo: str, sha: str) -> dict:
        resp = await self.get_json(f"/repos/{owner}/{repo}/commits/{sha}")
        return resp.data

    async def list_issues(
        self,
        owner: str,
        repo: str,
        *,
        since: dt.datetime | None = None,
        page: int = 1,
        per_page: int = 100,
        etag: str | None = None,
    ) -> GitHubResponse:
        """List issues (and PRs, which GitHub mixes in) sorted by last update."""
        params: dict[str, Any] = {
            "state": "all",
            "sort": "updated",
            "direction": "desc",
            "per_page": per_page,
            "page": page,
        }
        if since is not None:
            params["since"] = _iso(since)
        return await self.get_json(f"/repos/{owner}/{repo}/issues", params, etag=etag)

    async def aclose(self) -> None:
        await self._client.aclose()
