"""
Cache-backed GitHub analytics.

``CachedFetcher`` composes the request coalescer with the cutover cache:

    coalesce(key) ──► cache hit?  ── yes ──► cached data
                          │ no
                          ▼
                upstream(If-None-Match: cached etag)
                   ├─ 304      → refresh entry, return cached data
                   ├─ 200      → store data + etag, return it
                   └─ error    → propagate, nothing written

``AnalyticsService`` builds the per-repository aggregates served to the
dashboard (commits, issues, languages, contributor ranking) on top of it.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter, defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable

from github_analytics.cache import GitHubCache
from github_analytics.coalescer import RequestCoalescer
from github_analytics.filters import ALL_FILTER, date_range
from github_analytics.github_client import GitHubClient, GitHubError, UpstreamError
from github_analytics.settings import settings

logger = logging.getLogger("github_analytics.analytics")


@dataclass
class UpstreamResult:
    data: Any = None
    etag: str | None = None
    not_modified: bool = False


Upstream = Callable[[str | None], Awaitable[UpstreamResult]]


class CachedFetcher:
    """Coalesced, cutover-cached, conditional-request-aware fetches."""

    def __init__(self, cache: GitHubCache, coalescer: RequestCoalescer) -> None:
        self.cache = cache
        self.coalescer = coalescer

    async def fetch(self, key: str, upstream: Upstream, *, force_refresh: bool = False) -> Any:
        """Return data for ``key``, calling ``upstream(etag)`` at most once per concurrent burst.

        ``force_refresh`` skips the cache-hit shortcut and revalidates the
        cached entry with a conditional request instead.
        """
        return await self.coalescer.coalesce(
            key, lambda: self._load(key, upstream, force_refresh)
        )

    async def _load(self, key: str, upstream: Upstream, force_refresh: bool) -> Any:
        cached = await self.cache.get(key)
        if cached is not None and not force_refresh:
            return cached.data

        result = await upstream(cached.etag if cached else None)

        if result.not_modified:
            if cached is None:
                raise UpstreamError(f"GitHub answered 304 for {key} but nothing is cached")
            await self.cache.refresh(key, cached.data, cached.etag)
            logger.info("Not modified, reused cached data for %s", key)
            return cached.data

        await self.cache.set(key, result.data, result.etag)
        return result.data


# ── File extension → language ──────────────────────────────────
LANGUAGE_MAP: dict[str, str] = {
    "js": "JavaScript", "jsx": "JavaScript",
    "ts": "TypeScript", "tsx": "TypeScript",
    "py": "Python", "java": "Java", "cpp": "C++", "c": "C", "cs": "C#",
    "php": "PHP", "rb": "Ruby", "go": "Go", "rs": "Rust", "swift": "Swift",
    "kt": "Kotlin", "scala": "Scala", "sh": "Shell", "bash": "Shell",
    "sql": "SQL", "html": "HTML", "css": "CSS", "scss": "SCSS", "sass": "SASS",
    "vue": "Vue", "json": "JSON", "xml": "XML", "yaml": "YAML", "yml": "YAML",
    "md": "Markdown", "dockerfile": "Dockerfile", "tf": "Terraform", "hcl": "Terraform",
}

# Issues count double in the contributor ranking.
ISSUE_WEIGHT = 2


def language_from_filename(filename: str | None) -> str | None:
    if not filename:
        return None
    ext = filename.rsplit(".", 1)[-1].lower()
    return LANGUAGE_MAP.get(ext)


def _login(item: dict) -> str | None:
    author = item.get("author") or item.get("committer")
    if author and author.get("login"):
        return author["login"].strip().lower()
    return None


def _parse_github_time(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class AnalyticsService:
    """Per-repository contributor analytics served from the cache."""

    def __init__(
        self,
        client: GitHubClient,
        fetcher: CachedFetcher,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.client = client
        self.fetcher = fetcher
        self.cache = fetcher.cache
        self._clock = clock or (lambda: datetime.now().astimezone())

    # ── Commits ────────────────────────────────────────────────
    async def commits_by_user(
        self, owner: str, repo: str, filter_name: str = "today", *, force_refresh: bool = False,
    ) -> list[dict]:
        key = self.cache.build_key("commits", f"{owner}/{repo}", filter_name)
        start, end = date_range(filter_name, self._clock())

        async def upstream(etag: str | None) -> UpstreamResult:
            counts: Counter[str] = Counter()
            first_etag = None
            for page in range(1, settings.commits_max_pages + 1):
                resp = await self.client.list_commits(
                    owner, repo, since=start, until=end, page=page,
                    etag=etag if page == 1 else None,
                )
                if resp.not_modified:
                    return UpstreamResult(not_modified=True)
                if page == 1:
                    first_etag = resp.etag
                if not resp.data:
                    break
                for commit in resp.data:
                    login = _login(commit)
                    if login:
                        counts[login] += 1
                if not resp.has_next:
                    break

            rows = [
                {"username": user, "commits": n, "total": n}
                for user, n in counts.items()
            ]
            rows.sort(key=lambda r: (-r["commits"], r["username"]))
            return UpstreamResult(data=rows, etag=first_etag)

        return await self.fetcher.fetch(key, upstream, force_refresh=force_refresh)

    # ── Issues ─────────────────────────────────────────────────
    async def issues_by_user(
        self, owner: str, repo: str, filter_name: str = "today", *, force_refresh: bool = False,
    ) -> list[dict]:
        key = self.cache.build_key("issues", f"{owner}/{repo}", filter_name)
        start, end = date_range(filter_name, self._clock())

        async def upstream(etag: str | None) -> UpstreamResult:
            counts: Counter[str] = Counter()
            first_etag = None
            for page in range(1, settings.issues_max_pages + 1):
                resp = await self.client.list_issues(
                    owner, repo, since=start, page=page,
                    etag=etag if page == 1 else None,
                )
                if resp.not_modified:
                    return UpstreamResult(not_modified=True)
                if page == 1:
                    first_etag = resp.etag
                if not resp.data:
                    break
                for issue in resp.data:
                    if "pull_request" in issue:
                        continue
                    created = _parse_github_time(issue["created_at"])
                    if not start <= created <= end:
                        continue
                    for assignee in issue.get("assignees") or []:
                        login = (assignee.get("login") or "").strip().lower()
                        if login:
                            counts[login] += 1
                if not resp.has_next:
                    break

            rows = [{"username": user, "issues": n} for user, n in counts.items()]
            rows.sort(key=lambda r: (-r["issues"], r["username"]))
            return UpstreamResult(data=rows, etag=first_etag)

        return await self.fetcher.fetch(key, upstream, force_refresh=force_refresh)

    # ── Languages ──────────────────────────────────────────────
    async def languages_by_user(
        self, owner: str, repo: str, filter_name: str = ALL_FILTER, *, force_refresh: bool = False,
    ) -> list[dict]:
        key = self.cache.build_key("languages", f"{owner}/{repo}", filter_name)
        if filter_name == ALL_FILTER:
            since = until = None
            max_pages = settings.languages_max_pages
        else:
            since, until = date_range(filter_name, self._clock())
            max_pages = settings.commits_max_pages

        async def upstream(etag: str | None) -> UpstreamResult:
            per_user: dict[str, Counter[str]] = defaultdict(Counter)
            first_etag = None
            for page in range(1, max_pages + 1):
                resp = await self.client.list_commits(
                    owner, repo, since=since, until=until, page=page,
                    etag=etag if page == 1 else None,
                )
                if resp.not_modified:
                    return UpstreamResult(not_modified=True)
                if page == 1:
                    first_etag = resp.etag
                commits = resp.data or []
                if not commits:
                    break

                # Commit details cost one request each, so only a sample is inspected.
                sample = commits[: settings.languages_commits_per_page]
                await self._count_languages(owner, repo, sample, per_user)

                if len(sample) < len(commits) or not resp.has_next:
                    break

            rows = []
            for user, langs in per_user.items():
                total = sum(langs.values())
                top = [
                    {
                        "language": lang,
                        "count": n,
                        "percentage": round(n / total * 100) if total else 0,
                    }
                    for lang, n in sorted(langs.items(), key=lambda x: x[1], reverse=True)[:5]
                ]
                rows.append({"username": user, "topLanguages": top, "totalFiles": total})
            rows.sort(key=lambda r: (-r["totalFiles"], r["username"]))
            return UpstreamResult(data=rows, etag=first_etag)

        return await self.fetcher.fetch(key, upstream, force_refresh=force_refresh)

    async def _count_languages(
        self, owner: str, repo: str, commits: list[dict], per_user: dict[str, Counter[str]],
    ) -> None:
        batch_size = settings.languages_batch_size
        for i in range(0, len(commits), batch_size):
            batch = commits[i : i + batch_size]
            details = await asyncio.gather(
                *(self.client.get_commit(owner, repo, c["sha"]) for c in batch),
                return_exceptions=True,
            )
            for commit, detail in zip(batch, details):
                if isinstance(detail, BaseException):
                    logger.warning("Skipping commit %s: %s", commit.get("sha"), detail)
                    continue
                login = _login(commit)
                if not login:
                    continue
                for f in detail.get("files") or []:
                    lang = language_from_filename(f.get("filename"))
                    if lang:
                        per_user[login][lang] += 1

    # ── Contributor ranking ────────────────────────────────────
    async def contributor_ranking(
        self, owner: str, repo: str, filter_name: str = "today", *, force_refresh: bool = False,
    ) -> list[dict]:
        key = self.cache.build_key("rankings", f"{owner}/{repo}", filter_name)

        async def upstream(etag: str | None) -> UpstreamResult:
            commits, issues = await asyncio.gather(
                self.commits_by_user(owner, repo, filter_name, force_refresh=force_refresh),
                self.issues_by_user(owner, repo, filter_name, force_refresh=force_refresh),
            )
            scores: dict[str, dict] = defaultdict(lambda: {"commits": 0, "issues": 0})
            for row in commits:
                scores[row["username"]]["commits"] = row["commits"]
            for row in issues:
                scores[row["username"]]["issues"] = row["issues"]

            ranked = sorted(
                (
                    {
                        "username": user,
                        **s,
                        "score": s["commits"] + ISSUE_WEIGHT * s["issues"],
                    }
                    for user, s in scores.items()
                ),
                key=lambda r: (-r["score"], r["username"]),
            )
            for rank, row in enumerate(ranked, start=1):
                row["rank"] = rank
            return UpstreamResult(data=ranked)

        return await self.fetcher.fetch(key, upstream, force_refresh=force_refresh)

    # ── Change detection ───────────────────────────────────────
    async def repo_changed(self, owner: str, repo: str) -> bool:
        """Conditional probe of the issues listing; 304s are free against the rate limit.

        Any failure reports "changed" so callers fall back to a refresh.
        """
        key = self.cache.build_key("changes", f"{owner}/{repo}")
        etag = await self.cache.get_etag(key)
        try:
            resp = await self.client.list_issues(owner, repo, per_page=1, etag=etag)
        except GitHubError as exc:
            logger.warning("Change check failed for %s/%s: %s", owner, repo, exc)
            return True

        if resp.not_modified:
            await self.cache.refresh(key, None, etag)
            return False
        if resp.etag:
            await self.cache.set(key, None, resp.etag)
        return True
