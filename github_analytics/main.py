"""
FastAPI application — GitHub contributor analytics API.

Endpoints:
    GET    /health                     → {"status": "ok", ...}
    GET    /api/github/commits         → AnalyticsResponse
    GET    /api/github/issues          → AnalyticsResponse
    GET    /api/github/languages       → AnalyticsResponse
    GET    /api/github/rankings        → AnalyticsResponse
    GET    /api/github/cache-check     → CacheStatusResponse
    GET    /api/github/has-changes     → ChangesResponse
    DELETE /api/github/cache           → InvalidateResponse
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import Awaitable, Callable

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from github_analytics.analytics import AnalyticsService, CachedFetcher
from github_analytics.cache import GitHubCache
from github_analytics.coalescer import RequestCoalescer
from github_analytics.filters import ALL_FILTER, parse_repo, validate_filter
from github_analytics.github_client import (
    GitHubClient,
    RateLimitError,
    RepoNotFoundError,
    UpstreamError,
)
from github_analytics.logging_config import new_request_id, request_id_ctx, setup_logging
from github_analytics.models import (
    AnalyticsResponse,
    CacheStatusResponse,
    ChangesResponse,
    ErrorResponse,
    InvalidateResponse,
)
from github_analytics.settings import settings
from github_analytics.stores import FallbackStore, build_store

logger = logging.getLogger("github_analytics.main")


# ── Shared state ───────────────────────────────────────────────
class _State:
    """Mutable container so lifespan and endpoints share instances."""
    github_client: GitHubClient | None = None
    cache: GitHubCache | None = None
    coalescer: RequestCoalescer | None = None
    analytics: AnalyticsService | None = None


state = _State()


def _ensure_state() -> tuple[AnalyticsService, GitHubCache, RequestCoalescer]:
    """Lazily initialise client, cache and coalescer for TestClient compatibility."""
    if state.github_client is None:
        state.github_client = GitHubClient()
    if state.cache is None:
        state.cache = GitHubCache(build_store(settings))
    if state.coalescer is None:
        state.coalescer = RequestCoalescer()
    if state.analytics is None:
        state.analytics = AnalyticsService(
            state.github_client, CachedFetcher(state.cache, state.coalescer)
        )
    return state.analytics, state.cache, state.coalescer


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage client and cache lifetime."""
    setup_logging(settings.log_level)

    _ensure_state()
    store = state.cache.store
    if isinstance(store, FallbackStore):
        await store.connect()

    logger.info(
        "Application started (github_token=%s, cache_backend=%s, cutover_hour=%d)",
        bool(settings.github_token),
        store.name,
        settings.cache_cutover_hour,
    )
    if not settings.github_token:
        logger.warning(
            "GITHUB_TOKEN is not set — unauthenticated requests are limited to 60/hour."
        )
    yield

    if state.github_client:
        await state.github_client.aclose()
    if isinstance(store, FallbackStore):
        await store.aclose()
    logger.info("Application shutdown")


app = FastAPI(
    title="GitHub Contributor Analytics",
    version="1.0.0",
    lifespan=lifespan,
)

# ── CORS ───────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Middleware: request_id + timing ────────────────────────────
@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    rid = new_request_id()
    request_id_ctx.set(rid)
    t0 = time.perf_counter()
    response = await call_next(request)
    elapsed = round((time.perf_counter() - t0) * 1000, 1)
    response.headers["X-Request-Id"] = rid
    logger.info(
        "%s %s → %s (%.1f ms)",
        request.method, request.url.path, response.status_code, elapsed,
    )
    return response


# ── Error helper ───────────────────────────────────────────────
def _error_response(status: int, message: str) -> JSONResponse:
    """Return {"status": "error", "message": "..."}"""
    body = ErrorResponse(message=message)
    return JSONResponse(status_code=status, content=body.model_dump())


async def _serve(
    resource: str,
    repo: str | None,
    filter_name: str | None,
    refresh: bool,
    *,
    allow_all: bool = False,
) -> AnalyticsResponse | JSONResponse:
    analytics, _, _ = _ensure_state()

    # 1. Validate before touching the cache
    try:
        owner, name = parse_repo(repo)
        filter_name = validate_filter(filter_name, allow_all=allow_all)
    except ValueError as exc:
        return _error_response(400, str(exc))

    handlers: dict[str, Callable[..., Awaitable[list[dict]]]] = {
        "commits": analytics.commits_by_user,
        "issues": analytics.issues_by_user,
        "languages": analytics.languages_by_user,
        "rankings": analytics.contributor_ranking,
    }

    # 2. Coalesced, cached fetch
    try:
        data = await handlers[resource](owner, name, filter_name, force_refresh=refresh)
    except RepoNotFoundError as exc:
        return _error_response(404, str(exc))
    except RateLimitError as exc:
        return _error_response(429, str(exc))
    except UpstreamError as exc:
        return _error_response(502, str(exc))
    except Exception as exc:
        logger.exception("Unexpected error fetching %s for %s/%s", resource, owner, name)
        return _error_response(502, f"Failed to fetch {resource}: {exc}")

    return AnalyticsResponse(data=data, repo=f"{owner}/{name}", filter=filter_name)


# ── Endpoints ──────────────────────────────────────────────────
@app.get("/health")
async def health():
    _, cache, coalescer = _ensure_state()
    return {
        "status": "ok",
        "cache_backend": cache.store.name,
        "inflight": coalescer.inflight_count(),
    }


@app.get("/api/github/commits", response_model=AnalyticsResponse)
async def commits(repo: str | None = None, filter: str = "today", refresh: bool = False):
    return await _serve("commits", repo, filter, refresh)


@app.get("/api/github/issues", response_model=AnalyticsResponse)
async def issues(repo: str | None = None, filter: str = "today", refresh: bool = False):
    return await _serve("issues", repo, filter, refresh)


@app.get("/api/github/languages", response_model=AnalyticsResponse)
async def languages(repo: str | None = None, filter: str = ALL_FILTER, refresh: bool = False):
    return await _serve("languages", repo, filter, refresh, allow_all=True)


@app.get("/api/github/rankings", response_model=AnalyticsResponse)
async def rankings(repo: str | None = None, filter: str = "today", refresh: bool = False):
    return await _serve("rankings", repo, filter, refresh)


@app.get("/api/github/cache-check", response_model=CacheStatusResponse)
async def cache_check(
    repo: str | None = None, resource: str = "commits", filter: str = "today",
):
    _, cache, coalescer = _ensure_state()
    try:
        owner, name = parse_repo(repo)
        filter_name = validate_filter(filter, allow_all=resource == "languages")
        key = cache.build_key(resource, f"{owner}/{name}", filter_name)
    except ValueError as exc:
        return _error_response(400, str(exc))

    entry = await cache.get(key)
    return CacheStatusResponse(
        key=key,
        cached=entry is not None,
        expires_at=entry.expires_at if entry else None,
        etag=entry.etag if entry else None,
        inflight=coalescer.inflight_count(),
    )


@app.get("/api/github/has-changes", response_model=ChangesResponse)
async def has_changes(repo: str | None = None):
    analytics, _, _ = _ensure_state()
    try:
        owner, name = parse_repo(repo)
    except ValueError as exc:
        return _error_response(400, str(exc))

    changed = await analytics.repo_changed(owner, name)
    return ChangesResponse(changed=changed, repo=f"{owner}/{name}")


@app.delete("/api/github/cache", response_model=InvalidateResponse)
async def invalidate(repo: str | None = None):
    _, cache, _ = _ensure_state()
    try:
        owner, name = parse_repo(repo)
    except ValueError as exc:
        return _error_response(400, str(exc))

    deleted = await cache.invalidate_repo(f"{owner}/{name}")
    return InvalidateResponse(deleted=deleted, repo=f"{owner}/{name}")


def run() -> None:
    uvicorn.run(
        "github_analytics.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
    )


if __name__ == "__main__":
    run()
