"""
Centralised application settings loaded from environment variables.
Uses pydantic-settings so every value can be overridden via env vars or a .env file.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration."""

    # ── GitHub ──────────────────────────────────────────────
    github_token: str | None = None
    github_api_base: str = "https://api.github.com"

    # ── HTTP client ─────────────────────────────────────────
    http_connect_timeout: float = 5.0
    http_read_timeout: float = 10.0
    http_max_retries: int = 3
    http_backoff_base: float = 0.5

    # ── Upstream paging limits ──────────────────────────────
    commits_max_pages: int = 10
    languages_max_pages: int = 20
    languages_commits_per_page: int = 15
    languages_batch_size: int = 5
    issues_max_pages: int = 10

    # ── Cache ───────────────────────────────────────────────
    redis_url: str | None = None
    redis_socket_timeout: float = 5.0
    redis_retry_interval: float = 30.0
    cache_namespace: str = "github"
    cache_cutover_hour: int = 18
    cache_legacy_ttl_seconds: int = 600

    # ── Server ──────────────────────────────────────────────
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "info"

    model_config = {"env_prefix": "", "env_file": ".env", "env_file_encoding": "utf-8"}


# Singleton used across the app
settings = Settings()
