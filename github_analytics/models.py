"""
Pydantic models for cache entries and API payloads.

Wire shape of a cached entry (camelCase, shared with entries written by
earlier deployments of the service):
  {"data": ..., "expiresAt": "<ISO-8601>", "timestamp": <epoch ms>, "etag": "..." | null}

API shapes:
  Success: {"success": true, "data": [...], "repo": "...", "filter": "..."}
  Error:   {"status": "error", "message": "..."}
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class CacheEntry(BaseModel):
    data: Any = None
    etag: str | None = None
    expires_at: datetime
    timestamp: datetime | None = None

    def is_valid(self, now: datetime) -> bool:
        """Closed-open validity window: valid strictly before ``expires_at``."""
        return now < self.expires_at

    def to_wire(self) -> dict[str, Any]:
        return {
            "data": self.data,
            "expiresAt": self.expires_at.isoformat(),
            "timestamp": int(self.timestamp.timestamp() * 1000) if self.timestamp else None,
            "etag": self.etag,
        }


class AnalyticsResponse(BaseModel):
    success: bool = True
    data: Any = Field(..., description="Aggregated analytics rows")
    repo: str
    filter: str


class CacheStatusResponse(BaseModel):
    success: bool = True
    key: str
    cached: bool
    expires_at: datetime | None = Field(None, serialization_alias="expiresAt")
    etag: str | None = None
    inflight: int = 0


class ChangesResponse(BaseModel):
    success: bool = True
    changed: bool
    repo: str


class InvalidateResponse(BaseModel):
    success: bool = True
    deleted: int
    repo: str


class ErrorResponse(BaseModel):
    status: str = "error"
    message: str
