"""Search request/response schemas."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from saveit.models.bookmark import BookmarkStatus, BookmarkType
from saveit.models.tag import TagInfo

MatchType = Literal["tag", "vector", "combined"]

ID_PATTERN = r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$"


class SpecialFilter(str, Enum):
    READ = "READ"
    UNREAD = "UNREAD"
    STAR = "STAR"


class SearchRequest(BaseModel):
    """Normalized inbound search request. Validated before storage is touched."""
    user_id: str
    query: str = ""
    tags: list[str] = []
    types: list[BookmarkType] = []
    special_filters: list[SpecialFilter] = []
    limit: int = Field(default=20, ge=1, le=100)
    cursor: str | None = Field(default=None, pattern=ID_PATTERN)
    matching_distance: float = Field(default=0.1, ge=0.0, le=2.0)

    @field_validator("query", mode="before")
    @classmethod
    def _none_query_is_empty(cls, v: str | None) -> str:
        return v or ""

    @field_validator("tags")
    @classmethod
    def _normalize_tags(cls, v: list[str]) -> list[str]:
        names: list[str] = []
        for raw in v:
            name = raw.strip().lower()
            if name and name not in names:
                names.append(name)
        return names


class SearchResult(BaseModel):
    """A bookmark as returned by search, with its score and how it matched."""
    id: str
    url: str
    title: str | None = None
    summary: str | None = None
    preview: str | None = None
    type: BookmarkType | None = None
    status: BookmarkStatus
    og_image_url: str | None = None
    og_description: str | None = None
    favicon_url: str | None = None
    score: float = 0.0
    match_type: MatchType = "tag"
    matched_tags: list[str] | None = None
    tags: list[TagInfo] = []
    created_at: datetime | None = None
    metadata: dict[str, Any] | None = None
    open_count: int | None = None
    starred: bool = False
    read: bool = False


class SearchResponse(BaseModel):
    bookmarks: list[SearchResult]
    next_cursor: str | None = None
    has_more: bool = False
    total_count: int | None = None
    query_time: float | None = None  # milliseconds
    from_cache: bool = False
