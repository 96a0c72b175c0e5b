from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

import uuid_utils
from pydantic import BaseModel
from sqlalchemy import JSON, Column, Index
from sqlmodel import Field, SQLModel


def new_bookmark_id() -> str:
    """UUIDv7 strings sort lexicographically by creation time; search pagination relies on it."""
    return str(uuid_utils.uuid7())


class BookmarkStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    READY = "READY"
    ERROR = "ERROR"


class BookmarkType(str, Enum):
    PAGE = "PAGE"
    ARTICLE = "ARTICLE"
    YOUTUBE = "YOUTUBE"
    VIDEO = "VIDEO"
    TWEET = "TWEET"
    PDF = "PDF"
    IMAGE = "IMAGE"
    PRODUCT = "PRODUCT"


# Types that carry a read/unread state
READABLE_TYPES: tuple[BookmarkType, ...] = (BookmarkType.ARTICLE, BookmarkType.YOUTUBE)


class Bookmark(SQLModel, table=True):
    __tablename__ = "bookmarks"
    __table_args__ = (
        Index("ix_bookmarks_user_status", "user_id", "status"),
    )

    id: str = Field(default_factory=new_bookmark_id, primary_key=True)
    user_id: str = Field(index=True)
    url: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Written by the ingestion pipeline
    title: str | None = Field(default=None)
    summary: str | None = Field(default=None)
    preview: str | None = Field(default=None)
    og_image_url: str | None = Field(default=None)
    og_description: str | None = Field(default=None)
    favicon_url: str | None = Field(default=None)
    type: BookmarkType | None = Field(default=None)
    status: BookmarkStatus = Field(default=BookmarkStatus.PENDING)
    metadata_json: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))

    # Embeddings are independently nullable; a missing one counts as max distance
    title_embedding: list[float] | None = Field(default=None, sa_column=Column(JSON))
    summary_embedding: list[float] | None = Field(default=None, sa_column=Column(JSON))

    starred: bool = Field(default=False)
    read: bool = Field(default=False)


class BookmarkOpen(SQLModel, table=True):
    """One row per time a user opened a bookmark. Feeds the frequency boost."""
    __tablename__ = "bookmark_opens"
    __table_args__ = (
        Index("ix_bookmark_opens_user_bookmark", "user_id", "bookmark_id"),
    )

    id: str = Field(default_factory=new_bookmark_id, primary_key=True)
    user_id: str
    bookmark_id: str = Field(foreign_key="bookmarks.id")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# --- Pydantic schemas for request/response validation ---

class BookmarkCreate(BaseModel):
    url: str
    title: str | None = None
    summary: str | None = None
    preview: str | None = None
    type: BookmarkType | None = None
    status: BookmarkStatus = BookmarkStatus.PENDING
    metadata_json: dict[str, Any] | None = None
    tags: list[str] = []


class BookmarkUpdate(BaseModel):
    title: str | None = None
    summary: str | None = None
    preview: str | None = None
    type: BookmarkType | None = None
    status: BookmarkStatus | None = None
    starred: bool | None = None
    read: bool | None = None


class BookmarkRead(BaseModel):
    id: str
    url: str
    created_at: datetime
    title: str | None
    summary: str | None
    type: BookmarkType | None
    status: BookmarkStatus
    starred: bool
    read: bool
    tags: list[str] = []

    model_config = {"from_attributes": True}
