"""Tag model: user and AI tags attached to bookmarks."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel
from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


class TagType(str, Enum):
    USER = "USER"
    IA = "IA"  # generated by the ingestion pipeline


class BookmarkTag(SQLModel, table=True):
    """Many-to-many junction table between bookmarks and tags."""
    __tablename__ = "bookmark_tags"

    bookmark_id: str = Field(foreign_key="bookmarks.id", primary_key=True)
    tag_id: str = Field(foreign_key="tags.id", primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Tag(SQLModel, table=True):
    __tablename__ = "tags"
    __table_args__ = (
        UniqueConstraint("user_id", "name", name="uq_tags_user_name"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    user_id: str = Field(index=True)
    name: str = Field(index=True)  # Normalized tag name (lowercase, trimmed)
    type: TagType = Field(default=TagType.USER)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# --- Pydantic schemas ---

class TagInfo(BaseModel):
    """Tag info attached to a search result."""
    id: str
    name: str
    type: TagType


class AddTagsRequest(BaseModel):
    names: list[str]


def normalize_tag_name(name: str) -> str:
    return name.strip().lower()
