"""Cache tables: search result pages and query embeddings.

Rows carry their own write time and TTL. The readers decide expiry;
nothing here assumes the database drops stale rows.
"""
from __future__ import annotations

from typing import Any

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


class SearchCacheEntry(SQLModel, table=True):
    __tablename__ = "search_cache"

    key: str = Field(primary_key=True)
    user_id: str = Field(index=True)
    payload: dict[str, Any] = Field(sa_column=Column(JSON, nullable=False))
    query_type: str
    cached_at: float  # epoch seconds
    ttl: int  # seconds


class EmbeddingCacheEntry(SQLModel, table=True):
    __tablename__ = "embedding_cache"

    key: str = Field(primary_key=True)
    model: str = Field(index=True)
    embedding: list[float] = Field(sa_column=Column(JSON, nullable=False))
    cached_at: float
    ttl: int
