from __future__ import annotations

import os
import uuid
from unittest.mock import AsyncMock, MagicMock

# Set test environment BEFORE importing saveit modules.
# saveit.db creates the engine at module level using get_settings().db_url,
# so we must override the env vars before any saveit imports.
os.environ.setdefault("DB_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret-for-integration-tests-only")

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine

from saveit.db import get_session
from saveit.dependencies import (
    JWT_ALGORITHM,
    get_embedding_cache,
    get_embedding_service,
    get_search_cache,
)
from saveit.main import app as fastapi_app
from saveit.models.bookmark import Bookmark, BookmarkOpen, BookmarkStatus, BookmarkType
from saveit.models.tag import BookmarkTag, Tag, TagType
from saveit.services.embedding import Embedding, EmbeddingService
from saveit.services.embedding_cache import EmbeddingCache
from saveit.services.search_cache import SearchCache

TEST_USER = "user-1"
OTHER_USER = "user-2"


def make_id(n: int) -> str:
    """Deterministic time-ordered style id: a larger n sorts as newer."""
    return str(uuid.UUID(int=n))


def make_token(user_id: str = TEST_USER) -> str:
    return jwt.encode(
        {"sub": user_id}, os.environ["JWT_SECRET"], algorithm=JWT_ALGORITHM
    )


def add_bookmark(
    session: Session,
    n: int,
    url: str = "https://example.com/page",
    user_id: str = TEST_USER,
    tags: list[str] | None = None,
    status: BookmarkStatus = BookmarkStatus.READY,
    type: BookmarkType | None = BookmarkType.PAGE,
    title_embedding: list[float] | None = None,
    summary_embedding: list[float] | None = None,
    starred: bool = False,
    read: bool = False,
    opens: int = 0,
    **fields,
) -> Bookmark:
    """Insert a bookmark with tags and open events, committed."""
    bookmark = Bookmark(
        id=make_id(n),
        user_id=user_id,
        url=url,
        title=fields.pop("title", f"Bookmark {n}"),
        status=status,
        type=type,
        title_embedding=title_embedding,
        summary_embedding=summary_embedding,
        starred=starred,
        read=read,
        **fields,
    )
    session.add(bookmark)
    session.flush()
    for name in tags or []:
        tag = session.get(Tag, f"{user_id}:{name}")
        if tag is None:
            tag = Tag(id=f"{user_id}:{name}", user_id=user_id, name=name, type=TagType.USER)
            session.add(tag)
            session.flush()
        session.add(BookmarkTag(bookmark_id=bookmark.id, tag_id=tag.id))
    for _ in range(opens):
        session.add(BookmarkOpen(user_id=user_id, bookmark_id=bookmark.id))
    session.commit()
    session.refresh(bookmark)
    return bookmark


def _memory_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    return engine


# ── Database fixtures ─────────────────────────────────────────────────


@pytest.fixture(name="engine")
def engine_fixture():
    """Create an in-memory SQLite engine for testing.

    Uses StaticPool so every connection shares the same in-memory database.
    Recreates tables per test for full isolation.
    """
    engine = _memory_engine()
    yield engine
    SQLModel.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(name="session")
def session_fixture(engine):
    """Provide a fresh session per test."""
    with Session(engine) as session:
        yield session


@pytest.fixture(name="cache_engine")
def cache_engine_fixture():
    """Separate in-memory database for the caches, as they open their own sessions."""
    engine = _memory_engine()
    yield engine
    SQLModel.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(name="search_cache")
def search_cache_fixture(cache_engine) -> SearchCache:
    return SearchCache(cache_engine)


@pytest.fixture(name="embedding_cache")
def embedding_cache_fixture(cache_engine) -> EmbeddingCache:
    return EmbeddingCache(cache_engine)


# ── Mock embedding service ────────────────────────────────────────────


@pytest.fixture(name="mock_embedding_service")
def mock_embedding_service_fixture() -> MagicMock:
    """Mock EmbeddingService returning a fixed query vector."""
    mock = MagicMock(spec=EmbeddingService)
    mock.model = "test-embed"
    mock.has_fallback = False
    mock.fallback_model = None
    mock.embed = AsyncMock(return_value=Embedding(vector=[1.0, 0.0, 0.0], model="test-embed"))
    return mock


# ── HTTP client fixtures ──────────────────────────────────────────────


@pytest.fixture(name="client")
def client_fixture(session, search_cache, embedding_cache, mock_embedding_service):
    """FastAPI TestClient with overridden DB session, caches and embeddings.

    Carries a valid bearer token for TEST_USER.
    """

    def _get_session_override():
        yield session

    fastapi_app.dependency_overrides[get_session] = _get_session_override
    fastapi_app.dependency_overrides[get_search_cache] = lambda: search_cache
    fastapi_app.dependency_overrides[get_embedding_cache] = lambda: embedding_cache
    fastapi_app.dependency_overrides[get_embedding_service] = lambda: mock_embedding_service
    with TestClient(fastapi_app) as client:
        client.headers["Authorization"] = f"Bearer {make_token()}"
        yield client
    fastapi_app.dependency_overrides.clear()


@pytest.fixture(name="client_no_auth")
def client_no_auth_fixture(session):
    """TestClient with DB override but no bearer token, for testing 401s."""

    def _get_session_override():
        yield session

    fastapi_app.dependency_overrides[get_session] = _get_session_override
    with TestClient(fastapi_app) as tc:
        yield tc
    fastapi_app.dependency_overrides.clear()
