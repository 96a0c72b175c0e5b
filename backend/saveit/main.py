from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

import saveit.models  # noqa: F401 register SQLModel tables

from saveit.config import Settings, get_settings
from saveit.db import create_db_and_tables, get_engine
from saveit.routers import bookmarks, health, search
from saveit.services.embedding import EmbeddingService
from saveit.services.embedding_cache import EmbeddingCache
from saveit.services.search_cache import QueryType, SearchCache

logger = logging.getLogger(__name__)


def build_search_cache(settings: Settings) -> SearchCache | None:
    if not settings.search_cache_enabled:
        return None
    return SearchCache(
        get_engine(),
        ttls={
            QueryType.DEFAULT: settings.search_cache_ttl_default,
            QueryType.TAG: settings.search_cache_ttl_tag,
            QueryType.DOMAIN: settings.search_cache_ttl_domain,
            QueryType.VECTOR: settings.search_cache_ttl_vector,
            QueryType.COMBINED: settings.search_cache_ttl_combined,
        },
        empty_ttl=settings.search_cache_ttl_empty,
    )


def sweep_caches(search_cache: SearchCache | None, embedding_cache: EmbeddingCache | None) -> int:
    """Delete expired rows from both caches. Returns the number removed."""
    removed = 0
    if search_cache is not None:
        removed += search_cache.purge_expired()
    if embedding_cache is not None:
        removed += embedding_cache.purge_expired()
    return removed


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    create_db_and_tables()

    app.state.embedding_service = EmbeddingService(
        ollama_url=settings.ollama_url,
        model=settings.embedding_model,
        fallback_url=settings.fallback_embedding_url,
        fallback_api_key=settings.fallback_embedding_api_key,
        fallback_embedding_model=settings.fallback_embedding_model,
        timeout=settings.embedding_timeout_seconds,
    )
    app.state.search_cache = build_search_cache(settings)
    app.state.embedding_cache = EmbeddingCache(get_engine(), ttl=settings.embedding_cache_ttl)

    # Expired entries are also dropped lazily on read; this keeps the tables small
    async def _cache_sweep_loop() -> None:
        while True:
            await asyncio.sleep(settings.cache_sweep_interval_seconds)
            try:
                removed = sweep_caches(app.state.search_cache, app.state.embedding_cache)
                if removed:
                    logger.info("Cache sweep: removed %d expired entr(ies)", removed)
            except Exception:
                logger.exception("Cache sweep error")

    sweep_task = asyncio.create_task(_cache_sweep_loop())

    yield

    sweep_task.cancel()
    try:
        await sweep_task
    except asyncio.CancelledError:
        pass


app = FastAPI(
    title="SaveIt Search",
    description="Tag, domain and semantic search over saved bookmarks",
    version="0.1.0",
    lifespan=lifespan,
)

settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        f"https://{settings.domain}",
        "http://localhost:3000",
        "http://localhost:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(search.router)
app.include_router(bookmarks.router)
