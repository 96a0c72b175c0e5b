"""Tag, domain and semantic search over the user's bookmarks."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ValidationError
from sqlmodel import Session

from saveit.config import get_settings
from saveit.db import get_session
from saveit.dependencies import (
    get_current_user_id,
    get_embedding_cache,
    get_search_cache,
    get_search_service,
)
from saveit.models.bookmark import BookmarkType
from saveit.models.search import ID_PATTERN, SearchRequest, SearchResponse, SpecialFilter
from saveit.services.embedding import EmbeddingError
from saveit.services.embedding_cache import EmbeddingCache
from saveit.services.search import SearchService, SearchTimeoutError
from saveit.services.search_cache import SearchCache

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/search", tags=["search"])

_settings = get_settings()


class CacheStatsResponse(BaseModel):
    search_entries: int
    search_expired_entries: int
    embedding_entries: int


@router.get("", response_model=SearchResponse)
async def search_bookmarks(
    q: str | None = Query(None, max_length=500, description="Free text or a domain"),
    tags: list[str] | None = Query(None, description="Tag names (any of)"),
    types: list[BookmarkType] | None = Query(None, description="Content types to include"),
    special_filters: list[SpecialFilter] | None = Query(
        None, description="READ / UNREAD / STAR, combined with OR"
    ),
    limit: int = Query(_settings.search_default_limit, ge=1, le=100),
    cursor: str | None = Query(None, pattern=ID_PATTERN, description="Last id of the previous page"),
    matching_distance: float = Query(_settings.search_default_matching_distance, ge=0.0, le=2.0),
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session),
    search_service: SearchService = Depends(get_search_service),
) -> SearchResponse:
    """Search bookmarks, or browse newest first when no query and no tags are given."""
    try:
        request = SearchRequest(
            user_id=user_id,
            query=q,
            tags=tags or [],
            types=types or [],
            special_filters=special_filters or [],
            limit=limit,
            cursor=cursor,
            matching_distance=matching_distance,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.errors())

    try:
        return await search_service.search(request, session)
    except EmbeddingError as exc:
        logger.warning("Semantic search unavailable: %s", exc)
        raise HTTPException(
            status_code=503,
            detail="Semantic search unavailable: embedding service not reachable",
        )
    except SearchTimeoutError as exc:
        raise HTTPException(status_code=504, detail=str(exc))


@router.get("/cache/stats", response_model=CacheStatsResponse)
async def cache_stats(
    _user_id: str = Depends(get_current_user_id),
    search_cache: SearchCache | None = Depends(get_search_cache),
    embedding_cache: EmbeddingCache | None = Depends(get_embedding_cache),
) -> CacheStatsResponse:
    search_stats = search_cache.stats() if search_cache is not None else None
    embedding_stats = embedding_cache.stats() if embedding_cache is not None else None
    return CacheStatsResponse(
        search_entries=search_stats.total_entries if search_stats else 0,
        search_expired_entries=search_stats.expired_entries if search_stats else 0,
        embedding_entries=embedding_stats.total_embeddings if embedding_stats else 0,
    )
