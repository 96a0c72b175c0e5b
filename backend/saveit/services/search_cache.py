"""Search result cache: whole-page caching with per-strategy TTLs.

Entries are keyed by the normalized request shape and scoped to a user so a
bookmark mutation can drop everything cached for its owner. Reads and writes
fail open: a broken cache must never break search.
"""
from __future__ import annotations

import hashlib
import json
import logging
import time
from dataclasses import dataclass
from enum import Enum

from pydantic import ValidationError
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, delete, func, select

from saveit.models.cache import SearchCacheEntry
from saveit.models.search import SearchRequest, SearchResponse, SearchResult
from saveit.services.query import is_domain_query, is_search_query

logger = logging.getLogger(__name__)

CACHE_PREFIX = "search:v2"


class QueryType(str, Enum):
    DEFAULT = "default"
    TAG = "tag"
    DOMAIN = "domain"
    VECTOR = "vector"
    COMBINED = "combined"


DEFAULT_TTLS: dict[QueryType, int] = {
    QueryType.DEFAULT: 1800,
    QueryType.TAG: 900,
    QueryType.DOMAIN: 1200,
    QueryType.VECTOR: 600,
    QueryType.COMBINED: 450,
}
EMPTY_RESULT_TTL = 300


@dataclass(frozen=True, slots=True)
class SearchCacheStats:
    total_entries: int
    expired_entries: int


def query_type_for(request: SearchRequest) -> QueryType:
    """Which caching class a request falls in, from its shape alone."""
    has_query = is_search_query(request.query)
    if not has_query and not request.tags and not request.types:
        return QueryType.DEFAULT
    if request.tags and not has_query:
        return QueryType.TAG
    if has_query and is_domain_query(request.query):
        return QueryType.DOMAIN
    if has_query and not request.tags and not request.types:
        return QueryType.VECTOR
    return QueryType.COMBINED


def search_cache_key(request: SearchRequest) -> str:
    """Deterministic key; filter order and duplicates don't matter."""
    normalized = {
        "query": request.query,
        "types": sorted({t.value for t in request.types}),
        "tags": sorted(set(request.tags)),
        "special": sorted({f.value for f in request.special_filters}),
        "matching_distance": request.matching_distance,
        "cursor": request.cursor,
        "limit": request.limit,
    }
    digest = hashlib.sha256(
        json.dumps(normalized, sort_keys=True, separators=(",", ":")).encode("utf-8")
    ).hexdigest()
    return f"{CACHE_PREFIX}:{request.user_id}:{digest}"


class SearchCache:
    __slots__ = ("engine", "ttls", "empty_ttl")

    def __init__(
        self,
        engine: Engine,
        ttls: dict[QueryType, int] | None = None,
        empty_ttl: int = EMPTY_RESULT_TTL,
    ) -> None:
        self.engine = engine
        self.ttls = {**DEFAULT_TTLS, **(ttls or {})}
        self.empty_ttl = empty_ttl

    def ttl_for(self, result_count: int, query_type: QueryType) -> int:
        # New bookmarks may show up soon; don't remember "nothing" for long
        if result_count == 0:
            return self.empty_ttl
        return self.ttls[query_type]

    def get(self, request: SearchRequest) -> SearchResponse | None:
        key = search_cache_key(request)
        try:
            with Session(self.engine) as session:
                entry = session.get(SearchCacheEntry, key)
                if entry is None:
                    return None
                if time.time() - entry.cached_at >= entry.ttl:
                    session.delete(entry)
                    session.commit()
                    return None
                payload = entry.payload
        except SQLAlchemyError:
            logger.warning("Search cache get error", exc_info=True)
            return None
        except ValueError:
            # Column holds something the JSON type cannot decode
            logger.warning("Discarding undecodable search cache entry %s", key, exc_info=True)
            self._discard(key)
            return None

        try:
            return SearchResponse(
                bookmarks=[SearchResult.model_validate(b) for b in payload["bookmarks"]],
                next_cursor=payload.get("next_cursor"),
                has_more=payload["has_more"],
                total_count=payload.get("total_count"),
                query_time=payload.get("query_time"),
                from_cache=True,
            )
        except (KeyError, TypeError, ValidationError):
            logger.warning("Discarding unreadable search cache entry %s", key, exc_info=True)
            self._discard(key)
            return None

    def _discard(self, key: str) -> None:
        try:
            with Session(self.engine) as session:
                session.exec(delete(SearchCacheEntry).where(SearchCacheEntry.key == key))
                session.commit()
        except SQLAlchemyError:
            logger.warning("Search cache discard error for %s", key, exc_info=True)

    def set(
        self,
        request: SearchRequest,
        response: SearchResponse,
        query_time: float,
        query_type: QueryType = QueryType.COMBINED,
    ) -> None:
        key = search_cache_key(request)
        ttl = self.ttl_for(len(response.bookmarks), query_type)
        payload = {
            "bookmarks": [b.model_dump(mode="json") for b in response.bookmarks],
            "next_cursor": response.next_cursor,
            "has_more": response.has_more,
            "total_count": response.total_count,
            "query_time": query_time,
        }
        try:
            with Session(self.engine) as session:
                session.merge(
                    SearchCacheEntry(
                        key=key,
                        user_id=request.user_id,
                        payload=payload,
                        query_type=query_type.value,
                        cached_at=time.time(),
                        ttl=ttl,
                    )
                )
                session.commit()
        except SQLAlchemyError:
            logger.warning("Search cache set error", exc_info=True)

    def invalidate_user(self, user_id: str) -> int:
        """Drop every cached page for a user. Returns how many were removed."""
        try:
            with Session(self.engine) as session:
                result = session.exec(
                    delete(SearchCacheEntry).where(SearchCacheEntry.user_id == user_id)
                )
                session.commit()
                removed = result.rowcount or 0
        except SQLAlchemyError:
            logger.warning("Search cache invalidation error for user %s", user_id, exc_info=True)
            return 0
        if removed:
            logger.info("Invalidated %d cached search page(s) for user %s", removed, user_id)
        return removed

    def purge_expired(self) -> int:
        now = time.time()
        try:
            with Session(self.engine) as session:
                result = session.exec(
                    delete(SearchCacheEntry).where(
                        col(SearchCacheEntry.cached_at) + col(SearchCacheEntry.ttl) <= now
                    )
                )
                session.commit()
                return result.rowcount or 0
        except SQLAlchemyError:
            logger.warning("Search cache purge error", exc_info=True)
            return 0

    def stats(self) -> SearchCacheStats:
        now = time.time()
        try:
            with Session(self.engine) as session:
                total = session.exec(
                    select(func.count()).select_from(SearchCacheEntry)
                ).one()
                expired = session.exec(
                    select(func.count())
                    .select_from(SearchCacheEntry)
                    .where(col(SearchCacheEntry.cached_at) + col(SearchCacheEntry.ttl) <= now)
                ).one()
                return SearchCacheStats(total_entries=total, expired_entries=expired)
        except SQLAlchemyError:
            logger.warning("Search cache stats error", exc_info=True)
            return SearchCacheStats(total_entries=0, expired_entries=0)
