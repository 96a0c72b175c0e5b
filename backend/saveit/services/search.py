"""Search service: classify, retrieve, merge, boost, rank, paginate, cache.

Default browsing (no query text, no tags) skips scoring entirely and pages
through the user's bookmarks newest first. Everything else runs the
retrieval strategies that apply to the request:

- tag strategy when tag names are given
- domain strategy when the query looks like a domain
- vector strategy whenever there is query text

A strategy that fails is skipped as long as another one succeeded; when
every strategy that ran has failed, the first error propagates.
"""
from __future__ import annotations

import asyncio
import logging
import time

from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from saveit.models.bookmark import Bookmark
from saveit.models.search import SearchRequest, SearchResponse, SearchResult
from saveit.services.embedding import EmbeddingError, EmbeddingService
from saveit.services.embedding_cache import EmbeddingCache
from saveit.services.query import QueryKind, classify_query, extract_domain, is_search_query
from saveit.services.ranking import (
    SearchResultCombiner,
    get_open_counts,
    paginate_results,
)
from saveit.services.search_cache import SearchCache, query_type_for
from saveit.services.strategies import (
    DEFAULT_VECTOR_LIMIT,
    DomainCriteria,
    SearchFilters,
    TagCriteria,
    VectorCriteria,
    VectorSearchOutcome,
    apply_filters,
    bookmark_to_search_result,
    load_tags,
    search_by_domain,
    search_by_tags,
    search_by_vector,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0

# Failures a strategy may recover from by letting the others answer
_STRATEGY_ERRORS = (SQLAlchemyError, EmbeddingError)


class SearchTimeoutError(Exception):
    """Raised when the uncached search pipeline exceeds its deadline."""


def get_default_bookmarks(session: Session, request: SearchRequest) -> SearchResponse:
    """Newest-first browsing with keyset pagination on the time-ordered id.

    Every status is shown so users can watch bookmarks being processed.
    """
    filters = SearchFilters(
        user_id=request.user_id,
        types=tuple(request.types),
        special_filters=tuple(request.special_filters),
        ready_only=False,
    )
    statement = apply_filters(select(Bookmark), filters)
    if request.cursor:
        statement = statement.where(col(Bookmark.id) < request.cursor)
    statement = statement.order_by(col(Bookmark.id).desc()).limit(request.limit + 1)
    rows = session.exec(statement).all()

    has_more = len(rows) > request.limit
    bookmarks = rows[: request.limit]
    ids = [b.id for b in bookmarks]
    tags_map = load_tags(session, ids)
    open_counts = get_open_counts(session, request.user_id, ids)

    return SearchResponse(
        bookmarks=[
            bookmark_to_search_result(
                b, tags_map.get(b.id, []), 0.0, "tag", None, open_counts.get(b.id, 0)
            )
            for b in bookmarks
        ],
        next_cursor=bookmarks[-1].id if has_more and bookmarks else None,
        has_more=has_more,
    )


def _browse(bind: Engine | Connection, request: SearchRequest) -> SearchResponse:
    with Session(bind) as session:
        return get_default_bookmarks(session, request)


class SearchService:
    """Runs the search pipeline behind the search cache."""

    __slots__ = (
        "embedding_service", "embedding_cache", "search_cache",
        "vector_limit", "timeout",
    )

    def __init__(
        self,
        embedding_service: EmbeddingService | None,
        embedding_cache: EmbeddingCache | None = None,
        search_cache: SearchCache | None = None,
        vector_limit: int = DEFAULT_VECTOR_LIMIT,
        timeout: float | None = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self.embedding_service = embedding_service
        self.embedding_cache = embedding_cache
        self.search_cache = search_cache
        self.vector_limit = vector_limit
        self.timeout = timeout

    async def search(self, request: SearchRequest, session: Session) -> SearchResponse:
        start = time.perf_counter()

        if self.search_cache is not None:
            cached = self.search_cache.get(request)
            if cached is not None:
                logger.debug("Search cache hit for user %s", request.user_id)
                return cached

        try:
            if self.timeout:
                response = await asyncio.wait_for(
                    self._execute(request, session), timeout=self.timeout
                )
            else:
                response = await self._execute(request, session)
        except asyncio.TimeoutError as exc:
            raise SearchTimeoutError(
                f"Search did not complete within {self.timeout:.1f}s"
            ) from exc

        query_time = (time.perf_counter() - start) * 1000
        response = response.model_copy(update={"query_time": query_time, "from_cache": False})

        if self.search_cache is not None:
            self.search_cache.set(request, response, query_time, query_type_for(request))
        return response

    async def _execute(self, request: SearchRequest, session: Session) -> SearchResponse:
        kind = classify_query(request.query, request.tags)
        if kind is QueryKind.DEFAULT:
            return await asyncio.to_thread(_browse, session.get_bind(), request)

        results = await self.ranked_results(request, kind, session)
        page = paginate_results(results, request.cursor, request.limit)
        return SearchResponse(
            bookmarks=page.bookmarks,
            next_cursor=page.next_cursor,
            has_more=page.has_more,
            total_count=len(results),
        )

    async def ranked_results(
        self, request: SearchRequest, kind: QueryKind, session: Session
    ) -> list[SearchResult]:
        """Every matching bookmark for a search request, merged, boosted and ordered.

        The query embedding is awaited first; the storage work then runs in a
        worker thread with its own session so the deadline can interrupt it.
        """
        planned: list[str] = []
        if request.tags:
            planned.append("tag")
        if kind is QueryKind.DOMAIN:
            planned.append("domain")
        if is_search_query(request.query):
            planned.append("vector")

        embedding: list[float] | None = None
        embedding_error: EmbeddingError | None = None
        if "vector" in planned:
            try:
                embedding = await self.query_embedding(request.query)
            except EmbeddingError as exc:
                embedding_error = exc

        return await asyncio.to_thread(
            self._rank,
            session.get_bind(),
            request,
            planned,
            embedding,
            embedding_error,
        )

    def _rank(
        self,
        bind: Engine | Connection,
        request: SearchRequest,
        planned: list[str],
        embedding: list[float] | None,
        embedding_error: EmbeddingError | None,
    ) -> list[SearchResult]:
        filters = SearchFilters(
            user_id=request.user_id,
            types=tuple(request.types),
            special_filters=tuple(request.special_filters),
            ready_only=True,
        )
        query = request.query.strip()

        tag_results: list[SearchResult] = []
        domain_results: list[SearchResult] = []
        vector_outcome: VectorSearchOutcome | None = None
        failures: list[tuple[str, Exception]] = []

        with Session(bind) as session:
            for strategy in planned:
                try:
                    if strategy == "tag":
                        tag_results = search_by_tags(
                            session, TagCriteria(filters=filters, tags=tuple(request.tags))
                        )
                    elif strategy == "domain":
                        domain_results = search_by_domain(
                            session, DomainCriteria(filters=filters, domain=extract_domain(query))
                        )
                    else:
                        if embedding is None:
                            raise embedding_error or EmbeddingError("No query embedding")
                        vector_outcome = search_by_vector(
                            session,
                            VectorCriteria(
                                filters=filters,
                                embedding=tuple(embedding),
                                tags=tuple(request.tags),
                                matching_distance=request.matching_distance,
                                limit=self.vector_limit,
                            ),
                        )
                except _STRATEGY_ERRORS as exc:
                    if isinstance(exc, SQLAlchemyError):
                        session.rollback()
                    failures.append((strategy, exc))

            if failures:
                if len(failures) == len(planned):
                    raise failures[0][1]
                for strategy, exc in failures:
                    logger.warning(
                        "%s search failed for user %s, continuing with other strategies: %s",
                        strategy, request.user_id, exc,
                    )

            combiner = SearchResultCombiner()
            combiner.add_tag_results(tag_results)
            combiner.add_domain_results(domain_results)
            if vector_outcome is not None:
                combiner.add_vector_results(vector_outcome.results)

            if len(combiner) == 0:
                return []

            combiner.apply_open_counts(
                get_open_counts(session, request.user_id, combiner.bookmark_ids())
            )

        logger.info(
            "Search for user %s: tag=%d domain=%d vector=%d (tier=%s) -> %d results",
            request.user_id,
            len(tag_results),
            len(domain_results),
            len(vector_outcome.results) if vector_outcome else 0,
            vector_outcome.tier.value if vector_outcome and vector_outcome.tier else None,
            len(combiner),
        )
        return combiner.get_final_results()

    async def query_embedding(self, text: str) -> list[float]:
        """Embedding for query text, from the cache when possible.

        A vector cached from the fallback model is served while the primary
        one has nothing cached.
        """
        text = text.strip()
        if self.embedding_service is None:
            raise EmbeddingError("Embedding service is not configured")
        model = self.embedding_service.model

        if self.embedding_cache is not None:
            for cached_model in (model, self.embedding_service.fallback_model):
                if not cached_model:
                    continue
                cached = self.embedding_cache.get(text, cached_model)
                if cached is not None:
                    return cached

        result = await self.embedding_service.embed(text, model)
        if self.embedding_cache is not None:
            self.embedding_cache.set(text, result.vector, result.model)
        return result.vector
