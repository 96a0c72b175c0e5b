"""Retrieval strategies: tag match, domain match, vector similarity.

Each strategy is described by a criteria object and compiled into its own
SQLAlchemy statement. Strategies return candidates with a strategy-local
score; merging and boosting happen in ranking.py.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import numpy as np
from sqlalchemy import and_, or_
from sqlalchemy.sql.elements import ColumnElement
from sqlmodel import Session, col, func, select
from sqlmodel.sql.expression import Select, SelectOfScalar

from saveit.models.bookmark import READABLE_TYPES, Bookmark, BookmarkStatus, BookmarkType
from saveit.models.search import MatchType, SearchResult, SpecialFilter
from saveit.models.tag import BookmarkTag, Tag, TagInfo
from saveit.services.query import extract_domain

logger = logging.getLogger(__name__)

EXACT_DOMAIN_SCORE = 150.0
PARTIAL_DOMAIN_SCORE = 120.0

TITLE_WEIGHT = 0.2
SUMMARY_WEIGHT = 0.8
MAX_DISTANCE = 1.0  # distance assigned to a missing embedding
WIDENED_MATCHING_DISTANCE = 1.0
DEFAULT_VECTOR_LIMIT = 50


@dataclass(frozen=True, slots=True)
class SearchFilters:
    """Filters shared by every strategy."""
    user_id: str
    types: tuple[BookmarkType, ...] = ()
    special_filters: tuple[SpecialFilter, ...] = ()
    ready_only: bool = True


@dataclass(frozen=True, slots=True)
class TagCriteria:
    filters: SearchFilters
    tags: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class DomainCriteria:
    filters: SearchFilters
    domain: str


@dataclass(frozen=True, slots=True)
class VectorCriteria:
    filters: SearchFilters
    embedding: tuple[float, ...]
    tags: tuple[str, ...] = ()
    matching_distance: float = 0.1
    limit: int = DEFAULT_VECTOR_LIMIT


class VectorTier(str, Enum):
    THRESHOLD = "threshold"  # within matching_distance of the best candidate
    WIDENED = "widened"      # matching_distance forced to 1.0
    UNBOUNDED = "unbounded"  # nearest candidates, no bound at all


@dataclass(slots=True)
class VectorSearchOutcome:
    results: list[SearchResult]
    tier: VectorTier | None  # None when there was nothing to rank
    min_distance: float | None = None
    distances: dict[str, float] = field(default_factory=dict)


# --- Filters ---


def special_filter_condition(
    special_filters: tuple[SpecialFilter, ...] | list[SpecialFilter],
) -> ColumnElement[bool] | None:
    """OR together READ / UNREAD / STAR. READ and UNREAD only apply to readable types."""
    conditions: list[ColumnElement[bool]] = []
    if SpecialFilter.READ in special_filters:
        conditions.append(
            and_(col(Bookmark.read) == True, col(Bookmark.type).in_(READABLE_TYPES))  # noqa: E712
        )
    if SpecialFilter.UNREAD in special_filters:
        conditions.append(
            and_(col(Bookmark.read) == False, col(Bookmark.type).in_(READABLE_TYPES))  # noqa: E712
        )
    if SpecialFilter.STAR in special_filters:
        conditions.append(col(Bookmark.starred) == True)  # noqa: E712
    if not conditions:
        return None
    if len(conditions) == 1:
        return conditions[0]
    return or_(*conditions)


def apply_filters(statement: SelectOfScalar[Any] | Select[Any], filters: SearchFilters) -> Any:
    """Restrict a statement over Bookmark to the user and the shared filters."""
    statement = statement.where(Bookmark.user_id == filters.user_id)
    if filters.ready_only:
        statement = statement.where(Bookmark.status == BookmarkStatus.READY)
    if filters.types:
        statement = statement.where(col(Bookmark.type).in_(filters.types))
    special = special_filter_condition(filters.special_filters)
    if special is not None:
        statement = statement.where(special)
    return statement


def _has_any_tag(user_id: str, tags: tuple[str, ...]) -> ColumnElement[bool]:
    return (
        select(BookmarkTag.bookmark_id)
        .join(Tag, col(BookmarkTag.tag_id) == col(Tag.id))
        .where(
            col(BookmarkTag.bookmark_id) == col(Bookmark.id),
            Tag.user_id == user_id,
            col(Tag.name).in_(tags),
        )
        .exists()
    )


# --- Result assembly ---


def clean_metadata(metadata: dict[str, Any] | None) -> dict[str, Any] | None:
    """Drop the raw transcript; it can be megabytes and is never displayed."""
    if not isinstance(metadata, dict):
        return metadata
    return {k: v for k, v in metadata.items() if k != "transcript"}


def load_tags(session: Session, bookmark_ids: list[str]) -> dict[str, list[TagInfo]]:
    """Fetch every tag attached to the given bookmarks, grouped by bookmark id."""
    if not bookmark_ids:
        return {}
    rows = session.exec(
        select(BookmarkTag.bookmark_id, Tag.id, Tag.name, Tag.type)
        .join(Tag, col(BookmarkTag.tag_id) == col(Tag.id))
        .where(col(BookmarkTag.bookmark_id).in_(bookmark_ids))
    ).all()
    tags_by_bookmark: dict[str, list[TagInfo]] = {}
    for bookmark_id, tag_id, tag_name, tag_type in rows:
        tags_by_bookmark.setdefault(bookmark_id, []).append(
            TagInfo(id=tag_id, name=tag_name, type=tag_type)
        )
    for tag_list in tags_by_bookmark.values():
        tag_list.sort(key=lambda t: t.name)
    return tags_by_bookmark


def bookmark_to_search_result(
    bookmark: Bookmark,
    tags: list[TagInfo] | None = None,
    score: float = 0.0,
    match_type: MatchType = "tag",
    matched_tags: list[str] | None = None,
    open_count: int | None = None,
) -> SearchResult:
    return SearchResult(
        id=bookmark.id,
        url=bookmark.url,
        title=bookmark.title,
        summary=bookmark.summary,
        preview=bookmark.preview,
        type=bookmark.type,
        status=bookmark.status,
        og_image_url=bookmark.og_image_url,
        og_description=bookmark.og_description,
        favicon_url=bookmark.favicon_url,
        score=score,
        match_type=match_type,
        matched_tags=matched_tags,
        tags=tags or [],
        created_at=bookmark.created_at,
        metadata=clean_metadata(bookmark.metadata_json),
        open_count=open_count,
        starred=bookmark.starred,
        read=bookmark.read,
    )


# --- Tag strategy ---


def search_by_tags(session: Session, criteria: TagCriteria) -> list[SearchResult]:
    """Bookmarks owning at least one requested tag.

    score = matched / requested * 100
    """
    if not criteria.tags:
        return []
    requested = set(criteria.tags)
    statement = apply_filters(select(Bookmark), criteria.filters).where(
        _has_any_tag(criteria.filters.user_id, criteria.tags)
    )
    bookmarks = session.exec(statement).all()
    tags_map = load_tags(session, [b.id for b in bookmarks])

    results: list[SearchResult] = []
    for bookmark in bookmarks:
        tags = tags_map.get(bookmark.id, [])
        matched = [t.name for t in tags if t.name in requested]
        score = len(matched) / len(requested) * 100
        results.append(
            bookmark_to_search_result(bookmark, tags, score, "tag", matched)
        )
    return results


# --- Domain strategy ---


def search_by_domain(session: Session, criteria: DomainCriteria) -> list[SearchResult]:
    """Bookmarks hosted on (a sub- or parent domain of) the requested domain.

    score = 150 for an exact domain match, 120 otherwise
    """
    domain = criteria.domain.strip().lower()
    if not domain:
        return []
    statement = apply_filters(select(Bookmark), criteria.filters).where(
        func.lower(Bookmark.url).contains(domain, autoescape=True)
    )
    candidates = session.exec(statement).all()

    # The substring match also hits paths and query strings; keep only
    # bookmarks whose own host is related to the requested domain.
    verified: list[tuple[Bookmark, str]] = []
    for bookmark in candidates:
        bookmark_domain = extract_domain(bookmark.url)
        if bookmark_domain and (domain in bookmark_domain or bookmark_domain in domain):
            verified.append((bookmark, bookmark_domain))

    tags_map = load_tags(session, [b.id for b, _ in verified])
    return [
        bookmark_to_search_result(
            bookmark,
            tags_map.get(bookmark.id, []),
            EXACT_DOMAIN_SCORE if bookmark_domain == domain else PARTIAL_DOMAIN_SCORE,
            "tag",
        )
        for bookmark, bookmark_domain in verified
    ]


# --- Vector strategy ---


def embedding_matrix(vectors: list[list[float] | None], dim: int) -> np.ndarray:
    """Stack embeddings into an (n, dim) array. Missing or wrong-sized ones become zero rows."""
    matrix = np.zeros((len(vectors), dim), dtype=np.float64)
    for i, vector in enumerate(vectors):
        if vector and len(vector) == dim:
            matrix[i] = vector
    return matrix


def cosine_distances(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """1 - cosine similarity of every row to the query. Zero rows count as MAX_DISTANCE."""
    distances = np.full(matrix.shape[0], MAX_DISTANCE, dtype=np.float64)
    query_norm = float(np.linalg.norm(query))
    if query_norm == 0.0 or matrix.shape[0] == 0:
        return distances
    norms = np.linalg.norm(matrix, axis=1)
    usable = norms > 0.0
    distances[usable] = 1.0 - (matrix[usable] @ query) / (norms[usable] * query_norm)
    return distances


def weighted_distances(
    query: tuple[float, ...] | list[float],
    title_vectors: list[list[float] | None],
    summary_vectors: list[list[float] | None],
) -> np.ndarray:
    """TITLE_WEIGHT * title distance + SUMMARY_WEIGHT * summary distance, per bookmark."""
    q = np.asarray(query, dtype=np.float64)
    dim = q.shape[0]
    return (
        TITLE_WEIGHT * cosine_distances(q, embedding_matrix(title_vectors, dim))
        + SUMMARY_WEIGHT * cosine_distances(q, embedding_matrix(summary_vectors, dim))
    )


def cosine_distance(a: list[float] | tuple[float, ...] | None, b: list[float] | tuple[float, ...] | None) -> float:
    if not a or not b or len(a) != len(b):
        return MAX_DISTANCE
    query = np.asarray(a, dtype=np.float64)
    return float(cosine_distances(query, embedding_matrix([list(b)], len(a)))[0])


def bookmark_distance(query: tuple[float, ...] | list[float], bookmark: Bookmark) -> float:
    return float(
        weighted_distances(query, [bookmark.title_embedding], [bookmark.summary_embedding])[0]
    )


def distance_to_score(distance: float) -> float:
    return max(0.0, 100 * (1 - distance))


def _within(distances: np.ndarray, min_distance: float, matching_distance: float) -> np.ndarray:
    return (distances <= min_distance + matching_distance) & (distances < MAX_DISTANCE)


def search_by_vector(session: Session, criteria: VectorCriteria) -> VectorSearchOutcome:
    """Nearest bookmarks to the query embedding, with three escalation tiers.

    The threshold is relative: a candidate qualifies when its distance is
    within matching_distance of the closest candidate passing the same
    filters. An empty tier 1 is retried with matching_distance = 1.0, and an
    empty tier 2 falls back to the nearest candidates with no bound.
    """
    filters = criteria.filters
    statement = apply_filters(
        select(Bookmark.id, Bookmark.title_embedding, Bookmark.summary_embedding), filters
    )
    if criteria.tags:
        statement = statement.where(_has_any_tag(filters.user_id, criteria.tags))
    rows = session.exec(statement).all()
    if not rows:
        return VectorSearchOutcome(results=[], tier=None)

    distances = weighted_distances(
        criteria.embedding, [row[1] for row in rows], [row[2] for row in rows]
    )
    order = sorted(range(len(rows)), key=lambda i: (distances[i], rows[i][0]))
    ids = [rows[i][0] for i in order]
    distances = distances[order]
    min_distance = float(distances[0])

    tier = VectorTier.THRESHOLD
    mask = _within(distances, min_distance, criteria.matching_distance)
    if not mask.any() and criteria.matching_distance < WIDENED_MATCHING_DISTANCE:
        logger.info(
            "No vector results within %.3f of %.3f, retrying with %.1f",
            criteria.matching_distance, min_distance, WIDENED_MATCHING_DISTANCE,
        )
        tier = VectorTier.WIDENED
        mask = _within(distances, min_distance, WIDENED_MATCHING_DISTANCE)
    if not mask.any():
        logger.info("No vector results under the distance bound, returning nearest matches")
        tier = VectorTier.UNBOUNDED
        mask = np.ones(len(ids), dtype=bool)

    selected = [
        (bookmark_id, float(distance))
        for bookmark_id, distance, keep in zip(ids, distances, mask)
        if keep
    ][: criteria.limit]
    selected_ids = [bookmark_id for bookmark_id, _ in selected]
    bookmarks = {
        b.id: b
        for b in session.exec(select(Bookmark).where(col(Bookmark.id).in_(selected_ids))).all()
    }

    requested = set(criteria.tags)
    tags_map = load_tags(session, selected_ids)
    results: list[SearchResult] = []
    for bookmark_id, distance in selected:
        tags = tags_map.get(bookmark_id, [])
        matched = [t.name for t in tags if t.name in requested]
        results.append(
            bookmark_to_search_result(
                bookmarks[bookmark_id],
                tags,
                distance_to_score(distance),
                "vector",
                matched or None,
            )
        )
    logger.debug(
        "Vector search tier=%s returned %d of %d candidates",
        tier.value, len(results), len(ids),
    )
    return VectorSearchOutcome(
        results=results,
        tier=tier,
        min_distance=min_distance,
        distances=dict(selected),
    )
