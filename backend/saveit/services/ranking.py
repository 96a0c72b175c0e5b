"""Merging, boosting, ordering and paginating search results."""
from __future__ import annotations

import math
from dataclasses import dataclass

from sqlmodel import Session, col, func, select

from saveit.models.bookmark import BookmarkOpen
from saveit.models.search import SearchResult

TAG_BOOST = 1.5
VECTOR_COMBINED_WEIGHT = 0.6
OPEN_BOOST_FACTOR = 10


@dataclass(frozen=True, slots=True)
class Page:
    bookmarks: list[SearchResult]
    next_cursor: str | None
    has_more: bool


def apply_open_frequency_boost(score: float, open_count: int) -> float:
    """Logarithmic boost so a heavily opened bookmark can't win on frequency alone."""
    if open_count <= 0:
        return score
    return score + math.log(open_count + 1) * OPEN_BOOST_FACTOR


def get_open_counts(session: Session, user_id: str, bookmark_ids: list[str]) -> dict[str, int]:
    """Number of recorded opens per bookmark, for one user."""
    if not bookmark_ids:
        return {}
    rows = session.exec(
        select(BookmarkOpen.bookmark_id, func.count(col(BookmarkOpen.id)))
        .where(
            BookmarkOpen.user_id == user_id,
            col(BookmarkOpen.bookmark_id).in_(bookmark_ids),
        )
        .group_by(col(BookmarkOpen.bookmark_id))
    ).all()
    return {bookmark_id: count for bookmark_id, count in rows}


def sort_search_results(results: list[SearchResult]) -> list[SearchResult]:
    """Score descending, then id descending (newest first) so pagination is stable."""
    by_id = sorted(results, key=lambda r: r.id, reverse=True)
    return sorted(by_id, key=lambda r: r.score, reverse=True)


def paginate_results(
    results: list[SearchResult],
    cursor: str | None = None,
    limit: int = 20,
) -> Page:
    """Slice an ordered result list into the page following `cursor`.

    An unknown cursor restarts from the first result instead of failing.
    """
    start = 0
    if cursor:
        for index, result in enumerate(results):
            if result.id == cursor:
                start = index + 1
                break

    window = results[start:start + limit + 1]
    has_more = len(window) > limit
    bookmarks = window[:limit]
    next_cursor = bookmarks[-1].id if has_more and bookmarks else None
    return Page(bookmarks=bookmarks, next_cursor=next_cursor, has_more=has_more)


class SearchResultCombiner:
    """Deduplicates strategy output by bookmark id.

    Results must be added tag -> domain -> vector. Tag hits are trusted most,
    domain hits add on top, and vector similarity only contributes 60% of its
    score when it corroborates another strategy.
    """

    __slots__ = ("_results",)

    def __init__(self) -> None:
        self._results: dict[str, SearchResult] = {}

    def add_tag_results(self, results: list[SearchResult], boost: float = TAG_BOOST) -> None:
        for result in results:
            self._results[result.id] = result.model_copy(
                update={"score": result.score * boost, "match_type": "tag"}
            )

    def add_domain_results(self, results: list[SearchResult]) -> None:
        for result in results:
            existing = self._results.get(result.id)
            if existing is not None:
                self._results[result.id] = existing.model_copy(
                    update={"score": existing.score + result.score, "match_type": "combined"}
                )
            else:
                # Domain-only hits are presented as tag matches
                self._results[result.id] = result.model_copy(update={"match_type": "tag"})

    def add_vector_results(
        self, results: list[SearchResult], weight: float = VECTOR_COMBINED_WEIGHT
    ) -> None:
        for result in results:
            existing = self._results.get(result.id)
            if existing is not None:
                update: dict = {
                    "score": existing.score + result.score * weight,
                    "match_type": "combined",
                }
                if result.matched_tags and not existing.matched_tags:
                    update["matched_tags"] = result.matched_tags
                self._results[result.id] = existing.model_copy(update=update)
            else:
                self._results[result.id] = result.model_copy(update={"match_type": "vector"})

    def apply_open_counts(self, open_counts: dict[str, int]) -> None:
        for bookmark_id, result in self._results.items():
            count = open_counts.get(bookmark_id, 0)
            self._results[bookmark_id] = result.model_copy(
                update={
                    "open_count": count,
                    "score": apply_open_frequency_boost(result.score, count),
                }
            )

    def bookmark_ids(self) -> list[str]:
        return list(self._results)

    def get_final_results(self) -> list[SearchResult]:
        return sort_search_results(list(self._results.values()))

    def __len__(self) -> int:
        return len(self._results)

    def clear(self) -> None:
        self._results.clear()
