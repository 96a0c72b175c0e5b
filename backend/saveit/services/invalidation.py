"""Search cache invalidation hooks for the bookmark mutation layer.

Call the matching hook after the mutation has been committed. Every hook
currently drops all cached searches for the bookmark's owner.
"""
from __future__ import annotations

import logging

from saveit.services.search_cache import SearchCache

logger = logging.getLogger(__name__)


class CacheInvalidation:
    __slots__ = ("search_cache",)

    def __init__(self, search_cache: SearchCache | None) -> None:
        self.search_cache = search_cache

    def invalidate_user_searches(self, user_id: str) -> int:
        if self.search_cache is None:
            return 0
        return self.search_cache.invalidate_user(user_id)

    def on_bookmark_created(self, user_id: str, bookmark_id: str) -> None:
        logger.debug("Bookmark %s created, invalidating searches", bookmark_id)
        self.invalidate_user_searches(user_id)

    def on_bookmark_updated(self, user_id: str, bookmark_id: str) -> None:
        # TODO: only drop entries whose results contain bookmark_id or its tags
        logger.debug("Bookmark %s updated, invalidating searches", bookmark_id)
        self.invalidate_user_searches(user_id)

    def on_bookmark_deleted(self, user_id: str, bookmark_id: str) -> None:
        logger.debug("Bookmark %s deleted, invalidating searches", bookmark_id)
        self.invalidate_user_searches(user_id)

    def on_bookmark_tags_updated(self, user_id: str, bookmark_id: str) -> None:
        logger.debug("Tags of bookmark %s changed, invalidating searches", bookmark_id)
        self.invalidate_user_searches(user_id)

    def on_bookmark_status_changed(self, user_id: str, bookmark_id: str) -> None:
        logger.debug("Status of bookmark %s changed, invalidating searches", bookmark_id)
        self.invalidate_user_searches(user_id)

