from __future__ import annotations

from saveit.models.bookmark import Bookmark, BookmarkOpen  # noqa: F401
from saveit.models.tag import Tag, BookmarkTag  # noqa: F401
from saveit.models.cache import SearchCacheEntry, EmbeddingCacheEntry  # noqa: F401
