"""Content-addressed cache for query embeddings."""
from __future__ import annotations

import hashlib
import logging
import time
from dataclasses import dataclass

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, delete, func, select

from saveit.models.cache import EmbeddingCacheEntry

logger = logging.getLogger(__name__)

CACHE_VERSION = "v1"
EMBEDDING_TTL = 7 * 24 * 60 * 60  # 7 days


@dataclass(frozen=True, slots=True)
class EmbeddingCacheStats:
    total_embeddings: int


def embedding_cache_key(text: str, model: str) -> str:
    text_hash = hashlib.sha256(text.strip().lower().encode("utf-8")).hexdigest()
    return f"embedding:{CACHE_VERSION}:{model}:{text_hash}"


class EmbeddingCache:
    """(normalized text, model) -> vector, stored in the embedding_cache table.

    Every storage failure is logged and reported as a miss; a broken cache
    only costs an extra embedding call.
    """

    __slots__ = ("engine", "ttl")

    def __init__(self, engine: Engine, ttl: int = EMBEDDING_TTL) -> None:
        self.engine = engine
        self.ttl = ttl

    def get(self, text: str, model: str) -> list[float] | None:
        key = embedding_cache_key(text, model)
        try:
            with Session(self.engine) as session:
                entry = session.get(EmbeddingCacheEntry, key)
                if entry is None:
                    return None
                if entry.model != model:
                    # Never hand back a vector from a different model
                    session.delete(entry)
                    session.commit()
                    return None
                if time.time() - entry.cached_at >= entry.ttl:
                    session.delete(entry)
                    session.commit()
                    return None
                return list(entry.embedding)
        except SQLAlchemyError:
            logger.warning("Embedding cache get error", exc_info=True)
            return None
        except (ValueError, TypeError):
            logger.warning("Discarding unreadable embedding cache entry %s", key, exc_info=True)
            self._discard(key)
            return None

    def _discard(self, key: str) -> None:
        try:
            with Session(self.engine) as session:
                session.exec(delete(EmbeddingCacheEntry).where(EmbeddingCacheEntry.key == key))
                session.commit()
        except SQLAlchemyError:
            logger.warning("Embedding cache discard error for %s", key, exc_info=True)

    def set(self, text: str, embedding: list[float], model: str) -> None:
        key = embedding_cache_key(text, model)
        try:
            with Session(self.engine) as session:
                session.merge(
                    EmbeddingCacheEntry(
                        key=key,
                        model=model,
                        embedding=list(embedding),
                        cached_at=time.time(),
                        ttl=self.ttl,
                    )
                )
                session.commit()
        except SQLAlchemyError:
            logger.warning("Embedding cache set error", exc_info=True)

    def purge_expired(self) -> int:
        """Delete rows whose TTL has elapsed. Returns the number removed."""
        now = time.time()
        try:
            with Session(self.engine) as session:
                result = session.exec(
                    delete(EmbeddingCacheEntry).where(
                        col(EmbeddingCacheEntry.cached_at) + col(EmbeddingCacheEntry.ttl) <= now
                    )
                )
                session.commit()
                return result.rowcount or 0
        except SQLAlchemyError:
            logger.warning("Embedding cache purge error", exc_info=True)
            return 0

    def stats(self) -> EmbeddingCacheStats:
        try:
            with Session(self.engine) as session:
                total = session.exec(
                    select(func.count()).select_from(EmbeddingCacheEntry)
                ).one()
                return EmbeddingCacheStats(total_embeddings=total)
        except SQLAlchemyError:
            logger.warning("Embedding cache stats error", exc_info=True)
            return EmbeddingCacheStats(total_embeddings=0)
