"""FastAPI dependency injection for auth and the search services."""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from saveit.config import get_settings
from saveit.services.embedding import EmbeddingService
from saveit.services.embedding_cache import EmbeddingCache
from saveit.services.invalidation import CacheInvalidation
from saveit.services.search import SearchService
from saveit.services.search_cache import SearchCache

JWT_ALGORITHM = "HS256"

_bearer_scheme = HTTPBearer(auto_error=True)


def get_current_user_id(
    credentials: HTTPAuthorizationCredentials = Depends(_bearer_scheme),
) -> str:
    """Extract and validate the JWT access token from the Authorization header.

    Returns the user id (sub claim). Raises HTTPException 401 if the token
    is missing, expired, or invalid.
    """
    settings = get_settings()
    try:
        payload = jwt.decode(
            credentials.credentials, settings.jwt_secret, algorithms=[JWT_ALGORITHM]
        )
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token payload")
    return user_id


def get_embedding_service(request: Request) -> EmbeddingService | None:
    """The EmbeddingService initialized at startup, if any.

    Search still answers tag and domain queries without it.
    """
    return getattr(request.app.state, "embedding_service", None)


def get_search_cache(request: Request) -> SearchCache | None:
    return getattr(request.app.state, "search_cache", None)


def get_embedding_cache(request: Request) -> EmbeddingCache | None:
    return getattr(request.app.state, "embedding_cache", None)


def get_cache_invalidation(
    search_cache: SearchCache | None = Depends(get_search_cache),
) -> CacheInvalidation:
    return CacheInvalidation(search_cache)


def get_search_service(
    embedding_service: EmbeddingService | None = Depends(get_embedding_service),
    embedding_cache: EmbeddingCache | None = Depends(get_embedding_cache),
    search_cache: SearchCache | None = Depends(get_search_cache),
) -> SearchService:
    """Construct SearchService from its dependencies."""
    settings = get_settings()
    return SearchService(
        embedding_service=embedding_service,
        embedding_cache=embedding_cache,
        search_cache=search_cache,
        vector_limit=settings.search_vector_candidate_limit,
        timeout=settings.search_timeout_seconds,
    )
