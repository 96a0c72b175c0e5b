from __future__ import annotations

import warnings
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    domain: str = "localhost"
    jwt_secret: str = ""  # Shared with the auth service that issues access tokens
    allow_insecure_jwt: bool = False

    @model_validator(mode="after")
    def _check_jwt_secret(self) -> Settings:
        self.jwt_secret = self.jwt_secret.strip()
        if not self.jwt_secret:
            if self.allow_insecure_jwt:
                warnings.warn(
                    "JWT_SECRET is empty but ALLOW_INSECURE_JWT is set; "
                    "this is INSECURE and should only be used for development.",
                    stacklevel=2,
                )
            else:
                raise ValueError(
                    "JWT_SECRET is not set. An empty JWT secret allows attackers to "
                    "forge access tokens. Set JWT_SECRET in .env "
                    "or set ALLOW_INSECURE_JWT=1 for development."
                )
        return self

    db_url: str = "sqlite:////app/data/saveit.db"

    # Embeddings: Ollama first, optional OpenAI-compatible fallback
    ollama_url: str = "http://ollama:11434"
    embedding_model: str = "nomic-embed-text"
    fallback_embedding_url: str = ""       # e.g. "https://api.openai.com/v1"
    fallback_embedding_api_key: str = ""
    fallback_embedding_model: str = ""     # e.g. "text-embedding-3-small"; if empty, uses embedding_model
    embedding_timeout_seconds: float = 30.0

    # Search defaults
    search_default_limit: int = Field(default=20, ge=1, le=100)
    search_default_matching_distance: float = Field(default=0.1, ge=0.0, le=2.0)
    search_vector_candidate_limit: int = 50
    search_timeout_seconds: float = 10.0

    # Cache lifetimes (seconds)
    search_cache_enabled: bool = True
    search_cache_ttl_default: int = 1800
    search_cache_ttl_tag: int = 900
    search_cache_ttl_domain: int = 1200
    search_cache_ttl_vector: int = 600
    search_cache_ttl_combined: int = 450
    search_cache_ttl_empty: int = 300
    embedding_cache_ttl: int = 7 * 24 * 60 * 60
    cache_sweep_interval_seconds: int = 900


@lru_cache
def get_settings() -> Settings:
    return Settings()
