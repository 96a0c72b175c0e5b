"""Embedding service: query vectors from Ollama, with an OpenAI-compatible fallback.

Bookmark embeddings are written by the ingestion pipeline; search only needs
to embed the user's query text with the same model.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

logger = logging.getLogger(__name__)


class EmbeddingError(Exception):
    """Raised when embedding generation fails."""


@dataclass(frozen=True, slots=True)
class Embedding:
    """A vector and the model that actually produced it."""

    vector: list[float]
    model: str


class EmbeddingService:
    """Generate embedding vectors for search queries."""

    __slots__ = (
        "ollama_url", "model", "timeout",
        "_fallback_url", "_fallback_api_key", "_fallback_model",
    )

    def __init__(
        self,
        ollama_url: str,
        model: str = "nomic-embed-text",
        fallback_url: str = "",
        fallback_api_key: str = "",
        fallback_embedding_model: str = "",
        timeout: float = 30.0,
    ) -> None:
        self.ollama_url = ollama_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self._fallback_url = fallback_url.rstrip("/") if fallback_url else ""
        self._fallback_api_key = fallback_api_key
        self._fallback_model = fallback_embedding_model or model

    @property
    def has_fallback(self) -> bool:
        return bool(self._fallback_url)

    @property
    def fallback_model(self) -> str | None:
        """Model name the fallback endpoint answers with, when one is configured."""
        return self._fallback_model if self.has_fallback else None

    async def embed(self, text: str, model: str | None = None) -> Embedding:
        """Get an embedding for text, trying Ollama then the fallback endpoint."""
        if not text or not text.strip():
            raise EmbeddingError("Cannot embed empty text")
        requested = model or self.model
        try:
            return Embedding(
                vector=await self._get_embedding_ollama(text, requested),
                model=requested,
            )
        except EmbeddingError:
            if not self._fallback_url:
                raise
            logger.info("Falling back to cloud API for embedding")
            return Embedding(
                vector=await self._get_embedding_openai(text),
                model=self._fallback_model,
            )

    async def _get_embedding_ollama(self, text: str, model: str) -> list[float]:
        """Get embedding vector from Ollama."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.ollama_url}/api/embed",
                    json={"model": model, "input": text},
                )
                response.raise_for_status()
                data = response.json()
                # Newer Ollama /api/embed returns {"embeddings": [[...]]}
                if "embeddings" in data:
                    return data["embeddings"][0]
                return data["embedding"]
        except httpx.ConnectError as exc:
            raise EmbeddingError(
                f"Cannot connect to Ollama at {self.ollama_url}: {exc}"
            ) from exc
        except httpx.TimeoutException as exc:
            raise EmbeddingError(f"Ollama timed out: {exc}") from exc
        except httpx.HTTPStatusError as exc:
            raise EmbeddingError(
                f"Ollama returned HTTP {exc.response.status_code}: {exc}"
            ) from exc
        except (KeyError, IndexError) as exc:
            raise EmbeddingError(
                f"Unexpected response format from Ollama: {exc}"
            ) from exc

    async def _get_embedding_openai(self, text: str) -> list[float]:
        """Get embedding vector from OpenAI-compatible /embeddings endpoint."""
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._fallback_api_key}",
        }
        payload = {
            "model": self._fallback_model,
            "input": text,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self._fallback_url}/embeddings",
                    headers=headers,
                    json=payload,
                )
                response.raise_for_status()
                data = response.json()
                return data["data"][0]["embedding"]
        except httpx.ConnectError as exc:
            raise EmbeddingError(f"Cannot connect to fallback at {self._fallback_url}: {exc}") from exc
        except httpx.TimeoutException as exc:
            raise EmbeddingError(f"Fallback timed out: {exc}") from exc
        except httpx.HTTPStatusError as exc:
            raise EmbeddingError(f"Fallback returned HTTP {exc.response.status_code}: {exc}") from exc
        except (KeyError, IndexError) as exc:
            raise EmbeddingError(f"Unexpected response from fallback: {exc}") from exc
