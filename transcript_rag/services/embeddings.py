"""
Embedding service using OpenAI.

Turns chunk texts and queries into vectors. Batch requests are split to
the configured request size and cached by text hash, so repeated queries
and re-ingested chunks are not paid for twice.
"""

import hashlib
from typing import Protocol, Sequence

import structlog
from openai import AsyncOpenAI, OpenAIError

from transcript_rag.config import Settings, get_settings
from transcript_rag.exceptions import EmbeddingError
from transcript_rag.utils.latency import latency_tracked, track_latency

logger = structlog.get_logger(__name__)


class Embedder(Protocol):
    async def embed_text(self, text: str) -> list[float]: ...

    async def embed_texts(self, texts: Sequence[str]) -> list[list[float]]: ...


class EmbeddingService:
    """
    OpenAI embedding service for text vectorization.

    Errors from the API are logged and re-raised as :class:`EmbeddingError`.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        client: AsyncOpenAI | None = None,
        max_cache_size: int = 10000,
    ) -> None:
        self.settings = settings or get_settings()
        self._client = client
        self._cache: dict[str, list[float]] = {}
        self._max_cache_size = max_cache_size

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self.settings.openai_api_key.get_secret_value()
            )
        return self._client

    @property
    def dimensions(self) -> int:
        return self.settings.embedding_dimensions

    def _cache_key(self, text: str) -> str:
        return hashlib.sha256(text.encode()).hexdigest()[:16]

    @latency_tracked("embedding_single")
    async def embed_text(self, text: str) -> list[float]:
        """
        Generate embedding for a single text.

        Args:
            text: Text to embed

        Returns:
            Embedding vector
        """
        cache_key = self._cache_key(text)
        if cache_key in self._cache:
            logger.debug("embedding_cache_hit", text_preview=text[:30])
            return self._cache[cache_key]

        try:
            response = await self._get_client().embeddings.create(
                model=self.settings.embedding_model,
                input=text,
                dimensions=self.settings.embedding_dimensions,
            )
        except OpenAIError as exc:
            logger.error("embedding_failed", error=str(exc), text_preview=text[:30])
            raise EmbeddingError(f"Embedding request failed: {exc}") from exc

        embedding = response.data[0].embedding
        self._add_to_cache(cache_key, embedding)
        return embedding

    async def embed_texts(self, texts: Sequence[str]) -> list[list[float]]:
        """
        Generate embeddings for many texts, preserving input order.

        Args:
            texts: Texts to embed

        Returns:
            One vector per input text
        """
        if not texts:
            return []

        async with track_latency("embedding_batch"):
            results: list[list[float] | None] = [None] * len(texts)
            pending: list[tuple[int, str]] = []

            for i, text in enumerate(texts):
                cached = self._cache.get(self._cache_key(text))
                if cached is not None:
                    results[i] = cached
                else:
                    pending.append((i, text))

            batch_size = self.settings.embedding_batch_size
            for batch_start in range(0, len(pending), batch_size):
                batch = pending[batch_start : batch_start + batch_size]

                try:
                    response = await self._get_client().embeddings.create(
                        model=self.settings.embedding_model,
                        input=[text for _, text in batch],
                        dimensions=self.settings.embedding_dimensions,
                    )
                except OpenAIError as exc:
                    logger.error(
                        "batch_embedding_failed",
                        error=str(exc),
                        batch_size=len(batch),
                    )
                    raise EmbeddingError(f"Embedding request failed: {exc}") from exc

                if len(response.data) != len(batch):
                    raise EmbeddingError(
                        f"Expected {len(batch)} embeddings, got {len(response.data)}"
                    )

                for (index, text), item in zip(batch, response.data):
                    results[index] = item.embedding
                    self._add_to_cache(self._cache_key(text), item.embedding)

            logger.info(
                "batch_embedding_completed",
                total=len(texts),
                cached=len(texts) - len(pending),
                embedded=len(pending),
            )

            return [r for r in results if r is not None]

    def _add_to_cache(self, key: str, embedding: list[float]) -> None:
        if len(self._cache) >= self._max_cache_size:
            # Drop the oldest 10%
            for stale in list(self._cache)[: self._max_cache_size // 10 or 1]:
                del self._cache[stale]
        self._cache[key] = embedding

    def clear_cache(self) -> None:
        self._cache.clear()
        logger.info("embedding_cache_cleared")

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
