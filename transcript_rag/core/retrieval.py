"""
Retrieval over the transcript chunk collection.

Four query shapes: plain semantic search, speaker-restricted search,
timestamp-range lookup and a per-episode overview. Filter-driven queries
use a fixed neutral vector, so their ordering carries no meaning.
"""

import math
from typing import Any

import structlog

from transcript_rag.config import Settings, get_settings
from transcript_rag.models.domain import ChunkMatch, EpisodeOverview, VectorMatch
from transcript_rag.services.embeddings import Embedder
from transcript_rag.services.vectordb import VectorStore
from transcript_rag.utils.latency import latency_tracked
from transcript_rag.utils.timestamps import parse_timestamp

logger = structlog.get_logger(__name__)


def neutral_vector(dimensions: int) -> list[float]:
    """Unit vector with equal components; cosine metrics reject all-zero vectors."""
    value = 1.0 / math.sqrt(dimensions)
    return [value] * dimensions


def to_seconds(value: float | int | str | None) -> float | None:
    """Accept seconds or a ``MM:SS``/``HH:MM:SS`` string."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return float(value)
    seconds = parse_timestamp(value)
    if seconds is None:
        raise ValueError(f"Invalid timestamp: {value!r}")
    return seconds


def speaker_filter(speaker: str) -> dict[str, Any]:
    return {"speakers_in_chunk": {"$in": [speaker]}}


def time_range_filter(
    start: float | None = None,
    end: float | None = None,
    episode_title: str | None = None,
) -> dict[str, Any] | None:
    """Chunks overlapping ``[start, end]``, optionally within one episode."""
    conditions: list[dict[str, Any]] = []
    if start is not None:
        conditions.append({"timestamp_end_seconds": {"$gte": start}})
    if end is not None:
        conditions.append({"timestamp_start_seconds": {"$lte": end}})
    if episode_title:
        conditions.append({"episode_title": {"$eq": episode_title}})

    if not conditions:
        return None
    if len(conditions) == 1:
        return conditions[0]
    return {"$and": conditions}


class TranscriptRetriever:
    """Query layer over the chunk vectors."""

    def __init__(
        self,
        embeddings: Embedder,
        vector_store: VectorStore,
        settings: Settings | None = None,
    ) -> None:
        self.embeddings = embeddings
        self.vector_store = vector_store
        self.settings = settings or get_settings()

    @property
    def collection(self) -> str:
        return self.settings.vector_collection_name

    async def _query(
        self, vector: list[float], top_k: int, filter: dict[str, Any] | None = None
    ) -> list[VectorMatch]:
        return await self.vector_store.query(self.collection, vector, top_k, filter)

    @latency_tracked("retrieval_search")
    async def search(self, query: str, top_k: int | None = None) -> list[ChunkMatch]:
        """
        Semantic search over all chunks.

        Args:
            query: Natural-language query
            top_k: Maximum results (default from settings)

        Returns:
            Matches ordered by similarity
        """
        if not query.strip():
            raise ValueError("query must not be empty")

        vector = await self.embeddings.embed_text(query)
        matches = await self._query(vector, top_k or self.settings.search_top_k)

        logger.debug("search_completed", query_preview=query[:50], results=len(matches))
        return [ChunkMatch.from_vector_match(m) for m in matches]

    @latency_tracked("retrieval_speaker")
    async def search_by_speaker(
        self,
        speaker: str,
        query: str | None = None,
        top_k: int | None = None,
    ) -> list[ChunkMatch]:
        """
        Semantic search restricted to chunks where ``speaker`` talks.

        The speaker name is embedded when no query is given. Matching is an
        exact element match on ``speakers_in_chunk``.
        """
        speaker = speaker.strip()
        if not speaker:
            raise ValueError("speaker must not be empty")

        text = (query or "").strip() or speaker
        vector = await self.embeddings.embed_text(text)
        matches = await self._query(
            vector, top_k or self.settings.speaker_top_k, speaker_filter(speaker)
        )

        logger.debug("speaker_search_completed", speaker=speaker, results=len(matches))
        return [ChunkMatch.from_vector_match(m) for m in matches]

    @latency_tracked("retrieval_time_range")
    async def search_by_time_range(
        self,
        start: float | str | None = None,
        end: float | str | None = None,
        episode_title: str | None = None,
        top_k: int | None = None,
    ) -> list[ChunkMatch]:
        """
        Chunks overlapping a timestamp range.

        Bounds are seconds or clock strings; either may be omitted. Chunks
        without timestamps never match a bounded range.
        """
        start_s, end_s = to_seconds(start), to_seconds(end)
        if start_s is not None and end_s is not None and start_s > end_s:
            raise ValueError("start must not be after end")

        matches = await self._query(
            neutral_vector(self.settings.embedding_dimensions),
            top_k or self.settings.time_range_top_k,
            time_range_filter(start_s, end_s, episode_title),
        )

        logger.debug(
            "time_range_search_completed",
            start=start_s,
            end=end_s,
            episode_title=episode_title,
            results=len(matches),
        )
        return [ChunkMatch.from_vector_match(m) for m in matches]

    @latency_tracked("retrieval_overview")
    async def episode_overview(
        self,
        episode_title: str | None = None,
        top_k: int | None = None,
    ) -> list[EpisodeOverview]:
        """One record per episode seen in a broad sample of chunks."""
        filter = {"episode_title": {"$eq": episode_title}} if episode_title else None
        matches = await self._query(
            neutral_vector(self.settings.embedding_dimensions),
            top_k or self.settings.overview_top_k,
            filter,
        )

        episodes: dict[str, EpisodeOverview] = {}
        for match in matches:
            meta = match.metadata
            title = str(meta.get("episode_title", ""))
            if title not in episodes:
                episodes[title] = EpisodeOverview(
                    episode_title=title,
                    speakers=list(meta.get("speakers") or []),
                    source=str(meta.get("source", "")),
                )
            episodes[title].matched_chunks += 1

        logger.debug("episode_overview_completed", chunks=len(matches), episodes=len(episodes))
        return list(episodes.values())
