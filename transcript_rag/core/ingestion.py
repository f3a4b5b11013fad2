"""
Ingestion coordinator.

Runs a batch of transcript URLs through the pipeline:

    fetch → register episode → chunk → enrich → embed → upsert

Fetch and parse failures only drop the affected URL. Summarization
failures only skip the episode row. Embedding and store failures abort
the whole call.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Sequence

import structlog

from transcript_rag.config import Settings, get_settings
from transcript_rag.core.chunker import Chunker, ChunkConfig
from transcript_rag.core.enricher import enrich_chunk
from transcript_rag.exceptions import (
    EmbeddingError,
    FetchError,
    ParseError,
    StoreError,
    SummarizationError,
)
from transcript_rag.models.domain import EnrichedChunk, EpisodeRecord, Transcript
from transcript_rag.services.embeddings import Embedder
from transcript_rag.services.episodes import EpisodeRepository
from transcript_rag.services.summarizer import Summarizer
from transcript_rag.services.transcript_source import TranscriptFetcher
from transcript_rag.services.vectordb import VectorStore
from transcript_rag.utils.latency import track_latency
from transcript_rag.utils.logging import LogContext

logger = structlog.get_logger(__name__)


@dataclass
class IngestResult:
    """Result of an ingestion call."""

    success: bool
    total_chunks: int = 0
    processed_urls: list[str] = field(default_factory=list)
    failed_urls: dict[str, str] = field(default_factory=dict)
    processing_time_ms: float = 0.0
    latency_breakdown: dict[str, float] = field(default_factory=dict)


@dataclass
class _Fetched:
    url: str
    transcript: Transcript | None = None
    error: str | None = None


class IngestionCoordinator:
    """
    Orchestrates transcript ingestion.

    All capabilities are injected; the coordinator holds no connections of
    its own.
    """

    def __init__(
        self,
        source: TranscriptFetcher,
        embeddings: Embedder,
        vector_store: VectorStore,
        episodes: EpisodeRepository,
        summarizer: Summarizer,
        chunker: Chunker | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.source = source
        self.embeddings = embeddings
        self.vector_store = vector_store
        self.episodes = episodes
        self.summarizer = summarizer
        self.settings = settings or get_settings()
        self.chunker = chunker or Chunker(
            ChunkConfig(
                chunk_size=self.settings.chunk_size,
                chunk_overlap=self.settings.chunk_overlap,
            )
        )

    @property
    def collection(self) -> str:
        return self.settings.vector_collection_name

    async def ingest(self, urls: Sequence[str]) -> IngestResult:
        """
        Ingest a batch of transcript URLs.

        Args:
            urls: Transcript document URLs or YouTube references

        Returns:
            IngestResult; ``processed_urls`` keeps input order

        Raises:
            EmbeddingError: If embedding the batch fails
            StoreError: If the vector or episode store fails
        """
        start_time = time.perf_counter()
        latency_breakdown: dict[str, float] = {}

        async with track_latency("ingest_fetch") as timing:
            fetched = await self._fetch_all(urls)
        latency_breakdown["fetch_ms"] = timing["duration_ms"]

        result = IngestResult(success=True, latency_breakdown=latency_breakdown)
        transcripts: list[Transcript] = []
        for item in fetched:
            if item.transcript is None:
                result.failed_urls[item.url] = item.error or "unknown error"
            else:
                result.processed_urls.append(item.url)
                transcripts.append(item.transcript)

        try:
            # Sequential so duplicate titles within one batch are caught
            async with track_latency("ingest_register") as timing:
                for transcript in transcripts:
                    await self._register_episode(transcript)
            latency_breakdown["register_ms"] = timing["duration_ms"]

            chunks: list[EnrichedChunk] = []
            for transcript in transcripts:
                chunks.extend(self._chunk(transcript))
            result.total_chunks = len(chunks)

            if chunks:
                await self._store_chunks(chunks, latency_breakdown)
        except (EmbeddingError, StoreError) as exc:
            logger.error(
                "batch_ingest_failed",
                error=str(exc),
                error_type=type(exc).__name__,
                urls=len(urls),
            )
            raise

        result.processing_time_ms = (time.perf_counter() - start_time) * 1000

        logger.info(
            "batch_ingest_completed",
            urls=len(urls),
            processed=len(result.processed_urls),
            failed=len(result.failed_urls),
            total_chunks=result.total_chunks,
            processing_time_ms=round(result.processing_time_ms, 2),
        )
        return result

    async def ingest_one(self, url: str) -> IngestResult:
        """Ingest a single transcript URL."""
        return await self.ingest([url])

    async def reindex(self, urls: Sequence[str]) -> IngestResult:
        """Drop the vector collection, then ingest ``urls`` into a fresh one."""
        logger.info("reindex_started", collection=self.collection, urls=len(urls))
        await self.vector_store.delete_collection(self.collection)
        return await self.ingest(urls)

    async def _fetch_all(self, urls: Sequence[str]) -> list[_Fetched]:
        semaphore = asyncio.Semaphore(max(1, self.settings.ingest_concurrency))

        async def fetch_one(url: str) -> _Fetched:
            async with semaphore:
                with LogContext(url=url):
                    try:
                        transcript = await self.source.fetch(url)
                    except (FetchError, ParseError) as exc:
                        logger.warning(
                            "transcript_fetch_failed",
                            error=str(exc),
                            error_type=type(exc).__name__,
                        )
                        return _Fetched(url=url, error=str(exc))

                    logger.info(
                        "transcript_fetched",
                        episode_title=transcript.episode_title,
                        variant=transcript.variant,
                        utterances=len(transcript.utterances),
                    )
                    return _Fetched(url=url, transcript=transcript)

        return list(await asyncio.gather(*(fetch_one(url) for url in urls)))

    async def _register_episode(self, transcript: Transcript) -> None:
        """Insert the episode row on first sight; never summarize twice."""
        meta = transcript.metadata
        existing = await self.episodes.get_by_title(meta.episode_title)

        if existing is not None:
            if existing.summary is None and meta.summary:
                await self.episodes.update_summary(meta.episode_title, meta.summary)
            logger.debug("episode_already_registered", episode_title=meta.episode_title)
            return

        summary = meta.summary
        if not summary:
            try:
                summary = await self.summarizer.summarize(
                    transcript.full_text(), mode=self.settings.summary_mode
                )
            except SummarizationError as exc:
                logger.warning(
                    "episode_registration_skipped",
                    episode_title=meta.episode_title,
                    error=str(exc),
                )
                return

        await self.episodes.create(
            EpisodeRecord(
                episode_title=meta.episode_title,
                speakers=list(meta.speakers),
                source=meta.source,
                summary=summary,
            )
        )

    def _chunk(self, transcript: Transcript) -> list[EnrichedChunk]:
        chunks = [enrich_chunk(transcript, c) for c in self.chunker.chunk_transcript(transcript)]
        logger.debug(
            "transcript_chunks_enriched",
            episode_title=transcript.episode_title,
            chunks=len(chunks),
        )
        return chunks

    async def _store_chunks(
        self, chunks: list[EnrichedChunk], latency_breakdown: dict[str, float]
    ) -> None:
        await self.vector_store.create_collection(
            self.collection, self.settings.embedding_dimensions
        )

        async with track_latency("ingest_embedding") as timing:
            vectors = await self.embeddings.embed_texts([c.text for c in chunks])
        latency_breakdown["embedding_ms"] = timing["duration_ms"]

        if len(vectors) != len(chunks):
            raise EmbeddingError(f"Expected {len(chunks)} embeddings, got {len(vectors)}")

        async with track_latency("ingest_upsert") as timing:
            await self.vector_store.upsert(
                self.collection,
                vectors,
                [c.to_vector_metadata() for c in chunks],
            )
        latency_breakdown["upsert_ms"] = timing["duration_ms"]
