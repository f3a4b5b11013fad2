"""
Pytest configuration and fixtures.

Every external capability has an in-memory fake here so the pipeline can
be exercised without network access.
"""

import asyncio
import hashlib
import math
import random
from typing import Any, Sequence

import pytest

from transcript_rag.config import Settings
from transcript_rag.core.ingestion import IngestionCoordinator
from transcript_rag.core.retrieval import TranscriptRetriever
from transcript_rag.exceptions import EmbeddingError, FetchError, StoreError, SummarizationError
from transcript_rag.models.domain import (
    EpisodeRecord,
    EpisodeSearchHit,
    EpisodeStats,
    SpeakerAppearances,
    Transcript,
    TranscriptMetadata,
    Utterance,
    VectorMatch,
)

DIMENSIONS = 8


# =============================================================================
# Fakes
# =============================================================================


class FakeEmbeddingService:
    """Deterministic hash-seeded embeddings."""

    def __init__(self, dimensions: int = DIMENSIONS) -> None:
        self.dimensions = dimensions
        self.batch_calls: list[list[str]] = []
        self.single_calls: list[str] = []
        self.fail = False

    def _vector(self, text: str) -> list[float]:
        rng = random.Random(int(hashlib.md5(text.encode()).hexdigest()[:8], 16))
        return [rng.uniform(-1, 1) for _ in range(self.dimensions)]

    async def embed_text(self, text: str) -> list[float]:
        if self.fail:
            raise EmbeddingError("embedding backend unavailable")
        self.single_calls.append(text)
        return self._vector(text)

    async def embed_texts(self, texts: Sequence[str]) -> list[list[float]]:
        if self.fail:
            raise EmbeddingError("embedding backend unavailable")
        self.batch_calls.append(list(texts))
        return [self._vector(t) for t in texts]


def _matches_condition(value: Any, condition: Any) -> bool:
    if not isinstance(condition, dict):
        condition = {"$eq": condition}

    for op, expected in condition.items():
        if value is None:
            return False
        if isinstance(value, list):
            if op == "$in" and not set(value) & set(expected):
                return False
            if op == "$eq" and expected not in value:
                return False
            continue
        if op == "$eq" and value != expected:
            return False
        if op == "$ne" and value == expected:
            return False
        if op == "$in" and value not in expected:
            return False
        if op == "$gte" and not value >= expected:
            return False
        if op == "$gt" and not value > expected:
            return False
        if op == "$lte" and not value <= expected:
            return False
        if op == "$lt" and not value < expected:
            return False
    return True


def matches_filter(metadata: dict[str, Any], filter: dict[str, Any] | None) -> bool:
    """Evaluate the subset of Pinecone's filter language the pipeline uses."""
    if not filter:
        return True
    for key, condition in filter.items():
        if key == "$and":
            if not all(matches_filter(metadata, sub) for sub in condition):
                return False
        elif key == "$or":
            if not any(matches_filter(metadata, sub) for sub in condition):
                return False
        elif not _matches_condition(metadata.get(key), condition):
            return False
    return True


def _cosine(a: Sequence[float], b: Sequence[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


class InMemoryVectorStore:
    """Vector store keeping collections in dicts; upserting needs a created collection."""

    def __init__(self) -> None:
        self.collections: dict[str, list[tuple[str, list[float], dict[str, Any]]]] = {}
        self.create_calls = 0
        self.delete_calls = 0
        self.queries: list[dict[str, Any]] = []
        self.fail_upsert = False

    async def create_collection(self, name: str, dimension: int) -> None:
        self.create_calls += 1
        self.collections.setdefault(name, [])

    async def upsert(
        self,
        name: str,
        vectors: Sequence[list[float]],
        metadata: Sequence[dict[str, Any]],
    ) -> list[str]:
        if self.fail_upsert:
            raise StoreError("vector store unavailable")
        if name not in self.collections:
            raise StoreError(f"collection {name} does not exist")
        ids = []
        for values, meta in zip(vectors, metadata):
            vector_id = f"vec-{sum(len(v) for v in self.collections.values())}"
            self.collections[name].append((vector_id, list(values), dict(meta)))
            ids.append(vector_id)
        return ids

    async def query(
        self,
        name: str,
        vector: list[float],
        top_k: int,
        filter: dict[str, Any] | None = None,
    ) -> list[VectorMatch]:
        self.queries.append({"name": name, "vector": vector, "top_k": top_k, "filter": filter})
        if name not in self.collections:
            raise StoreError(f"collection {name} does not exist")
        hits = [
            VectorMatch(id=vector_id, score=_cosine(vector, values), metadata=meta)
            for vector_id, values, meta in self.collections[name]
            if matches_filter(meta, filter)
        ]
        hits.sort(key=lambda m: m.score, reverse=True)
        return hits[:top_k]

    async def delete_collection(self, name: str) -> None:
        self.delete_calls += 1
        self.collections.pop(name, None)

    def metadata(self, name: str = "transcripts") -> list[dict[str, Any]]:
        return [meta for _, _, meta in self.collections.get(name, [])]


class FakeEpisodeRepository:
    def __init__(self) -> None:
        self.rows: dict[str, EpisodeRecord] = {}
        self.create_calls: list[str] = []
        self.summary_updates: list[tuple[str, str]] = []

    async def get_by_title(self, episode_title: str) -> EpisodeRecord | None:
        return self.rows.get(episode_title)

    async def create(self, record: EpisodeRecord) -> EpisodeRecord:
        self.create_calls.append(record.episode_title)
        stored = record.model_copy(update={"id": len(self.rows) + 1})
        self.rows[record.episode_title] = stored
        return stored

    async def update_summary(self, episode_title: str, summary: str) -> None:
        self.summary_updates.append((episode_title, summary))
        self.rows[episode_title] = self.rows[episode_title].model_copy(update={"summary": summary})

    def _hit(self, row: EpisodeRecord, score: float | None = None) -> EpisodeSearchHit:
        return EpisodeSearchHit(
            id=row.id or 0,
            episode_title=row.episode_title,
            speakers=row.speakers,
            source=row.source,
            relevance_score=score,
        )

    async def search_episodes(self, query: str, limit: int | None = None) -> list[EpisodeSearchHit]:
        words = query.lower().split()
        hits = [
            self._hit(row, 1.0)
            for row in self.rows.values()
            if any(w in row.episode_title.lower() for w in words)
        ]
        return hits[:limit] if limit else hits

    async def find_by_speaker(self, speaker_name: str, limit: int = 20) -> list[EpisodeSearchHit]:
        needle = speaker_name.lower()
        hits = [
            self._hit(row)
            for row in self.rows.values()
            if any(needle in s.lower() for s in row.speakers)
        ]
        return hits[:limit]

    async def search_by_speaker_and_title(
        self, speaker_name: str, query: str, limit: int = 10
    ) -> list[EpisodeSearchHit]:
        by_speaker = {h.episode_title for h in await self.find_by_speaker(speaker_name)}
        hits = [h for h in await self.search_episodes(query) if h.episode_title in by_speaker]
        return hits[:limit]

    async def stats(self) -> EpisodeStats:
        counts: dict[str, int] = {}
        for row in self.rows.values():
            for speaker in row.speakers:
                counts[speaker] = counts.get(speaker, 0) + 1
        top = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))[:10]
        return EpisodeStats(
            total_episodes=len(self.rows),
            top_speakers=[SpeakerAppearances(name=n, appearances=c) for n, c in top],
        )


class FakeSummarizer:
    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []
        self.fail = False

    async def summarize(self, full_text: str, mode: str = "short") -> str:
        self.calls.append((full_text, mode))
        if self.fail:
            raise SummarizationError("summarizer unavailable")
        return f"Summary of {len(full_text)} characters."


class FakeSource:
    """Serves transcripts or raises errors by URL."""

    def __init__(self, documents: dict[str, Transcript | Exception] | None = None) -> None:
        self.documents = dict(documents or {})
        self.delays: dict[str, float] = {}
        self.fetched: list[str] = []

    async def fetch(self, url: str) -> Transcript:
        if url in self.delays:
            await asyncio.sleep(self.delays[url])
        self.fetched.append(url)
        if url not in self.documents:
            raise FetchError(url, "HTTP 404", status_code=404)
        document = self.documents[url]
        if isinstance(document, Exception):
            raise document
        return document


# =============================================================================
# Builders
# =============================================================================


def make_transcript(
    title: str,
    utterances: list[tuple[str, str, str]],
    speakers: list[str] | None = None,
    source: str | None = None,
    summary: str | None = None,
) -> Transcript:
    return Transcript(
        metadata=TranscriptMetadata(
            episode_title=title,
            speakers=speakers if speakers is not None else sorted({s for _, s, _ in utterances if s}),
            source=source or f"https://example.com/{title.lower().replace(' ', '-')}.json",
            summary=summary,
        ),
        utterances=[Utterance(timestamp=t, speaker=s, text=x) for t, s, x in utterances],
    )


def long_conversation(turns: int = 30) -> list[tuple[str, str, str]]:
    speakers = ["Alice", "Bob", "Carol"]
    topics = ["pricing", "hiring", "roadmap", "security", "latency", "onboarding"]
    rows = []
    for i in range(turns):
        minutes, seconds = divmod(i * 20, 60)
        topic = topics[i % len(topics)]
        text = (
            f"Turn {i} is about {topic}. "
            f"We spent a while on the {topic} numbers and agreed on next steps for item {i}."
        )
        rows.append((f"{minutes:02d}:{seconds:02d}", speakers[i % len(speakers)], text))
    return rows


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def test_settings() -> Settings:
    """Settings isolated from the environment and any .env file."""
    return Settings(
        _env_file=None,
        app_env="development",
        debug=True,
        openai_api_key="test_key",
        anthropic_api_key="test_key",
        pinecone_api_key="test_key",
        embedding_dimensions=DIMENSIONS,
        vector_collection_name="transcripts",
        chunk_size=200,
        chunk_overlap=40,
    )


@pytest.fixture
def embeddings() -> FakeEmbeddingService:
    return FakeEmbeddingService()


@pytest.fixture
def vector_store() -> InMemoryVectorStore:
    return InMemoryVectorStore()


@pytest.fixture
def episodes() -> FakeEpisodeRepository:
    return FakeEpisodeRepository()


@pytest.fixture
def summarizer() -> FakeSummarizer:
    return FakeSummarizer()


@pytest.fixture
def sample_transcripts() -> dict[str, Transcript]:
    return {
        "https://example.com/ep1.json": make_transcript(
            "Episode 1", long_conversation(12), speakers=["Alice", "Bob", "Carol"]
        ),
        "https://example.com/ep2.json": make_transcript(
            "Episode 2",
            [
                ("00:00", "Dana", "Welcome back to the show."),
                ("00:07", "Eli", "Thanks for having me, Dana."),
                ("00:15", "Dana", "Let us talk about distributed databases."),
            ],
        ),
    }


@pytest.fixture
def source(sample_transcripts: dict[str, Transcript]) -> FakeSource:
    return FakeSource(sample_transcripts)


@pytest.fixture
def coordinator(
    source: FakeSource,
    embeddings: FakeEmbeddingService,
    vector_store: InMemoryVectorStore,
    episodes: FakeEpisodeRepository,
    summarizer: FakeSummarizer,
    test_settings: Settings,
) -> IngestionCoordinator:
    return IngestionCoordinator(
        source=source,
        embeddings=embeddings,
        vector_store=vector_store,
        episodes=episodes,
        summarizer=summarizer,
        settings=test_settings,
    )


@pytest.fixture
def retriever(
    embeddings: FakeEmbeddingService,
    vector_store: InMemoryVectorStore,
    test_settings: Settings,
) -> TranscriptRetriever:
    return TranscriptRetriever(embeddings, vector_store, test_settings)
