"""
Tests for the ingestion coordinator.
"""

from types import SimpleNamespace

import httpx
import pytest

from tests.conftest import make_transcript
from transcript_rag.core.chunker import ChunkConfig, Chunker
from transcript_rag.core.ingestion import IngestionCoordinator
from transcript_rag.exceptions import EmbeddingError, ParseError, StoreError
from transcript_rag.models.domain import EpisodeRecord
from transcript_rag.services.transcript_source import TranscriptSource

EP1 = "https://example.com/ep1.json"
EP2 = "https://example.com/ep2.json"
MISSING = "https://example.com/missing.json"

EP2_DOCUMENT = {
    "metadata": {"episode_title": "Episode 2", "speakers": ["Dana", "Eli"], "source": EP2},
    "transcript": [
        {"timestamp": "00:00", "speaker": "Dana", "text": "Welcome back to the show."},
        {"timestamp": "00:15", "speaker": "Eli", "text": "Glad to be here."},
    ],
}


class TestIngest:
    """Tests for batch ingestion."""

    @pytest.mark.asyncio
    async def test_ingests_batch(self, coordinator, vector_store, embeddings, episodes, summarizer):
        result = await coordinator.ingest([EP1, EP2])

        assert result.success
        assert result.processed_urls == [EP1, EP2]
        assert result.failed_urls == {}
        assert result.total_chunks == len(vector_store.metadata())
        assert result.total_chunks > 2
        assert result.processing_time_ms > 0
        assert set(episodes.rows) == {"Episode 1", "Episode 2"}
        assert len(summarizer.calls) == 2

    @pytest.mark.asyncio
    async def test_whole_batch_embedded_in_one_call(self, coordinator, embeddings, vector_store):
        result = await coordinator.ingest([EP1, EP2])

        assert len(embeddings.batch_calls) == 1
        assert len(embeddings.batch_calls[0]) == result.total_chunks
        assert vector_store.create_calls == 1

    @pytest.mark.asyncio
    async def test_stored_metadata(self, coordinator, vector_store):
        await coordinator.ingest([EP2])

        stored = vector_store.metadata()
        assert len(stored) == 1
        meta = stored[0]
        assert meta["episode_title"] == "Episode 2"
        assert meta["speakers_in_chunk"] == ["Dana", "Eli"]
        assert meta["timestamp_start"] == "00:00"
        assert meta["timestamp_end"] == "00:15"
        assert meta["timestamp_end_seconds"] == 15.0
        assert meta["entries_count"] == 3
        assert meta["chunk_id"] == "Episode 2_chunk_0_00:00_00:15"
        assert "Welcome back to the show." in meta["text"]

    @pytest.mark.asyncio
    async def test_chunk_ids_unique_within_episode(self, coordinator, vector_store):
        await coordinator.ingest([EP1])

        ids = [m["chunk_id"] for m in vector_store.metadata()]
        assert len(ids) == len(set(ids))

    @pytest.mark.asyncio
    async def test_latency_breakdown(self, coordinator):
        result = await coordinator.ingest([EP1])

        for key in ("fetch_ms", "register_ms", "embedding_ms", "upsert_ms"):
            assert key in result.latency_breakdown


class TestPartialFailure:
    """Per-URL failures do not abort the batch."""

    @pytest.mark.asyncio
    async def test_fetch_failure_is_recorded(
        self, coordinator, vector_store, sample_transcripts, test_settings
    ):
        chunker = Chunker(
            ChunkConfig(
                chunk_size=test_settings.chunk_size,
                chunk_overlap=test_settings.chunk_overlap,
            )
        )
        expected_chunks = sum(
            len(chunker.chunk_transcript(sample_transcripts[url])) for url in (EP1, EP2)
        )

        result = await coordinator.ingest([EP1, MISSING, EP2])

        assert result.success
        assert result.processed_urls == [EP1, EP2]
        assert list(result.failed_urls) == [MISSING]
        assert "404" in result.failed_urls[MISSING]
        assert result.total_chunks == len(vector_store.metadata())
        assert result.total_chunks == expected_chunks
        titles = {m["episode_title"] for m in vector_store.metadata()}
        assert titles == {"Episode 1", "Episode 2"}

    @pytest.mark.asyncio
    async def test_malformed_oembed_does_not_abort_batch(
        self, embeddings, vector_store, episodes, summarizer, test_settings
    ):
        video = "https://youtu.be/dQw4w9WgXcQ"

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/oembed":
                return httpx.Response(200, json=["not", "an", "object"])
            return httpx.Response(200, json=EP2_DOCUMENT)

        source = TranscriptSource(
            test_settings,
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            caption_api=SimpleNamespace(fetch=lambda video_id, languages: []),
        )
        coordinator = IngestionCoordinator(
            source=source,
            embeddings=embeddings,
            vector_store=vector_store,
            episodes=episodes,
            summarizer=summarizer,
            settings=test_settings,
        )

        result = await coordinator.ingest([video, EP2])

        assert result.processed_urls == [EP2]
        assert "not an object" in result.failed_urls[video]
        assert {m["episode_title"] for m in vector_store.metadata()} == {"Episode 2"}

    @pytest.mark.asyncio
    async def test_parse_failure_is_recorded(self, coordinator, source):
        bad = "https://example.com/bad.json"
        source.documents[bad] = ParseError(bad, "missing episode_title")

        result = await coordinator.ingest([bad, EP2])

        assert result.processed_urls == [EP2]
        assert "missing episode_title" in result.failed_urls[bad]

    @pytest.mark.asyncio
    async def test_nothing_fetched(self, coordinator, vector_store, embeddings):
        result = await coordinator.ingest([MISSING])

        assert result.success
        assert result.total_chunks == 0
        assert result.processed_urls == []
        assert vector_store.create_calls == 0
        assert embeddings.batch_calls == []

    @pytest.mark.asyncio
    async def test_transcript_without_text(self, coordinator, source, vector_store, episodes):
        silent = "https://example.com/silent.json"
        source.documents[silent] = make_transcript("Silent", [("00:00", "A", "   ")])

        result = await coordinator.ingest([silent])

        assert result.processed_urls == [silent]
        assert result.total_chunks == 0
        assert vector_store.metadata() == []
        assert "Silent" in episodes.rows


class TestEpisodeRegistration:
    """Tests for the episode row written alongside the chunks."""

    @pytest.mark.asyncio
    async def test_existing_episode_is_not_summarized_again(
        self, coordinator, episodes, summarizer, vector_store
    ):
        episodes.rows["Episode 2"] = EpisodeRecord(
            id=1, episode_title="Episode 2", speakers=["Dana"], source="s", summary="Old summary."
        )

        result = await coordinator.ingest([EP2])

        assert summarizer.calls == []
        assert episodes.create_calls == []
        assert episodes.rows["Episode 2"].summary == "Old summary."
        assert result.total_chunks == 1
        assert len(vector_store.metadata()) == 1

    @pytest.mark.asyncio
    async def test_duplicate_title_in_batch_registered_once(
        self, coordinator, source, sample_transcripts, episodes, summarizer
    ):
        mirror = "https://mirror.example.com/ep2.json"
        source.documents[mirror] = sample_transcripts[EP2]

        result = await coordinator.ingest([EP2, mirror])

        assert result.processed_urls == [EP2, mirror]
        assert episodes.create_calls == ["Episode 2"]
        assert len(summarizer.calls) == 1

    @pytest.mark.asyncio
    async def test_supplied_summary_skips_summarizer(self, coordinator, source, episodes, summarizer):
        url = "https://example.com/summarized.json"
        source.documents[url] = make_transcript(
            "Summarized", [("00:00", "A", "Some talk.")], summary="Given summary."
        )

        await coordinator.ingest([url])

        assert summarizer.calls == []
        assert episodes.rows["Summarized"].summary == "Given summary."

    @pytest.mark.asyncio
    async def test_missing_summary_filled_from_document(self, coordinator, source, episodes):
        url = "https://example.com/late.json"
        episodes.rows["Late"] = EpisodeRecord(id=1, episode_title="Late", source=url)
        source.documents[url] = make_transcript(
            "Late", [("00:00", "A", "Talk.")], summary="Arrived later."
        )

        await coordinator.ingest([url])

        assert episodes.summary_updates == [("Late", "Arrived later.")]
        assert episodes.rows["Late"].summary == "Arrived later."

    @pytest.mark.asyncio
    async def test_summarizer_receives_full_text(self, coordinator, summarizer, test_settings):
        await coordinator.ingest([EP2])

        text, mode = summarizer.calls[0]
        assert text == (
            "Welcome back to the show.\n"
            "Thanks for having me, Dana.\n"
            "Let us talk about distributed databases."
        )
        assert mode == test_settings.summary_mode

    @pytest.mark.asyncio
    async def test_summarization_failure_keeps_chunks(
        self, coordinator, summarizer, episodes, vector_store
    ):
        summarizer.fail = True

        result = await coordinator.ingest([EP2])

        assert result.success
        assert episodes.rows == {}
        assert len(vector_store.metadata()) == 1


class TestFatalErrors:
    """Embedding and store failures abort the call."""

    @pytest.mark.asyncio
    async def test_embedding_failure_propagates(self, coordinator, embeddings, vector_store):
        embeddings.fail = True

        with pytest.raises(EmbeddingError):
            await coordinator.ingest([EP1, EP2])

        assert vector_store.metadata() == []

    @pytest.mark.asyncio
    async def test_upsert_failure_propagates(self, coordinator, vector_store):
        vector_store.fail_upsert = True

        with pytest.raises(StoreError):
            await coordinator.ingest([EP1])

    @pytest.mark.asyncio
    async def test_embedding_count_mismatch(self, coordinator, embeddings):
        async def short_batch(texts):
            return [[0.1] * 8]

        embeddings.embed_texts = short_batch

        with pytest.raises(EmbeddingError):
            await coordinator.ingest([EP1])


class TestReindexAndSingle:
    @pytest.mark.asyncio
    async def test_reindex_replaces_collection(self, coordinator, vector_store):
        await coordinator.ingest([EP1, EP2])

        result = await coordinator.reindex([EP2])

        assert vector_store.delete_calls == 1
        assert len(vector_store.metadata()) == result.total_chunks == 1
        assert {m["episode_title"] for m in vector_store.metadata()} == {"Episode 2"}

    @pytest.mark.asyncio
    async def test_reingest_without_reindex_duplicates_vectors(self, coordinator, vector_store):
        await coordinator.ingest([EP2])
        await coordinator.ingest([EP2])

        assert len(vector_store.metadata()) == 2

    @pytest.mark.asyncio
    async def test_ingest_one(self, coordinator, vector_store):
        result = await coordinator.ingest_one(EP2)

        assert result.processed_urls == [EP2]
        assert len(vector_store.metadata()) == 1


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_concurrent_fetch_keeps_input_order(
        self, source, embeddings, vector_store, episodes, summarizer, test_settings
    ):
        source.delays = {EP1: 0.05, MISSING: 0.02}
        coordinator = IngestionCoordinator(
            source=source,
            embeddings=embeddings,
            vector_store=vector_store,
            episodes=episodes,
            summarizer=summarizer,
            settings=test_settings.model_copy(update={"ingest_concurrency": 4}),
        )

        result = await coordinator.ingest([EP1, MISSING, EP2])

        assert source.fetched[0] == EP2
        assert result.processed_urls == [EP1, EP2]
        assert list(result.failed_urls) == [MISSING]
        first_titles = [m["episode_title"] for m in vector_store.metadata()]
        assert first_titles[0] == "Episode 1"
        assert first_titles[-1] == "Episode 2"
