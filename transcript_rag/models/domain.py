"""
Core domain models for the transcript pipeline.

Utterances and transcripts are parsed fresh on every ingestion and never
stored raw. Chunks are ephemeral too; only their metadata survives, as
the payload carried next to each vector.
"""

from typing import Any, Literal

from pydantic import BaseModel, Field

SOURCE_TYPE = "transcript"


class Utterance(BaseModel):
    """One spoken unit of a transcript."""

    timestamp: str = Field(default="", description="MM:SS or HH:MM:SS, empty if unknown")
    speaker: str = Field(default="", description="Speaker name, empty if unknown")
    text: str = Field(..., description="Spoken text")


class TranscriptMetadata(BaseModel):
    """Episode-level metadata declared by the transcript document."""

    episode_title: str = Field(..., min_length=1, description="Unique episode key")
    speakers: list[str] = Field(default_factory=list, description="Declared speaker roster")
    source: str = Field(..., min_length=1, description="Origin URL or description")
    summary: str | None = Field(default=None, description="Pre-supplied summary")


class Transcript(BaseModel):
    """
    A normalized transcript.

    The ``simple`` variant comes from documents that carry one text blob
    instead of an utterance list; it is held as a single utterance with
    empty timestamp and speaker.
    """

    metadata: TranscriptMetadata
    utterances: list[Utterance] = Field(default_factory=list)
    variant: Literal["structured", "simple"] = "structured"

    @property
    def episode_title(self) -> str:
        return self.metadata.episode_title

    def full_text(self) -> str:
        """All non-empty utterance texts joined by newlines."""
        return "\n".join(u.text.strip() for u in self.utterances if u.text.strip())


class Chunk(BaseModel):
    """A text window produced by the chunker, before enrichment."""

    ordinal: int = Field(..., ge=0, description="Position of the chunk within its transcript")
    text: str = Field(..., description="Window text")
    spanned_indices: list[int] = Field(
        default_factory=list, description="Sorted original utterance positions in this window"
    )


class ChunkMetadata(BaseModel):
    """Provenance persisted alongside each chunk vector."""

    episode_title: str
    speakers: list[str] = Field(default_factory=list)
    source: str
    source_type: str = SOURCE_TYPE
    timestamp_start: str = ""
    timestamp_end: str = ""
    timestamp_start_seconds: float | None = None
    timestamp_end_seconds: float | None = None
    speakers_in_chunk: list[str] = Field(default_factory=list)
    entries_count: int = 0
    chunk_id: str


class EnrichedChunk(BaseModel):
    """A chunk with its derived metadata, ready for embedding."""

    text: str
    spanned_indices: list[int] = Field(default_factory=list)
    metadata: ChunkMetadata

    def to_vector_metadata(self) -> dict[str, Any]:
        """Flatten into the vector-store payload, chunk text included."""
        payload = self.metadata.model_dump(exclude_none=True)
        payload["text"] = self.text
        return payload


class VectorMatch(BaseModel):
    """A raw hit returned by the vector store."""

    id: str
    score: float
    metadata: dict[str, Any] = Field(default_factory=dict)


class ChunkMatch(BaseModel):
    """A retrieved chunk with the provenance the answering consumer cites."""

    text: str = ""
    timestamp_start: str = ""
    timestamp_end: str = ""
    speakers_in_chunk: list[str] = Field(default_factory=list)
    episode_title: str = ""
    source: str = ""
    chunk_id: str = ""
    score: float = 0.0

    @classmethod
    def from_vector_match(cls, match: VectorMatch) -> "ChunkMatch":
        meta = match.metadata
        return cls(
            text=str(meta.get("text", "")),
            timestamp_start=str(meta.get("timestamp_start", "")),
            timestamp_end=str(meta.get("timestamp_end", "")),
            speakers_in_chunk=list(meta.get("speakers_in_chunk") or []),
            episode_title=str(meta.get("episode_title", "")),
            source=str(meta.get("source", "")),
            chunk_id=str(meta.get("chunk_id", "")),
            score=match.score,
        )


class EpisodeOverview(BaseModel):
    """One episode as seen through the chunks that matched a broad query."""

    episode_title: str
    speakers: list[str] = Field(default_factory=list)
    source: str = ""
    matched_chunks: int = 0


class EpisodeRecord(BaseModel):
    """The relational episode row."""

    id: int | None = None
    episode_title: str
    speakers: list[str] = Field(default_factory=list)
    source: str
    summary: str | None = None


class EpisodeSearchHit(BaseModel):
    """An episode returned by the relational full-text path."""

    id: int
    episode_title: str
    speakers: list[str] = Field(default_factory=list)
    source: str
    relevance_score: float | None = None


class SpeakerAppearances(BaseModel):
    name: str
    appearances: int


class EpisodeStats(BaseModel):
    total_episodes: int = 0
    top_speakers: list[SpeakerAppearances] = Field(default_factory=list)
