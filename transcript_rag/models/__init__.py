"""
Data models for the transcript RAG engine.
"""

from transcript_rag.models.domain import (
    Chunk,
    ChunkMatch,
    ChunkMetadata,
    EnrichedChunk,
    EpisodeOverview,
    EpisodeRecord,
    Transcript,
    TranscriptMetadata,
    Utterance,
    VectorMatch,
)
from transcript_rag.models.schemas import (
    IngestRequest,
    IngestResponse,
    SearchRequest,
    SearchResponse,
)

__all__ = [
    "Chunk",
    "ChunkMatch",
    "ChunkMetadata",
    "EnrichedChunk",
    "EpisodeOverview",
    "EpisodeRecord",
    "IngestRequest",
    "IngestResponse",
    "SearchRequest",
    "SearchResponse",
    "Transcript",
    "TranscriptMetadata",
    "Utterance",
    "VectorMatch",
]
