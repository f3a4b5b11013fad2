"""
Core transcript pipeline components.
"""

from transcript_rag.core.chunker import Chunker, ChunkConfig
from transcript_rag.core.enricher import enrich_chunk
from transcript_rag.core.ingestion import IngestionCoordinator, IngestResult
from transcript_rag.core.retrieval import TranscriptRetriever

__all__ = [
    "ChunkConfig",
    "Chunker",
    "IngestResult",
    "IngestionCoordinator",
    "TranscriptRetriever",
    "enrich_chunk",
]
