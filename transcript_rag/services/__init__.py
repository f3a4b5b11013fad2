"""
External service integrations for the transcript RAG engine.
"""

from transcript_rag.services.embeddings import EmbeddingService
from transcript_rag.services.episodes import SqlEpisodeRepository
from transcript_rag.services.summarizer import SummarizerService
from transcript_rag.services.transcript_source import TranscriptSource
from transcript_rag.services.vectordb import PineconeVectorStore

__all__ = [
    "EmbeddingService",
    "PineconeVectorStore",
    "SqlEpisodeRepository",
    "SummarizerService",
    "TranscriptSource",
]
