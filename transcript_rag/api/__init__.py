"""
API layer for the transcript RAG engine.
"""

from transcript_rag.api.routes import router

__all__ = ["router"]
