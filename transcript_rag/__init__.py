"""
Transcript RAG Engine.

Ingests podcast and video transcripts into a vector collection with
per-chunk speaker and timestamp provenance, and serves similarity,
speaker, time-range and episode queries over it.
"""

__version__ = "0.1.0"
