"""
Utility modules for the transcript RAG engine.
"""

from transcript_rag.utils.latency import LatencyTracker, get_tracker, track_latency
from transcript_rag.utils.logging import LogContext, setup_logging
from transcript_rag.utils.timestamps import format_timestamp, parse_timestamp

__all__ = [
    "LatencyTracker",
    "LogContext",
    "format_timestamp",
    "get_tracker",
    "parse_timestamp",
    "setup_logging",
    "track_latency",
]
