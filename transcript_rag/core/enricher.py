"""
Chunk metadata enrichment.

Derives provenance for a chunk from the utterances it spans. Pure: no
I/O, same inputs always give the same metadata.
"""

from typing import Sequence

from transcript_rag.models.domain import (
    Chunk,
    ChunkMetadata,
    EnrichedChunk,
    Transcript,
    Utterance,
)
from transcript_rag.utils.timestamps import parse_timestamp


def make_chunk_id(episode_title: str, ordinal: int, timestamp_start: str, timestamp_end: str) -> str:
    return f"{episode_title}_chunk_{ordinal}_{timestamp_start}_{timestamp_end}"


def enrich_chunk(transcript: Transcript, chunk: Chunk) -> EnrichedChunk:
    """
    Attach episode and utterance provenance to a chunk.

    Indices outside the transcript's utterance list are skipped. Timestamps
    come from the lowest and highest surviving index in original position
    order, not clock order. A chunk with no surviving index gets empty
    timestamps and speakers.

    Args:
        transcript: Transcript the chunk was cut from
        chunk: Chunk with its spanned utterance indices

    Returns:
        The chunk with its vector metadata
    """
    spanned = _resolve(transcript.utterances, chunk.spanned_indices)

    timestamp_start = spanned[0].timestamp if spanned else ""
    timestamp_end = spanned[-1].timestamp if spanned else ""

    speakers_in_chunk: list[str] = []
    for utterance in spanned:
        speaker = utterance.speaker.strip()
        if speaker and speaker not in speakers_in_chunk:
            speakers_in_chunk.append(speaker)

    meta = transcript.metadata
    metadata = ChunkMetadata(
        episode_title=meta.episode_title,
        speakers=list(meta.speakers),
        source=meta.source,
        timestamp_start=timestamp_start,
        timestamp_end=timestamp_end,
        timestamp_start_seconds=parse_timestamp(timestamp_start),
        timestamp_end_seconds=parse_timestamp(timestamp_end),
        speakers_in_chunk=speakers_in_chunk,
        entries_count=len(spanned),
        chunk_id=make_chunk_id(meta.episode_title, chunk.ordinal, timestamp_start, timestamp_end),
    )

    return EnrichedChunk(
        text=chunk.text,
        spanned_indices=list(chunk.spanned_indices),
        metadata=metadata,
    )


def _resolve(utterances: Sequence[Utterance], indices: Sequence[int]) -> list[Utterance]:
    return [utterances[i] for i in sorted(set(indices)) if 0 <= i < len(utterances)]
