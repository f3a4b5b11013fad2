"""
Transcript chunking.

Splits a transcript's utterances into overlapping, sentence-aware text
windows sized in characters. Provenance is kept by tracking the
character span of every utterance in the joined text and intersecting
it with each window, so no tagging ever enters the window text.

Windowing rules:
- sentences end at terminal punctuation followed by whitespace, and at
  the newline that separates utterances
- a window never cuts through a sentence unless that sentence alone is
  larger than ``chunk_size``; such sentences are cut at the last space
  inside the limit (or hard-cut when there is none)
- each window after the first starts up to ``chunk_overlap`` characters
  before the end of the previous one, at a sentence start when one
  falls in that tail, otherwise at a word start
"""

import re
from dataclasses import dataclass
from typing import Iterator, NamedTuple, Sequence

import structlog

from transcript_rag.config import get_settings
from transcript_rag.models.domain import Chunk, Transcript, Utterance
from transcript_rag.utils.latency import latency_tracked

logger = structlog.get_logger(__name__)

UTTERANCE_SEPARATOR = "\n"

_LINE = re.compile(r"[^\n]+")
_SENTENCE_END = re.compile(r"[.!?]+[\"'”’)\]]*\s+")


class _Span(NamedTuple):
    index: int
    start: int
    end: int


@dataclass
class ChunkConfig:
    """Configuration for chunking behavior."""

    chunk_size: int = 600  # max characters per window
    chunk_overlap: int = 60  # characters carried over from the previous window


class Chunker:
    """
    Sentence-aware sliding-window chunker for transcripts.

    Produces :class:`Chunk` objects whose ``spanned_indices`` refer to
    positions in the transcript's original utterance list. Empty
    utterances are skipped but never shift those positions.
    """

    def __init__(self, config: ChunkConfig | None = None) -> None:
        if config is None:
            settings = get_settings()
            config = ChunkConfig(
                chunk_size=settings.chunk_size,
                chunk_overlap=settings.chunk_overlap,
            )

        if config.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if not 0 <= config.chunk_overlap < config.chunk_size:
            raise ValueError("chunk_overlap must be >= 0 and smaller than chunk_size")

        self.config = config

    @latency_tracked("chunking")
    def chunk_transcript(self, transcript: Transcript) -> list[Chunk]:
        """
        Split a transcript into overlapping windows.

        Args:
            transcript: Normalized transcript

        Returns:
            Chunks in document order, ordinals starting at 0
        """
        text, spans = self._join(transcript.utterances)
        if not spans:
            return []

        chunks: list[Chunk] = []
        for start, end in self._windows(text):
            window_text = text[start:end].strip()
            if not window_text:
                continue
            chunks.append(
                Chunk(
                    ordinal=len(chunks),
                    text=window_text,
                    spanned_indices=self._spanned(spans, start, end),
                )
            )

        logger.debug(
            "transcript_chunked",
            episode_title=transcript.episode_title,
            utterances=len(spans),
            characters=len(text),
            chunks=len(chunks),
        )
        return chunks

    def _join(self, utterances: Sequence[Utterance]) -> tuple[str, list[_Span]]:
        """Join non-empty utterance texts, recording each one's span."""
        parts: list[str] = []
        spans: list[_Span] = []
        cursor = 0

        for index, utterance in enumerate(utterances):
            text = utterance.text.strip()
            if not text:
                continue
            if parts:
                cursor += len(UTTERANCE_SEPARATOR)
            spans.append(_Span(index, cursor, cursor + len(text)))
            parts.append(text)
            cursor += len(text)

        return UTTERANCE_SEPARATOR.join(parts), spans

    @staticmethod
    def _spanned(spans: Sequence[_Span], start: int, end: int) -> list[int]:
        """Indices of utterances whose text intersects ``[start, end)``."""
        return [s.index for s in spans if s.start < end and s.end > start]

    def _windows(self, text: str) -> list[tuple[int, int]]:
        """Pack sentence pieces into overlapping windows of character offsets."""
        size = self.config.chunk_size
        windows: list[tuple[int, int]] = []
        win_start = win_end = -1
        piece_starts: list[int] = []

        for piece_start, piece_end in self._pieces(text):
            if win_start < 0:
                win_start, win_end = piece_start, piece_end
                piece_starts = [piece_start]
                continue

            if piece_end - win_start <= size:
                win_end = piece_end
                piece_starts.append(piece_start)
                continue

            windows.append((win_start, win_end))
            new_start = self._overlap_start(
                text, piece_starts, win_start, win_end, piece_start, piece_end
            )
            piece_starts = [s for s in piece_starts if s >= new_start] + [piece_start]
            win_start, win_end = new_start, piece_end

        if win_start >= 0:
            windows.append((win_start, win_end))
        return windows

    def _overlap_start(
        self,
        text: str,
        piece_starts: Sequence[int],
        win_start: int,
        win_end: int,
        next_start: int,
        next_end: int,
    ) -> int:
        """Where the window after ``[win_start, win_end)`` begins."""
        if self.config.chunk_overlap == 0:
            return next_start

        floor = max(
            win_end - self.config.chunk_overlap,
            win_start + 1,
            next_end - self.config.chunk_size,
        )
        for start in piece_starts:
            if floor <= start < win_end:
                return start

        for pos in range(floor, win_end):
            if not text[pos].isspace() and text[pos - 1].isspace():
                return pos

        return next_start

    def _pieces(self, text: str) -> Iterator[tuple[int, int]]:
        """Sentence spans, with oversized sentences cut down to ``chunk_size``."""
        for start, end in self._sentence_spans(text):
            if end - start <= self.config.chunk_size:
                yield start, end
            else:
                yield from self._split_oversized(text, start, end)

    def _sentence_spans(self, text: str) -> Iterator[tuple[int, int]]:
        for line in _LINE.finditer(text):
            start = line.start()
            for match in _SENTENCE_END.finditer(text, line.start(), line.end()):
                span = _trim(text, start, match.end())
                if span:
                    yield span
                start = match.end()
            span = _trim(text, start, line.end())
            if span:
                yield span

    def _split_oversized(self, text: str, start: int, end: int) -> Iterator[tuple[int, int]]:
        size = self.config.chunk_size
        while end - start > size:
            cut = text.rfind(" ", start + 1, start + size + 1)
            if cut <= start:
                cut = start + size
            span = _trim(text, start, cut)
            if span:
                yield span
            start = cut
            while start < end and text[start].isspace():
                start += 1
        span = _trim(text, start, end)
        if span:
            yield span


def _trim(text: str, start: int, end: int) -> tuple[int, int] | None:
    """Shrink ``[start, end)`` past surrounding whitespace; None if nothing is left."""
    while start < end and text[start].isspace():
        start += 1
    while end > start and text[end - 1].isspace():
        end -= 1
    return (start, end) if start < end else None
