"""
Exception hierarchy for the transcript pipeline.

Fetch and parse failures are per-transcript and recoverable at the
ingestion boundary; embedding and store failures abort the call.
"""


class TranscriptRAGError(Exception):
    """Base class for all pipeline errors."""


class FetchError(TranscriptRAGError):
    """A transcript source could not be retrieved (network or HTTP failure)."""

    def __init__(self, url: str, message: str, status_code: int | None = None) -> None:
        self.url = url
        self.status_code = status_code
        super().__init__(f"{url}: {message}")


class ParseError(TranscriptRAGError):
    """A transcript document was malformed or missed required fields."""

    def __init__(self, url: str, message: str) -> None:
        self.url = url
        super().__init__(f"{url}: {message}")


class EmbeddingError(TranscriptRAGError):
    """The embedding capability failed."""


class StoreError(TranscriptRAGError):
    """The vector store or the relational store failed."""


class SummarizationError(TranscriptRAGError):
    """The summarization capability failed."""
