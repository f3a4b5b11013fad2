"""
Pydantic schemas for API request/response validation.

These models define the contract between the API and its clients,
ensuring type safety and automatic documentation.
"""

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from transcript_rag.models.domain import (
    ChunkMatch,
    EpisodeOverview,
    EpisodeSearchHit,
    SpeakerAppearances,
)
from transcript_rag.utils.timestamps import parse_timestamp


# =============================================================================
# Health & Metrics
# =============================================================================


class HealthResponse(BaseModel):
    """Health check response."""

    status: Literal["healthy", "degraded", "unhealthy"] = Field(
        ..., description="Service health status"
    )
    version: str = Field(..., description="Application version")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), description="Check timestamp"
    )
    services: dict[str, bool] = Field(
        default_factory=dict, description="Individual service health status"
    )


class LatencyMetrics(BaseModel):
    """Latency metrics for a single operation."""

    operation: str = Field(..., description="Operation name")
    p50_ms: float = Field(..., description="50th percentile latency in ms")
    p95_ms: float = Field(..., description="95th percentile latency in ms")
    p99_ms: float = Field(..., description="99th percentile latency in ms")
    avg_ms: float = Field(..., description="Mean latency in ms")
    count: int = Field(..., description="Samples in the reporting window")


class MetricsResponse(BaseModel):
    """Application metrics response."""

    uptime_seconds: float = Field(..., description="Application uptime in seconds")
    latencies: list[LatencyMetrics] = Field(
        default_factory=list, description="Latency metrics by operation"
    )


# =============================================================================
# Ingestion
# =============================================================================


class IngestRequest(BaseModel):
    """Request to ingest a batch of transcripts."""

    urls: list[str] = Field(
        ..., min_length=1, max_length=500, description="Transcript URLs or YouTube references"
    )

    model_config = {
        "json_schema_extra": {
            "example": {
                "urls": [
                    "https://example.com/transcripts/episode-12.json",
                    "https://www.youtube.com/watch?v=dQw4w9WgXcQ",
                ]
            }
        }
    }


class IngestResponse(BaseModel):
    """Outcome of an ingestion batch."""

    success: bool = Field(..., description="Whether the batch completed")
    total_chunks: int = Field(..., description="Chunks embedded and stored")
    processed_urls: list[str] = Field(
        default_factory=list, description="URLs ingested, in input order"
    )
    failed_urls: dict[str, str] = Field(
        default_factory=dict, description="URLs that could not be fetched or parsed, with the reason"
    )
    processing_time_ms: float = Field(default=0.0, description="Total processing time in ms")
    latency_breakdown: dict[str, float] = Field(
        default_factory=dict, description="Latency breakdown by stage"
    )


# =============================================================================
# Chunk Search
# =============================================================================


class SearchRequest(BaseModel):
    """Semantic search over transcript chunks."""

    query: str = Field(..., min_length=1, max_length=2000, description="Query text")
    top_k: int | None = Field(default=None, ge=1, le=100, description="Number of results")

    model_config = {"json_schema_extra": {"example": {"query": "What did they say about pricing?", "top_k": 12}}}


class SpeakerSearchRequest(BaseModel):
    """Search restricted to chunks where one speaker talks."""

    speaker: str = Field(..., min_length=1, max_length=200, description="Exact speaker name")
    query: str | None = Field(
        default=None, max_length=2000, description="Optional query; the speaker name is used when absent"
    )
    top_k: int | None = Field(default=None, ge=1, le=100, description="Number of results")


class TimeRangeSearchRequest(BaseModel):
    """Chunks overlapping a timestamp range."""

    start: float | str | None = Field(default=None, description="Seconds, MM:SS or HH:MM:SS")
    end: float | str | None = Field(default=None, description="Seconds, MM:SS or HH:MM:SS")
    episode_title: str | None = Field(default=None, description="Restrict to one episode")
    top_k: int | None = Field(default=None, ge=1, le=100, description="Number of results")

    @field_validator("start", "end")
    @classmethod
    def _valid_timestamp(cls, value: float | str | None) -> float | str | None:
        if isinstance(value, str) and value and parse_timestamp(value) is None:
            raise ValueError("expected MM:SS or HH:MM:SS")
        return value

    model_config = {"json_schema_extra": {"example": {"start": "10:00", "end": "15:30", "episode_title": "Episode 12"}}}


class SearchResponse(BaseModel):
    """Chunk search results."""

    results: list[ChunkMatch] = Field(default_factory=list, description="Matching chunks")
    count: int = Field(..., description="Number of results")


# =============================================================================
# Episodes
# =============================================================================


class EpisodeOverviewResponse(BaseModel):
    episodes: list[EpisodeOverview] = Field(default_factory=list)
    count: int


class EpisodeSearchResponse(BaseModel):
    """Relational episode search results."""

    results: list[EpisodeSearchHit] = Field(default_factory=list)
    count: int
    message: str = ""


class EpisodeStatsResponse(BaseModel):
    total_episodes: int
    top_speakers: list[SpeakerAppearances] = Field(default_factory=list)
    message: str = ""
