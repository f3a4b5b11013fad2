"""
REST API routes for the transcript RAG engine.

Provides endpoints for transcript ingestion, chunk retrieval, episode
lookups and system status.
"""

from typing import Annotated

import structlog
from fastapi import APIRouter, HTTPException, Query, Request

from transcript_rag import __version__
from transcript_rag.api.deps import CoordinatorDep, EpisodesDep, RetrieverDep, SettingsDep
from transcript_rag.core.ingestion import IngestResult
from transcript_rag.models.schemas import (
    EpisodeOverviewResponse,
    EpisodeSearchResponse,
    EpisodeStatsResponse,
    HealthResponse,
    IngestRequest,
    IngestResponse,
    LatencyMetrics,
    MetricsResponse,
    SearchRequest,
    SearchResponse,
    SpeakerSearchRequest,
    TimeRangeSearchRequest,
)
from transcript_rag.utils.latency import get_tracker
from transcript_rag.utils.uptime import get_uptime

logger = structlog.get_logger(__name__)

router = APIRouter()


def _unprocessable(exc: ValueError) -> HTTPException:
    return HTTPException(status_code=422, detail=str(exc))


def _ingest_response(result: IngestResult) -> IngestResponse:
    return IngestResponse(
        success=result.success,
        total_chunks=result.total_chunks,
        processed_urls=result.processed_urls,
        failed_urls=result.failed_urls,
        processing_time_ms=result.processing_time_ms,
        latency_breakdown=result.latency_breakdown,
    )


# =============================================================================
# Health & Status
# =============================================================================


@router.get(
    "/health",
    response_model=HealthResponse,
    tags=["System"],
    summary="Health check",
)
async def health_check(request: Request, settings: SettingsDep) -> HealthResponse:
    """Report which services are configured and initialized."""
    state = request.app.state
    services = {
        "openai": bool(settings.openai_api_key.get_secret_value()),
        "anthropic": bool(settings.anthropic_api_key.get_secret_value()),
        "pinecone": bool(settings.pinecone_api_key.get_secret_value()),
        "coordinator": getattr(state, "coordinator", None) is not None,
        "retriever": getattr(state, "retriever", None) is not None,
        "episodes": getattr(state, "episodes", None) is not None,
    }

    # Retrieval needs embeddings and the vector store; the rest is optional
    critical = services["openai"] and services["pinecone"] and services["retriever"]
    if all(services.values()):
        status_val = "healthy"
    elif critical:
        status_val = "degraded"
    else:
        status_val = "unhealthy"

    return HealthResponse(status=status_val, version=__version__, services=services)


@router.get(
    "/metrics",
    response_model=MetricsResponse,
    tags=["System"],
    summary="Latency metrics",
)
async def get_metrics() -> MetricsResponse:
    """Uptime and per-operation latency percentiles."""
    return MetricsResponse(
        uptime_seconds=get_uptime(),
        latencies=[LatencyMetrics(**m) for m in get_tracker().snapshot()],
    )


# =============================================================================
# Ingestion
# =============================================================================


@router.post(
    "/transcripts/ingest",
    response_model=IngestResponse,
    tags=["Transcripts"],
    summary="Ingest transcripts",
)
async def ingest_transcripts(request: IngestRequest, coordinator: CoordinatorDep) -> IngestResponse:
    """
    Fetch, chunk, embed and store a batch of transcripts.

    URLs that cannot be fetched or parsed are reported in ``failed_urls``
    and do not fail the request.
    """
    logger.info("ingest_request", urls=len(request.urls))
    result = await coordinator.ingest(request.urls)
    return _ingest_response(result)


@router.post(
    "/transcripts/reindex",
    response_model=IngestResponse,
    tags=["Transcripts"],
    summary="Rebuild the chunk collection",
)
async def reindex_transcripts(request: IngestRequest, coordinator: CoordinatorDep) -> IngestResponse:
    """Drop every stored chunk vector, then ingest the given transcripts."""
    logger.warning("reindex_requested", urls=len(request.urls))
    result = await coordinator.reindex(request.urls)
    return _ingest_response(result)


# =============================================================================
# Chunk Search
# =============================================================================


@router.post("/search", response_model=SearchResponse, tags=["Search"], summary="Semantic search")
async def search(request: SearchRequest, retriever: RetrieverDep) -> SearchResponse:
    try:
        results = await retriever.search(request.query, top_k=request.top_k)
    except ValueError as exc:
        raise _unprocessable(exc) from exc
    return SearchResponse(results=results, count=len(results))


@router.post(
    "/search/speaker",
    response_model=SearchResponse,
    tags=["Search"],
    summary="Search one speaker's chunks",
)
async def search_by_speaker(request: SpeakerSearchRequest, retriever: RetrieverDep) -> SearchResponse:
    try:
        results = await retriever.search_by_speaker(
            request.speaker, query=request.query, top_k=request.top_k
        )
    except ValueError as exc:
        raise _unprocessable(exc) from exc
    return SearchResponse(results=results, count=len(results))


@router.post(
    "/search/time-range",
    response_model=SearchResponse,
    tags=["Search"],
    summary="Chunks within a time range",
)
async def search_by_time_range(
    request: TimeRangeSearchRequest, retriever: RetrieverDep
) -> SearchResponse:
    try:
        results = await retriever.search_by_time_range(
            start=request.start,
            end=request.end,
            episode_title=request.episode_title,
            top_k=request.top_k,
        )
    except ValueError as exc:
        raise _unprocessable(exc) from exc
    return SearchResponse(results=results, count=len(results))


# =============================================================================
# Episodes
# =============================================================================


@router.get(
    "/episodes/overview",
    response_model=EpisodeOverviewResponse,
    tags=["Episodes"],
    summary="Episodes seen in the chunk collection",
)
async def episode_overview(
    retriever: RetrieverDep,
    episode_title: str | None = None,
    top_k: Annotated[int | None, Query(ge=1, le=1000)] = None,
) -> EpisodeOverviewResponse:
    episodes = await retriever.episode_overview(episode_title=episode_title, top_k=top_k)
    return EpisodeOverviewResponse(episodes=episodes, count=len(episodes))


@router.get(
    "/episodes/search",
    response_model=EpisodeSearchResponse,
    tags=["Episodes"],
    summary="Full-text episode search",
)
async def search_episodes(
    episodes: EpisodesDep,
    q: Annotated[str, Query(min_length=1, max_length=500)],
    limit: Annotated[int | None, Query(ge=1, le=100)] = None,
) -> EpisodeSearchResponse:
    results = await episodes.search_episodes(q, limit=limit)
    return EpisodeSearchResponse(
        results=results,
        count=len(results),
        message=f'Found {len(results)} episodes matching "{q}"',
    )


@router.get(
    "/episodes/by-speaker",
    response_model=EpisodeSearchResponse,
    tags=["Episodes"],
    summary="Episodes featuring a speaker",
)
async def episodes_by_speaker(
    episodes: EpisodesDep,
    name: Annotated[str, Query(min_length=1, max_length=200)],
    q: Annotated[str | None, Query(max_length=500)] = None,
    limit: Annotated[int | None, Query(ge=1, le=100)] = None,
) -> EpisodeSearchResponse:
    """Partial, case-insensitive roster match, optionally combined with a title query."""
    if q:
        results = await episodes.search_by_speaker_and_title(name, q, limit=limit or 10)
        message = f'Found {len(results)} episodes with {name} matching "{q}"'
    else:
        results = await episodes.find_by_speaker(name, limit=limit or 20)
        plural = "" if len(results) == 1 else "s"
        message = f"{name} appeared in {len(results)} episode{plural}"

    return EpisodeSearchResponse(results=results, count=len(results), message=message)


@router.get(
    "/episodes/stats",
    response_model=EpisodeStatsResponse,
    tags=["Episodes"],
    summary="Episode statistics",
)
async def episode_stats(episodes: EpisodesDep) -> EpisodeStatsResponse:
    stats = await episodes.stats()
    return EpisodeStatsResponse(
        total_episodes=stats.total_episodes,
        top_speakers=stats.top_speakers,
        message=f"Database contains {stats.total_episodes} episodes",
    )
