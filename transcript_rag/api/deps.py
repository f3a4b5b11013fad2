"""
Dependency injection for API endpoints.

Services are built once in the application lifespan and parked on
``app.state``; these accessors hand them to routes and give tests a
single seam for ``dependency_overrides``.
"""

from typing import Annotated, Any

from fastapi import Depends, HTTPException, Request, status

from transcript_rag.config import Settings, get_settings
from transcript_rag.core.ingestion import IngestionCoordinator
from transcript_rag.core.retrieval import TranscriptRetriever
from transcript_rag.services.episodes import SqlEpisodeRepository

SettingsDep = Annotated[Settings, Depends(get_settings)]


def _from_state(request: Request, name: str, label: str) -> Any:
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} not initialized",
        )
    return service


def get_coordinator(request: Request) -> IngestionCoordinator:
    """Ingestion coordinator from app state."""
    return _from_state(request, "coordinator", "Ingestion coordinator")


def get_retriever(request: Request) -> TranscriptRetriever:
    """Chunk retriever from app state."""
    return _from_state(request, "retriever", "Retriever")


def get_episode_repository(request: Request) -> SqlEpisodeRepository:
    """Relational episode repository from app state."""
    return _from_state(request, "episodes", "Episode repository")


CoordinatorDep = Annotated[IngestionCoordinator, Depends(get_coordinator)]
RetrieverDep = Annotated[TranscriptRetriever, Depends(get_retriever)]
EpisodesDep = Annotated[SqlEpisodeRepository, Depends(get_episode_repository)]
