"""
Transcript RAG Engine - FastAPI Application Entry Point

Ingests speaker-attributed transcripts into a vector index and serves
provenance-carrying retrieval over them.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app

from transcript_rag import __version__
from transcript_rag.api.routes import router as api_router
from transcript_rag.config import get_settings
from transcript_rag.core.ingestion import IngestionCoordinator
from transcript_rag.core.retrieval import TranscriptRetriever
from transcript_rag.exceptions import (
    EmbeddingError,
    FetchError,
    ParseError,
    StoreError,
    SummarizationError,
    TranscriptRAGError,
)
from transcript_rag.services.embeddings import EmbeddingService
from transcript_rag.services.episodes import SqlEpisodeRepository
from transcript_rag.services.summarizer import SummarizerService
from transcript_rag.services.transcript_source import TranscriptSource
from transcript_rag.services.vectordb import PineconeVectorStore
from transcript_rag.utils.logging import setup_logging
from transcript_rag.utils.uptime import set_start_time

logger = structlog.get_logger(__name__)

ERROR_STATUS: dict[type[TranscriptRAGError], int] = {
    ParseError: 422,
    FetchError: 502,
    EmbeddingError: 503,
    StoreError: 503,
    SummarizationError: 503,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Builds every service once, wires them into the coordinator and the
    retriever, and closes their clients on shutdown.
    """
    settings = get_settings()

    logger.info(
        "starting_application",
        app_name=settings.app_name,
        version=__version__,
        environment=settings.app_env,
    )
    set_start_time()

    source = TranscriptSource(settings)
    embeddings = EmbeddingService(settings)
    vector_store = PineconeVectorStore(settings)
    episodes = SqlEpisodeRepository(settings)
    summarizer = SummarizerService(settings)

    # Idempotent; also installs the search_vector trigger
    await episodes.create_tables()

    app.state.episodes = episodes
    app.state.coordinator = IngestionCoordinator(
        source=source,
        embeddings=embeddings,
        vector_store=vector_store,
        episodes=episodes,
        summarizer=summarizer,
        settings=settings,
    )
    app.state.retriever = TranscriptRetriever(embeddings, vector_store, settings)
    logger.info("services_initialized", collection=settings.vector_collection_name)

    yield

    logger.info("shutting_down_application")
    await source.close()
    await embeddings.close()
    await summarizer.close()
    await episodes.close()
    logger.info("application_shutdown_complete")


async def handle_pipeline_error(request: Request, exc: TranscriptRAGError) -> JSONResponse:
    status_code = next(
        (code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 500
    )
    logger.error(
        "request_failed",
        path=request.url.path,
        error=str(exc),
        error_type=type(exc).__name__,
        status_code=status_code,
    )
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error_type": type(exc).__name__},
    )


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance.
    """
    settings = get_settings()

    setup_logging(settings.log_level, settings.app_env)

    app = FastAPI(
        title="Transcript RAG Engine",
        description="""
## Transcript Retrieval for Conversational Agents

Ingests podcast, interview and meeting transcripts and answers
retrieval queries with exact provenance: episode, speakers and
timestamps for every chunk.

### Pipeline

```
URL → Fetch/Parse → Episode row (summary) → Chunk → Enrich → Embed (OpenAI) → Pinecone
                                                                                  ↓
Query → Embed → Filtered vector search → Chunks with episode, speakers, timestamps
```
        """,
        version=__version__,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(TranscriptRAGError, handle_pipeline_error)

    if settings.metrics_enabled:
        app.mount("/prometheus", make_asgi_app())

    app.include_router(api_router, prefix="/api/v1")

    @app.get("/", include_in_schema=False)
    async def root() -> dict[str, str]:
        return {
            "name": settings.app_name,
            "version": __version__,
            "docs": "/docs",
            "health": "/api/v1/health",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "transcript_rag.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
