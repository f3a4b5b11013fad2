#!/usr/bin/env python3
"""
Ingest transcripts from the command line.

Runs the same pipeline as the ``/transcripts/ingest`` endpoint without
starting the API server.

Usage:
    python scripts/ingest_transcripts.py https://example.com/ep1.json https://youtu.be/VIDEO_ID
    python scripts/ingest_transcripts.py --file urls.txt
    python scripts/ingest_transcripts.py --file urls.txt --reindex
    python scripts/ingest_transcripts.py --create-tables
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import structlog

from transcript_rag.config import get_settings
from transcript_rag.core.ingestion import IngestionCoordinator
from transcript_rag.exceptions import TranscriptRAGError
from transcript_rag.services.embeddings import EmbeddingService
from transcript_rag.services.episodes import SqlEpisodeRepository
from transcript_rag.services.summarizer import SummarizerService
from transcript_rag.services.transcript_source import TranscriptSource
from transcript_rag.services.vectordb import PineconeVectorStore
from transcript_rag.utils.logging import setup_logging

logger = structlog.get_logger("ingest_transcripts")


def read_urls(args: argparse.Namespace) -> list[str]:
    """URLs from positional arguments and ``--file``, blank lines and # comments skipped."""
    urls = list(args.urls)
    if args.file:
        for line in Path(args.file).read_text(encoding="utf-8").splitlines():
            line = line.strip()
            if line and not line.startswith("#"):
                urls.append(line)
    return urls


async def run(args: argparse.Namespace) -> int:
    settings = get_settings()
    urls = read_urls(args)

    episodes = SqlEpisodeRepository(settings)
    source = TranscriptSource(settings)
    embeddings = EmbeddingService(settings)
    summarizer = SummarizerService(settings)

    try:
        if args.create_tables:
            await episodes.create_tables()
            print("Episode table and search trigger ready.")

        if not urls:
            if not args.create_tables:
                print("No URLs given.", file=sys.stderr)
                return 2
            return 0

        coordinator = IngestionCoordinator(
            source=source,
            embeddings=embeddings,
            vector_store=PineconeVectorStore(settings),
            episodes=episodes,
            summarizer=summarizer,
            settings=settings,
        )

        if args.reindex:
            result = await coordinator.reindex(urls)
        else:
            result = await coordinator.ingest(urls)
    except TranscriptRAGError as exc:
        logger.error("ingestion_aborted", error=str(exc), error_type=type(exc).__name__)
        print(f"Ingestion failed: {exc}", file=sys.stderr)
        return 1
    finally:
        await source.close()
        await embeddings.close()
        await summarizer.close()
        await episodes.close()

    print("=" * 60)
    print(f"Collection:     {settings.vector_collection_name}")
    print(f"Processed URLs: {len(result.processed_urls)} / {len(urls)}")
    print(f"Total chunks:   {result.total_chunks}")
    print(f"Time:           {result.processing_time_ms:.0f} ms")
    for url, error in result.failed_urls.items():
        print(f"  FAILED {url}: {error}")
    print("=" * 60)

    return 0 if not result.failed_urls else 3


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Ingest transcripts into the vector index",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/ingest_transcripts.py https://example.com/ep1.json
  python scripts/ingest_transcripts.py --file urls.txt --reindex
  python scripts/ingest_transcripts.py --create-tables
        """,
    )
    parser.add_argument("urls", nargs="*", help="Transcript URLs or YouTube references")
    parser.add_argument("--file", "-f", help="File with one URL per line")
    parser.add_argument(
        "--reindex", "-r",
        action="store_true",
        help="Drop the vector collection before ingesting",
    )
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="Create the episode table and its full-text search trigger",
    )

    args = parser.parse_args()

    settings = get_settings()
    setup_logging(settings.log_level, settings.app_env)

    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
