"""
Relational episode store.

One row per ingested episode, keyed by title, holding the speaker roster,
source and summary. PostgreSQL keeps a weighted full-text search vector
over each row (title A, summary B, speakers C) through a trigger, which
backs the episode search queries below.
"""

import re
from typing import Protocol

import structlog
from sqlalchemy import Index, String, Text, func, select, text, update
from sqlalchemy.dialects.postgresql import ARRAY, TSVECTOR
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from transcript_rag.config import Settings, get_settings
from transcript_rag.exceptions import StoreError
from transcript_rag.models.domain import (
    EpisodeRecord,
    EpisodeSearchHit,
    EpisodeStats,
    SpeakerAppearances,
)

logger = structlog.get_logger(__name__)

TABLE_NAME = "episodes"
TOP_SPEAKERS_LIMIT = 10


class Base(DeclarativeBase):
    pass


class EpisodeModel(Base):
    """Episode row; ``search_vector`` is written by the database trigger only."""

    __tablename__ = TABLE_NAME

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    episode_title: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    speakers: Mapped[list[str]] = mapped_column(ARRAY(Text), nullable=False, default=list)
    source: Mapped[str] = mapped_column(String(1000), nullable=False)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    search_vector: Mapped[str | None] = mapped_column(TSVECTOR, nullable=True)

    __table_args__ = (
        Index("episodes_search_vector_idx", "search_vector", postgresql_using="gin"),
    )

    def to_record(self) -> EpisodeRecord:
        return EpisodeRecord(
            id=self.id,
            episode_title=self.episode_title,
            speakers=list(self.speakers or []),
            source=self.source,
            summary=self.summary,
        )


_SEARCH_VECTOR_EXPR = """
    setweight(to_tsvector('english', COALESCE({prefix}episode_title, '')), 'A') ||
    setweight(to_tsvector('english', COALESCE({prefix}summary, '')), 'B') ||
    setweight(to_tsvector('english', COALESCE(array_to_string({prefix}speakers, ' '), '')), 'C')
"""

# asyncpg runs one statement per execute
SEARCH_VECTOR_DDL = [
    f"""
    CREATE OR REPLACE FUNCTION {TABLE_NAME}_vector_update() RETURNS trigger AS $$
    BEGIN
      NEW.search_vector := {_SEARCH_VECTOR_EXPR.format(prefix="NEW.")};
      RETURN NEW;
    END;
    $$ LANGUAGE plpgsql
    """,
    f"DROP TRIGGER IF EXISTS {TABLE_NAME}_vector_update ON {TABLE_NAME}",
    f"""
    CREATE TRIGGER {TABLE_NAME}_vector_update
      BEFORE INSERT OR UPDATE ON {TABLE_NAME}
      FOR EACH ROW EXECUTE FUNCTION {TABLE_NAME}_vector_update()
    """,
    f"UPDATE {TABLE_NAME} SET search_vector = {_SEARCH_VECTOR_EXPR.format(prefix='')}",
]

_SPEAKER_MATCH = (
    "EXISTS (SELECT 1 FROM unnest(speakers) AS speaker WHERE speaker ILIKE :speaker_pattern)"
)

_TOP_SPEAKERS = f"""
    SELECT speaker_name, COUNT(*) AS appearance_count
    FROM {TABLE_NAME}, unnest(speakers) AS speaker_name
    GROUP BY speaker_name
    ORDER BY appearance_count DESC, speaker_name
    LIMIT :limit
"""


def sanitize_search_query(query: str) -> str:
    """Strip punctuation and collapse whitespace before full-text parsing."""
    return " ".join(re.sub(r"[^\w\s]", "", query).split())


def _like_pattern(name: str) -> str:
    escaped = name.strip().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class EpisodeRepository(Protocol):
    async def get_by_title(self, episode_title: str) -> EpisodeRecord | None: ...

    async def create(self, record: EpisodeRecord) -> EpisodeRecord: ...

    async def update_summary(self, episode_title: str, summary: str) -> None: ...


class SqlEpisodeRepository:
    """
    PostgreSQL episode repository on SQLAlchemy asyncio + asyncpg.

    Every database failure is logged and re-raised as :class:`StoreError`.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        engine: AsyncEngine | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._engine = engine or create_async_engine(
            self.settings.database_url,
            echo=self.settings.database_echo_sql,
            pool_size=self.settings.database_pool_size,
            max_overflow=self.settings.database_max_overflow,
            pool_pre_ping=True,
        )
        self._sessions = async_sessionmaker(
            bind=self._engine,
            autoflush=False,
            expire_on_commit=False,
        )

    async def create_tables(self) -> None:
        """Create the episode table and its search-vector trigger. Idempotent."""
        try:
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
                for statement in SEARCH_VECTOR_DDL:
                    await conn.execute(text(statement))
        except SQLAlchemyError as exc:
            logger.error("episode_tables_create_failed", error=str(exc))
            raise StoreError(f"Failed to create episode tables: {exc}") from exc

        logger.info("episode_tables_created", table=TABLE_NAME)

    async def get_by_title(self, episode_title: str) -> EpisodeRecord | None:
        try:
            async with self._sessions() as session:
                row = await session.scalar(
                    select(EpisodeModel).where(EpisodeModel.episode_title == episode_title)
                )
        except SQLAlchemyError as exc:
            logger.error("episode_lookup_failed", episode_title=episode_title, error=str(exc))
            raise StoreError(f"Failed to look up episode {episode_title!r}: {exc}") from exc

        return row.to_record() if row else None

    async def create(self, record: EpisodeRecord) -> EpisodeRecord:
        row = EpisodeModel(
            episode_title=record.episode_title,
            speakers=list(record.speakers),
            source=record.source,
            summary=record.summary,
        )
        try:
            async with self._sessions() as session:
                session.add(row)
                await session.commit()
        except SQLAlchemyError as exc:
            logger.error(
                "episode_insert_failed", episode_title=record.episode_title, error=str(exc)
            )
            raise StoreError(f"Failed to insert episode {record.episode_title!r}: {exc}") from exc

        logger.info("episode_inserted", episode_title=record.episode_title, id=row.id)
        return row.to_record()

    async def update_summary(self, episode_title: str, summary: str) -> None:
        try:
            async with self._sessions() as session:
                await session.execute(
                    update(EpisodeModel)
                    .where(EpisodeModel.episode_title == episode_title)
                    .values(summary=summary)
                )
                await session.commit()
        except SQLAlchemyError as exc:
            logger.error("episode_update_failed", episode_title=episode_title, error=str(exc))
            raise StoreError(f"Failed to update episode {episode_title!r}: {exc}") from exc

        logger.info("episode_summary_updated", episode_title=episode_title)

    async def search_episodes(self, query: str, limit: int | None = None) -> list[EpisodeSearchHit]:
        """Full-text search over title, summary and speakers, best match first."""
        cleaned = sanitize_search_query(query)
        if not cleaned:
            return []

        tsquery = func.websearch_to_tsquery("english", cleaned)
        rank = func.ts_rank(EpisodeModel.search_vector, tsquery)
        stmt = (
            select(EpisodeModel, rank.label("rank"))
            .where(EpisodeModel.search_vector.op("@@")(tsquery))
            .order_by(rank.desc())
        )
        if limit:
            stmt = stmt.limit(limit)

        return await self._ranked(stmt, "episode_search_failed", query=query)

    async def find_by_speaker(self, speaker_name: str, limit: int = 20) -> list[EpisodeSearchHit]:
        """Episodes whose roster contains ``speaker_name``, case-insensitive, partial."""
        stmt = (
            select(EpisodeModel)
            .where(text(_SPEAKER_MATCH).bindparams(speaker_pattern=_like_pattern(speaker_name)))
            .order_by(EpisodeModel.id)
            .limit(limit)
        )
        try:
            async with self._sessions() as session:
                rows = (await session.scalars(stmt)).all()
        except SQLAlchemyError as exc:
            logger.error("episode_speaker_search_failed", speaker=speaker_name, error=str(exc))
            raise StoreError(f"Speaker search failed: {exc}") from exc

        return [
            EpisodeSearchHit(
                id=row.id,
                episode_title=row.episode_title,
                speakers=list(row.speakers or []),
                source=row.source,
            )
            for row in rows
        ]

    async def search_by_speaker_and_title(
        self, speaker_name: str, query: str, limit: int = 10
    ) -> list[EpisodeSearchHit]:
        cleaned = sanitize_search_query(query)
        if not cleaned:
            return []

        tsquery = func.websearch_to_tsquery("english", cleaned)
        rank = func.ts_rank(EpisodeModel.search_vector, tsquery)
        stmt = (
            select(EpisodeModel, rank.label("rank"))
            .where(EpisodeModel.search_vector.op("@@")(tsquery))
            .where(text(_SPEAKER_MATCH).bindparams(speaker_pattern=_like_pattern(speaker_name)))
            .order_by(rank.desc())
            .limit(limit)
        )
        return await self._ranked(
            stmt, "episode_combined_search_failed", speaker=speaker_name, query=query
        )

    async def stats(self) -> EpisodeStats:
        """Total episode count and the most frequent speakers."""
        try:
            async with self._sessions() as session:
                total = await session.scalar(select(func.count()).select_from(EpisodeModel))
                result = await session.execute(
                    text(_TOP_SPEAKERS), {"limit": TOP_SPEAKERS_LIMIT}
                )
                speakers = [
                    SpeakerAppearances(name=row.speaker_name, appearances=row.appearance_count)
                    for row in result
                ]
        except SQLAlchemyError as exc:
            logger.error("episode_stats_failed", error=str(exc))
            raise StoreError(f"Episode stats failed: {exc}") from exc

        return EpisodeStats(total_episodes=total or 0, top_speakers=speakers)

    async def _ranked(self, stmt, event: str, **log_fields) -> list[EpisodeSearchHit]:
        try:
            async with self._sessions() as session:
                rows = (await session.execute(stmt)).all()
        except SQLAlchemyError as exc:
            logger.error(event, error=str(exc), **log_fields)
            raise StoreError(f"Episode search failed: {exc}") from exc

        return [
            EpisodeSearchHit(
                id=episode.id,
                episode_title=episode.episode_title,
                speakers=list(episode.speakers or []),
                source=episode.source,
                relevance_score=float(rank),
            )
            for episode, rank in rows
        ]

    async def close(self) -> None:
        await self._engine.dispose()
