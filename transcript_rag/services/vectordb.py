"""
Vector store service using Pinecone.

One Pinecone serverless index backs each collection. The SDK is
synchronous, so every call runs in a worker thread to keep the event
loop free.
"""

import asyncio
import hashlib
from typing import Any, Protocol, Sequence
from uuid import uuid4

import structlog
from pinecone import Pinecone, ServerlessSpec
from pinecone.exceptions import PineconeException
from urllib3.exceptions import HTTPError as TransportError

from transcript_rag.config import Settings, get_settings
from transcript_rag.exceptions import StoreError
from transcript_rag.models.domain import VectorMatch
from transcript_rag.utils.latency import latency_tracked

logger = structlog.get_logger(__name__)

# Connection failures surface from the SDK as raw urllib3 errors
CLIENT_ERRORS = (PineconeException, TransportError)

# Pinecone's per-vector metadata limit is 40KB
MAX_METADATA_TEXT = 40000


class VectorStore(Protocol):
    async def create_collection(self, name: str, dimension: int) -> None: ...

    async def upsert(
        self,
        name: str,
        vectors: Sequence[list[float]],
        metadata: Sequence[dict[str, Any]],
    ) -> list[str]: ...

    async def query(
        self,
        name: str,
        vector: list[float],
        top_k: int,
        filter: dict[str, Any] | None = None,
    ) -> list[VectorMatch]: ...

    async def delete_collection(self, name: str) -> None: ...


def clean_metadata(meta: dict[str, Any]) -> dict[str, Any]:
    """Coerce a payload into types Pinecone accepts; None values are dropped."""
    clean: dict[str, Any] = {}
    for key, value in meta.items():
        if value is None:
            continue
        if isinstance(value, (str, int, float, bool)):
            clean[key] = value
        elif isinstance(value, (list, tuple, set)):
            clean[key] = [str(v) for v in value]
        else:
            clean[key] = str(value)
    if isinstance(clean.get("text"), str):
        clean["text"] = clean["text"][:MAX_METADATA_TEXT]
    return clean


def _status(exc: Exception) -> int | None:
    return getattr(exc, "status", None)


class PineconeVectorStore:
    """Pinecone-backed :class:`VectorStore`."""

    def __init__(
        self,
        settings: Settings | None = None,
        client: Pinecone | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._client = client
        self._indexes: dict[str, Any] = {}

    def _get_client(self) -> Pinecone:
        if self._client is None:
            api_key = self.settings.pinecone_api_key.get_secret_value()
            if not api_key:
                raise StoreError("PINECONE_API_KEY is required")
            self._client = Pinecone(api_key=api_key)
        return self._client

    def _index(self, name: str) -> Any:
        if name not in self._indexes:
            self._indexes[name] = self._get_client().Index(name)
        return self._indexes[name]

    def _vector_id(self, meta: dict[str, Any]) -> str:
        chunk_id = meta.get("chunk_id")
        if self.settings.deterministic_vector_ids and chunk_id:
            return hashlib.sha256(str(chunk_id).encode()).hexdigest()[:32]
        return str(uuid4())

    async def create_collection(self, name: str, dimension: int) -> None:
        """
        Create the index if it does not exist.

        An index that already exists, including one created concurrently
        by another run, counts as success.
        """
        client = self._get_client()
        try:
            existing = await asyncio.to_thread(lambda: client.list_indexes().names())
            if name in existing:
                logger.debug("vector_collection_exists", collection=name)
                return

            await asyncio.to_thread(
                client.create_index,
                name=name,
                dimension=dimension,
                metric=self.settings.pinecone_metric,
                spec=ServerlessSpec(
                    cloud=self.settings.pinecone_cloud,
                    region=self.settings.pinecone_region,
                ),
            )
        except CLIENT_ERRORS as exc:
            if _status(exc) == 409:
                logger.debug("vector_collection_exists", collection=name)
                return
            logger.error("vector_collection_create_failed", collection=name, error=str(exc))
            raise StoreError(f"Failed to create collection {name}: {exc}") from exc

        logger.info(
            "vector_collection_created",
            collection=name,
            dimension=dimension,
            metric=self.settings.pinecone_metric,
        )

    @latency_tracked("vectordb_upsert")
    async def upsert(
        self,
        name: str,
        vectors: Sequence[list[float]],
        metadata: Sequence[dict[str, Any]],
    ) -> list[str]:
        """
        Store vectors with their metadata, in batches.

        Returns:
            The ids assigned to the vectors, in input order
        """
        if len(vectors) != len(metadata):
            raise StoreError(
                f"Got {len(vectors)} vectors but {len(metadata)} metadata entries"
            )

        records = [
            {
                "id": self._vector_id(meta),
                "values": values,
                "metadata": clean_metadata(meta),
            }
            for values, meta in zip(vectors, metadata)
        ]

        index = self._index(name)
        batch_size = self.settings.upsert_batch_size
        try:
            for start in range(0, len(records), batch_size):
                batch = records[start : start + batch_size]
                await asyncio.to_thread(index.upsert, vectors=batch)
        except CLIENT_ERRORS as exc:
            logger.error(
                "vector_upsert_failed",
                collection=name,
                upserted=start,
                total=len(records),
                error=str(exc),
            )
            raise StoreError(f"Failed to upsert into {name}: {exc}") from exc

        logger.debug("vectors_upserted", collection=name, count=len(records))
        return [record["id"] for record in records]

    @latency_tracked("vectordb_query")
    async def query(
        self,
        name: str,
        vector: list[float],
        top_k: int,
        filter: dict[str, Any] | None = None,
    ) -> list[VectorMatch]:
        """Nearest neighbours of ``vector``, restricted by a metadata filter."""
        index = self._index(name)
        try:
            response = await asyncio.to_thread(
                index.query,
                vector=vector,
                top_k=top_k,
                filter=filter or None,
                include_metadata=True,
            )
        except CLIENT_ERRORS as exc:
            logger.error("vector_query_failed", collection=name, error=str(exc))
            raise StoreError(f"Failed to query {name}: {exc}") from exc

        matches = [
            VectorMatch(
                id=match.id,
                score=match.score or 0.0,
                metadata=dict(match.metadata) if match.metadata else {},
            )
            for match in response.matches
        ]

        logger.debug(
            "vector_query_completed",
            collection=name,
            top_k=top_k,
            filtered=bool(filter),
            results=len(matches),
        )
        return matches

    async def delete_collection(self, name: str) -> None:
        """Drop the index; a missing index is not an error."""
        client = self._get_client()
        self._indexes.pop(name, None)
        try:
            await asyncio.to_thread(client.delete_index, name)
        except CLIENT_ERRORS as exc:
            if _status(exc) == 404:
                logger.debug("vector_collection_missing", collection=name)
                return
            logger.error("vector_collection_delete_failed", collection=name, error=str(exc))
            raise StoreError(f"Failed to delete collection {name}: {exc}") from exc

        logger.info("vector_collection_deleted", collection=name)
