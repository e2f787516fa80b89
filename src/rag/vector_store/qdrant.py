"""Qdrant vector store.

Stores chunk embeddings in a single cosine collection with payload indexes
on the filter fields.
"""

import asyncio
import logging
from collections.abc import Awaitable
from typing import Any, TypeVar

import httpx
from qdrant_client import AsyncQdrantClient
from qdrant_client.http import models as qdrant_models
from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse
from qdrant_client.http.models import Distance, PayloadSchemaType, VectorParams

from src.core.config import Settings
from src.rag.errors import (
    CollectionSizeConflict,
    DimensionMismatch,
    IndexRequestRejected,
    IndexUnavailable,
)
from src.rag.vector_store.base import (
    CollectionStats,
    IndexPoint,
    IndexStats,
    PayloadFilter,
    ScoredPoint,
    VectorIndex,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Payload fields used in filters
PAYLOAD_INDEXES: dict[str, PayloadSchemaType] = {
    "document_id": PayloadSchemaType.KEYWORD,
    "subject_id": PayloadSchemaType.KEYWORD,
    "topic_id": PayloadSchemaType.KEYWORD,
    "subtopic_id": PayloadSchemaType.KEYWORD,
    "embedding_model": PayloadSchemaType.KEYWORD,
    "chunk_index": PayloadSchemaType.INTEGER,
}


def build_filter(payload_filter: PayloadFilter | None) -> qdrant_models.Filter | None:
    """Translate a PayloadFilter into a Qdrant filter (None when empty)."""
    if payload_filter is None or payload_filter.is_empty:
        return None

    must = [
        qdrant_models.FieldCondition(key=key, match=qdrant_models.MatchValue(value=value))
        for key, value in payload_filter.equals.items()
    ]
    must_not = [
        qdrant_models.FieldCondition(key=key, match=qdrant_models.MatchAny(any=list(values)))
        for key, values in payload_filter.excludes.items()
        if values
    ]
    return qdrant_models.Filter(must=must or None, must_not=must_not or None)


class QdrantVectorIndex(VectorIndex):
    """Qdrant vector store for RAG embeddings.

    The collection holds:
    - Vector embeddings (cosine, dimension from config)
    - Payload: document/chunk fields and educational context
    """

    store_type = "qdrant"

    def __init__(
        self,
        client: AsyncQdrantClient,
        timeout: float = 30.0,
        batch_size: int = 100,
        location: str | None = None,
    ):
        self.client = client
        self.timeout = timeout
        self.batch_size = batch_size
        self.location = location
        self._sizes: dict[str, int] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> "QdrantVectorIndex":
        if settings.index_in_memory:
            client = AsyncQdrantClient(location=":memory:")
        else:
            client = AsyncQdrantClient(
                url=settings.index_url,
                api_key=settings.qdrant_api_key,
                timeout=int(settings.index_timeout_s),
            )
        return cls(
            client,
            timeout=settings.index_timeout_s,
            batch_size=settings.index_upsert_batch_size,
            location=settings.index_url,
        )

    async def _call(self, operation: Awaitable[T], action: str) -> T:
        """Run a client call under the index timeout, mapping client failures.

        Connection failures, timeouts and 5xx responses become
        IndexUnavailable; 4xx responses (and local mode's ValueError for an
        unknown collection) become IndexRequestRejected.
        """
        try:
            return await asyncio.wait_for(operation, timeout=self.timeout)
        except TimeoutError as e:
            raise IndexUnavailable(
                f"Qdrant {action} timed out after {self.timeout}s", stage="indexing"
            ) from e
        except (ResponseHandlingException, httpx.TransportError, ConnectionError) as e:
            raise IndexUnavailable(f"Qdrant {action} failed: {e}", stage="indexing") from e
        except UnexpectedResponse as e:
            if e.status_code is not None and e.status_code >= 500:
                raise IndexUnavailable(f"Qdrant {action} failed: {e}", stage="indexing") from e
            raise IndexRequestRejected(
                f"Qdrant {action} rejected: {e}", status_code=e.status_code, stage="indexing"
            ) from e
        except ValueError as e:
            raise IndexRequestRejected(f"Qdrant {action} rejected: {e}", stage="indexing") from e

    async def _vector_size(self, name: str) -> int:
        if name not in self._sizes:
            info = await self._call(self.client.get_collection(name), "get_collection")
            vectors = info.config.params.vectors
            if isinstance(vectors, dict):
                vectors = next(iter(vectors.values()))
            self._sizes[name] = vectors.size
        return self._sizes[name]

    async def ensure_collection(self, name: str, dimension: int) -> bool:
        exists = await self._call(self.client.collection_exists(name), "collection_exists")
        if exists:
            existing = await self._vector_size(name)
            if existing != dimension:
                raise CollectionSizeConflict(name, existing, dimension)
            return False

        logger.info(f"[Qdrant] Creating collection '{name}' (dim={dimension}, cosine)")
        await self._call(
            self.client.create_collection(
                collection_name=name,
                vectors_config=VectorParams(size=dimension, distance=Distance.COSINE),
                # Store large text payloads on disk to save RAM
                on_disk_payload=True,
            ),
            "create_collection",
        )

        # Create payload indexes for common filters
        if self.location != ":memory:":
            for field_name, schema in PAYLOAD_INDEXES.items():
                await self._call(
                    self.client.create_payload_index(
                        collection_name=name, field_name=field_name, field_schema=schema
                    ),
                    "create_payload_index",
                )

        self._sizes[name] = dimension
        return True

    async def upsert(self, name: str, points: list[IndexPoint]) -> int:
        """Insert or update points in batches.

        Args:
            name: Target collection
            points: Points with deterministic ids, vectors and payloads

        Returns:
            Number of points upserted
        """
        if not points:
            return 0

        size = await self._vector_size(name)
        for point in points:
            if point.vector is None or len(point.vector) != size:
                raise DimensionMismatch(size, len(point.vector or []), name)

        structs = [
            qdrant_models.PointStruct(id=p.id, vector=p.vector, payload=p.payload)
            for p in points
        ]

        # Batch upserts to avoid timeout on large payloads
        total_batches = (len(structs) + self.batch_size - 1) // self.batch_size
        total_upserted = 0
        for i in range(0, len(structs), self.batch_size):
            batch = structs[i : i + self.batch_size]
            logger.debug(
                f"[Qdrant] Upserting batch {i // self.batch_size + 1}/{total_batches} "
                f"({len(batch)} points) to '{name}'"
            )
            await self._call(
                self.client.upsert(collection_name=name, points=batch, wait=True), "upsert"
            )
            total_upserted += len(batch)

        logger.info(f"[Qdrant] Upserted {total_upserted} points to '{name}'")
        return total_upserted

    async def query(
        self,
        name: str,
        vector: list[float],
        filter: PayloadFilter | None = None,
        k: int = 10,
    ) -> list[ScoredPoint]:
        size = await self._vector_size(name)
        if len(vector) != size:
            raise DimensionMismatch(size, len(vector), name)

        response = await self._call(
            self.client.query_points(
                collection_name=name,
                query=vector,
                query_filter=build_filter(filter),
                limit=k,
                with_payload=True,
            ),
            "query",
        )
        return [
            ScoredPoint(id=str(point.id), score=point.score, payload=point.payload or {})
            for point in response.points
        ]

    async def delete_by_filter(self, name: str, filter: PayloadFilter) -> int:
        """Delete all points matching a filter.

        Returns:
            Number of points deleted
        """
        qdrant_filter = build_filter(filter) or qdrant_models.Filter()

        # Get count before deletion
        count_before = await self._call(
            self.client.count(collection_name=name, count_filter=qdrant_filter, exact=True),
            "count",
        )

        await self._call(
            self.client.delete(
                collection_name=name,
                points_selector=qdrant_models.FilterSelector(filter=qdrant_filter),
                wait=True,
            ),
            "delete",
        )
        logger.info(f"[Qdrant] Deleted {count_before.count} points from '{name}'")
        return count_before.count

    async def fetch_points(
        self,
        name: str,
        filter: PayloadFilter | None = None,
        with_vectors: bool = False,
        limit: int | None = None,
    ) -> list[IndexPoint]:
        points: list[IndexPoint] = []
        if limit is not None and limit <= 0:
            return points

        offset = None
        while True:
            page_size = 256 if limit is None else min(256, limit - len(points))
            records, offset = await self._call(
                self.client.scroll(
                    collection_name=name,
                    scroll_filter=build_filter(filter),
                    limit=page_size,
                    offset=offset,
                    with_payload=True,
                    with_vectors=with_vectors,
                ),
                "scroll",
            )
            for record in records:
                vector = record.vector if with_vectors else None
                if isinstance(vector, dict):
                    vector = next(iter(vector.values()))
                points.append(
                    IndexPoint(id=str(record.id), vector=vector, payload=record.payload or {})
                )
            if offset is None or (limit is not None and len(points) >= limit):
                return points

    async def get_stats(self, name: str | None = None) -> IndexStats:
        if name is not None:
            names = [name]
        else:
            response = await self._call(self.client.get_collections(), "get_collections")
            names = [c.name for c in response.collections]

        collections = []
        for collection_name in names:
            info = await self._call(self.client.get_collection(collection_name), "get_collection")
            vectors = info.config.params.vectors
            if isinstance(vectors, dict):
                vectors = next(iter(vectors.values()))
            collections.append(
                CollectionStats(
                    name=collection_name,
                    point_count=info.points_count or 0,
                    vector_size=vectors.size if vectors else None,
                    distance_metric=str(vectors.distance.value) if vectors else "unknown",
                )
            )

        return IndexStats(
            total_collections=len(collections),
            total_points=sum(c.point_count for c in collections),
            collections=collections,
        )

    async def health(self) -> tuple[bool, str]:
        """Check Qdrant connectivity."""
        try:
            await self._call(self.client.get_collections(), "get_collections")
            return True, "healthy"
        except IndexUnavailable as e:
            return False, f"unhealthy: {e.message}"

    def get_storage_info(self) -> dict[str, Any]:
        return {
            "type": self.store_type,
            "location": self.location,
            "in_memory": self.location == ":memory:",
            "timeout_s": self.timeout,
            "batch_size": self.batch_size,
        }

    async def close(self) -> None:
        await self.client.close()
