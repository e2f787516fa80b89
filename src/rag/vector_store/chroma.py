"""Chroma vector store.

Same contract as the Qdrant store over Chroma's client API. Chroma's client
is synchronous, so every call runs in a worker thread under the index timeout.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any, TypeVar
from urllib.parse import urlsplit

import chromadb
import httpx
from chromadb.api import ClientAPI
from chromadb.api.models.Collection import Collection

from src.core.config import Settings
from src.rag.errors import CollectionSizeConflict, DimensionMismatch, IndexUnavailable
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


def build_where(payload_filter: PayloadFilter | None) -> dict[str, Any] | None:
    """Translate a PayloadFilter into a Chroma ``where`` clause (None when empty)."""
    if payload_filter is None or payload_filter.is_empty:
        return None

    clauses: list[dict[str, Any]] = [
        {key: {"$eq": value}} for key, value in payload_filter.equals.items()
    ]
    clauses.extend(
        {key: {"$nin": list(values)}}
        for key, values in payload_filter.excludes.items()
        if values
    )
    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


def _clean_metadata(payload: dict[str, Any]) -> dict[str, Any]:
    """Chroma metadata accepts only non-null scalars; text is stored as the document."""
    return {
        key: value
        for key, value in payload.items()
        if key != "text" and isinstance(value, str | int | float | bool)
    }


def _payload(metadata: dict[str, Any] | None, document: str | None) -> dict[str, Any]:
    payload = dict(metadata or {})
    payload["text"] = document or ""
    return payload


class ChromaVectorIndex(VectorIndex):
    """Chroma vector store for RAG embeddings.

    Collections are created with cosine space and record their dimension
    in collection metadata.
    """

    store_type = "chroma"

    def __init__(
        self,
        client: ClientAPI | None = None,
        url: str = ":memory:",
        timeout: float = 30.0,
        batch_size: int = 100,
    ):
        self._client = client
        self.url = url
        self.timeout = timeout
        self.batch_size = batch_size
        self._collections: dict[str, Collection] = {}
        self._sizes: dict[str, int | None] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> "ChromaVectorIndex":
        return cls(
            url=settings.index_url,
            timeout=settings.index_timeout_s,
            batch_size=settings.index_upsert_batch_size,
        )

    def _connect(self) -> ClientAPI:
        if self.url == ":memory:":
            return chromadb.EphemeralClient()
        parts = urlsplit(self.url)
        return chromadb.HttpClient(
            host=parts.hostname or "localhost",
            port=parts.port or 8000,
            ssl=parts.scheme == "https",
        )

    async def _run(self, action: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run a blocking client call in a thread under the index timeout."""
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(fn, *args, **kwargs), timeout=self.timeout
            )
        except TimeoutError as e:
            raise IndexUnavailable(
                f"Chroma {action} timed out after {self.timeout}s", stage="indexing"
            ) from e
        except (httpx.TransportError, ConnectionError) as e:
            raise IndexUnavailable(f"Chroma {action} failed: {e}", stage="indexing") from e

    async def _get_client(self) -> ClientAPI:
        if self._client is None:
            try:
                self._client = await self._run("connect", self._connect)
            except ValueError as e:
                # HttpClient raises ValueError when the server cannot be reached
                raise IndexUnavailable(f"Chroma connect failed: {e}", stage="indexing") from e
        return self._client

    async def _list_names(self) -> list[str]:
        client = await self._get_client()
        collections = await self._run("list_collections", client.list_collections)
        # Depending on the chromadb release this returns names or Collection objects
        return [c if isinstance(c, str) else c.name for c in collections]

    async def _collection(self, name: str) -> Collection:
        if name not in self._collections:
            client = await self._get_client()
            self._collections[name] = await self._run(
                "get_collection", client.get_collection, name=name
            )
        return self._collections[name]

    async def _vector_size(self, name: str) -> int | None:
        if name not in self._sizes:
            collection = await self._collection(name)
            size = (collection.metadata or {}).get("dimension")
            if size is None:
                sample = await self._run(
                    "get", collection.get, limit=1, include=["embeddings"]
                )
                embeddings = sample.get("embeddings")
                if embeddings is not None and len(embeddings) > 0:
                    size = len(embeddings[0])
            self._sizes[name] = int(size) if size is not None else None
        return self._sizes[name]

    async def ensure_collection(self, name: str, dimension: int) -> bool:
        if name in await self._list_names():
            existing = await self._vector_size(name)
            if existing is not None and existing != dimension:
                raise CollectionSizeConflict(name, existing, dimension)
            self._sizes[name] = dimension
            return False

        logger.info(f"[Chroma] Creating collection '{name}' (dim={dimension}, cosine)")
        client = await self._get_client()
        self._collections[name] = await self._run(
            "create_collection",
            client.create_collection,
            name=name,
            metadata={"hnsw:space": "cosine", "dimension": dimension},
            embedding_function=None,
        )
        self._sizes[name] = dimension
        return True

    async def _check_dimension(self, name: str, vector: list[float] | None) -> None:
        size = await self._vector_size(name)
        actual = len(vector or [])
        if vector is None or (size is not None and actual != size):
            raise DimensionMismatch(size or 0, actual, name)

    async def upsert(self, name: str, points: list[IndexPoint]) -> int:
        if not points:
            return 0

        for point in points:
            await self._check_dimension(name, point.vector)

        collection = await self._collection(name)
        total_upserted = 0
        for i in range(0, len(points), self.batch_size):
            batch = points[i : i + self.batch_size]
            ids = [p.id for p in batch]
            # Chroma's upsert merges metadata keys, so existing records are
            # dropped first and every point replaces its whole payload
            await self._run("delete", collection.delete, ids=ids)
            await self._run(
                "add",
                collection.add,
                ids=ids,
                embeddings=[p.vector for p in batch],
                metadatas=[_clean_metadata(p.payload) for p in batch],
                documents=[str(p.payload.get("text", "")) for p in batch],
            )
            total_upserted += len(batch)

        logger.info(f"[Chroma] Upserted {total_upserted} points to '{name}'")
        return total_upserted

    async def query(
        self,
        name: str,
        vector: list[float],
        filter: PayloadFilter | None = None,
        k: int = 10,
    ) -> list[ScoredPoint]:
        await self._check_dimension(name, vector)
        collection = await self._collection(name)

        count = await self._run("count", collection.count)
        if count == 0 or k <= 0:
            return []

        results = await self._run(
            "query",
            collection.query,
            query_embeddings=[vector],
            n_results=min(k, count),
            where=build_where(filter),
            include=["documents", "metadatas", "distances"],
        )

        ids = results["ids"][0]
        distances = results["distances"][0]
        metadatas = results["metadatas"][0]
        documents = results["documents"][0]
        return [
            # Cosine space distance is 1 - cosine similarity
            ScoredPoint(id=point_id, score=1.0 - float(distance), payload=_payload(meta, doc))
            for point_id, distance, meta, doc in zip(
                ids, distances, metadatas, documents, strict=True
            )
        ]

    async def delete_by_filter(self, name: str, filter: PayloadFilter) -> int:
        collection = await self._collection(name)
        matches = await self._run("get", collection.get, where=build_where(filter), include=[])
        ids = matches["ids"]
        if ids:
            await self._run("delete", collection.delete, ids=ids)
        logger.info(f"[Chroma] Deleted {len(ids)} points from '{name}'")
        return len(ids)

    async def fetch_points(
        self,
        name: str,
        filter: PayloadFilter | None = None,
        with_vectors: bool = False,
        limit: int | None = None,
    ) -> list[IndexPoint]:
        collection = await self._collection(name)
        include = ["documents", "metadatas"]
        if with_vectors:
            include.append("embeddings")

        results = await self._run(
            "get", collection.get, where=build_where(filter), limit=limit, include=include
        )

        embeddings = results.get("embeddings") if with_vectors else None
        points = []
        for i, point_id in enumerate(results["ids"]):
            vector = None
            if embeddings is not None:
                vector = [float(x) for x in embeddings[i]]
            points.append(
                IndexPoint(
                    id=point_id,
                    vector=vector,
                    payload=_payload(results["metadatas"][i], results["documents"][i]),
                )
            )
        return points

    async def get_stats(self, name: str | None = None) -> IndexStats:
        names = [name] if name is not None else await self._list_names()

        collections = []
        for collection_name in names:
            collection = await self._collection(collection_name)
            count = await self._run("count", collection.count)
            metadata = collection.metadata or {}
            collections.append(
                CollectionStats(
                    name=collection_name,
                    point_count=count,
                    vector_size=await self._vector_size(collection_name),
                    distance_metric=str(metadata.get("hnsw:space", "l2")),
                )
            )

        return IndexStats(
            total_collections=len(collections),
            total_points=sum(c.point_count for c in collections),
            collections=collections,
        )

    async def health(self) -> tuple[bool, str]:
        """Check Chroma connectivity."""
        try:
            client = await self._get_client()
            await self._run("heartbeat", client.heartbeat)
            return True, "healthy"
        except IndexUnavailable as e:
            return False, f"unhealthy: {e.message}"

    def get_storage_info(self) -> dict[str, Any]:
        return {
            "type": self.store_type,
            "location": self.url,
            "in_memory": self.url == ":memory:",
            "timeout_s": self.timeout,
            "batch_size": self.batch_size,
        }

    async def close(self) -> None:
        self._collections.clear()
        self._client = None
