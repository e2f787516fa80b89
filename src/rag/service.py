"""RAG service - the orchestrator behind the HTTP API.

Owns the vector index, the embedding backend, the processor and the
retriever, plus the shared pipeline stats and document registry.
"""

import asyncio
import logging
from typing import Any

from src.core.config import Settings, get_settings
from src.rag.embeddings import EmbeddingBackend, select_embedding_backend
from src.rag.errors import IndexUnavailable
from src.rag.models import (
    DeleteResult,
    DocumentRegistry,
    DocumentUpload,
    EducationalContext,
    IngestResult,
    PipelineStats,
    SearchResponse,
    SimilarDocument,
)
from src.rag.processor import DocumentProcessor
from src.rag.retriever import Retriever
from src.rag.vector_store import PayloadFilter, VectorIndex, get_vector_index

logger = logging.getLogger(__name__)


class RAGService:
    """Ingestion and retrieval over one shared collection.

    The embedding backend is chosen once in ``initialize()`` and kept for
    the lifetime of the service. Concurrent ingests are bounded by
    ``max_concurrent_processing``.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        vector_index: VectorIndex | None = None,
        embedder: EmbeddingBackend | None = None,
    ):
        self.settings = settings or get_settings()
        self.vector_index = vector_index or get_vector_index(self.settings)
        self.embedder = embedder
        self.stats = PipelineStats()
        self.registry = DocumentRegistry()
        self.collection_name = self.settings.default_collection_name
        self._semaphore = asyncio.Semaphore(self.settings.max_concurrent_processing)
        self._collection_ready = False
        self.processor: DocumentProcessor | None = None
        self.retriever: Retriever | None = None

    async def initialize(self) -> None:
        """Select the embedding backend and prepare the collection.

        Raises:
            EmbeddingBackendUnavailable: Neural backend required but unavailable
            CollectionSizeConflict: Collection exists with another dimension
            IndexUnavailable: Vector index unreachable
        """
        await self._build()
        await self._ensure_collection()

    async def _build(self) -> tuple[DocumentProcessor, Retriever]:
        if self.processor is not None and self.retriever is not None:
            return self.processor, self.retriever
        if self.embedder is None:
            self.embedder = await select_embedding_backend(self.settings)

        self.processor = DocumentProcessor(
            self.vector_index,
            self.embedder,
            settings=self.settings,
            stats=self.stats,
            registry=self.registry,
        )
        self.retriever = Retriever(
            self.vector_index, self.embedder, settings=self.settings, stats=self.stats
        )
        logger.info(
            f"[RAGService] Initialized with {self.vector_index.store_type} index and "
            f"{self.embedder.model_id} embeddings"
        )
        return self.processor, self.retriever

    async def _ensure_collection(self) -> None:
        if not self._collection_ready:
            created = await self.vector_index.ensure_collection(
                self.collection_name, self.embedder.dimension()
            )
            if created:
                logger.info(f"[RAGService] Created collection '{self.collection_name}'")
            self._collection_ready = True

    async def _ready(self) -> tuple[DocumentProcessor, Retriever]:
        processor, retriever = await self._build()
        await self._ensure_collection()
        return processor, retriever

    async def process_document(
        self,
        upload: DocumentUpload,
        context: EducationalContext,
        uploader_id: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> IngestResult:
        processor, _ = await self._build()
        async with self._semaphore:
            return await processor.process_document(
                upload, context, uploader_id=uploader_id, cancel_event=cancel_event
            )

    async def process_text(
        self,
        text: str,
        title: str,
        context: EducationalContext,
        uploader_id: str | None = None,
        metadata: dict[str, Any] | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> IngestResult:
        processor, _ = await self._build()
        async with self._semaphore:
            return await processor.process_text(
                text,
                title,
                context,
                uploader_id=uploader_id,
                metadata=metadata,
                cancel_event=cancel_event,
            )

    async def search(
        self,
        query: str,
        filter: PayloadFilter | None = None,
        limit: int | None = None,
        threshold: float | None = None,
        include_context: bool = True,
    ) -> SearchResponse:
        _, retriever = await self._ready()
        return await retriever.search(
            query, filter=filter, limit=limit, threshold=threshold, include_context=include_context
        )

    async def find_similar(
        self,
        document_id: str,
        limit: int = 5,
        same_subject_only: bool = False,
        same_topic_only: bool = False,
    ) -> list[SimilarDocument]:
        _, retriever = await self._ready()
        return await retriever.find_similar(
            document_id,
            limit=limit,
            same_subject_only=same_subject_only,
            same_topic_only=same_topic_only,
        )

    async def delete_document(self, document_id: str) -> DeleteResult:
        """Delete every chunk of a document from the index.

        Deleting an unknown document succeeds with zero points.
        """
        processor, _ = await self._ready()
        deleted = await processor.delete_document(document_id)
        return DeleteResult(success=True, document_id=document_id, deleted_points=deleted)

    async def list_documents(self, filter: PayloadFilter | None = None) -> list[dict[str, Any]]:
        _, retriever = await self._ready()
        return await retriever.list_documents(filter)

    async def get_document_chunks(self, document_id: str) -> list[dict[str, Any]]:
        _, retriever = await self._ready()
        return await retriever.get_document_chunks(document_id)

    async def get_stats(self) -> dict[str, Any]:
        """Pipeline counters, index statistics and embedding backend info."""
        await self._ready()
        index_stats = await self.vector_index.get_stats()
        return {
            "pipeline": self.stats.to_dict(),
            "index": {
                "total_collections": index_stats.total_collections,
                "total_points": index_stats.total_points,
                "per_collection": [
                    {
                        "name": c.name,
                        "point_count": c.point_count,
                        "vector_size": c.vector_size,
                        "distance_metric": c.distance_metric,
                    }
                    for c in index_stats.collections
                ],
            },
            "embedding": self.get_service_info(),
            "storage": self.vector_index.get_storage_info(),
            "registered_documents": len(self.registry.all()),
        }

    def get_service_info(self) -> dict[str, Any]:
        if self.embedder is None:
            return {"type": None, "status": "not initialized"}
        return self.embedder.get_service_info()

    async def health(self) -> tuple[bool, str]:
        return await self.vector_index.health()

    async def close(self) -> None:
        if self.embedder is not None:
            await self.embedder.close()
        await self.vector_index.close()
        logger.info("[RAGService] Closed")


# Global instance
_service: RAGService | None = None
_service_lock = asyncio.Lock()


async def get_rag_service() -> RAGService:
    """Get or create the global RAG service.

    An unreachable index at start-up is logged; the collection is created on
    first use once the index is back.
    """
    global _service
    async with _service_lock:
        if _service is None:
            service = RAGService()
            try:
                await service.initialize()
            except IndexUnavailable as e:
                logger.warning(f"[RAGService] Vector index not reachable at startup: {e.message}")
            _service = service
    return _service


async def shutdown_rag_service() -> None:
    """Close the global RAG service."""
    global _service
    if _service is not None:
        await _service.close()
        _service = None
