"""RAG Retriever - semantic search with heuristic re-ranking.

Combines query embedding, vector search, threshold filtering and re-ranking,
plus similar-document discovery over stored chunk vectors.
"""

import logging
import time
from collections import defaultdict
from typing import Any

from src.core.config import Settings, get_settings
from src.observability.metrics import SEARCH_LATENCY, SEARCHES_TOTAL
from src.rag.embeddings import EmbeddingBackend
from src.rag.errors import EmptyInput, RAGError
from src.rag.models import (
    PipelineStats,
    SearchResponse,
    SearchResult,
    SearchStats,
    SimilarDocument,
)
from src.rag.reranking import RerankWeights, rerank
from src.rag.vector_store import PayloadFilter, ScoredPoint, VectorIndex

logger = logging.getLogger(__name__)


def _to_result(point: ScoredPoint) -> SearchResult:
    payload = point.payload
    return SearchResult(
        text=payload.get("text", ""),
        similarity=point.score,
        reranked_score=point.score,
        document_id=payload.get("document_id", ""),
        chunk_index=payload.get("chunk_index", 0),
        section_title=payload.get("section_title"),
        page_number=payload.get("page_number"),
        is_heading=bool(payload.get("is_heading", False)),
        is_list=bool(payload.get("is_list", False)),
        payload=payload,
    )


class Retriever:
    """Semantic retrieval over the shared document collection.

    Queries are embedded with the same backend used at ingest time; every
    stored point records its backend so mismatches can be detected.
    """

    def __init__(
        self,
        vector_index: VectorIndex,
        embedder: EmbeddingBackend,
        settings: Settings | None = None,
        stats: PipelineStats | None = None,
        weights: RerankWeights | None = None,
    ):
        self.settings = settings or get_settings()
        self.vector_index = vector_index
        self.embedder = embedder
        self.stats = stats or PipelineStats()
        self.weights = weights or RerankWeights.from_settings(self.settings)
        self.collection_name = self.settings.default_collection_name

    def _scoped(self, payload_filter: PayloadFilter | None) -> PayloadFilter:
        """Apply the backend-match restriction when strict matching is on."""
        payload_filter = payload_filter or PayloadFilter()
        if self.settings.strict_embedding_match:
            return payload_filter.merge(
                PayloadFilter(equals={"embedding_model": self.embedder.model_id})
            )
        return payload_filter

    def _warn_on_backend_mismatch(self, points: list[ScoredPoint]) -> None:
        models = {p.payload.get("embedding_model") for p in points}
        foreign = sorted(m for m in models if m and m != self.embedder.model_id)
        if foreign:
            logger.warning(
                f"[Retriever] Results embedded with {foreign}, queries use "
                f"{self.embedder.model_id}; similarity scores may be unreliable"
            )

    async def search(
        self,
        query: str,
        filter: PayloadFilter | None = None,
        limit: int | None = None,
        threshold: float | None = None,
        include_context: bool = True,
    ) -> SearchResponse:
        """Retrieve relevant chunks for a query.

        Args:
            query: Natural-language query
            filter: Payload filter (educational context, document scoping)
            limit: Max results (defaults to settings, capped at search_max_limit)
            threshold: Minimum raw similarity (defaults to settings)
            include_context: Attach page label/section context to each result

        Returns:
            SearchResponse, successful even when no result passes the threshold

        Raises:
            EmptyInput: Query is empty
            IndexUnavailable: Vector index unreachable (no fallback index)
        """
        query_text = (query or "").strip()
        if not query_text:
            raise EmptyInput("Search query is empty", stage="search")

        limit = min(max(limit or self.settings.search_limit, 1), self.settings.search_max_limit)
        threshold = self.settings.search_threshold if threshold is None else threshold
        start_time = time.perf_counter()

        try:
            query_vector = await self.embedder.embed(query_text)
            hits = await self.vector_index.query(
                self.collection_name, query_vector, self._scoped(filter), k=limit * 2
            )
        except RAGError:
            SEARCHES_TOTAL.labels(outcome="error").inc()
            raise

        self._warn_on_backend_mismatch(hits)

        candidates = [_to_result(hit) for hit in hits]
        filtered = [c for c in candidates if c.similarity >= threshold]
        results = rerank(query_text, filtered, self.weights)[:limit]

        if include_context:
            for result in results:
                result.context = {
                    "page_label": f"Page {result.page_number}" if result.page_number else None,
                    "section_title": result.section_title,
                    "is_heading": result.is_heading,
                    "is_list": result.is_list,
                }

        elapsed = time.perf_counter() - start_time
        self.stats.record_search()
        SEARCH_LATENCY.observe(elapsed)
        SEARCHES_TOTAL.labels(outcome="results" if results else "empty").inc()

        logger.info(
            f"[Retriever] Search '{query_text[:50]}': {len(hits)} found, "
            f"{len(filtered)} above {threshold}, {len(results)} returned"
        )
        return SearchResponse(
            success=True,
            query=query_text,
            results=results,
            stats=SearchStats(
                total_found=len(hits),
                after_filtering=len(filtered),
                returned=len(results),
                search_time_ms=int(elapsed * 1000),
                threshold=threshold,
            ),
        )

    async def find_similar(
        self,
        document_id: str,
        limit: int = 5,
        same_subject_only: bool = False,
        same_topic_only: bool = False,
    ) -> list[SimilarDocument]:
        """Find documents similar to a stored document.

        Up to three representative chunks (first, middle, last) are used as
        queries that exclude the source document. Hits are aggregated per
        document, keeping each document's best score per representative.

        Args:
            document_id: Source document
            limit: Maximum number of documents to return
            same_subject_only: Only consider documents of the source's subject
            same_topic_only: Only consider documents of the source's topic

        Returns:
            Documents ranked by mean similarity, then max similarity
        """
        chunks = await self.vector_index.fetch_points(
            self.collection_name, PayloadFilter.build(document_id=document_id), with_vectors=True
        )
        if not chunks:
            logger.info(f"[Retriever] No chunks found for document {document_id}")
            return []

        chunks.sort(key=lambda p: p.payload.get("chunk_index", 0))
        positions = sorted({0, len(chunks) // 2, len(chunks) - 1})
        representatives = [chunks[i] for i in positions]

        source = chunks[0].payload
        exclude = self._scoped(
            PayloadFilter.build(
                subject_id=source.get("subject_id") if same_subject_only else None,
                topic_id=source.get("topic_id") if same_topic_only else None,
                exclude_document_id=document_id,
            )
        )
        best_scores: dict[str, list[float]] = defaultdict(list)
        matched_ids: dict[str, set[str]] = defaultdict(set)
        payloads: dict[str, dict[str, Any]] = {}

        for representative in representatives:
            hits = await self.vector_index.query(
                self.collection_name, representative.vector, exclude, k=limit * 2
            )
            per_document: dict[str, float] = {}
            for hit in hits:
                doc_id = hit.payload.get("document_id")
                if not doc_id or doc_id == document_id:
                    continue
                per_document[doc_id] = max(per_document.get(doc_id, hit.score), hit.score)
                matched_ids[doc_id].add(hit.id)
                payloads.setdefault(doc_id, hit.payload)
            for doc_id, score in per_document.items():
                best_scores[doc_id].append(score)

        similar = [
            SimilarDocument(
                document_id=doc_id,
                file_name=payloads[doc_id].get("file_name"),
                subject_id=payloads[doc_id].get("subject_id"),
                topic_id=payloads[doc_id].get("topic_id"),
                subtopic_id=payloads[doc_id].get("subtopic_id"),
                mean_similarity=sum(scores) / len(scores),
                max_similarity=max(scores),
                matched_chunks=len(matched_ids[doc_id]),
            )
            for doc_id, scores in best_scores.items()
        ]
        similar.sort(key=lambda d: (d.mean_similarity, d.max_similarity), reverse=True)
        return similar[:limit]

    async def get_document_chunks(self, document_id: str) -> list[dict[str, Any]]:
        """Stored chunk payloads for a document, ordered by chunk index."""
        points = await self.vector_index.fetch_points(
            self.collection_name, PayloadFilter.build(document_id=document_id)
        )
        payloads = [p.payload for p in points]
        payloads.sort(key=lambda p: p.get("chunk_index", 0))
        return payloads

    async def list_documents(self, filter: PayloadFilter | None = None) -> list[dict[str, Any]]:
        """Documents present in the index, aggregated from chunk payloads.

        Returns:
            One summary per document, newest upload first
        """
        points = await self.vector_index.fetch_points(self.collection_name, filter)

        documents: dict[str, dict[str, Any]] = {}
        for point in points:
            payload = point.payload
            doc_id = payload.get("document_id")
            if not doc_id:
                continue
            summary = documents.get(doc_id)
            if summary is None:
                summary = documents[doc_id] = {
                    "document_id": doc_id,
                    "file_name": payload.get("file_name"),
                    "file_type": payload.get("file_type"),
                    "file_size": payload.get("file_size"),
                    "source_type": payload.get("source_type"),
                    "subject_id": payload.get("subject_id"),
                    "topic_id": payload.get("topic_id"),
                    "subtopic_id": payload.get("subtopic_id"),
                    "uploaded_by": payload.get("uploaded_by"),
                    "upload_date": payload.get("upload_date"),
                    "embedding_model": payload.get("embedding_model"),
                    "chunk_count": 0,
                }
            summary["chunk_count"] += 1

        return sorted(documents.values(), key=lambda d: d["upload_date"] or "", reverse=True)
