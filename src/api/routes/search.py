"""Semantic search and statistics endpoints."""

from typing import Any

from fastapi import APIRouter
from pydantic import Field

from src.api.deps import RAG
from src.api.errors import to_http_exception
from src.api.schemas import CamelModel
from src.rag.errors import RAGError
from src.rag.vector_store import PayloadFilter

router = APIRouter()


# ============================================
# Request/Response Models
# ============================================


class SearchFilter(CamelModel):
    """Educational-context and document scoping for a search."""

    subject_id: str | None = None
    topic_id: str | None = None
    subtopic_id: str | None = None
    document_id: str | None = None
    exclude_document_id: str | None = None

    def to_payload_filter(self) -> PayloadFilter:
        return PayloadFilter.build(
            subject_id=self.subject_id,
            topic_id=self.topic_id,
            subtopic_id=self.subtopic_id,
            document_id=self.document_id,
            exclude_document_id=self.exclude_document_id,
        )


class SearchRequest(CamelModel):
    """Semantic search request."""

    query: str = Field(..., min_length=1, max_length=10000)
    filter: SearchFilter | None = None
    limit: int = Field(10, ge=1, le=50)
    threshold: float = Field(0.15, ge=0.0, le=1.0)
    include_context: bool = True


class SearchResultResponse(CamelModel):
    """Single ranked search hit."""

    text: str
    similarity: float
    reranked_score: float
    document_id: str
    chunk_index: int
    section_title: str | None = None
    page_number: int | None = None
    is_heading: bool
    is_list: bool
    context: dict[str, Any] | None = None


class SearchStatsResponse(CamelModel):
    total_found: int
    after_filtering: int
    returned: int
    search_time_ms: int
    threshold: float


class SearchResponseModel(CamelModel):
    success: bool
    query: str
    results: list[SearchResultResponse]
    stats: SearchStatsResponse


# ============================================
# Endpoints
# ============================================


@router.post("/search", response_model=SearchResponseModel)
async def search(body: SearchRequest, service: RAG):
    """Search indexed chunks, filtered by educational context.

    Returns a successful, possibly empty, list of re-ranked results.
    """
    payload_filter = body.filter.to_payload_filter() if body.filter else None
    try:
        response = await service.search(
            body.query,
            filter=payload_filter,
            limit=body.limit,
            threshold=body.threshold,
            include_context=body.include_context,
        )
    except RAGError as e:
        raise to_http_exception(e) from None

    return SearchResponseModel(
        success=response.success,
        query=response.query,
        results=[
            SearchResultResponse(
                text=r.text,
                similarity=r.similarity,
                reranked_score=r.reranked_score,
                document_id=r.document_id,
                chunk_index=r.chunk_index,
                section_title=r.section_title,
                page_number=r.page_number,
                is_heading=r.is_heading,
                is_list=r.is_list,
                context=r.context,
            )
            for r in response.results
        ],
        stats=SearchStatsResponse(
            total_found=response.stats.total_found,
            after_filtering=response.stats.after_filtering,
            returned=response.stats.returned,
            search_time_ms=response.stats.search_time_ms,
            threshold=response.stats.threshold,
        ),
    )


@router.get("/stats")
async def get_stats(service: RAG) -> dict[str, Any]:
    """Pipeline counters, index statistics and embedding backend info."""
    try:
        return await service.get_stats()
    except RAGError as e:
        raise to_http_exception(e) from None
