"""Document ingestion and management endpoints."""

from typing import Any

from fastapi import APIRouter, File, Form, HTTPException, Query, UploadFile, status
from pydantic import Field

from src.api.deps import RAG
from src.api.errors import to_http_exception
from src.api.schemas import CamelModel
from src.rag.errors import RAGError
from src.rag.models import DocumentUpload, EducationalContext, IngestResult
from src.rag.vector_store import PayloadFilter

router = APIRouter()


# ============================================
# Request/Response Models
# ============================================


class IngestStatsResponse(CamelModel):
    chunks: int
    pages: int
    processing_time_ms: int
    text_length: int
    quality: str


class IngestResponse(CamelModel):
    """Result of ingesting a document."""

    success: bool
    document_id: str
    stats: IngestStatsResponse

    @classmethod
    def from_result(cls, result: IngestResult) -> "IngestResponse":
        return cls(
            success=result.success,
            document_id=result.document_id,
            stats=IngestStatsResponse(
                chunks=result.stats.chunks,
                pages=result.stats.pages,
                processing_time_ms=result.stats.processing_time_ms,
                text_length=result.stats.text_length,
                quality=result.stats.quality,
            ),
        )


class TextIngestRequest(CamelModel):
    """Plain text (e.g. a transcript) to ingest."""

    text: str = Field(..., max_length=5_000_000)
    title: str = Field(..., min_length=1, max_length=500)
    subject_id: str | None = None
    topic_id: str | None = None
    subtopic_id: str | None = None
    uploader_id: str | None = None
    metadata: dict[str, Any] | None = None


class DocumentSummary(CamelModel):
    document_id: str
    file_name: str | None = None
    file_type: str | None = None
    file_size: int | None = None
    source_type: str | None = None
    subject_id: str | None = None
    topic_id: str | None = None
    subtopic_id: str | None = None
    uploaded_by: str | None = None
    upload_date: str | None = None
    embedding_model: str | None = None
    chunk_count: int


class DocumentListResponse(CamelModel):
    documents: list[DocumentSummary]
    total: int


class ChunkResponse(CamelModel):
    """A stored chunk with its navigation and structure fields."""

    chunk_id: str
    chunk_index: int
    text: str
    char_count: int
    word_count: int
    sentence_count: int
    section_title: str | None = None
    page_number: int | None = None
    paragraph_number: int | None = None
    is_heading: bool = False
    is_list: bool = False
    relative_position: float | None = None
    previous_chunk_id: str | None = None
    next_chunk_id: str | None = None


class DocumentChunksResponse(CamelModel):
    document_id: str
    chunks: list[ChunkResponse]
    total: int


class SimilarDocumentResponse(CamelModel):
    document_id: str
    file_name: str | None = None
    subject_id: str | None = None
    topic_id: str | None = None
    subtopic_id: str | None = None
    mean_similarity: float
    max_similarity: float
    matched_chunks: int


class SimilarDocumentsResponse(CamelModel):
    document_id: str
    similar: list[SimilarDocumentResponse]


class DeleteResponse(CamelModel):
    success: bool
    document_id: str
    deleted_points: int


# ============================================
# Ingestion Endpoints
# ============================================


@router.post("/documents", response_model=IngestResponse, status_code=status.HTTP_201_CREATED)
async def upload_document(
    service: RAG,
    file: UploadFile = File(...),
    subject_id: str | None = Form(None, alias="subjectId"),
    topic_id: str | None = Form(None, alias="topicId"),
    subtopic_id: str | None = Form(None, alias="subtopicId"),
    uploader_id: str | None = Form(None, alias="uploaderId"),
):
    """Upload a PDF and run it through the ingestion pipeline.

    Pipeline: validation, extraction, structure analysis, chunking,
    embedding, indexing. The response carries per-document stats.
    """
    content = await file.read()
    upload = DocumentUpload(
        content=content,
        filename=file.filename or "unnamed",
        media_type=file.content_type or "application/octet-stream",
    )
    context = EducationalContext(subject_id=subject_id, topic_id=topic_id, subtopic_id=subtopic_id)

    try:
        result = await service.process_document(upload, context, uploader_id=uploader_id)
    except RAGError as e:
        raise to_http_exception(e) from None

    return IngestResponse.from_result(result)


@router.post("/documents/text", response_model=IngestResponse, status_code=status.HTTP_201_CREATED)
async def ingest_text(body: TextIngestRequest, service: RAG):
    """Ingest plain text, skipping PDF validation and extraction."""
    context = EducationalContext(
        subject_id=body.subject_id, topic_id=body.topic_id, subtopic_id=body.subtopic_id
    )
    try:
        result = await service.process_text(
            body.text,
            body.title,
            context,
            uploader_id=body.uploader_id,
            metadata=body.metadata,
        )
    except RAGError as e:
        raise to_http_exception(e) from None

    return IngestResponse.from_result(result)


# ============================================
# Document Endpoints
# ============================================


@router.get("/documents", response_model=DocumentListResponse)
async def list_documents(
    service: RAG,
    subject_id: str | None = Query(None, alias="subjectId"),
    topic_id: str | None = Query(None, alias="topicId"),
    subtopic_id: str | None = Query(None, alias="subtopicId"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    """List indexed documents, newest first."""
    payload_filter = PayloadFilter.build(
        subject_id=subject_id, topic_id=topic_id, subtopic_id=subtopic_id
    )
    try:
        documents = await service.list_documents(payload_filter)
    except RAGError as e:
        raise to_http_exception(e) from None

    page = documents[offset : offset + limit]
    return DocumentListResponse(
        documents=[DocumentSummary.model_validate(d) for d in page],
        total=len(documents),
    )


@router.get("/documents/{document_id}/chunks", response_model=DocumentChunksResponse)
async def get_document_chunks(document_id: str, service: RAG):
    """Get a document's chunks in reading order."""
    try:
        chunks = await service.get_document_chunks(document_id)
    except RAGError as e:
        raise to_http_exception(e) from None

    if not chunks:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found")

    return DocumentChunksResponse(
        document_id=document_id,
        chunks=[ChunkResponse.model_validate(c) for c in chunks],
        total=len(chunks),
    )


@router.get("/documents/{document_id}/similar", response_model=SimilarDocumentsResponse)
async def find_similar_documents(
    document_id: str,
    service: RAG,
    limit: int = Query(5, ge=1, le=50),
    same_subject_only: bool = Query(False, alias="sameSubjectOnly"),
    same_topic_only: bool = Query(False, alias="sameTopicOnly"),
):
    """Find documents similar to a stored document.

    ``sameSubjectOnly``/``sameTopicOnly`` restrict candidates to the source
    document's subject or topic.
    """
    try:
        similar = await service.find_similar(
            document_id,
            limit=limit,
            same_subject_only=same_subject_only,
            same_topic_only=same_topic_only,
        )
    except RAGError as e:
        raise to_http_exception(e) from None

    return SimilarDocumentsResponse(
        document_id=document_id,
        similar=[
            SimilarDocumentResponse(
                document_id=s.document_id,
                file_name=s.file_name,
                subject_id=s.subject_id,
                topic_id=s.topic_id,
                subtopic_id=s.subtopic_id,
                mean_similarity=s.mean_similarity,
                max_similarity=s.max_similarity,
                matched_chunks=s.matched_chunks,
            )
            for s in similar
        ],
    )


@router.delete("/documents/{document_id}", response_model=DeleteResponse)
async def delete_document(document_id: str, service: RAG):
    """Delete every indexed chunk of a document."""
    try:
        result = await service.delete_document(document_id)
    except RAGError as e:
        raise to_http_exception(e) from None

    return DeleteResponse(
        success=result.success,
        document_id=result.document_id,
        deleted_points=result.deleted_points,
    )
