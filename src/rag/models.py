"""Data types shared across the RAG pipeline."""

from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any


class PipelineStage(StrEnum):
    """Stages of a document ingest run, in execution order."""

    VALIDATION = "validation"
    EXTRACTION = "extraction"
    ANALYSIS = "analysis"
    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    INDEXING = "indexing"
    STORING = "storing"


class SourceType(StrEnum):
    """How a document entered the pipeline."""

    PDF = "pdf"
    TEXT = "text"


@dataclass(frozen=True)
class EducationalContext:
    """Subject/topic/subtopic identifiers scoping a document."""

    subject_id: str | None = None
    topic_id: str | None = None
    subtopic_id: str | None = None

    def to_payload(self) -> dict[str, str | None]:
        return {
            "subject_id": self.subject_id,
            "topic_id": self.topic_id,
            "subtopic_id": self.subtopic_id,
        }


@dataclass
class DocumentUpload:
    """Raw uploaded file."""

    content: bytes
    filename: str
    media_type: str = "application/pdf"

    @property
    def size_bytes(self) -> int:
        return len(self.content)


@dataclass
class QualityAssessment:
    """Text quality score with issue flags."""

    score: str  # poor | fair | good | excellent
    issues: list[str] = field(default_factory=list)
    metrics: dict[str, Any] = field(default_factory=dict)


@dataclass
class Document:
    """An ingested document.

    Immutable after ingestion except for the deletion stamp set when it
    leaves the registry.
    """

    id: str
    filename: str
    media_type: str
    size_bytes: int
    context: EducationalContext
    uploader_id: str | None
    uploaded_at: datetime
    text_length: int
    page_count: int
    quality: QualityAssessment | None
    source_type: SourceType = SourceType.PDF
    chunk_count: int = 0
    embedding_backend: str | None = None
    processing_time_ms: int = 0
    container_metadata: dict[str, Any] = field(default_factory=dict)
    structure: dict[str, Any] = field(default_factory=dict)
    deleted_at: datetime | None = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def mark_deleted(self) -> None:
        if self.deleted_at is None:
            self.deleted_at = datetime.now(UTC)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["uploaded_at"] = self.uploaded_at.isoformat()
        data["deleted_at"] = self.deleted_at.isoformat() if self.deleted_at else None
        return data


@dataclass
class IngestStats:
    """Per-document ingest statistics."""

    chunks: int
    pages: int
    processing_time_ms: int
    text_length: int
    quality: str


@dataclass
class IngestResult:
    """Result of a successful document ingest."""

    success: bool
    document_id: str
    stats: IngestStats
    document: Document | None = None


@dataclass
class DeleteResult:
    """Result of deleting a document."""

    success: bool
    document_id: str
    deleted_points: int = 0


@dataclass
class SearchResult:
    """A single ranked search hit."""

    text: str
    similarity: float
    reranked_score: float
    document_id: str
    chunk_index: int
    section_title: str | None = None
    page_number: int | None = None
    is_heading: bool = False
    is_list: bool = False
    context: dict[str, Any] | None = None
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass
class SearchStats:
    """Counts and timing for one search."""

    total_found: int
    after_filtering: int
    returned: int
    search_time_ms: int
    threshold: float


@dataclass
class SearchResponse:
    """Result of a search, successful even when empty."""

    success: bool
    query: str
    results: list[SearchResult]
    stats: SearchStats


@dataclass
class SimilarDocument:
    """A document similar to a source document."""

    document_id: str
    file_name: str | None
    subject_id: str | None
    topic_id: str | None
    subtopic_id: str | None
    mean_similarity: float
    max_similarity: float
    matched_chunks: int


@dataclass
class PipelineStats:
    """Aggregate, advisory pipeline counters.

    Only mutated through the ``record_*`` methods.
    """

    documents_processed: int = 0
    chunks_generated: int = 0
    embeddings_created: int = 0
    searches_performed: int = 0
    total_pages: int = 0
    avg_processing_time_ms: float = 0.0

    def record_ingest(self, chunks: int, embeddings: int, pages: int, processing_time_ms: int):
        """Record a successful ingest.

        The rolling average is seeded by the first sample, then halves
        toward each new one: ``avg = (avg + new) / 2``.
        """
        if self.documents_processed == 0:
            self.avg_processing_time_ms = float(processing_time_ms)
        else:
            self.avg_processing_time_ms = (self.avg_processing_time_ms + processing_time_ms) / 2
        self.documents_processed += 1
        self.chunks_generated += chunks
        self.embeddings_created += embeddings
        self.total_pages += pages

    def record_search(self) -> None:
        self.searches_performed += 1

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["avg_processing_time_ms"] = round(self.avg_processing_time_ms, 2)
        return data


class DocumentRegistry:
    """Process-local record of ingested documents."""

    def __init__(self):
        self._documents: dict[str, Document] = {}

    def add(self, document: Document) -> None:
        self._documents[document.id] = document

    def get(self, document_id: str) -> Document | None:
        return self._documents.get(document_id)

    def remove(self, document_id: str) -> Document | None:
        """Drop a document, returning it stamped as deleted."""
        document = self._documents.pop(document_id, None)
        if document is not None:
            document.mark_deleted()
        return document

    def all(self) -> list[Document]:
        return list(self._documents.values())

    def __len__(self) -> int:
        return len(self._documents)
