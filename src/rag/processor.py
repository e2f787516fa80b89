"""Document processor for RAG ingestion.

Handles validation, extraction, structure analysis, chunking, embedding and
storage of one document at a time.
"""

import asyncio
import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any
from uuid import NAMESPACE_DNS, uuid4, uuid5

from src.core.config import Settings, get_settings
from src.observability.metrics import (
    ACTIVE_INGESTS,
    CHUNKS_GENERATED,
    DOCUMENTS_INGESTED,
    STAGE_DURATION,
)
from src.rag.chunking import Chunk, SemanticChunker, get_chunker
from src.rag.embeddings import EmbeddingBackend
from src.rag.errors import EmptyInput, IngestCancelled, RAGError, StageAborted
from src.rag.extractors import DocumentExtractor
from src.rag.models import (
    Document,
    DocumentRegistry,
    DocumentUpload,
    EducationalContext,
    IngestResult,
    IngestStats,
    PipelineStage,
    PipelineStats,
    SourceType,
)
from src.rag.structure import StructureAnalyzer
from src.rag.vector_store import IndexPoint, PayloadFilter, VectorIndex

logger = logging.getLogger(__name__)


def point_id(document_id: str, chunk_index: int) -> str:
    """Deterministic point id, so re-processing a document is idempotent."""
    return str(uuid5(NAMESPACE_DNS, f"{document_id}:{chunk_index}"))


class DocumentProcessor:
    """Processes documents for RAG ingestion.

    Pipeline (one state per stage, strictly in order):
    1. Validate format and size
    2. Extract text
    3. Analyze structure
    4. Split into chunks
    5. Generate embeddings
    6. Upsert into the vector index
    7. Record the document and stats

    Validation and extraction failures are raised as-is and leave nothing
    behind. Later failures raise ``StageAborted``; points already written
    are not rolled back (use ``delete_document``).
    """

    def __init__(
        self,
        vector_index: VectorIndex,
        embedder: EmbeddingBackend,
        settings: Settings | None = None,
        chunker: SemanticChunker | None = None,
        extractor: DocumentExtractor | None = None,
        analyzer: StructureAnalyzer | None = None,
        stats: PipelineStats | None = None,
        registry: DocumentRegistry | None = None,
    ):
        self.settings = settings or get_settings()
        self.vector_index = vector_index
        self.embedder = embedder
        self.chunker = chunker or get_chunker(self.settings)
        self.extractor = extractor or DocumentExtractor(self.settings)
        self.analyzer = analyzer or StructureAnalyzer(self.settings.min_paragraph_length)
        self.stats = stats or PipelineStats()
        self.registry = registry or DocumentRegistry()
        self.collection_name = self.settings.default_collection_name

    @contextmanager
    def _stage(self, stage: PipelineStage, wrap_errors: bool = True) -> Iterator[None]:
        """Time a stage and, for post-extraction stages, wrap failures."""
        started = time.perf_counter()
        try:
            yield
        except StageAborted:
            raise
        except Exception as e:
            if not wrap_errors:
                raise
            logger.error(f"[Processor] Stage '{stage}' failed: {e}", exc_info=True)
            raise StageAborted(stage, e) from e
        finally:
            STAGE_DURATION.labels(stage=stage.value).observe(time.perf_counter() - started)

    @staticmethod
    def _checkpoint(stage: PipelineStage, cancel_event: asyncio.Event | None) -> None:
        if cancel_event is not None and cancel_event.is_set():
            logger.info(f"[Processor] Ingest cancelled before stage '{stage}'")
            raise StageAborted(stage, IngestCancelled(f"Cancelled before {stage}", stage=stage))

    async def process_document(
        self,
        upload: DocumentUpload,
        context: EducationalContext,
        uploader_id: str | None = None,
        cancel_event: asyncio.Event | None = None,
        document_id: str | None = None,
    ) -> IngestResult:
        """Ingest an uploaded PDF.

        Args:
            upload: Raw file bytes with filename and declared media type
            context: Educational context stored with every chunk
            uploader_id: Uploading user
            cancel_event: Set to cancel at the next stage boundary
            document_id: Id to use (a new uuid4 when omitted)

        Returns:
            IngestResult with chunk/page counts, timing and quality

        Raises:
            ExtractionError: Unsupported, corrupt or oversized file
            EmptyInput: Empty file or no extractable text
            StageAborted: A later stage failed or the run was cancelled
        """
        start_time = time.perf_counter()
        document_id = document_id or str(uuid4())
        logger.info(
            f"[Processor] Starting document processing: doc_id={document_id}, "
            f"file='{upload.filename}', size={upload.size_bytes}"
        )

        with ACTIVE_INGESTS.track_inprogress():
            try:
                self._checkpoint(PipelineStage.VALIDATION, cancel_event)
                with self._stage(PipelineStage.VALIDATION, wrap_errors=False):
                    self.extractor.validate(upload)

                self._checkpoint(PipelineStage.EXTRACTION, cancel_event)
                with self._stage(PipelineStage.EXTRACTION, wrap_errors=False):
                    extraction = await asyncio.to_thread(self.extractor.extract, upload)
            except RAGError as e:
                status = "aborted" if isinstance(e, StageAborted) else "rejected"
                DOCUMENTS_INGESTED.labels(source_type=SourceType.PDF, status=status).inc()
                logger.warning(f"[Processor] Rejected '{upload.filename}': {e}")
                raise

            document = Document(
                id=document_id,
                filename=upload.filename,
                media_type=upload.media_type,
                size_bytes=upload.size_bytes,
                context=context,
                uploader_id=uploader_id,
                uploaded_at=datetime.now(UTC),
                text_length=len(extraction.text),
                page_count=extraction.page_count,
                quality=None,
                source_type=SourceType.PDF,
                container_metadata=extraction.container_metadata,
            )
            return await self._run_pipeline(
                document,
                extraction.text,
                extraction.page_count,
                start_time,
                cancel_event,
                page_spans=extraction.page_spans,
            )

    async def process_text(
        self,
        text: str,
        title: str,
        context: EducationalContext,
        uploader_id: str | None = None,
        metadata: dict[str, Any] | None = None,
        cancel_event: asyncio.Event | None = None,
        document_id: str | None = None,
    ) -> IngestResult:
        """Ingest plain text (e.g. a video transcript) from the analysis stage on.

        Args:
            text: Document text
            title: Name shown for the document
            context: Educational context stored with every chunk
            uploader_id: Uploading user
            metadata: Extra container metadata kept on the document
            cancel_event: Set to cancel at the next stage boundary
            document_id: Id to use (a new uuid4 when omitted)

        Raises:
            EmptyInput: Text is empty or whitespace-only
            StageAborted: A later stage failed or the run was cancelled
        """
        start_time = time.perf_counter()
        document_id = document_id or str(uuid4())

        # Analysis sees the layout text; sentences are whitespace-collapsed later
        layout = DocumentExtractor.normalize_layout(text or "")
        if not DocumentExtractor.clean_text(layout):
            DOCUMENTS_INGESTED.labels(source_type=SourceType.TEXT, status="rejected").inc()
            raise EmptyInput(f"Text for '{title}' is empty", stage=PipelineStage.VALIDATION)

        logger.info(
            f"[Processor] Starting text processing: doc_id={document_id}, "
            f"title='{title}', length={len(layout)}"
        )
        document = Document(
            id=document_id,
            filename=title,
            media_type="text/plain",
            size_bytes=len(text.encode("utf-8")),
            context=context,
            uploader_id=uploader_id,
            uploaded_at=datetime.now(UTC),
            text_length=len(layout),
            page_count=1,
            quality=None,
            source_type=SourceType.TEXT,
            container_metadata=dict(metadata or {}),
        )
        with ACTIVE_INGESTS.track_inprogress():
            return await self._run_pipeline(document, layout, 1, start_time, cancel_event)

    async def _run_pipeline(
        self,
        document: Document,
        text: str,
        page_count: int,
        start_time: float,
        cancel_event: asyncio.Event | None,
        page_spans: list[tuple[int, int]] | None = None,
    ) -> IngestResult:
        """Analysis through storage for an extracted document."""
        try:
            self._checkpoint(PipelineStage.ANALYSIS, cancel_event)
            with self._stage(PipelineStage.ANALYSIS):
                structure = self.analyzer.analyze(text, page_count, page_spans)
                document.quality = structure.quality
                document.structure = structure.summary()
            logger.debug(f"[Processor] Structure: {document.structure}")

            self._checkpoint(PipelineStage.CHUNKING, cancel_event)
            with self._stage(PipelineStage.CHUNKING):
                chunks = self.chunker.chunk(
                    text,
                    structure,
                    context=document.context,
                    metadata={"document_id": document.id, "file_name": document.filename},
                )
                if not chunks:
                    raise EmptyInput("No chunks generated from document", stage="chunking")
            logger.info(f"[Processor] Generated {len(chunks)} chunks")

            self._checkpoint(PipelineStage.EMBEDDING, cancel_event)
            with self._stage(PipelineStage.EMBEDDING):
                logger.info(f"[Processor] Generating embeddings for {len(chunks)} chunks...")
                vectors = await self.embedder.embed_batch([c.text for c in chunks])

            self._checkpoint(PipelineStage.INDEXING, cancel_event)
            with self._stage(PipelineStage.INDEXING):
                await self.vector_index.ensure_collection(
                    self.collection_name, self.embedder.dimension()
                )
                points = self.build_points(document, chunks, vectors)
                logger.info(
                    f"[Processor] Upserting {len(points)} points to collection "
                    f"'{self.collection_name}'"
                )
                await self.vector_index.upsert(self.collection_name, points)

            with self._stage(PipelineStage.STORING):
                processing_time = int((time.perf_counter() - start_time) * 1000)
                document.chunk_count = len(chunks)
                document.embedding_backend = self.embedder.model_id
                document.processing_time_ms = processing_time
                self.registry.add(document)
                self.stats.record_ingest(
                    chunks=len(chunks),
                    embeddings=len(vectors),
                    pages=page_count,
                    processing_time_ms=processing_time,
                )
        except StageAborted:
            DOCUMENTS_INGESTED.labels(source_type=document.source_type, status="aborted").inc()
            raise

        DOCUMENTS_INGESTED.labels(source_type=document.source_type, status="success").inc()
        CHUNKS_GENERATED.inc(len(chunks))
        logger.info(
            f"[Processor] Document processed successfully in {processing_time}ms: "
            f"{len(chunks)} chunks, {page_count} pages, quality={structure.quality.score}"
        )
        return IngestResult(
            success=True,
            document_id=document.id,
            stats=IngestStats(
                chunks=len(chunks),
                pages=page_count,
                processing_time_ms=processing_time,
                text_length=document.text_length,
                quality=structure.quality.score,
            ),
            document=document,
        )

    def build_points(
        self, document: Document, chunks: list[Chunk], vectors: list[list[float]]
    ) -> list[IndexPoint]:
        """Pair chunks with their vectors and denormalized payloads."""
        created_at = datetime.now(UTC).isoformat()
        points = []
        for chunk, vector in zip(chunks, vectors, strict=True):
            payload = {
                "document_id": document.id,
                "file_name": document.filename,
                "file_type": document.media_type,
                "file_size": document.size_bytes,
                "source_type": str(document.source_type),
                **document.context.to_payload(),
                "uploaded_by": document.uploader_id,
                "upload_date": document.uploaded_at.isoformat(),
                "chunk_id": chunk.id,
                "chunk_index": chunk.index,
                "total_chunks": len(chunks),
                "text": chunk.text,
                "char_count": chunk.char_count,
                "word_count": chunk.word_count,
                "sentence_count": chunk.sentence_count,
                "start_char": chunk.start_char,
                "end_char": chunk.end_char,
                "overlap_chars": chunk.overlap_chars,
                "section_title": chunk.section_title,
                "page_number": chunk.page_number,
                "paragraph_number": chunk.paragraph_number,
                "is_heading": chunk.is_heading,
                "is_list": chunk.is_list,
                "relative_position": chunk.relative_position,
                "previous_chunk_id": chunk.previous_chunk_id,
                "next_chunk_id": chunk.next_chunk_id,
                "embedding_model": self.embedder.model_id,
                "created_at": created_at,
            }
            points.append(
                IndexPoint(id=point_id(document.id, chunk.index), vector=vector, payload=payload)
            )
        return points

    async def delete_document(self, document_id: str) -> int:
        """Delete all index points for a document.

        Safe on partially indexed documents; does not need chunk ids.

        Returns:
            Number of points deleted
        """
        deleted = await self.vector_index.delete_by_filter(
            self.collection_name, PayloadFilter.build(document_id=document_id)
        )
        self.registry.remove(document_id)
        logger.info(f"[Processor] Deleted document {document_id} ({deleted} points)")
        return deleted
