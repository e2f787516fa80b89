"""Tests for the ingest pipeline and the RAG service over an in-memory index."""

import asyncio

import pytest

from src.core.config import Settings
from src.rag.embeddings import TfidfEmbedder, select_embedding_backend
from src.rag.errors import (
    EmptyInput,
    IndexUnavailable,
    IngestCancelled,
    StageAborted,
    UnsupportedFormat,
)
from src.rag.models import DocumentUpload, EducationalContext, PipelineStats
from src.rag.processor import point_id
from src.rag.service import RAGService
from src.rag.vector_store import PayloadFilter, QdrantVectorIndex

KAFKA_SETTINGS = (
    "Kafka configuration\n\n"
    "Setting              Default      Meaning\n"
    "retention.ms         604800000    How long events are kept\n"
    "num.partitions       1            Partitions per new topic\n\n"
    "Brokers read these settings when a topic is created and apply them to every partition."
)

STREAMING = EducationalContext(subject_id="IBDN", topic_id="streaming")
BIOLOGY = EducationalContext(subject_id="BIO", topic_id="plants")


async def point_count(service: RAGService) -> int:
    return (await service.vector_index.get_stats(service.collection_name)).total_points


@pytest.fixture
async def indexed(service: RAGService, lessons) -> dict[str, str]:
    """
    Ingest the three sample lessons.

    Returns:
        dict: Lesson name to document id
    """
    ids = {}
    for name, context in (("kafka", STREAMING), ("streams", STREAMING), ("biology", BIOLOGY)):
        result = await service.process_text(lessons[name], f"{name} lesson", context)
        ids[name] = result.document_id
    return ids


class TestTextIngest:
    """Test ingesting plain text."""

    async def test_ingest_text(self, service: RAGService, lessons) -> None:
        """Should chunk, embed and index the text with its context."""
        result = await service.process_text(
            lessons["kafka"], "Kafka intro", STREAMING, uploader_id="teacher-1"
        )

        assert result.success is True
        assert result.stats.pages == 1
        assert result.stats.chunks >= 1
        assert await point_count(service) == result.stats.chunks

        chunks = await service.get_document_chunks(result.document_id)
        assert [c["chunk_index"] for c in chunks] == list(range(result.stats.chunks))
        assert all(c["subject_id"] == "IBDN" for c in chunks)
        assert all(c["embedding_model"] == "tfidf:384" for c in chunks)
        assert chunks[0]["uploaded_by"] == "teacher-1"
        assert chunks[0]["source_type"] == "text"

    async def test_empty_text_rejected(self, service: RAGService) -> None:
        """Should reject blank text without touching stats or the index."""
        with pytest.raises(EmptyInput):
            await service.process_text("   \n  ", "blank", STREAMING)

        assert service.stats.documents_processed == 0
        assert await point_count(service) == 0

    async def test_whitespace_aligned_table_detected(self, service: RAGService) -> None:
        """Should analyse column spacing before it is collapsed for chunking."""
        result = await service.process_text(KAFKA_SETTINGS, "Kafka settings", STREAMING)

        assert result.document.structure["tables"] == 1
        chunks = await service.get_document_chunks(result.document_id)
        assert any("retention.ms 604800000 How long events are kept" in c["text"] for c in chunks)

    async def test_whitespace_density_lowers_quality(self, service: RAGService) -> None:
        """Should score text padded with wide gaps as fair."""
        padded = "      ".join(["alpha"] * 30)

        result = await service.process_text(padded, "Padded", STREAMING)

        assert result.stats.quality == "fair"
        assert "Excessive whitespace" in result.document.quality.issues

    async def test_reprocessing_is_idempotent(self, service: RAGService, lessons) -> None:
        """Should overwrite points when the same document id is processed again."""
        first = await service.processor.process_text(
            lessons["kafka"], "Kafka", STREAMING, document_id="fixed-id"
        )
        await service.processor.process_text(
            lessons["kafka"], "Kafka", STREAMING, document_id="fixed-id"
        )

        assert await point_count(service) == first.stats.chunks

    def test_point_ids_are_deterministic(self) -> None:
        """Should derive the same point id from the same document and chunk."""
        assert point_id("doc", 0) == point_id("doc", 0)
        assert point_id("doc", 0) != point_id("doc", 1)


class TestDocumentIngest:
    """Test ingesting PDF uploads."""

    async def test_ingest_pdf(self, service: RAGService, make_pdf) -> None:
        """Should extract, chunk and index every page."""
        content = make_pdf(
            [
                [
                    "Introduction to Kafka",
                    "Kafka is a distributed event streaming platform.",
                    "Producers publish events to topics stored on brokers.",
                ],
                [
                    "Consumers read events from partitions of a topic.",
                    "Consumer groups share the partitions between members.",
                ],
            ]
        )

        result = await service.process_document(
            DocumentUpload(content=content, filename="kafka.pdf"), STREAMING, uploader_id="t1"
        )

        assert result.success is True
        assert result.stats.pages == 2
        assert result.stats.chunks >= 1
        assert result.document.container_metadata["pdf_version"] == "1.4"
        assert service.registry.get(result.document_id) is result.document
        assert service.stats.total_pages == 2

        chunks = await service.get_document_chunks(result.document_id)
        assert chunks[0]["file_name"] == "kafka.pdf"
        assert chunks[0]["file_type"] == "application/pdf"

    async def test_empty_page_keeps_page_numbers(self, service: RAGService, make_pdf) -> None:
        """Should attribute text after an empty page to its own page number."""
        first_page = [
            "Kafka is a distributed event streaming platform used by many engineering teams.",
            "Producers publish events to topics that are stored durably on a set of brokers.",
            "Each partition keeps its events in an ordered and immutable append-only log.",
        ]
        third_page = [
            "Consumer groups share the partitions of a topic between all of their members.",
            "Kafka retains events for a configurable period so that consumers can replay them.",
            "Replication across several brokers keeps topics available when one broker fails.",
            "Offsets record how far each consumer group has read through every partition.",
        ]
        content = make_pdf([first_page, [], third_page])

        result = await service.process_document(
            DocumentUpload(content=content, filename="gap.pdf"), STREAMING
        )

        assert result.stats.pages == 3
        chunks = await service.get_document_chunks(result.document_id)
        assert chunks[0]["page_number"] == 1
        assert chunks[-1]["page_number"] == 3
        assert "Consumer groups" in chunks[-1]["text"]

    async def test_empty_file_rejected(self, service: RAGService) -> None:
        """Should reject a zero-byte upload with no side effects."""
        with pytest.raises(EmptyInput):
            await service.process_document(
                DocumentUpload(content=b"", filename="empty.pdf"), STREAMING
            )

        assert service.stats.documents_processed == 0
        assert len(service.registry) == 0
        assert await point_count(service) == 0

    async def test_unsupported_format(self, service: RAGService) -> None:
        """Should reject non-PDF uploads."""
        with pytest.raises(UnsupportedFormat):
            await service.process_document(
                DocumentUpload(content=b"plain", filename="a.txt", media_type="text/plain"),
                STREAMING,
            )


class TestPipelineFailures:
    """Test stage failures and cancellation."""

    async def test_cancelled_before_analysis(self, service: RAGService, lessons) -> None:
        """Should abort at the next stage boundary and write nothing."""
        cancel = asyncio.Event()
        cancel.set()

        with pytest.raises(StageAborted) as exc_info:
            await service.process_text(lessons["kafka"], "Kafka", STREAMING, cancel_event=cancel)

        assert exc_info.value.stage == "analysis"
        assert isinstance(exc_info.value.cause, IngestCancelled)
        assert await point_count(service) == 0

    async def test_embedding_failure(self, service: RAGService, lessons, monkeypatch) -> None:
        """Should report the embedding stage when the backend fails."""

        async def broken(texts):
            raise RuntimeError("backend crashed")

        monkeypatch.setattr(service.embedder, "embed_batch", broken)

        with pytest.raises(StageAborted) as exc_info:
            await service.process_text(lessons["kafka"], "Kafka", STREAMING)

        assert exc_info.value.stage == "embedding"
        assert exc_info.value.retryable is False
        assert service.stats.documents_processed == 0

    async def test_index_failure_is_retryable(
        self, service: RAGService, lessons, monkeypatch
    ) -> None:
        """Should wrap an unreachable index as a retryable indexing failure."""

        async def unreachable(name, points):
            raise IndexUnavailable("connection refused", stage="indexing")

        monkeypatch.setattr(service.vector_index, "upsert", unreachable)

        with pytest.raises(StageAborted) as exc_info:
            await service.process_text(lessons["kafka"], "Kafka", STREAMING)

        assert exc_info.value.stage == "indexing"
        assert isinstance(exc_info.value.cause, IndexUnavailable)
        assert exc_info.value.retryable is True


    async def test_index_down_at_startup(
        self, settings: Settings, tfidf: TfidfEmbedder, memory_index, lessons, monkeypatch
    ) -> None:
        """Should validate input first and fail ingests at the indexing stage."""

        async def unreachable(name, dimension):
            raise IndexUnavailable("connection refused", stage="indexing")

        monkeypatch.setattr(memory_index, "ensure_collection", unreachable)
        service = RAGService(settings, vector_index=memory_index, embedder=tfidf)

        with pytest.raises(EmptyInput):
            await service.process_document(
                DocumentUpload(content=b"", filename="empty.pdf"), STREAMING
            )

        with pytest.raises(StageAborted) as exc_info:
            await service.process_text(lessons["kafka"], "Kafka", STREAMING)

        assert exc_info.value.stage == "indexing"
        assert isinstance(exc_info.value.cause, IndexUnavailable)
        assert exc_info.value.retryable is True
        assert service.stats.documents_processed == 0


class TestSearch:
    """Test search over ingested lessons."""

    async def test_subject_filter(self, service: RAGService, indexed) -> None:
        """Should only return chunks from the requested subject."""
        response = await service.search(
            "Kafka consumers read partitions",
            filter=PayloadFilter.build(subject_id="IBDN"),
            threshold=0.0,
        )

        assert response.results
        assert {r.payload["subject_id"] for r in response.results} == {"IBDN"}
        assert response.results[0].document_id in {indexed["kafka"], indexed["streams"]}
        assert service.stats.searches_performed == 1

    async def test_threshold_is_monotonic(self, service: RAGService, indexed) -> None:
        """Should return no more results as the threshold rises."""
        counts = []
        for threshold in (0.0, 0.1, 0.3, 0.6, 0.9):
            response = await service.search("Kafka topics", limit=50, threshold=threshold)
            assert all(r.similarity >= threshold for r in response.results)
            counts.append(len(response.results))

        assert counts == sorted(counts, reverse=True)
        assert counts[0] > 0

    async def test_document_scope(self, service: RAGService, indexed) -> None:
        """Should restrict hits to one document."""
        response = await service.search(
            "energy", filter=PayloadFilter.build(document_id=indexed["biology"]), threshold=0.0
        )

        assert {r.document_id for r in response.results} == {indexed["biology"]}

    async def test_fallback_backend_serves_search(
        self, settings: Settings, memory_index: QdrantVectorIndex, unavailable_neural, lessons
    ) -> None:
        """Should ingest and search with the TF-IDF fallback."""
        auto = settings.model_copy(update={"embedding_backend": "auto"})
        embedder = await select_embedding_backend(auto, neural=unavailable_neural)
        service = RAGService(auto, vector_index=memory_index, embedder=embedder)

        await service.process_text(lessons["biology"], "Photosynthesis", BIOLOGY)
        response = await service.search("photosynthesis chlorophyll", threshold=0.0)

        assert service.get_service_info()["type"] == "tfidf"
        assert isinstance(service.embedder, TfidfEmbedder)
        assert response.results


class TestDocuments:
    """Test similar documents, listing, deletion and stats."""

    async def test_find_similar(self, service: RAGService, indexed) -> None:
        """Should rank the related lesson first and exclude the source."""
        similar = await service.find_similar(indexed["kafka"], limit=5)

        ids = [s.document_id for s in similar]
        assert indexed["kafka"] not in ids
        assert ids[0] == indexed["streams"]
        assert similar[0].file_name == "streams lesson"
        assert similar[0].max_similarity >= similar[0].mean_similarity
        assert similar[0].matched_chunks >= 1

    async def test_find_similar_same_subject(self, service: RAGService, indexed) -> None:
        """Should only consider documents sharing the source's subject or topic."""
        by_subject = await service.find_similar(indexed["kafka"], same_subject_only=True)
        by_topic = await service.find_similar(indexed["biology"], same_topic_only=True)

        assert [s.document_id for s in by_subject] == [indexed["streams"]]
        assert by_subject[0].subject_id == "IBDN"
        assert by_topic == []

    async def test_find_similar_unknown(self, service: RAGService, indexed) -> None:
        """Should return nothing for an unknown document."""
        assert await service.find_similar("missing") == []

    async def test_list_documents(self, service: RAGService, indexed) -> None:
        """Should list each document once, filtered by context."""
        documents = await service.list_documents()
        streaming = await service.list_documents(PayloadFilter.build(subject_id="IBDN"))

        assert {d["document_id"] for d in documents} == set(indexed.values())
        assert {d["document_id"] for d in streaming} == {indexed["kafka"], indexed["streams"]}
        assert sum(d["chunk_count"] for d in documents) == await point_count(service)

    async def test_delete_document(self, service: RAGService, indexed) -> None:
        """Should delete every chunk and drop the document from the registry."""
        before = await point_count(service)
        chunks = await service.get_document_chunks(indexed["kafka"])

        result = await service.delete_document(indexed["kafka"])

        assert result.success is True
        assert result.deleted_points == len(chunks)
        assert await point_count(service) == before - len(chunks)
        assert await service.get_document_chunks(indexed["kafka"]) == []
        assert service.registry.get(indexed["kafka"]) is None
        assert len(service.registry) == 2

        response = await service.search("Kafka", threshold=0.0)
        assert indexed["kafka"] not in {r.document_id for r in response.results}

    async def test_delete_unknown_document(self, service: RAGService) -> None:
        """Should succeed with zero deleted points for an unknown id."""
        result = await service.delete_document("missing")

        assert result.success is True
        assert result.deleted_points == 0

    async def test_stats(self, service: RAGService, indexed) -> None:
        """Should report pipeline counters, index totals and the backend."""
        stats = await service.get_stats()

        assert stats["pipeline"]["documents_processed"] == 3
        assert stats["index"]["total_points"] == stats["pipeline"]["chunks_generated"]
        assert stats["embedding"]["type"] == "tfidf"
        assert stats["storage"]["type"] == "qdrant"
        assert stats["registered_documents"] == 3

    async def test_health(self, service: RAGService) -> None:
        """Should report a healthy in-memory index."""
        assert await service.health() == (True, "healthy")


class TestPipelineStats:
    """Test the advisory counters."""

    def test_rolling_average(self) -> None:
        """Should seed the average with the first sample, then halve toward new ones."""
        stats = PipelineStats()

        stats.record_ingest(chunks=3, embeddings=3, pages=1, processing_time_ms=100)
        stats.record_ingest(chunks=2, embeddings=2, pages=2, processing_time_ms=300)

        assert stats.avg_processing_time_ms == 200.0
        assert stats.documents_processed == 2
        assert stats.chunks_generated == 5
        assert stats.total_pages == 3

    async def test_concurrent_ingests(self, service: RAGService, lessons) -> None:
        """Should complete concurrent ingests and count each one."""
        results = await asyncio.gather(
            *(service.process_text(text, name, STREAMING) for name, text in lessons.items())
        )

        assert all(r.success for r in results)
        assert service.stats.documents_processed == 3
