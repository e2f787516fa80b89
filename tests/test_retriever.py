"""Tests for search, similar-document discovery and document listing."""

import logging
from typing import Any

import pytest

from src.core.config import Settings
from src.rag.embeddings import TfidfEmbedder
from src.rag.errors import EmptyInput, IndexUnavailable
from src.rag.models import PipelineStats
from src.rag.retriever import Retriever
from src.rag.vector_store import (
    IndexPoint,
    IndexStats,
    PayloadFilter,
    ScoredPoint,
    VectorIndex,
)


class FakeIndex(VectorIndex):
    """Vector index returning canned hits and recording query arguments."""

    store_type = "fake"

    def __init__(
        self, hits: list[ScoredPoint] | None = None, points: list[IndexPoint] | None = None
    ):
        self.hits = hits or []
        self.points = points or []
        self.queries: list[dict[str, Any]] = []
        self.fail = False

    async def ensure_collection(self, name: str, dimension: int) -> bool:
        return False

    async def upsert(self, name: str, points: list[IndexPoint]) -> int:
        self.points.extend(points)
        return len(points)

    async def query(self, name, vector, filter=None, k=10) -> list[ScoredPoint]:
        if self.fail:
            raise IndexUnavailable("index down", stage="indexing")
        self.queries.append({"name": name, "filter": filter, "k": k})
        matching = [h for h in self.hits if filter is None or filter.matches(h.payload)]
        return matching[:k]

    async def delete_by_filter(self, name: str, filter: PayloadFilter) -> int:
        return 0

    async def fetch_points(self, name, filter=None, with_vectors=False, limit=None):
        return [p for p in self.points if filter is None or filter.matches(p.payload)]

    async def get_stats(self, name: str | None = None) -> IndexStats:
        return IndexStats(total_collections=1, total_points=len(self.points))

    async def health(self) -> tuple[bool, str]:
        return True, "healthy"

    def get_storage_info(self) -> dict[str, Any]:
        return {"type": self.store_type}


def scored(point_id: str, score: float, **payload: Any) -> ScoredPoint:
    base = {
        "document_id": "doc-1",
        "chunk_index": 0,
        "text": "Kafka lesson text",
        "char_count": 150,
        "sentence_count": 1,
        "subject_id": "IBDN",
        "embedding_model": "tfidf:384",
    }
    return ScoredPoint(id=point_id, score=score, payload={**base, **payload})


@pytest.fixture
def kafka_hits() -> list[ScoredPoint]:
    """Hits for the query "Kafka": a titled chunk, a closer plain chunk and noise."""
    return [
        scored("b", 0.50, chunk_index=1),
        scored("a", 0.40, chunk_index=2, section_title="Kafka"),
        scored("c", 0.10, chunk_index=3),
    ]


def make_retriever(index: FakeIndex, settings: Settings, stats: PipelineStats | None = None):
    return Retriever(index, TfidfEmbedder(dimension=384), settings=settings, stats=stats)


class TestSearch:
    """Test query embedding, filtering and re-ranking."""

    async def test_reranked_results(self, settings: Settings, kafka_hits) -> None:
        """Should drop hits below threshold and rank the section match first."""
        index = FakeIndex(hits=kafka_hits)
        stats = PipelineStats()
        retriever = make_retriever(index, settings, stats)

        response = await retriever.search(
            "Kafka", PayloadFilter.build(subject_id="IBDN"), limit=5, threshold=0.15
        )

        assert response.success is True
        assert [r.chunk_index for r in response.results] == [2, 1]
        assert response.results[0].reranked_score == pytest.approx(0.55)
        assert response.stats.total_found == 3
        assert response.stats.after_filtering == 2
        assert response.stats.returned == 2
        assert index.queries[0]["k"] == 10
        assert index.queries[0]["filter"].equals["subject_id"] == "IBDN"
        assert stats.searches_performed == 1

    async def test_context_attached(self, settings: Settings) -> None:
        """Should attach page and section context on request."""
        index = FakeIndex(hits=[scored("a", 0.6, page_number=4, section_title="Brokers")])
        retriever = make_retriever(index, settings)

        with_context = await retriever.search("brokers")
        without_context = await retriever.search("brokers", include_context=False)

        assert with_context.results[0].context == {
            "page_label": "Page 4",
            "section_title": "Brokers",
            "is_heading": False,
            "is_list": False,
        }
        assert without_context.results[0].context is None

    async def test_empty_result_is_success(self, settings: Settings, kafka_hits) -> None:
        """Should succeed with no results when nothing passes the threshold."""
        retriever = make_retriever(FakeIndex(hits=kafka_hits), settings)

        response = await retriever.search("Kafka", threshold=0.9)

        assert response.success is True
        assert response.results == []
        assert response.stats.total_found == 3

    async def test_limit_is_clamped(self, settings: Settings) -> None:
        """Should cap the limit at the configured maximum."""
        index = FakeIndex()
        retriever = make_retriever(index, settings)

        await retriever.search("anything", limit=500)

        assert index.queries[0]["k"] == settings.search_max_limit * 2

    async def test_default_threshold(self, settings: Settings, kafka_hits) -> None:
        """Should use the configured threshold when none is given."""
        retriever = make_retriever(FakeIndex(hits=kafka_hits), settings)

        response = await retriever.search("Kafka")

        assert response.stats.threshold == settings.search_threshold
        assert response.stats.after_filtering == 2

    async def test_empty_query_rejected(self, settings: Settings) -> None:
        """Should reject blank queries before touching the index."""
        index = FakeIndex()
        retriever = make_retriever(index, settings)

        with pytest.raises(EmptyInput):
            await retriever.search("   ")

        assert index.queries == []

    async def test_index_failure_propagates(self, settings: Settings) -> None:
        """Should raise IndexUnavailable when the index is down."""
        index = FakeIndex()
        index.fail = True
        retriever = make_retriever(index, settings)

        with pytest.raises(IndexUnavailable):
            await retriever.search("Kafka")

    async def test_strict_backend_match(self, settings: Settings) -> None:
        """Should restrict hits to the query backend when strict matching is on."""
        strict = settings.model_copy(update={"strict_embedding_match": True})
        index = FakeIndex(
            hits=[
                scored("a", 0.7, embedding_model="neural:other"),
                scored("b", 0.6),
            ]
        )
        retriever = make_retriever(index, strict)

        response = await retriever.search("Kafka")

        assert index.queries[0]["filter"].equals["embedding_model"] == "tfidf:384"
        assert [r.payload["embedding_model"] for r in response.results] == ["tfidf:384"]

    async def test_backend_mismatch_warning(self, settings: Settings, caplog) -> None:
        """Should warn when hits were embedded by another backend."""
        index = FakeIndex(hits=[scored("a", 0.7, embedding_model="neural:other")])
        retriever = make_retriever(index, settings)

        with caplog.at_level(logging.WARNING, logger="src.rag.retriever"):
            response = await retriever.search("Kafka")

        assert len(response.results) == 1
        assert "neural:other" in caplog.text


class TestDocumentQueries:
    """Test chunk listing and document aggregation."""

    @pytest.fixture
    def stored(self) -> list[IndexPoint]:
        def point(doc: str, index: int, upload_date: str) -> IndexPoint:
            return IndexPoint(
                id=f"{doc}-{index}",
                vector=None,
                payload={
                    "document_id": doc,
                    "chunk_index": index,
                    "file_name": f"{doc}.pdf",
                    "subject_id": "IBDN",
                    "upload_date": upload_date,
                    "embedding_model": "tfidf:384",
                },
            )

        return [
            point("old", 2, "2024-01-01T00:00:00+00:00"),
            point("old", 0, "2024-01-01T00:00:00+00:00"),
            point("new", 0, "2024-06-01T00:00:00+00:00"),
            point("old", 1, "2024-01-01T00:00:00+00:00"),
        ]

    async def test_chunks_ordered_by_index(self, settings: Settings, stored) -> None:
        """Should return a document's chunks in chunk order."""
        retriever = make_retriever(FakeIndex(points=stored), settings)

        chunks = await retriever.get_document_chunks("old")

        assert [c["chunk_index"] for c in chunks] == [0, 1, 2]

    async def test_list_documents(self, settings: Settings, stored) -> None:
        """Should aggregate chunk counts per document, newest first."""
        retriever = make_retriever(FakeIndex(points=stored), settings)

        documents = await retriever.list_documents()

        assert [d["document_id"] for d in documents] == ["new", "old"]
        assert documents[1]["chunk_count"] == 3
        assert documents[1]["file_name"] == "old.pdf"

    async def test_find_similar_unknown_document(self, settings: Settings) -> None:
        """Should return nothing for a document without chunks."""
        retriever = make_retriever(FakeIndex(), settings)

        assert await retriever.find_similar("missing") == []
