"""
Shared test fixtures and configuration for the test suite.

Provides: settings for an in-process index, embedding backends, a RAG service
backed by Qdrant local mode, sample lessons and a minimal PDF builder.
"""

from collections.abc import Callable
from uuid import uuid4

import numpy as np
import pytest

from src.core.config import Settings
from src.rag.embeddings import BackendProbe, EmbeddingBackend, TfidfEmbedder
from src.rag.service import RAGService
from src.rag.vector_store import QdrantVectorIndex

KAFKA_LESSON = (
    "Introduction to Kafka\n\n"
    "Kafka is a distributed event streaming platform used by many companies. "
    "Producers publish events to topics stored on brokers. "
    "Consumers subscribe to topics and read events from partitions. "
    "Each partition keeps events in an ordered, immutable log.\n\n"
    "Consumer groups let several consumers share the partitions of a topic. "
    "Kafka retains events for a configurable period, so consumers can replay them. "
    "Replication across brokers keeps topics available when a broker fails."
)

STREAMS_LESSON = (
    "Kafka Streams\n\n"
    "Kafka Streams is a library for processing events stored in Kafka topics. "
    "Applications read events from topics, transform them and write results to other topics. "
    "Stateful operations keep local stores that are backed by changelog topics.\n\n"
    "Partitions of the input topics are spread across application instances. "
    "Consumers in the same group divide partitions between them to scale processing."
)

BIOLOGY_LESSON = (
    "Photosynthesis\n\n"
    "Photosynthesis is the process by which green plants convert light energy into "
    "chemical energy. "
    "Chlorophyll in the chloroplasts absorbs sunlight, mostly red and blue light. "
    "Water molecules are split and oxygen is released as a by-product.\n\n"
    "The Calvin cycle fixes carbon dioxide into glucose using energy carriers. "
    "Leaves, roots and stems all take part in moving water and sugars through the plant."
)


class FakeSentenceModel:
    """Stand-in for a SentenceTransformer: encodes text length into a small vector."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: list[list[str]] = []

    def get_sentence_embedding_dimension(self) -> int:
        return 4

    def encode(self, texts, convert_to_numpy=True, show_progress_bar=False):
        if self.fail:
            raise RuntimeError("model is broken")
        self.calls.append(list(texts))
        return np.array([[float(len(t)), 1.0, 0.0, 2.0] for t in texts], dtype=np.float32)


class UnavailableBackend(EmbeddingBackend):
    """Neural backend whose probe always fails."""

    backend_type = "neural"

    @property
    def model_id(self) -> str:
        return "neural:unavailable"

    async def embed(self, text: str) -> list[float]:
        raise AssertionError("embed should not be called on an unavailable backend")

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        raise AssertionError("embed_batch should not be called on an unavailable backend")

    def dimension(self) -> int:
        return 384

    async def probe(self) -> BackendProbe:
        return BackendProbe(available=False, reason="model download blocked")

    def get_service_info(self) -> dict:
        return {"type": self.backend_type, "model": "unavailable"}


@pytest.fixture
def settings() -> Settings:
    """
    Settings for an in-process Qdrant index and the TF-IDF backend.

    Returns:
        Settings: Isolated configuration with a unique collection name
    """
    return Settings(
        index_url=":memory:",
        vector_store_type="qdrant",
        embedding_backend="tfidf",
        default_collection_name=f"test_{uuid4().hex[:8]}",
    )


@pytest.fixture
def tfidf(settings: Settings) -> TfidfEmbedder:
    """TF-IDF embedder with the configured dimension."""
    return TfidfEmbedder(dimension=settings.vector_dimension)


@pytest.fixture
async def memory_index(settings: Settings):
    """
    Qdrant local-mode index.

    Yields:
        QdrantVectorIndex: In-memory index, closed after the test
    """
    index = QdrantVectorIndex.from_settings(settings)
    yield index
    await index.close()


@pytest.fixture
async def service(settings: Settings, tfidf: TfidfEmbedder):
    """
    Initialized RAG service over an in-memory Qdrant index.

    Yields:
        RAGService: Service with the collection created, closed after the test
    """
    index = QdrantVectorIndex.from_settings(settings)
    rag_service = RAGService(settings, vector_index=index, embedder=tfidf)
    await rag_service.initialize()
    yield rag_service
    await rag_service.close()


@pytest.fixture
def lessons() -> dict[str, str]:
    """Sample lesson texts keyed by short name."""
    return {"kafka": KAFKA_LESSON, "streams": STREAMS_LESSON, "biology": BIOLOGY_LESSON}


def _escape(line: str) -> str:
    return line.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")


def build_pdf(pages: list[list[str]]) -> bytes:
    """Build a minimal PDF with one Helvetica text line per entry on each page."""
    page_ids = [4 + 2 * i for i in range(len(pages))]
    kids = " ".join(f"{pid} 0 R" for pid in page_ids)
    objects: list[bytes] = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        f"<< /Type /Pages /Kids [{kids}] /Count {len(pages)} >>".encode(),
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]
    for page_id, lines in zip(page_ids, pages, strict=True):
        ops = ["BT", "/F1 12 Tf", "14 TL", "72 720 Td"]
        ops.extend(f"({_escape(line)}) Tj T*" for line in lines)
        ops.append("ET")
        stream = "\n".join(ops).encode("latin-1")
        objects.append(
            (
                "<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
                f"/Resources << /Font << /F1 3 0 R >> >> /Contents {page_id + 1} 0 R >>"
            ).encode()
        )
        objects.append(
            f"<< /Length {len(stream)} >>\nstream\n".encode() + stream + b"\nendstream"
        )

    out = bytearray(b"%PDF-1.4\n")
    offsets = []
    for number, body in enumerate(objects, 1):
        offsets.append(len(out))
        out += f"{number} 0 obj\n".encode() + body + b"\nendobj\n"

    xref_offset = len(out)
    out += f"xref\n0 {len(objects) + 1}\n".encode()
    out += b"0000000000 65535 f \n"
    for offset in offsets:
        out += f"{offset:010d} 00000 n \n".encode()
    out += (
        f"trailer\n<< /Size {len(objects) + 1} /Root 1 0 R >>\n"
        f"startxref\n{xref_offset}\n%%EOF\n"
    ).encode()
    return bytes(out)


@pytest.fixture
def make_pdf() -> Callable[[list[list[str]]], bytes]:
    """
    Factory for small text PDFs.

    Returns:
        Callable: Takes a list of pages (each a list of lines) and returns PDF bytes
    """
    return build_pdf


@pytest.fixture
def fake_model() -> FakeSentenceModel:
    """Sentence model stand-in that records encode calls."""
    return FakeSentenceModel()


@pytest.fixture
def unavailable_neural() -> UnavailableBackend:
    """Neural backend that fails its availability probe."""
    return UnavailableBackend()


@pytest.fixture
def failing_model() -> FakeSentenceModel:
    """Sentence model stand-in whose encode always raises."""
    return FakeSentenceModel(fail=True)
