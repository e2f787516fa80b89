"""Vector index backends (Qdrant, Chroma) behind one interface."""

from src.core.config import Settings, get_settings
from src.rag.vector_store.base import (
    CollectionStats,
    IndexPoint,
    IndexStats,
    PayloadFilter,
    ScoredPoint,
    VectorIndex,
)
from src.rag.vector_store.chroma import ChromaVectorIndex
from src.rag.vector_store.qdrant import QdrantVectorIndex


def get_vector_index(settings: Settings | None = None) -> VectorIndex:
    """Create the vector index configured by ``vector_store_type``."""
    settings = settings or get_settings()
    if settings.vector_store_type == "chroma":
        return ChromaVectorIndex.from_settings(settings)
    return QdrantVectorIndex.from_settings(settings)


__all__ = [
    "ChromaVectorIndex",
    "CollectionStats",
    "IndexPoint",
    "IndexStats",
    "PayloadFilter",
    "QdrantVectorIndex",
    "ScoredPoint",
    "VectorIndex",
    "get_vector_index",
]
