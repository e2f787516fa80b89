"""Document chunking.

Splits analysed document text into sentence-aligned chunks suitable for
embedding and retrieval.
"""

from src.core.config import Settings, get_settings
from src.rag.chunking.base import Chunk, ChunkingStrategy
from src.rag.chunking.semantic import SemanticChunker


def get_chunker(settings: Settings | None = None) -> SemanticChunker:
    """Build a chunker from settings.

    Args:
        settings: Settings to read chunk sizes from (defaults to global settings)

    Returns:
        Configured SemanticChunker
    """
    settings = settings or get_settings()
    return SemanticChunker(
        max_chunk_size=settings.max_chunk_size,
        min_chunk_size=settings.min_chunk_size,
        overlap_size=settings.overlap_size,
        max_sentences_per_chunk=settings.max_sentences_per_chunk,
        preserve_paragraphs=settings.preserve_paragraphs,
    )


__all__ = [
    "Chunk",
    "ChunkingStrategy",
    "SemanticChunker",
    "get_chunker",
]
