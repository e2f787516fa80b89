"""RAG (Retrieval-Augmented Generation) package.

Components:
- DocumentExtractor: PDF validation and text extraction
- StructureAnalyzer: Pages, headings, lists, tables and text quality
- SemanticChunker: Sentence-aware chunking with overlap
- Embeddings: sentence-transformers backend with TF-IDF fallback
- VectorIndex: Qdrant or Chroma storage
- DocumentProcessor: Document ingestion pipeline
- Retriever: Semantic search with re-ranking
- RAGService: Orchestrator used by the API
"""

from src.rag.chunking import Chunk, SemanticChunker, get_chunker
from src.rag.embeddings import EmbeddingBackend, select_embedding_backend
from src.rag.errors import RAGError, StageAborted
from src.rag.extractors import DocumentExtractor
from src.rag.processor import DocumentProcessor
from src.rag.retriever import Retriever
from src.rag.service import RAGService, get_rag_service, shutdown_rag_service
from src.rag.structure import StructureAnalyzer
from src.rag.vector_store import PayloadFilter, VectorIndex, get_vector_index

__all__ = [
    "Chunk",
    "DocumentExtractor",
    "DocumentProcessor",
    "EmbeddingBackend",
    "PayloadFilter",
    "RAGError",
    "RAGService",
    "Retriever",
    "SemanticChunker",
    "StageAborted",
    "StructureAnalyzer",
    "VectorIndex",
    "get_chunker",
    "get_rag_service",
    "get_vector_index",
    "select_embedding_backend",
    "shutdown_rag_service",
]
