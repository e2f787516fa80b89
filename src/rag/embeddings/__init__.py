"""Embedding backends and backend selection."""

import asyncio
import logging

from src.core.config import Settings, get_settings
from src.observability.metrics import EMBEDDING_FALLBACKS
from src.rag.embeddings.base import BackendProbe, EmbeddingBackend
from src.rag.embeddings.neural import SentenceTransformerEmbedder
from src.rag.embeddings.tfidf import TfidfEmbedder, java_string_hash, tokenize
from src.rag.errors import EmbeddingBackendUnavailable

logger = logging.getLogger(__name__)


async def select_embedding_backend(
    settings: Settings | None = None,
    neural: EmbeddingBackend | None = None,
) -> EmbeddingBackend:
    """Choose the embedding backend once, at construction time.

    In ``auto`` mode the neural backend is probed with a timeout; if it is
    unavailable the TF-IDF backend is used and the downgrade is logged.

    Args:
        settings: Settings to read the backend mode from
        neural: Neural backend to probe (built from settings when omitted)

    Returns:
        The backend to use for the lifetime of the service

    Raises:
        EmbeddingBackendUnavailable: In ``neural`` mode when the probe fails
    """
    settings = settings or get_settings()
    mode = settings.embedding_backend

    if mode == "tfidf":
        logger.info("[Embeddings] Using TF-IDF backend (configured)")
        return TfidfEmbedder(dimension=settings.vector_dimension)

    neural = neural or SentenceTransformerEmbedder.from_settings(settings)
    timeout = settings.embedding_probe_timeout_s
    try:
        probe = await asyncio.wait_for(neural.probe(), timeout=timeout)
    except TimeoutError:
        probe = BackendProbe(available=False, reason=f"probe timed out after {timeout}s")

    if probe.available:
        logger.info(f"[Embeddings] Using neural backend {neural.model_id}")
        return neural

    if mode == "neural":
        raise EmbeddingBackendUnavailable(
            f"Neural embedding backend unavailable: {probe.reason}", stage="embedding"
        )

    EMBEDDING_FALLBACKS.inc()
    logger.warning(
        f"[Embeddings] Neural backend unavailable ({probe.reason}), falling back to TF-IDF"
    )
    return TfidfEmbedder(dimension=settings.vector_dimension)


__all__ = [
    "BackendProbe",
    "EmbeddingBackend",
    "SentenceTransformerEmbedder",
    "TfidfEmbedder",
    "java_string_hash",
    "select_embedding_backend",
    "tokenize",
]
