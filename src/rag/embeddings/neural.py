"""Neural embeddings with sentence-transformers.

Generates vector embeddings for chunks and queries using a local
pretrained sentence-embedding model (all-MiniLM-L6-v2 by default).
"""

import asyncio
import hashlib
import logging
from collections import OrderedDict
from typing import Any

import numpy as np
from sentence_transformers import SentenceTransformer

from src.core.config import Settings
from src.observability.metrics import EMBEDDING_CACHE_HITS, EMBEDDING_CACHE_MISSES
from src.rag.embeddings.base import BackendProbe, EmbeddingBackend, normalize_rows, require_text
from src.rag.errors import EmbeddingBackendUnavailable

logger = logging.getLogger(__name__)


class SentenceTransformerEmbedder(EmbeddingBackend):
    """Sentence-transformers embedding service.

    The model is loaded lazily in a worker thread on first use. Embeddings
    are memoised by a hash of the whitespace-normalised input.
    """

    backend_type = "neural"
    DEFAULT_MODEL = "sentence-transformers/all-MiniLM-L6-v2"

    def __init__(
        self,
        model_name: str = DEFAULT_MODEL,
        dimension: int = 384,
        batch_size: int = 16,
        max_input_chars: int = 2000,
        cache_size: int = 1000,
        model: Any | None = None,
    ):
        self.model_name = model_name
        self._dimension = dimension
        self.batch_size = batch_size
        self.max_input_chars = max_input_chars
        self.cache_size = cache_size
        self._model = model
        self._load_lock = asyncio.Lock()
        self._cache: OrderedDict[str, list[float]] = OrderedDict()
        self._dimension_warned = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "SentenceTransformerEmbedder":
        return cls(
            model_name=settings.embedding_model_name,
            dimension=settings.vector_dimension,
            batch_size=settings.embedding_batch_size,
            max_input_chars=settings.embedding_max_input_chars,
            cache_size=settings.embedding_cache_size,
        )

    @property
    def model_id(self) -> str:
        return f"neural:{self.model_name}"

    def dimension(self) -> int:
        return self._dimension

    async def _get_model(self) -> Any:
        if self._model is None:
            async with self._load_lock:
                if self._model is None:
                    self._model = await asyncio.to_thread(self._load_model)
        return self._model

    def _load_model(self) -> SentenceTransformer:
        logger.info(f"[Embedder] Loading sentence-transformers model '{self.model_name}'")
        try:
            model = SentenceTransformer(self.model_name)
        except Exception as e:
            raise EmbeddingBackendUnavailable(
                f"Could not load model '{self.model_name}': {e}", stage="embedding"
            ) from e

        model_dim = model.get_sentence_embedding_dimension()
        if model_dim != self._dimension:
            logger.warning(
                f"[Embedder] Model '{self.model_name}' produces {model_dim}-d vectors, "
                f"configured dimension is {self._dimension}"
            )
        return model

    async def probe(self) -> BackendProbe:
        """Load the model and embed a short text."""
        try:
            model = await self._get_model()
            vectors = await asyncio.to_thread(self._encode, model, ["availability probe"])
        except Exception as e:
            logger.info(f"[Embedder] Neural backend probe failed: {e}")
            return BackendProbe(available=False, reason=str(e))

        if len(vectors) != 1:
            return BackendProbe(available=False, reason="model returned no embedding")
        return BackendProbe(available=True)

    async def embed(self, text: str) -> list[float]:
        """Generate embedding for a single text.

        Args:
            text: Text to embed

        Returns:
            Unit-length embedding vector
        """
        return (await self.embed_batch([text]))[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for multiple texts in batches.

        Args:
            texts: List of texts to embed

        Returns:
            List of embedding vectors, in input order

        Raises:
            EmptyInput: If any text is empty or whitespace-only
        """
        if not texts:
            return []

        prepared = [self._prepare(t) for t in texts]
        keys = [self._cache_key(t) for t in prepared]

        results: list[list[float] | None] = [None] * len(texts)
        missing: list[tuple[int, str]] = []
        for i, key in enumerate(keys):
            cached = self._cache.get(key)
            if cached is not None:
                EMBEDDING_CACHE_HITS.inc()
                results[i] = cached
            else:
                EMBEDDING_CACHE_MISSES.inc()
                missing.append((i, prepared[i]))

        if missing:
            model = await self._get_model()

            # Process in batches
            for batch_start in range(0, len(missing), self.batch_size):
                batch = missing[batch_start : batch_start + self.batch_size]
                vectors = await asyncio.to_thread(self._encode, model, [t for _, t in batch])

                # Map embeddings back to original indices
                for (original_idx, _), vector in zip(batch, vectors, strict=True):
                    results[original_idx] = vector
                    self._remember(keys[original_idx], vector)

        return [r for r in results if r is not None]

    def _prepare(self, text: str) -> str:
        return require_text(text)[: self.max_input_chars]

    @staticmethod
    def _cache_key(text: str) -> str:
        normalized = " ".join(text.split())
        return hashlib.sha256(normalized.encode("utf-8")).hexdigest()

    def _remember(self, key: str, vector: list[float]) -> None:
        if self.cache_size <= 0:
            return
        self._cache[key] = vector
        while len(self._cache) > self.cache_size:
            self._cache.popitem(last=False)

    def _encode(self, model: Any, texts: list[str]) -> list[list[float]]:
        raw = model.encode(texts, convert_to_numpy=True, show_progress_bar=False)
        vectors = normalize_rows(np.atleast_2d(np.asarray(raw, dtype=np.float32)))

        if vectors.shape[1] != self._dimension and not self._dimension_warned:
            logger.warning(
                f"[Embedder] Dimension mismatch: got {vectors.shape[1]}, expected {self._dimension}"
            )
            self._dimension_warned = True
        return vectors.tolist()

    def get_service_info(self) -> dict[str, Any]:
        return {
            "type": self.backend_type,
            "name": "HuggingFace sentence-transformers",
            "model": self.model_name,
            "model_id": self.model_id,
            "dimension": self._dimension,
            "batch_size": self.batch_size,
            "max_input_chars": self.max_input_chars,
            "cache_size": len(self._cache),
            "cache_capacity": self.cache_size,
            "loaded": self._model is not None,
        }

    async def close(self) -> None:
        self._cache.clear()
