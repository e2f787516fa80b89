"""Embedding backend interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import numpy as np

from src.rag.errors import EmptyInput


@dataclass
class BackendProbe:
    """Outcome of an availability probe."""

    available: bool
    reason: str | None = None


class EmbeddingBackend(ABC):
    """Turns text into unit-length vectors of a fixed dimension."""

    backend_type: str = "base"

    @property
    @abstractmethod
    def model_id(self) -> str:
        """Identifier recorded with every stored vector."""

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Embed a single text (queries use this path)."""

    @abstractmethod
    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed texts, preserving input order."""

    @abstractmethod
    def dimension(self) -> int:
        """Configured vector dimension."""

    @abstractmethod
    async def probe(self) -> BackendProbe:
        """Check whether the backend can produce embeddings."""

    async def is_available(self) -> bool:
        return (await self.probe()).available

    @abstractmethod
    def get_service_info(self) -> dict[str, Any]:
        """Describe the backend for stats and diagnostics."""

    async def close(self) -> None:
        """Release resources held by the backend."""


def require_text(text: str) -> str:
    """Strip text, raising EmptyInput when nothing is left."""
    if text is None or not text.strip():
        raise EmptyInput("Cannot embed empty text", stage="embedding")
    return text.strip()


def normalize_rows(vectors: np.ndarray) -> np.ndarray:
    """L2-normalize each row; all-zero rows are left as zeros."""
    norms = np.linalg.norm(vectors, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return vectors / norms
