"""TF-IDF hashed embeddings.

Always-available fallback that needs no model download. Term weights are
projected into a fixed-width vector with a deterministic 32-bit string hash,
so vectors are stable for the lifetime of a process and comparable with any
other vector this backend produced.
"""

import logging
import math
import re
from collections import Counter
from typing import Any

import numpy as np

from src.rag.embeddings.base import BackendProbe, EmbeddingBackend, require_text

logger = logging.getLogger(__name__)

_NON_WORD = re.compile(r"[^\w\s]")

# Seed corpus so IDF is meaningful before any document is observed (EN/ES)
BASE_CORPUS = (
    "the student reads the chapter and answers the questions at the end",
    "this section introduces the main concepts of the topic",
    "the teacher explains the definition with an example",
    "data is stored in a database and processed by the system",
    "the algorithm computes the result in a number of steps",
    "a function receives parameters and returns a value",
    "the network sends messages between distributed services",
    "learning requires practice, review and evaluation",
    "the exam covers theory and practical exercises",
    "figure and table summarize the results of the experiment",
    "el estudiante lee el capítulo y responde las preguntas",
    "esta sección presenta los conceptos principales del tema",
    "el profesor explica la definición con un ejemplo",
    "los datos se almacenan en una base de datos",
    "el algoritmo calcula el resultado en varios pasos",
    "una función recibe parámetros y devuelve un valor",
    "la red envía mensajes entre servicios distribuidos",
    "el aprendizaje requiere práctica, repaso y evaluación",
    "el examen incluye teoría y ejercicios prácticos",
    "la tabla resume los resultados del experimento",
)


def java_string_hash(term: str) -> int:
    """Absolute value of the 32-bit ``h = 31*h + c`` string hash."""
    h = 0
    for char in term:
        h = (31 * h + ord(char)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return abs(h)


def tokenize(text: str) -> list[str]:
    """Lower-case, strip punctuation and keep tokens longer than two chars.

    Falls back to shorter tokens, then to the stripped text itself, so every
    non-empty text yields at least one token.
    """
    lowered = text.lower()
    words = _NON_WORD.sub(" ", lowered).split()
    tokens = [w for w in words if len(w) > 2]
    if tokens:
        return tokens
    if words:
        return words
    return [lowered.strip()]


class TfidfEmbedder(EmbeddingBackend):
    """Hashed TF-IDF embedding backend.

    Document frequencies start from ``BASE_CORPUS`` and grow with every text
    passed to ``embed_batch`` (the ingest path). ``embed`` (the query path)
    does not change them.
    """

    backend_type = "tfidf"

    def __init__(self, dimension: int = 384, seed_corpus: tuple[str, ...] = BASE_CORPUS):
        self._dimension = dimension
        self.document_frequency: Counter[str] = Counter()
        self.document_count = 0
        for document in seed_corpus:
            self._observe(tokenize(document))

    @property
    def model_id(self) -> str:
        return f"tfidf:{self._dimension}"

    @property
    def vocabulary_size(self) -> int:
        return len(self.document_frequency)

    def dimension(self) -> int:
        return self._dimension

    async def probe(self) -> BackendProbe:
        return BackendProbe(available=True)

    async def embed(self, text: str) -> list[float]:
        return self._vectorize(tokenize(require_text(text)))

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        token_lists = [tokenize(require_text(t)) for t in texts]
        for tokens in token_lists:
            self._observe(tokens)
        return [self._vectorize(tokens) for tokens in token_lists]

    def _observe(self, tokens: list[str]) -> None:
        self.document_frequency.update(set(tokens))
        self.document_count += 1

    def idf(self, term: str) -> float:
        """Smoothed inverse document frequency, always positive."""
        return math.log((1 + self.document_count) / (1 + self.document_frequency[term])) + 1

    def _vectorize(self, tokens: list[str]) -> list[float]:
        counts = Counter(tokens)
        total = len(tokens)

        vector = np.zeros(self._dimension, dtype=np.float64)
        for term, count in counts.items():
            vector[java_string_hash(term) % self._dimension] += (count / total) * self.idf(term)

        norm = np.linalg.norm(vector)
        return (vector / norm).tolist()

    def get_service_info(self) -> dict[str, Any]:
        return {
            "type": self.backend_type,
            "name": "Simple TF-IDF",
            "model": "tfidf-hashed",
            "model_id": self.model_id,
            "dimension": self._dimension,
            "vocabulary_size": self.vocabulary_size,
            "documents_seen": self.document_count,
        }
