"""Vector index interface shared by the Qdrant and Chroma stores.

One collection holds every document; tenants (subjects, topics) are
separated by payload filters. Similarity is cosine throughout.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass
class IndexPoint:
    """A stored (id, vector, payload) record."""

    id: str
    vector: list[float] | None
    payload: dict[str, Any]


@dataclass
class ScoredPoint:
    """A query hit with cosine similarity."""

    id: str
    score: float
    payload: dict[str, Any]


@dataclass
class PayloadFilter:
    """Conjunction of equality and set-exclusion conditions on payload fields.

    An empty filter matches every point.
    """

    equals: dict[str, Any] = field(default_factory=dict)
    excludes: dict[str, list[Any]] = field(default_factory=dict)

    @classmethod
    def build(
        cls,
        subject_id: str | None = None,
        topic_id: str | None = None,
        subtopic_id: str | None = None,
        document_id: str | None = None,
        exclude_document_id: str | None = None,
    ) -> "PayloadFilter":
        """Build a filter from the educational-context search fields."""
        equals = {
            key: value
            for key, value in (
                ("subject_id", subject_id),
                ("topic_id", topic_id),
                ("subtopic_id", subtopic_id),
                ("document_id", document_id),
            )
            if value is not None
        }
        excludes = {"document_id": [exclude_document_id]} if exclude_document_id else {}
        return cls(equals=equals, excludes=excludes)

    def merge(self, other: "PayloadFilter | None") -> "PayloadFilter":
        """Return a filter requiring both this filter and ``other``."""
        if other is None:
            return PayloadFilter(dict(self.equals), {k: list(v) for k, v in self.excludes.items()})
        excludes = {k: list(v) for k, v in self.excludes.items()}
        for key, values in other.excludes.items():
            excludes[key] = [*excludes.get(key, []), *values]
        return PayloadFilter(equals={**self.equals, **other.equals}, excludes=excludes)

    @property
    def is_empty(self) -> bool:
        return not self.equals and not any(self.excludes.values())

    def matches(self, payload: dict[str, Any]) -> bool:
        """Evaluate the filter against a payload dict."""
        if any(payload.get(key) != value for key, value in self.equals.items()):
            return False
        return not any(payload.get(key) in values for key, values in self.excludes.items())


@dataclass
class CollectionStats:
    name: str
    point_count: int
    vector_size: int | None
    distance_metric: str


@dataclass
class IndexStats:
    total_collections: int
    total_points: int
    collections: list[CollectionStats] = field(default_factory=list)


class VectorIndex(ABC):
    """Capability shared by vector database backends.

    Every network call is bounded by a timeout; timeouts and connection
    failures raise ``IndexUnavailable``.
    """

    store_type: str = "base"

    @abstractmethod
    async def ensure_collection(self, name: str, dimension: int) -> bool:
        """Create the collection if missing.

        Returns:
            True if created, False if it already existed with this dimension

        Raises:
            CollectionSizeConflict: If it exists with a different dimension
        """

    @abstractmethod
    async def upsert(self, name: str, points: list[IndexPoint]) -> int:
        """Insert or overwrite points by id.

        Raises:
            DimensionMismatch: If a vector's length differs from the collection's
        """

    @abstractmethod
    async def query(
        self,
        name: str,
        vector: list[float],
        filter: PayloadFilter | None = None,
        k: int = 10,
    ) -> list[ScoredPoint]:
        """Return up to ``k`` points ranked by cosine similarity."""

    @abstractmethod
    async def delete_by_filter(self, name: str, filter: PayloadFilter) -> int:
        """Delete matching points, returning how many were deleted."""

    @abstractmethod
    async def fetch_points(
        self,
        name: str,
        filter: PayloadFilter | None = None,
        with_vectors: bool = False,
        limit: int | None = None,
    ) -> list[IndexPoint]:
        """Return matching points without ranking."""

    @abstractmethod
    async def get_stats(self, name: str | None = None) -> IndexStats:
        """Point and collection statistics (all collections when ``name`` is None)."""

    @abstractmethod
    async def health(self) -> tuple[bool, str]:
        """Check connectivity, returning (healthy, status message)."""

    @abstractmethod
    def get_storage_info(self) -> dict[str, Any]:
        """Describe the backend for diagnostics."""

    async def close(self) -> None:
        """Release client resources."""
