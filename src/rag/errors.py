"""Error types raised by the RAG pipeline.

Input errors (format, size, empty input) are raised directly and leave no
side effects. Failures after extraction are wrapped in ``StageAborted`` so
callers know which pipeline stage failed.
"""


class RAGError(Exception):
    """Base class for all RAG errors."""

    retryable: bool = False

    def __init__(self, message: str, stage: str | None = None):
        super().__init__(message)
        self.message = message
        self.stage = stage


class EmptyInput(RAGError):
    """Raised when a document or text has no usable content."""


class ExtractionError(RAGError):
    """Raised when text extraction fails."""


class UnsupportedFormat(ExtractionError):
    """Raised when the media type or extension is not supported."""


class CorruptDocument(ExtractionError):
    """Raised when a document cannot be parsed."""


class DocumentTooLarge(ExtractionError):
    """Raised when a document exceeds the configured maximum size."""

    def __init__(self, size_bytes: int, max_bytes: int):
        super().__init__(
            f"Document is {size_bytes} bytes, maximum allowed is {max_bytes} bytes",
            stage="validation",
        )
        self.size_bytes = size_bytes
        self.max_bytes = max_bytes


class DimensionMismatch(RAGError):
    """Raised when a vector does not match the collection's declared size."""

    def __init__(self, expected: int, actual: int, collection: str | None = None):
        where = f" in collection '{collection}'" if collection else ""
        super().__init__(f"Vector dimension {actual} does not match {expected}{where}")
        self.expected = expected
        self.actual = actual


class CollectionSizeConflict(RAGError):
    """Raised when a collection exists with a different vector size."""

    def __init__(self, collection: str, existing: int, requested: int):
        super().__init__(
            f"Collection '{collection}' has vector size {existing}, requested {requested}"
        )
        self.collection = collection
        self.existing = existing
        self.requested = requested


class IndexUnavailable(RAGError):
    """Raised when the vector database cannot be reached or times out."""

    retryable = True


class IndexRequestRejected(RAGError):
    """Raised when the vector database refuses a request (e.g. unknown collection)."""

    def __init__(self, message: str, status_code: int | None = None, stage: str | None = None):
        super().__init__(message, stage=stage)
        self.status_code = status_code


class EmbeddingBackendUnavailable(RAGError):
    """Raised when an embedding backend cannot be loaded or probed."""


class IngestCancelled(RAGError):
    """Raised when a pipeline run is cancelled at a stage boundary."""


class StageAborted(RAGError):
    """Raised when a pipeline stage after extraction fails.

    Attributes:
        stage: Name of the failed stage (e.g. "embedding", "indexing")
        cause: The underlying exception
    """

    def __init__(self, stage: str, cause: BaseException):
        super().__init__(f"Pipeline aborted at stage '{stage}': {cause}", stage=stage)
        self.cause = cause
        self.retryable = getattr(cause, "retryable", False)
