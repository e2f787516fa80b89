"""Mapping of pipeline errors to HTTP responses."""

from fastapi import HTTPException

from src.rag.errors import (
    CollectionSizeConflict,
    CorruptDocument,
    DocumentTooLarge,
    EmbeddingBackendUnavailable,
    EmptyInput,
    IndexRequestRejected,
    IndexUnavailable,
    RAGError,
    StageAborted,
    UnsupportedFormat,
)

# Checked in order; the first matching type wins
_STATUS_CODES: list[tuple[type[RAGError], int]] = [
    (UnsupportedFormat, 415),
    (DocumentTooLarge, 413),
    (EmptyInput, 422),
    (CorruptDocument, 422),
    (IndexUnavailable, 503),
    (EmbeddingBackendUnavailable, 503),
    (CollectionSizeConflict, 409),
    (IndexRequestRejected, 400),
]


def to_http_exception(error: RAGError) -> HTTPException:
    """Translate a RAGError into the HTTPException returned to clients."""
    if isinstance(error, StageAborted):
        code = 503 if isinstance(error.cause, IndexUnavailable) else 500
        return HTTPException(
            status_code=code, detail={"stage": error.stage, "error": str(error.cause)}
        )

    for error_type, code in _STATUS_CODES:
        if isinstance(error, error_type):
            return HTTPException(status_code=code, detail=error.message)
    return HTTPException(status_code=500, detail=error.message)
