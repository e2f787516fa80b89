"""Health check endpoints for Kubernetes probes."""

from datetime import UTC, datetime

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel

from src.api.deps import AppSettings, RAG
from src.rag.service import RAGService

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: str
    version: str
    checks: dict | None = None


# Startup state
_startup_complete = False


def set_startup_complete():
    """Mark startup as complete."""
    global _startup_complete
    _startup_complete = True


async def check_vector_index(service: RAGService) -> tuple[bool, str]:
    """Check vector index connectivity."""
    return await service.health()


def check_embeddings(service: RAGService) -> tuple[bool, str]:
    """Report which embedding backend is serving requests."""
    info = service.get_service_info()
    if info.get("type") is None:
        return False, "not initialized"
    return True, f"{info['type']} ({info.get('model', info.get('name'))})"


@router.get("/health/live", response_model=HealthResponse)
async def liveness(settings: AppSettings):
    """Kubernetes liveness probe.

    Returns 200 if the process is alive.
    Used to determine if the container should be restarted.
    """
    return HealthResponse(
        status="alive", timestamp=datetime.now(UTC).isoformat(), version=settings.app_version
    )


@router.get("/health/ready", response_model=HealthResponse)
async def readiness(service: RAG, settings: AppSettings):
    """Kubernetes readiness probe.

    Returns 200 if the service is ready to accept traffic.
    The vector index is critical; the embedding backend is informational
    since the TF-IDF fallback is always available.
    """
    checks = {}

    index_ok, index_status = await check_vector_index(service)
    checks["vector_index"] = index_status

    _embeddings_ok, embeddings_status = check_embeddings(service)
    checks["embeddings"] = embeddings_status

    if not index_ok:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"status": "unhealthy", "checks": checks},
        )

    return HealthResponse(
        status="ready",
        timestamp=datetime.now(UTC).isoformat(),
        version=settings.app_version,
        checks=checks,
    )


@router.get("/health/startup", response_model=HealthResponse)
async def startup(settings: AppSettings):
    """Kubernetes startup probe.

    Returns 200 once initialization is complete.
    Allows for slow-starting containers.
    """
    if not _startup_complete:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"status": "starting", "message": "Initialization in progress"},
        )

    return HealthResponse(
        status="started",
        timestamp=datetime.now(UTC).isoformat(),
        version=settings.app_version,
    )
