"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import make_asgi_app

from src.api.routes import documents, health, search
from src.core.config import get_settings
from src.core.logging_setup import configure_logging
from src.rag.service import get_rag_service, shutdown_rag_service

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown."""
    # Startup
    configure_logging(settings)
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Environment: {settings.environment}")

    # Select the embedding backend and prepare the collection up front
    service = await get_rag_service()
    logger.info(f"Embedding backend: {service.get_service_info().get('model_id')}")

    # Mark startup complete for health checks
    health.set_startup_complete()
    logger.info("Startup complete - ready to accept requests")

    yield

    # Shutdown
    logger.info("Shutting down...")
    await shutdown_rag_service()
    logger.info("Shutdown complete")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Document ingestion and semantic search for educational content",
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Health check routes
app.include_router(health.router, tags=["Health"])

# API routes
app.include_router(documents.router, prefix=settings.api_prefix, tags=["Documents"])
app.include_router(search.router, prefix=settings.api_prefix, tags=["Search"])

# Prometheus metrics endpoint
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs" if settings.debug else None,
        "health": "/health/ready",
    }
