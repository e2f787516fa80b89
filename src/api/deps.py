"""FastAPI dependency injection.

Provides common dependencies for API routes.
"""

from typing import Annotated

from fastapi import Depends

from src.core.config import Settings, get_settings
from src.rag.service import RAGService, get_rag_service

# Type aliases for cleaner signatures
RAG = Annotated[RAGService, Depends(get_rag_service)]
AppSettings = Annotated[Settings, Depends(get_settings)]
