"""API route modules."""

from . import documents, health, search

__all__ = ["documents", "health", "search"]
