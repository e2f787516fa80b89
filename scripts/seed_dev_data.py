#!/usr/bin/env python3
"""Seed development data for testing.

Ingests a few short lessons into the configured vector index so search can
be tried locally.

Run with: python scripts/seed_dev_data.py
"""

import asyncio
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.core.config import get_settings
from src.core.logging_setup import configure_logging
from src.rag.models import EducationalContext
from src.rag.service import RAGService

DEV_LESSONS = [
    (
        "Photosynthesis basics",
        EducationalContext(subject_id="biology", topic_id="plants", subtopic_id="photosynthesis"),
        "Photosynthesis\n\n"
        "Photosynthesis is the process by which green plants convert light energy into "
        "chemical energy. It takes place mainly in the chloroplasts of leaf cells.\n\n"
        "The light-dependent reactions capture energy from sunlight. The Calvin cycle then "
        "uses that energy to fix carbon dioxide into sugars.",
    ),
    (
        "Newton's laws",
        EducationalContext(subject_id="physics", topic_id="mechanics", subtopic_id="dynamics"),
        "Newton's Laws of Motion\n\n"
        "An object remains at rest or in uniform motion unless acted upon by a net force. "
        "The acceleration of a body is proportional to the net force acting on it.\n\n"
        "For every action there is an equal and opposite reaction.",
    ),
]


async def seed_dev_data():
    """Ingest development lessons, skipping titles already indexed."""
    settings = get_settings()
    configure_logging(settings)

    service = RAGService(settings)
    await service.initialize()
    try:
        existing = {d["file_name"] for d in await service.list_documents()}
        for title, context, text in DEV_LESSONS:
            if title in existing:
                print(f"✓ '{title}' already indexed")
                continue
            result = await service.process_text(text, title, context, uploader_id="dev-user")
            print(f"✓ Indexed '{title}' ({result.stats.chunks} chunks)")
    finally:
        await service.close()


if __name__ == "__main__":
    asyncio.run(seed_dev_data())
