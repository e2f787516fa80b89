"""Heuristic re-ranking of vector search hits.

Additive, deterministic score adjustments on top of cosine similarity.
The weights are empirical and configurable.
"""

from dataclasses import dataclass

from src.core.config import Settings
from src.rag.models import SearchResult


@dataclass(frozen=True)
class RerankWeights:
    heading_boost: float = 0.10
    section_match_boost: float = 0.15
    front_matter_boost: float = 0.05
    front_matter_max_page: int = 3
    short_chunk_penalty: float = 0.10
    short_chunk_chars: int = 100
    prose_boost: float = 0.05
    prose_min_sentences: int = 2
    prose_max_sentences: int = 5

    @classmethod
    def from_settings(cls, settings: Settings) -> "RerankWeights":
        return cls(
            heading_boost=settings.rerank_heading_boost,
            section_match_boost=settings.rerank_section_match_boost,
            front_matter_boost=settings.rerank_front_matter_boost,
            front_matter_max_page=settings.rerank_front_matter_max_page,
            short_chunk_penalty=settings.rerank_short_chunk_penalty,
            short_chunk_chars=settings.rerank_short_chunk_chars,
            prose_boost=settings.rerank_prose_boost,
        )


def rerank_score(query: str, result: SearchResult, weights: RerankWeights) -> float:
    """Score one hit, clamped to [0, 1]."""
    payload = result.payload
    score = result.similarity

    if result.is_heading:
        score += weights.heading_boost

    query_text = query.strip().lower()
    if query_text and result.section_title and query_text in result.section_title.lower():
        score += weights.section_match_boost

    if result.page_number is not None and result.page_number <= weights.front_matter_max_page:
        score += weights.front_matter_boost

    char_count = payload.get("char_count", len(result.text))
    if char_count < weights.short_chunk_chars:
        score -= weights.short_chunk_penalty

    sentence_count = payload.get("sentence_count", 0)
    if weights.prose_min_sentences <= sentence_count <= weights.prose_max_sentences:
        score += weights.prose_boost

    return min(max(score, 0.0), 1.0)


def rerank(
    query: str, results: list[SearchResult], weights: RerankWeights | None = None
) -> list[SearchResult]:
    """Re-score hits and sort by re-ranked score, then raw similarity.

    The sort is stable, so remaining ties keep their retrieval order.
    """
    weights = weights or RerankWeights()
    for result in results:
        result.reranked_score = rerank_score(query, result, weights)
    return sorted(results, key=lambda r: (r.reranked_score, r.similarity), reverse=True)
