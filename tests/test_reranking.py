"""Tests for heuristic re-ranking."""

import pytest

from src.rag.models import SearchResult
from src.rag.reranking import RerankWeights, rerank, rerank_score


def hit(
    similarity: float,
    section_title: str | None = None,
    page_number: int | None = None,
    is_heading: bool = False,
    char_count: int = 150,
    sentence_count: int = 1,
    chunk_index: int = 0,
) -> SearchResult:
    return SearchResult(
        text="x" * char_count,
        similarity=similarity,
        reranked_score=similarity,
        document_id="doc",
        chunk_index=chunk_index,
        section_title=section_title,
        page_number=page_number,
        is_heading=is_heading,
        payload={"char_count": char_count, "sentence_count": sentence_count},
    )


class TestRerankScore:
    """Test individual score adjustments."""

    def test_no_adjustments(self) -> None:
        """Should keep the raw similarity when no rule applies."""
        assert rerank_score("query", hit(0.5), RerankWeights()) == pytest.approx(0.5)

    def test_heading_boost(self) -> None:
        """Should boost chunks containing a heading."""
        assert rerank_score("query", hit(0.5, is_heading=True), RerankWeights()) == pytest.approx(
            0.6
        )

    def test_section_match_is_case_insensitive(self) -> None:
        """Should boost when the query appears in the section title."""
        result = hit(0.4, section_title="Introduction to KAFKA")

        assert rerank_score("kafka", result, RerankWeights()) == pytest.approx(0.55)

    def test_front_matter_boost(self) -> None:
        """Should boost chunks from the first pages only."""
        weights = RerankWeights()

        assert rerank_score("q", hit(0.5, page_number=3), weights) == pytest.approx(0.55)
        assert rerank_score("q", hit(0.5, page_number=4), weights) == pytest.approx(0.5)

    def test_short_chunk_penalty(self) -> None:
        """Should penalize chunks below the short-chunk size."""
        assert rerank_score("q", hit(0.5, char_count=80), RerankWeights()) == pytest.approx(0.4)

    def test_prose_boost(self) -> None:
        """Should boost chunks with two to five sentences."""
        weights = RerankWeights()

        assert rerank_score("q", hit(0.5, sentence_count=2), weights) == pytest.approx(0.55)
        assert rerank_score("q", hit(0.5, sentence_count=6), weights) == pytest.approx(0.5)

    def test_clamped_to_unit_interval(self) -> None:
        """Should keep scores within [0, 1]."""
        high = hit(0.98, section_title="kafka", page_number=1, is_heading=True, sentence_count=3)
        low = hit(0.05, char_count=10)

        assert rerank_score("kafka", high, RerankWeights()) == 1.0
        assert rerank_score("kafka", low, RerankWeights()) == 0.0


class TestRerank:
    """Test ordering after re-ranking."""

    def test_section_match_outranks_higher_similarity(self) -> None:
        """Should lift a section-title match above a closer plain hit."""
        plain = hit(0.50, chunk_index=1)
        titled = hit(0.40, section_title="Kafka", chunk_index=2)

        ranked = rerank("Kafka", [plain, titled])

        assert [r.chunk_index for r in ranked] == [2, 1]
        assert ranked[0].reranked_score == pytest.approx(0.55)
        assert ranked[0].similarity == pytest.approx(0.40)

    def test_ties_broken_by_similarity(self) -> None:
        """Should order equal re-ranked scores by raw similarity."""
        boosted = hit(0.25, sentence_count=2, chunk_index=1)
        plain = hit(0.50, chunk_index=2)

        ranked = rerank("q", [boosted, plain], RerankWeights(prose_boost=0.25))

        assert ranked[0].reranked_score == ranked[1].reranked_score
        assert [r.chunk_index for r in ranked] == [2, 1]

    def test_full_ties_keep_retrieval_order(self) -> None:
        """Should keep retrieval order when scores are identical."""
        results = [hit(0.5, chunk_index=i) for i in range(4)]

        ranked = rerank("q", results)

        assert [r.chunk_index for r in ranked] == [0, 1, 2, 3]

    def test_empty(self) -> None:
        """Should return an empty list for no hits."""
        assert rerank("q", []) == []
