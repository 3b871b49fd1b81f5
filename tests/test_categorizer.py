"""Tests for evidence-tier categorization."""

import pytest

from research.agents.categorizer import categorize_by_relevance, evidence_tier
from research.agents.models import ProcessedArticle


def _article(score: float, title: str | None = None) -> ProcessedArticle:
    title = title or f"paper {score}"
    return ProcessedArticle(
        source="pubmed",
        source_id=title,
        title=title,
        sources=["pubmed"],
        llm_relevance=0.5,
        recency_weight=0.5,
        citation_weight=0.3,
        relevance_score=score,
    )


@pytest.mark.parametrize(
    "score, tier",
    [(0.95, "primary"), (0.71, "primary"), (0.7, "secondary"), (0.41, "secondary"), (0.4, None), (0.0, None)],
)
def test_evidence_tier_boundaries(score, tier):
    assert evidence_tier(score) == tier


def test_partition_is_disjoint_and_complete():
    articles = [_article(s) for s in (0.1, 0.9, 0.5, 0.7, 0.4, 0.75, 0.41, 0.3)]
    tiers = categorize_by_relevance(articles)

    primary = {a.title for a in tiers.primary}
    secondary = {a.title for a in tiers.secondary}
    assert not primary & secondary
    assert primary == {a.title for a in articles if a.relevance_score > 0.7}
    assert secondary == {a.title for a in articles if 0.4 < a.relevance_score <= 0.7}


def test_tiers_sorted_descending():
    tiers = categorize_by_relevance([_article(s) for s in (0.72, 0.95, 0.8, 0.45, 0.65, 0.5)])
    assert [a.relevance_score for a in tiers.primary] == [0.95, 0.8, 0.72]
    assert [a.relevance_score for a in tiers.secondary] == [0.65, 0.5, 0.45]


def test_empty_input():
    tiers = categorize_by_relevance([])
    assert tiers.primary == []
    assert tiers.secondary == []
