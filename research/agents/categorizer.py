"""Partition processed articles into primary and secondary evidence tiers."""

import logging
from typing import Literal, Optional

from research.agents.models import EvidenceTiers, ProcessedArticle

logger = logging.getLogger(__name__)

PRIMARY_THRESHOLD = 0.7
SECONDARY_THRESHOLD = 0.4

Tier = Literal["primary", "secondary"]


def evidence_tier(score: float) -> Optional[Tier]:
    """Tier for one relevance score, or None when it falls below both."""
    if score > PRIMARY_THRESHOLD:
        return "primary"
    if score > SECONDARY_THRESHOLD:
        return "secondary"
    return None


def categorize_by_relevance(articles: list[ProcessedArticle]) -> EvidenceTiers:
    """Split articles by score: > 0.7 primary, (0.4, 0.7] secondary, rest dropped.

    Both tiers come back sorted by relevance_score, highest first.
    """
    primary: list[ProcessedArticle] = []
    secondary: list[ProcessedArticle] = []

    for article in articles:
        tier = evidence_tier(article.relevance_score)
        if tier == "primary":
            primary.append(article)
        elif tier == "secondary":
            secondary.append(article)

    excluded = len(articles) - len(primary) - len(secondary)
    logger.info(
        "Categorized %d articles: %d primary, %d secondary, %d below threshold",
        len(articles),
        len(primary),
        len(secondary),
        excluded,
    )

    return EvidenceTiers(
        primary=sorted(primary, key=lambda a: a.relevance_score, reverse=True),
        secondary=sorted(secondary, key=lambda a: a.relevance_score, reverse=True),
    )
