"""Relevance ranking agent: LLM assessment blended with recency and citations."""

import asyncio
import logging
import math
from datetime import date
from typing import Optional

import ollama

from research.agents.llm import chat_json, llm_session
from research.agents.models import RankedPaper, RelevanceAssessment
from research.core.project_spec import LLMSettings, ProjectContext
from research.search.models import UnifiedPaper

logger = logging.getLogger(__name__)

NEUTRAL_RELEVANCE = 0.5

LLM_WEIGHT = 0.6
RECENCY_WEIGHT = 0.25
CITATION_WEIGHT = 0.15

RECENCY_HALF_LIFE = 5.0
RECENCY_FLOOR = 0.1
CITATION_BASE = 0.3

SYSTEM_PROMPT = (
    "You are an expert clinical research methodologist evaluating article "
    "relevance. Be precise and objective in your scoring. Consider both the "
    "methodological quality and topical relevance. Respond ONLY with the "
    "requested JSON."
)


# ── Weights ──────────────────────────────────────────────────────────


def calculate_recency_weight(year: Optional[int], current_year: Optional[int] = None) -> float:
    """Exponential decay with a five-year half-life, floored at 0.1.

    Current or future years get 1.0; an unknown year gets the floor.
    """
    if year is None:
        return RECENCY_FLOOR
    current_year = current_year or date.today().year
    age = current_year - year
    if age <= 0:
        return 1.0
    return max(RECENCY_FLOOR, 0.5 ** (age / RECENCY_HALF_LIFE))


def calculate_citation_weight(citation_count: Optional[int]) -> float:
    """Log-scaled citation weight: 1→0.3, 10→0.5, 100→0.7, 1000→0.9, ≥10000→1.0."""
    if not citation_count or citation_count <= 0:
        return CITATION_BASE
    return min(1.0, CITATION_BASE + 0.2 * math.log10(citation_count))


def compute_composite_score(
    llm_relevance: float,
    recency_weight: float,
    citation_weight: float,
) -> float:
    score = (
        LLM_WEIGHT * llm_relevance
        + RECENCY_WEIGHT * recency_weight
        + CITATION_WEIGHT * citation_weight
    )
    return min(1.0, max(0.0, score))


# ── LLM Assessment ───────────────────────────────────────────────────


def build_relevance_prompt(paper: UnifiedPaper, context: ProjectContext) -> str:
    """Build the relevance prompt from the project context and paper metadata."""
    authors = ", ".join(paper.authors) if paper.authors else "Unknown"
    journal = paper.journal or "Unknown journal"
    year = paper.year if paper.year is not None else "n.d."
    abstract = paper.abstract or "[Not available: judge from title and metadata only.]"

    return f"""/no_think
Evaluate the relevance of a research article to a clinical research project.

PROJECT CONTEXT:
- Clinical Problem: {context.clinical_problem}
- Target Population: {context.target_population}
- Intended Outcomes: {context.intended_outcomes}
- Concept Description: {context.concept_description}

ARTICLE TO EVALUATE:
- Title: {paper.title}
- Authors: {authors}
- Journal: {journal} ({year})
- Abstract: {abstract}

Consider whether the article addresses the same clinical problem, studies a
similar population, measures relevant outcomes, and would inform the project design.

SCORING SCALE:
- 0.9-1.0: Highly relevant - same problem, population, and outcomes
- 0.7-0.8: Very relevant - similar problem with comparable population or methods
- 0.5-0.6: Moderately relevant - related area but different population or outcomes
- 0.3-0.4: Somewhat relevant - tangentially related
- 0.0-0.2: Not relevant

Respond with JSON only: {{"score": 0.0-1.0, "reasoning": "..."}}"""


async def assess_relevance(
    paper: UnifiedPaper,
    context: ProjectContext,
    settings: LLMSettings,
    client: Optional[ollama.AsyncClient] = None,
) -> RelevanceAssessment:
    """LLM relevance for one paper; any failure or invalid score gives 0.5."""
    try:
        result = await chat_json(
            build_relevance_prompt(paper, context),
            SYSTEM_PROMPT,
            RelevanceAssessment,
            model=settings.relevance_model,
            settings=settings,
            client=client,
        )
    except Exception as exc:
        logger.warning("Relevance assessment failed for '%s': %s", paper.title[:60], exc)
        return RelevanceAssessment(score=NEUTRAL_RELEVANCE)

    if not math.isfinite(result.score) or not 0.0 <= result.score <= 1.0:
        logger.warning(
            "Invalid relevance score %s for '%s'; defaulting to %.1f",
            result.score,
            paper.title[:60],
            NEUTRAL_RELEVANCE,
        )
        return RelevanceAssessment(score=NEUTRAL_RELEVANCE)

    return result


# ── Ranking ──────────────────────────────────────────────────────────


def score_paper(
    paper: UnifiedPaper,
    assessment: RelevanceAssessment,
    current_year: Optional[int] = None,
) -> RankedPaper:
    """Combine an assessment with the paper's recency and citation weights."""
    recency = calculate_recency_weight(paper.year, current_year)
    citation = calculate_citation_weight(paper.citation_count)
    return RankedPaper(
        **paper.model_dump(),
        llm_relevance=assessment.score,
        recency_weight=recency,
        citation_weight=citation,
        relevance_score=compute_composite_score(assessment.score, recency, citation),
        relevance_reasoning=assessment.reasoning,
    )


async def rank_articles(
    papers: list[UnifiedPaper],
    context: ProjectContext,
    settings: LLMSettings,
    current_year: Optional[int] = None,
    client: Optional[ollama.AsyncClient] = None,
) -> list[RankedPaper]:
    """Score every paper and sort by relevance_score, highest first.

    Ties keep their input order. All assessments share one Ollama client.
    """
    if not papers:
        return []

    semaphore = asyncio.Semaphore(settings.max_concurrency)
    done = 0

    async def _score(paper: UnifiedPaper, session: ollama.AsyncClient) -> RankedPaper:
        nonlocal done
        async with semaphore:
            assessment = await assess_relevance(paper, context, settings, client=session)
        done += 1
        if done % 10 == 0 or done == len(papers):
            logger.info("Scored %d/%d papers", done, len(papers))
        return score_paper(paper, assessment, current_year)

    async with llm_session(settings, client) as session:
        ranked = await asyncio.gather(*(_score(p, session) for p in papers))
    return sorted(ranked, key=lambda p: p.relevance_score, reverse=True)
