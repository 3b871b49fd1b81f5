"""Search strategy agent: per-source query variants from the project context."""

import logging
from datetime import date
from typing import Optional

import ollama

from research.agents.llm import chat_json
from research.agents.models import PICO, SearchStrategy
from research.core.project_spec import LLMSettings, ProjectContext
from research.search.models import DateRange, Source

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an expert medical librarian and systematic review specialist. "
    "Respond ONLY with the requested JSON."
)

_QUERY_FIELDS: dict[str, str] = {
    "pubmed": "pubmed_query",
    "semantic_scholar": "semantic_query",
    "cochrane": "cochrane_query",
}


# ── Prompt Builder ───────────────────────────────────────────────────


def build_strategy_prompt(context: ProjectContext, date_range_years: int = 10) -> str:
    """Build the search-strategy prompt from the project context."""
    return f"""/no_think
Generate a comprehensive literature search strategy for the following clinical problem.

## Clinical Problem
{context.clinical_problem}

## Target Population
{context.target_population}

## Intended Outcomes
{context.intended_outcomes}

## Task
1. Parse the clinical problem into PICO components (Population, Intervention, Comparison, Outcome)
2. Generate relevant MeSH terms for PubMed
3. Generate a list of keywords and synonyms
4. Build a PubMed query using Boolean operators, [MeSH] and [tiab] qualifiers
5. Build a concise natural-language query for Semantic Scholar
6. Build a Cochrane Library query using :ti,ab,kw field searching
7. Set a date range in years (default: {date_range_years})

Example PubMed query:
(diabetes mellitus[MeSH] OR diabetes[tiab]) AND (insulin therapy[MeSH] OR insulin[tiab])

Respond with JSON only: {{"pico": {{...}}, "mesh_terms": [...], "keywords": [...],
"pubmed_query": "...", "semantic_query": "...", "cochrane_query": "...",
"date_range_years": {date_range_years}, "reasoning": "..."}}"""


# ── Strategy Generation ──────────────────────────────────────────────


def fallback_strategy(context: ProjectContext, date_range_years: int = 10) -> SearchStrategy:
    """Plain queries built straight from the project context."""
    problem = " ".join(context.clinical_problem.split())
    semantic = " ".join(f"{problem} {context.intended_outcomes}".split())
    return SearchStrategy(
        pico=PICO(
            population=context.target_population,
            outcome=context.intended_outcomes,
        ),
        pubmed_query=problem,
        semantic_query=semantic,
        cochrane_query=problem,
        date_range_years=date_range_years,
        reasoning="Fallback strategy built from the project description",
    )


async def generate_search_strategy(
    context: ProjectContext,
    settings: LLMSettings,
    date_range_years: int = 10,
    client: Optional[ollama.AsyncClient] = None,
) -> SearchStrategy:
    """Ask the LLM for query variants; fall back to the project text on failure."""
    fallback = fallback_strategy(context, date_range_years)
    try:
        strategy = await chat_json(
            build_strategy_prompt(context, date_range_years),
            SYSTEM_PROMPT,
            SearchStrategy,
            model=settings.strategy_model,
            settings=settings,
            client=client,
        )
    except Exception as exc:
        logger.warning("Search strategy generation failed (%s); using fallback queries", exc)
        return fallback

    # Blank queries from the model are replaced one by one
    patch = {
        field: getattr(fallback, field)
        for field in _QUERY_FIELDS.values()
        if not getattr(strategy, field).strip()
    }
    if patch:
        logger.warning("Strategy had blank queries for %s; using fallback text", ", ".join(patch))
        strategy = strategy.model_copy(update=patch)

    logger.info(
        "Search strategy: %d MeSH terms, %d keywords, %d-year window",
        len(strategy.mesh_terms),
        len(strategy.keywords),
        strategy.date_range_years,
    )
    return strategy


def query_for(strategy: SearchStrategy, source: Source) -> str:
    """The query variant aimed at one source."""
    return getattr(strategy, _QUERY_FIELDS[source])


def resolve_date_range(years: int, today: Optional[date] = None) -> DateRange:
    """Inclusive year window ending this year."""
    end = (today or date.today()).year
    return DateRange(start=end - years, end=end)


# ── Summary ──────────────────────────────────────────────────────────


def format_search_strategy_summary(
    strategy: SearchStrategy,
    date_range: Optional[DateRange] = None,
) -> str:
    """Human-readable summary of a search strategy."""
    date_range = date_range or resolve_date_range(strategy.date_range_years)
    lines = [
        "Search Strategy Summary",
        "======================",
        "",
        f"Date Range: {date_range.start} to {date_range.end}",
        "",
        "PICO:",
        f"  Population: {strategy.pico.population or '-'}",
        f"  Intervention: {strategy.pico.intervention or '-'}",
        f"  Comparison: {strategy.pico.comparison or '-'}",
        f"  Outcome: {strategy.pico.outcome or '-'}",
        "",
        f"MeSH Terms ({len(strategy.mesh_terms)}):",
    ]
    lines.extend(f"  - {term}" for term in strategy.mesh_terms)
    lines += [
        "",
        f"Keywords ({len(strategy.keywords)}): {', '.join(strategy.keywords)}",
        "",
        "PubMed Query:",
        f"  {strategy.pubmed_query}",
        "",
        "Semantic Scholar Query:",
        f"  {strategy.semantic_query}",
        "",
        "Cochrane Query:",
        f"  {strategy.cochrane_query}",
    ]
    if strategy.reasoning:
        lines += ["", "Reasoning:", f"  {strategy.reasoning}"]
    return "\n".join(lines)
