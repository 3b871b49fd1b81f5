"""Research pipeline: strategy → search → merge → rank → extract → categorize."""

import asyncio
import logging
import os
import time
from typing import Optional

import httpx
import ollama
from pydantic import BaseModel, Field

from research.agents.categorizer import categorize_by_relevance
from research.agents.extractor import configure_openalex, placeholder_article, process_article
from research.agents.llm import llm_session
from research.agents.models import ProcessedArticle, RankedPaper, SearchStrategy
from research.agents.ranker import rank_articles
from research.agents.strategy import generate_search_strategy, query_for, resolve_date_range
from research.core.project_spec import ConfigError, ProjectSpec
from research.core.rate_limiter import RateLimiter
from research.search.base import USER_AGENT, SourceAdapter
from research.search.cochrane import CochraneAdapter
from research.search.dedup import merge
from research.search.models import DateRange, SearchOutcome, Source, SourceRecord
from research.search.pubmed import RATE_WITH_KEY, RATE_WITHOUT_KEY, PubMedAdapter
from research.search.semantic_scholar import SemanticScholarAdapter

logger = logging.getLogger("pipeline")


# ── Result Models ────────────────────────────────────────────────────


class SourceReport(BaseModel):
    """Per-source summary of one search call."""

    source: Source
    records: int
    error: Optional[str] = None
    elapsed: float = 0.0


class ResearchResults(BaseModel):
    """Everything downstream synthesis needs from one research run."""

    primary_literature: list[ProcessedArticle] = Field(default_factory=list)
    secondary_literature: list[ProcessedArticle] = Field(default_factory=list)
    ranked_total: int = 0
    ranked_papers: list[RankedPaper] = Field(default_factory=list)
    search_strategy: SearchStrategy
    date_range: DateRange
    source_outcomes: list[SourceReport] = Field(default_factory=list)
    merged_total: int = 0
    spec_hash: str = ""


# ── Adapter Construction ─────────────────────────────────────────────


def build_adapters(
    spec: ProjectSpec,
    client: Optional[httpx.AsyncClient] = None,
) -> list[SourceAdapter]:
    """One adapter per enabled source, each with its own rate limiter.

    API keys come from NCBI_API_KEY and SEMANTIC_SCHOLAR_API_KEY.
    """
    timeout = spec.search.request_timeout
    adapters: list[SourceAdapter] = []

    for name in spec.sources.enabled():
        settings = spec.sources.get(name)

        if name == "pubmed":
            api_key = os.environ.get("NCBI_API_KEY") or None
            max_requests = settings.max_requests
            if api_key and max_requests == RATE_WITHOUT_KEY:
                max_requests = RATE_WITH_KEY
            limiter = RateLimiter(max_requests, settings.window_seconds, name="pubmed")
            adapters.append(
                PubMedAdapter(
                    limiter,
                    client=client,
                    timeout=timeout,
                    api_key=api_key,
                    email=os.environ.get("NCBI_EMAIL") or None,
                )
            )
        elif name == "semantic_scholar":
            limiter = RateLimiter(
                settings.max_requests, settings.window_seconds, name="semantic_scholar"
            )
            adapters.append(
                SemanticScholarAdapter(
                    limiter,
                    client=client,
                    timeout=timeout,
                    api_key=os.environ.get("SEMANTIC_SCHOLAR_API_KEY") or None,
                )
            )
        elif name == "cochrane":
            limiter = RateLimiter(settings.max_requests, settings.window_seconds, name="cochrane")
            adapters.append(CochraneAdapter(limiter, client=client, timeout=timeout))

    if not adapters:
        raise ConfigError("No bibliographic source is enabled")

    logger.info("Sources: %s", ", ".join(a.display_name for a in adapters))
    return adapters


# ── Pipeline ─────────────────────────────────────────────────────────


async def conduct_research(
    spec: ProjectSpec,
    adapters: Optional[list[SourceAdapter]] = None,
) -> ResearchResults:
    """Run the full research pipeline for one project.

    Only a ConfigError escapes; every source, LLM and lookup failure is
    absorbed by the stage that owns it. One Ollama client serves every LLM
    call of the run.
    """
    if adapters is not None:
        if not adapters:
            raise ConfigError("No bibliographic source is enabled")
        async with llm_session(spec.llm) as llm_client:
            return await _run(spec, adapters, llm_client)

    async with httpx.AsyncClient(
        timeout=spec.search.request_timeout,
        headers={"Accept": "application/json", "User-Agent": USER_AGENT},
    ) as client:
        adapters = build_adapters(spec, client)
        async with llm_session(spec.llm) as llm_client:
            return await _run(spec, adapters, llm_client)


async def _run(
    spec: ProjectSpec,
    adapters: list[SourceAdapter],
    llm_client: ollama.AsyncClient,
) -> ResearchResults:
    t_start = time.monotonic()
    context = spec.context()
    configure_openalex(os.environ.get("NCBI_EMAIL"))

    logger.info("Project: %s", spec.project.title)

    # ── Strategy ─────────────────────────────────────────────
    strategy = await _stage_strategy(spec, llm_client)
    date_range = resolve_date_range(strategy.date_range_years)

    # ── Search ───────────────────────────────────────────────
    outcomes = await _stage_search(spec, adapters, strategy, date_range)
    records: list[SourceRecord] = [r for o in outcomes for r in o.records]

    # ── Merge ────────────────────────────────────────────────
    logger.info("=" * 60)
    logger.info("STAGE: MERGE")
    merged = merge(
        records,
        threshold=spec.pipeline.title_similarity_threshold,
        policy=spec.pipeline.representative_policy,
    )
    logger.info("Merged %d records into %d unique papers", len(records), len(merged))

    # ── Rank ─────────────────────────────────────────────────
    t = time.monotonic()
    logger.info("=" * 60)
    logger.info("STAGE: RANK")
    ranked = await rank_articles(merged, context, spec.llm, client=llm_client)
    logger.info("Ranking complete in %.1fs", time.monotonic() - t)

    # ── Extract ──────────────────────────────────────────────
    top = ranked[: spec.pipeline.top_n]
    processed = await _stage_extract(spec, top, llm_client)

    # ── Categorize ───────────────────────────────────────────
    tiers = categorize_by_relevance(processed)

    logger.info("=" * 60)
    logger.info(
        "PIPELINE COMPLETE in %.1fs: %d primary, %d secondary of %d ranked",
        time.monotonic() - t_start,
        len(tiers.primary),
        len(tiers.secondary),
        len(ranked),
    )

    return ResearchResults(
        primary_literature=tiers.primary,
        secondary_literature=tiers.secondary,
        ranked_total=len(ranked),
        ranked_papers=ranked,
        search_strategy=strategy,
        date_range=date_range,
        source_outcomes=[
            SourceReport(
                source=o.source,
                records=len(o.records),
                error=o.error,
                elapsed=o.elapsed,
            )
            for o in outcomes
        ],
        merged_total=len(merged),
        spec_hash=spec.spec_hash(),
    )


# ── Stage Implementations ────────────────────────────────────────────


async def _stage_strategy(spec: ProjectSpec, llm_client: ollama.AsyncClient) -> SearchStrategy:
    t = time.monotonic()
    logger.info("=" * 60)
    logger.info("STAGE: STRATEGY")
    strategy = await generate_search_strategy(
        spec.context(), spec.llm, spec.search.date_range_years, client=llm_client
    )
    logger.info("Strategy ready in %.1fs", time.monotonic() - t)
    return strategy


async def _stage_search(
    spec: ProjectSpec,
    adapters: list[SourceAdapter],
    strategy: SearchStrategy,
    date_range: DateRange,
) -> list[SearchOutcome]:
    t = time.monotonic()
    logger.info("=" * 60)
    logger.info("STAGE: SEARCH (%d–%d)", date_range.start, date_range.end)

    results = await asyncio.gather(
        *(
            adapter.run(
                query_for(strategy, adapter.source),
                spec.sources.get(adapter.source).max_results,
                date_range,
            )
            for adapter in adapters
        ),
        return_exceptions=True,
    )

    outcomes: list[SearchOutcome] = []
    for adapter, result in zip(adapters, results):
        if isinstance(result, BaseException):
            if not isinstance(result, Exception):
                raise result
            logger.warning("%s search raised %r; continuing without it", adapter.display_name, result)
            result = SearchOutcome(source=adapter.source, error=f"unexpected error: {result!r}")
        logger.info("%s: %d records", adapter.display_name, len(result.records))
        outcomes.append(result)

    failed = [o.source for o in outcomes if not o.ok]
    logger.info(
        "Search complete in %.1fs (%d sources, %d failed%s)",
        time.monotonic() - t,
        len(outcomes),
        len(failed),
        f": {', '.join(failed)}" if failed else "",
    )
    return outcomes


async def _stage_extract(
    spec: ProjectSpec,
    top: list[RankedPaper],
    llm_client: ollama.AsyncClient,
) -> list[ProcessedArticle]:
    t = time.monotonic()
    logger.info("=" * 60)
    logger.info("STAGE: EXTRACT (top %d)", len(top))

    semaphore = asyncio.Semaphore(spec.llm.max_concurrency)

    async def _process(paper: RankedPaper) -> ProcessedArticle:
        async with semaphore:
            return await process_article(paper, spec.llm, client=llm_client)

    results = await asyncio.gather(*(_process(p) for p in top), return_exceptions=True)

    processed: list[ProcessedArticle] = []
    for paper, result in zip(top, results):
        if isinstance(result, BaseException):
            if not isinstance(result, Exception):
                raise result
            logger.warning("Extraction failed for '%s': %r", paper.title[:60], result)
            result = placeholder_article(paper)
        processed.append(result)

    logger.info("Extraction complete in %.1fs", time.monotonic() - t)
    return processed
