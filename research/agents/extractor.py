"""Narrative extraction agent: key findings, methodology and limitations.

Each of the three extractions is an independent Ollama call with its own
fallback text, so one failed call never costs the others.
"""

import asyncio
import logging
from typing import Optional

import ollama
import pyalex
from pyalex import Works

from research.agents.llm import chat_json, llm_session
from research.agents.models import (
    KeyFindings,
    Limitations,
    MethodologyNotes,
    ProcessedArticle,
    RankedPaper,
)
from research.core.project_spec import LLMSettings

logger = logging.getLogger(__name__)

MIN_ABSTRACT_CHARS = 50

SHORT_ABSTRACT_FINDINGS = ["Abstract too short for extraction"]
SHORT_ABSTRACT_METHODOLOGY = "Methodology could not be extracted from abstract"
SHORT_ABSTRACT_LIMITATIONS = ["Limited abstract information available"]
DEFAULT_LIMITATIONS = ["Limitations not explicitly stated in abstract."]


# ── Prompts ──────────────────────────────────────────────────────────


FINDINGS_SYSTEM = (
    "You are an expert clinical researcher extracting key findings from research "
    "articles. Focus on concrete results and outcomes. Respond ONLY with the requested JSON."
)

METHODOLOGY_SYSTEM = (
    "You are an expert methodologist summarizing research methods. Be concise and "
    "focus on study design, population, and measurement approach. "
    "Respond ONLY with the requested JSON."
)

LIMITATIONS_SYSTEM = (
    "You are an expert research methodologist identifying study limitations. "
    "Be objective and constructive. Respond ONLY with the requested JSON."
)


def _findings_prompt(title: str, abstract: str) -> str:
    return f"""/no_think
Extract the key findings from this research article.

ARTICLE TITLE:
{title}

ARTICLE ABSTRACT:
{abstract}

Identify 3-5 key findings: main results, clinical implications, and
quantitative results (effect sizes, statistics) when available. Each finding
is one clear, complete sentence focused on results, not methods or background.

Respond with JSON only: {{"key_findings": ["...", "..."]}}"""


def _methodology_prompt(abstract: str) -> str:
    return f"""/no_think
Summarize the research methodology described in this article abstract.

ARTICLE ABSTRACT:
{abstract}

Cover study design, sample size and population, intervention or exposure,
comparison group, primary outcomes and analysis methods where mentioned.
Write 1-2 short paragraphs.

Respond with JSON only: {{"methodology_notes": "..."}}"""


def _limitations_prompt(abstract: str) -> str:
    return f"""/no_think
Identify study limitations from this article abstract.

ARTICLE ABSTRACT:
{abstract}

List 2-4 limitations: explicit ones first, then methodological constraints,
generalizability issues and potential biases inferred from the design.
Each limitation is one sentence.

Respond with JSON only: {{"limitations": ["...", "..."]}}"""


# ── Extractions ──────────────────────────────────────────────────────


async def extract_key_findings(
    title: str,
    abstract: str,
    settings: LLMSettings,
    client: Optional[ollama.AsyncClient] = None,
) -> list[str]:
    fallback = [f"Main findings: {abstract[:200]}..."]
    try:
        result = await chat_json(
            _findings_prompt(title, abstract),
            FINDINGS_SYSTEM,
            KeyFindings,
            model=settings.extraction_model,
            settings=settings,
            client=client,
        )
    except Exception as exc:
        logger.warning("Key findings extraction failed for '%s': %s", title[:60], exc)
        return fallback

    findings = [f.strip() for f in result.key_findings if f.strip()]
    if not findings:
        logger.warning("Empty key findings for '%s'; using fallback", title[:60])
        return fallback
    return findings


async def extract_methodology_notes(
    abstract: str,
    settings: LLMSettings,
    client: Optional[ollama.AsyncClient] = None,
) -> str:
    fallback = f"Methodology: {abstract[:150]}..."
    try:
        result = await chat_json(
            _methodology_prompt(abstract),
            METHODOLOGY_SYSTEM,
            MethodologyNotes,
            model=settings.extraction_model,
            settings=settings,
            client=client,
        )
    except Exception as exc:
        logger.warning("Methodology extraction failed: %s", exc)
        return fallback

    notes = result.methodology_notes.strip()
    return notes or fallback


async def extract_limitations(
    abstract: str,
    settings: LLMSettings,
    client: Optional[ollama.AsyncClient] = None,
) -> list[str]:
    try:
        result = await chat_json(
            _limitations_prompt(abstract),
            LIMITATIONS_SYSTEM,
            Limitations,
            model=settings.extraction_model,
            settings=settings,
            client=client,
        )
    except Exception as exc:
        logger.warning("Limitations extraction failed: %s", exc)
        return list(DEFAULT_LIMITATIONS)

    limitations = [x.strip() for x in result.limitations if x.strip()]
    return limitations or list(DEFAULT_LIMITATIONS)


# ── Full-Text Availability ───────────────────────────────────────────


def configure_openalex(email: Optional[str]) -> None:
    """Join the OpenAlex polite pool when a contact email is known."""
    if email:
        pyalex.config.email = email


def _lookup_open_access(doi: Optional[str], pmid: Optional[str]) -> bool:
    if doi:
        work = Works()[f"https://doi.org/{doi}"]
    else:
        work = Works()[f"pmid:{pmid}"]
    return bool((work.get("open_access") or {}).get("is_oa"))


async def check_full_text_availability(
    doi: Optional[str],
    pmid: Optional[str],
    timeout: float = 60.0,
) -> bool:
    """True if OpenAlex reports an open-access copy; False on any failure."""
    if not doi and not pmid:
        return False
    try:
        return await asyncio.wait_for(
            asyncio.to_thread(_lookup_open_access, doi, pmid),
            timeout=timeout,
        )
    except Exception as exc:
        logger.warning("Full-text check failed (doi=%s, pmid=%s): %s", doi, pmid, exc)
        return False


# ── Article Processing ───────────────────────────────────────────────


def placeholder_article(paper: RankedPaper, full_text_available: bool = False) -> ProcessedArticle:
    """Article carrying fixed placeholder text instead of extracted narrative."""
    return ProcessedArticle(
        **paper.model_dump(),
        key_findings=list(SHORT_ABSTRACT_FINDINGS),
        methodology_notes=SHORT_ABSTRACT_METHODOLOGY,
        limitations=list(SHORT_ABSTRACT_LIMITATIONS),
        full_text_available=full_text_available,
    )


async def process_article(
    paper: RankedPaper,
    settings: LLMSettings,
    client: Optional[ollama.AsyncClient] = None,
) -> ProcessedArticle:
    """Run the three extractions and the full-text check concurrently."""
    abstract = (paper.abstract or "").strip()

    if len(abstract) < MIN_ABSTRACT_CHARS:
        logger.debug("Abstract too short for extraction: '%s'", paper.title[:60])
        full_text = await check_full_text_availability(paper.doi, paper.pmid, settings.timeout)
        return placeholder_article(paper, full_text)

    async with llm_session(settings, client) as session:
        findings, methodology, limitations, full_text = await asyncio.gather(
            extract_key_findings(paper.title, abstract, settings, client=session),
            extract_methodology_notes(abstract, settings, client=session),
            extract_limitations(abstract, settings, client=session),
            check_full_text_availability(paper.doi, paper.pmid, settings.timeout),
        )

    return ProcessedArticle(
        **paper.model_dump(),
        key_findings=findings,
        methodology_notes=methodology,
        limitations=limitations,
        full_text_available=full_text,
    )
