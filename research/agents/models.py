"""Shared data models for the strategy, ranking and extraction agents."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from research.search.models import UnifiedPaper


# ── Pipeline Stages ──────────────────────────────────────────────────


class RankedPaper(UnifiedPaper):
    """A unified paper scored for relevance to one project."""

    llm_relevance: float = Field(ge=0.0, le=1.0)
    recency_weight: float = Field(ge=0.0, le=1.0)
    citation_weight: float = Field(ge=0.0, le=1.0)
    relevance_score: float = Field(ge=0.0, le=1.0)
    relevance_reasoning: str = ""


class ProcessedArticle(RankedPaper):
    """A top-ranked paper with narrative extraction attached."""

    key_findings: list[str] = Field(default_factory=list)
    methodology_notes: str = ""
    limitations: list[str] = Field(default_factory=list)
    full_text_available: bool = False


class EvidenceTiers(BaseModel):
    model_config = ConfigDict(frozen=True)

    primary: list[ProcessedArticle] = Field(default_factory=list)
    secondary: list[ProcessedArticle] = Field(default_factory=list)


# ── Structured Output Models ─────────────────────────────────────────


class RelevanceAssessment(BaseModel):
    """Schema used for Ollama structured output (relevance scoring).

    ``score`` is left unconstrained here; the ranker range-checks it so an
    out-of-range value falls back to neutral instead of failing validation.
    """

    score: float = Field(description="Relevance from 0.0 (irrelevant) to 1.0 (directly relevant)")
    reasoning: str = Field(default="", description="1-2 sentence explanation")


class KeyFindings(BaseModel):
    key_findings: list[str] = Field(description="3-5 main findings, one sentence each")


class MethodologyNotes(BaseModel):
    methodology_notes: str = Field(description="Study design, sample, interventions, analysis")


class Limitations(BaseModel):
    limitations: list[str] = Field(description="2-4 limitations of the study")


class PICO(BaseModel):
    population: str = ""
    intervention: str = ""
    comparison: Optional[str] = None
    outcome: str = ""


class SearchStrategy(BaseModel):
    """Query variants for each source, generated from the project context."""

    pico: PICO = Field(default_factory=PICO)
    mesh_terms: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)
    pubmed_query: str
    semantic_query: str
    cochrane_query: str
    date_range_years: int = Field(default=10, ge=1, le=100)
    reasoning: str = ""
