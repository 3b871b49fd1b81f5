"""Semantic Scholar search adapter (Academic Graph API)."""

import logging
from typing import Any, Optional

import httpx
from pydantic import BaseModel, Field, field_validator

from research.core.rate_limiter import RateLimiter
from research.search.base import DEFAULT_TIMEOUT, SourceAdapter, parse_year
from research.search.models import DateRange, SourceRecord

logger = logging.getLogger(__name__)

BASE_URL = "https://api.semanticscholar.org/graph/v1"
SEARCH_URL = f"{BASE_URL}/paper/search"
FIELDS = "paperId,title,abstract,authors,year,citationCount,venue,externalIds"

_MAX_LIMIT = 100


# ── Native Payload ───────────────────────────────────────────────────


class _S2Author(BaseModel):
    authorId: Any = None
    name: Any = None


class _S2Paper(BaseModel):
    paperId: str
    title: Optional[str] = None
    abstract: Optional[str] = None
    authors: Optional[list[_S2Author]] = None
    year: Optional[int] = None
    citationCount: Optional[int] = None
    venue: Optional[str] = None
    externalIds: Optional[dict[str, Any]] = None

    @field_validator("year", mode="before")
    @classmethod
    def _lenient_year(cls, v: Any) -> Optional[int]:
        return parse_year(v)

    @field_validator("citationCount", mode="before")
    @classmethod
    def _lenient_count(cls, v: Any) -> Optional[int]:
        if isinstance(v, bool):
            return None
        if isinstance(v, int):
            return v
        if isinstance(v, str) and v.strip().isdigit():
            return int(v)
        return None

    @field_validator("abstract", "venue", mode="before")
    @classmethod
    def _lenient_text(cls, v: Any) -> Optional[str]:
        return v if isinstance(v, str) else None

    @field_validator("authors", mode="before")
    @classmethod
    def _lenient_authors(cls, v: Any) -> Optional[list[Any]]:
        if not isinstance(v, list):
            return None
        return [a for a in v if isinstance(a, dict)]

    @field_validator("externalIds", mode="before")
    @classmethod
    def _lenient_ids(cls, v: Any) -> Optional[dict[str, Any]]:
        return v if isinstance(v, dict) else None


class _S2SearchResponse(BaseModel):
    total: int = 0
    offset: int = 0
    # Validated one item at a time in _parse_paper
    data: list[Any] = Field(default_factory=list)


# ── Adapter ──────────────────────────────────────────────────────────


class SemanticScholarAdapter(SourceAdapter):
    """Relevance search over the Semantic Scholar paper index."""

    source = "semantic_scholar"
    display_name = "Semantic Scholar"

    def __init__(
        self,
        limiter: RateLimiter,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_TIMEOUT,
        api_key: Optional[str] = None,
    ):
        super().__init__(limiter, client=client, timeout=timeout)
        self.api_key = api_key

    async def _search(
        self,
        query: str,
        limit: int,
        date_range: Optional[DateRange],
    ) -> list[SourceRecord]:
        params = build_params(query, limit, date_range)
        logger.info("Semantic Scholar query: %s", query)

        headers = {"x-api-key": self.api_key} if self.api_key else None
        response = await self._get(SEARCH_URL, params=params, headers=headers)

        payload = _S2SearchResponse.model_validate(response.json())
        logger.info(
            "Semantic Scholar found %d papers, received %d",
            payload.total,
            len(payload.data),
        )
        return self._parse_items(payload.data, _parse_paper)


# ── Request Builder ──────────────────────────────────────────────────


def build_params(
    query: str,
    limit: int,
    date_range: Optional[DateRange] = None,
) -> dict[str, str]:
    """Query parameters for /paper/search; limit is clamped to the API maximum."""
    params = {
        "query": query,
        "limit": str(max(1, min(limit, _MAX_LIMIT))),
        "fields": FIELDS,
    }
    if date_range is not None:
        params["year"] = f"{date_range.start}-{date_range.end}"
    return params


# ── Paper → SourceRecord ─────────────────────────────────────────────


def _parse_paper(item: Any) -> SourceRecord | None:
    """Convert one search hit into a SourceRecord."""
    paper = _S2Paper.model_validate(item)
    if not paper.title or not paper.title.strip():
        return None

    ids = paper.externalIds or {}
    doi = ids.get("DOI")
    pmid = ids.get("PubMed")

    authors = [
        a.name.strip()
        for a in paper.authors or []
        if isinstance(a.name, str) and a.name.strip()
    ]

    return SourceRecord(
        source="semantic_scholar",
        source_id=paper.paperId,
        doi=str(doi) if doi else None,
        pmid=str(pmid) if pmid else None,
        title=paper.title.strip(),
        abstract=paper.abstract or None,
        authors=authors,
        year=paper.year,
        journal=paper.venue or None,
        citation_count=paper.citationCount,
    )
