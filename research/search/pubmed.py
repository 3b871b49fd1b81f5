"""PubMed search adapter: NCBI E-utilities over httpx, MEDLINE parsed by Biopython."""

import io
import logging
from typing import Optional

import httpx
from Bio import Medline
from pydantic import BaseModel, Field

from research.core.rate_limiter import RateLimiter
from research.search.base import DEFAULT_TIMEOUT, SourceAdapter
from research.search.models import DateRange, SourceRecord

logger = logging.getLogger(__name__)

BASE_URL = "https://eutils.ncbi.nlm.nih.gov/entrez/eutils"
ESEARCH_URL = f"{BASE_URL}/esearch.fcgi"
EFETCH_URL = f"{BASE_URL}/efetch.fcgi"

_BATCH_SIZE = 200
_MAX_RETMAX = 10000
_TOOL = "research-evidence-pipeline"

# NCBI policy: 3 req/s without a key, 10 req/s with one
RATE_WITHOUT_KEY = 3
RATE_WITH_KEY = 10


# ── ESearch Payload ──────────────────────────────────────────────────


class _ESearchResult(BaseModel):
    count: int = 0
    idlist: list[str] = Field(default_factory=list)


class _ESearchResponse(BaseModel):
    esearchresult: _ESearchResult


# ── Adapter ──────────────────────────────────────────────────────────


class PubMedAdapter(SourceAdapter):
    """ESearch for PMIDs, then EFetch MEDLINE records in batches."""

    source = "pubmed"
    display_name = "PubMed"

    def __init__(
        self,
        limiter: RateLimiter,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_TIMEOUT,
        api_key: Optional[str] = None,
        email: Optional[str] = None,
    ):
        super().__init__(limiter, client=client, timeout=timeout)
        self.api_key = api_key
        self.email = email

    async def _search(
        self,
        query: str,
        limit: int,
        date_range: Optional[DateRange],
    ) -> list[SourceRecord]:
        term = _build_query(query, date_range)
        logger.info("PubMed query: %s", term)

        # Phase 1: esearch to get PMIDs
        pmids = await self._esearch(term, limit)
        total = len(pmids)
        if total == 0:
            logger.info("PubMed returned 0 results")
            return []

        logger.info("PubMed found %d PMIDs", total)

        # Phase 2: efetch in batches to get full records
        records: list[SourceRecord] = []
        for start in range(0, total, _BATCH_SIZE):
            batch_ids = pmids[start : start + _BATCH_SIZE]
            medline = await self._efetch(batch_ids)
            records.extend(self._parse_items(medline, _parse_record))
            logger.info("Fetched %d/%d citations from PubMed", len(records), total)

        return records

    # ── E-utilities Wrappers ─────────────────────────────────────────

    def _base_params(self) -> dict[str, str]:
        params = {"db": "pubmed", "tool": _TOOL}
        if self.api_key:
            params["api_key"] = self.api_key
        if self.email:
            params["email"] = self.email
        return params

    async def _esearch(self, term: str, limit: int) -> list[str]:
        """Run ESearch and return matching PMIDs, most relevant first."""
        retmax = max(1, min(limit, _MAX_RETMAX))
        params = {
            **self._base_params(),
            "term": term,
            "retmax": str(retmax),
            "retmode": "json",
            "sort": "relevance",
        }
        response = await self._get(ESEARCH_URL, params=params)
        result = _ESearchResponse.model_validate(response.json()).esearchresult
        logger.debug("PubMed reports %d total matches", result.count)
        return result.idlist[:retmax]

    async def _efetch(self, pmids: list[str]) -> list[dict]:
        """Fetch MEDLINE records for a batch of PMIDs."""
        params = {
            **self._base_params(),
            "id": ",".join(pmids),
            "rettype": "medline",
            "retmode": "text",
        }
        response = await self._get(EFETCH_URL, params=params)
        return list(Medline.parse(io.StringIO(response.text)))


# ── Query Builder ────────────────────────────────────────────────────


def _build_query(query: str, date_range: Optional[DateRange] = None) -> str:
    """Wrap the query and apply a publication-date filter."""
    if date_range is None:
        return query
    return f"({query}) AND {date_range.start}:{date_range.end}[dp]"


# ── Record Parser ────────────────────────────────────────────────────


def _parse_record(rec: dict) -> SourceRecord | None:
    """Convert a MEDLINE record dict into a SourceRecord."""
    title = rec.get("TI")
    pmid = rec.get("PMID")
    if not title or not pmid:
        return None

    # Extract year from Date of Publication (DP) field, e.g. "2023 Jan"
    year = None
    dp = rec.get("DP", "")
    if dp:
        try:
            year = int(dp[:4])
        except (ValueError, IndexError):
            pass

    # DOI is in Article Identifier (AID) field, tagged with [doi]
    doi = None
    for aid in rec.get("AID", []):
        if aid.endswith("[doi]"):
            doi = aid.replace(" [doi]", "").strip()
            break

    authors = rec.get("AU", [])
    if isinstance(authors, str):
        authors = [authors]

    return SourceRecord(
        source="pubmed",
        source_id=pmid.strip(),
        pmid=pmid.strip(),
        doi=doi,
        title=title.strip(),
        abstract=rec.get("AB"),
        authors=authors,
        journal=rec.get("JT"),
        year=year,
    )
