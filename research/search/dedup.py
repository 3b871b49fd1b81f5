"""Merge records from all search sources into one deduplicated corpus."""

import logging
import re
from difflib import SequenceMatcher
from typing import Literal, Optional

from pydantic import BaseModel

from research.search.models import SourceRecord, UnifiedPaper

logger = logging.getLogger(__name__)

RepresentativePolicy = Literal["most_complete", "first_seen"]

DEFAULT_THRESHOLD = 0.9

_COMPLETENESS_FIELDS = ("doi", "pmid", "abstract", "authors", "year", "journal", "citation_count")


# ── Result Model ─────────────────────────────────────────────────────


class DedupResult(BaseModel):
    """Result of deduplication across search sources."""

    unique_papers: list[UnifiedPaper]
    duplicate_pairs: list[tuple[str, str]]  # (kept title, removed title)
    stats: dict


# ── Public API ───────────────────────────────────────────────────────


def merge(
    records: list[SourceRecord],
    threshold: float = DEFAULT_THRESHOLD,
    policy: RepresentativePolicy = "most_complete",
) -> list[UnifiedPaper]:
    """Collapse records describing the same work into one UnifiedPaper each."""
    return deduplicate(records, threshold=threshold, policy=policy).unique_papers


def deduplicate(
    records: list[SourceRecord],
    threshold: float = DEFAULT_THRESHOLD,
    policy: RepresentativePolicy = "most_complete",
) -> DedupResult:
    """Group duplicate records and keep one representative per group.

    Records are matched on DOI first, then PMID. Titles are compared only
    when neither side carries an identifier. The result does not depend on
    the order of ``records``.
    """
    ordered = sorted(records, key=_canonical_key)

    groups: list[_Group] = []
    for rec in ordered:
        group = _find_group(rec, groups, threshold)
        if group is None:
            groups.append(_Group(rec))
        else:
            group.add(rec)

    unique: list[UnifiedPaper] = []
    duplicate_pairs: list[tuple[str, str]] = []
    for group in groups:
        rep = _choose_representative(group.records, policy)
        unique.append(_unify(rep, group.records))
        for rec in group.records:
            if rec is not rep:
                duplicate_pairs.append((rep.title, rec.title))

    by_source: dict[str, int] = {}
    for rec in records:
        by_source[rec.source] = by_source.get(rec.source, 0) + 1

    stats = {
        "input_total": len(records),
        "by_source": by_source,
        "duplicates_found": len(duplicate_pairs),
        "unique_total": len(unique),
    }

    logger.info(
        "Deduplication: %d records → %d unique (%d duplicates removed)",
        stats["input_total"],
        stats["unique_total"],
        stats["duplicates_found"],
    )

    return DedupResult(
        unique_papers=unique,
        duplicate_pairs=duplicate_pairs,
        stats=stats,
    )


# ── Grouping ─────────────────────────────────────────────────────────


class _Group:
    """Records believed to describe one work, with their match keys."""

    def __init__(self, first: SourceRecord):
        self.records: list[SourceRecord] = []
        self.dois: set[str] = set()
        self.pmids: set[str] = set()
        self.title_keys: set[str] = set()
        self.titles: list[str] = []
        self.add(first)

    @property
    def has_identifier(self) -> bool:
        return bool(self.dois or self.pmids)

    def add(self, rec: SourceRecord) -> None:
        self.records.append(rec)
        doi = normalize_doi(rec.doi)
        if doi:
            self.dois.add(doi)
        pmid = normalize_pmid(rec.pmid)
        if pmid:
            self.pmids.add(pmid)
        self.title_keys.add(title_key(rec.title))
        self.titles.append(normalize_title(rec.title))


def _find_group(
    rec: SourceRecord,
    groups: list[_Group],
    threshold: float,
) -> Optional[_Group]:
    """Find the group this record duplicates, or None."""
    # Priority 1: DOI exact match
    doi = normalize_doi(rec.doi)
    if doi:
        for group in groups:
            if doi in group.dois:
                return group

    # Priority 2: PMID exact match
    pmid = normalize_pmid(rec.pmid)
    if pmid:
        for group in groups:
            if pmid in group.pmids:
                return group

    # Priority 3: title match, only between identifier-less records
    if doi or pmid:
        return None

    key = title_key(rec.title)
    norm = normalize_title(rec.title)
    for group in groups:
        if group.has_identifier:
            continue
        if key and key in group.title_keys:
            return group
        for existing in group.titles:
            if title_similarity(norm, existing) >= threshold:
                return group

    return None


# ── Representative ───────────────────────────────────────────────────


def completeness(rec: SourceRecord) -> int:
    """Number of populated optional bibliographic fields."""
    score = 0
    for field in _COMPLETENESS_FIELDS:
        value = getattr(rec, field)
        if value is None or value == "" or value == []:
            continue
        score += 1
    return score


def _choose_representative(
    records: list[SourceRecord],
    policy: RepresentativePolicy,
) -> SourceRecord:
    # records are already in canonical order, so max() keeps the earliest on ties
    if policy == "first_seen":
        return records[0]
    return max(records, key=completeness)


def _unify(rep: SourceRecord, records: list[SourceRecord]) -> UnifiedPaper:
    sources: set[str] = set()
    for rec in records:
        sources.add(rec.source)
        sources.update(getattr(rec, "sources", []))

    data = rep.model_dump(exclude={"sources"})
    data["sources"] = sorted(sources)
    return UnifiedPaper.model_validate(data)


def _canonical_key(rec: SourceRecord) -> tuple:
    return (
        rec.source,
        rec.source_id,
        rec.title,
        normalize_doi(rec.doi) or "",
        normalize_pmid(rec.pmid) or "",
    )


# ── Helpers ──────────────────────────────────────────────────────────


_PUNCT_RE = re.compile(r"[^\w\s]", re.UNICODE)
_SPACE_RE = re.compile(r"\s+")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]")
_DOI_PREFIXES = (
    "https://doi.org/",
    "http://doi.org/",
    "https://dx.doi.org/",
    "http://dx.doi.org/",
    "doi:",
)


def normalize_title(title: str) -> str:
    """Lowercase, strip punctuation, collapse whitespace."""
    t = title.lower()
    t = _PUNCT_RE.sub("", t)
    t = _SPACE_RE.sub(" ", t).strip()
    return t


def title_key(title: str) -> str:
    """Lowercase alphanumerics only, for exact title comparison."""
    return _NON_ALNUM_RE.sub("", title.lower())


def title_similarity(t1: str, t2: str) -> float:
    """Fuzzy similarity between two normalized titles (0.0–1.0)."""
    return SequenceMatcher(None, t1, t2).ratio()


def normalize_doi(doi: Optional[str]) -> Optional[str]:
    """Case-folded bare DOI, or None when empty."""
    if not doi:
        return None
    d = doi.strip().lower()
    for prefix in _DOI_PREFIXES:
        if d.startswith(prefix):
            d = d[len(prefix):].strip()
            break
    return d or None


def normalize_pmid(pmid: Optional[str]) -> Optional[str]:
    if not pmid:
        return None
    return pmid.strip() or None
