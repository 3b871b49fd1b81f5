"""Cochrane Library search adapter.

The Cochrane search endpoint is not a stable public API: access is often
restricted and the payload shape varies. Field names are resolved from a
set of known aliases, and anything that can't be read is skipped.
"""

import hashlib
import logging
import re
from typing import Any, Optional

import httpx
from pydantic import BaseModel, ConfigDict

from research.core.rate_limiter import RateLimiter
from research.search.base import DEFAULT_TIMEOUT, SourceAdapter, parse_year
from research.search.models import DateRange, SourceRecord

logger = logging.getLogger(__name__)

SEARCH_URL = "https://www.cochranelibrary.com/api/search"
JOURNAL = "Cochrane Database of Systematic Reviews"


# ── Native Payload ───────────────────────────────────────────────────


class _CochraneItem(BaseModel):
    """One review entry; every field is optional and loosely typed."""

    model_config = ConfigDict(extra="ignore")

    id: Any = None
    doi: Any = None
    identifier: Any = None
    title: Any = None
    name: Any = None
    headline: Any = None
    abstract: Any = None
    summary: Any = None
    description: Any = None
    authors: Any = None
    author: Any = None
    creators: Any = None
    year: Any = None
    publicationYear: Any = None
    publicationDate: Any = None
    published: Any = None
    date: Any = None


# ── Adapter ──────────────────────────────────────────────────────────


class CochraneAdapter(SourceAdapter):
    """Search the Cochrane Library for systematic reviews."""

    source = "cochrane"
    display_name = "Cochrane"

    def __init__(
        self,
        limiter: RateLimiter,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        super().__init__(limiter, client=client, timeout=timeout)

    async def _search(
        self,
        query: str,
        limit: int,
        date_range: Optional[DateRange],
    ) -> list[SourceRecord]:
        params = {"q": query, "limit": str(max(1, limit)), "type": "review"}
        logger.info("Cochrane query: %s", query[:100])

        response = await self._get(SEARCH_URL, params=params)
        items = extract_items(response.json())
        records = self._parse_items(items, _parse_item)

        # No server-side date filter
        if date_range is not None:
            records = [
                r
                for r in records
                if r.year is None or date_range.start <= r.year <= date_range.end
            ]
        return records[:limit]


# ── Payload Helpers ──────────────────────────────────────────────────


def extract_items(payload: Any) -> list[Any]:
    """Locate the list of reviews in any of the known response shapes."""
    if isinstance(payload, list):
        return payload
    if not isinstance(payload, dict):
        raise ValueError(f"unexpected Cochrane payload type: {type(payload).__name__}")

    for key in ("results", "reviews", "data"):
        items = payload.get(key)
        if items:
            if not isinstance(items, list):
                raise ValueError(f"Cochrane '{key}' is not a list")
            return items
    return []


def _first(*values: Any) -> Any:
    for value in values:
        if value not in (None, "", [], {}):
            return value
    return None


def _text(value: Any) -> Optional[str]:
    """Stripped string; None for blanks and non-string values."""
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def parse_authors(value: Any) -> list[str]:
    """Authors arrive as a delimited string, a list of names, or name objects."""
    if not value:
        return []
    if isinstance(value, str):
        return [a.strip() for a in re.split(r"[,;]", value) if a.strip()]
    if not isinstance(value, list):
        return []

    names: list[str] = []
    for entry in value:
        if isinstance(entry, str):
            name = entry.strip()
        elif isinstance(entry, dict):
            name = _first(entry.get("name"), entry.get("fullName"), entry.get("displayName"))
            if not name:
                name = f"{entry.get('firstName') or ''} {entry.get('lastName') or ''}"
            name = str(name).strip()
        else:
            continue
        if name:
            names.append(name)
    return names


# ── Item → SourceRecord ──────────────────────────────────────────────


def _parse_item(raw: Any) -> SourceRecord | None:
    if not isinstance(raw, dict):
        raise TypeError(f"expected object, got {type(raw).__name__}")
    item = _CochraneItem.model_validate(raw)

    title = _text(_first(item.title, item.name, item.headline))
    if not title:
        return None

    doi = item.doi
    if not doi and isinstance(item.identifier, dict):
        doi = item.identifier.get("doi")
    doi = _text(doi)

    source_id = _first(
        item.id,
        doi,
        item.identifier if isinstance(item.identifier, str) else None,
    )
    if source_id is None:
        source_id = "cochrane-" + hashlib.sha1(title.encode()).hexdigest()[:12]

    return SourceRecord(
        source="cochrane",
        source_id=str(source_id),
        doi=doi,
        title=title,
        abstract=_text(_first(item.abstract, item.summary, item.description)),
        authors=parse_authors(_first(item.authors, item.author, item.creators)),
        year=parse_year(
            _first(
                item.year,
                item.publicationYear,
                item.publicationDate,
                item.published,
                item.date,
            )
        ),
        journal=JOURNAL,
    )
