"""Shared data models for search modules."""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

Source = Literal["pubmed", "semantic_scholar", "cochrane"]


class SourceRecord(BaseModel):
    """A single bibliographic item returned by one search source."""

    model_config = ConfigDict(frozen=True)

    source: Source
    source_id: str
    doi: Optional[str] = None
    pmid: Optional[str] = None
    title: str
    abstract: Optional[str] = None
    authors: list[str] = Field(default_factory=list)
    year: Optional[int] = None
    journal: Optional[str] = None
    citation_count: Optional[int] = None


class UnifiedPaper(SourceRecord):
    """A deduplicated work: the representative record of its duplicate group."""

    sources: list[Source] = Field(default_factory=list)


class SearchOutcome(BaseModel):
    """What one adapter produced for one query: records, or an empty list and why."""

    model_config = ConfigDict(frozen=True)

    source: Source
    records: list[SourceRecord] = Field(default_factory=list)
    error: Optional[str] = None
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None


class DateRange(BaseModel):
    """Inclusive publication-year window."""

    model_config = ConfigDict(frozen=True)

    start: int
    end: int

    @model_validator(mode="after")
    def valid_order(self) -> "DateRange":
        if self.start > self.end:
            raise ValueError(
                f"Start year ({self.start}) must be <= end year ({self.end})"
            )
        return self
