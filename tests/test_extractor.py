"""Tests for narrative extraction and the full-text availability check."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from research.agents.extractor import (
    DEFAULT_LIMITATIONS,
    SHORT_ABSTRACT_FINDINGS,
    SHORT_ABSTRACT_LIMITATIONS,
    SHORT_ABSTRACT_METHODOLOGY,
    check_full_text_availability,
    extract_key_findings,
    extract_limitations,
    extract_methodology_notes,
    placeholder_article,
    process_article,
)
from research.agents.models import (
    KeyFindings,
    Limitations,
    MethodologyNotes,
    ProcessedArticle,
    RankedPaper,
)
from research.core.project_spec import LLMSettings

SETTINGS = LLMSettings(timeout=5.0)

ABSTRACT = (
    "Background: Basal insulin titration is often delayed in primary care. "
    "Methods: 400 adults were randomized to nurse-led or usual titration. "
    "Results: HbA1c fell 0.8% more with nurse-led titration at 6 months."
)


def _ranked(abstract=ABSTRACT, doi="10.1/x", pmid="111", **kw) -> RankedPaper:
    return RankedPaper(
        source="pubmed",
        source_id=pmid or "id",
        title="Nurse-led titration trial",
        abstract=abstract,
        doi=doi,
        pmid=pmid,
        sources=["pubmed"],
        llm_relevance=0.9,
        recency_weight=0.8,
        citation_weight=0.5,
        relevance_score=0.82,
        **kw,
    )


def _fake_chat(findings=None, methodology=None, limitations=None, fail=()):
    """chat_json stand-in dispatching on the requested schema."""

    async def fake(prompt, system, schema, **kw):
        if schema.__name__ in fail:
            raise ValueError(f"bad {schema.__name__}")
        if schema is KeyFindings:
            return KeyFindings(key_findings=findings or ["HbA1c fell 0.8%."])
        if schema is MethodologyNotes:
            return MethodologyNotes(methodology_notes=methodology or "RCT of 400 adults.")
        if schema is Limitations:
            return Limitations(limitations=limitations or ["Single country."])
        raise AssertionError(schema)

    return fake


# ── Individual Extractions ───────────────────────────────────────────


async def test_key_findings_fallback_on_failure():
    with patch("research.agents.extractor.chat_json", AsyncMock(side_effect=TimeoutError())):
        findings = await extract_key_findings("T", ABSTRACT, SETTINGS)
    assert findings == [f"Main findings: {ABSTRACT[:200]}..."]


async def test_key_findings_fallback_on_empty_list():
    with patch(
        "research.agents.extractor.chat_json",
        AsyncMock(return_value=KeyFindings(key_findings=["  "])),
    ):
        findings = await extract_key_findings("T", ABSTRACT, SETTINGS)
    assert findings[0].startswith("Main findings: ")


async def test_methodology_fallback_on_failure():
    with patch("research.agents.extractor.chat_json", AsyncMock(side_effect=ValueError("bad json"))):
        notes = await extract_methodology_notes(ABSTRACT, SETTINGS)
    assert notes == f"Methodology: {ABSTRACT[:150]}..."


async def test_limitations_fallback_on_failure():
    with patch("research.agents.extractor.chat_json", AsyncMock(side_effect=ValueError("bad json"))):
        limitations = await extract_limitations(ABSTRACT, SETTINGS)
    assert limitations == DEFAULT_LIMITATIONS


async def test_limitations_passthrough():
    with patch(
        "research.agents.extractor.chat_json",
        AsyncMock(return_value=Limitations(limitations=["Open label.", "Short follow-up."])),
    ):
        limitations = await extract_limitations(ABSTRACT, SETTINGS)
    assert limitations == ["Open label.", "Short follow-up."]


# ── Full-Text Availability ───────────────────────────────────────────


async def test_full_text_by_doi():
    works = MagicMock()
    works.return_value.__getitem__.return_value = {"open_access": {"is_oa": True}}
    with patch("research.agents.extractor.Works", works):
        assert await check_full_text_availability("10.1/x", None) is True
    works.return_value.__getitem__.assert_called_once_with("https://doi.org/10.1/x")


async def test_full_text_by_pmid():
    works = MagicMock()
    works.return_value.__getitem__.return_value = {"open_access": {"is_oa": False}}
    with patch("research.agents.extractor.Works", works):
        assert await check_full_text_availability(None, "111") is False
    works.return_value.__getitem__.assert_called_once_with("pmid:111")


async def test_full_text_lookup_failure_is_false():
    works = MagicMock()
    works.return_value.__getitem__.side_effect = RuntimeError("404")
    with patch("research.agents.extractor.Works", works):
        assert await check_full_text_availability("10.1/x", None) is False


async def test_full_text_without_identifiers_is_false():
    with patch("research.agents.extractor.Works") as works:
        assert await check_full_text_availability(None, None) is False
    works.assert_not_called()


# ── Article Processing ───────────────────────────────────────────────


async def test_process_article_all_fields():
    with patch("research.agents.extractor.chat_json", side_effect=_fake_chat()), patch(
        "research.agents.extractor.check_full_text_availability", AsyncMock(return_value=True)
    ):
        article = await process_article(_ranked(), SETTINGS)

    assert isinstance(article, ProcessedArticle)
    assert article.key_findings == ["HbA1c fell 0.8%."]
    assert article.methodology_notes == "RCT of 400 adults."
    assert article.limitations == ["Single country."]
    assert article.full_text_available is True
    assert article.relevance_score == 0.82


async def test_one_failed_extraction_keeps_the_others():
    with patch(
        "research.agents.extractor.chat_json", side_effect=_fake_chat(fail={"MethodologyNotes"})
    ), patch("research.agents.extractor.check_full_text_availability", AsyncMock(return_value=False)):
        article = await process_article(_ranked(), SETTINGS)

    assert article.key_findings == ["HbA1c fell 0.8%."]
    assert article.methodology_notes.startswith("Methodology: ")
    assert article.limitations == ["Single country."]


async def test_short_abstract_skips_llm():
    chat = AsyncMock()
    with patch("research.agents.extractor.chat_json", chat), patch(
        "research.agents.extractor.check_full_text_availability", AsyncMock(return_value=False)
    ):
        article = await process_article(_ranked(abstract="Too short."), SETTINGS)

    chat.assert_not_called()
    assert article.key_findings == SHORT_ABSTRACT_FINDINGS
    assert article.methodology_notes == SHORT_ABSTRACT_METHODOLOGY
    assert article.limitations == SHORT_ABSTRACT_LIMITATIONS


def test_placeholder_article_keeps_ranking():
    article = placeholder_article(_ranked())
    assert article.relevance_score == 0.82
    assert article.full_text_available is False
    assert article.key_findings == SHORT_ABSTRACT_FINDINGS


# ── Live Ollama ──────────────────────────────────────────────────────


@pytest.mark.ollama
async def test_live_key_findings():
    findings = await extract_key_findings("Nurse-led titration trial", ABSTRACT, LLMSettings())
    assert len(findings) >= 1
