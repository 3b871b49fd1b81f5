"""Tests for the PubMed adapter (E-utilities faked with httpx.MockTransport)."""

import httpx
import pytest

from research.core.rate_limiter import RateLimiter
from research.search.models import DateRange, SourceRecord
from research.search.pubmed import PubMedAdapter, _build_query, _parse_record

MEDLINE = """\
PMID- 111
TI  - Basal insulin titration in type 2 diabetes: a randomized trial.
AB  - Background: Titration of basal insulin is often delayed. Methods: We
      randomized 400 adults to nurse-led or usual titration.
AU  - Smith J
AU  - Doe A
DP  - 2021 Mar
JT  - Diabetes care
AID - 10.2337/dc20-1234 [doi]
AID - dc20-1234 [pii]

PMID- 222
TI  - Telephone support for insulin initiation.
AU  - Brown K
DP  - 2019
JT  - BMJ open

"""


# ── Factories ────────────────────────────────────────────────────────


def _esearch(ids: list[str]) -> dict:
    return {"esearchresult": {"count": str(len(ids)), "idlist": ids}}


def _adapter(handler, **kw) -> PubMedAdapter:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return PubMedAdapter(RateLimiter(10, 1.0), client=client, timeout=5.0, **kw)


def _ok_handler(seen: list[httpx.Request]):
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.url.path.endswith("esearch.fcgi"):
            return httpx.Response(200, json=_esearch(["111", "222"]))
        return httpx.Response(200, text=MEDLINE)

    return handler


# ── Query Construction ───────────────────────────────────────────────


def test_build_query_with_date_range():
    query = _build_query("insulin AND diabetes", DateRange(start=2015, end=2025))
    assert query == "(insulin AND diabetes) AND 2015:2025[dp]"


def test_build_query_without_date_range():
    assert _build_query("insulin") == "insulin"


# ── Record Parsing ───────────────────────────────────────────────────


def test_parse_record_full():
    rec = _parse_record(
        {
            "PMID": "111",
            "TI": "A title.",
            "AB": "An abstract.",
            "AU": ["Smith J", "Doe A"],
            "DP": "2021 Mar",
            "JT": "Diabetes care",
            "AID": ["x [pii]", "10.1/abc [doi]"],
        }
    )
    assert isinstance(rec, SourceRecord)
    assert rec.source == "pubmed"
    assert rec.source_id == rec.pmid == "111"
    assert rec.doi == "10.1/abc"
    assert rec.year == 2021
    assert rec.authors == ["Smith J", "Doe A"]
    assert rec.citation_count is None


def test_parse_record_single_author_string():
    rec = _parse_record({"PMID": "1", "TI": "T", "AU": "Solo A"})
    assert rec.authors == ["Solo A"]


def test_parse_record_bad_date_gives_no_year():
    rec = _parse_record({"PMID": "1", "TI": "T", "DP": "Spring"})
    assert rec.year is None


def test_parse_record_without_title_skipped():
    assert _parse_record({"PMID": "1"}) is None


# ── Search (mocked HTTP) ─────────────────────────────────────────────


async def test_search_parses_medline():
    seen: list[httpx.Request] = []
    adapter = _adapter(_ok_handler(seen))

    records = await adapter.search("insulin", 50, DateRange(start=2015, end=2025))

    assert [r.pmid for r in records] == ["111", "222"]
    assert records[0].doi == "10.2337/dc20-1234"
    assert "400 adults" in records[0].abstract
    assert records[1].doi is None

    esearch = seen[0]
    assert esearch.url.params["term"] == "(insulin) AND 2015:2025[dp]"
    assert esearch.url.params["retmax"] == "50"
    assert seen[1].url.params["id"] == "111,222"


async def test_every_request_goes_through_limiter():
    adapter = _adapter(_ok_handler([]))
    await adapter.search("insulin", 10)
    assert adapter.limiter.usage()["used"] == 2


async def test_api_key_and_email_sent():
    seen: list[httpx.Request] = []
    adapter = _adapter(_ok_handler(seen), api_key="k3y", email="me@example.org")
    await adapter.search("insulin", 10)
    assert all(r.url.params["api_key"] == "k3y" for r in seen)
    assert seen[0].url.params["email"] == "me@example.org"


async def test_limit_clamped():
    seen: list[httpx.Request] = []
    adapter = _adapter(_ok_handler(seen))
    await adapter.search("insulin", 50000)
    assert seen[0].url.params["retmax"] == "10000"


async def test_no_hits_skips_efetch():
    seen: list[httpx.Request] = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=_esearch([]))

    records = await _adapter(handler).search("nothing", 10)
    assert records == []
    assert len(seen) == 1


# ── Soft Failure ─────────────────────────────────────────────────────


async def test_empty_query_makes_no_request():
    def handler(request):
        raise AssertionError("no request expected")

    outcome = await _adapter(handler).run("   ", 10)
    assert outcome.records == []
    assert outcome.error == "empty query"


async def test_unauthorized_returns_empty():
    outcome = await _adapter(lambda r: httpx.Response(401)).run("insulin", 10)
    assert outcome.records == []
    assert not outcome.ok
    assert "refused access" in outcome.error


async def test_server_error_returns_empty():
    outcome = await _adapter(lambda r: httpx.Response(503)).run("insulin", 10)
    assert outcome.records == []
    assert outcome.error == "HTTP 503"


async def test_timeout_returns_empty_without_retry():
    calls = []

    def handler(request):
        calls.append(request)
        raise httpx.ReadTimeout("timed out", request=request)

    outcome = await _adapter(handler).run("insulin", 10)
    assert outcome.records == []
    assert "timed out" in outcome.error
    assert len(calls) == 1


async def test_transport_error_retried_once():
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) == 1:
            raise httpx.ConnectError("connection reset", request=request)
        if request.url.path.endswith("esearch.fcgi"):
            return httpx.Response(200, json=_esearch(["111"]))
        return httpx.Response(200, text=MEDLINE)

    records = await _adapter(handler).search("insulin", 10)
    assert len(records) == 2  # efetch returns both canned records
    assert len(calls) == 3


async def test_malformed_json_returns_empty():
    outcome = await _adapter(lambda r: httpx.Response(200, text="<html>")).run("insulin", 10)
    assert outcome.records == []
    assert outcome.error.startswith("malformed response")


# ── Live Search ──────────────────────────────────────────────────────


@pytest.mark.network
async def test_live_search_returns_records():
    async with PubMedAdapter(RateLimiter(3, 1.0)) as adapter:
        records = await adapter.search(
            "basal insulin titration type 2 diabetes", 20, DateRange(start=2015, end=2025)
        )
    assert len(records) > 0
    assert all(r.source == "pubmed" and r.pmid for r in records)
