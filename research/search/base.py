"""Common request plumbing for bibliographic source adapters.

Every adapter goes through ``SourceAdapter.run``, which converts any failure
talking to the source into an empty ``SearchOutcome`` carrying a diagnostic.
Callers never see an exception from a search.
"""

import logging
import re
import time
from typing import Any, Callable, ClassVar, Iterable, Optional

import httpx

from research.core.rate_limiter import RateLimiter
from research.search.models import DateRange, SearchOutcome, Source, SourceRecord

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0
USER_AGENT = "research-evidence-pipeline/0.1"

# One immediate retry on connection-level errors; timeouts are never retried.
_MAX_ATTEMPTS = 2


class SourceUnavailable(Exception):
    """The source refused the request (authentication or access restriction)."""


class SourceAdapter:
    """Base class for one bibliographic source.

    Subclasses set ``source`` and ``display_name`` and implement ``_search``,
    which may raise freely: ``run`` owns the soft-failure boundary.
    """

    source: ClassVar[Source]
    display_name: ClassVar[str] = "Source"

    def __init__(
        self,
        limiter: RateLimiter,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.limiter = limiter
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        """Lazy-init HTTP client (unless one was injected)."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers={"Accept": "application/json", "User-Agent": USER_AGENT},
            )
            self._owns_client = True
        return self._client

    # ── Public API ───────────────────────────────────────────────────

    async def search(
        self,
        query: str,
        limit: int,
        date_range: Optional[DateRange] = None,
    ) -> list[SourceRecord]:
        """Search the source; an unavailable source yields an empty list."""
        outcome = await self.run(query, limit, date_range)
        return outcome.records

    async def run(
        self,
        query: str,
        limit: int,
        date_range: Optional[DateRange] = None,
    ) -> SearchOutcome:
        """Search the source and report records plus any diagnostic."""
        t = time.monotonic()

        if not query or not query.strip():
            logger.warning("%s: empty query, skipping search", self.display_name)
            return SearchOutcome(source=self.source, error="empty query")

        try:
            records = await self._search(query.strip(), limit, date_range)
        except httpx.TimeoutException:
            error = f"timed out after {self.timeout:.0f}s"
        except httpx.HTTPStatusError as exc:
            error = f"HTTP {exc.response.status_code}"
        except httpx.TransportError as exc:
            error = f"network error: {exc}"
        except SourceUnavailable as exc:
            error = str(exc)
        except ValueError as exc:
            # JSONDecodeError and pydantic.ValidationError both land here
            error = f"malformed response: {exc}"
        except Exception as exc:
            logger.exception("%s: unexpected search failure", self.display_name)
            error = f"unexpected error: {exc!r}"
        else:
            elapsed = time.monotonic() - t
            logger.info(
                "%s: %d records in %.1fs", self.display_name, len(records), elapsed
            )
            return SearchOutcome(source=self.source, records=records, elapsed=elapsed)

        elapsed = time.monotonic() - t
        logger.warning(
            "%s search failed (%s); continuing without it", self.display_name, error
        )
        return SearchOutcome(source=self.source, error=error, elapsed=elapsed)

    async def aclose(self) -> None:
        """Close the HTTP client if this adapter created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.aclose()

    # ── Subclass Hooks ───────────────────────────────────────────────

    async def _search(
        self,
        query: str,
        limit: int,
        date_range: Optional[DateRange],
    ) -> list[SourceRecord]:
        raise NotImplementedError

    # ── Helpers ──────────────────────────────────────────────────────

    async def _get(
        self,
        url: str,
        params: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> httpx.Response:
        """Rate-limited GET; raises on any non-success status."""
        attempt = 1
        while True:
            await self.limiter.acquire()
            try:
                response = await self.client.get(
                    url, params=params, headers=headers, timeout=self.timeout
                )
                break
            except httpx.TimeoutException:
                raise
            except httpx.TransportError as exc:
                if attempt >= _MAX_ATTEMPTS:
                    raise
                logger.warning(
                    "%s request failed (attempt %d/%d): %s, retrying",
                    self.display_name,
                    attempt,
                    _MAX_ATTEMPTS,
                    exc,
                )
                attempt += 1

        if response.status_code in (401, 403):
            raise SourceUnavailable(
                f"{self.display_name} refused access (HTTP {response.status_code})"
            )
        response.raise_for_status()
        return response

    def _parse_items(
        self,
        items: Iterable[Any],
        parse: Callable[[Any], Optional[SourceRecord]],
    ) -> list[SourceRecord]:
        """Parse each native item; a malformed item is skipped, not fatal."""
        records: list[SourceRecord] = []
        skipped = 0
        for item in items:
            try:
                record = parse(item)
            except (ValueError, TypeError, KeyError, AttributeError) as exc:
                logger.debug("%s: skipping malformed item: %s", self.display_name, exc)
                skipped += 1
                continue
            if record is None:
                skipped += 1
                continue
            records.append(record)

        if skipped:
            logger.warning(
                "%s: skipped %d unusable item(s), kept %d",
                self.display_name,
                skipped,
                len(records),
            )
        return records


# ── Field Helpers ────────────────────────────────────────────────────

_YEAR_RE = re.compile(r"\b(1[89]\d{2}|2\d{3})\b")


def parse_year(value: Any) -> Optional[int]:
    """Four-digit year from an int or a date-like string; None if unreadable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if 1800 <= value <= 2999 else None
    if isinstance(value, str):
        match = _YEAR_RE.search(value)
        return int(match.group(1)) if match else None
    return None
