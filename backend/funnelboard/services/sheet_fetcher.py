"""Google Sheets CSV fetcher.

WHAT:
    Given any shareable Google Sheets URL, download the tab as CSV and return
    the parsed rows.

WHY:
    A sheet exposes CSV through different endpoints depending on how it was
    shared, and the caller cannot know which one applies:
        1. /export?format=csv         plain "anyone with the link" share
        2. /gviz/tq?tqx=out:csv       visualization query endpoint
        3. /pub?output=csv            "publish to web"
    We try them in that order and return on the first success. A 2xx answer
    carrying an HTML page (Google's login wall for private sheets) is treated
    as a failed attempt, not as CSV.

    Links copied from "publish to web" (`/d/e/<token>/pubhtml`) carry a
    publish token instead of the sheet id; only the /pub shape accepts it.

ARCHITECTURE:
    url ──► extract ids ──► candidate URLs ──► GET (first 2xx non-HTML wins)
                                                   │
                                          all failed ──► SheetFetchError (502)

REFERENCES:
    - funnelboard/routers/sheets.py (HTTP surface)
    - funnelboard/services/csv_parser.py
"""

import logging
import re
from dataclasses import dataclass
from typing import List, Optional

import httpx

from ..config import get_settings
from .csv_parser import parse_csv
from .errors import InvalidSheetUrlError, SheetFetchError

logger = logging.getLogger(__name__)

SHEETS_BASE = "https://docs.google.com/spreadsheets/d"

_PUBLISHED_RE = re.compile(r"/d/e/([a-zA-Z0-9_-]+)")
_SHEET_ID_RE = re.compile(r"/d/([a-zA-Z0-9_-]+)")
_GID_RE = re.compile(r"gid=(\d+)")

FETCH_GUIDANCE = (
    "Could not download the spreadsheet as CSV. Make sure it is shared as "
    "'Anyone with the link' or published via File > Share > Publish to web."
)


@dataclass(frozen=True)
class SheetLocator:
    """Identifiers extracted from a sheet URL."""

    sheet_id: str
    gid: str = "0"
    published: bool = False

    def candidate_urls(self) -> List[str]:
        if self.published:
            return [f"{SHEETS_BASE}/e/{self.sheet_id}/pub?output=csv&gid={self.gid}"]
        return [
            f"{SHEETS_BASE}/{self.sheet_id}/export?format=csv&gid={self.gid}",
            f"{SHEETS_BASE}/{self.sheet_id}/gviz/tq?tqx=out:csv&gid={self.gid}",
            f"{SHEETS_BASE}/{self.sheet_id}/pub?output=csv&gid={self.gid}",
        ]


def parse_sheet_url(url: Optional[str]) -> SheetLocator:
    """Extract sheet id (or publish token) and gid; gid defaults to "0".

    Raises:
        InvalidSheetUrlError: no `/d/<id>` segment in the URL.
    """
    if not url or not url.strip():
        raise InvalidSheetUrlError("Spreadsheet URL is required")

    gid_match = _GID_RE.search(url)
    gid = gid_match.group(1) if gid_match else "0"

    published = _PUBLISHED_RE.search(url)
    if published:
        return SheetLocator(sheet_id=published.group(1), gid=gid, published=True)

    match = _SHEET_ID_RE.search(url)
    if not match:
        raise InvalidSheetUrlError("Invalid spreadsheet URL")
    return SheetLocator(sheet_id=match.group(1), gid=gid)


def _looks_like_html(response: httpx.Response) -> bool:
    content_type = response.headers.get("content-type", "")
    if "text/html" in content_type:
        return True
    head = response.text[:200].lstrip().lower()
    return head.startswith("<!doctype html") or head.startswith("<html")


class SheetFetcher:
    """Downloads sheet tabs as CSV with ordered endpoint fallbacks.

    Usage:
        fetcher = SheetFetcher()
        rows = await fetcher.fetch_rows("https://docs.google.com/spreadsheets/d/abc/edit#gid=0")

    Tests pass `transport=httpx.MockTransport(handler)`.
    """

    def __init__(self, timeout: Optional[float] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout if timeout is not None else get_settings().SHEET_FETCH_TIMEOUT_SECONDS
        self.transport = transport

    async def fetch_text(self, url: str) -> str:
        """Return the CSV body of the first endpoint that answers with CSV.

        Raises:
            InvalidSheetUrlError: URL has no sheet id.
            SheetFetchError: every endpoint failed.
        """
        locator = parse_sheet_url(url)
        candidates = locator.candidate_urls()
        last_status: Optional[int] = None
        last_error: Optional[str] = None

        logger.info(f"[SHEETS] Fetching sheet {locator.sheet_id} (gid={locator.gid}, published={locator.published})")

        async with httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            transport=self.transport,
            headers={"Cache-Control": "no-cache"},
        ) as client:
            for candidate in candidates:
                try:
                    response = await client.get(candidate)
                except httpx.TimeoutException:
                    last_status, last_error = None, "timeout"
                    logger.warning(f"[SHEETS] Timeout fetching {candidate}")
                    continue
                except httpx.RequestError as e:
                    last_status, last_error = None, str(e)
                    logger.warning(f"[SHEETS] Error fetching {candidate}: {e}")
                    continue

                if not response.is_success:
                    last_status, last_error = response.status_code, f"HTTP {response.status_code}"
                    logger.warning(f"[SHEETS] {candidate} answered {response.status_code}")
                    continue

                if _looks_like_html(response):
                    last_status, last_error = response.status_code, "HTML page instead of CSV"
                    logger.warning(f"[SHEETS] {candidate} returned HTML (sheet is probably private)")
                    continue

                logger.info(f"[SHEETS] Downloaded {len(response.text)} bytes from {candidate}")
                return response.text

        logger.error(
            f"[SHEETS] All {len(candidates)} endpoints failed for sheet {locator.sheet_id} "
            f"(last: {last_error})"
        )
        raise SheetFetchError(
            f"{FETCH_GUIDANCE} (last error: {last_error})",
            last_status=last_status,
            attempted_urls=candidates,
        )

    async def fetch_rows(self, url: str) -> List[List[str]]:
        """Fetch and parse; first row is the header row."""
        return parse_csv(await self.fetch_text(url))
