"""
Sheets router
-------------
Purpose:
- Read a Google Sheets campaign export and return normalised CampaignRow
  records (`/api/sheets/stract`).
- Optionally aggregate the same rows server side (`/api/sheets/stract/metrics`)
  so a client can ask for the dashboard numbers of one date range in one call.
Design choices:
- Both endpoints are unauthenticated reads of a sheet the caller already has
  the link to; nothing is persisted.
- Parsing is permissive: bad numbers become 0 and rows with a non-ISO date are
  dropped. `columnsFound` reports which fields matched a header so silently
  missing columns can be spotted.
- Fetch failures across every endpoint shape surface as one 502 with
  "publish to web" guidance.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from .. import schemas
from ..services.errors import InvalidSheetUrlError, SheetFetchError
from ..services.metrics_aggregator import aggregate, date_range_from_preset
from ..services.row_mapper import MappedSheet, map_rows
from ..services.sheet_fetcher import SheetFetcher
from ..telemetry import capture_exception

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/sheets",
    tags=["Sheets"],
    responses={
        400: {"model": schemas.ErrorResponse, "description": "Bad Request"},
        502: {"model": schemas.ErrorResponse, "description": "Sheet could not be downloaded"},
        500: {"model": schemas.ErrorResponse, "description": "Internal Server Error"},
    }
)

EMPTY_SHEET_MESSAGE = "Sheet is empty or has no data rows"


def get_sheet_fetcher() -> SheetFetcher:
    """Dependency so tests can swap in a fetcher with a mock transport."""
    return SheetFetcher()


async def _load_sheet(url: Optional[str], fetcher: SheetFetcher) -> Optional[MappedSheet]:
    """Fetch, parse and map a sheet.

    Returns None when the sheet has no data rows.

    Raises:
        HTTPException: 400 (missing/invalid URL, no date column),
            502 (download failed), 500 (anything unexpected).
    """
    if not url:
        raise HTTPException(status_code=400, detail="Query parameter 'url' is required")

    try:
        parsed = await fetcher.fetch_rows(url)
    except InvalidSheetUrlError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except SheetFetchError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message) from e
    except Exception as e:
        logger.exception(f"[SHEETS] Unexpected error reading {url}")
        capture_exception(e, extra={"url": url})
        raise HTTPException(status_code=500, detail="Failed to read spreadsheet") from e

    if len(parsed) < 2:
        logger.info(f"[SHEETS] Sheet has {len(parsed)} rows, nothing to map")
        return None

    mapped = map_rows(parsed)
    if not mapped.has_date_column:
        logger.warning(f"[SHEETS] No date column among headers: {mapped.headers}")
        raise HTTPException(
            status_code=400,
            detail={
                "error": "Required column 'date' not found in the sheet header",
                "foundHeaders": mapped.headers,
            },
        )
    return mapped


@router.get(
    "/stract",
    response_model=schemas.SheetDataResponse,
    summary="Read campaign rows from a Google Sheet",
    description="""
    Download the sheet as CSV, resolve its columns and return one record per
    row with a valid ISO date, newest first.

    Accepted URL shapes:
    - `https://docs.google.com/spreadsheets/d/<id>/edit#gid=<gid>`
    - published links `https://docs.google.com/spreadsheets/d/e/<token>/pubhtml`
    """
)
async def get_sheet_data(
    url: Optional[str] = Query(default=None, description="Google Sheets link"),
    fetcher: SheetFetcher = Depends(get_sheet_fetcher),
):
    mapped = await _load_sheet(url, fetcher)
    if mapped is None:
        return schemas.SheetDataResponse(message=EMPTY_SHEET_MESSAGE)

    date_range = mapped.date_range
    return schemas.SheetDataResponse(
        data=mapped.rows,
        count=len(mapped.rows),
        columns_found=mapped.columns_found,
        date_range=schemas.DateRange(**date_range) if date_range else None,
    )


@router.get(
    "/stract/metrics",
    response_model=schemas.MetricsResponse,
    summary="Aggregate campaign metrics from a Google Sheet",
)
async def get_sheet_metrics(
    url: Optional[str] = Query(default=None, description="Google Sheets link"),
    start_date: Optional[str] = Query(default=None, description="Inclusive ISO start date"),
    end_date: Optional[str] = Query(default=None, description="Inclusive ISO end date"),
    preset: Optional[str] = Query(default=None, description="today, yesterday, last7days, last30days, thisMonth, lastMonth"),
    account_name: Optional[str] = Query(default=None, description="Exact account name filter"),
    fetcher: SheetFetcher = Depends(get_sheet_fetcher),
):
    """
    Same rows as `/stract`, filtered by date range and account and reduced to
    totals, daily series and per-campaign summaries.

    An explicit start/end wins over `preset`.
    """
    if preset and not (start_date or end_date):
        try:
            start_date, end_date = date_range_from_preset(preset)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e

    mapped = await _load_sheet(url, fetcher)
    rows = mapped.rows if mapped else []

    result = aggregate(rows, start_date=start_date, end_date=end_date, account_name=account_name)
    logger.info(f"[METRICS] {result.count} of {len(rows)} rows selected ({start_date}..{end_date}, account={account_name})")
    return schemas.MetricsResponse(
        metrics=result.metrics,
        daily_data=result.daily_data,
        campaign_summary=result.campaign_summary,
        unique_accounts=result.unique_accounts,
        count=result.count,
    )
