"""HTTP tests for /api/sheets endpoints."""

import httpx
import pytest

from funnelboard.routers.sheets import get_sheet_fetcher
from funnelboard.services.sheet_fetcher import SheetFetcher


SHEET_URL = "https://docs.google.com/spreadsheets/d/abc/edit#gid=0"

CAMPAIGN_CSV = (
    "Date,Account Name,Campaign Name,Spend,Impressions,Action Link Clicks\n"
    "2025-01-15,Acme,Black Friday,100,50,10\n"
    "2025-01-14,Acme,Always On,20,100,2\n"
    "2025-01-13,Beta,Black Friday,5,10,1\n"
    "not a date,Acme,Totals,125,160,13\n"
)


@pytest.fixture
def serve_csv(app):
    """Make the sheet fetcher answer every request with the given body."""
    def _serve(body, status_code=200):
        transport = httpx.MockTransport(lambda request: httpx.Response(status_code, text=body))
        app.dependency_overrides[get_sheet_fetcher] = lambda: SheetFetcher(timeout=5, transport=transport)

    return _serve


def test_stract_returns_mapped_rows(client, serve_csv):
    serve_csv(CAMPAIGN_CSV)

    response = client.get("/api/sheets/stract", params={"url": SHEET_URL})

    assert response.status_code == 200
    body = response.json()
    assert body["count"] == 3
    assert body["dateRange"] == {"start": "2025-01-13", "end": "2025-01-15"}
    assert "linkClicks" in body["columnsFound"]
    first = body["data"][0]
    assert first["date"] == "2025-01-15"
    assert first["campaignName"] == "Black Friday"
    assert first["linkClicks"] == 10


def test_stract_requires_url(client):
    response = client.get("/api/sheets/stract")
    assert response.status_code == 400


def test_stract_rejects_non_sheet_url(client):
    response = client.get("/api/sheets/stract", params={"url": "https://example.com/x"})
    assert response.status_code == 400


def test_stract_missing_date_column_reports_headers(client, serve_csv):
    serve_csv("Campaign,Spend\nA,1\n")

    response = client.get("/api/sheets/stract", params={"url": SHEET_URL})

    assert response.status_code == 400
    assert response.json()["detail"]["foundHeaders"] == ["Campaign", "Spend"]


def test_stract_header_only_sheet_is_empty(client, serve_csv):
    serve_csv("Date,Spend\n")

    response = client.get("/api/sheets/stract", params={"url": SHEET_URL})

    assert response.status_code == 200
    body = response.json()
    assert body["data"] == []
    assert body["count"] == 0
    assert body["message"]


def test_stract_download_failure_is_502(client, serve_csv):
    serve_csv("nope", status_code=403)

    response = client.get("/api/sheets/stract", params={"url": SHEET_URL})

    assert response.status_code == 502
    assert "Publish to web" in response.json()["detail"]


def test_metrics_endpoint_filters_and_aggregates(client, serve_csv):
    serve_csv(CAMPAIGN_CSV)

    response = client.get(
        "/api/sheets/stract/metrics",
        params={"url": SHEET_URL, "start_date": "2025-01-14", "end_date": "2025-01-15", "account_name": "Acme"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["count"] == 2
    assert body["metrics"]["totalSpend"] == pytest.approx(120)
    assert body["metrics"]["avgCtr"] == pytest.approx(12 / 150 * 100)
    assert body["uniqueAccounts"] == ["Acme", "Beta"]
    assert [d["date"] for d in body["dailyData"]] == ["2025-01-14", "2025-01-15"]
    assert body["campaignSummary"][0]["campaignName"] == "Black Friday"


def test_metrics_endpoint_rejects_unknown_preset(client, serve_csv):
    serve_csv(CAMPAIGN_CSV)

    response = client.get("/api/sheets/stract/metrics", params={"url": SHEET_URL, "preset": "forever"})

    assert response.status_code == 400
