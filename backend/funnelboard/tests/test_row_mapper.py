"""Tests for mapping parsed sheet rows into CampaignRow records."""

import pytest

from funnelboard.services.csv_parser import parse_csv
from funnelboard.services.metrics_aggregator import aggregate
from funnelboard.services.row_mapper import map_rows


SCENARIO_CSV = "Date,Campaign Name,Spend,Impressions,Action Link Clicks\n2025-01-15,Black Friday,100,50, 10\n"


def test_ingestion_scenario():
    mapped = map_rows(parse_csv(SCENARIO_CSV))

    assert len(mapped.rows) == 1
    row = mapped.rows[0]
    assert row.date == "2025-01-15"
    assert row.campaign_name == "Black Friday"
    assert row.spend == 100
    assert row.impressions == 50
    assert row.link_clicks == 10

    result = aggregate(mapped.rows)
    assert result.metrics.avg_ctr == pytest.approx(20)


def test_rows_serialize_with_camel_case_aliases():
    row = map_rows(parse_csv(SCENARIO_CSV)).rows[0]
    payload = row.model_dump(by_alias=True)
    assert payload["campaignName"] == "Black Friday"
    assert payload["linkClicks"] == 10
    assert payload["videoViews3s"] == 0


def test_invalid_dates_are_dropped_and_rows_sorted_descending():
    csv_text = (
        "Date,Campaign Name,Spend\n"
        "2025-01-01,A,1\n"
        "01/02/2025,B,2\n"
        ",C,3\n"
        "2025-01-03,D,4\n"
        "Total,,10\n"
    )
    mapped = map_rows(parse_csv(csv_text))

    assert [r.date for r in mapped.rows] == ["2025-01-03", "2025-01-01"]
    assert mapped.date_range == {"start": "2025-01-01", "end": "2025-01-03"}


def test_brazilian_numbers_and_missing_columns_default_to_zero():
    csv_text = 'Data;Campanha;Valor usado;Impressões\n2025-02-01;X;"1.234,56";1.000\n'
    mapped = map_rows(parse_csv(csv_text, delimiter=";"))

    row = mapped.rows[0]
    assert row.spend == pytest.approx(1234.56)
    assert row.impressions == 1000
    assert row.reach == 0
    assert row.purchases == 0
    assert mapped.columns_found == ["date", "campaignName", "spend", "impressions"]


def test_missing_date_column_maps_no_rows():
    mapped = map_rows(parse_csv("Campaign,Spend\nA,1\n"))
    assert not mapped.has_date_column
    assert mapped.rows == []
    assert mapped.headers == ["Campaign", "Spend"]
    assert mapped.date_range is None


def test_oversized_numeric_cell_maps_to_zero():
    mapped = map_rows([["Date", "Impressions"], ["2025-01-15", "9" * 5000]])
    assert [(row.date, row.impressions) for row in mapped.rows] == [("2025-01-15", 0)]


def test_empty_input():
    mapped = map_rows([])
    assert mapped.rows == []
    assert mapped.headers == []
