"""Tests for campaign metrics aggregation."""

from datetime import date

import pytest

from funnelboard.schemas import CampaignRow
from funnelboard.services.metrics_aggregator import (
    aggregate,
    compute_metrics,
    date_range_from_preset,
    filter_rows,
    safe_div,
)


def _row(day, campaign="A", account="Acme", **values):
    return CampaignRow(date=day, campaign_name=campaign, account_name=account, **values)


@pytest.fixture
def rows():
    return [
        _row("2025-01-03", "A", spend=50, impressions=1000, link_clicks=20, landing_page_views=10,
             leads=5, checkouts=4, purchases=2, purchase_value=300, reach=800),
        _row("2025-01-02", "B", spend=30, impressions=500, link_clicks=10, leads=3, reach=400),
        _row("2025-01-01", "A", spend=20, impressions=500, link_clicks=10, leads=2, reach=300),
        _row("2024-12-31", "C", account="Other", spend=999, impressions=1, link_clicks=1),
    ]


def test_safe_div():
    assert safe_div(1, 0) == 0
    assert safe_div(0, 0) == 0
    assert safe_div(3, 4) == 0.75


def test_date_filter_is_inclusive_and_total_matches_selected_rows(rows):
    result = aggregate(rows, start_date="2025-01-01", end_date="2025-01-02")

    assert result.count == 2
    assert result.metrics.total_spend == pytest.approx(50)
    assert {d.date for d in result.daily_data} == {"2025-01-01", "2025-01-02"}


def test_empty_selection_has_zero_ratios(rows):
    result = aggregate(rows, start_date="2030-01-01", end_date="2030-01-31")

    metrics = result.metrics
    assert result.count == 0
    assert metrics.avg_ctr == 0
    assert metrics.avg_cpc == 0
    assert metrics.avg_cpl == 0
    assert metrics.avg_roas == 0
    assert result.daily_data == []
    assert result.campaign_summary == []


def test_zero_volume_rows_have_zero_ratios():
    metrics = compute_metrics([_row("2025-01-01")])
    assert metrics.avg_ctr == 0
    assert metrics.avg_cpc == 0
    assert metrics.avg_cpm == 0
    assert metrics.avg_cpl == 0
    assert metrics.avg_roas == 0
    assert metrics.cac == 0
    assert metrics.connect_rate == 0


def test_derived_ratios(rows):
    metrics = aggregate(rows, start_date="2025-01-01").metrics

    assert metrics.total_spend == pytest.approx(100)
    assert metrics.total_impressions == 2000
    assert metrics.total_link_clicks == 40
    assert metrics.avg_ctr == pytest.approx(2.0)
    assert metrics.avg_cpc == pytest.approx(2.5)
    assert metrics.avg_cpm == pytest.approx(50)
    assert metrics.avg_cpl == pytest.approx(10)
    assert metrics.avg_roas == pytest.approx(3)
    assert metrics.ticket_medio == pytest.approx(150)
    assert metrics.cac == pytest.approx(50)
    assert metrics.connect_rate == pytest.approx(25)
    assert metrics.checkout_rate == pytest.approx(40)
    assert metrics.purchase_rate == pytest.approx(50)
    assert metrics.conversion_rate == pytest.approx(5)
    assert metrics.lead_conversion_rate == pytest.approx(25)
    assert metrics.avg_frequency == pytest.approx(2000 / 1500)
    assert metrics.total_results == metrics.total_purchases
    assert metrics.unique_campaigns == 2


def test_daily_rollup_ascending_and_campaigns_by_spend(rows):
    result = aggregate(rows, start_date="2025-01-01")

    assert [d.date for d in result.daily_data] == ["2025-01-01", "2025-01-02", "2025-01-03"]
    assert result.daily_data[0].ctr == pytest.approx(2.0)
    assert [c.campaign_name for c in result.campaign_summary] == ["A", "B"]
    summary_a = result.campaign_summary[0]
    assert summary_a.spend == pytest.approx(70)
    assert summary_a.link_clicks == 30
    assert summary_a.cpc == pytest.approx(70 / 30)
    assert summary_a.roas == pytest.approx(300 / 70)


def test_account_filter_keeps_every_account_option(rows):
    result = aggregate(rows, account_name="Other")

    assert result.count == 1
    assert result.metrics.total_spend == pytest.approx(999)
    assert result.unique_accounts == ["Acme", "Other"]


def test_aggregate_is_deterministic(rows):
    first = aggregate(rows, start_date="2025-01-01", end_date="2025-01-03")
    second = aggregate(rows, start_date="2025-01-01", end_date="2025-01-03")
    assert first == second


def test_filter_rows_without_bounds_returns_everything(rows):
    assert filter_rows(rows) == rows


@pytest.mark.parametrize(
    "preset, expected",
    [
        ("today", ("2025-03-15", "2025-03-15")),
        ("yesterday", ("2025-03-14", "2025-03-14")),
        ("last7days", ("2025-03-09", "2025-03-15")),
        ("last30days", ("2025-02-14", "2025-03-15")),
        ("thisMonth", ("2025-03-01", "2025-03-15")),
        ("lastMonth", ("2025-02-01", "2025-02-28")),
    ],
)
def test_date_presets(preset, expected):
    assert date_range_from_preset(preset, today=date(2025, 3, 15)) == expected


def test_unknown_preset():
    with pytest.raises(ValueError):
        date_range_from_preset("lastDecade", today=date(2025, 3, 15))
