"""Campaign metrics aggregation.

WHAT:
    Reduces CampaignRow records (optionally filtered by an inclusive date
    range and an account name) into:
        - AggregatedMetrics: totals plus derived ratios
        - DailyData: one bucket per date, ascending
        - CampaignSummary: one bucket per campaign, descending by spend

WHY:
    - Pure function of its inputs: the same rows and filters always give the
      same output, so dashboards can recompute freely on every filter change.
    - Every ratio guards its denominator (`den > 0 ? num / den : 0`), so an
      empty or zero-volume row set yields zeros, never NaN/inf.
    - Date bounds are plain string comparisons; ISO dates are fixed width.

REFERENCES:
    - funnelboard/services/row_mapper.py (produces the rows)
    - funnelboard/routers/sheets.py (GET /api/sheets/stract/metrics)
"""

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ..schemas import AggregatedMetrics, CampaignRow, CampaignSummary, DailyData


# CampaignRow field -> AggregatedMetrics total
_TOTALS = (
    "spend", "impressions", "clicks", "link_clicks", "landing_page_views", "reach",
    "leads", "fb_pixel_leads", "purchases", "purchase_value", "lead_value", "checkouts",
    "page_likes", "page_engagement", "post_engagement", "post_comments", "post_reactions",
    "post_shares", "conversations_started", "video_views_3s", "video_thruplay_watched",
    "video_play_actions",
)

_DAILY_SUMS = (
    "spend", "impressions", "clicks", "link_clicks", "landing_page_views", "leads",
    "purchases", "purchase_value", "reach", "checkouts", "post_engagement", "video_views_3s",
)

_CAMPAIGN_SUMS = (
    "spend", "impressions", "clicks", "link_clicks", "landing_page_views", "leads",
    "purchases", "purchase_value", "reach", "checkouts",
)

DATE_PRESETS = ("today", "yesterday", "last7days", "last30days", "thisMonth", "lastMonth")


def safe_div(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator > 0 else 0


@dataclass
class AggregationResult:
    metrics: AggregatedMetrics
    daily_data: List[DailyData] = field(default_factory=list)
    campaign_summary: List[CampaignSummary] = field(default_factory=list)
    unique_accounts: List[str] = field(default_factory=list)
    count: int = 0


def filter_rows(
    rows: Iterable[CampaignRow],
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    account_name: Optional[str] = None,
) -> List[CampaignRow]:
    """Inclusive date bounds and exact account match; None disables a filter."""
    selected = []
    for row in rows:
        if start_date and row.date < start_date:
            continue
        if end_date and row.date > end_date:
            continue
        if account_name and row.account_name != account_name:
            continue
        selected.append(row)
    return selected


def unique_account_names(rows: Iterable[CampaignRow]) -> List[str]:
    """Sorted distinct non-blank account names."""
    return sorted({row.account_name for row in rows if row.account_name})


def compute_metrics(rows: Sequence[CampaignRow]) -> AggregatedMetrics:
    if not rows:
        return AggregatedMetrics()

    totals = {name: sum(getattr(row, name) for row in rows) for name in _TOTALS}

    spend = totals["spend"]
    impressions = totals["impressions"]
    link_clicks = totals["link_clicks"]
    landing_page_views = totals["landing_page_views"]
    leads = totals["leads"]
    purchases = totals["purchases"]
    purchase_value = totals["purchase_value"]
    checkouts = totals["checkouts"]

    return AggregatedMetrics(
        **{f"total_{name}": value for name, value in totals.items()},
        total_results=purchases,
        avg_cpc=safe_div(spend, link_clicks),
        avg_cpm=safe_div(spend, impressions) * 1000,
        avg_ctr=safe_div(link_clicks, impressions) * 100,
        avg_cpl=safe_div(spend, leads),
        avg_roas=safe_div(purchase_value, spend) if purchase_value > 0 else 0,
        avg_frequency=safe_div(impressions, totals["reach"]),
        ticket_medio=safe_div(purchase_value, purchases),
        cac=safe_div(spend, purchases),
        connect_rate=safe_div(landing_page_views, link_clicks) * 100,
        checkout_rate=safe_div(checkouts, landing_page_views) * 100,
        purchase_rate=safe_div(purchases, checkouts) * 100,
        conversion_rate=safe_div(purchases, link_clicks) * 100,
        lead_conversion_rate=safe_div(leads, link_clicks) * 100,
        unique_campaigns=len({row.campaign_name for row in rows}),
        unique_adsets=len({row.adset_name for row in rows}),
        unique_ads=len({row.ad_name for row in rows}),
        unique_accounts=len({row.account_name for row in rows}),
    )


def _group(rows: Iterable[CampaignRow], key: str, fields: Tuple[str, ...]) -> Dict[str, Dict[str, float]]:
    buckets: Dict[str, Dict[str, float]] = {}
    for row in rows:
        bucket_key = getattr(row, key)
        bucket = buckets.get(bucket_key)
        if bucket is None:
            buckets[bucket_key] = {name: getattr(row, name) for name in fields}
        else:
            for name in fields:
                bucket[name] += getattr(row, name)
    return buckets


def daily_rollup(rows: Iterable[CampaignRow]) -> List[DailyData]:
    """Per-date sums with ctr/cpc/cpl, ascending by date."""
    result = []
    for day, sums in sorted(_group(rows, "date", _DAILY_SUMS).items()):
        result.append(DailyData(
            date=day,
            **sums,
            ctr=safe_div(sums["link_clicks"], sums["impressions"]) * 100,
            cpc=safe_div(sums["spend"], sums["link_clicks"]),
            cpl=safe_div(sums["spend"], sums["leads"]),
        ))
    return result


def campaign_rollup(rows: Iterable[CampaignRow]) -> List[CampaignSummary]:
    """Per-campaign sums; ratios computed after folding, sorted by spend desc."""
    buckets = _group(rows, "campaign_name", _CAMPAIGN_SUMS)
    summaries = [
        CampaignSummary(
            campaign_name=name,
            **sums,
            ctr=safe_div(sums["link_clicks"], sums["impressions"]) * 100,
            cpc=safe_div(sums["spend"], sums["link_clicks"]),
            cpl=safe_div(sums["spend"], sums["leads"]),
            roas=safe_div(sums["purchase_value"], sums["spend"]),
            conversion_rate=safe_div(sums["purchases"], sums["link_clicks"]) * 100,
        )
        for name, sums in buckets.items()
    ]
    summaries.sort(key=lambda s: s.spend, reverse=True)
    return summaries


def aggregate(
    rows: Sequence[CampaignRow],
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    account_name: Optional[str] = None,
) -> AggregationResult:
    """Filter then aggregate. `unique_accounts` is computed over ALL rows so
    the account picker keeps every option while a filter is active."""
    selected = filter_rows(rows, start_date, end_date, account_name)
    return AggregationResult(
        metrics=compute_metrics(selected),
        daily_data=daily_rollup(selected),
        campaign_summary=campaign_rollup(selected),
        unique_accounts=unique_account_names(rows),
        count=len(selected),
    )


def date_range_from_preset(preset: str, today: Optional[date] = None) -> Tuple[str, str]:
    """Resolve a dashboard preset to an inclusive (start, end) ISO range.

    Raises:
        ValueError: unknown preset.
    """
    today = today or date.today()
    if preset == "today":
        start = end = today
    elif preset == "yesterday":
        start = end = today - timedelta(days=1)
    elif preset == "last7days":
        start, end = today - timedelta(days=6), today
    elif preset == "last30days":
        start, end = today - timedelta(days=29), today
    elif preset == "thisMonth":
        start, end = today.replace(day=1), today
    elif preset == "lastMonth":
        end = today.replace(day=1) - timedelta(days=1)
        start = end.replace(day=1)
    else:
        raise ValueError(f"Unknown date preset: {preset}")
    return start.isoformat(), end.isoformat()
