"""Pydantic schemas for request/response payloads.

Ingestion and metrics payloads serialize with camelCase aliases
(`linkClicks`, `totalSpend`, `columnsFound`) because the dashboard consumes
them directly; CRM payloads use snake_case like the database columns.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .models import CustomFieldTypeEnum, InteractionTypeEnum
from .services.column_resolver import to_camel


_CAMEL = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str = Field(description="Error message")

    model_config = {
        "json_schema_extra": {
            "example": {
                "detail": "Pipeline not found"
            }
        }
    }


class SuccessResponse(BaseModel):
    """Standard success response."""

    status: str = Field(default="ok", description="Status message")
    detail: Optional[str] = Field(default=None, description="Success message")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(description="Service status")

    model_config = {
        "json_schema_extra": {
            "example": {
                "status": "ok"
            }
        }
    }


# Campaign ingestion ------------------------------------------------------

class CampaignRow(BaseModel):
    """One spreadsheet row after column resolution and number parsing.

    Field types drive parsing in the row mapper: `str` passes through,
    `int` goes through parse_int_safe, `float` through parse_brazilian_number.
    Every numeric field defaults to 0.
    """

    model_config = _CAMEL

    date: str
    account_name: str = ""
    campaign_name: str = ""
    adset_name: str = ""
    ad_name: str = ""

    spend: float = 0
    impressions: int = 0
    clicks: int = 0
    link_clicks: int = 0
    landing_page_views: int = 0
    reach: int = 0
    frequency: float = 0

    leads: float = 0
    fb_pixel_leads: float = 0
    purchases: float = 0
    purchase_value: float = 0
    lead_value: float = 0
    checkouts: float = 0
    results: float = 0
    cost_per_result: float = 0
    result_rate: float = 0

    page_likes: int = 0
    page_engagement: int = 0
    post_engagement: int = 0
    post_comments: int = 0
    post_reactions: int = 0
    post_shares: int = 0
    post_saves: int = 0
    conversations_started: int = 0

    video_views_3s: int = 0
    video_thruplay_watched: int = 0
    video_play_actions: int = 0
    video_p25: int = 0
    video_p50: int = 0
    video_p75: int = 0
    video_p100: int = 0

    cpc: float = 0
    cpm: float = 0
    ctr: float = 0
    roas: float = 0
    cpl: float = 0


class DateRange(BaseModel):
    start: str
    end: str


class SheetDataResponse(BaseModel):
    """GET /api/sheets/stract payload."""

    model_config = _CAMEL

    data: List[CampaignRow] = Field(default_factory=list)
    count: int = 0
    columns_found: List[str] = Field(default_factory=list)
    date_range: Optional[DateRange] = None
    message: Optional[str] = None


class AggregatedMetrics(BaseModel):
    """Totals and derived ratios over a filtered row set. All zero when empty."""

    model_config = _CAMEL

    total_spend: float = 0
    total_impressions: int = 0
    total_clicks: int = 0
    total_link_clicks: int = 0
    total_landing_page_views: int = 0
    total_reach: int = 0
    total_leads: float = 0
    total_fb_pixel_leads: float = 0
    total_purchases: float = 0
    total_purchase_value: float = 0
    total_lead_value: float = 0
    total_checkouts: float = 0
    total_results: float = 0
    total_page_likes: int = 0
    total_page_engagement: int = 0
    total_post_engagement: int = 0
    total_post_comments: int = 0
    total_post_reactions: int = 0
    total_post_shares: int = 0
    total_conversations_started: int = 0
    total_video_views_3s: int = 0
    total_video_thruplay_watched: int = 0
    total_video_play_actions: int = 0

    avg_cpc: float = 0
    avg_cpm: float = 0
    avg_ctr: float = 0
    avg_cpl: float = 0
    avg_roas: float = 0
    avg_frequency: float = 0
    ticket_medio: float = 0
    cac: float = 0

    connect_rate: float = 0
    checkout_rate: float = 0
    purchase_rate: float = 0
    conversion_rate: float = 0
    lead_conversion_rate: float = 0

    unique_campaigns: int = 0
    unique_adsets: int = 0
    unique_ads: int = 0
    unique_accounts: int = 0


class DailyData(BaseModel):
    model_config = _CAMEL

    date: str
    spend: float = 0
    impressions: int = 0
    clicks: int = 0
    link_clicks: int = 0
    landing_page_views: int = 0
    leads: float = 0
    purchases: float = 0
    purchase_value: float = 0
    reach: int = 0
    checkouts: float = 0
    post_engagement: int = 0
    video_views_3s: int = 0
    ctr: float = 0
    cpc: float = 0
    cpl: float = 0


class CampaignSummary(BaseModel):
    model_config = _CAMEL

    campaign_name: str
    spend: float = 0
    impressions: int = 0
    clicks: int = 0
    link_clicks: int = 0
    landing_page_views: int = 0
    leads: float = 0
    purchases: float = 0
    purchase_value: float = 0
    reach: int = 0
    checkouts: float = 0
    ctr: float = 0
    cpc: float = 0
    cpl: float = 0
    roas: float = 0
    conversion_rate: float = 0


class MetricsResponse(BaseModel):
    """GET /api/sheets/stract/metrics payload."""

    model_config = _CAMEL

    metrics: AggregatedMetrics
    daily_data: List[DailyData] = Field(default_factory=list)
    campaign_summary: List[CampaignSummary] = Field(default_factory=list)
    unique_accounts: List[str] = Field(default_factory=list)
    count: int = 0


# Pipelines & stages -----------------------------------------------------------

class PipelineStageCreate(BaseModel):
    name: str = Field(min_length=1, description="Stage name")
    color: Optional[str] = Field(default=None, description="Hex color; defaults to DEFAULT_STAGE_COLOR")
    default_value: Optional[float] = Field(default=None, ge=0, description="Default deal value")


class PipelineStageUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    color: Optional[str] = None
    default_value: Optional[float] = Field(default=None, ge=0)


class PipelineStageOut(BaseModel):
    id: UUID
    pipeline_id: UUID
    name: str
    color: str
    order_index: int
    default_value: Optional[float] = None
    lead_count: int = 0

    model_config = {"from_attributes": True}


class PipelineCreate(BaseModel):
    """Pipeline plus its initial stages, created in one transaction."""

    name: str = Field(min_length=1)
    description: Optional[str] = None
    stages: List[PipelineStageCreate] = Field(default_factory=list)

    model_config = {
        "json_schema_extra": {
            "example": {
                "name": "Inbound",
                "description": "Leads from paid campaigns",
                "stages": [{"name": "New"}, {"name": "Qualified"}, {"name": "Won", "color": "#16A34A"}],
            }
        }
    }


class PipelineUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None


class PipelineOut(BaseModel):
    id: UUID
    name: str
    description: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    stages: List[PipelineStageOut] = Field(default_factory=list)

    model_config = {"from_attributes": True}


class StageReorderRequest(BaseModel):
    """Every stage id of the pipeline, in the new order."""

    stage_ids: List[UUID]


# Leads ------------------------------------------------------------------------

class TagOut(BaseModel):
    id: UUID
    name: str
    color: str
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class LeadBase(BaseModel):
    email: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None
    utm_content: Optional[str] = None
    utm_term: Optional[str] = None
    assigned_to: Optional[UUID] = None
    deal_value: Optional[float] = Field(default=None, ge=0)
    scheduled_call_at: Optional[datetime] = None
    call_completed_at: Optional[datetime] = None


class LeadCreate(LeadBase):
    """Creation contract shared by the UI form, CSV import and webhook.

    `stage_id` defaults to the pipeline's first stage. `created_at` may be
    set to backfill historical leads; it is immutable afterwards.
    """

    pipeline_id: UUID
    stage_id: Optional[UUID] = None
    name: str = Field(min_length=1)
    origin: str = "manual"
    custom_fields: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("name must not be blank")
        return value


class LeadUpdate(LeadBase):
    """Mutable lead fields. Stage changes go through the move endpoints."""

    name: Optional[str] = Field(default=None, min_length=1)
    origin: Optional[str] = None
    custom_fields: Optional[Dict[str, Any]] = None


class LeadOut(LeadBase):
    id: UUID
    pipeline_id: UUID
    current_stage_id: Optional[UUID] = None
    name: str
    origin: str
    custom_fields: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: Optional[datetime] = None
    tags: List[TagOut] = Field(default_factory=list)

    model_config = {"from_attributes": True}


class LeadMoveRequest(BaseModel):
    stage_id: UUID


class BulkMoveRequest(BaseModel):
    lead_ids: List[UUID] = Field(min_length=1)
    stage_id: UUID
    moved_by: str = "bulk_recovery"


class BulkMoveResponse(BaseModel):
    moved: int


class StageHistoryOut(BaseModel):
    id: UUID
    lead_id: UUID
    from_stage_id: Optional[UUID] = None
    from_stage_name: Optional[str] = None
    to_stage_id: Optional[UUID] = None
    to_stage_name: Optional[str] = None
    moved_at: datetime
    moved_by: str


class LeadImportRequest(BaseModel):
    """CSV text with a header row containing `name`."""

    csv_text: str = Field(min_length=1)
    stage_id: Optional[UUID] = None


class LeadImportResponse(BaseModel):
    imported: int
    skipped: int


class StageLeadCount(BaseModel):
    stage_id: UUID
    lead_count: int


# Interactions -----------------------------------------------------------------

class InteractionCreate(BaseModel):
    type: InteractionTypeEnum
    title: Optional[str] = None
    content: Optional[str] = None


class InteractionOut(BaseModel):
    id: UUID
    lead_id: UUID
    type: InteractionTypeEnum
    title: Optional[str] = None
    content: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


# Tags -------------------------------------------------------------------------

class TagCreate(BaseModel):
    name: str = Field(min_length=1)
    color: Optional[str] = None


class TagUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    color: Optional[str] = None


class BulkTagRequest(BaseModel):
    lead_ids: List[UUID] = Field(min_length=1)


class BulkTagResponse(BaseModel):
    added: int


# Analytics --------------------------------------------------------------------

class FunnelStageOut(BaseModel):
    stage_id: UUID
    name: str
    color: str
    order_index: int
    count: int
    by_origin: Dict[str, int] = Field(default_factory=dict)


class CohortFunnelOut(BaseModel):
    """Leads created inside the window, grouped by their current stage."""

    pipeline_id: UUID
    start_date: str
    end_date: str
    total_leads: int
    no_stage_count: int = 0
    stages: List[FunnelStageOut] = Field(default_factory=list)


class StageOriginCount(BaseModel):
    stage_id: UUID
    total: int = 0
    paid: int = 0
    organic: int = 0


class SalesSummaryOut(BaseModel):
    total_value: float = 0
    deal_count: int = 0


# Custom fields ----------------------------------------------------------------

class CustomFieldCreate(BaseModel):
    name: str = Field(min_length=1)
    field_type: CustomFieldTypeEnum = CustomFieldTypeEnum.text
    options: Optional[List[str]] = None
    required: bool = False


class CustomFieldUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    options: Optional[List[str]] = None
    required: Optional[bool] = None


class CustomFieldOut(BaseModel):
    id: UUID
    name: str
    field_key: str
    field_type: CustomFieldTypeEnum
    options: Optional[List[str]] = None
    required: bool
    created_at: datetime

    model_config = {"from_attributes": True}


# API keys ---------------------------------------------------------------------

class ApiKeyCreate(BaseModel):
    name: str = Field(min_length=1, description="Label shown in the UI, e.g. 'Zapier'")


class ApiKeyOut(BaseModel):
    id: UUID
    name: str
    key_prefix: str
    created_at: datetime
    last_used_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ApiKeyCreated(ApiKeyOut):
    """Returned once at creation; `key` is never retrievable again."""

    key: str


# Public lead API --------------------------------------------------------------
# Required fields are Optional here so a missing value is a 400 with a
# readable message instead of FastAPI's 422.

class WebhookLeadPayload(BaseModel):
    pipeline_id: Optional[str] = None
    stage_id: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    origin: Optional[str] = None
    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None
    utm_content: Optional[str] = None
    utm_term: Optional[str] = None
    deal_value: Optional[float] = None
    custom_fields: Optional[Dict[str, Any]] = None


class PublicMoveRequest(BaseModel):
    stage_id: Optional[str] = None


class PublicLeadUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    custom_fields: Optional[Dict[str, Any]] = None
