"""
CRM router
----------
Purpose:
- Dashboard endpoints for pipelines, stages, leads, tags, custom fields,
  interactions, analytics and API keys. Every route requires the session JWT.
Design choices:
- Routes are thin: they resolve the user, call one service method inside
  `http_errors()` and return ORM objects through response models.
- Ownership is enforced in the services (every lookup filters by user_id), so
  another user's ids come back as 404, never 403.
- Stage changes only happen through the move endpoints so the stage history
  stays complete.
"""

import logging
from datetime import date
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from .. import schemas
from ..database import get_db
from ..deps import get_current_user, http_errors
from ..models import MovedByEnum, User
from ..services.api_key_service import ApiKeyService
from ..services.crm_analytics_service import CRMAnalyticsService
from ..services.custom_field_service import CustomFieldService
from ..services.lead_service import LeadService
from ..services.pipeline_service import PipelineService
from ..services.tag_service import TagService

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/crm",
    tags=["CRM"],
    responses={
        400: {"model": schemas.ErrorResponse, "description": "Bad Request"},
        401: {"model": schemas.ErrorResponse, "description": "Unauthorized"},
        404: {"model": schemas.ErrorResponse, "description": "Not Found"},
    }
)


# Pipelines ------------------------------------------------------------------

@router.get("/pipelines", response_model=List[schemas.PipelineOut], summary="List pipelines")
def list_pipelines(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Pipelines with their stages in order and current lead counts per stage."""
    return PipelineService(db).list_pipelines(current_user.id)


@router.post(
    "/pipelines",
    response_model=schemas.PipelineOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create pipeline",
    description="""
    Create a pipeline and its initial stages in one transaction.

    Stages get order_index 0..n-1 in the submitted order. An empty stage list
    is allowed; leads created in a stageless pipeline have no stage.
    """
)
def create_pipeline(
    payload: schemas.PipelineCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    with http_errors():
        return PipelineService(db).create(current_user.id, payload)


@router.get("/pipelines/{pipeline_id}", response_model=schemas.PipelineOut, summary="Get pipeline")
def get_pipeline(
    pipeline_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    with http_errors():
        return PipelineService(db).get(pipeline_id, current_user.id)


@router.patch("/pipelines/{pipeline_id}", response_model=schemas.PipelineOut, summary="Rename pipeline")
def update_pipeline(
    pipeline_id: UUID,
    payload: schemas.PipelineUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    with http_errors():
        return PipelineService(db).update(pipeline_id, current_user.id, payload)


@router.delete("/pipelines/{pipeline_id}", response_model=schemas.SuccessResponse, summary="Delete pipeline")
def delete_pipeline(
    pipeline_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Deletes the pipeline with its stages and leads."""
    with http_errors():
        PipelineService(db).delete(pipeline_id, current_user.id)
    return schemas.SuccessResponse(detail="Pipeline deleted")


# Stages ---------------------------------------------------------------------

@router.post(
    "/pipelines/{pipeline_id}/stages",
    response_model=schemas.PipelineStageOut,
    status_code=status.HTTP_201_CREATED,
    summary="Add stage",
)
def add_stage(
    pipeline_id: UUID,
    payload: schemas.PipelineStageCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Appends the stage at the end of the pipeline."""
    with http_errors():
        return PipelineService(db).add_stage(pipeline_id, current_user.id, payload)


@router.put(
    "/pipelines/{pipeline_id}/stages/order",
    response_model=schemas.PipelineOut,
    summary="Reorder stages",
)
def reorder_stages(
    pipeline_id: UUID,
    payload: schemas.StageReorderRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """`stage_ids` must contain every stage of the pipeline exactly once."""
    with http_errors():
        return PipelineService(db).reorder_stages(pipeline_id, current_user.id, payload.stage_ids)


@router.patch("/stages/{stage_id}", response_model=schemas.PipelineStageOut, summary="Update stage")
def update_stage(
    stage_id: UUID,
    payload: schemas.PipelineStageUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    with http_errors():
        return PipelineService(db).update_stage(stage_id, current_user.id, payload)


@router.delete("/stages/{stage_id}", response_model=schemas.SuccessResponse, summary="Delete stage")
def delete_stage(
    stage_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Leads in the stage move to "no stage"; remaining stages are re-packed."""
    with http_errors():
        PipelineService(db).delete_stage(stage_id, current_user.id)
    return schemas.SuccessResponse(detail="Stage deleted")


@router.get(
    "/pipelines/{pipeline_id}/stage-counts",
    response_model=List[schemas.StageLeadCount],
    summary="Lead count per stage",
)
def stage_counts(
    pipeline_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    with http_errors():
        return LeadService(db).count_by_stage(pipeline_id, current_user.id)


# Leads ----------------------------------------------------------------------

@router.get("/leads", response_model=List[schemas.LeadOut], summary="List leads")
def list_leads(
    pipeline_id: Optional[UUID] = Query(default=None),
    stage_id: Optional[UUID] = Query(default=None),
    assigned_to: Optional[UUID] = Query(default=None),
    limit: Optional[int] = Query(default=None, ge=1, le=5000),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Newest first."""
    return LeadService(db).list_leads(
        current_user.id,
        pipeline_id=pipeline_id,
        stage_id=stage_id,
        assigned_to=assigned_to,
        limit=limit,
    )


@router.post(
    "/leads",
    response_model=schemas.LeadOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create lead",
    description="""
    Create a lead in a pipeline.

    - `stage_id` defaults to the first stage of the pipeline.
    - `deal_value` defaults to the stage's default value.
    - Values in `custom_fields` with a matching definition are validated.
    - One stage-history row is written with the lead.
    """
)
def create_lead(
    payload: schemas.LeadCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    with http_errors():
        return LeadService(db).create_lead(current_user.id, payload, moved_by=MovedByEnum.user.value)


@router.post("/leads/bulk-move", response_model=schemas.BulkMoveResponse, summary="Move many leads")
def bulk_move_leads(
    payload: schemas.BulkMoveRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """
    Move every lead to one stage in a single transaction.

    Used by the recovery screen. Either all leads move (one history row each)
    or none do.
    """
    with http_errors():
        moved = LeadService(db).bulk_move(current_user.id, payload.lead_ids, payload.stage_id, moved_by=payload.moved_by)
    return schemas.BulkMoveResponse(moved=moved)


@router.get("/leads/{lead_id}", response_model=schemas.LeadOut, summary="Get lead")
def get_lead(
    lead_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    with http_errors():
        return LeadService(db).get_lead(lead_id, current_user.id)


@router.patch("/leads/{lead_id}", response_model=schemas.LeadOut, summary="Update lead")
def update_lead(
    lead_id: UUID,
    payload: schemas.LeadUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """custom_fields are merged into the stored values, not replaced."""
    with http_errors():
        return LeadService(db).update_lead(lead_id, current_user.id, payload)


@router.delete("/leads/{lead_id}", response_model=schemas.SuccessResponse, summary="Delete lead")
def delete_lead(
    lead_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    with http_errors():
        LeadService(db).delete_lead(lead_id, current_user.id)
    return schemas.SuccessResponse(detail="Lead deleted")


@router.post("/leads/{lead_id}/move", response_model=schemas.LeadOut, summary="Move lead to stage")
def move_lead(
    lead_id: UUID,
    payload: schemas.LeadMoveRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """The target stage must belong to the lead's pipeline (404 otherwise)."""
    with http_errors():
        result = LeadService(db).move_lead(lead_id, current_user.id, payload.stage_id, moved_by=MovedByEnum.user.value)
    return result.lead


@router.get(
    "/leads/{lead_id}/history",
    response_model=List[schemas.StageHistoryOut],
    summary="Lead stage history",
)
def get_lead_history(
    lead_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    with http_errors():
        return LeadService(db).get_history(lead_id, current_user.id)


@router.delete(
    "/leads/{lead_id}/history/{history_id}",
    response_model=schemas.SuccessResponse,
    summary="Delete history entry",
)
def delete_history_entry(
    lead_id: UUID,
    history_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Remove an erroneous history row. The lead's current stage is untouched."""
    with http_errors():
        LeadService(db).delete_history_entry(lead_id, history_id, current_user.id)
    return schemas.SuccessResponse(detail="History entry deleted")


@router.post(
    "/pipelines/{pipeline_id}/import",
    response_model=schemas.LeadImportResponse,
    summary="Import leads from CSV",
)
def import_leads(
    pipeline_id: UUID,
    payload: schemas.LeadImportRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Rows without a name are skipped; counts are reported in aggregate."""
    with http_errors():
        result = LeadService(db).import_csv(current_user.id, pipeline_id, payload.csv_text, stage_id=payload.stage_id)
    return schemas.LeadImportResponse(imported=result.imported, skipped=result.skipped)


# Interactions ---------------------------------------------------------------

@router.get(
    "/leads/{lead_id}/interactions",
    response_model=List[schemas.InteractionOut],
    summary="List interactions",
)
def list_interactions(
    lead_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    with http_errors():
        return LeadService(db).list_interactions(lead_id, current_user.id)


@router.post(
    "/leads/{lead_id}/interactions",
    response_model=schemas.InteractionOut,
    status_code=status.HTTP_201_CREATED,
    summary="Add interaction",
)
def add_interaction(
    lead_id: UUID,
    payload: schemas.InteractionCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    with http_errors():
        return LeadService(db).add_interaction(lead_id, current_user.id, payload, created_by=current_user.email)


# Tags -----------------------------------------------------------------------

@router.get("/tags", response_model=List[schemas.TagOut], summary="List tags")
def list_tags(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return TagService(db).list_tags(current_user.id)


@router.post("/tags", response_model=schemas.TagOut, status_code=status.HTTP_201_CREATED, summary="Create tag")
def create_tag(
    payload: schemas.TagCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return TagService(db).create(current_user.id, payload)


@router.patch("/tags/{tag_id}", response_model=schemas.TagOut, summary="Update tag")
def update_tag(
    tag_id: UUID,
    payload: schemas.TagUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    with http_errors():
        return TagService(db).update(tag_id, current_user.id, payload)


@router.delete("/tags/{tag_id}", response_model=schemas.SuccessResponse, summary="Delete tag")
def delete_tag(
    tag_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    with http_errors():
        TagService(db).delete(tag_id, current_user.id)
    return schemas.SuccessResponse(detail="Tag deleted")


@router.post("/tags/{tag_id}/leads", response_model=schemas.BulkTagResponse, summary="Tag many leads")
def bulk_tag_leads(
    tag_id: UUID,
    payload: schemas.BulkTagRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Leads that already carry the tag are left as they are."""
    with http_errors():
        added = TagService(db).bulk_add_tag(payload.lead_ids, tag_id, current_user.id)
    return schemas.BulkTagResponse(added=added)


@router.get("/leads/{lead_id}/tags", response_model=List[schemas.TagOut], summary="List lead tags")
def list_lead_tags(
    lead_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    with http_errors():
        return TagService(db).tags_for_lead(lead_id, current_user.id)


@router.post("/leads/{lead_id}/tags/{tag_id}", response_model=schemas.SuccessResponse, summary="Tag lead")
def add_lead_tag(
    lead_id: UUID,
    tag_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Idempotent: tagging a lead twice succeeds and keeps one association."""
    with http_errors():
        added = TagService(db).add_tag_to_lead(lead_id, tag_id, current_user.id)
    return schemas.SuccessResponse(detail="Tag added" if added else "Tag already present")


@router.delete("/leads/{lead_id}/tags/{tag_id}", response_model=schemas.SuccessResponse, summary="Untag lead")
def remove_lead_tag(
    lead_id: UUID,
    tag_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    with http_errors():
        TagService(db).remove_tag_from_lead(lead_id, tag_id, current_user.id)
    return schemas.SuccessResponse(detail="Tag removed")


# Analytics ------------------------------------------------------------------

@router.get(
    "/pipelines/{pipeline_id}/funnel",
    response_model=schemas.CohortFunnelOut,
    summary="Cohort funnel",
    description="""
    Leads CREATED between start_date and end_date (inclusive), grouped by
    their current stage. Leads created outside the window are not counted
    even if they moved inside it.
    """
)
def cohort_funnel(
    pipeline_id: UUID,
    start_date: date = Query(...),
    end_date: date = Query(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    with http_errors():
        return CRMAnalyticsService(db).cohort_funnel(pipeline_id, current_user.id, start_date, end_date)


@router.get(
    "/pipelines/{pipeline_id}/recovery",
    response_model=List[schemas.LeadOut],
    summary="Recovery leads",
)
def recovery_leads(
    pipeline_id: UUID,
    passed_stage_id: UUID = Query(..., description="Checkpoint stage the lead must have reached"),
    exclude_stage_ids: List[UUID] = Query(default=[], description="Success stages; leads currently here are skipped"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Leads that reached `passed_stage_id` but are not in any excluded stage now."""
    with http_errors():
        return CRMAnalyticsService(db).recovery_leads(
            pipeline_id, current_user.id, passed_stage_id, exclude_stage_ids
        )


@router.get(
    "/stage-origin-counts",
    response_model=List[schemas.StageOriginCount],
    summary="Stage counts by origin",
)
def stage_origin_counts(
    stage_ids: List[UUID] = Query(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Current lead counts per stage split into total / paid / organic."""
    return CRMAnalyticsService(db).stage_counts_by_origin(current_user.id, stage_ids)


@router.get("/sales", response_model=schemas.SalesSummaryOut, summary="Sales summary")
def sales_summary(
    pipeline_id: Optional[UUID] = Query(default=None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    with http_errors():
        return CRMAnalyticsService(db).sales_summary(current_user.id, pipeline_id)


@router.post("/history/prune", response_model=schemas.SuccessResponse, summary="Prune orphaned history")
def prune_history(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Delete stage-history rows of the user's pipelines whose lead no longer exists."""
    deleted = LeadService(db).prune_orphan_history(current_user.id)
    return schemas.SuccessResponse(detail=f"{deleted} orphaned history rows deleted")


# Custom fields --------------------------------------------------------------

@router.get("/custom-fields", response_model=List[schemas.CustomFieldOut], summary="List custom fields")
def list_custom_fields(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return CustomFieldService(db).list_fields(current_user.id)


@router.post(
    "/custom-fields",
    response_model=schemas.CustomFieldOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create custom field",
)
def create_custom_field(
    payload: schemas.CustomFieldCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """`field_key` is derived from the name (accents stripped, snake_case)."""
    with http_errors():
        return CustomFieldService(db).create(current_user.id, payload)


@router.patch("/custom-fields/{field_id}", response_model=schemas.CustomFieldOut, summary="Update custom field")
def update_custom_field(
    field_id: UUID,
    payload: schemas.CustomFieldUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    with http_errors():
        return CustomFieldService(db).update(field_id, current_user.id, payload)


@router.delete("/custom-fields/{field_id}", response_model=schemas.SuccessResponse, summary="Delete custom field")
def delete_custom_field(
    field_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Stored values under the key stay on the leads."""
    with http_errors():
        CustomFieldService(db).delete(field_id, current_user.id)
    return schemas.SuccessResponse(detail="Custom field deleted")


# API keys -------------------------------------------------------------------

@router.get("/api-keys", response_model=List[schemas.ApiKeyOut], summary="List API keys")
def list_api_keys(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return ApiKeyService(db).list_keys(current_user.id)


@router.post(
    "/api-keys",
    response_model=schemas.ApiKeyCreated,
    status_code=status.HTTP_201_CREATED,
    summary="Issue API key",
)
def create_api_key(
    payload: schemas.ApiKeyCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """The plaintext key is only returned here."""
    api_key, raw_key = ApiKeyService(db).issue_key(current_user.id, payload.name)
    return schemas.ApiKeyCreated(
        id=api_key.id,
        name=api_key.name,
        key_prefix=api_key.key_prefix,
        created_at=api_key.created_at,
        last_used_at=api_key.last_used_at,
        revoked_at=api_key.revoked_at,
        key=raw_key,
    )


@router.delete("/api-keys/{key_id}", response_model=schemas.ApiKeyOut, summary="Revoke API key")
def revoke_api_key(
    key_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    with http_errors():
        return ApiKeyService(db).revoke_key(key_id, current_user.id)
