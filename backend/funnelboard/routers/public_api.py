"""
Public lead API
---------------
Purpose:
- Integration endpoints (forms, Zapier/Make, landing pages) authenticated by
  an `X-API-Key` header instead of the dashboard session.
- Webhook lead capture with dedup-by-email inside a pipeline.
- Lead lookup, update, existence check and stage moves for automations.
Design choices:
- Required body fields are validated here and reported as 400 with the
  missing names, so integrators get a readable message instead of a 422.
- Every lookup is scoped to the key owner's user id; leads and pipelines of
  other users are 404.
- Stage moves write `moved_by="api"`, webhook-created leads `moved_by="webhook"`.
"""

import logging
from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import ValidationError
from sqlalchemy.orm import Session

from .. import schemas
from ..database import get_db
from ..deps import get_api_key_user, http_errors
from ..models import Lead, MovedByEnum, User
from ..services.lead_service import LeadService
from ..services.pipeline_service import PipelineService

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/crm",
    tags=["Public API"],
    responses={
        400: {"model": schemas.ErrorResponse, "description": "Bad Request"},
        401: {"model": schemas.ErrorResponse, "description": "Missing or invalid API key"},
        404: {"model": schemas.ErrorResponse, "description": "Not Found"},
    }
)

WEBHOOK_USAGE = {
    "endpoint": "POST /api/crm/leads/webhook",
    "authentication": "Header X-API-Key: <your key>",
    "required_fields": ["pipeline_id", "name"],
    "optional_fields": [
        "stage_id", "email", "phone", "company", "origin",
        "utm_source", "utm_medium", "utm_campaign", "utm_content", "utm_term",
        "deal_value", "custom_fields",
    ],
    "behavior": (
        "A lead with the same email in the same pipeline is updated instead of "
        "duplicated. Without stage_id the lead enters the first stage."
    ),
    "responses": {
        "201": {"lead_id": "<uuid>", "status": "created"},
        "200": {"lead_id": "<uuid>", "status": "updated"},
    },
}


def _parse_uuid(value: str, field: str) -> UUID:
    try:
        return UUID(str(value))
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid {field}")


def _serialize_lead(lead: Lead) -> Dict[str, Any]:
    return schemas.LeadOut.model_validate(lead).model_dump(mode="json")


@router.get("/leads/webhook", summary="Webhook usage")
def webhook_usage():
    """Describe how to call the webhook. No authentication required."""
    return WEBHOOK_USAGE


@router.post(
    "/leads/webhook",
    status_code=status.HTTP_201_CREATED,
    summary="Capture lead",
    description="""
    Create a lead from an external form or automation.

    - `pipeline_id` and `name` are required.
    - `stage_id` defaults to the first stage of the pipeline.
    - When a lead with the same email already exists in the pipeline it is
      updated (name, phone, company, merged custom_fields) and 200 is returned.
    """
)
def capture_lead(
    payload: schemas.WebhookLeadPayload,
    response: Response,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_api_key_user),
):
    missing = [name for name in ("pipeline_id", "name") if not (getattr(payload, name) or "").strip()]
    if missing:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Missing required fields: {', '.join(missing)}",
        )

    pipeline_id = _parse_uuid(payload.pipeline_id, "pipeline_id")
    stage_id = _parse_uuid(payload.stage_id, "stage_id") if payload.stage_id else None

    try:
        lead_payload = schemas.LeadCreate(
            pipeline_id=pipeline_id,
            stage_id=stage_id,
            name=payload.name,
            email=payload.email or None,
            phone=payload.phone or None,
            company=payload.company or None,
            origin=payload.origin or "webhook",
            utm_source=payload.utm_source,
            utm_medium=payload.utm_medium,
            utm_campaign=payload.utm_campaign,
            utm_content=payload.utm_content,
            utm_term=payload.utm_term,
            deal_value=payload.deal_value,
            custom_fields=payload.custom_fields or {},
        )
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.errors()[0]["msg"])

    with http_errors():
        lead, created = LeadService(db).upsert_from_webhook(current_user.id, lead_payload)

    if not created:
        response.status_code = status.HTTP_200_OK
    logger.info(f"[WEBHOOK] Lead {lead.id} {'created' if created else 'updated'} for user {current_user.id}")
    return {"lead_id": str(lead.id), "status": "created" if created else "updated"}


@router.get("/pipelines", summary="List pipelines")
def list_pipelines(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_api_key_user),
):
    """Pipelines with their ordered stages (id, name and color only)."""
    pipelines = PipelineService(db).list_pipelines(current_user.id)
    return {
        "pipelines": [
            {
                "id": str(pipeline.id),
                "name": pipeline.name,
                "created_at": pipeline.created_at.isoformat(),
                "stages": [
                    {"id": str(stage.id), "name": stage.name, "color": stage.color}
                    for stage in pipeline.stages
                ],
            }
            for pipeline in pipelines
        ],
        "total": len(pipelines),
    }


@router.get("/leads/check", summary="Check lead by email")
def check_lead(
    email: Optional[str] = Query(default=None),
    pipeline_id: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_api_key_user),
):
    """Whether a lead with this email exists, optionally within one pipeline.

    `lead` is the oldest match.
    """
    if not email:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Query parameter 'email' is required")
    scoped_pipeline = _parse_uuid(pipeline_id, "pipeline_id") if pipeline_id else None

    matches = LeadService(db).find_by_email(current_user.id, email, pipeline_id=scoped_pipeline)
    return {
        "exists": bool(matches),
        "lead": _serialize_lead(matches[0]) if matches else None,
        "total_matches": len(matches),
    }


@router.get("/leads/{lead_id}", summary="Get lead")
def get_lead(
    lead_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_api_key_user),
):
    with http_errors():
        lead = LeadService(db).get_lead(_parse_uuid(lead_id, "lead_id"), current_user.id)
    return {"lead": _serialize_lead(lead)}


@router.patch("/leads/{lead_id}", summary="Update lead")
def update_lead(
    lead_id: str,
    payload: schemas.PublicLeadUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_api_key_user),
):
    """Update contact fields. custom_fields are merged into the stored values."""
    changes = payload.model_dump(exclude_unset=True)
    try:
        lead_update = schemas.LeadUpdate(**changes)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.errors()[0]["msg"])

    with http_errors():
        lead = LeadService(db).update_lead(
            _parse_uuid(lead_id, "lead_id"), current_user.id, lead_update, validate_custom_fields=False
        )
    return {"lead": _serialize_lead(lead), "message": "Lead updated"}


@router.post("/leads/{lead_id}/move", summary="Move lead to stage")
def move_lead(
    lead_id: str,
    payload: schemas.PublicMoveRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_api_key_user),
):
    """
    Move a lead to another stage of its pipeline.

    404 when the lead is not found or the stage belongs to another pipeline.
    """
    if not payload.stage_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing required fields: stage_id")

    with http_errors():
        result = LeadService(db).move_lead(
            _parse_uuid(lead_id, "lead_id"),
            current_user.id,
            _parse_uuid(payload.stage_id, "stage_id"),
            moved_by=MovedByEnum.api.value,
        )

    return {
        "success": True,
        "lead_id": str(result.lead.id),
        "from_stage_id": str(result.from_stage_id) if result.from_stage_id else None,
        "to_stage_id": str(result.to_stage.id),
        "stage_name": result.to_stage.name,
        "message": f"Lead moved to {result.to_stage.name}",
    }
