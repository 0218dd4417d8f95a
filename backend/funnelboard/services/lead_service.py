"""Lead lifecycle manager.

WHAT:
    Creates leads into a pipeline stage, moves them between stages, and keeps
    the append-only LeadStageHistory log in sync with `Lead.current_stage_id`.

WHY:
    - History is the system of record for funnel/recovery analytics;
      current_stage_id is a cache of the latest `to_stage_id`. Every write
      that changes a stage updates the lead AND appends history in the same
      transaction, so the two can never drift apart.
    - Stage validation runs before any write: a target stage from another
      pipeline is rejected without touching the database.
    - The UI form, CSV import and webhook all go through `create_lead`, so
      the defaults (first stage, history row stamped with created_at) are
      identical on every path.

STATE MACHINE (per lead):
    stages are the states, NULL ("no stage") is valid
        create        ∅ ──► first stage (or the requested one)
        move          S ──► T        (T in the lead's pipeline)
        bulk move     {S_i} ──► T    (one transaction)
        webhook upsert  no state change when (user, email, pipeline) matches

REFERENCES:
    - funnelboard/services/crm_analytics_service.py (reads history)
    - funnelboard/routers/crm.py, funnelboard/routers/public_api.py
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy import and_, delete, func, insert, or_, select, update
from sqlalchemy.orm import Session, aliased, selectinload

from ..database import atomic
from ..models import (
    Lead,
    LeadInteraction,
    LeadStageHistory,
    MovedByEnum,
    Pipeline,
    PipelineStage,
)
from ..schemas import InteractionCreate, LeadCreate, LeadUpdate
from ..utils.dates import to_naive_utc
from .csv_parser import parse_csv
from .custom_field_service import CustomFieldService
from .errors import CRMValidationError, NotFoundError
from .number_parsing import parse_brazilian_number
from .pipeline_service import PipelineService

logger = logging.getLogger(__name__)

IMPORT_COLUMNS = ("name", "email", "phone", "company", "deal_value", "origin")


@dataclass
class MoveResult:
    lead: Lead
    from_stage_id: Optional[UUID]
    to_stage: PipelineStage


@dataclass
class ImportResult:
    imported: int = 0
    skipped: int = 0


class LeadService:
    """Lead operations for one database session.

    Usage:
        service = LeadService(db)
        lead = service.create_lead(user.id, LeadCreate(pipeline_id=p.id, name="Ana"))
        service.move_lead(lead.id, user.id, stage_id, moved_by="user")
    """

    def __init__(self, db: Session):
        self.db = db
        self.pipelines = PipelineService(db)
        self.custom_fields = CustomFieldService(db)

    # Lookups ---------------------------------------------------------------

    def get_lead(self, lead_id: UUID, user_id: UUID) -> Lead:
        lead = (
            self.db.query(Lead)
            .options(selectinload(Lead.tags), selectinload(Lead.current_stage))
            .filter(Lead.id == lead_id, Lead.user_id == user_id)
            .first()
        )
        if not lead:
            raise NotFoundError("Lead not found")
        return lead

    def list_leads(
        self,
        user_id: UUID,
        pipeline_id: Optional[UUID] = None,
        stage_id: Optional[UUID] = None,
        assigned_to: Optional[UUID] = None,
        limit: Optional[int] = None,
    ) -> List[Lead]:
        """Leads newest first, optionally filtered."""
        query = (
            self.db.query(Lead)
            .options(selectinload(Lead.tags))
            .filter(Lead.user_id == user_id)
        )
        if pipeline_id:
            query = query.filter(Lead.pipeline_id == pipeline_id)
        if stage_id:
            query = query.filter(Lead.current_stage_id == stage_id)
        if assigned_to:
            query = query.filter(Lead.assigned_to == assigned_to)
        query = query.order_by(Lead.created_at.desc())
        if limit:
            query = query.limit(limit)
        return query.all()

    def resolve_stage(self, pipeline_id: UUID, stage_id: Optional[UUID]) -> Optional[PipelineStage]:
        """Requested stage (must belong to the pipeline) or the first stage.

        Returns None for a pipeline without stages.
        """
        if stage_id is None:
            return self.pipelines.first_stage(pipeline_id)
        stage = (
            self.db.query(PipelineStage)
            .filter(PipelineStage.id == stage_id, PipelineStage.pipeline_id == pipeline_id)
            .first()
        )
        if not stage:
            raise NotFoundError("Stage not found in this pipeline")
        return stage

    # Creation --------------------------------------------------------------

    def create_lead(
        self,
        user_id: UUID,
        payload: LeadCreate,
        moved_by: str = MovedByEnum.system.value,
        validate_custom_fields: bool = True,
    ) -> Lead:
        """Create a lead and its initial history row in one transaction.

        The history row is stamped with the lead's created_at, which callers
        may backdate for historical imports.

        Raises:
            NotFoundError: pipeline not owned, or stage not in the pipeline.
            CRMValidationError: custom field values do not fit their definitions.
        """
        pipeline = self.pipelines.get_owned(payload.pipeline_id, user_id)
        stage = self.resolve_stage(pipeline.id, payload.stage_id)

        custom_fields = payload.custom_fields
        if validate_custom_fields:
            custom_fields = self.custom_fields.coerce_values(user_id, custom_fields)

        created_at = to_naive_utc(payload.created_at) or datetime.utcnow()
        deal_value = payload.deal_value
        if deal_value is None and stage is not None and stage.default_value is not None:
            deal_value = stage.default_value

        lead = Lead(
            user_id=user_id,
            pipeline_id=pipeline.id,
            current_stage_id=stage.id if stage else None,
            name=payload.name.strip(),
            email=payload.email or None,
            phone=payload.phone or None,
            company=payload.company or None,
            origin=payload.origin or "manual",
            utm_source=payload.utm_source,
            utm_medium=payload.utm_medium,
            utm_campaign=payload.utm_campaign,
            utm_content=payload.utm_content,
            utm_term=payload.utm_term,
            custom_fields=custom_fields,
            assigned_to=payload.assigned_to,
            deal_value=deal_value,
            scheduled_call_at=to_naive_utc(payload.scheduled_call_at),
            call_completed_at=to_naive_utc(payload.call_completed_at),
            created_at=created_at,
            updated_at=created_at,
        )

        with atomic(self.db, "LEADS"):
            self.db.add(lead)
            self.db.flush()
            self.db.add(LeadStageHistory(
                lead_id=lead.id,
                from_stage_id=None,
                to_stage_id=lead.current_stage_id,
                moved_at=created_at,
                moved_by=moved_by,
            ))

        logger.info(f"[LEADS] Created lead {lead.id} in pipeline {pipeline.id} (by {moved_by})")
        return self.get_lead(lead.id, user_id)

    def upsert_from_webhook(self, user_id: UUID, payload: LeadCreate) -> Tuple[Lead, bool]:
        """Dedup-by-email within one pipeline.

        When (user, email, pipeline) already exists the lead is updated in
        place (name, non-empty phone/company, merged custom_fields) with no
        stage change and no history row. Otherwise a lead is created.

        Returns:
            (lead, created)
        """
        pipeline = self.pipelines.get_owned(payload.pipeline_id, user_id)

        existing = None
        if payload.email:
            existing = (
                self.db.query(Lead)
                .filter(
                    Lead.user_id == user_id,
                    Lead.email == payload.email,
                    Lead.pipeline_id == pipeline.id,
                )
                .order_by(Lead.created_at)
                .first()
            )

        if existing is None:
            lead = self.create_lead(user_id, payload, moved_by=MovedByEnum.webhook.value, validate_custom_fields=False)
            return lead, True

        with atomic(self.db, "WEBHOOK"):
            existing.name = payload.name.strip()
            if payload.phone:
                existing.phone = payload.phone
            if payload.company:
                existing.company = payload.company
            existing.custom_fields = {**(existing.custom_fields or {}), **payload.custom_fields}
            existing.updated_at = datetime.utcnow()

        logger.info(f"[WEBHOOK] Updated existing lead {existing.id} (email match in pipeline {pipeline.id})")
        return existing, False

    # Updates ---------------------------------------------------------------

    def update_lead(
        self,
        lead_id: UUID,
        user_id: UUID,
        payload: LeadUpdate,
        validate_custom_fields: bool = True,
    ) -> Lead:
        """Update mutable fields. created_at and the stage are not editable here."""
        lead = self.get_lead(lead_id, user_id)
        changes: Dict[str, Any] = payload.model_dump(exclude_unset=True)
        # Non-nullable columns: an explicit null means "leave unchanged"
        for key in ("custom_fields", "origin"):
            if key in changes and changes[key] is None:
                changes.pop(key)
        if changes.get("name") is not None:
            changes["name"] = changes["name"].strip()
        elif "name" in changes:
            raise CRMValidationError("name must not be empty")
        if not changes:
            raise CRMValidationError("No valid fields to update")

        if "custom_fields" in changes:
            if validate_custom_fields:
                changes["custom_fields"] = self.custom_fields.coerce_values(
                    user_id, changes["custom_fields"], partial=True
                )
            changes["custom_fields"] = {**(lead.custom_fields or {}), **changes["custom_fields"]}

        for key in ("scheduled_call_at", "call_completed_at"):
            if key in changes:
                changes[key] = to_naive_utc(changes[key])

        with atomic(self.db, "LEADS"):
            for key, value in changes.items():
                setattr(lead, key, value)
            lead.updated_at = datetime.utcnow()

        return self.get_lead(lead_id, user_id)

    def delete_lead(self, lead_id: UUID, user_id: UUID) -> None:
        """Delete the lead, its tag links and interactions. History rows stay."""
        lead = self.get_lead(lead_id, user_id)
        with atomic(self.db, "LEADS"):
            self.db.delete(lead)
        logger.info(f"[LEADS] Deleted lead {lead_id}")

    # Moves -----------------------------------------------------------------

    def move_lead(
        self,
        lead_id: UUID,
        user_id: UUID,
        stage_id: UUID,
        moved_by: str = MovedByEnum.user.value,
    ) -> MoveResult:
        """Move one lead; appends exactly one history row.

        Raises:
            NotFoundError: lead not owned, or stage not in the lead's pipeline.
                Nothing is written in that case.
        """
        lead = self.get_lead(lead_id, user_id)
        stage = self.resolve_stage(lead.pipeline_id, stage_id)
        previous = lead.current_stage_id
        now = datetime.utcnow()

        with atomic(self.db, "LEADS"):
            lead.current_stage_id = stage.id
            lead.updated_at = now
            self.db.add(LeadStageHistory(
                lead_id=lead.id,
                from_stage_id=previous,
                to_stage_id=stage.id,
                moved_at=now,
                moved_by=moved_by,
            ))

        logger.info(f"[LEADS] Moved lead {lead.id}: {previous} -> {stage.id} (by {moved_by})")
        return MoveResult(lead=self.get_lead(lead_id, user_id), from_stage_id=previous, to_stage=stage)

    def bulk_move(
        self,
        user_id: UUID,
        lead_ids: List[UUID],
        stage_id: UUID,
        moved_by: str = MovedByEnum.bulk_recovery.value,
    ) -> int:
        """Move many leads to one stage in a single transaction.

        Every lead must be owned by the user and live in the target stage's
        pipeline; otherwise nothing is written. One batched UPDATE, then one
        batched history INSERT, then one commit.

        Returns:
            number of leads moved
        """
        unique_ids = list(dict.fromkeys(lead_ids))
        stage = self.pipelines.get_owned_stage(stage_id, user_id)

        previous = dict(
            self.db.query(Lead.id, Lead.current_stage_id)
            .filter(
                Lead.id.in_(unique_ids),
                Lead.user_id == user_id,
                Lead.pipeline_id == stage.pipeline_id,
            )
            .all()
        )
        missing = [lead_id for lead_id in unique_ids if lead_id not in previous]
        if missing:
            raise NotFoundError(f"{len(missing)} lead(s) not found in this pipeline")

        now = datetime.utcnow()
        with atomic(self.db, "BULK_MOVE"):
            self.db.execute(
                update(Lead)
                .where(Lead.id.in_(unique_ids))
                .values(current_stage_id=stage.id, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            self.db.execute(
                insert(LeadStageHistory),
                [
                    {
                        "lead_id": lead_id,
                        "from_stage_id": previous[lead_id],
                        "to_stage_id": stage.id,
                        "moved_at": now,
                        "moved_by": moved_by,
                    }
                    for lead_id in unique_ids
                ],
            )
        self.db.expire_all()

        logger.info(f"[BULK_MOVE] Moved {len(unique_ids)} leads to stage {stage.id} (by {moved_by})")
        return len(unique_ids)

    # History ---------------------------------------------------------------

    def get_history(self, lead_id: UUID, user_id: UUID) -> List[Dict[str, Any]]:
        """History newest first, with from/to stage names (None for deleted stages)."""
        self.get_lead(lead_id, user_id)
        from_stage = aliased(PipelineStage)
        to_stage = aliased(PipelineStage)
        rows = (
            self.db.query(LeadStageHistory, from_stage.name, to_stage.name)
            .outerjoin(from_stage, from_stage.id == LeadStageHistory.from_stage_id)
            .outerjoin(to_stage, to_stage.id == LeadStageHistory.to_stage_id)
            .filter(LeadStageHistory.lead_id == lead_id)
            .order_by(LeadStageHistory.moved_at.desc())
            .all()
        )
        return [
            {
                "id": entry.id,
                "lead_id": entry.lead_id,
                "from_stage_id": entry.from_stage_id,
                "from_stage_name": from_name,
                "to_stage_id": entry.to_stage_id,
                "to_stage_name": to_name,
                "moved_at": entry.moved_at,
                "moved_by": entry.moved_by,
            }
            for entry, from_name, to_name in rows
        ]

    def delete_history_entry(self, lead_id: UUID, history_id: UUID, user_id: UUID) -> None:
        """Remove one erroneous history row of an owned lead."""
        self.get_lead(lead_id, user_id)
        entry = (
            self.db.query(LeadStageHistory)
            .filter(LeadStageHistory.id == history_id, LeadStageHistory.lead_id == lead_id)
            .first()
        )
        if not entry:
            raise NotFoundError("History entry not found")
        with atomic(self.db, "LEADS"):
            self.db.delete(entry)

    def prune_orphan_history(self, user_id: UUID) -> int:
        """Delete history rows whose lead no longer exists.

        Only rows pointing at a stage of one of the user's pipelines are
        touched; orphans of other tenants are left alone.
        """
        owned_stages = (
            select(PipelineStage.id)
            .join(Pipeline, Pipeline.id == PipelineStage.pipeline_id)
            .where(Pipeline.user_id == user_id)
        )
        orphan_filter = and_(
            ~LeadStageHistory.lead_id.in_(select(Lead.id)),
            or_(
                LeadStageHistory.to_stage_id.in_(owned_stages),
                LeadStageHistory.from_stage_id.in_(owned_stages),
            ),
        )
        with atomic(self.db, "LEADS"):
            result = self.db.execute(
                delete(LeadStageHistory)
                .where(orphan_filter)
                .execution_options(synchronize_session=False)
            )
        logger.info(f"[LEADS] Pruned {result.rowcount} orphaned history rows for user {user_id}")
        return result.rowcount

    # Interactions ----------------------------------------------------------

    def add_interaction(
        self,
        lead_id: UUID,
        user_id: UUID,
        payload: InteractionCreate,
        created_by: Optional[str] = None,
    ) -> LeadInteraction:
        lead = self.get_lead(lead_id, user_id)
        interaction = LeadInteraction(
            lead_id=lead.id,
            type=payload.type,
            title=payload.title,
            content=payload.content,
            created_by=created_by,
        )
        with atomic(self.db, "LEADS"):
            self.db.add(interaction)
            lead.updated_at = datetime.utcnow()
        self.db.refresh(interaction)
        return interaction

    def list_interactions(self, lead_id: UUID, user_id: UUID) -> List[LeadInteraction]:
        self.get_lead(lead_id, user_id)
        return (
            self.db.query(LeadInteraction)
            .filter(LeadInteraction.lead_id == lead_id)
            .order_by(LeadInteraction.created_at.desc())
            .all()
        )

    # Reads used by the public API ------------------------------------------

    def count_by_stage(self, pipeline_id: UUID, user_id: UUID) -> List[Dict[str, Any]]:
        pipeline = self.pipelines.get_owned(pipeline_id, user_id)
        counts = self.pipelines.stage_lead_counts([pipeline.id])
        return [{"stage_id": stage.id, "lead_count": counts.get(stage.id, 0)} for stage in pipeline.stages]

    def find_by_email(self, user_id: UUID, email: str, pipeline_id: Optional[UUID] = None) -> List[Lead]:
        query = self.db.query(Lead).filter(Lead.user_id == user_id, Lead.email == email)
        if pipeline_id:
            query = query.filter(Lead.pipeline_id == pipeline_id)
        return query.order_by(Lead.created_at).all()

    def count_leads(self, user_id: UUID, pipeline_id: Optional[UUID] = None) -> int:
        query = self.db.query(func.count(Lead.id)).filter(Lead.user_id == user_id)
        if pipeline_id:
            query = query.filter(Lead.pipeline_id == pipeline_id)
        return query.scalar() or 0

    # CSV import ------------------------------------------------------------

    def import_csv(
        self,
        user_id: UUID,
        pipeline_id: UUID,
        text: str,
        stage_id: Optional[UUID] = None,
    ) -> ImportResult:
        """Import leads from CSV text (`,` or `;` delimited).

        The header row must contain `name`; recognised columns are
        name/email/phone/company/deal_value/origin. Rows without a name or
        with fewer cells than headers are skipped. Reports aggregate counts.
        """
        pipeline = self.pipelines.get_owned(pipeline_id, user_id)
        stage = self.resolve_stage(pipeline.id, stage_id)

        text = text.lstrip("\ufeff")
        first_line = text.split("\n", 1)[0]
        delimiter = ";" if first_line.count(";") > first_line.count(",") else ","
        rows = parse_csv(text, delimiter=delimiter)
        if not rows:
            raise CRMValidationError("CSV file is empty")

        headers = [header.strip().lower() for header in rows[0]]
        if "name" not in headers:
            raise CRMValidationError("CSV must have a 'name' column")

        result = ImportResult()
        for raw in rows[1:]:
            if len(raw) < len(headers):
                result.skipped += 1
                continue
            record = {header: raw[index] for index, header in enumerate(headers) if header in IMPORT_COLUMNS}
            if not record.get("name"):
                result.skipped += 1
                continue
            deal_value = parse_brazilian_number(record["deal_value"]) if record.get("deal_value") else None
            try:
                payload = LeadCreate(
                    pipeline_id=pipeline.id,
                    stage_id=stage.id if stage else None,
                    name=record["name"],
                    email=record.get("email") or None,
                    phone=record.get("phone") or None,
                    company=record.get("company") or None,
                    origin=record.get("origin") or "manual",
                    deal_value=deal_value,
                )
            except ValidationError:
                result.skipped += 1
                continue
            self.create_lead(user_id, payload, moved_by=MovedByEnum.import_.value, validate_custom_fields=False)
            result.imported += 1

        logger.info(f"[IMPORT] Pipeline {pipeline.id}: {result.imported} imported, {result.skipped} skipped")
        return result
