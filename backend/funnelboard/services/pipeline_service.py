"""Pipeline and stage store.

WHAT:
    CRUD for pipelines and their ordered stages, scoped to the owning user.

WHY:
    - Stage order is a consistent total order: order_index is always the
      contiguous range 0..n-1. Reorder rewrites every index in ONE batched
      UPDATE inside one transaction, and deleting a stage re-packs the rest.
    - A pipeline and its initial stages are inserted in one transaction, so a
      failure never leaves a half-created pipeline behind.
    - lead_count is not stored. It is computed by a separate GROUP BY over
      leads and merged onto the stage objects in Python.

REFERENCES:
    - funnelboard/routers/crm.py (JWT-authenticated CRUD)
    - funnelboard/routers/public_api.py (GET /api/crm/pipelines)
"""

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional
from uuid import UUID

from sqlalchemy import func, update
from sqlalchemy.orm import Session, selectinload

from ..config import get_settings
from ..database import atomic
from ..models import Lead, Pipeline, PipelineStage
from ..schemas import (
    PipelineCreate,
    PipelineStageCreate,
    PipelineStageUpdate,
    PipelineUpdate,
)
from .errors import CRMValidationError, NotFoundError

logger = logging.getLogger(__name__)


def _required_name(value: Optional[str]) -> str:
    """Stripped name for an update; null or blank is a 400."""
    name = (value or "").strip()
    if not name:
        raise CRMValidationError("name must not be empty")
    return name


class PipelineService:
    """Pipeline/stage operations for one database session.

    Usage:
        service = PipelineService(db)
        pipeline = service.create(user.id, PipelineCreate(name="Inbound", stages=[...]))
    """

    def __init__(self, db: Session):
        self.db = db
        self.default_color = get_settings().DEFAULT_STAGE_COLOR

    # Lookups ---------------------------------------------------------------

    def get_owned(self, pipeline_id: UUID, user_id: UUID) -> Pipeline:
        pipeline = (
            self.db.query(Pipeline)
            .options(selectinload(Pipeline.stages))
            .filter(Pipeline.id == pipeline_id, Pipeline.user_id == user_id)
            .first()
        )
        if not pipeline:
            raise NotFoundError("Pipeline not found")
        return pipeline

    def get_owned_stage(self, stage_id: UUID, user_id: UUID) -> PipelineStage:
        stage = (
            self.db.query(PipelineStage)
            .join(Pipeline, Pipeline.id == PipelineStage.pipeline_id)
            .filter(PipelineStage.id == stage_id, Pipeline.user_id == user_id)
            .first()
        )
        if not stage:
            raise NotFoundError("Stage not found")
        return stage

    def stage_lead_counts(self, pipeline_ids: Iterable[UUID]) -> Dict[UUID, int]:
        """current_stage_id -> number of leads, for the given pipelines."""
        ids = list(pipeline_ids)
        if not ids:
            return {}
        rows = (
            self.db.query(Lead.current_stage_id, func.count(Lead.id))
            .filter(Lead.pipeline_id.in_(ids), Lead.current_stage_id.isnot(None))
            .group_by(Lead.current_stage_id)
            .all()
        )
        return {stage_id: count for stage_id, count in rows}

    def _attach_counts(self, pipelines: List[Pipeline]) -> List[Pipeline]:
        counts = self.stage_lead_counts(p.id for p in pipelines)
        for pipeline in pipelines:
            for stage in pipeline.stages:
                stage.lead_count = counts.get(stage.id, 0)
        return pipelines

    # Pipelines -------------------------------------------------------------

    def list_pipelines(self, user_id: UUID) -> List[Pipeline]:
        """Pipelines newest first, stages by order_index, with lead counts."""
        pipelines = (
            self.db.query(Pipeline)
            .options(selectinload(Pipeline.stages))
            .filter(Pipeline.user_id == user_id)
            .order_by(Pipeline.created_at.desc())
            .all()
        )
        return self._attach_counts(pipelines)

    def get(self, pipeline_id: UUID, user_id: UUID) -> Pipeline:
        return self._attach_counts([self.get_owned(pipeline_id, user_id)])[0]

    def create(self, user_id: UUID, payload: PipelineCreate) -> Pipeline:
        """Insert the pipeline and its initial stages in one transaction."""
        with atomic(self.db, "PIPELINES"):
            pipeline = Pipeline(user_id=user_id, name=payload.name.strip(), description=payload.description)
            self.db.add(pipeline)
            self.db.flush()
            for index, stage in enumerate(payload.stages):
                self.db.add(self._new_stage(pipeline.id, stage, index))

        logger.info(f"[PIPELINES] Created pipeline {pipeline.id} with {len(payload.stages)} stages")
        return self.get(pipeline.id, user_id)

    def update(self, pipeline_id: UUID, user_id: UUID, payload: PipelineUpdate) -> Pipeline:
        pipeline = self.get_owned(pipeline_id, user_id)
        changes = payload.model_dump(exclude_unset=True)
        if "name" in changes:
            changes["name"] = _required_name(changes["name"])
        with atomic(self.db, "PIPELINES"):
            for key, value in changes.items():
                setattr(pipeline, key, value)
            pipeline.updated_at = datetime.utcnow()
        return self.get(pipeline_id, user_id)

    def delete(self, pipeline_id: UUID, user_id: UUID) -> None:
        """Delete the pipeline; stages and leads go with it."""
        pipeline = self.get_owned(pipeline_id, user_id)
        with atomic(self.db, "PIPELINES"):
            self.db.delete(pipeline)
        logger.info(f"[PIPELINES] Deleted pipeline {pipeline_id}")

    # Stages ----------------------------------------------------------------

    def _new_stage(self, pipeline_id: UUID, payload: PipelineStageCreate, order_index: int) -> PipelineStage:
        return PipelineStage(
            pipeline_id=pipeline_id,
            name=payload.name.strip(),
            color=payload.color or self.default_color,
            order_index=order_index,
            default_value=payload.default_value,
        )

    def add_stage(self, pipeline_id: UUID, user_id: UUID, payload: PipelineStageCreate) -> PipelineStage:
        """Append a stage at the end of the pipeline."""
        pipeline = self.get_owned(pipeline_id, user_id)
        with atomic(self.db, "STAGES"):
            stage = self._new_stage(pipeline.id, payload, len(pipeline.stages))
            self.db.add(stage)
        self.db.refresh(stage)
        stage.lead_count = 0
        return stage

    def update_stage(self, stage_id: UUID, user_id: UUID, payload: PipelineStageUpdate) -> PipelineStage:
        stage = self.get_owned_stage(stage_id, user_id)
        changes = payload.model_dump(exclude_unset=True)
        if "name" in changes:
            changes["name"] = _required_name(changes["name"])
        # color is NOT NULL: an explicit null leaves it unchanged
        if changes.get("color", "") is None:
            changes.pop("color")
        with atomic(self.db, "STAGES"):
            for key, value in changes.items():
                setattr(stage, key, value)
        self.db.refresh(stage)
        stage.lead_count = self.stage_lead_counts([stage.pipeline_id]).get(stage.id, 0)
        return stage

    def delete_stage(self, stage_id: UUID, user_id: UUID) -> None:
        """Delete a stage; its leads fall back to "no stage" and the
        remaining stages are re-packed to 0..n-1."""
        stage = self.get_owned_stage(stage_id, user_id)
        pipeline_id = stage.pipeline_id
        with atomic(self.db, "STAGES"):
            self.db.execute(
                update(Lead)
                .where(Lead.current_stage_id == stage.id)
                .values(current_stage_id=None, updated_at=datetime.utcnow())
                .execution_options(synchronize_session=False)
            )
            self.db.delete(stage)
            self.db.flush()
            remaining = (
                self.db.query(PipelineStage)
                .filter(PipelineStage.pipeline_id == pipeline_id)
                .order_by(PipelineStage.order_index)
                .all()
            )
            for index, other in enumerate(remaining):
                other.order_index = index
        self.db.expire_all()
        logger.info(f"[STAGES] Deleted stage {stage_id} from pipeline {pipeline_id}")

    def reorder_stages(self, pipeline_id: UUID, user_id: UUID, stage_ids: List[UUID]) -> Pipeline:
        """Rewrite order_index from the submitted order.

        The submitted ids must be exactly the pipeline's stage set; the update
        is one executemany statement in one transaction.
        """
        pipeline = self.get_owned(pipeline_id, user_id)
        current = {stage.id for stage in pipeline.stages}
        if len(stage_ids) != len(set(stage_ids)) or set(stage_ids) != current:
            raise CRMValidationError("stage_ids must list every stage of the pipeline exactly once")

        with atomic(self.db, "STAGES"):
            self.db.execute(
                update(PipelineStage),
                [{"id": stage_id, "order_index": index} for index, stage_id in enumerate(stage_ids)],
            )
        self.db.expire_all()
        return self.get(pipeline_id, user_id)

    def first_stage(self, pipeline_id: UUID) -> Optional[PipelineStage]:
        """Lowest order_index stage, or None for a stageless pipeline."""
        return (
            self.db.query(PipelineStage)
            .filter(PipelineStage.pipeline_id == pipeline_id)
            .order_by(PipelineStage.order_index)
            .first()
        )
