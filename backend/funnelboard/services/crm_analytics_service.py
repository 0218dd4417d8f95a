"""CRM analytics: cohort funnel, hybrid stage counts, recovery, sales.

WHAT:
    Read-only queries over leads and their stage history.

WHY:
    - Cohort funnel: only leads BORN inside the window are counted, grouped
      by their current stage. A lead created earlier that moves during the
      window is excluded, so a period's funnel shape is not contaminated by
      another period's leads.
    - Recovery: leads whose history shows they reached a checkpoint stage
      but whose current stage is not one of the success stages. Computed as
      one set query (history membership) instead of scanning history in
      Python. A lead with no current stage counts as "not excluded".
    - History rows of deleted leads are joined away (leads drive every
      query), so orphaned rows behave as "lead never existed".

REFERENCES:
    - funnelboard/services/lead_service.py (writes the history)
    - funnelboard/routers/crm.py (/crm/pipelines/{id}/funnel, /recovery, ...)
"""

import logging
from collections import defaultdict
from datetime import date
from typing import Dict, Iterable, List, Optional
from uuid import UUID

from sqlalchemy import case, func, or_, select
from sqlalchemy.orm import Session, selectinload

from ..models import Lead, LeadStageHistory
from ..utils.dates import day_window
from .errors import CRMValidationError, NotFoundError
from .pipeline_service import PipelineService

logger = logging.getLogger(__name__)

PAID_ORIGIN = "paid"
ORGANIC_ORIGIN = "organic"


class CRMAnalyticsService:
    def __init__(self, db: Session):
        self.db = db
        self.pipelines = PipelineService(db)

    def cohort_funnel(self, pipeline_id: UUID, user_id: UUID, start: date, end: date) -> Dict:
        """Leads created in [start, end] (whole end day) grouped by current stage.

        Stages come back in order_index order with a per-origin breakdown
        (origins lowercased, missing origin read as "manual").
        """
        if end < start:
            raise CRMValidationError("end_date must not be before start_date")
        pipeline = self.pipelines.get_owned(pipeline_id, user_id)
        window_start, window_end = day_window(start, end)

        rows = (
            self.db.query(Lead.current_stage_id, Lead.origin)
            .filter(
                Lead.pipeline_id == pipeline.id,
                Lead.created_at >= window_start,
                Lead.created_at < window_end,
            )
            .all()
        )

        counts: Dict[Optional[UUID], int] = defaultdict(int)
        by_origin: Dict[Optional[UUID], Dict[str, int]] = defaultdict(lambda: defaultdict(int))
        for stage_id, origin in rows:
            counts[stage_id] += 1
            by_origin[stage_id][(origin or "manual").lower()] += 1

        stages = [
            {
                "stage_id": stage.id,
                "name": stage.name,
                "color": stage.color,
                "order_index": stage.order_index,
                "count": counts.get(stage.id, 0),
                "by_origin": dict(by_origin.get(stage.id, {})),
            }
            for stage in pipeline.stages
        ]
        logger.info(f"[FUNNEL] Pipeline {pipeline.id} {start}..{end}: {len(rows)} leads in cohort")
        return {
            "pipeline_id": pipeline.id,
            "start_date": start.isoformat(),
            "end_date": end.isoformat(),
            "total_leads": len(rows),
            "no_stage_count": counts.get(None, 0),
            "stages": stages,
        }

    def stage_counts_by_origin(self, user_id: UUID, stage_ids: Iterable[UUID]) -> List[Dict]:
        """Current lead counts per stage as total / paid / organic.

        Stage ids not owned by the user are ignored.
        """
        ids = list(dict.fromkeys(stage_ids))
        if not ids:
            return []
        rows = (
            self.db.query(Lead.current_stage_id, Lead.origin, func.count(Lead.id))
            .filter(Lead.user_id == user_id, Lead.current_stage_id.in_(ids))
            .group_by(Lead.current_stage_id, Lead.origin)
            .all()
        )
        result = {stage_id: {"stage_id": stage_id, "total": 0, "paid": 0, "organic": 0} for stage_id in ids}
        for stage_id, origin, count in rows:
            entry = result[stage_id]
            entry["total"] += count
            if origin == PAID_ORIGIN:
                entry["paid"] += count
            elif origin == ORGANIC_ORIGIN:
                entry["organic"] += count
        return list(result.values())

    def recovery_leads(
        self,
        pipeline_id: UUID,
        user_id: UUID,
        passed_stage_id: UUID,
        exclude_stage_ids: Iterable[UUID] = (),
    ) -> List[Lead]:
        """Leads that passed through `passed_stage_id` and are not currently
        in any of `exclude_stage_ids`, newest first.

        Raises:
            NotFoundError: pipeline not owned or passed stage not in it.
        """
        pipeline = self.pipelines.get_owned(pipeline_id, user_id)
        stage_ids = {stage.id for stage in pipeline.stages}
        if passed_stage_id not in stage_ids:
            raise NotFoundError("Stage not found in this pipeline")
        excluded = list(set(exclude_stage_ids))

        passed_through = (
            select(LeadStageHistory.lead_id)
            .where(LeadStageHistory.to_stage_id == passed_stage_id)
        )
        query = (
            self.db.query(Lead)
            .options(selectinload(Lead.tags), selectinload(Lead.current_stage))
            .filter(
                Lead.pipeline_id == pipeline.id,
                Lead.id.in_(passed_through),
            )
        )
        if excluded:
            query = query.filter(or_(Lead.current_stage_id.is_(None), Lead.current_stage_id.notin_(excluded)))

        leads = query.order_by(Lead.created_at.desc()).all()
        logger.info(f"[RECOVERY] Pipeline {pipeline.id}: {len(leads)} leads passed {passed_stage_id}")
        return leads

    def sales_summary(self, user_id: UUID, pipeline_id: Optional[UUID] = None) -> Dict:
        """Sum of deal_value and the number of leads with a positive value."""
        query = self.db.query(
            func.coalesce(func.sum(Lead.deal_value), 0),
            func.sum(case((Lead.deal_value > 0, 1), else_=0)),
        ).filter(Lead.user_id == user_id, Lead.deal_value.isnot(None))
        if pipeline_id:
            self.pipelines.get_owned(pipeline_id, user_id)
            query = query.filter(Lead.pipeline_id == pipeline_id)
        total_value, deal_count = query.one()
        return {"total_value": float(total_value or 0), "deal_count": int(deal_count or 0)}
