"""Tags and lead tagging.

Adding a tag a lead already carries is a successful no-op: the
(lead_id, tag_id) pair exists at most once, and a duplicate-key race is
swallowed after a rollback instead of surfacing as an error.
"""

import logging
from typing import List
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import get_settings
from ..database import atomic
from ..models import Lead, LeadTag, Tag
from ..schemas import TagCreate, TagUpdate
from .errors import NotFoundError

logger = logging.getLogger(__name__)


class TagService:
    def __init__(self, db: Session):
        self.db = db

    def list_tags(self, user_id: UUID) -> List[Tag]:
        return self.db.query(Tag).filter(Tag.user_id == user_id).order_by(Tag.name).all()

    def get_owned(self, tag_id: UUID, user_id: UUID) -> Tag:
        tag = self.db.query(Tag).filter(Tag.id == tag_id, Tag.user_id == user_id).first()
        if not tag:
            raise NotFoundError("Tag not found")
        return tag

    def _owned_lead(self, lead_id: UUID, user_id: UUID) -> Lead:
        lead = self.db.query(Lead).filter(Lead.id == lead_id, Lead.user_id == user_id).first()
        if not lead:
            raise NotFoundError("Lead not found")
        return lead

    def create(self, user_id: UUID, payload: TagCreate) -> Tag:
        tag = Tag(user_id=user_id, name=payload.name.strip(), color=payload.color or get_settings().DEFAULT_STAGE_COLOR)
        with atomic(self.db, "TAGS"):
            self.db.add(tag)
        self.db.refresh(tag)
        return tag

    def update(self, tag_id: UUID, user_id: UUID, payload: TagUpdate) -> Tag:
        tag = self.get_owned(tag_id, user_id)
        with atomic(self.db, "TAGS"):
            for key, value in payload.model_dump(exclude_unset=True).items():
                if value is not None:
                    setattr(tag, key, value)
        self.db.refresh(tag)
        return tag

    def delete(self, tag_id: UUID, user_id: UUID) -> None:
        """Delete a tag and its lead associations."""
        tag = self.get_owned(tag_id, user_id)
        with atomic(self.db, "TAGS"):
            self.db.delete(tag)

    def _insert_pair(self, lead_id: UUID, tag_id: UUID) -> bool:
        """Insert one association; False when a concurrent add already did."""
        try:
            self.db.add(LeadTag(lead_id=lead_id, tag_id=tag_id))
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.debug(f"[TAGS] Tag {tag_id} already on lead {lead_id}")
            return False
        return True

    def _tagged_leads(self, tag_id: UUID, lead_ids) -> set:
        return {
            row[0]
            for row in self.db.query(LeadTag.lead_id)
            .filter(LeadTag.tag_id == tag_id, LeadTag.lead_id.in_(lead_ids))
            .all()
        }

    def add_tag_to_lead(self, lead_id: UUID, tag_id: UUID, user_id: UUID) -> bool:
        """Attach a tag; returns False when the pair already existed."""
        self._owned_lead(lead_id, user_id)
        self.get_owned(tag_id, user_id)

        if self._tagged_leads(tag_id, [lead_id]):
            return False
        return self._insert_pair(lead_id, tag_id)

    def remove_tag_from_lead(self, lead_id: UUID, tag_id: UUID, user_id: UUID) -> None:
        """Detach a tag; removing an absent pair is a no-op."""
        self._owned_lead(lead_id, user_id)
        with atomic(self.db, "TAGS"):
            self.db.query(LeadTag).filter(
                LeadTag.lead_id == lead_id, LeadTag.tag_id == tag_id
            ).delete(synchronize_session=False)
        self.db.expire_all()

    def bulk_add_tag(self, lead_ids: List[UUID], tag_id: UUID, user_id: UUID) -> int:
        """Attach one tag to many leads, inserting only the missing pairs.

        Returns:
            number of new associations
        """
        self.get_owned(tag_id, user_id)
        owned = {
            row[0]
            for row in self.db.query(Lead.id).filter(Lead.id.in_(lead_ids), Lead.user_id == user_id).all()
        }
        if len(owned) != len(set(lead_ids)):
            raise NotFoundError("Lead not found")

        tagged = self._tagged_leads(tag_id, owned)
        missing = owned - tagged
        try:
            self.db.add_all([LeadTag(lead_id=lead_id, tag_id=tag_id) for lead_id in missing])
            self.db.commit()
            added = len(missing)
        except IntegrityError:
            # A concurrent add took some pairs: retry the rest one at a time
            self.db.rollback()
            added = sum(
                self._insert_pair(lead_id, tag_id)
                for lead_id in owned - self._tagged_leads(tag_id, owned)
            )
        logger.info(f"[TAGS] Bulk-tagged {added} leads with {tag_id} ({len(owned) - added} already tagged)")
        return added

    def tags_for_lead(self, lead_id: UUID, user_id: UUID) -> List[Tag]:
        self._owned_lead(lead_id, user_id)
        return (
            self.db.query(Tag)
            .join(LeadTag, LeadTag.tag_id == Tag.id)
            .filter(LeadTag.lead_id == lead_id)
            .order_by(Tag.name)
            .all()
        )
