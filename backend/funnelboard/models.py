"""SQLAlchemy ORM models and enums.

This module defines the CRM schema using UUID primary keys and explicit
relationships. Campaign rows coming from Google Sheets are NOT persisted:
they are fetched, mapped and aggregated per request (see
funnelboard/services/row_mapper.py and metrics_aggregator.py).

Ownership graph:
    User ─┬─ Pipeline ─┬─ PipelineStage
          │            └─ Lead ─┬─ LeadTag ── Tag
          │                     └─ LeadInteraction
          ├─ Tag
          ├─ CustomField
          └─ ApiKey

LeadStageHistory is an append-only log keyed by lead_id WITHOUT a foreign key:
deleting a lead leaves its history behind, and analytics queries join history
back to existing leads (orphans read as "lead never existed").
"""

import uuid
from datetime import datetime
import enum

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declarative_base, relationship


# Single Base used by the entire application
Base = declarative_base()


# Enums ---------------------------------------------------------

class MovedByEnum(str, enum.Enum):
    """Actor tags written to LeadStageHistory.moved_by (column stays free-form)."""
    api = "api"
    webhook = "webhook"
    system = "system"
    user = "user"
    bulk_recovery = "bulk_recovery"
    import_ = "import"


class InteractionTypeEnum(str, enum.Enum):
    note = "note"
    call = "call"
    email = "email"
    meeting = "meeting"
    task = "task"


class CustomFieldTypeEnum(str, enum.Enum):
    text = "text"
    number = "number"
    date = "date"
    select = "select"
    boolean = "boolean"


# Canonical origins offered by the UI; any other string is accepted.
DEFAULT_LEAD_ORIGINS = ("organic", "paid", "manual", "webhook", "instagram", "indicação")


# Core models ----------------------------------------------------

class User(Base):
    """Authenticated account owning pipelines, tags, custom fields and API keys.

    Authentication itself lives outside this service; we only resolve the
    identity (JWT `sub` = email, or an API key) to a row here.
    """
    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    pipelines = relationship("Pipeline", back_populates="user", cascade="all, delete-orphan")
    api_keys = relationship("ApiKey", back_populates="user", cascade="all, delete-orphan")

    def __str__(self):
        return f"{self.name} ({self.email})" if self.name else self.email


class ApiKey(Base):
    """Hashed API key used by the public webhook/lead API.

    Only the SHA-256 hex digest is stored; `key_prefix` lets the UI show which
    key is which without revealing it.
    """
    __tablename__ = "api_keys"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    key_prefix = Column(String, nullable=False)
    key_hash = Column(String, nullable=False, unique=True, index=True)
    last_used_at = Column(DateTime, nullable=True)
    revoked_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="api_keys")


class Pipeline(Base):
    """A sales pipeline: an ordered list of stages that leads move through.

    Owns its stages and its leads (cascade delete).
    """
    __tablename__ = "pipelines"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="pipelines")
    stages = relationship(
        "PipelineStage",
        back_populates="pipeline",
        cascade="all, delete-orphan",
        order_by="PipelineStage.order_index",
    )
    leads = relationship("Lead", back_populates="pipeline", cascade="all, delete-orphan")

    def __str__(self):
        return self.name


class PipelineStage(Base):
    """One step of a pipeline.

    order_index is contiguous (0..n-1) per pipeline. lead_count is NOT a
    column: it is computed from Lead rows at read time.
    """
    __tablename__ = "pipeline_stages"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    pipeline_id = Column(
        UUID(as_uuid=True),
        ForeignKey("pipelines.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = Column(String, nullable=False)
    color = Column(String, nullable=False, default="#19069E")
    order_index = Column(Integer, nullable=False, default=0)
    default_value = Column(Numeric(14, 2), nullable=True)  # default deal value when a lead enters
    created_at = Column(DateTime, default=datetime.utcnow)

    pipeline = relationship("Pipeline", back_populates="stages")

    def __str__(self):
        return self.name


class Lead(Base):
    """A prospect sitting in (at most) one stage of one pipeline.

    current_stage_id caches the most recent LeadStageHistory.to_stage_id;
    NULL is the valid "no stage" state.
    """
    __tablename__ = "leads"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    pipeline_id = Column(
        UUID(as_uuid=True),
        ForeignKey("pipelines.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    current_stage_id = Column(
        UUID(as_uuid=True),
        ForeignKey("pipeline_stages.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    name = Column(String, nullable=False)
    email = Column(String, nullable=True, index=True)
    phone = Column(String, nullable=True)
    company = Column(String, nullable=True)
    origin = Column(String, nullable=False, default="manual")  # free-form, see DEFAULT_LEAD_ORIGINS

    # Attribution
    utm_source = Column(String, nullable=True)
    utm_medium = Column(String, nullable=True)
    utm_campaign = Column(String, nullable=True)
    utm_content = Column(String, nullable=True)
    utm_term = Column(String, nullable=True)

    custom_fields = Column(JSON, nullable=False, default=dict)
    assigned_to = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    deal_value = Column(Numeric(14, 2), nullable=True)
    scheduled_call_at = Column(DateTime, nullable=True)
    call_completed_at = Column(DateTime, nullable=True)

    # created_at is writable at creation time to backfill historical leads
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    pipeline = relationship("Pipeline", back_populates="leads")
    current_stage = relationship("PipelineStage")
    assigned_user = relationship("User", foreign_keys=[assigned_to])
    tag_links = relationship("LeadTag", back_populates="lead", cascade="all, delete-orphan")
    tags = relationship("Tag", secondary="lead_tags", viewonly=True, order_by="Tag.name")
    interactions = relationship(
        "LeadInteraction",
        back_populates="lead",
        cascade="all, delete-orphan",
        order_by="LeadInteraction.created_at.desc()",
    )

    def __str__(self):
        return self.name


class LeadStageHistory(Base):
    """Append-only record of every stage placement of a lead.

    One row per creation (from_stage_id NULL) and one per move.
    """
    __tablename__ = "lead_stage_history"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    lead_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    from_stage_id = Column(UUID(as_uuid=True), nullable=True)
    to_stage_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    moved_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    moved_by = Column(String, nullable=False, default=MovedByEnum.system.value)


class Tag(Base):
    __tablename__ = "tags"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    color = Column(String, nullable=False, default="#19069E")
    created_at = Column(DateTime, default=datetime.utcnow)

    lead_links = relationship("LeadTag", back_populates="tag", cascade="all, delete-orphan")

    def __str__(self):
        return self.name


class LeadTag(Base):
    """Join table Lead <-> Tag. A (lead_id, tag_id) pair exists at most once."""
    __tablename__ = "lead_tags"
    __table_args__ = (UniqueConstraint("lead_id", "tag_id", name="uq_lead_tag"),)

    lead_id = Column(UUID(as_uuid=True), ForeignKey("leads.id", ondelete="CASCADE"), primary_key=True)
    tag_id = Column(UUID(as_uuid=True), ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    lead = relationship("Lead", back_populates="tag_links")
    tag = relationship("Tag", back_populates="lead_links")


class LeadInteraction(Base):
    """Timeline entry on a lead (note, call, email, meeting, task)."""
    __tablename__ = "lead_interactions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    lead_id = Column(UUID(as_uuid=True), ForeignKey("leads.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(Enum(InteractionTypeEnum, values_callable=lambda obj: [e.value for e in obj]), nullable=False)
    title = Column(String, nullable=True)
    content = Column(Text, nullable=True)
    created_by = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    lead = relationship("Lead", back_populates="interactions")


class CustomField(Base):
    """User-defined field definition; values live in Lead.custom_fields[field_key]."""
    __tablename__ = "custom_fields"
    __table_args__ = (UniqueConstraint("user_id", "field_key", name="uq_custom_field_key"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    field_key = Column(String, nullable=False)
    field_type = Column(Enum(CustomFieldTypeEnum, values_callable=lambda obj: [e.value for e in obj]), nullable=False)
    options = Column(JSON, nullable=True)
    required = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    def __str__(self):
        return self.name
