import uuid
import sqlalchemy as sa
from sqlalchemy import (
    Column,
    String,
    Boolean,
    DateTime,
    ForeignKey,
    JSON,
    Integer,
    Text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from datetime import datetime, timezone

from .database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


RUN_STATUSES = ("open", "assigned", "submitted")
MUTABLE_RUN_STATUSES = ("open", "assigned")
EVIDENCE_KINDS = ("photo", "signature")


class Organization(Base):
    __tablename__ = "organizations"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    units = relationship("Unit", back_populates="organization")
    templates = relationship("ChecklistTemplate", back_populates="organization")


class Unit(Base):
    __tablename__ = "units"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organization_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id"), nullable=False)
    name = Column(String, nullable=False)
    license_plate = Column(String)
    timezone = Column(String, nullable=False, default="UTC")
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    organization = relationship("Organization", back_populates="units")


class ChecklistTemplate(Base):
    __tablename__ = "checklist_templates"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organization_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id"), nullable=False)
    name = Column(String, nullable=False)
    description = Column(Text)
    frequency = Column(String, default="daily")
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    organization = relationship("Organization", back_populates="templates")
    items = relationship(
        "TemplateItem",
        back_populates="template",
        order_by="TemplateItem.sort_order",
        cascade="all, delete-orphan",
    )


class TemplateItem(Base):
    __tablename__ = "template_items"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    template_id = Column(UUID(as_uuid=True), ForeignKey("checklist_templates.id"), nullable=False)
    label = Column(String, nullable=False)
    kind = Column(String, nullable=False, default="boolean")
    required = Column(Boolean, nullable=False, default=True)
    sort_order = Column(Integer, nullable=False, default=0)

    template = relationship("ChecklistTemplate", back_populates="items")


class ChecklistRun(Base):
    __tablename__ = "checklist_runs"
    __table_args__ = (
        sa.UniqueConstraint(
            "unit_id",
            "template_id",
            "calendar_day_key",
            name="uq_run_unit_template_day",
        ),
        sa.CheckConstraint("status in ('open', 'assigned', 'submitted')", name="ck_checklist_runs_status"),
        sa.Index("ix_checklist_runs_status", "status"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organization_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id"), nullable=False)
    unit_id = Column(UUID(as_uuid=True), ForeignKey("units.id"), nullable=False)
    template_id = Column(UUID(as_uuid=True), ForeignKey("checklist_templates.id"), nullable=False)
    calendar_day_key = Column(String(10), nullable=False)
    status = Column(String, nullable=False, default="open")
    trigger = Column(String, nullable=False, default="manual")
    assigned_to = Column(UUID(as_uuid=True), nullable=True)
    created_by = Column(UUID(as_uuid=True), nullable=True)
    submitted_by = Column(UUID(as_uuid=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    assigned_at = Column(DateTime(timezone=True), nullable=True)
    submitted_at = Column(DateTime(timezone=True), nullable=True)

    unit = relationship("Unit")
    template = relationship("ChecklistTemplate")
    responses = relationship("RunResponse", back_populates="run", cascade="all, delete-orphan")
    evidence = relationship(
        "RunEvidence",
        back_populates="run",
        order_by="RunEvidence.created_at",
        cascade="all, delete-orphan",
    )


class RunResponse(Base):
    __tablename__ = "run_responses"
    __table_args__ = (
        sa.UniqueConstraint("run_id", "item_id", name="uq_response_run_item"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    run_id = Column(UUID(as_uuid=True), ForeignKey("checklist_runs.id"), nullable=False)
    item_id = Column(UUID(as_uuid=True), ForeignKey("template_items.id"), nullable=False)
    value_bool = Column(Boolean, nullable=True)
    value_text = Column(Text, nullable=True)
    recorded_by = Column(UUID(as_uuid=True), nullable=True)
    recorded_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    run = relationship("ChecklistRun", back_populates="responses")


class RunEvidence(Base):
    __tablename__ = "run_evidence"
    __table_args__ = (
        sa.UniqueConstraint("run_id", "kind", "slot", name="uq_evidence_run_kind_slot"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    run_id = Column(UUID(as_uuid=True), ForeignKey("checklist_runs.id"), nullable=False)
    kind = Column(String, nullable=False)
    slot = Column(Integer, nullable=False)
    storage_path = Column(String, nullable=True)
    filename = Column(String)
    content_type = Column(String)
    file_size = Column(Integer)
    upload_status = Column(String, nullable=False, default="stored")
    error = Column(Text)
    uploaded_by = Column(UUID(as_uuid=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    run = relationship("ChecklistRun", back_populates="evidence")


class ReminderConfig(Base):
    __tablename__ = "reminder_configs"
    __table_args__ = (
        sa.UniqueConstraint("unit_id", "template_id", name="uq_reminder_unit_template"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organization_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id"), nullable=False)
    unit_id = Column(UUID(as_uuid=True), ForeignKey("units.id"), nullable=False)
    template_id = Column(UUID(as_uuid=True), ForeignKey("checklist_templates.id"), nullable=False)
    timezone = Column(String, nullable=False)
    trigger_hour = Column(Integer, nullable=False, default=8)
    trigger_minute = Column(Integer, nullable=False, default=0)
    enabled = Column(Boolean, nullable=False, default=True)
    last_evaluated_day = Column(String(10), nullable=True)
    created_by = Column(UUID(as_uuid=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    unit = relationship("Unit")
    template = relationship("ChecklistTemplate")


class AuditEventRecord(Base):
    __tablename__ = "audit_events"
    __table_args__ = (
        sa.Index("ix_audit_events_subject", "subject_type", "subject_id"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    action = Column(String, nullable=False)
    actor_id = Column(UUID(as_uuid=True), nullable=True)
    subject_type = Column(String, nullable=False)
    subject_id = Column(UUID(as_uuid=True), nullable=False)
    organization_id = Column(UUID(as_uuid=True), nullable=True)
    meta = Column(JSON, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
