"""Pydantic schemas for reminder configuration and audit log APIs."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ReminderCreate(BaseModel):
    unit_id: UUID
    template_id: UUID
    timezone: str | None = None
    trigger_hour: int = Field(default=8, ge=0, le=23)
    trigger_minute: int = Field(default=0, ge=0, le=59)
    enabled: bool = True


class ReminderUpdate(BaseModel):
    """Selective update payload; omitted fields keep their stored value."""

    timezone: str | None = None
    trigger_hour: int | None = Field(default=None, ge=0, le=23)
    trigger_minute: int | None = Field(default=None, ge=0, le=59)
    enabled: bool | None = None


class ReminderOut(BaseModel):
    id: UUID
    organization_id: UUID
    unit_id: UUID
    template_id: UUID
    timezone: str
    trigger_hour: int
    trigger_minute: int
    enabled: bool
    last_evaluated_day: str | None = None
    created_by: UUID | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TickOutcomeOut(BaseModel):
    config_id: UUID
    status: str
    day_key: str | None = None
    run_id: UUID | None = None
    error: str | None = None


class TickReportOut(BaseModel):
    evaluated_at: datetime
    created: int
    reused: int
    not_due: int
    already_evaluated: int
    failed: int
    outcomes: list[TickOutcomeOut] = Field(default_factory=list)


class AuditEventOut(BaseModel):
    id: UUID
    action: str
    actor_id: UUID | None = None
    subject_type: str
    subject_id: UUID
    organization_id: UUID | None = None
    meta: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
