"""Pydantic schemas for checklist run lifecycle APIs."""

from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class RunCreate(BaseModel):
    unit_id: UUID
    template_id: UUID


class RunOut(BaseModel):
    id: UUID
    organization_id: UUID
    unit_id: UUID
    template_id: UUID
    calendar_day_key: str
    status: Literal["open", "assigned", "submitted"]
    trigger: str
    assigned_to: UUID | None = None
    created_by: UUID | None = None
    submitted_by: UUID | None = None
    created_at: datetime
    assigned_at: datetime | None = None
    submitted_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class RunCreateOut(BaseModel):
    run: RunOut
    created: bool


class RunSummaryOut(BaseModel):
    """Run listing row with unit and template names already resolved."""

    id: UUID
    organization_id: UUID
    unit_id: UUID
    unit_name: str
    template_id: UUID
    template_name: str
    calendar_day_key: str
    status: str
    trigger: str
    assigned_to: UUID | None = None
    created_at: datetime
    assigned_at: datetime | None = None
    submitted_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class ResponsePayload(BaseModel):
    value: bool | str


class ResponseAnswer(BaseModel):
    item_id: UUID
    value: bool | str


class ResponseBatch(BaseModel):
    answers: list[ResponseAnswer] = Field(default_factory=list)


class ResponseOut(BaseModel):
    item_id: UUID
    value_bool: bool | None = None
    value_text: str | None = None
    recorded_by: UUID | None = None
    recorded_at: datetime

    model_config = ConfigDict(from_attributes=True)


class EvidenceOut(BaseModel):
    id: UUID
    kind: str
    slot: int
    filename: str | None = None
    content_type: str | None = None
    file_size: int | None = None
    upload_status: str
    error: str | None = None
    uploaded_by: UUID | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class EvidenceAttachOut(BaseModel):
    evidence: EvidenceOut
    warning: str | None = None


class EvidenceLinkOut(EvidenceOut):
    url: str


class TemplateItemOut(BaseModel):
    id: UUID
    label: str
    kind: str
    required: bool
    sort_order: int

    model_config = ConfigDict(from_attributes=True)


class RunDetailOut(RunOut):
    unit_name: str
    template_name: str
    items: list[TemplateItemOut] = Field(default_factory=list)
    responses: list[ResponseOut] = Field(default_factory=list)
    evidence: list[EvidenceOut] = Field(default_factory=list)


class SubmitTallyOut(BaseModel):
    total_items: int
    ok_count: int
    photos_attached: int
    signed: bool


class SubmitOut(BaseModel):
    run: RunOut
    tally: SubmitTallyOut
    warnings: list[str] = Field(default_factory=list)
    already_submitted: bool = False
