"""Checklist run lifecycle API routes."""

from __future__ import annotations

import asyncio
from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Response, UploadFile, status
from sqlalchemy.orm import Session

from .. import models, schemas
from ..actors import get_current_actor
from ..database import get_db
from ..repository import RunSummary
from ..services import runs as run_service
from ..storage import EvidenceGateway, get_evidence_gateway
from ..timezones import as_utc

router = APIRouter(prefix="/api/runs", tags=["runs"])


def _optional_utc(value):
    return as_utc(value) if value is not None else None


def _serialize_run(run: models.ChecklistRun) -> schemas.RunOut:
    return schemas.RunOut(
        id=run.id,
        organization_id=run.organization_id,
        unit_id=run.unit_id,
        template_id=run.template_id,
        calendar_day_key=run.calendar_day_key,
        status=run.status,
        trigger=run.trigger,
        assigned_to=run.assigned_to,
        created_by=run.created_by,
        submitted_by=run.submitted_by,
        created_at=as_utc(run.created_at),
        assigned_at=_optional_utc(run.assigned_at),
        submitted_at=_optional_utc(run.submitted_at),
    )


def _serialize_summary(summary: RunSummary) -> schemas.RunSummaryOut:
    return schemas.RunSummaryOut(
        id=summary.id,
        organization_id=summary.organization_id,
        unit_id=summary.unit_id,
        unit_name=summary.unit_name,
        template_id=summary.template_id,
        template_name=summary.template_name,
        calendar_day_key=summary.calendar_day_key,
        status=summary.status,
        trigger=summary.trigger,
        assigned_to=summary.assigned_to,
        created_at=summary.created_at,
        assigned_at=summary.assigned_at,
        submitted_at=summary.submitted_at,
    )


def _serialize_evidence(item: models.RunEvidence) -> schemas.EvidenceOut:
    return schemas.EvidenceOut(
        id=item.id,
        kind=item.kind,
        slot=item.slot,
        filename=item.filename,
        content_type=item.content_type,
        file_size=item.file_size,
        upload_status=item.upload_status,
        error=item.error,
        uploaded_by=item.uploaded_by,
        created_at=as_utc(item.created_at),
    )


def _serialize_response(response: models.RunResponse) -> schemas.ResponseOut:
    return schemas.ResponseOut(
        item_id=response.item_id,
        value_bool=response.value_bool,
        value_text=response.value_text,
        recorded_by=response.recorded_by,
        recorded_at=as_utc(response.recorded_at),
    )


@router.post("", response_model=schemas.RunCreateOut, status_code=status.HTTP_201_CREATED)
async def create_run(
    payload: schemas.RunCreate,
    response: Response,
    db: Session = Depends(get_db),
    actor_id: UUID = Depends(get_current_actor),
) -> schemas.RunCreateOut:
    result = run_service.create_run(db, payload.unit_id, payload.template_id, actor_id=actor_id)
    if not result.created:
        response.status_code = status.HTTP_200_OK
    return schemas.RunCreateOut(run=_serialize_run(result.run), created=result.created)


@router.get("", response_model=list[schemas.RunSummaryOut])
async def list_runs(
    organization_id: UUID | None = None,
    unit_id: UUID | None = None,
    run_status: Literal["open", "assigned", "submitted"] | None = None,
    open_only: bool = False,
    mine: bool = False,
    db: Session = Depends(get_db),
    actor_id: UUID = Depends(get_current_actor),
) -> list[schemas.RunSummaryOut]:
    statuses = None
    if run_status:
        statuses = [run_status]
    elif open_only:
        statuses = list(run_service.MUTABLE_STATUSES)
    summaries = run_service.list_runs(
        db,
        organization_id=organization_id,
        unit_id=unit_id,
        statuses=statuses,
        assigned_to=actor_id if mine else None,
    )
    return [_serialize_summary(summary) for summary in summaries]


@router.get("/overdue", response_model=list[schemas.RunSummaryOut], dependencies=[Depends(get_current_actor)])
async def list_overdue_runs(
    organization_id: UUID | None = None,
    db: Session = Depends(get_db),
) -> list[schemas.RunSummaryOut]:
    return [
        _serialize_summary(summary)
        for summary in run_service.list_overdue_runs(db, organization_id=organization_id)
    ]


@router.get("/{run_id}", response_model=schemas.RunDetailOut, dependencies=[Depends(get_current_actor)])
async def get_run(
    run_id: UUID,
    db: Session = Depends(get_db),
) -> schemas.RunDetailOut:
    run = run_service.get_run_detail(db, run_id)
    base = _serialize_run(run)
    return schemas.RunDetailOut(
        **base.model_dump(),
        unit_name=run.unit.name,
        template_name=run.template.name,
        items=[schemas.TemplateItemOut.model_validate(item) for item in run.template.items],
        responses=[_serialize_response(item) for item in run.responses],
        evidence=[_serialize_evidence(item) for item in run.evidence],
    )


@router.post("/{run_id}/claim", response_model=schemas.RunOut)
async def claim_run(
    run_id: UUID,
    db: Session = Depends(get_db),
    actor_id: UUID = Depends(get_current_actor),
) -> schemas.RunOut:
    result = run_service.claim_run(db, run_id, actor_id)
    return _serialize_run(result.run)


@router.post("/{run_id}/unclaim", response_model=schemas.RunOut)
async def unclaim_run(
    run_id: UUID,
    db: Session = Depends(get_db),
    actor_id: UUID = Depends(get_current_actor),
) -> schemas.RunOut:
    return _serialize_run(run_service.unclaim_run(db, run_id, actor_id))


@router.put("/{run_id}/responses", response_model=list[schemas.ResponseOut])
async def record_responses(
    run_id: UUID,
    payload: schemas.ResponseBatch,
    db: Session = Depends(get_db),
    actor_id: UUID = Depends(get_current_actor),
) -> list[schemas.ResponseOut]:
    answers = {answer.item_id: answer.value for answer in payload.answers}
    recorded = run_service.record_responses(db, run_id, answers, actor_id)
    return [_serialize_response(item) for item in recorded]


@router.put("/{run_id}/responses/{item_id}", response_model=schemas.ResponseOut)
async def record_response(
    run_id: UUID,
    item_id: UUID,
    payload: schemas.ResponsePayload,
    db: Session = Depends(get_db),
    actor_id: UUID = Depends(get_current_actor),
) -> schemas.ResponseOut:
    recorded = run_service.record_response(db, run_id, item_id, payload.value, actor_id)
    return _serialize_response(recorded)


@router.post("/{run_id}/evidence", response_model=schemas.EvidenceAttachOut, status_code=status.HTTP_201_CREATED)
async def attach_evidence(
    run_id: UUID,
    kind: Literal["photo", "signature"] = Form(...),
    upload: UploadFile = File(...),
    db: Session = Depends(get_db),
    gateway: EvidenceGateway = Depends(get_evidence_gateway),
    actor_id: UUID = Depends(get_current_actor),
) -> schemas.EvidenceAttachOut:
    data = await upload.read()
    # gateway uploads block on network I/O; keep them off the event loop
    result = await asyncio.to_thread(
        run_service.attach_evidence,
        db,
        run_id,
        kind,
        data,
        upload.filename or f"{kind}.bin",
        actor_id,
        gateway=gateway,
        content_type=upload.content_type or "application/octet-stream",
    )
    return schemas.EvidenceAttachOut(evidence=_serialize_evidence(result.evidence), warning=result.warning)


@router.get("/{run_id}/evidence", response_model=list[schemas.EvidenceLinkOut], dependencies=[Depends(get_current_actor)])
async def list_evidence(
    run_id: UUID,
    db: Session = Depends(get_db),
    gateway: EvidenceGateway = Depends(get_evidence_gateway),
) -> list[schemas.EvidenceLinkOut]:
    links = await asyncio.to_thread(run_service.list_evidence, db, run_id, gateway=gateway)
    return [
        schemas.EvidenceLinkOut(**_serialize_evidence(link.evidence).model_dump(), url=link.url)
        for link in links
    ]


@router.post("/{run_id}/submit", response_model=schemas.SubmitOut)
async def submit_run(
    run_id: UUID,
    db: Session = Depends(get_db),
    actor_id: UUID = Depends(get_current_actor),
) -> schemas.SubmitOut:
    result = run_service.submit_run(db, run_id, actor_id)
    return schemas.SubmitOut(
        run=_serialize_run(result.run),
        tally=schemas.SubmitTallyOut(**result.tally.as_meta()),
        warnings=result.warnings,
        already_submitted=result.already_submitted,
    )
