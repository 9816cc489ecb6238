"""Reminder configuration and scheduler trigger API routes."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from .. import models, schemas
from ..actors import get_current_actor
from ..database import get_db
from ..services import reminders as reminder_service
from ..services import scheduler
from ..timezones import as_utc

router = APIRouter(prefix="/api/reminders", tags=["reminders"])


def _serialize_reminder(config: models.ReminderConfig) -> schemas.ReminderOut:
    return schemas.ReminderOut(
        id=config.id,
        organization_id=config.organization_id,
        unit_id=config.unit_id,
        template_id=config.template_id,
        timezone=config.timezone,
        trigger_hour=config.trigger_hour,
        trigger_minute=config.trigger_minute,
        enabled=config.enabled,
        last_evaluated_day=config.last_evaluated_day,
        created_by=config.created_by,
        created_at=as_utc(config.created_at),
        updated_at=as_utc(config.updated_at),
    )


@router.get("", response_model=list[schemas.ReminderOut], dependencies=[Depends(get_current_actor)])
async def list_reminders(
    organization_id: UUID | None = None,
    db: Session = Depends(get_db),
) -> list[schemas.ReminderOut]:
    return [
        _serialize_reminder(config)
        for config in reminder_service.list_reminders(db, organization_id=organization_id)
    ]


@router.post("", response_model=schemas.ReminderOut, status_code=status.HTTP_201_CREATED)
async def create_reminder(
    payload: schemas.ReminderCreate,
    db: Session = Depends(get_db),
    actor_id: UUID = Depends(get_current_actor),
) -> schemas.ReminderOut:
    config = reminder_service.create_reminder(
        db,
        unit_id=payload.unit_id,
        template_id=payload.template_id,
        actor_id=actor_id,
        timezone=payload.timezone,
        trigger_hour=payload.trigger_hour,
        trigger_minute=payload.trigger_minute,
        enabled=payload.enabled,
    )
    return _serialize_reminder(config)


@router.patch("/{config_id}", response_model=schemas.ReminderOut)
async def update_reminder(
    config_id: UUID,
    payload: schemas.ReminderUpdate,
    db: Session = Depends(get_db),
    actor_id: UUID = Depends(get_current_actor),
) -> schemas.ReminderOut:
    config = reminder_service.update_reminder(
        db,
        config_id,
        actor_id=actor_id,
        timezone=payload.timezone,
        trigger_hour=payload.trigger_hour,
        trigger_minute=payload.trigger_minute,
        enabled=payload.enabled,
    )
    return _serialize_reminder(config)


@router.post("/tick", response_model=schemas.TickReportOut, dependencies=[Depends(get_current_actor)])
async def run_tick(
    db: Session = Depends(get_db),
) -> schemas.TickReportOut:
    """Run one scheduler pass synchronously against the current instant."""

    report = scheduler.tick(db)
    return schemas.TickReportOut(**report.as_dict())
