"""Operator-facing reminder configuration helpers."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy.orm import Session

from .. import audit, models
from ..audit import AuditSink, DatabaseAuditSink
from ..errors import InvalidRequest, NotFound
from ..repository import ReminderConfigStore, store_errors
from ..timezones import resolve_zone

# purpose: create and edit (unit, template) recurrence rules consumed by the scheduler
# status: active


def create_reminder(
    db: Session,
    *,
    unit_id: UUID,
    template_id: UUID,
    actor_id: UUID | None,
    timezone: str | None = None,
    trigger_hour: int = 8,
    trigger_minute: int = 0,
    enabled: bool = True,
    audit_sink: AuditSink | None = None,
) -> models.ReminderConfig:
    """Create a daily reminder; the zone defaults to the unit's own zone."""

    with store_errors(db):
        unit = db.get(models.Unit, unit_id)
        template = db.get(models.ChecklistTemplate, template_id)
    if unit is None:
        raise NotFound(f"Unit {unit_id} not found")
    if template is None:
        raise NotFound(f"Template {template_id} not found")
    if template.organization_id != unit.organization_id:
        raise InvalidRequest("Template belongs to a different organization than the unit")

    zone_name = (timezone or unit.timezone).strip()
    resolve_zone(zone_name)
    config = ReminderConfigStore(db).create(
        organization_id=unit.organization_id,
        unit_id=unit.id,
        template_id=template.id,
        timezone=zone_name,
        trigger_hour=trigger_hour,
        trigger_minute=trigger_minute,
        enabled=enabled,
        created_by=actor_id,
    )
    audit.emit(
        audit_sink or DatabaseAuditSink.for_session(db),
        audit.build_event(
            audit.REMINDER_CREATED,
            actor_id,
            config.id,
            {
                "unit_id": config.unit_id,
                "template_id": config.template_id,
                "timezone": config.timezone,
                "trigger": f"{config.trigger_hour:02d}:{config.trigger_minute:02d}",
            },
            organization_id=config.organization_id,
            subject_type="reminder_config",
        )
    )
    return config


def update_reminder(
    db: Session,
    config_id: UUID,
    *,
    actor_id: UUID | None,
    timezone: str | None = None,
    trigger_hour: int | None = None,
    trigger_minute: int | None = None,
    enabled: bool | None = None,
    audit_sink: AuditSink | None = None,
) -> models.ReminderConfig:
    store = ReminderConfigStore(db)
    config = store.get(config_id)
    changes: dict[str, object] = {}
    if timezone is not None:
        resolve_zone(timezone)
        changes["timezone"] = timezone.strip()
    if trigger_hour is not None:
        changes["trigger_hour"] = trigger_hour
    if trigger_minute is not None:
        changes["trigger_minute"] = trigger_minute
    if enabled is not None:
        changes["enabled"] = enabled
    if not changes:
        return config
    config = store.update(config, **changes)
    audit.emit(
        audit_sink or DatabaseAuditSink.for_session(db),
        audit.build_event(
            audit.REMINDER_UPDATED,
            actor_id,
            config.id,
            {"changes": changes},
            organization_id=config.organization_id,
            subject_type="reminder_config",
        )
    )
    return config


def list_reminders(db: Session, *, organization_id: UUID | None = None) -> list[models.ReminderConfig]:
    return ReminderConfigStore(db).list_for_organization(organization_id)
