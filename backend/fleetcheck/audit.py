"""Audit event shaping and append-only sinks for checklist run transitions."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Callable, Protocol
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from . import models

# purpose: produce well-formed, write-once audit records for every lifecycle transition
# inputs: action tag, nullable actor, subject reference, metadata
# outputs: AuditEvent values and persisted audit_events rows
# status: active

logger = logging.getLogger(__name__)

RUN_STARTED = "run_started"
RUN_ASSIGNED = "run_assigned"
RUN_UNASSIGNED = "run_unassigned"
EVIDENCE_ATTACHED = "evidence_attached"
RUN_SUBMITTED = "run_submitted"
REMINDER_CREATED = "reminder_created"
REMINDER_UPDATED = "reminder_updated"


def _json_safe(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(key): _json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_json_safe(item) for item in value]
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


@dataclass(frozen=True, slots=True)
class AuditEvent:
    """Immutable description of one domain transition."""

    action: str
    actor_id: UUID | None
    subject_id: UUID
    subject_type: str
    organization_id: UUID | None
    meta: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def build_event(
    action: str,
    actor_id: UUID | str | None,
    subject_id: UUID | str,
    meta: dict[str, Any] | None = None,
    *,
    organization_id: UUID | str | None = None,
    subject_type: str = "checklist_run",
    timestamp: datetime | None = None,
) -> AuditEvent:
    return AuditEvent(
        action=action,
        actor_id=UUID(str(actor_id)) if actor_id else None,
        subject_id=UUID(str(subject_id)),
        subject_type=subject_type,
        organization_id=UUID(str(organization_id)) if organization_id else None,
        meta=_json_safe(meta or {}),
        timestamp=timestamp or datetime.now(timezone.utc),
    )


class AuditSink(Protocol):
    def append(self, event: AuditEvent) -> None: ...


class DatabaseAuditSink:
    """Persist audit events through a dedicated session.

    Appends run after the transition commits and use their own session, so a
    failing sink is logged and never rolls back or fails the transition.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    @classmethod
    def for_session(cls, db: Session) -> "DatabaseAuditSink":
        return cls(sessionmaker(bind=db.get_bind(), autoflush=False))

    def append(self, event: AuditEvent) -> None:
        session = self._session_factory()
        try:
            session.add(
                models.AuditEventRecord(
                    action=event.action,
                    actor_id=event.actor_id,
                    subject_type=event.subject_type,
                    subject_id=event.subject_id,
                    organization_id=event.organization_id,
                    meta=dict(event.meta),
                    created_at=event.timestamp,
                )
            )
            session.commit()
        except SQLAlchemyError:
            session.rollback()
            logger.warning(
                "Audit append failed for %s on %s %s",
                event.action,
                event.subject_type,
                event.subject_id,
                exc_info=True,
            )
        finally:
            session.close()


class RecordingAuditSink:
    """Keep events in memory; used by dry runs and tests."""

    def __init__(self) -> None:
        self.events: list[AuditEvent] = []

    def append(self, event: AuditEvent) -> None:
        self.events.append(event)

    def actions(self) -> list[str]:
        return [event.action for event in self.events]


def emit(sink: AuditSink, event: AuditEvent) -> None:
    """Hand ``event`` to ``sink``; delivery is best-effort and never raises."""

    try:
        sink.append(event)
    except Exception:
        logger.warning("Audit sink rejected %s for %s", event.action, event.subject_id, exc_info=True)


def list_events(
    db: Session,
    *,
    organization_id: UUID | None = None,
    subject_id: UUID | None = None,
    action: str | None = None,
    limit: int = 200,
) -> list[models.AuditEventRecord]:
    query = db.query(models.AuditEventRecord)
    if organization_id:
        query = query.filter(models.AuditEventRecord.organization_id == organization_id)
    if subject_id:
        query = query.filter(models.AuditEventRecord.subject_id == subject_id)
    if action:
        query = query.filter(models.AuditEventRecord.action == action)
    return query.order_by(models.AuditEventRecord.created_at.desc()).limit(limit).all()
