"""Checklist run lifecycle: creation, claim, responses, evidence and submission."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Mapping, Sequence
from uuid import UUID

from sqlalchemy.orm import Session

from .. import audit, models
from ..audit import AuditSink, DatabaseAuditSink
from ..errors import (
    AlreadyAssigned,
    AlreadySubmitted,
    ConflictError,
    EvidenceUploadFailed,
    InvalidRequest,
    InvalidTimeZone,
    NotAssignee,
    NotFound,
)
from ..repository import RunRepository, RunSummary, store_errors
from ..storage import EVIDENCE_URL_TTL_SECONDS, EvidenceGateway
from ..timezones import as_utc, calendar_day_key, utcnow

# purpose: own every mutation of runs, responses and evidence pointers and emit audit events
# inputs: SQLAlchemy session, actor identifiers, audit sink, evidence gateway
# outputs: run rows, lifecycle results with warnings, audit events
# status: active
# depends_on: fleetcheck.repository, fleetcheck.audit, fleetcheck.storage

logger = logging.getLogger(__name__)

OPEN = "open"
ASSIGNED = "assigned"
SUBMITTED = "submitted"
MUTABLE_STATUSES = models.MUTABLE_RUN_STATUSES

AFFIRMATIVE_TEXT = frozenset({"yes", "ok", "true", "pass"})
RECENT_RUN_WINDOW = timedelta(days=30)


@dataclass(slots=True)
class CreateResult:
    run: models.ChecklistRun
    created: bool


@dataclass(slots=True)
class ClaimResult:
    run: models.ChecklistRun
    changed: bool


@dataclass(slots=True)
class EvidenceResult:
    evidence: models.RunEvidence
    warning: str | None = None


@dataclass(slots=True)
class EvidenceLink:
    evidence: models.RunEvidence
    url: str


@dataclass(frozen=True, slots=True)
class SubmitTally:
    """Final counts reported with the submission audit event."""

    total_items: int
    ok_count: int
    photos_attached: int
    signed: bool

    def as_meta(self) -> dict[str, Any]:
        return {
            "total_items": self.total_items,
            "ok_count": self.ok_count,
            "photos_attached": self.photos_attached,
            "signed": self.signed,
        }


@dataclass(slots=True)
class SubmitResult:
    run: models.ChecklistRun
    tally: SubmitTally
    warnings: list[str] = field(default_factory=list)
    already_submitted: bool = False


def _sink(db: Session, audit_sink: AuditSink | None) -> AuditSink:
    return audit_sink if audit_sink is not None else DatabaseAuditSink.for_session(db)


def _monotonic(now: datetime | None, *earlier: datetime | None) -> datetime:
    """Return ``now`` clamped so it never precedes an earlier lifecycle instant."""

    instants = [as_utc(now or utcnow())]
    instants.extend(as_utc(value) for value in earlier if value is not None)
    return max(instants)


def _ensure_mutable(run: models.ChecklistRun) -> None:
    if run.status == SUBMITTED:
        raise AlreadySubmitted(run.id)


def is_affirmative(response: models.RunResponse) -> bool:
    if response.value_bool is not None:
        return bool(response.value_bool)
    if response.value_text is not None:
        return response.value_text.strip().lower() in AFFIRMATIVE_TEXT
    return False


def create_run(
    db: Session,
    unit_id: UUID,
    template_id: UUID,
    *,
    actor_id: UUID | None = None,
    day_key: str | None = None,
    trigger: str = "manual",
    now: datetime | None = None,
    audit_sink: AuditSink | None = None,
) -> CreateResult:
    """Create today's run for (unit, template) or return the one that exists.

    Manual starts and scheduler ticks share this entry point. When
    ``day_key`` is omitted it is the unit-local date of ``now``.
    """

    now = as_utc(now or utcnow())
    with store_errors(db):
        unit = db.get(models.Unit, unit_id)
        template = db.get(models.ChecklistTemplate, template_id)
    if unit is None:
        raise NotFound(f"Unit {unit_id} not found")
    if template is None:
        raise NotFound(f"Template {template_id} not found")
    if template.organization_id != unit.organization_id:
        raise InvalidRequest("Template belongs to a different organization than the unit")

    key = day_key or calendar_day_key(unit.timezone, now)
    run, created = RunRepository(db).create_run_if_absent(
        unit_id=unit.id,
        template_id=template.id,
        organization_id=unit.organization_id,
        day_key=key,
        created_by=actor_id,
        trigger=trigger,
        now=now,
    )
    if created:
        logger.info("Run %s started for unit %s template %s on %s", run.id, unit.id, template.id, key)
        audit.emit(
            _sink(db, audit_sink),
            audit.build_event(
                audit.RUN_STARTED,
                actor_id,
                run.id,
                {
                    "unit_id": unit.id,
                    "template_id": template.id,
                    "calendar_day_key": key,
                    "trigger": trigger,
                },
                organization_id=run.organization_id,
                timestamp=now,
            ),
        )
    return CreateResult(run=run, created=created)


def claim_run(
    db: Session,
    run_id: UUID,
    actor_id: UUID,
    *,
    now: datetime | None = None,
    audit_sink: AuditSink | None = None,
) -> ClaimResult:
    repo = RunRepository(db)
    run = repo.get_run(run_id)
    _ensure_mutable(run)
    if run.assigned_to == actor_id:
        return ClaimResult(run=run, changed=False)
    if run.assigned_to is not None:
        raise AlreadyAssigned(run.id, run.assigned_to)

    assigned_at = _monotonic(now, run.created_at)
    try:
        run = repo.update_run(
            run_id,
            {"status": OPEN, "assigned_to": None},
            {"status": ASSIGNED, "assigned_to": actor_id, "assigned_at": assigned_at},
        )
    except ConflictError:
        current = repo.get_run(run_id)
        _ensure_mutable(current)
        if current.assigned_to == actor_id:
            return ClaimResult(run=current, changed=False)
        raise AlreadyAssigned(current.id, current.assigned_to)

    audit.emit(
        _sink(db, audit_sink),
        audit.build_event(
            audit.RUN_ASSIGNED,
            actor_id,
            run.id,
            {"to": actor_id},
            organization_id=run.organization_id,
            timestamp=assigned_at,
        ),
    )
    return ClaimResult(run=run, changed=True)


def unclaim_run(
    db: Session,
    run_id: UUID,
    actor_id: UUID,
    *,
    now: datetime | None = None,
    audit_sink: AuditSink | None = None,
) -> models.ChecklistRun:
    repo = RunRepository(db)
    run = repo.get_run(run_id)
    _ensure_mutable(run)
    if run.assigned_to != actor_id:
        raise NotAssignee(run.id, actor_id)

    released_at = _monotonic(now, run.created_at, run.assigned_at)
    try:
        run = repo.update_run(
            run_id,
            {"status": ASSIGNED, "assigned_to": actor_id},
            {"status": OPEN, "assigned_to": None, "assigned_at": None},
        )
    except ConflictError:
        current = repo.get_run(run_id)
        _ensure_mutable(current)
        raise NotAssignee(current.id, actor_id)

    audit.emit(
        _sink(db, audit_sink),
        audit.build_event(
            audit.RUN_UNASSIGNED,
            actor_id,
            run.id,
            {"from": actor_id},
            organization_id=run.organization_id,
            timestamp=released_at,
        ),
    )
    return run


def _validate_value(value: Any) -> bool | str:
    if isinstance(value, (bool, str)):
        return value
    raise InvalidRequest("Response value must be a boolean or text")


def _raise_if_frozen(repo: RunRepository, run_id: UUID) -> None:
    """Turn a rejected guarded write into the error for the run's current state."""

    current = repo.get_run(run_id)
    _ensure_mutable(current)


def record_response(
    db: Session,
    run_id: UUID,
    item_id: UUID,
    value: bool | str,
    actor_id: UUID | None,
    *,
    now: datetime | None = None,
) -> models.RunResponse:
    """Upsert the answer for one template item; no audit event is emitted."""

    return record_responses(db, run_id, {item_id: value}, actor_id, now=now)[0]


def record_responses(
    db: Session,
    run_id: UUID,
    answers: Mapping[UUID, bool | str],
    actor_id: UUID | None,
    *,
    now: datetime | None = None,
) -> list[models.RunResponse]:
    repo = RunRepository(db)
    run = repo.get_run(run_id)
    _ensure_mutable(run)
    item_ids = repo.template_item_ids(run.template_id)
    unknown = [str(item_id) for item_id in answers if item_id not in item_ids]
    if unknown:
        raise InvalidRequest(f"Items not part of this run's template: {', '.join(sorted(unknown))}")
    values = {item_id: _validate_value(value) for item_id, value in answers.items()}
    try:
        return repo.upsert_responses(run.id, values, actor_id, as_utc(now or utcnow()))
    except ConflictError:
        _raise_if_frozen(repo, run_id)
        raise


def attach_evidence(
    db: Session,
    run_id: UUID,
    kind: str,
    data: bytes,
    filename: str,
    actor_id: UUID | None,
    *,
    gateway: EvidenceGateway,
    content_type: str = "application/octet-stream",
    now: datetime | None = None,
    audit_sink: AuditSink | None = None,
) -> EvidenceResult:
    """Upload evidence bytes and record the pointer.

    Upload failures are recorded as a failed attempt and returned as a
    warning instead of raising. A run submitted while the upload was in
    flight rejects the pointer with AlreadySubmitted.
    """

    if kind not in models.EVIDENCE_KINDS:
        raise InvalidRequest(f"Unsupported evidence kind: {kind}")
    repo = RunRepository(db)
    run = repo.get_run(run_id)
    _ensure_mutable(run)
    organization_id = run.organization_id
    # release the read transaction before the upload so no row stays locked
    db.commit()

    warning = None
    pointer = None
    try:
        pointer = gateway.put(f"runs/{run_id}/{kind}", filename or f"{kind}.bin", data, content_type)
    except EvidenceUploadFailed as exc:
        warning = f"{kind} upload failed: {exc.message}"
        logger.warning("Evidence upload for run %s failed: %s", run_id, exc.message)

    try:
        evidence = repo.add_evidence(
            run_id,
            kind,
            storage_path=pointer,
            filename=filename,
            content_type=content_type,
            file_size=len(data),
            upload_status="stored" if pointer else "failed",
            error=warning,
            uploaded_by=actor_id,
            created_at=as_utc(now or utcnow()),
        )
    except ConflictError:
        logger.warning("Run %s closed during %s upload; pointer %s discarded", run_id, kind, pointer)
        _raise_if_frozen(repo, run_id)
        raise
    audit.emit(
        _sink(db, audit_sink),
        audit.build_event(
            audit.EVIDENCE_ATTACHED,
            actor_id,
            run_id,
            {"kind": kind, "slot": evidence.slot, "stored": pointer is not None},
            organization_id=organization_id,
        ),
    )
    return EvidenceResult(evidence=evidence, warning=warning)


def list_evidence(
    db: Session,
    run_id: UUID,
    *,
    gateway: EvidenceGateway,
    ttl_seconds: int = EVIDENCE_URL_TTL_SECONDS,
) -> list[EvidenceLink]:
    repo = RunRepository(db)
    repo.get_run(run_id)
    return [
        EvidenceLink(evidence=item, url=gateway.signed_url(item.storage_path, ttl_seconds))
        for item in repo.list_evidence(run_id)
        if item.upload_status == "stored" and item.storage_path
    ]


def compute_tally(repo: RunRepository, run: models.ChecklistRun) -> tuple[SubmitTally, list[str]]:
    """Count affirmative answers and stored evidence; unanswered items count as not ok."""

    item_ids = repo.template_item_ids(run.template_id)
    responses = repo.list_responses(run.id)
    evidence = repo.list_evidence(run.id)
    ok_count = sum(1 for response in responses if response.item_id in item_ids and is_affirmative(response))
    stored = [item for item in evidence if item.upload_status == "stored"]
    warnings = [
        f"{item.kind} #{item.slot} was not stored: {item.error or 'upload failed'}"
        for item in evidence
        if item.upload_status != "stored"
    ]
    tally = SubmitTally(
        total_items=len(item_ids),
        ok_count=ok_count,
        photos_attached=sum(1 for item in stored if item.kind == "photo"),
        signed=any(item.kind == "signature" for item in stored),
    )
    return tally, warnings


def submit_run(
    db: Session,
    run_id: UUID,
    actor_id: UUID | None,
    *,
    now: datetime | None = None,
    audit_sink: AuditSink | None = None,
) -> SubmitResult:
    """Move a run to ``submitted`` and emit the tally.

    Repeating the call on a submitted run returns the stored terminal state
    with ``already_submitted`` set and emits nothing.
    """

    repo = RunRepository(db)
    run = repo.get_run(run_id)
    if run.status == SUBMITTED:
        tally, warnings = compute_tally(repo, run)
        return SubmitResult(run=run, tally=tally, warnings=warnings, already_submitted=True)

    submitted_at = _monotonic(now, run.created_at, run.assigned_at)
    try:
        run = repo.update_run(
            run_id,
            {"status": MUTABLE_STATUSES},
            {"status": SUBMITTED, "submitted_at": submitted_at, "submitted_by": actor_id},
        )
    except ConflictError:
        current = repo.get_run(run_id)
        if current.status != SUBMITTED:
            raise
        tally, warnings = compute_tally(repo, current)
        return SubmitResult(run=current, tally=tally, warnings=warnings, already_submitted=True)

    # counted after the status write; the run is immutable from here on
    tally, warnings = compute_tally(repo, run)
    logger.info("Run %s submitted with %s/%s ok", run.id, tally.ok_count, tally.total_items)
    audit.emit(
        _sink(db, audit_sink),
        audit.build_event(
            audit.RUN_SUBMITTED,
            actor_id,
            run.id,
            tally.as_meta(),
            organization_id=run.organization_id,
            timestamp=submitted_at,
        ),
    )
    return SubmitResult(run=run, tally=tally, warnings=warnings)


def get_run_detail(db: Session, run_id: UUID) -> models.ChecklistRun:
    return RunRepository(db).get_run_detail(run_id)


def list_runs(
    db: Session,
    *,
    organization_id: UUID | None = None,
    unit_id: UUID | None = None,
    statuses: Sequence[str] | None = None,
    assigned_to: UUID | None = None,
    since: datetime | None = None,
    now: datetime | None = None,
) -> list[RunSummary]:
    window_start = since or as_utc(now or utcnow()) - RECENT_RUN_WINDOW
    return RunRepository(db).list_runs(
        organization_id=organization_id,
        unit_id=unit_id,
        statuses=statuses,
        assigned_to=assigned_to,
        since=window_start,
    )


def list_overdue_runs(
    db: Session,
    *,
    organization_id: UUID | None = None,
    now: datetime | None = None,
) -> list[RunSummary]:
    """Return unsubmitted runs whose day key precedes their unit's current local day."""

    now = as_utc(now or utcnow())
    overdue: list[RunSummary] = []
    for summary in RunRepository(db).list_runs(organization_id=organization_id, statuses=MUTABLE_STATUSES):
        try:
            today = calendar_day_key(summary.unit_timezone, now)
        except InvalidTimeZone as exc:
            logger.warning("Unit %s has an unusable time zone: %s", summary.unit_id, exc.message)
            continue
        if summary.calendar_day_key < today:
            overdue.append(summary)
    return overdue
