"""Durable storage access for checklist runs, responses, evidence and reminders."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterator, Mapping, Sequence
from uuid import UUID

import sqlalchemy as sa
from sqlalchemy import exc as sa_exc
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session, joinedload

from . import models
from .errors import ConflictError, InvalidRequest, NotFound, TransientStoreError
from .timezones import as_utc

# purpose: keep uniqueness, conditional updates and upserts at the storage boundary
# inputs: SQLAlchemy session, identifiers, expected preconditions and patches
# outputs: ORM rows and typed projections; conflicts surfaced as ConflictError
# status: active


@contextmanager
def store_errors(db: Session) -> Iterator[None]:
    """Translate timeouts and dropped connections into TransientStoreError."""

    try:
        yield
    except (sa_exc.OperationalError, sa_exc.InterfaceError, sa_exc.TimeoutError) as exc:
        db.rollback()
        raise TransientStoreError(f"Store unavailable: {exc}") from exc


@dataclass(frozen=True, slots=True)
class RunSummary:
    """Run row joined with unit and template names, resolved once."""

    id: UUID
    organization_id: UUID
    unit_id: UUID
    unit_name: str
    unit_timezone: str
    template_id: UUID
    template_name: str
    calendar_day_key: str
    status: str
    trigger: str
    assigned_to: UUID | None
    created_at: datetime
    assigned_at: datetime | None
    submitted_at: datetime | None


def _optional_utc(value: datetime | None) -> datetime | None:
    return as_utc(value) if value is not None else None


def _precondition(column: sa.Column, expected: Any):
    if expected is None:
        return column.is_(None)
    if isinstance(expected, (tuple, list, set, frozenset)):
        return column.in_(list(expected))
    return column == expected


class RunRepository:
    def __init__(self, db: Session):
        self.db = db

    def get_run(self, run_id: UUID) -> models.ChecklistRun:
        with store_errors(self.db):
            run = self.db.get(models.ChecklistRun, run_id, populate_existing=True)
        if run is None:
            raise NotFound(f"Run {run_id} not found")
        return run

    def get_run_detail(self, run_id: UUID) -> models.ChecklistRun:
        with store_errors(self.db):
            run = (
                self.db.query(models.ChecklistRun)
                .options(
                    joinedload(models.ChecklistRun.responses),
                    joinedload(models.ChecklistRun.evidence),
                    joinedload(models.ChecklistRun.unit),
                    joinedload(models.ChecklistRun.template).joinedload(models.ChecklistTemplate.items),
                )
                .filter(models.ChecklistRun.id == run_id)
                .populate_existing()
                .first()
            )
        if run is None:
            raise NotFound(f"Run {run_id} not found")
        return run

    def find_run(self, unit_id: UUID, template_id: UUID, day_key: str) -> models.ChecklistRun | None:
        with store_errors(self.db):
            return (
                self.db.query(models.ChecklistRun)
                .filter(
                    models.ChecklistRun.unit_id == unit_id,
                    models.ChecklistRun.template_id == template_id,
                    models.ChecklistRun.calendar_day_key == day_key,
                )
                .populate_existing()
                .one_or_none()
            )

    def create_run_if_absent(
        self,
        *,
        unit_id: UUID,
        template_id: UUID,
        organization_id: UUID,
        day_key: str,
        created_by: UUID | None,
        trigger: str,
        now: datetime,
    ) -> tuple[models.ChecklistRun, bool]:
        """Insert the run for (unit, template, day) or return the stored winner.

        The unique constraint decides races; a losing insert rolls back and
        re-reads the row the winner committed.
        """

        existing = self.find_run(unit_id, template_id, day_key)
        if existing is not None:
            return existing, False

        run = models.ChecklistRun(
            organization_id=organization_id,
            unit_id=unit_id,
            template_id=template_id,
            calendar_day_key=day_key,
            status="open",
            trigger=trigger,
            created_by=created_by,
            created_at=now,
        )
        with store_errors(self.db):
            try:
                self.db.add(run)
                self.db.commit()
            except sa_exc.IntegrityError as exc:
                self.db.rollback()
                winner = self.find_run(unit_id, template_id, day_key)
                if winner is None:
                    raise InvalidRequest(f"Run insert rejected: {exc.orig}") from exc
                return winner, False
            self.db.refresh(run)
        return run, True

    def update_run(
        self,
        run_id: UUID,
        expected: Mapping[str, Any],
        patch: Mapping[str, Any],
    ) -> models.ChecklistRun:
        """Apply ``patch`` only when every ``expected`` column still matches.

        Raises ConflictError when no row satisfied the precondition.
        """

        table = models.ChecklistRun.__table__
        conditions = [table.c.id == run_id]
        conditions.extend(_precondition(table.c[name], value) for name, value in expected.items())
        statement = sa.update(table).where(*conditions).values(**patch)
        with store_errors(self.db):
            result = self.db.execute(statement)
            if result.rowcount != 1:
                self.db.rollback()
                raise ConflictError(f"Run {run_id} no longer matches {dict(expected)}")
            self.db.commit()
        return self.get_run(run_id)

    def _insert(self, table: sa.Table):
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            return pg_insert(table)
        if dialect == "sqlite":
            return sqlite_insert(table)
        raise NotImplementedError(f"Response upsert unsupported on {dialect}")

    def _lock_mutable_run(self, run_id: UUID) -> None:
        """Row-lock the run inside the current transaction while it is still mutable.

        The no-op update takes the same lock a concurrent status write needs,
        so writes that follow it commit either wholly before or wholly after
        a submit. Raises ConflictError when the run is no longer mutable.
        """

        table = models.ChecklistRun.__table__
        statement = (
            sa.update(table)
            .where(table.c.id == run_id, table.c.status.in_(models.MUTABLE_RUN_STATUSES))
            .values(status=table.c.status)
        )
        result = self.db.execute(statement)
        if result.rowcount != 1:
            self.db.rollback()
            raise ConflictError(f"Run {run_id} is no longer open for changes")

    def upsert_responses(
        self,
        run_id: UUID,
        answers: Mapping[UUID, bool | str | None],
        actor_id: UUID | None,
        now: datetime,
    ) -> list[models.RunResponse]:
        """Upsert every answer in one transaction guarded by the run's status."""

        table = models.RunResponse.__table__
        with store_errors(self.db):
            self._lock_mutable_run(run_id)
            for item_id, value in answers.items():
                values = {
                    "value_bool": value if isinstance(value, bool) else None,
                    "value_text": value if isinstance(value, str) else None,
                    "recorded_by": actor_id,
                    "recorded_at": now,
                }
                statement = self._insert(table).values(run_id=run_id, item_id=item_id, **values)
                statement = statement.on_conflict_do_update(
                    index_elements=[table.c.run_id, table.c.item_id],
                    set_={name: statement.excluded[name] for name in values},
                )
                self.db.execute(statement)
            self.db.commit()
            rows = (
                self.db.query(models.RunResponse)
                .filter(
                    models.RunResponse.run_id == run_id,
                    models.RunResponse.item_id.in_(list(answers)),
                )
                .populate_existing()
                .all()
            )
        by_item = {row.item_id: row for row in rows}
        return [by_item[item_id] for item_id in answers]

    def upsert_response(
        self,
        run_id: UUID,
        item_id: UUID,
        value: bool | str | None,
        actor_id: UUID | None,
        now: datetime,
    ) -> models.RunResponse:
        return self.upsert_responses(run_id, {item_id: value}, actor_id, now)[0]

    def list_responses(self, run_id: UUID) -> list[models.RunResponse]:
        with store_errors(self.db):
            return (
                self.db.query(models.RunResponse)
                .filter(models.RunResponse.run_id == run_id)
                .all()
            )

    def list_evidence(self, run_id: UUID) -> list[models.RunEvidence]:
        with store_errors(self.db):
            return (
                self.db.query(models.RunEvidence)
                .filter(models.RunEvidence.run_id == run_id)
                .order_by(models.RunEvidence.kind, models.RunEvidence.slot)
                .all()
            )

    def next_evidence_slot(self, run_id: UUID, kind: str) -> int:
        with store_errors(self.db):
            current = (
                self.db.query(sa.func.max(models.RunEvidence.slot))
                .filter(models.RunEvidence.run_id == run_id, models.RunEvidence.kind == kind)
                .scalar()
            )
        return (current or 0) + 1

    def add_evidence(self, run_id: UUID, kind: str, attempts: int = 3, **fields: Any) -> models.RunEvidence:
        """Record an evidence pointer in the next free slot for (run, kind).

        The insert only lands while the run is still open or assigned.
        """

        for _ in range(attempts):
            with store_errors(self.db):
                self._lock_mutable_run(run_id)
                slot = self.next_evidence_slot(run_id, kind)
                evidence = models.RunEvidence(run_id=run_id, kind=kind, slot=slot, **fields)
                try:
                    self.db.add(evidence)
                    self.db.commit()
                except sa_exc.IntegrityError:
                    self.db.rollback()
                    continue
                self.db.refresh(evidence)
            return evidence
        raise TransientStoreError(f"Could not reserve an evidence slot for run {run_id}")

    def template_item_ids(self, template_id: UUID) -> set[UUID]:
        with store_errors(self.db):
            rows = (
                self.db.query(models.TemplateItem.id)
                .filter(models.TemplateItem.template_id == template_id)
                .all()
            )
        return {row[0] for row in rows}

    def _summary_query(self):
        return (
            self.db.query(
                models.ChecklistRun,
                models.Unit.name,
                models.Unit.timezone,
                models.ChecklistTemplate.name,
            )
            .join(models.Unit, models.Unit.id == models.ChecklistRun.unit_id)
            .join(models.ChecklistTemplate, models.ChecklistTemplate.id == models.ChecklistRun.template_id)
        )

    @staticmethod
    def _to_summary(row) -> RunSummary:
        run, unit_name, unit_timezone, template_name = row
        return RunSummary(
            id=run.id,
            organization_id=run.organization_id,
            unit_id=run.unit_id,
            unit_name=unit_name,
            unit_timezone=unit_timezone,
            template_id=run.template_id,
            template_name=template_name,
            calendar_day_key=run.calendar_day_key,
            status=run.status,
            trigger=run.trigger,
            assigned_to=run.assigned_to,
            created_at=as_utc(run.created_at),
            assigned_at=_optional_utc(run.assigned_at),
            submitted_at=_optional_utc(run.submitted_at),
        )

    def list_runs(
        self,
        *,
        organization_id: UUID | None = None,
        unit_id: UUID | None = None,
        statuses: Sequence[str] | None = None,
        assigned_to: UUID | None = None,
        since: datetime | None = None,
    ) -> list[RunSummary]:
        query = self._summary_query()
        if organization_id:
            query = query.filter(models.ChecklistRun.organization_id == organization_id)
        if unit_id:
            query = query.filter(models.ChecklistRun.unit_id == unit_id)
        if statuses:
            query = query.filter(models.ChecklistRun.status.in_(list(statuses)))
        if assigned_to:
            query = query.filter(models.ChecklistRun.assigned_to == assigned_to)
        if since:
            query = query.filter(models.ChecklistRun.created_at >= since)
        with store_errors(self.db):
            rows = query.order_by(models.ChecklistRun.created_at.desc()).all()
        return [self._to_summary(row) for row in rows]


class ReminderConfigStore:
    def __init__(self, db: Session):
        self.db = db

    def get(self, config_id: UUID) -> models.ReminderConfig:
        with store_errors(self.db):
            config = self.db.get(models.ReminderConfig, config_id)
        if config is None:
            raise NotFound(f"Reminder {config_id} not found")
        return config

    def list_enabled(self) -> list[models.ReminderConfig]:
        with store_errors(self.db):
            return (
                self.db.query(models.ReminderConfig)
                .filter(models.ReminderConfig.enabled.is_(True))
                .order_by(models.ReminderConfig.created_at.asc())
                .all()
            )

    def list_for_organization(self, organization_id: UUID | None = None) -> list[models.ReminderConfig]:
        query = self.db.query(models.ReminderConfig)
        if organization_id:
            query = query.filter(models.ReminderConfig.organization_id == organization_id)
        with store_errors(self.db):
            return query.order_by(models.ReminderConfig.created_at.desc()).all()

    def mark_evaluated(self, config_id: UUID, day_key: str) -> bool:
        """Advance ``last_evaluated_day``; never moves it backwards."""

        table = models.ReminderConfig.__table__
        statement = (
            sa.update(table)
            .where(
                table.c.id == config_id,
                sa.or_(table.c.last_evaluated_day.is_(None), table.c.last_evaluated_day < day_key),
            )
            .values(last_evaluated_day=day_key)
        )
        with store_errors(self.db):
            result = self.db.execute(statement)
            self.db.commit()
        return result.rowcount == 1

    def create(self, **fields: Any) -> models.ReminderConfig:
        config = models.ReminderConfig(**fields)
        with store_errors(self.db):
            try:
                self.db.add(config)
                self.db.commit()
            except sa_exc.IntegrityError as exc:
                self.db.rollback()
                raise InvalidRequest("A reminder already exists for this unit and template") from exc
            self.db.refresh(config)
        return config

    def update(self, config: models.ReminderConfig, **fields: Any) -> models.ReminderConfig:
        for name, value in fields.items():
            setattr(config, name, value)
        with store_errors(self.db):
            self.db.commit()
            self.db.refresh(config)
        return config
