"""Recurrence scheduler creating one run per reminder per local calendar day."""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable
from uuid import UUID

from sqlalchemy.orm import Session

from ..audit import AuditSink
from ..errors import FleetCheckError, InvalidTimeZone, TransientStoreError
from ..repository import ReminderConfigStore
from ..timezones import as_utc, evaluate_trigger, utcnow
from . import runs as run_service

# purpose: evaluate enabled reminder configs and funnel due ones into idempotent run creation
# inputs: SQLAlchemy session, reference instant, retry policy env vars
# outputs: TickReport with per-config outcomes; advanced last_evaluated_day markers
# status: active

logger = logging.getLogger(__name__)

SCHEDULER_MAX_RETRIES = int(os.getenv("SCHEDULER_MAX_RETRIES", "3"))
SCHEDULER_RETRY_BACKOFF_SECONDS = float(os.getenv("SCHEDULER_RETRY_BACKOFF_SECONDS", "2"))

CREATED = "created"
REUSED = "reused"
NOT_DUE = "not_due"
ALREADY_EVALUATED = "already_evaluated"
FAILED = "failed"


@dataclass(frozen=True, slots=True)
class _ConfigSnapshot:
    id: UUID
    unit_id: UUID
    template_id: UUID
    timezone: str
    trigger_hour: int
    trigger_minute: int
    last_evaluated_day: str | None


@dataclass(slots=True)
class ConfigOutcome:
    config_id: UUID
    status: str
    day_key: str | None = None
    run_id: UUID | None = None
    error: str | None = None
    attempts: int = 0


@dataclass(slots=True)
class TickReport:
    evaluated_at: datetime
    outcomes: list[ConfigOutcome] = field(default_factory=list)

    def count(self, status: str) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status == status)

    @property
    def created(self) -> int:
        return self.count(CREATED)

    @property
    def reused(self) -> int:
        return self.count(REUSED)

    @property
    def failed(self) -> int:
        return self.count(FAILED)

    def as_dict(self) -> dict[str, Any]:
        return {
            "evaluated_at": self.evaluated_at.isoformat(),
            "created": self.created,
            "reused": self.reused,
            "not_due": self.count(NOT_DUE),
            "already_evaluated": self.count(ALREADY_EVALUATED),
            "failed": self.failed,
            "outcomes": [
                {
                    "config_id": str(outcome.config_id),
                    "status": outcome.status,
                    "day_key": outcome.day_key,
                    "run_id": str(outcome.run_id) if outcome.run_id else None,
                    "error": outcome.error,
                }
                for outcome in self.outcomes
            ],
        }


def _snapshot(config) -> _ConfigSnapshot:
    return _ConfigSnapshot(
        id=config.id,
        unit_id=config.unit_id,
        template_id=config.template_id,
        timezone=config.timezone,
        trigger_hour=config.trigger_hour,
        trigger_minute=config.trigger_minute,
        last_evaluated_day=config.last_evaluated_day,
    )


def _evaluate_config(
    db: Session,
    store: ReminderConfigStore,
    config: _ConfigSnapshot,
    now: datetime,
    *,
    max_retries: int,
    backoff_seconds: float,
    sleep: Callable[[float], None],
    audit_sink: AuditSink | None,
) -> ConfigOutcome:
    try:
        evaluation = evaluate_trigger(config.timezone, config.trigger_hour, config.trigger_minute, now)
    except (InvalidTimeZone, ValueError) as exc:
        logger.warning("Reminder %s cannot be evaluated: %s", config.id, exc)
        return ConfigOutcome(config.id, FAILED, error=str(exc))

    if not evaluation.due:
        return ConfigOutcome(config.id, NOT_DUE, day_key=evaluation.day_key)
    if config.last_evaluated_day and config.last_evaluated_day >= evaluation.day_key:
        return ConfigOutcome(config.id, ALREADY_EVALUATED, day_key=evaluation.day_key)

    attempt = 0
    while True:
        attempt += 1
        try:
            result = run_service.create_run(
                db,
                config.unit_id,
                config.template_id,
                actor_id=None,
                day_key=evaluation.day_key,
                trigger="schedule",
                now=now,
                audit_sink=audit_sink,
            )
            store.mark_evaluated(config.id, evaluation.day_key)
        except TransientStoreError as exc:
            if attempt > max_retries:
                logger.warning(
                    "Reminder %s gave up after %s attempts: %s", config.id, attempt, exc.message
                )
                return ConfigOutcome(
                    config.id, FAILED, day_key=evaluation.day_key, error=exc.message, attempts=attempt
                )
            logger.info("Reminder %s hit a transient store error, retrying: %s", config.id, exc.message)
            sleep(backoff_seconds * attempt)
            continue
        except FleetCheckError as exc:
            logger.warning("Reminder %s failed: %s", config.id, exc.message)
            return ConfigOutcome(config.id, FAILED, day_key=evaluation.day_key, error=exc.message, attempts=attempt)
        except Exception as exc:
            db.rollback()
            logger.exception("Reminder %s failed unexpectedly", config.id)
            return ConfigOutcome(config.id, FAILED, day_key=evaluation.day_key, error=str(exc), attempts=attempt)

        return ConfigOutcome(
            config.id,
            CREATED if result.created else REUSED,
            day_key=evaluation.day_key,
            run_id=result.run.id,
            attempts=attempt,
        )


def tick(
    db: Session,
    *,
    now: datetime | None = None,
    max_retries: int | None = None,
    backoff_seconds: float | None = None,
    sleep: Callable[[float], None] = time.sleep,
    audit_sink: AuditSink | None = None,
) -> TickReport:
    """Evaluate every enabled reminder once against ``now``.

    Configs are isolated from each other: a failure is logged, reported in
    the outcome list and left unmarked so the next tick retries it.
    """

    reference = as_utc(now or utcnow())
    store = ReminderConfigStore(db)
    configs = [_snapshot(config) for config in store.list_enabled()]
    report = TickReport(evaluated_at=reference)
    for config in configs:
        report.outcomes.append(
            _evaluate_config(
                db,
                store,
                config,
                reference,
                max_retries=SCHEDULER_MAX_RETRIES if max_retries is None else max_retries,
                backoff_seconds=SCHEDULER_RETRY_BACKOFF_SECONDS if backoff_seconds is None else backoff_seconds,
                sleep=sleep,
                audit_sink=audit_sink,
            )
        )
    logger.info(
        "Reminder tick at %s: %s created, %s reused, %s failed of %s configs",
        reference.isoformat(),
        report.created,
        report.reused,
        report.failed,
        len(configs),
    )
    return report
