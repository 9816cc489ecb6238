import json
import uuid
from datetime import datetime, timedelta, timezone

from typer.testing import CliRunner

from fleetcheck import tasks
from fleetcheck.audit import RecordingAuditSink
from fleetcheck.cli import scheduler as scheduler_cli
from fleetcheck.services import reminders as reminder_service
from fleetcheck.services import runs as run_service

from .conftest import TestingSessionLocal

runner = CliRunner()


def test_tick_command_prints_report(db, fleet, monkeypatch):
    monkeypatch.setattr(scheduler_cli, "SessionLocal", TestingSessionLocal)
    reminder_service.create_reminder(
        db,
        unit_id=fleet.unit_id,
        template_id=fleet.template_id,
        actor_id=uuid.uuid4(),
        audit_sink=RecordingAuditSink(),
    )

    result = runner.invoke(scheduler_cli.app, ["tick", "--now", "2024-06-01T15:01:00+00:00"])

    assert result.exit_code == 0, result.output
    report = json.loads(result.stdout)
    assert report["created"] == 1
    assert report["outcomes"][0]["day_key"] == "2024-06-01"


def test_tick_command_rejects_bad_instant(monkeypatch):
    monkeypatch.setattr(scheduler_cli, "SessionLocal", TestingSessionLocal)
    result = runner.invoke(scheduler_cli.app, ["tick", "--now", "yesterday"])
    assert result.exit_code != 0


def test_overdue_command_lists_stale_runs(db, fleet, monkeypatch):
    monkeypatch.setattr(scheduler_cli, "SessionLocal", TestingSessionLocal)
    now = datetime.now(timezone.utc)
    run_service.create_run(
        db, fleet.unit_id, fleet.template_id, now=now - timedelta(days=3), audit_sink=RecordingAuditSink()
    )

    result = runner.invoke(scheduler_cli.app, ["overdue"])

    assert result.exit_code == 0, result.output
    assert "Truck 12" in result.output
    assert "1 overdue run(s)" in result.output


def test_celery_tick_runs_eagerly(db, monkeypatch):
    from .conftest import seed_fleet

    monkeypatch.setattr(tasks, "SessionLocal", TestingSessionLocal)
    fleet = seed_fleet(db, unit_timezone="UTC")
    reminder_service.create_reminder(
        db,
        unit_id=fleet.unit_id,
        template_id=fleet.template_id,
        actor_id=None,
        trigger_hour=0,
        trigger_minute=0,
        audit_sink=RecordingAuditSink(),
    )

    assert tasks.celery_app.conf.task_always_eager is True
    report = tasks.enqueue_reminder_tick()

    assert report["created"] == 1
    assert report["failed"] == 0
