"""CLI utilities for running and inspecting the reminder scheduler."""

# purpose: let operators run a scheduler pass or list overdue runs outside the worker
# status: active
# depends_on: fleetcheck.database, fleetcheck.services.scheduler

from __future__ import annotations

import json
from datetime import datetime

import typer

from ..database import SessionLocal
from ..errors import FleetCheckError
from ..services import runs as run_service
from ..services import scheduler

app = typer.Typer(help="Reminder scheduler utilities")


def _parse_instant(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError as exc:
        raise typer.BadParameter(f"Not an ISO-8601 instant: {value}") from exc


@app.command()
def tick(
    now: str = typer.Option(None, help="Evaluate as of this ISO-8601 instant instead of the clock"),
    max_retries: int = typer.Option(None, help="Override SCHEDULER_MAX_RETRIES"),
) -> None:
    """Run one scheduler pass and print the report as JSON."""

    db = SessionLocal()
    try:
        report = scheduler.tick(db, now=_parse_instant(now), max_retries=max_retries)
    except FleetCheckError as exc:
        typer.echo(f"tick failed: {exc.message}", err=True)
        raise typer.Exit(code=1)
    finally:
        db.close()
    typer.echo(json.dumps(report.as_dict(), indent=2))
    if report.failed:
        raise typer.Exit(code=2)


@app.command()
def overdue(
    now: str = typer.Option(None, help="Evaluate as of this ISO-8601 instant instead of the clock"),
) -> None:
    """List unsubmitted runs from earlier local days."""

    db = SessionLocal()
    try:
        rows = run_service.list_overdue_runs(db, now=_parse_instant(now))
    finally:
        db.close()
    for row in rows:
        typer.echo(f"{row.calendar_day_key}  {row.unit_name}  {row.template_name}  {row.status}  {row.id}")
    typer.echo(f"{len(rows)} overdue run(s)")


if __name__ == "__main__":
    app()
