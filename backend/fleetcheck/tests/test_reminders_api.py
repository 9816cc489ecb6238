import uuid

from .conftest import actor_headers, seed_fleet


def create_reminder(client, fleet, headers, **overrides):
    payload = {"unit_id": str(fleet.unit_id), "template_id": str(fleet.template_id)}
    payload.update(overrides)
    return client.post("/api/reminders", json=payload, headers=headers)


def test_reminder_defaults_to_unit_zone(client, fleet):
    headers, actor = actor_headers()
    resp = create_reminder(client, fleet, headers)
    assert resp.status_code == 201
    body = resp.json()
    assert body["timezone"] == "America/Los_Angeles"
    assert (body["trigger_hour"], body["trigger_minute"]) == (8, 0)
    assert body["enabled"] is True
    assert body["created_by"] == str(actor)
    assert body["last_evaluated_day"] is None

    listed = client.get("/api/reminders", params={"organization_id": str(fleet.organization_id)}, headers=headers)
    assert [row["id"] for row in listed.json()] == [body["id"]]


def test_reminder_validation(client, fleet):
    headers, _ = actor_headers()
    bad_zone = create_reminder(client, fleet, headers, timezone="Mars/Olympus_Mons")
    assert bad_zone.status_code == 422
    assert bad_zone.json()["code"] == "invalid_time_zone"

    bad_hour = create_reminder(client, fleet, headers, trigger_hour=25)
    assert bad_hour.status_code == 422

    assert create_reminder(client, fleet, headers).status_code == 201
    duplicate = create_reminder(client, fleet, headers)
    assert duplicate.status_code == 422
    assert duplicate.json()["code"] == "invalid_request"


def test_update_reminder_and_audit(client, fleet):
    headers, actor = actor_headers()
    reminder_id = create_reminder(client, fleet, headers).json()["id"]

    resp = client.patch(
        f"/api/reminders/{reminder_id}",
        json={"trigger_hour": 6, "trigger_minute": 30, "timezone": "America/Denver"},
        headers=headers,
    )
    assert resp.status_code == 200
    assert resp.json()["trigger_hour"] == 6
    assert resp.json()["timezone"] == "America/Denver"

    invalid = client.patch(f"/api/reminders/{reminder_id}", json={"timezone": "Nowhere/City"}, headers=headers)
    assert invalid.status_code == 422

    missing = client.patch(f"/api/reminders/{uuid.uuid4()}", json={"enabled": False}, headers=headers)
    assert missing.status_code == 404

    events = client.get("/api/audit", params={"subject_id": reminder_id}, headers=headers).json()
    assert sorted(event["action"] for event in events) == ["reminder_created", "reminder_updated"]
    assert all(event["subject_type"] == "reminder_config" for event in events)
    updated = next(event for event in events if event["action"] == "reminder_updated")
    assert updated["meta"]["changes"]["trigger_hour"] == 6
    assert updated["actor_id"] == str(actor)


def test_tick_endpoint_creates_due_runs_once(client, db):
    headers, _ = actor_headers()
    # midnight UTC has always passed, so the reminder is due on every tick
    fleet = seed_fleet(db, unit_timezone="UTC")
    reminder_id = create_reminder(client, fleet, headers, trigger_hour=0, trigger_minute=0).json()["id"]

    first = client.post("/api/reminders/tick", headers=headers)
    assert first.status_code == 200
    assert first.json()["created"] == 1
    run_id = first.json()["outcomes"][0]["run_id"]

    second = client.post("/api/reminders/tick", headers=headers)
    assert second.json()["created"] == 0
    assert second.json()["already_evaluated"] == 1

    run = client.get(f"/api/runs/{run_id}", headers=headers).json()
    assert run["trigger"] == "schedule"
    assert run["created_by"] is None

    reminder = client.get("/api/reminders", params={"organization_id": str(fleet.organization_id)}, headers=headers)
    assert reminder.json()[0]["id"] == reminder_id
    assert reminder.json()[0]["last_evaluated_day"] == run["calendar_day_key"]

    started = client.get("/api/audit", params={"subject_id": run_id, "action": "run_started"}, headers=headers)
    assert len(started.json()) == 1
    assert started.json()[0]["actor_id"] is None
