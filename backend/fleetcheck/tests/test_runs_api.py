import asyncio
import uuid

from fleetcheck.main import app
from fleetcheck.storage import LocalEvidenceGateway, get_evidence_gateway

from .conftest import FailingEvidenceGateway, actor_headers


def start_run(client, fleet, headers):
    return client.post(
        "/api/runs",
        json={"unit_id": str(fleet.unit_id), "template_id": str(fleet.template_id)},
        headers=headers,
    )


def test_requests_without_actor_are_rejected(client, fleet):
    resp = client.post(
        "/api/runs",
        json={"unit_id": str(fleet.unit_id), "template_id": str(fleet.template_id)},
    )
    assert resp.status_code == 401

    bad = client.get("/api/runs", headers={"X-Actor-Id": "not-a-uuid"})
    assert bad.status_code == 401


def test_read_routes_require_an_actor(client, fleet):
    headers, _ = actor_headers()
    run_id = start_run(client, fleet, headers).json()["run"]["id"]

    for path in (
        f"/api/runs/{run_id}",
        f"/api/runs/{run_id}/evidence",
        "/api/runs/overdue",
        "/api/reminders",
        "/api/audit",
    ):
        assert client.get(path).status_code == 401, path
        assert client.get(path, headers=headers).status_code == 200, path
    assert client.post("/api/reminders/tick").status_code == 401


def test_start_run_is_idempotent(client, fleet):
    headers, actor = actor_headers()

    first = start_run(client, fleet, headers)
    assert first.status_code == 201
    body = first.json()
    assert body["created"] is True
    assert body["run"]["status"] == "open"
    assert body["run"]["created_by"] == str(actor)

    second = start_run(client, fleet, actor_headers()[0])
    assert second.status_code == 200
    assert second.json()["created"] is False
    assert second.json()["run"]["id"] == body["run"]["id"]


def test_start_run_unknown_unit_is_not_found(client, fleet):
    headers, _ = actor_headers()
    resp = client.post(
        "/api/runs",
        json={"unit_id": str(uuid.uuid4()), "template_id": str(fleet.template_id)},
        headers=headers,
    )
    assert resp.status_code == 404
    assert resp.json()["code"] == "not_found"


def test_full_run_lifecycle(client, fleet):
    driver_headers, driver = actor_headers()
    other_headers, _ = actor_headers()
    run_id = start_run(client, fleet, driver_headers).json()["run"]["id"]

    claim = client.post(f"/api/runs/{run_id}/claim", headers=driver_headers)
    assert claim.status_code == 200
    assert claim.json()["status"] == "assigned"
    assert claim.json()["assigned_to"] == str(driver)

    stolen = client.post(f"/api/runs/{run_id}/claim", headers=other_headers)
    assert stolen.status_code == 409
    assert stolen.json()["code"] == "already_assigned"

    release = client.post(f"/api/runs/{run_id}/unclaim", headers=other_headers)
    assert release.status_code == 409
    assert release.json()["code"] == "not_assignee"

    answers = [
        {"item_id": str(fleet.item_ids[0]), "value": True},
        {"item_id": str(fleet.item_ids[1]), "value": True},
        {"item_id": str(fleet.item_ids[2]), "value": "ok"},
        {"item_id": str(fleet.item_ids[3]), "value": False},
    ]
    batch = client.put(f"/api/runs/{run_id}/responses", json={"answers": answers}, headers=driver_headers)
    assert batch.status_code == 200
    assert len(batch.json()) == 4

    single = client.put(
        f"/api/runs/{run_id}/responses/{fleet.item_ids[3]}",
        json={"value": "Brake light cracked"},
        headers=driver_headers,
    )
    assert single.status_code == 200
    assert single.json()["value_text"] == "Brake light cracked"
    assert single.json()["value_bool"] is None

    foreign = client.put(
        f"/api/runs/{run_id}/responses/{uuid.uuid4()}",
        json={"value": True},
        headers=driver_headers,
    )
    assert foreign.status_code == 422

    photo = client.post(
        f"/api/runs/{run_id}/evidence",
        data={"kind": "photo"},
        files={"upload": ("front.jpg", b"\xff\xd8jpeg", "image/jpeg")},
        headers=driver_headers,
    )
    assert photo.status_code == 201
    assert photo.json()["warning"] is None
    assert photo.json()["evidence"]["slot"] == 1

    signature = client.post(
        f"/api/runs/{run_id}/evidence",
        data={"kind": "signature"},
        files={"upload": ("sig.png", b"\x89PNG", "image/png")},
        headers=driver_headers,
    )
    assert signature.status_code == 201

    detail = client.get(f"/api/runs/{run_id}", headers=driver_headers)
    assert detail.status_code == 200
    detail_body = detail.json()
    assert detail_body["unit_name"] == "Truck 12"
    assert len(detail_body["items"]) == 5
    assert len(detail_body["responses"]) == 4
    assert {item["kind"] for item in detail_body["evidence"]} == {"photo", "signature"}

    links = client.get(f"/api/runs/{run_id}/evidence", headers=driver_headers)
    assert links.status_code == 200
    assert len(links.json()) == 2
    assert all(link["url"] for link in links.json())

    submitted = client.post(f"/api/runs/{run_id}/submit", headers=driver_headers)
    assert submitted.status_code == 200
    payload = submitted.json()
    assert payload["run"]["status"] == "submitted"
    assert payload["tally"] == {"total_items": 5, "ok_count": 3, "photos_attached": 1, "signed": True}
    assert payload["already_submitted"] is False

    again = client.post(f"/api/runs/{run_id}/submit", headers=driver_headers)
    assert again.status_code == 200
    assert again.json()["already_submitted"] is True

    late = client.put(
        f"/api/runs/{run_id}/responses/{fleet.item_ids[4]}",
        json={"value": True},
        headers=driver_headers,
    )
    assert late.status_code == 409
    assert late.json()["code"] == "already_submitted"

    events = client.get("/api/audit", params={"subject_id": run_id}, headers=driver_headers)
    assert events.status_code == 200
    actions = [event["action"] for event in events.json()]
    assert sorted(actions) == sorted(
        ["run_started", "run_assigned", "evidence_attached", "evidence_attached", "run_submitted"]
    )
    submitted_event = next(event for event in events.json() if event["action"] == "run_submitted")
    assert submitted_event["meta"]["ok_count"] == 3
    assert submitted_event["actor_id"] == str(driver)


def test_evidence_failure_is_reported_not_raised(client, fleet):
    headers, _ = actor_headers()
    run_id = start_run(client, fleet, headers).json()["run"]["id"]
    gateway = FailingEvidenceGateway()
    app.dependency_overrides[get_evidence_gateway] = lambda: gateway

    resp = client.post(
        f"/api/runs/{run_id}/evidence",
        data={"kind": "photo"},
        files={"upload": ("front.jpg", b"jpeg", "image/jpeg")},
        headers=headers,
    )
    assert resp.status_code == 201
    assert resp.json()["evidence"]["upload_status"] == "failed"
    assert "connection reset" in resp.json()["warning"]

    listed = client.get(f"/api/runs/{run_id}/evidence", headers=headers)
    assert listed.json() == []

    submitted = client.post(f"/api/runs/{run_id}/submit", headers=headers).json()
    assert submitted["run"]["status"] == "submitted"
    assert len(submitted["warnings"]) == 1


def test_unsupported_evidence_kind_is_rejected(client, fleet):
    headers, _ = actor_headers()
    run_id = start_run(client, fleet, headers).json()["run"]["id"]
    resp = client.post(
        f"/api/runs/{run_id}/evidence",
        data={"kind": "video"},
        files={"upload": ("clip.mp4", b"mp4", "video/mp4")},
        headers=headers,
    )
    assert resp.status_code == 422


def test_list_runs_filters(client, fleet):
    headers, driver = actor_headers()
    run_id = start_run(client, fleet, headers).json()["run"]["id"]

    open_runs = client.get(
        "/api/runs", params={"organization_id": str(fleet.organization_id), "open_only": True}, headers=headers
    )
    assert open_runs.status_code == 200
    assert [row["id"] for row in open_runs.json()] == [run_id]
    assert open_runs.json()[0]["template_name"] == "Daily Pre-Trip Inspection"

    mine = client.get("/api/runs", params={"mine": True}, headers=headers)
    assert mine.json() == []

    client.post(f"/api/runs/{run_id}/claim", headers=headers)
    mine = client.get("/api/runs", params={"mine": True}, headers=headers)
    assert [row["id"] for row in mine.json()] == [run_id]
    assert mine.json()[0]["assigned_to"] == str(driver)

    submitted = client.get("/api/runs", params={"run_status": "submitted"}, headers=headers)
    assert submitted.json() == []

    overdue = client.get("/api/runs/overdue", params={"organization_id": str(fleet.organization_id)}, headers=headers)
    assert overdue.status_code == 200
    assert overdue.json() == []


def test_unknown_run_is_not_found(client):
    headers, _ = actor_headers()
    resp = client.post(f"/api/runs/{uuid.uuid4()}/claim", headers=headers)
    assert resp.status_code == 404


class ThreadCheckingGateway(LocalEvidenceGateway):
    """Records whether uploads ran while an event loop owned the thread."""

    def __init__(self, upload_dir):
        super().__init__(upload_dir)
        self.on_event_loop = []

    def put(self, namespace, name, data, content_type="application/octet-stream"):
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            self.on_event_loop.append(False)
        else:
            self.on_event_loop.append(True)
        return super().put(namespace, name, data, content_type)


def test_evidence_upload_runs_off_the_event_loop(client, fleet, tmp_path):
    headers, _ = actor_headers()
    run_id = start_run(client, fleet, headers).json()["run"]["id"]
    gateway = ThreadCheckingGateway(str(tmp_path))
    app.dependency_overrides[get_evidence_gateway] = lambda: gateway

    resp = client.post(
        f"/api/runs/{run_id}/evidence",
        data={"kind": "photo"},
        files={"upload": ("front.jpg", b"jpeg", "image/jpeg")},
        headers=headers,
    )

    assert resp.status_code == 201
    assert resp.json()["evidence"]["upload_status"] == "stored"
    assert gateway.on_event_loop == [False]
