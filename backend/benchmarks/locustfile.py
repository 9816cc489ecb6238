import os
import uuid

from locust import HttpUser, task, between

# unit and template must already exist; every user races on the same run
UNIT_ID = os.getenv("BENCH_UNIT_ID", "")
TEMPLATE_ID = os.getenv("BENCH_TEMPLATE_ID", "")


class DriverUser(HttpUser):
    wait_time = between(1, 3)

    def on_start(self):
        self.headers = {"X-Actor-Id": str(uuid.uuid4())}

    @task(3)
    def list_open_runs(self):
        self.client.get("/api/runs", params={"open_only": True}, headers=self.headers)

    @task(2)
    def start_and_claim(self):
        r = self.client.post(
            "/api/runs",
            json={"unit_id": UNIT_ID, "template_id": TEMPLATE_ID},
            headers=self.headers,
        )
        if r.status_code not in (200, 201):
            return
        run_id = r.json()["run"]["id"]
        with self.client.post(
            f"/api/runs/{run_id}/claim",
            headers=self.headers,
            name="/api/runs/[id]/claim",
            catch_response=True,
        ) as resp:
            # losing the claim race is the expected outcome for most users
            if resp.status_code in (200, 409):
                resp.success()

    @task(1)
    def tick(self):
        self.client.post("/api/reminders/tick", headers=self.headers)
