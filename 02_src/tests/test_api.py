"""Tests for the HTTP API."""

import time

import pytest
from fastapi.testclient import TestClient

from runtrace.api import create_fastapi_app, set_app
from runtrace.app import Application
from runtrace.config import Settings


@pytest.fixture
def client():
    """TestClient over a fresh in-memory application."""
    set_app(Application(db_path=":memory:", settings=Settings(sweep_grace=0.05)))
    with TestClient(create_fastapi_app()) as test_client:
        yield test_client
    set_app(None)


def _wait_finished(client, run_id, timeout=15.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        current = client.get("/api/runs/current").json()
        if current["id"] == run_id and current["status"] != "building":
            return current
        time.sleep(0.1)
    raise AssertionError("run did not finish")


class TestRunsApi:
    """Tests for /api/runs."""

    def test_no_current_run(self, client):
        assert client.get("/api/runs/current").status_code == 404
        assert client.get("/api/runs/current/tree").status_code == 404

    def test_rewrite_error_is_422(self, client):
        """Test that a syntax error is reported with its position."""
        response = client.post("/api/runs", json={"source": "def broken(:\n"})

        assert response.status_code == 422
        assert response.json()["detail"]["line"] == 1

    def test_unknown_sample_is_404(self, client):
        response = client.post("/api/runs", json={"sample_id": "nope"})
        assert response.status_code == 404

    def test_run_sample_and_fetch_tree(self, client):
        """Test the full cycle: start, wait, sync, logs, history, messages."""
        response = client.post("/api/runs", json={"sample_id": "nested"})
        assert response.status_code == 200
        run_id = response.json()["id"]

        finished = _wait_finished(client, run_id)
        assert finished["status"] == "finished"

        tree = client.post("/api/runs/current/sync").json()
        assert tree["source"] == "events"
        assert tree["root"]["name"] == "outer"
        assert [c["name"] for c in tree["root"]["children"]][-1] == "inner"

        logs = client.get("/api/runs/current/logs").json()
        assert "Outer function starting" in [l["text"] for l in logs]

        history = client.get("/api/runs").json()
        assert [r["id"] for r in history] == [run_id]

        messages = client.get(f"/api/runs/{run_id}/messages").json()
        assert messages[-1]["type"] == "done"


class TestObservabilityApi:
    """Tests for samples listing."""

    def test_samples(self, client):
        samples = client.get("/api/samples").json()

        assert {"nested", "callbacks", "recursion"} <= {s["id"] for s in samples}
        assert all(s["code"] for s in samples)


class _RecordingSim:
    """Stands in for the sample driver; records what it was asked to do."""

    def __init__(self):
        self.running = False
        self.selection = None
        self.results = {}
        self.stopped = 0

    async def start(self, sample_ids=None):
        self.running = True
        self.selection = sample_ids

    async def stop(self):
        self.running = False
        self.stopped += 1


@pytest.fixture
def sim_client():
    """TestClient whose app carries a recording driver."""
    sim = _RecordingSim()
    set_app(Application(db_path=":memory:", settings=Settings(sweep_grace=0.05)))
    with TestClient(create_fastapi_app(sim=sim)) as test_client:
        yield test_client, sim
    set_app(None)


class TestControlApi:
    """Tests for /api/control."""

    def test_reset_without_run(self, client):
        assert client.post("/api/control/reset").json() == {
            "status": "ok",
            "discarded_run_id": None,
            "aborted": False,
        }

    def test_reset_aborts_running_run(self, client):
        """Test that reset reports the run it tore down."""
        run_id = client.post(
            "/api/runs", json={"source": "import time\ntime.sleep(5)\n"}
        ).json()["id"]

        body = client.post("/api/control/reset").json()

        assert body == {"status": "ok", "discarded_run_id": run_id, "aborted": True}
        assert client.get("/api/runs").json() == []
        assert client.get("/api/runs/current").status_code == 404

    def test_sim_not_configured(self, client):
        assert client.post("/api/control/sim/start").status_code == 404
        assert client.get("/api/control/sim").status_code == 404

    def test_sim_start_with_selection(self, sim_client):
        client, sim = sim_client

        response = client.post(
            "/api/control/sim/start", json={"sample_ids": ["nested", "recursion"]}
        )

        assert response.status_code == 200
        assert response.json()["running"] is True
        assert sim.selection == ["nested", "recursion"]
        assert client.get("/api/control/sim").json()["sample_ids"] == ["nested", "recursion"]

    def test_sim_start_all(self, sim_client):
        client, sim = sim_client

        assert client.post("/api/control/sim/start").status_code == 200
        assert sim.running is True
        assert sim.selection is None

    def test_sim_start_unknown_sample(self, sim_client):
        client, sim = sim_client

        response = client.post("/api/control/sim/start", json={"sample_ids": ["nope"]})

        assert response.status_code == 404
        assert "nope" in response.json()["detail"]
        assert sim.running is False

    def test_sim_stop(self, sim_client):
        client, sim = sim_client
        client.post("/api/control/sim/start")

        body = client.post("/api/control/sim/stop").json()

        assert body["running"] is False
        assert sim.stopped == 1
