"""Tests for the Flask API."""

import threading
from unittest.mock import Mock

import pytest

from speedlog.log_store import HEADER_LINE
from speedlog.web.app import create_web_app

from .conftest import SERVER_URL, FakeResponse, FakeSession


def make_config():
    config = Mock()
    config.web.secret_key = "test"
    config.web.reverse_proxy_headers = False
    config.server.base_url = SERVER_URL
    return config


@pytest.fixture
def gate():
    event = threading.Event()
    yield event
    event.set()


@pytest.fixture
def client_for(log_store):
    def factory(orchestrator):
        app = create_web_app(make_config(), orchestrator, log_store)
        app.config["TESTING"] = True
        return app.test_client()

    return factory


def test_status_reports_idle_snapshot(make_orchestrator, client_for):
    client = client_for(make_orchestrator())

    payload = client.get("/api/status").get_json()

    assert payload["run"]["phase"] == "idle"
    assert payload["run"]["phase_label"] == "Idle"
    assert payload["server_base_url"] == SERVER_URL
    assert payload["scheduler"] is None


def test_start_run_then_read_logs(make_orchestrator, client_for):
    orchestrator = make_orchestrator()
    client = client_for(orchestrator)

    response = client.post("/api/run?size=5")
    orchestrator.join(10)

    assert response.status_code == 202
    assert response.get_json()["test_size_mb"] == 5
    logs = client.get("/api/logs").get_json()
    assert len(logs) == 1
    assert logs[0]["error_message"] == ""
    assert logs[0]["network_type"] == "wifi"
    assert client.get("/api/status").get_json()["run"]["phase"] == "done"


def test_invalid_size_is_bad_request(make_orchestrator, client_for):
    client = client_for(make_orchestrator())

    assert client.post("/api/run?size=7").status_code == 400
    assert client.post("/api/run?size=big").status_code == 400


def test_busy_run_conflicts_and_cancel(make_orchestrator, client_for, log_store, gate):
    def ping(**_kwargs):
        gate.wait(5)
        return FakeResponse(200)

    orchestrator = make_orchestrator(session=FakeSession({"ping": ping}))
    client = client_for(orchestrator)

    assert client.post("/api/run").status_code == 202
    assert client.post("/api/run").status_code == 409

    cancel = client.post("/api/run/cancel").get_json()
    gate.set()
    orchestrator.join(10)

    assert cancel["run"]["phase"] == "idle"
    assert log_store.read_all()[0].error_message == "Cancelled"


def test_logs_limit_newest_first(make_orchestrator, client_for):
    orchestrator = make_orchestrator()
    client = client_for(orchestrator)
    orchestrator.run(5)
    orchestrator.run(50)

    logs = client.get("/api/logs?limit=1").get_json()

    assert [entry["test_size_mb"] for entry in logs] == [50]


def test_export_csv(make_orchestrator, client_for):
    client = client_for(make_orchestrator())

    response = client.get("/api/export/csv")

    assert response.status_code == 200
    assert response.mimetype == "text/csv"
    assert "attachment" in response.headers["Content-Disposition"]
    assert response.get_data(as_text=True) == HEADER_LINE + "\n"


def test_logs_limit_zero_and_negative(make_orchestrator, client_for):
    orchestrator = make_orchestrator()
    client = client_for(orchestrator)
    orchestrator.run(5)

    assert client.get("/api/logs?limit=0").get_json() == []
    assert client.get("/api/logs?limit=-1").status_code == 400
