from fastapi.testclient import TestClient

from mediajobs.main import create_app


def test_health_endpoint(client):
    resp = client.get("/healthz")
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["data"] == {"status": "ok"}


def test_success_response_contains_trace_id_and_success_envelope(client):
    resp = client.get("/healthz", headers={"x-trace-id": "trace_abc", "x-request-id": "req_abc"})
    assert resp.headers.get("x-trace-id") == "trace_abc"
    assert resp.headers.get("x-request-id") == "req_abc"
    assert resp.json()["meta"]["trace_id"] == "trace_abc"


def test_error_response_contains_standard_error_object(client):
    resp = client.get("/route-not-exists")
    assert resp.status_code == 404
    assert resp.headers.get("x-trace-id")
    assert resp.headers.get("x-request-id")

    body = resp.json()
    assert body["success"] is False
    assert body["error"]["code"] == "REQ_NOT_FOUND"
    assert set(body["error"].keys()) >= {"code", "message", "retryable", "class"}
    assert body["meta"]["trace_id"]


def test_unexpected_error_becomes_internal_error(orchestrator):
    app = create_app(orchestrator=orchestrator)

    @app.get("/boom")
    def boom():
        raise RuntimeError("kaboom")

    client = TestClient(app, raise_server_exceptions=False)
    resp = client.get("/boom")

    assert resp.status_code == 500
    body = resp.json()
    assert body["error"]["code"] == "INTERNAL_ERROR"
    assert body["error"]["retryable"] is True
    assert "kaboom" not in resp.text


def test_create_app_builds_in_memory_orchestrator_from_env(monkeypatch):
    monkeypatch.setenv("CRON_SECRET", "env_secret")
    client = TestClient(create_app())

    resp = client.get("/api/cron/separation/tick", headers={"Authorization": "Bearer env_secret"})

    assert resp.status_code == 200
    assert resp.json()["data"] == {"lane": "separation", "message": "no jobs to process"}
