from __future__ import annotations

from datetime import timedelta

from fastapi.testclient import TestClient

from mediajobs.main import create_app


def _add_reminder(orchestrator, clock, post_id="post_1", publish_type="reminder"):
    orchestrator.reminders_repo.add_project(project={"id": "proj_1", "name": "Bloco"})
    orchestrator.reminders_repo.add_post(
        post={
            "id": post_id,
            "project_id": "proj_1",
            "publish_type": publish_type,
            "status": "scheduled",
            "scheduled_at": clock.now + timedelta(minutes=5),
        }
    )


def test_confirm_records_timestamp_and_is_idempotent(client, orchestrator, clock):
    _add_reminder(orchestrator, clock)

    first = client.post("/api/webhooks/reminders/confirm", json={"delivery_id": "post_1"})
    clock.advance(minutes=2)
    second = client.post("/api/webhooks/reminders/confirm", json={"delivery_id": "post_1"})

    assert first.status_code == 200
    assert first.headers["access-control-allow-origin"] == "*"
    assert first.json()["data"] == {"delivery_id": "post_1", "confirmed_at": "2026-01-05T12:00:00+00:00"}
    assert second.json()["data"] == first.json()["data"]


def test_confirm_unknown_delivery(client):
    resp = client.post("/api/webhooks/reminders/confirm", json={"delivery_id": "nope"})

    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "DELIVERY_NOT_FOUND"


def test_confirm_non_reminder_post(client, orchestrator, clock):
    _add_reminder(orchestrator, clock, publish_type="direct")

    resp = client.post("/api/webhooks/reminders/confirm", json={"delivery_id": "post_1"})

    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "DELIVERY_INVALID_STATE"


def test_confirm_requires_delivery_id(client):
    resp = client.post("/api/webhooks/reminders/confirm", json={})

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "REQ_VALIDATION_FAILED"


def test_preflight_allows_any_origin(client):
    resp = client.options("/api/webhooks/reminders/confirm")

    assert resp.status_code == 204
    assert resp.headers["access-control-allow-origin"] == "*"
    assert "POST" in resp.headers["access-control-allow-methods"]


def test_confirm_checks_shared_secret_when_configured(orchestrator_factory, clock):
    orchestrator = orchestrator_factory({"REMINDER_WEBHOOK_SECRET": "hook_secret"})
    _add_reminder(orchestrator, clock)
    client = TestClient(create_app(orchestrator=orchestrator))

    denied = client.post("/api/webhooks/reminders/confirm", json={"delivery_id": "post_1"})
    allowed = client.post(
        "/api/webhooks/reminders/confirm",
        json={"delivery_id": "post_1"},
        headers={"x-webhook-secret": "hook_secret"},
    )

    assert denied.status_code == 401
    assert allowed.status_code == 200
