from __future__ import annotations

from datetime import timedelta
from unittest.mock import MagicMock, patch
from urllib.error import HTTPError

import pytest

from mediajobs.errors import ApiError
from mediajobs.reminders import WebhookDeliveryError, build_reminder_payload, post_webhook


def _seed(orchestrator, clock, *, post_id="post_1", minutes=7, webhook="https://hooks.test/reminder", **post_fields):
    orchestrator.reminders_repo.add_project(
        project={
            "id": "proj_1",
            "name": "Bloco",
            "webhook_reminder_url": webhook,
            "instagram_username": "bloco.samba",
        }
    )
    return orchestrator.reminders_repo.add_post(
        post={
            "id": post_id,
            "project_id": "proj_1",
            "publish_type": "reminder",
            "status": "scheduled",
            "post_type": "reel",
            "caption": "Ensaio hoje",
            "media_urls": ["https://cdn.test/a.jpg"],
            "scheduled_at": clock.now + timedelta(minutes=minutes),
            **post_fields,
        }
    )


def test_confirmation_is_idempotent(orchestrator, clock):
    _seed(orchestrator, clock)
    receiver = orchestrator.confirmation_receiver

    first = receiver.confirm("post_1")
    clock.advance(minutes=3)
    second = receiver.confirm("post_1")

    assert first == second
    assert orchestrator.reminders_repo.get_post(post_id="post_1")["reminder_confirmed_at"] == first


def test_confirmation_of_unknown_delivery_is_not_found(orchestrator):
    with pytest.raises(ApiError) as exc_info:
        orchestrator.confirmation_receiver.confirm("missing")

    assert exc_info.value.code == "DELIVERY_NOT_FOUND"
    assert exc_info.value.http_status == 404


def test_confirmation_of_non_reminder_post_is_rejected(orchestrator, clock):
    _seed(orchestrator, clock, publish_type="direct")

    with pytest.raises(ApiError) as exc_info:
        orchestrator.confirmation_receiver.confirm("post_1")

    assert exc_info.value.code == "DELIVERY_INVALID_STATE"
    assert exc_info.value.http_status == 409
    assert orchestrator.reminders_repo.get_post(post_id="post_1")["reminder_confirmed_at"] is None


def test_dispatch_sends_posts_inside_window_once(orchestrator, clock, reminder_sender):
    _seed(orchestrator, clock, post_id="due", minutes=7)
    _seed(orchestrator, clock, post_id="too_soon", minutes=2)
    _seed(orchestrator, clock, post_id="too_late", minutes=30)

    stats = orchestrator.dispatch_reminders()

    assert stats.as_dict() == {"sent": 1, "failed": 0, "skipped": 0, "total": 1}
    assert [payload["post"]["id"] for _, payload in reminder_sender.calls] == ["due"]
    assert orchestrator.reminders_repo.get_post(post_id="due")["reminder_sent_at"] == clock.now

    again = orchestrator.dispatch_reminders()
    assert again.total == 0
    assert len(reminder_sender.calls) == 1


def test_dispatch_skips_project_without_webhook(orchestrator, clock, reminder_sender):
    _seed(orchestrator, clock, webhook=None)

    stats = orchestrator.dispatch_reminders()

    assert stats.skipped == 1
    assert stats.sent == 0
    assert reminder_sender.calls == []
    assert orchestrator.reminders_repo.get_post(post_id="post_1")["reminder_sent_at"] is None


def test_failed_delivery_is_retried_on_next_run(orchestrator, clock, reminder_sender):
    _seed(orchestrator, clock)
    reminder_sender.failing_urls.add("https://hooks.test/reminder")

    failed = orchestrator.dispatch_reminders()
    assert failed.failed == 1
    assert orchestrator.reminders_repo.get_post(post_id="post_1")["reminder_sent_at"] is None

    reminder_sender.failing_urls.clear()
    retried = orchestrator.dispatch_reminders()
    assert retried.sent == 1


def test_reminder_payload_shape(orchestrator, clock):
    post = _seed(orchestrator, clock, first_comment="#samba")
    project = orchestrator.reminders_repo.get_project(project_id="proj_1")

    payload = build_reminder_payload(post, project)

    assert payload == {
        "type": "reminder",
        "post": {
            "id": "post_1",
            "content": "Ensaio hoje",
            "scheduledFor": (clock.now + timedelta(minutes=7)).isoformat(),
            "platform": "instagram",
            "postType": "reel",
            "mediaUrls": ["https://cdn.test/a.jpg"],
            "extraInfo": None,
            "firstComment": "#samba",
        },
        "project": {"id": "proj_1", "name": "Bloco", "instagramUsername": "bloco.samba"},
    }


def test_post_webhook_sends_json_with_user_agent():
    response = MagicMock()
    response.status = 200
    response.__enter__.return_value = response

    with patch("urllib.request.urlopen", return_value=response) as urlopen:
        status = post_webhook("https://hooks.test/reminder", {"type": "reminder"}, timeout=5)

    assert status == 200
    req = urlopen.call_args.args[0]
    assert req.get_method() == "POST"
    assert req.get_header("User-agent") == "mediajobs-reminders/1.0"
    assert req.data == b'{"type": "reminder"}'
    assert urlopen.call_args.kwargs["timeout"] == 5


def test_post_webhook_wraps_http_errors():
    error = HTTPError("https://hooks.test/reminder", 500, "boom", hdrs=None, fp=None)

    with patch("urllib.request.urlopen", side_effect=error):
        with pytest.raises(WebhookDeliveryError, match="webhook returned 500"):
            post_webhook("https://hooks.test/reminder", {}, timeout=5)
