from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any
from urllib import request
from urllib.error import HTTPError, URLError

from mediajobs.errors import conflict, not_found
from mediajobs.models import utcnow
from mediajobs.repositories.reminders import PUBLISH_TYPE_REMINDER

logger = logging.getLogger(__name__)

USER_AGENT = "mediajobs-reminders/1.0"


class WebhookDeliveryError(Exception):
    pass


def post_webhook(url: str, payload: dict[str, Any], *, timeout: float) -> int:
    body = json.dumps(payload, ensure_ascii=True).encode("utf-8")
    req = request.Request(
        url,
        data=body,
        method="POST",
        headers={"Content-Type": "application/json", "User-Agent": USER_AGENT},
    )
    try:
        with request.urlopen(req, timeout=timeout) as resp:
            return int(resp.status)
    except HTTPError as e:
        raise WebhookDeliveryError(f"webhook returned {e.code}") from e
    except (URLError, OSError) as e:
        raise WebhookDeliveryError(f"webhook unreachable: {e}") from e


def build_reminder_payload(post: dict[str, Any], project: dict[str, Any]) -> dict[str, Any]:
    scheduled_at = post.get("scheduled_at")
    return {
        "type": "reminder",
        "post": {
            "id": post["id"],
            "content": post.get("caption"),
            "scheduledFor": scheduled_at.isoformat() if scheduled_at is not None else None,
            "platform": "instagram",
            "postType": post.get("post_type"),
            "mediaUrls": list(post.get("media_urls") or []),
            "extraInfo": post.get("reminder_extra_info") or None,
            "firstComment": post.get("first_comment") or None,
        },
        "project": {
            "id": project["id"],
            "name": project.get("name"),
            "instagramUsername": project.get("instagram_username"),
        },
    }


class WebhookConfirmationReceiver:
    """Records that a reminder reached its recipient; repeated confirmations are no-ops."""

    def __init__(self, *, reminders_repo: Any, clock: Callable[[], datetime] = utcnow) -> None:
        self.reminders_repo = reminders_repo
        self._clock = clock

    def confirm(self, delivery_id: str) -> datetime:
        post = self.reminders_repo.get_post(post_id=delivery_id)
        if post is None:
            raise not_found("DELIVERY_NOT_FOUND", "delivery not found")
        if post.get("publish_type") != PUBLISH_TYPE_REMINDER:
            raise conflict("DELIVERY_INVALID_STATE", "delivery is not a reminder")

        existing = post.get("reminder_confirmed_at")
        if existing is not None:
            return existing

        confirmed_at = self._clock()
        if self.reminders_repo.confirm(post_id=delivery_id, confirmed_at=confirmed_at):
            logger.info("reminder confirmed delivery_id=%s", delivery_id)
            return confirmed_at

        # Another confirmation won the race; report its timestamp.
        winner = self.reminders_repo.get_post(post_id=delivery_id)
        if winner is None or winner.get("reminder_confirmed_at") is None:
            raise not_found("DELIVERY_NOT_FOUND", "delivery not found")
        return winner["reminder_confirmed_at"]


@dataclass
class DispatchStats:
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    total: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "sent": self.sent,
            "failed": self.failed,
            "skipped": self.skipped,
            "total": self.total,
        }


class ReminderDispatcher:
    """Posts reminder webhooks for posts scheduled shortly after ``now``.

    A post is only marked sent after its webhook accepted the payload, so a
    failed delivery is retried on the next run.
    """

    def __init__(
        self,
        *,
        reminders_repo: Any,
        lead_minutes: int = 5,
        window_minutes: int = 5,
        timeout_s: float = 10.0,
        sender: Callable[..., Any] = post_webhook,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.reminders_repo = reminders_repo
        self.lead = timedelta(minutes=int(lead_minutes))
        self.window = timedelta(minutes=int(window_minutes))
        self.timeout_s = float(timeout_s)
        self._sender = sender
        self._clock = clock

    def dispatch_due(self, now: datetime | None = None) -> DispatchStats:
        current = now or self._clock()
        window_start = current + self.lead
        window_end = window_start + self.window
        posts = self.reminders_repo.list_due(window_start=window_start, window_end=window_end)
        stats = DispatchStats(total=len(posts))

        for post in posts:
            project = self.reminders_repo.get_project(project_id=post["project_id"])
            url = (project or {}).get("webhook_reminder_url")
            if not url:
                logger.warning("reminder skipped, project has no webhook post_id=%s", post["id"])
                stats.skipped += 1
                continue
            try:
                self._sender(url, build_reminder_payload(post, project), timeout=self.timeout_s)
            except WebhookDeliveryError as exc:
                logger.warning("reminder delivery failed post_id=%s: %s", post["id"], exc)
                stats.failed += 1
                continue
            if self.reminders_repo.mark_sent(post_id=post["id"], sent_at=self._clock()):
                logger.info("reminder sent post_id=%s project_id=%s", post["id"], post["project_id"])
                stats.sent += 1
            else:
                logger.warning("reminder already marked sent post_id=%s", post["id"])
                stats.skipped += 1
        return stats
