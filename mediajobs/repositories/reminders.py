from __future__ import annotations

import json
import threading
from datetime import datetime
from typing import Any

from mediajobs.db.postgres import PostgresTxRunner

PUBLISH_TYPE_REMINDER = "reminder"
POST_STATUS_SCHEDULED = "scheduled"

POST_FIELDS = (
    "id",
    "project_id",
    "publish_type",
    "status",
    "post_type",
    "caption",
    "media_urls",
    "reminder_extra_info",
    "first_comment",
    "scheduled_at",
    "reminder_sent_at",
    "reminder_confirmed_at",
)

PROJECT_FIELDS = ("id", "name", "webhook_reminder_url", "instagram_username")


class InMemoryRemindersRepository:
    """Posts and their projects, keyed by id."""

    def __init__(
        self,
        posts: dict[str, dict[str, Any]] | None = None,
        projects: dict[str, dict[str, Any]] | None = None,
    ) -> None:
        self._posts = {} if posts is None else posts
        self._projects = {} if projects is None else projects
        self._lock = threading.RLock()

    def add_project(self, *, project: dict[str, Any]) -> dict[str, Any]:
        row = {name: project.get(name) for name in PROJECT_FIELDS}
        with self._lock:
            self._projects[row["id"]] = row
        return dict(row)

    def add_post(self, *, post: dict[str, Any]) -> dict[str, Any]:
        row = {name: post.get(name) for name in POST_FIELDS}
        row["media_urls"] = list(row.get("media_urls") or [])
        with self._lock:
            self._posts[row["id"]] = row
        return dict(row)

    def get_post(self, *, post_id: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._posts.get(post_id)
            return dict(row) if row is not None else None

    def get_project(self, *, project_id: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._projects.get(project_id)
            return dict(row) if row is not None else None

    def list_due(self, *, window_start: datetime, window_end: datetime) -> list[dict[str, Any]]:
        with self._lock:
            rows = [
                dict(row)
                for row in self._posts.values()
                if row.get("publish_type") == PUBLISH_TYPE_REMINDER
                and row.get("status") == POST_STATUS_SCHEDULED
                and row.get("reminder_sent_at") is None
                and row.get("scheduled_at") is not None
                and window_start <= row["scheduled_at"] <= window_end
            ]
        rows.sort(key=lambda r: (r["scheduled_at"], r["id"]))
        return rows

    def mark_sent(self, *, post_id: str, sent_at: datetime) -> bool:
        with self._lock:
            row = self._posts.get(post_id)
            if row is None or row.get("reminder_sent_at") is not None:
                return False
            row["reminder_sent_at"] = sent_at
            return True

    def confirm(self, *, post_id: str, confirmed_at: datetime) -> bool:
        with self._lock:
            row = self._posts.get(post_id)
            if row is None or row.get("reminder_confirmed_at") is not None:
                return False
            row["reminder_confirmed_at"] = confirmed_at
            return True


class PostgresRemindersRepository:
    def __init__(self, *, tx_runner: PostgresTxRunner) -> None:
        self._tx_runner = tx_runner

    def _row_to_post(self, row: Any) -> dict[str, Any]:
        out = dict(zip(POST_FIELDS, row))
        media = out.get("media_urls")
        if isinstance(media, str):
            media = json.loads(media)
        out["media_urls"] = list(media or [])
        return out

    def get_post(self, *, post_id: str) -> dict[str, Any] | None:
        sql = f"SELECT {', '.join(POST_FIELDS)} FROM social_posts WHERE id = %s LIMIT 1"

        def _op(conn: Any) -> dict[str, Any] | None:
            with conn.cursor() as cur:
                cur.execute(sql, (post_id,))
                row = cur.fetchone()
            return self._row_to_post(row) if row is not None else None

        return self._tx_runner.run_in_tx(fn=_op)

    def get_project(self, *, project_id: str) -> dict[str, Any] | None:
        sql = f"SELECT {', '.join(PROJECT_FIELDS)} FROM projects WHERE id = %s LIMIT 1"

        def _op(conn: Any) -> dict[str, Any] | None:
            with conn.cursor() as cur:
                cur.execute(sql, (project_id,))
                row = cur.fetchone()
            return dict(zip(PROJECT_FIELDS, row)) if row is not None else None

        return self._tx_runner.run_in_tx(fn=_op)

    def list_due(self, *, window_start: datetime, window_end: datetime) -> list[dict[str, Any]]:
        sql = f"""
            SELECT {', '.join(POST_FIELDS)} FROM social_posts
            WHERE publish_type = %s
              AND status = %s
              AND reminder_sent_at IS NULL
              AND scheduled_at BETWEEN %s AND %s
            ORDER BY scheduled_at, id
        """

        def _op(conn: Any) -> list[dict[str, Any]]:
            with conn.cursor() as cur:
                cur.execute(sql, (PUBLISH_TYPE_REMINDER, POST_STATUS_SCHEDULED, window_start, window_end))
                rows = cur.fetchall()
            return [self._row_to_post(row) for row in rows]

        return self._tx_runner.run_in_tx(fn=_op)

    def mark_sent(self, *, post_id: str, sent_at: datetime) -> bool:
        sql = "UPDATE social_posts SET reminder_sent_at = %s WHERE id = %s AND reminder_sent_at IS NULL"
        return self._execute(sql, (sent_at, post_id)) == 1

    def confirm(self, *, post_id: str, confirmed_at: datetime) -> bool:
        sql = "UPDATE social_posts SET reminder_confirmed_at = %s WHERE id = %s AND reminder_confirmed_at IS NULL"
        return self._execute(sql, (confirmed_at, post_id)) == 1

    def _execute(self, sql: str, params: tuple) -> int:
        def _op(conn: Any) -> int:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                return int(cur.rowcount or 0)

        return self._tx_runner.run_in_tx(fn=_op)
