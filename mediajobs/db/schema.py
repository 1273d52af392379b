from __future__ import annotations

from mediajobs.db.postgres import _import_psycopg, validate_identifier

JOB_TABLE_DDL = """
CREATE TABLE IF NOT EXISTS {table} (
    id TEXT PRIMARY KEY,
    lane TEXT NOT NULL,
    resource_id TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending'
        CHECK (status IN ('pending', 'processing', 'completed', 'failed')),
    progress INTEGER NOT NULL DEFAULT 0 CHECK (progress BETWEEN 0 AND 100),
    external_ref TEXT,
    external_status TEXT,
    error TEXT,
    error_code TEXT,
    artifact_ref TEXT,
    payload JSONB NOT NULL DEFAULT '{{}}'::jsonb,
    created_by TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    started_at TIMESTAMPTZ,
    completed_at TIMESTAMPTZ
);
CREATE INDEX IF NOT EXISTS {table}_status_created_idx ON {table} (status, created_at, id);
CREATE UNIQUE INDEX IF NOT EXISTS {table}_active_resource_uidx
    ON {table} (resource_id) WHERE status IN ('pending', 'processing');
"""

TRACKS_DDL = """
CREATE TABLE IF NOT EXISTS music_tracks (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    artist TEXT,
    genre TEXT,
    mood TEXT,
    project_id TEXT,
    source_url TEXT,
    source_type TEXT,
    blob_url TEXT,
    blob_size BIGINT,
    duration_s INTEGER,
    thumbnail_url TEXT,
    percussion_url TEXT,
    percussion_size BIGINT,
    has_percussion_stem BOOLEAN NOT NULL DEFAULT false,
    stems_processed_at TIMESTAMPTZ,
    download_key TEXT UNIQUE,
    created_by TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
);
"""

REMINDERS_DDL = """
CREATE TABLE IF NOT EXISTS projects (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    webhook_reminder_url TEXT,
    instagram_username TEXT
);
CREATE TABLE IF NOT EXISTS social_posts (
    id TEXT PRIMARY KEY,
    project_id TEXT NOT NULL REFERENCES projects (id),
    publish_type TEXT NOT NULL,
    status TEXT NOT NULL,
    post_type TEXT,
    caption TEXT,
    media_urls JSONB NOT NULL DEFAULT '[]'::jsonb,
    reminder_extra_info TEXT,
    first_comment TEXT,
    scheduled_at TIMESTAMPTZ,
    reminder_sent_at TIMESTAMPTZ,
    reminder_confirmed_at TIMESTAMPTZ
);
CREATE INDEX IF NOT EXISTS social_posts_reminder_due_idx
    ON social_posts (publish_type, status, scheduled_at) WHERE reminder_sent_at IS NULL;
"""

DEFAULT_JOB_TABLES: tuple[str, ...] = ("separation_jobs", "download_jobs")


class PostgresSchemaManager:
    """Create the job, track and reminder tables used by the orchestrator."""

    def __init__(self, dsn: str, *, job_tables: list[str] | tuple[str, ...] | None = None) -> None:
        if not dsn.strip():
            raise ValueError("POSTGRES_DSN must not be empty")
        self._dsn = dsn.strip()
        tables = list(DEFAULT_JOB_TABLES if job_tables is None else job_tables)
        if not tables:
            raise ValueError("job_tables must not be empty")
        self._job_tables = [validate_identifier(name) for name in tables]

    def statements(self) -> list[str]:
        out = [TRACKS_DDL, REMINDERS_DDL]
        out.extend(JOB_TABLE_DDL.format(table=table) for table in self._job_tables)
        return out

    def apply(self) -> list[str]:
        psycopg = _import_psycopg()
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                for statement in self.statements():
                    cur.execute(statement)
            conn.commit()
        return ["music_tracks", "projects", "social_posts", *self._job_tables]
