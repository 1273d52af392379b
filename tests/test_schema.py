from __future__ import annotations

import pytest

from mediajobs.db.schema import PostgresSchemaManager


def test_schema_creates_one_job_table_per_lane_with_active_uniqueness():
    statements = PostgresSchemaManager("postgresql://localhost/mediajobs").statements()
    joined = "\n".join(statements)

    assert "CREATE TABLE IF NOT EXISTS music_tracks" in joined
    assert "CREATE TABLE IF NOT EXISTS social_posts" in joined
    for table in ("separation_jobs", "download_jobs"):
        assert f"CREATE TABLE IF NOT EXISTS {table}" in joined
        assert f"{table}_active_resource_uidx" in joined
    assert "WHERE status IN ('pending', 'processing')" in joined
    assert "DEFAULT '{}'::jsonb" in joined


def test_schema_rejects_bad_input():
    with pytest.raises(ValueError, match="POSTGRES_DSN"):
        PostgresSchemaManager(" ")
    with pytest.raises(ValueError, match="invalid SQL identifier"):
        PostgresSchemaManager("postgresql://localhost/db", job_tables=["ok", "bad-name"])
    with pytest.raises(ValueError, match="job_tables"):
        PostgresSchemaManager("postgresql://localhost/db", job_tables=[])
