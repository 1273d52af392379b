from __future__ import annotations

import json
import threading
from datetime import UTC, datetime
from typing import Any

from mediajobs.db.postgres import PostgresTxRunner, _import_psycopg, validate_identifier
from mediajobs.errors import ActiveJobExists
from mediajobs.models import (
    COMPLETED,
    FAILED,
    NON_TERMINAL_STATUSES,
    PENDING,
    PROCESSING,
    RUN_COUNTER_KEYS,
    JobRecord,
)

_JOB_COLUMNS = (
    "id, lane, resource_id, status, progress, external_ref, external_status, error, error_code, "
    "artifact_ref, payload, created_by, created_at, started_at, completed_at"
)


def _row_to_job(row: Any) -> JobRecord:
    payload = row[10]
    if isinstance(payload, str):
        payload = json.loads(payload)
    return JobRecord(
        id=row[0],
        lane=row[1],
        resource_id=row[2],
        status=row[3],
        progress=int(row[4]),
        external_ref=row[5],
        external_status=row[6],
        error=row[7],
        error_code=row[8],
        artifact_ref=row[9],
        payload=payload if isinstance(payload, dict) else {},
        created_by=row[11],
        created_at=row[12],
        started_at=row[13],
        completed_at=row[14],
    )


_EPOCH_MIN = datetime.min.replace(tzinfo=UTC)


def _fifo_key(job: JobRecord) -> tuple[datetime, str]:
    return (job.created_at or _EPOCH_MIN, job.id)


class InMemoryJobsRepository:
    """Lane job table held in a dict; every read-modify-write runs under one lock."""

    def __init__(
        self,
        jobs: dict[str, JobRecord] | None = None,
        *,
        lane: str,
        resources: Any = None,
    ) -> None:
        self.lane = lane
        self._jobs = {} if jobs is None else jobs
        self._resources = resources
        self._lock = threading.RLock()

    def create(self, *, job: JobRecord) -> JobRecord:
        with self._lock:
            if job.id in self._jobs:
                raise ValueError(f"job already exists: {job.id}")
            for row in self._jobs.values():
                if row.resource_id == job.resource_id and row.status in NON_TERMINAL_STATUSES:
                    raise ActiveJobExists(job.resource_id)
            self._jobs[job.id] = job.copy()
            return job.copy()

    def get(self, *, job_id: str) -> JobRecord | None:
        with self._lock:
            row = self._jobs.get(job_id)
            return row.copy() if row is not None else None

    def find_active_for_resource(self, *, resource_id: str) -> JobRecord | None:
        with self._lock:
            for row in sorted(self._jobs.values(), key=_fifo_key):
                if row.resource_id == resource_id and row.status in NON_TERMINAL_STATUSES:
                    return row.copy()
            return None

    def list_processing(self) -> list[JobRecord]:
        with self._lock:
            rows = [row for row in self._jobs.values() if row.status == PROCESSING]
            rows.sort(key=lambda r: (r.started_at or _EPOCH_MIN, *_fifo_key(r)))
            return [row.copy() for row in rows]

    def oldest_pending(self) -> JobRecord | None:
        with self._lock:
            pending = [row for row in self._jobs.values() if row.status == PENDING]
            if not pending:
                return None
            return min(pending, key=_fifo_key).copy()

    def claim(self, *, job_id: str, cap: int, started_at: datetime) -> JobRecord | None:
        with self._lock:
            row = self._jobs.get(job_id)
            if row is None or row.status != PENDING:
                return None
            in_flight = sum(1 for r in self._jobs.values() if r.status == PROCESSING)
            if in_flight >= cap:
                return None
            row.status = PROCESSING
            row.started_at = started_at
            return row.copy()

    def release_claim(self, *, job_id: str, metadata: dict[str, Any] | None = None) -> bool:
        with self._lock:
            row = self._jobs.get(job_id)
            if row is None or row.status != PROCESSING or row.external_ref is not None:
                return False
            row.status = PENDING
            row.started_at = None
            if metadata:
                row.payload = {**row.payload, **metadata}
            return True

    def record_submission(
        self,
        *,
        job_id: str,
        external_ref: str,
        external_status: str | None,
        progress: int,
        metadata: dict[str, Any],
    ) -> bool:
        with self._lock:
            row = self._jobs.get(job_id)
            if row is None or row.status != PROCESSING or row.external_ref is not None:
                return False
            row.external_ref = external_ref
            row.external_status = external_status
            row.progress = max(row.progress, progress)
            row.payload = {**row.payload, **metadata}
            return True

    def merge_payload(self, *, job_id: str, external_ref: str, metadata: dict[str, Any]) -> bool:
        with self._lock:
            row = self._jobs.get(job_id)
            if row is None or row.status != PROCESSING or row.external_ref != external_ref:
                return False
            row.payload = {**row.payload, **metadata}
            return True

    def record_progress(
        self,
        *,
        job_id: str,
        external_ref: str,
        progress: int,
        external_status: str | None,
    ) -> bool:
        with self._lock:
            row = self._jobs.get(job_id)
            if row is None or row.status != PROCESSING or row.external_ref != external_ref:
                return False
            row.progress = max(row.progress, progress)
            if external_status is not None:
                row.external_status = external_status
            return True

    def mark_completed(
        self,
        *,
        job_id: str,
        external_ref: str,
        artifact_ref: str,
        external_status: str | None,
        completed_at: datetime,
    ) -> bool:
        with self._lock:
            row = self._jobs.get(job_id)
            if row is None or row.status != PROCESSING or row.external_ref != external_ref:
                return False
            row.status = COMPLETED
            row.progress = 100
            row.artifact_ref = artifact_ref
            if external_status is not None:
                row.external_status = external_status
            row.completed_at = completed_at
            return True

    def mark_failed(
        self,
        *,
        job_id: str,
        expected_status: str,
        external_ref: str | None,
        error: str,
        error_code: str,
        external_status: str | None,
        completed_at: datetime,
    ) -> bool:
        with self._lock:
            row = self._jobs.get(job_id)
            if row is None or row.status != expected_status or row.external_ref != external_ref:
                return False
            row.status = FAILED
            row.error = error
            row.error_code = error_code
            if external_status is not None:
                row.external_status = external_status
            row.completed_at = completed_at
            return True

    def reset_to_pending(self, *, job_id: str, expected_status: str) -> JobRecord | None:
        with self._lock:
            row = self._jobs.get(job_id)
            if row is None or row.status != expected_status:
                return None
            for other in self._jobs.values():
                if other.id != job_id and other.resource_id == row.resource_id and other.status in NON_TERMINAL_STATUSES:
                    raise ActiveJobExists(row.resource_id)
            row.status = PENDING
            row.progress = 0
            row.external_ref = None
            row.external_status = None
            row.error = None
            row.error_code = None
            row.artifact_ref = None
            row.started_at = None
            row.completed_at = None
            row.payload = {k: v for k, v in row.payload.items() if k not in RUN_COUNTER_KEYS}
            return row.copy()

    def delete_abandoned_failed(self, *, cutoff: datetime, resource_table: str, resource_column: str) -> int:
        with self._lock:
            doomed = [
                row.id
                for row in self._jobs.values()
                if row.status == FAILED
                and row.created_at is not None
                and row.created_at < cutoff
                and not self._resource_exists(resource_table, resource_column, row.resource_id)
            ]
            for job_id in doomed:
                del self._jobs[job_id]
            return len(doomed)

    def _resource_exists(self, table: str, column: str, value: str) -> bool:
        if self._resources is None:
            return False
        return bool(self._resources.exists(table=table, column=column, value=value))


class PostgresJobsRepository:
    """Lane job table in PostgreSQL; state changes are single conditional UPDATEs."""

    def __init__(self, *, tx_runner: PostgresTxRunner, lane: str, table_name: str | None = None) -> None:
        self._tx_runner = tx_runner
        self.lane = lane
        self._table_name = validate_identifier(table_name or f"{lane}_jobs")

    def _fetch_one(self, sql: str, params: tuple) -> JobRecord | None:
        def _op(conn: Any) -> JobRecord | None:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                row = cur.fetchone()
            return _row_to_job(row) if row is not None else None

        return self._tx_runner.run_in_tx(fn=_op)

    def _execute(self, sql: str, params: tuple) -> int:
        def _op(conn: Any) -> int:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                return int(cur.rowcount or 0)

        return self._tx_runner.run_in_tx(fn=_op)

    def create(self, *, job: JobRecord) -> JobRecord:
        sql = f"""
            INSERT INTO {self._table_name} (
                id, lane, resource_id, status, progress, payload, created_by, created_at
            ) VALUES (%s, %s, %s, %s, %s, %s::jsonb, %s, %s)
            RETURNING {_JOB_COLUMNS}
        """
        params = (
            job.id,
            job.lane,
            job.resource_id,
            job.status,
            int(job.progress),
            json.dumps(job.payload, ensure_ascii=True, sort_keys=True),
            job.created_by,
            job.created_at,
        )
        unique_violation = _import_psycopg().errors.UniqueViolation

        def _op(conn: Any) -> JobRecord | None:
            with conn.cursor() as cur:
                try:
                    cur.execute(sql, params)
                except unique_violation as exc:
                    raise ActiveJobExists(job.resource_id) from exc
                row = cur.fetchone()
            return _row_to_job(row) if row is not None else None

        created = self._tx_runner.run_in_tx(fn=_op)
        return created if created is not None else job.copy()

    def get(self, *, job_id: str) -> JobRecord | None:
        sql = f"SELECT {_JOB_COLUMNS} FROM {self._table_name} WHERE id = %s LIMIT 1"
        return self._fetch_one(sql, (job_id,))

    def find_active_for_resource(self, *, resource_id: str) -> JobRecord | None:
        sql = f"""
            SELECT {_JOB_COLUMNS} FROM {self._table_name}
            WHERE resource_id = %s AND status IN ('pending', 'processing')
            ORDER BY created_at, id
            LIMIT 1
        """
        return self._fetch_one(sql, (resource_id,))

    def list_processing(self) -> list[JobRecord]:
        sql = f"""
            SELECT {_JOB_COLUMNS} FROM {self._table_name}
            WHERE status = 'processing'
            ORDER BY started_at, created_at, id
        """

        def _op(conn: Any) -> list[JobRecord]:
            with conn.cursor() as cur:
                cur.execute(sql)
                rows = cur.fetchall()
            return [_row_to_job(row) for row in rows]

        return self._tx_runner.run_in_tx(fn=_op)

    def oldest_pending(self) -> JobRecord | None:
        sql = f"""
            SELECT {_JOB_COLUMNS} FROM {self._table_name}
            WHERE status = 'pending'
            ORDER BY created_at, id
            LIMIT 1
        """
        return self._fetch_one(sql, ())

    def claim(self, *, job_id: str, cap: int, started_at: datetime) -> JobRecord | None:
        # The advisory lock serializes concurrent claims on this lane so the
        # processing count below cannot be read stale by two transactions.
        lock_sql = "SELECT pg_advisory_xact_lock(hashtext(%s))"
        claim_sql = f"""
            UPDATE {self._table_name}
            SET status = 'processing', started_at = %s
            WHERE id = %s AND status = 'pending'
              AND (SELECT count(*) FROM {self._table_name} WHERE status = 'processing') < %s
            RETURNING {_JOB_COLUMNS}
        """

        def _op(conn: Any) -> JobRecord | None:
            with conn.cursor() as cur:
                cur.execute(lock_sql, (self._table_name,))
                cur.execute(claim_sql, (started_at, job_id, int(cap)))
                row = cur.fetchone()
            return _row_to_job(row) if row is not None else None

        return self._tx_runner.run_in_tx(fn=_op)

    def release_claim(self, *, job_id: str, metadata: dict[str, Any] | None = None) -> bool:
        sql = f"""
            UPDATE {self._table_name}
            SET status = 'pending', started_at = NULL, payload = payload || %s::jsonb
            WHERE id = %s AND status = 'processing' AND external_ref IS NULL
        """
        return self._execute(sql, (json.dumps(metadata or {}, ensure_ascii=True, sort_keys=True), job_id)) == 1

    def merge_payload(self, *, job_id: str, external_ref: str, metadata: dict[str, Any]) -> bool:
        sql = f"""
            UPDATE {self._table_name}
            SET payload = payload || %s::jsonb
            WHERE id = %s AND status = 'processing' AND external_ref = %s
        """
        params = (json.dumps(metadata, ensure_ascii=True, sort_keys=True), job_id, external_ref)
        return self._execute(sql, params) == 1

    def record_submission(
        self,
        *,
        job_id: str,
        external_ref: str,
        external_status: str | None,
        progress: int,
        metadata: dict[str, Any],
    ) -> bool:
        sql = f"""
            UPDATE {self._table_name}
            SET external_ref = %s,
                external_status = %s,
                progress = GREATEST(progress, %s),
                payload = payload || %s::jsonb
            WHERE id = %s AND status = 'processing' AND external_ref IS NULL
        """
        params = (
            external_ref,
            external_status,
            int(progress),
            json.dumps(metadata, ensure_ascii=True, sort_keys=True),
            job_id,
        )
        return self._execute(sql, params) == 1

    def record_progress(
        self,
        *,
        job_id: str,
        external_ref: str,
        progress: int,
        external_status: str | None,
    ) -> bool:
        sql = f"""
            UPDATE {self._table_name}
            SET progress = GREATEST(progress, %s),
                external_status = COALESCE(%s, external_status)
            WHERE id = %s AND status = 'processing' AND external_ref = %s
        """
        return self._execute(sql, (int(progress), external_status, job_id, external_ref)) == 1

    def mark_completed(
        self,
        *,
        job_id: str,
        external_ref: str,
        artifact_ref: str,
        external_status: str | None,
        completed_at: datetime,
    ) -> bool:
        sql = f"""
            UPDATE {self._table_name}
            SET status = 'completed',
                progress = 100,
                artifact_ref = %s,
                external_status = COALESCE(%s, external_status),
                completed_at = %s
            WHERE id = %s AND status = 'processing' AND external_ref = %s
        """
        return self._execute(sql, (artifact_ref, external_status, completed_at, job_id, external_ref)) == 1

    def mark_failed(
        self,
        *,
        job_id: str,
        expected_status: str,
        external_ref: str | None,
        error: str,
        error_code: str,
        external_status: str | None,
        completed_at: datetime,
    ) -> bool:
        sql = f"""
            UPDATE {self._table_name}
            SET status = 'failed',
                error = %s,
                error_code = %s,
                external_status = COALESCE(%s, external_status),
                completed_at = %s
            WHERE id = %s AND status = %s AND external_ref IS NOT DISTINCT FROM %s
        """
        params = (error, error_code, external_status, completed_at, job_id, expected_status, external_ref)
        return self._execute(sql, params) == 1

    def reset_to_pending(self, *, job_id: str, expected_status: str) -> JobRecord | None:
        sql = f"""
            UPDATE {self._table_name}
            SET status = 'pending',
                progress = 0,
                external_ref = NULL,
                external_status = NULL,
                error = NULL,
                error_code = NULL,
                artifact_ref = NULL,
                started_at = NULL,
                completed_at = NULL,
                payload = payload - %s::text[]
            WHERE id = %s AND status = %s
            RETURNING {_JOB_COLUMNS}
        """
        unique_violation = _import_psycopg().errors.UniqueViolation

        def _op(conn: Any) -> JobRecord | None:
            with conn.cursor() as cur:
                try:
                    cur.execute(sql, (list(RUN_COUNTER_KEYS), job_id, expected_status))
                except unique_violation as exc:
                    raise ActiveJobExists(f"job {job_id}") from exc
                row = cur.fetchone()
            return _row_to_job(row) if row is not None else None

        return self._tx_runner.run_in_tx(fn=_op)

    def delete_abandoned_failed(self, *, cutoff: datetime, resource_table: str, resource_column: str) -> int:
        table = validate_identifier(resource_table)
        column = validate_identifier(resource_column)
        sql = f"""
            DELETE FROM {self._table_name} AS j
            WHERE j.status = 'failed'
              AND j.created_at < %s
              AND NOT EXISTS (SELECT 1 FROM {table} AS r WHERE r.{column} = j.resource_id)
        """
        return self._execute(sql, (cutoff,))
