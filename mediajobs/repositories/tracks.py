from __future__ import annotations

import threading
from datetime import datetime
from typing import Any

from mediajobs.db.postgres import PostgresTxRunner, validate_identifier

TRACK_FIELDS = (
    "id",
    "name",
    "artist",
    "genre",
    "mood",
    "project_id",
    "source_url",
    "source_type",
    "blob_url",
    "blob_size",
    "duration_s",
    "thumbnail_url",
    "percussion_url",
    "percussion_size",
    "has_percussion_stem",
    "stems_processed_at",
    "download_key",
    "created_by",
    "created_at",
)

_LOOKUP_COLUMNS = frozenset({"id", "download_key"})


def _normalize_track(track: dict[str, Any]) -> dict[str, Any]:
    row = {name: track.get(name) for name in TRACK_FIELDS}
    row["has_percussion_stem"] = bool(row.get("has_percussion_stem") or False)
    return row


class InMemoryTracksRepository:
    table_name = "music_tracks"

    def __init__(self, tracks: dict[str, dict[str, Any]] | None = None) -> None:
        self._tracks = {} if tracks is None else tracks
        self._lock = threading.RLock()

    def add(self, *, track: dict[str, Any]) -> dict[str, Any]:
        row = _normalize_track(track)
        with self._lock:
            self._tracks[row["id"]] = row
        return dict(row)

    def get(self, *, track_id: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._tracks.get(track_id)
            return dict(row) if row is not None else None

    def get_by_download_key(self, *, download_key: str) -> dict[str, Any] | None:
        with self._lock:
            for row in self._tracks.values():
                if row.get("download_key") == download_key:
                    return dict(row)
        return None

    def exists(self, *, table: str, column: str, value: str) -> bool:
        if table != self.table_name or column not in _LOOKUP_COLUMNS:
            return False
        with self._lock:
            return any(row.get(column) == value for row in self._tracks.values())

    def attach_percussion_stem(
        self,
        *,
        track_id: str,
        percussion_url: str,
        percussion_size: int,
        processed_at: datetime,
    ) -> bool:
        with self._lock:
            row = self._tracks.get(track_id)
            if row is None:
                return False
            row["percussion_url"] = percussion_url
            row["percussion_size"] = int(percussion_size)
            row["has_percussion_stem"] = True
            row["stems_processed_at"] = processed_at
            return True

    def create_from_download(self, *, track: dict[str, Any]) -> dict[str, Any]:
        """Insert once per download_key; a repeated finalize returns the first row."""
        with self._lock:
            key = track.get("download_key")
            for row in self._tracks.values():
                if key is not None and row.get("download_key") == key:
                    return dict(row)
            row = _normalize_track(track)
            self._tracks[row["id"]] = row
            return dict(row)


class PostgresTracksRepository:
    def __init__(self, *, tx_runner: PostgresTxRunner, table_name: str = "music_tracks") -> None:
        self._tx_runner = tx_runner
        self.table_name = validate_identifier(table_name)

    def _columns(self) -> str:
        return ", ".join(TRACK_FIELDS)

    def _row_to_track(self, row: Any) -> dict[str, Any]:
        return dict(zip(TRACK_FIELDS, row))

    def _fetch_one(self, sql: str, params: tuple) -> dict[str, Any] | None:
        def _op(conn: Any) -> dict[str, Any] | None:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                row = cur.fetchone()
            return self._row_to_track(row) if row is not None else None

        return self._tx_runner.run_in_tx(fn=_op)

    def add(self, *, track: dict[str, Any]) -> dict[str, Any]:
        row = _normalize_track(track)
        placeholders = ", ".join(["%s"] * len(TRACK_FIELDS))
        sql = f"""
            INSERT INTO {self.table_name} ({self._columns()})
            VALUES ({placeholders})
            RETURNING {self._columns()}
        """
        created = self._fetch_one(sql, tuple(row[name] for name in TRACK_FIELDS))
        return created if created is not None else row

    def get(self, *, track_id: str) -> dict[str, Any] | None:
        sql = f"SELECT {self._columns()} FROM {self.table_name} WHERE id = %s LIMIT 1"
        return self._fetch_one(sql, (track_id,))

    def get_by_download_key(self, *, download_key: str) -> dict[str, Any] | None:
        sql = f"SELECT {self._columns()} FROM {self.table_name} WHERE download_key = %s LIMIT 1"
        return self._fetch_one(sql, (download_key,))

    def exists(self, *, table: str, column: str, value: str) -> bool:
        table = validate_identifier(table)
        column = validate_identifier(column)
        sql = f"SELECT 1 FROM {table} WHERE {column} = %s LIMIT 1"

        def _op(conn: Any) -> bool:
            with conn.cursor() as cur:
                cur.execute(sql, (value,))
                return cur.fetchone() is not None

        return bool(self._tx_runner.run_in_tx(fn=_op))

    def attach_percussion_stem(
        self,
        *,
        track_id: str,
        percussion_url: str,
        percussion_size: int,
        processed_at: datetime,
    ) -> bool:
        sql = f"""
            UPDATE {self.table_name}
            SET percussion_url = %s,
                percussion_size = %s,
                has_percussion_stem = true,
                stems_processed_at = %s
            WHERE id = %s
        """

        def _op(conn: Any) -> bool:
            with conn.cursor() as cur:
                cur.execute(sql, (percussion_url, int(percussion_size), processed_at, track_id))
                return int(cur.rowcount or 0) == 1

        return bool(self._tx_runner.run_in_tx(fn=_op))

    def create_from_download(self, *, track: dict[str, Any]) -> dict[str, Any]:
        row = _normalize_track(track)
        placeholders = ", ".join(["%s"] * len(TRACK_FIELDS))
        insert_sql = f"""
            INSERT INTO {self.table_name} ({self._columns()})
            VALUES ({placeholders})
            ON CONFLICT (download_key) DO NOTHING
            RETURNING {self._columns()}
        """
        select_sql = f"SELECT {self._columns()} FROM {self.table_name} WHERE download_key = %s LIMIT 1"

        def _op(conn: Any) -> dict[str, Any]:
            with conn.cursor() as cur:
                cur.execute(insert_sql, tuple(row[name] for name in TRACK_FIELDS))
                created = cur.fetchone()
                if created is None:
                    cur.execute(select_sql, (row["download_key"],))
                    created = cur.fetchone()
            return self._row_to_track(created) if created is not None else row

        return self._tx_runner.run_in_tx(fn=_op)
