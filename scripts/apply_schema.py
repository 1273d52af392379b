#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from mediajobs.db.schema import PostgresSchemaManager


def main() -> int:
    parser = argparse.ArgumentParser(description="Create media job, track and reminder tables in PostgreSQL")
    parser.add_argument("--dsn", default=os.getenv("POSTGRES_DSN", ""), help="PostgreSQL DSN")
    parser.add_argument(
        "--job-tables",
        default="",
        help="comma-separated job table names; default creates one table per lane",
    )
    args = parser.parse_args()

    dsn = str(args.dsn or "").strip()
    if not dsn:
        raise SystemExit("POSTGRES_DSN is required (pass --dsn or set env)")

    job_tables: list[str] | None = None
    if args.job_tables.strip():
        job_tables = [x.strip() for x in args.job_tables.split(",") if x.strip()]

    manager = PostgresSchemaManager(dsn, job_tables=job_tables)
    applied = manager.apply()
    print(json.dumps({"applied_tables": applied, "count": len(applied)}, ensure_ascii=True, sort_keys=True, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
