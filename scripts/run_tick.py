#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from mediajobs.models import LANES
from mediajobs.orchestrator import create_orchestrator_from_env
from mediajobs.settings import Settings


def main() -> int:
    parser = argparse.ArgumentParser(description="Run one poller tick for media job lanes.")
    parser.add_argument(
        "--lane",
        choices=[*LANES, "all"],
        default="all",
        help="lane to tick (default: every lane)",
    )
    parser.add_argument("--cleanup", action="store_true", help="also sweep abandoned failed jobs")
    args = parser.parse_args()

    logging.basicConfig(
        level=Settings.from_env().log_level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    orchestrator = create_orchestrator_from_env()
    lanes = list(LANES) if args.lane == "all" else [args.lane]
    report: dict[str, object] = {
        "success": True,
        "ticks": {lane: orchestrator.tick(lane).as_dict() for lane in lanes},
    }
    if args.cleanup:
        report["cleanup"] = orchestrator.cleanup().as_dict()
    print(json.dumps(report, ensure_ascii=True, sort_keys=True))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
