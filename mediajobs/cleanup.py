from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from mediajobs.models import LANE_DOWNLOAD, LANE_SEPARATION, utcnow

logger = logging.getLogger(__name__)

# Column on the resource table that a lane's job.resource_id refers to.
RESOURCE_LOOKUP: dict[str, tuple[str, str]] = {
    LANE_SEPARATION: ("music_tracks", "id"),
    LANE_DOWNLOAD: ("music_tracks", "download_key"),
}


@dataclass
class CleanupStats:
    deleted: int = 0
    by_lane: dict[str, int] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {"deleted": self.deleted, "by_lane": dict(self.by_lane)}


class CleanupSweeper:
    """Deletes failed jobs older than the retention window whose resource never materialized."""

    def __init__(
        self,
        *,
        jobs_repos: dict[str, Any],
        retention_hours: int = 24,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        unknown = set(jobs_repos) - set(RESOURCE_LOOKUP)
        if unknown:
            raise ValueError(f"no resource lookup for lanes: {sorted(unknown)}")
        self.jobs_repos = dict(jobs_repos)
        self.retention = timedelta(hours=int(retention_hours))
        self._clock = clock

    def sweep(self, now: datetime | None = None) -> CleanupStats:
        cutoff = (now or self._clock()) - self.retention
        stats = CleanupStats()
        for lane, repo in self.jobs_repos.items():
            table, column = RESOURCE_LOOKUP[lane]
            deleted = int(repo.delete_abandoned_failed(cutoff=cutoff, resource_table=table, resource_column=column))
            stats.by_lane[lane] = deleted
            stats.deleted += deleted
            if deleted:
                logger.info("swept abandoned failed jobs lane=%s deleted=%s cutoff=%s", lane, deleted, cutoff.isoformat())
        return stats
