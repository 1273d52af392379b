from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from mediajobs.models import Admission, utcnow

logger = logging.getLogger(__name__)


class AdmissionController:
    """Moves the oldest pending job of one lane into processing when the lane has room.

    The cap is enforced by the repository's conditional claim, never by a
    flag held in this object, so overlapping ticks stay safe.
    """

    def __init__(
        self,
        *,
        jobs_repo: Any,
        lane: str,
        cap: int = 1,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if int(cap) < 1:
            raise ValueError("cap must be >= 1")
        self.jobs_repo = jobs_repo
        self.lane = lane
        self.cap = int(cap)
        self._clock = clock

    def admit_next(self) -> Admission | None:
        processing = self.jobs_repo.list_processing()
        if len(processing) >= self.cap:
            return Admission(job=processing[0], claimed=False)

        candidate = self.jobs_repo.oldest_pending()
        if candidate is None:
            return None

        claimed = self.jobs_repo.claim(job_id=candidate.id, cap=self.cap, started_at=self._clock())
        if claimed is None:
            logger.warning("admission lost claim lane=%s job_id=%s", self.lane, candidate.id)
            return None
        logger.info("admission claimed lane=%s job_id=%s resource_id=%s", self.lane, claimed.id, claimed.resource_id)
        return Admission(job=claimed, claimed=True)
