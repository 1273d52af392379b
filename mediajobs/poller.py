from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from mediajobs.adapters.base import ExternalServiceAdapter
from mediajobs.admission import AdmissionController
from mediajobs.errors import FinalizeError, PermanentAdapterError, TransientAdapterError
from mediajobs.finalizers import Finalizer
from mediajobs.models import (
    ERROR_FINALIZE_FAILED,
    ERROR_REMOTE_FAILED,
    ERROR_SUBMISSION_REJECTED,
    ERROR_SUBMIT_ATTEMPTS_EXHAUSTED,
    NOT_FOUND_POLLS_KEY,
    PROCESSING,
    STATE_COMPLETED,
    STATE_FAILED,
    STATE_IN_PROGRESS,
    STATE_NOT_FOUND,
    SUBMIT_ATTEMPTS_KEY,
    JobRecord,
    StatusResult,
    utcnow,
)

logger = logging.getLogger(__name__)

IDLE_MESSAGE = "no jobs to process"

MAX_SUBMIT_ATTEMPTS = 3
NOT_FOUND_MAX_POLLS = 3
NOT_FOUND_MAX_AGE = timedelta(hours=1)


@dataclass
class JobOutcome:
    job_id: str
    resource_id: str
    action: str
    status: str
    progress: int
    error_code: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "resource_id": self.resource_id,
            "action": self.action,
            "status": self.status,
            "progress": self.progress,
            "error_code": self.error_code,
        }


@dataclass
class TickResult:
    lane: str
    outcomes: list[JobOutcome] = field(default_factory=list)

    @property
    def idle(self) -> bool:
        return not self.outcomes

    def as_dict(self) -> dict[str, Any]:
        if not self.outcomes:
            return {"lane": self.lane, "message": IDLE_MESSAGE}
        out: dict[str, Any] = {"lane": self.lane}
        out.update(self.outcomes[0].as_dict())
        out["jobs"] = [item.as_dict() for item in self.outcomes]
        return out


class LanePoller:
    """One admission-or-progress cycle for a lane per call to ``tick``.

    Every write is a conditional update on the job row, so overlapping ticks
    and ticks racing a manual reprocess resolve to at most one winner.
    Nothing an adapter raises escapes ``tick``.
    """

    def __init__(
        self,
        *,
        lane: str,
        jobs_repo: Any,
        adapter: ExternalServiceAdapter,
        finalizer: Finalizer,
        admission: AdmissionController,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.lane = lane
        self.jobs_repo = jobs_repo
        self.adapter = adapter
        self.finalizer = finalizer
        self.admission = admission
        self._clock = clock

    def tick(self) -> TickResult:
        admitted = self.admission.admit_next()
        if admitted is not None and admitted.claimed:
            return TickResult(lane=self.lane, outcomes=[self._submit(admitted.job)])

        processing = self.jobs_repo.list_processing()
        return TickResult(lane=self.lane, outcomes=[self._poll(job) for job in processing])

    def _outcome(self, job: JobRecord, action: str) -> JobOutcome:
        current = self.jobs_repo.get(job_id=job.id) or job
        return JobOutcome(
            job_id=current.id,
            resource_id=current.resource_id,
            action=action,
            status=current.status,
            progress=current.progress,
            error_code=current.error_code,
        )

    def _release(self, job: JobRecord, *, error: str) -> JobOutcome:
        attempts = int(job.payload.get(SUBMIT_ATTEMPTS_KEY) or 0) + 1
        if attempts >= MAX_SUBMIT_ATTEMPTS:
            return self._reject(
                job,
                error=f"submission failed after {attempts} attempts: {error}",
                error_code=ERROR_SUBMIT_ATTEMPTS_EXHAUSTED,
            )
        if self.jobs_repo.release_claim(job_id=job.id, metadata={SUBMIT_ATTEMPTS_KEY: attempts}):
            logger.info("released claim lane=%s job_id=%s attempts=%d", self.lane, job.id, attempts)
            return self._outcome(job, "released")
        logger.warning("release lost race lane=%s job_id=%s", self.lane, job.id)
        return self._outcome(job, "stale")

    def _reject(self, job: JobRecord, *, error: str, error_code: str) -> JobOutcome:
        failed = self.jobs_repo.mark_failed(
            job_id=job.id,
            expected_status=PROCESSING,
            external_ref=None,
            error=error,
            error_code=error_code,
            external_status=None,
            completed_at=self._clock(),
        )
        if not failed:
            logger.warning("submit rejection lost race lane=%s job_id=%s", self.lane, job.id)
            return self._outcome(job, "stale")
        logger.info("submission rejected lane=%s job_id=%s code=%s", self.lane, job.id, error_code)
        return self._outcome(job, "submission_failed")

    def _submit(self, job: JobRecord) -> JobOutcome:
        try:
            result = self.adapter.submit(job)
        except TransientAdapterError as exc:
            logger.warning("submit transient failure lane=%s job_id=%s code=%s: %s", self.lane, job.id, exc.code, exc)
            return self._release(job, error=exc.message)
        except PermanentAdapterError as exc:
            return self._reject(job, error=exc.message, error_code=ERROR_SUBMISSION_REJECTED)
        except Exception as exc:
            logger.exception("unexpected submit failure lane=%s job_id=%s", self.lane, job.id)
            return self._release(job, error=f"unexpected submit failure: {exc}")

        recorded = self.jobs_repo.record_submission(
            job_id=job.id,
            external_ref=result.external_ref,
            external_status=result.remote_status,
            progress=result.progress,
            metadata=result.metadata,
        )
        if not recorded:
            logger.warning(
                "submission record lost race lane=%s job_id=%s external_ref=%s",
                self.lane,
                job.id,
                result.external_ref,
            )
            return self._outcome(job, "stale")
        logger.info("submitted lane=%s job_id=%s external_ref=%s", self.lane, job.id, result.external_ref)
        return self._outcome(job, "submitted")

    def _poll(self, job: JobRecord) -> JobOutcome:
        if not job.external_ref:
            logger.warning("processing job has no external_ref, awaiting reprocess lane=%s job_id=%s", self.lane, job.id)
            return self._outcome(job, "awaiting_reprocess")

        try:
            status = self.adapter.check_status(job.external_ref)
        except TransientAdapterError as exc:
            logger.warning("status check transient failure lane=%s job_id=%s: %s", self.lane, job.id, exc)
            return self._outcome(job, "unchanged")
        except PermanentAdapterError as exc:
            # Request errors never end a submitted job.
            logger.warning(
                "status check rejected lane=%s job_id=%s code=%s: %s", self.lane, job.id, exc.code, exc
            )
            return self._outcome(job, "unchanged")
        except Exception:
            logger.exception("unexpected status check failure lane=%s job_id=%s", self.lane, job.id)
            return self._outcome(job, "unchanged")

        if status.state == STATE_IN_PROGRESS:
            return self._progress(job, status)
        if status.state == STATE_NOT_FOUND:
            return self._not_found(job, status)
        if status.state == STATE_FAILED:
            return self._fail(
                job,
                error=status.error or "remote job failed",
                error_code=ERROR_REMOTE_FAILED,
                external_status=status.remote_status,
            )
        if status.state == STATE_COMPLETED:
            return self._complete(job, status)
        logger.warning("unknown remote state lane=%s job_id=%s state=%s", self.lane, job.id, status.state)
        return self._outcome(job, "unchanged")

    def _progress(self, job: JobRecord, status: StatusResult) -> JobOutcome:
        updated = self.jobs_repo.record_progress(
            job_id=job.id,
            external_ref=job.external_ref,
            progress=status.progress,
            external_status=status.remote_status,
        )
        if not updated:
            logger.warning("progress update lost race lane=%s job_id=%s", self.lane, job.id)
            return self._outcome(job, "stale")
        return self._outcome(job, "progress")

    def _not_found(self, job: JobRecord, status: StatusResult) -> JobOutcome:
        """Expire a job the remote no longer knows once it is old or repeatedly missing."""
        misses = int(job.payload.get(NOT_FOUND_POLLS_KEY) or 0)
        started = job.started_at or job.created_at
        age = self._clock() - started if started is not None else timedelta(0)
        if age > NOT_FOUND_MAX_AGE or misses >= NOT_FOUND_MAX_POLLS:
            return self._fail(
                job,
                error=status.error or "remote job expired or not found",
                error_code=ERROR_REMOTE_FAILED,
                external_status=status.remote_status,
            )

        if not self.jobs_repo.merge_payload(
            job_id=job.id, external_ref=job.external_ref, metadata={NOT_FOUND_POLLS_KEY: misses + 1}
        ):
            logger.warning("not-found count lost race lane=%s job_id=%s", self.lane, job.id)
            return self._outcome(job, "stale")
        logger.warning(
            "remote job not found lane=%s job_id=%s misses=%d age_s=%d",
            self.lane,
            job.id,
            misses + 1,
            age.total_seconds(),
        )
        return self._outcome(job, "unchanged")

    def _fail(self, job: JobRecord, *, error: str, error_code: str, external_status: str | None) -> JobOutcome:
        failed = self.jobs_repo.mark_failed(
            job_id=job.id,
            expected_status=PROCESSING,
            external_ref=job.external_ref,
            error=error,
            error_code=error_code,
            external_status=external_status,
            completed_at=self._clock(),
        )
        if not failed:
            logger.warning("failure write lost race lane=%s job_id=%s", self.lane, job.id)
            return self._outcome(job, "stale")
        logger.info("job failed lane=%s job_id=%s code=%s: %s", self.lane, job.id, error_code, error)
        return self._outcome(job, "failed")

    def _complete(self, job: JobRecord, status: StatusResult) -> JobOutcome:
        try:
            artifact_ref = self.finalizer.finalize(job=job, status=status, adapter=self.adapter)
        except FinalizeError as exc:
            logger.exception("finalize failed lane=%s job_id=%s", self.lane, job.id)
            return self._fail(
                job,
                error=f"finalize failed: {exc}",
                error_code=ERROR_FINALIZE_FAILED,
                external_status=status.remote_status,
            )

        completed = self.jobs_repo.mark_completed(
            job_id=job.id,
            external_ref=job.external_ref,
            artifact_ref=artifact_ref,
            external_status=status.remote_status,
            completed_at=self._clock(),
        )
        if not completed:
            logger.warning("completion write lost race lane=%s job_id=%s", self.lane, job.id)
            return self._outcome(job, "stale")
        logger.info("job completed lane=%s job_id=%s artifact_ref=%s", self.lane, job.id, artifact_ref)
        return self._outcome(job, "completed")
