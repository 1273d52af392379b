from __future__ import annotations

import threading
from datetime import UTC, datetime, timedelta

import pytest

from mediajobs.admission import AdmissionController
from mediajobs.models import PENDING, PROCESSING, JobRecord
from mediajobs.repositories.jobs import InMemoryJobsRepository

T0 = datetime(2026, 1, 5, 12, 0, tzinfo=UTC)


def _repo_with_jobs(count: int) -> InMemoryJobsRepository:
    repo = InMemoryJobsRepository(lane="separation")
    for i in range(count):
        repo.create(
            job=JobRecord(
                id=f"job_{i}",
                lane="separation",
                resource_id=f"track_{i}",
                created_at=T0 + timedelta(seconds=i),
            )
        )
    return repo


def _finish(repo: InMemoryJobsRepository, job_id: str) -> None:
    repo.record_submission(job_id=job_id, external_ref=f"ext_{job_id}", external_status=None, progress=0, metadata={})
    repo.mark_completed(
        job_id=job_id,
        external_ref=f"ext_{job_id}",
        artifact_ref="object://local/b/k",
        external_status="done",
        completed_at=T0,
    )


def test_admit_next_returns_none_for_empty_lane():
    controller = AdmissionController(jobs_repo=InMemoryJobsRepository(lane="separation"), lane="separation")

    assert controller.admit_next() is None


def test_admit_next_claims_oldest_pending_job():
    repo = _repo_with_jobs(3)
    controller = AdmissionController(jobs_repo=repo, lane="separation", clock=lambda: T0)

    admitted = controller.admit_next()

    assert admitted.claimed is True
    assert admitted.job.id == "job_0"
    assert admitted.job.status == PROCESSING
    assert admitted.job.started_at == T0


def test_full_lane_reports_processing_job_without_claiming():
    repo = _repo_with_jobs(2)
    controller = AdmissionController(jobs_repo=repo, lane="separation")
    controller.admit_next()

    admitted = controller.admit_next()

    assert admitted.claimed is False
    assert admitted.job.id == "job_0"
    assert repo.get(job_id="job_1").status == PENDING


def test_jobs_are_admitted_in_creation_order():
    repo = _repo_with_jobs(4)
    controller = AdmissionController(jobs_repo=repo, lane="separation")

    order = []
    for _ in range(5):
        admitted = controller.admit_next()
        if admitted is None:
            break
        order.append(admitted.job.id)
        _finish(repo, admitted.job.id)

    assert order == ["job_0", "job_1", "job_2", "job_3"]


def test_lost_claim_returns_none():
    class RacingRepo:
        def list_processing(self):
            return []

        def oldest_pending(self):
            return JobRecord(id="job_0", lane="separation", resource_id="42")

        def claim(self, *, job_id, cap, started_at):
            return None

    controller = AdmissionController(jobs_repo=RacingRepo(), lane="separation")

    assert controller.admit_next() is None


def test_cap_must_be_positive():
    with pytest.raises(ValueError, match="cap must be >= 1"):
        AdmissionController(jobs_repo=InMemoryJobsRepository(lane="separation"), lane="separation", cap=0)


@pytest.mark.parametrize("cap", [1, 2])
def test_concurrent_admissions_never_exceed_cap(cap: int):
    repo = _repo_with_jobs(6)
    controller = AdmissionController(jobs_repo=repo, lane="separation", cap=cap)
    barrier = threading.Barrier(8)
    results = []
    lock = threading.Lock()

    def _worker():
        barrier.wait()
        admitted = controller.admit_next()
        with lock:
            results.append(admitted)

    threads = [threading.Thread(target=_worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    claimed = [item.job.id for item in results if item is not None and item.claimed]
    assert 1 <= len(claimed) <= cap
    assert len(repo.list_processing()) == len(claimed)
    assert set(claimed) <= {f"job_{i}" for i in range(cap)}


def test_single_pending_job_is_claimed_once_under_overlapping_ticks():
    repo = _repo_with_jobs(1)
    controllers = [AdmissionController(jobs_repo=repo, lane="separation") for _ in range(2)]
    barrier = threading.Barrier(2)
    results = []

    def _worker(controller):
        barrier.wait()
        results.append(controller.admit_next())

    threads = [threading.Thread(target=_worker, args=(c,)) for c in controllers]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sum(1 for item in results if item is not None and item.claimed) == 1
    assert repo.get(job_id="job_0").status == PROCESSING
