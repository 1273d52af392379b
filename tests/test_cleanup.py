from __future__ import annotations

from datetime import timedelta

import pytest

from mediajobs.cleanup import CleanupSweeper
from mediajobs.errors import PermanentAdapterError
from mediajobs.models import COMPLETED, FAILED, JobRecord, SubmitResult
from mediajobs.repositories import InMemoryJobsRepository, InMemoryTracksRepository


def test_abandoned_failed_job_is_deleted_after_retention(clock):
    tracks: dict[str, dict] = {}
    tracks_repo = InMemoryTracksRepository(tracks)
    tracks_repo.add(track={"id": "42", "name": "short lived"})
    repo = InMemoryJobsRepository(lane="separation", resources=tracks_repo)
    repo.create(
        job=JobRecord(id="job_1", lane="separation", resource_id="42", status=FAILED, created_at=clock.now)
    )
    sweeper = CleanupSweeper(jobs_repos={"separation": repo}, retention_hours=24, clock=clock)
    del tracks["42"]

    early = sweeper.sweep(now=clock.now + timedelta(hours=23))
    assert early.deleted == 0
    assert repo.get(job_id="job_1") is not None

    stats = sweeper.sweep(now=clock.now + timedelta(hours=25))

    assert stats.deleted == 1
    assert stats.by_lane == {"separation": 1}
    assert stats.as_dict() == {"deleted": 1, "by_lane": {"separation": 1}}
    assert repo.get(job_id="job_1") is None


def test_failed_job_with_existing_track_is_kept(orchestrator, separation_adapter, add_track, clock):
    add_track(orchestrator, "42")
    job = orchestrator.job_service.create_separation_job(track_id="42")
    separation_adapter.submit_results = [PermanentAdapterError("bad url")]
    orchestrator.tick("separation")

    stats = orchestrator.cleanup(now=clock.advance(hours=25))

    assert stats.deleted == 0
    assert orchestrator.jobs_repos["separation"].get(job_id=job.id).status == FAILED


def test_failed_download_without_track_is_deleted(orchestrator, download_adapter, clock):
    job = orchestrator.job_service.create_download_job(source_url="https://youtu.be/abc123")
    download_adapter.submit_results = [PermanentAdapterError("invalid video")]
    orchestrator.tick("download")

    stats = orchestrator.cleanup(now=clock.advance(hours=25))

    assert stats.by_lane["download"] == 1
    assert orchestrator.jobs_repos["download"].get(job_id=job.id) is None


def test_failed_download_whose_track_exists_is_kept(orchestrator, download_adapter, add_track, clock):
    job = orchestrator.job_service.create_download_job(source_url="https://youtu.be/abc123")
    download_adapter.submit_results = [PermanentAdapterError("invalid video")]
    orchestrator.tick("download")
    add_track(orchestrator, "trk_1", download_key="youtube:abc123")

    stats = orchestrator.cleanup(now=clock.advance(hours=25))

    assert stats.deleted == 0
    assert orchestrator.jobs_repos["download"].get(job_id=job.id) is not None


def test_completed_and_active_jobs_are_never_swept(orchestrator, download_adapter, clock):
    active = orchestrator.job_service.create_download_job(source_url="https://youtu.be/aaa111")
    download_adapter.submit_results = [SubmitResult(external_ref="dl1")]
    orchestrator.tick("download")
    repo = orchestrator.jobs_repos["download"]
    repo.create(
        job=JobRecord(
            id="job_done",
            lane="download",
            resource_id="youtube:bbb222",
            status=COMPLETED,
            created_at=clock.now,
        )
    )

    stats = orchestrator.cleanup(now=clock.advance(days=30))

    assert stats.deleted == 0
    assert repo.get(job_id=active.id) is not None
    assert repo.get(job_id="job_done") is not None


def test_sweeper_rejects_lane_without_resource_lookup():
    with pytest.raises(ValueError, match="no resource lookup"):
        CleanupSweeper(jobs_repos={"transcode": object()})
