from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import datetime
from typing import Any

from mediajobs.adapters.download import download_key_for, extract_youtube_id
from mediajobs.credits import AllowAllCreditGate, CreditGate
from mediajobs.errors import ActiveJobExists, ApiError, conflict, not_found
from mediajobs.models import (
    COMPLETED,
    FAILED,
    LANE_DOWNLOAD,
    LANE_SEPARATION,
    PENDING,
    JobRecord,
    utcnow,
)

logger = logging.getLogger(__name__)


def _new_job_id() -> str:
    return f"job_{uuid.uuid4().hex}"


def _already_active(resource_id: str) -> ApiError:
    return conflict("JOB_ALREADY_ACTIVE", f"a job is already active for {resource_id}")


class JobService:
    """User-facing job operations: create, read and manual reprocess."""

    def __init__(
        self,
        *,
        jobs_repos: dict[str, Any],
        tracks_repo: Any,
        credit_gate: CreditGate | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.jobs_repos = dict(jobs_repos)
        self.tracks_repo = tracks_repo
        self.credit_gate = credit_gate or AllowAllCreditGate()
        self._clock = clock

    def _repo(self, lane: str) -> Any:
        repo = self.jobs_repos.get(lane)
        if repo is None:
            raise not_found("LANE_NOT_FOUND", f"unknown lane: {lane}")
        return repo

    def _insert(self, *, lane: str, resource_id: str, payload: dict[str, Any], created_by: str | None) -> JobRecord:
        repo = self._repo(lane)
        if repo.find_active_for_resource(resource_id=resource_id) is not None:
            raise _already_active(resource_id)
        job = JobRecord(
            id=_new_job_id(),
            lane=lane,
            resource_id=resource_id,
            status=PENDING,
            progress=0,
            payload=payload,
            created_by=created_by,
            created_at=self._clock(),
        )
        try:
            created = repo.create(job=job)
        except ActiveJobExists as exc:
            raise _already_active(resource_id) from exc
        logger.info("job created lane=%s job_id=%s resource_id=%s", lane, created.id, resource_id)
        return created

    def create_separation_job(
        self,
        *,
        track_id: str,
        created_by: str | None = None,
        check_credits: bool = True,
    ) -> JobRecord:
        track = self.tracks_repo.get(track_id=track_id)
        if track is None:
            raise not_found("TRACK_NOT_FOUND", "track not found")
        if check_credits:
            self.credit_gate.ensure(user_id=created_by, lane=LANE_SEPARATION)

        source_url = track.get("source_url")
        if source_url:
            remote_type = track.get("source_type") or "url"
        else:
            source_url = track.get("blob_url")
            remote_type = "url"
        if not source_url:
            raise ApiError(
                code="TRACK_SOURCE_MISSING",
                message="track has no audio source",
                error_class="validation",
                retryable=False,
                http_status=400,
            )
        return self._insert(
            lane=LANE_SEPARATION,
            resource_id=track_id,
            payload={"source_url": source_url, "remote_type": remote_type},
            created_by=created_by,
        )

    def create_download_job(
        self,
        *,
        source_url: str,
        name: str | None = None,
        artist: str | None = None,
        genre: str | None = None,
        mood: str | None = None,
        project_id: str | None = None,
        created_by: str | None = None,
    ) -> JobRecord:
        video_id = extract_youtube_id(source_url)
        if not video_id:
            raise ApiError(
                code="SOURCE_URL_INVALID",
                message="could not extract a YouTube video id from url",
                error_class="validation",
                retryable=False,
                http_status=400,
            )
        self.credit_gate.ensure(user_id=created_by, lane=LANE_DOWNLOAD)
        payload = {
            "source_url": source_url,
            "video_id": video_id,
            "name": name,
            "artist": artist,
            "genre": genre,
            "mood": mood,
            "project_id": project_id,
        }
        return self._insert(
            lane=LANE_DOWNLOAD,
            resource_id=download_key_for(video_id),
            payload={k: v for k, v in payload.items() if v is not None},
            created_by=created_by,
        )

    def enqueue_separation_for_track(self, track: dict[str, Any], job: JobRecord) -> JobRecord:
        """Follow-up after a download lands; the download was already paid for."""
        return self.create_separation_job(track_id=str(track["id"]), created_by=job.created_by, check_credits=False)

    def get_job(self, *, lane: str, job_id: str) -> JobRecord:
        job = self._repo(lane).get(job_id=job_id)
        if job is None:
            raise not_found("JOB_NOT_FOUND", "job not found")
        return job

    def reprocess(self, *, lane: str, job_id: str) -> JobRecord:
        repo = self._repo(lane)
        job = self.get_job(lane=lane, job_id=job_id)
        if job.status == COMPLETED:
            raise conflict("JOB_STATUS_CONFLICT", "completed jobs cannot be reprocessed")
        if job.status == PENDING:
            return job
        if job.status == FAILED:
            active = repo.find_active_for_resource(resource_id=job.resource_id)
            if active is not None and active.id != job.id:
                raise _already_active(job.resource_id)

        try:
            reset = repo.reset_to_pending(job_id=job.id, expected_status=job.status)
        except ActiveJobExists as exc:
            raise _already_active(job.resource_id) from exc
        if reset is None:
            raise conflict("JOB_STATUS_CONFLICT", "job status changed concurrently, retry")
        logger.info("job reset to pending lane=%s job_id=%s from=%s", lane, job.id, job.status)
        return reset
