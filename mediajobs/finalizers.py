from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import datetime
from typing import Any

from mediajobs.adapters.base import ExternalServiceAdapter
from mediajobs.adapters.download import estimate_duration, parse_duration
from mediajobs.adapters.separation import select_percussion_stem
from mediajobs.errors import FinalizeError
from mediajobs.models import JobRecord, StatusResult, utcnow
from mediajobs.object_storage import ObjectStorageBackend

logger = logging.getLogger(__name__)

DEFAULT_TRACK_NAME = "YouTube track"
AUDIO_CONTENT_TYPE = "audio/mpeg"


class Finalizer:
    """Turns a completed remote job into stored artifacts and an updated resource.

    ``finalize`` returns the job's ``artifact_ref``. Any failure is raised as
    FinalizeError so the poller can record it against the job.
    """

    def __init__(
        self,
        *,
        tracks_repo: Any,
        storage: ObjectStorageBackend,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.tracks_repo = tracks_repo
        self.storage = storage
        self._clock = clock

    def finalize(self, *, job: JobRecord, status: StatusResult, adapter: ExternalServiceAdapter) -> str:
        try:
            return self._materialize(job=job, status=status, adapter=adapter)
        except FinalizeError:
            raise
        except Exception as exc:
            raise FinalizeError(str(exc) or exc.__class__.__name__) from exc

    def _materialize(self, *, job: JobRecord, status: StatusResult, adapter: ExternalServiceAdapter) -> str:
        raise NotImplementedError


class SeparationFinalizer(Finalizer):
    def _materialize(self, *, job: JobRecord, status: StatusResult, adapter: ExternalServiceAdapter) -> str:
        track_id = job.resource_id
        if self.tracks_repo.get(track_id=track_id) is None:
            raise FinalizeError(f"track not found: {track_id}")
        if not status.artifacts:
            raise FinalizeError("no stems found in result")

        stem = select_percussion_stem(status.artifacts)
        content = adapter.fetch_artifact(stem.url)
        storage_uri = self.storage.put_object(
            category="stems",
            object_id=track_id,
            filename=f"{track_id}_percussion.mp3",
            content_bytes=content,
            content_type=AUDIO_CONTENT_TYPE,
        )
        updated = self.tracks_repo.attach_percussion_stem(
            track_id=track_id,
            percussion_url=self.storage.public_url(storage_uri=storage_uri),
            percussion_size=len(content),
            processed_at=self._clock(),
        )
        if not updated:
            raise FinalizeError(f"track disappeared during finalize: {track_id}")
        logger.info("separation stem stored job_id=%s track_id=%s stem=%s", job.id, track_id, stem.name)
        return storage_uri


class DownloadFinalizer(Finalizer):
    def __init__(
        self,
        *,
        tracks_repo: Any,
        storage: ObjectStorageBackend,
        clock: Callable[[], datetime] = utcnow,
        on_track_created: Callable[[dict[str, Any], JobRecord], Any] | None = None,
    ) -> None:
        super().__init__(tracks_repo=tracks_repo, storage=storage, clock=clock)
        self.on_track_created = on_track_created

    def _materialize(self, *, job: JobRecord, status: StatusResult, adapter: ExternalServiceAdapter) -> str:
        download_key = job.resource_id
        existing = self.tracks_repo.get_by_download_key(download_key=download_key)
        if existing is not None:
            logger.info("download track already exists job_id=%s track_id=%s", job.id, existing["id"])
            return str(existing["id"])
        if not status.artifacts:
            raise FinalizeError("missing download url from provider response")

        content = adapter.fetch_artifact(status.artifacts[0].url)
        video_id = str(job.payload.get("video_id") or download_key.split(":", 1)[-1])
        storage_uri = self.storage.put_object(
            category="downloads",
            object_id=video_id,
            filename=f"{video_id}.mp3",
            content_bytes=content,
            content_type=AUDIO_CONTENT_TYPE,
        )

        payload = job.payload
        info = status.metadata
        duration = (
            parse_duration(payload.get("duration_s"))
            or parse_duration(info.get("duration_s"))
            or estimate_duration(len(content))
        )
        track = self.tracks_repo.create_from_download(
            track={
                "id": f"trk_{uuid.uuid4().hex[:12]}",
                "name": payload.get("name") or info.get("title") or payload.get("title") or DEFAULT_TRACK_NAME,
                "artist": payload.get("artist"),
                "genre": payload.get("genre"),
                "mood": payload.get("mood"),
                "project_id": payload.get("project_id"),
                "blob_url": self.storage.public_url(storage_uri=storage_uri),
                "blob_size": len(content),
                "duration_s": duration,
                "thumbnail_url": payload.get("thumbnail_url") or info.get("thumbnail_url"),
                "download_key": download_key,
                "created_by": job.created_by,
                "created_at": self._clock(),
            }
        )
        logger.info("download track created job_id=%s track_id=%s", job.id, track["id"])

        if self.on_track_created is not None:
            try:
                self.on_track_created(track, job)
            except Exception:
                logger.exception("follow-up after track creation failed job_id=%s track_id=%s", job.id, track["id"])
        return str(track["id"])
