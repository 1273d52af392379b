"""MVSEP stem-separation adapter.

Submission posts to ``separation/create`` and returns a job hash; polling
reads ``separation/get``. API docs: https://mvsep.com/full_api
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass
from urllib.parse import urlparse

from mediajobs.adapters.base import ExternalServiceAdapter
from mediajobs.adapters.http import build_url, make_request
from mediajobs.errors import PermanentAdapterError
from mediajobs.models import (
    STATE_COMPLETED,
    STATE_FAILED,
    STATE_IN_PROGRESS,
    Artifact,
    JobRecord,
    StatusResult,
    SubmitResult,
)

logger = logging.getLogger(__name__)

MVSEP_API_URL = "https://mvsep.com/api"
DRUMSEP_SEPARATION_TYPE = 37

REMOTE_TYPES = frozenset({"youtube", "soundcloud", "url"})

_STATUS_PROGRESS = {
    "waiting": 30,
    "processing": 50,
}

_AUDIO_FILE = re.compile(r"\.(mp3|wav|ogg|m4a|flac)(\?|$)", re.IGNORECASE)


def detect_source_type(url: str) -> str | None:
    """Classify a user-supplied link into an MVSEP ``remote_type``."""
    try:
        hostname = (urlparse(url).hostname or "").lower()
    except ValueError:
        return None
    if "youtube.com" in hostname or "youtu.be" in hostname:
        return "youtube"
    if "soundcloud.com" in hostname:
        return "soundcloud"
    if hostname and _AUDIO_FILE.search(url):
        return "url"
    return None


@dataclass(frozen=True)
class MvsepConfig:
    api_key: str
    api_url: str = MVSEP_API_URL
    separation_type: int = DRUMSEP_SEPARATION_TYPE
    output_format: str = "mp3"
    timeout_s: float = 30.0

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "MvsepConfig":
        env = os.environ if environ is None else environ
        raw_type = env.get("MVSEP_SEPARATION_TYPE", "").strip()
        return cls(
            api_key=env.get("MVSEP_API_KEY", "").strip(),
            api_url=env.get("MVSEP_API_URL", "").strip() or MVSEP_API_URL,
            separation_type=int(raw_type) if raw_type else DRUMSEP_SEPARATION_TYPE,
            output_format=env.get("MVSEP_OUTPUT_FORMAT", "").strip() or "mp3",
        )


class MvsepSeparationAdapter(ExternalServiceAdapter):
    name = "mvsep"

    def __init__(self, *, config: MvsepConfig) -> None:
        self._config = config

    def submit(self, job: JobRecord) -> SubmitResult:
        if not self._config.api_key:
            raise PermanentAdapterError("MVSEP_API_KEY is not configured", code="ADAPTER_NOT_CONFIGURED")
        source_url = str(job.payload.get("source_url") or "").strip()
        if not source_url:
            raise PermanentAdapterError("separation job has no source url", code="SOURCE_URL_MISSING")
        remote_type = str(job.payload.get("remote_type") or "url")
        if remote_type not in REMOTE_TYPES:
            remote_type = "url"

        data = make_request(
            url=build_url(self._config.api_url, "separation/create"),
            method="POST",
            data={
                "api_token": self._config.api_key,
                "url": source_url,
                "separation_type": self._config.separation_type,
                "output_format": self._config.output_format,
                "remote_type": remote_type,
            },
            timeout=self._config.timeout_s,
            service="MVSEP",
        )
        if data.get("status") == "error":
            raise PermanentAdapterError(str(data.get("message") or "MVSEP API error"), code="REMOTE_REJECTED")
        job_hash = str(data.get("hash") or "").strip()
        if not job_hash:
            raise PermanentAdapterError("MVSEP did not return a job hash", code="REMOTE_SCHEMA_INVALID")

        logger.info("mvsep separation created job_id=%s hash=%s remote_type=%s", job.id, job_hash, remote_type)
        return SubmitResult(
            external_ref=job_hash,
            remote_status="waiting",
            progress=20,
            metadata={"remote_type": remote_type, "separation_type": self._config.separation_type},
        )

    def check_status(self, external_ref: str) -> StatusResult:
        data = make_request(
            url=build_url(
                self._config.api_url,
                "separation/get",
                {"api_token": self._config.api_key, "hash": external_ref},
            ),
            timeout=self._config.timeout_s,
            service="MVSEP",
        )
        status = str(data.get("status") or "").strip().lower()

        if status == "done":
            results = data.get("results") or []
            artifacts = [
                Artifact(name=str(item.get("name") or ""), url=str(item["url"]))
                for item in results
                if isinstance(item, dict) and item.get("url")
            ]
            if not artifacts:
                return StatusResult(state=STATE_FAILED, remote_status=status, error="no stems found in result")
            return StatusResult(state=STATE_COMPLETED, progress=100, remote_status=status, artifacts=artifacts)

        if status == "failed":
            message = str(data.get("message") or "MVSEP processing failed")
            return StatusResult(state=STATE_FAILED, remote_status=status, error=message)

        return StatusResult(
            state=STATE_IN_PROGRESS,
            progress=_STATUS_PROGRESS.get(status, 0),
            remote_status=status or None,
        )


def select_percussion_stem(artifacts: list[Artifact]) -> Artifact:
    """First drum or percussion stem, else the first stem returned."""
    if not artifacts:
        raise ValueError("no stems to select from")
    for artifact in artifacts:
        lowered = artifact.name.lower()
        if "drum" in lowered or "percussion" in lowered:
            return artifact
    logger.warning("no drum-specific stem found, using first available name=%s", artifacts[0].name)
    return artifacts[0]
