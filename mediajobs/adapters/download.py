from __future__ import annotations

import logging
import math
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from mediajobs.adapters.base import ExternalServiceAdapter
from mediajobs.adapters.http import build_url, make_request
from mediajobs.errors import PermanentAdapterError
from mediajobs.models import (
    STATE_COMPLETED,
    STATE_FAILED,
    STATE_IN_PROGRESS,
    STATE_NOT_FOUND,
    Artifact,
    JobRecord,
    StatusResult,
    SubmitResult,
)

logger = logging.getLogger(__name__)

VIDEO_DOWNLOAD_API_URL = "https://p.savenow.to/ajax"
DOWNLOAD_KEY_PREFIX = "youtube:"

_YOUTUBE_ID_PATTERNS = (
    re.compile(r"(?:youtube\.com/watch\?v=|youtu\.be/)([^&\n?#]+)"),
    re.compile(r"youtube\.com/embed/([^&\n?#]+)"),
    re.compile(r"youtube\.com/v/([^&\n?#]+)"),
)
_FAILURE_TEXT = re.compile(r"error|fail|no files", re.IGNORECASE)


def extract_youtube_id(url: str) -> str | None:
    for pattern in _YOUTUBE_ID_PATTERNS:
        match = pattern.search(url)
        if match and match.group(1):
            return match.group(1)
    return None


def download_key_for(video_id: str) -> str:
    return f"{DOWNLOAD_KEY_PREFIX}{video_id}"


def parse_duration(value: Any) -> int | None:
    """Seconds from ``213``, ``"213"`` or ``"3:33"``; None when unparseable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return None if math.isnan(value) else int(value)
    text = str(value).strip()
    if text.isdigit():
        return int(text)
    if ":" in text:
        total = 0
        for part in text.split(":"):
            if not part.strip().isdigit():
                return None
            total = total * 60 + int(part)
        return total
    return None


def estimate_duration(size_bytes: int, bitrate_kbps: int = 320) -> int:
    bytes_per_second = bitrate_kbps * 1000 / 8
    return max(1, round(size_bytes / bytes_per_second))


def scale_progress(raw: Any) -> int:
    """Map the provider's 0-1000 scale onto 10-90."""
    try:
        value = int(raw or 0)
    except (TypeError, ValueError):
        value = 0
    return max(10, min(math.floor(value / 1000 * 90), 90))


def _info_metadata(info: Any) -> dict[str, Any]:
    if not isinstance(info, dict):
        return {}
    out: dict[str, Any] = {}
    if info.get("title"):
        out["title"] = str(info["title"])
    if info.get("image"):
        out["thumbnail_url"] = str(info["image"])
    duration = parse_duration(info.get("duration"))
    if duration is not None:
        out["duration_s"] = duration
    return out


@dataclass(frozen=True)
class VideoDownloadConfig:
    api_key: str
    api_url: str = VIDEO_DOWNLOAD_API_URL
    audio_quality: str = "320"
    timeout_s: float = 30.0

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "VideoDownloadConfig":
        env = os.environ if environ is None else environ
        return cls(
            api_key=env.get("VIDEO_DOWNLOAD_API_KEY", "").strip(),
            api_url=env.get("VIDEO_DOWNLOAD_API_URL", "").strip() or VIDEO_DOWNLOAD_API_URL,
        )


class VideoDownloadAdapter(ExternalServiceAdapter):
    name = "video_download"

    def __init__(self, *, config: VideoDownloadConfig) -> None:
        self._config = config

    def submit(self, job: JobRecord) -> SubmitResult:
        if not self._config.api_key:
            raise PermanentAdapterError("VIDEO_DOWNLOAD_API_KEY is not configured", code="ADAPTER_NOT_CONFIGURED")
        source_url = str(job.payload.get("source_url") or "").strip()
        if not source_url:
            raise PermanentAdapterError("download job has no source url", code="SOURCE_URL_MISSING")

        data = make_request(
            url=build_url(
                self._config.api_url,
                "download.php",
                {
                    "format": "mp3",
                    "url": source_url,
                    "apikey": self._config.api_key,
                    "audio_quality": self._config.audio_quality,
                    "add_info": "1",
                },
            ),
            timeout=self._config.timeout_s,
            service="video download",
        )
        remote_id = str(data.get("id") or "").strip()
        if not data.get("success") or not remote_id:
            raise PermanentAdapterError(
                str(data.get("error") or "failed to start video download"),
                code="REMOTE_REJECTED",
            )
        logger.info("video download started job_id=%s remote_id=%s", job.id, remote_id)
        return SubmitResult(
            external_ref=remote_id,
            remote_status="waiting",
            progress=10,
            metadata=_info_metadata(data.get("info")),
        )

    def check_status(self, external_ref: str) -> StatusResult:
        try:
            data = make_request(
                url=build_url(self._config.api_url, "progress", {"id": external_ref}),
                timeout=self._config.timeout_s,
                service="video download",
            )
        except PermanentAdapterError as exc:
            if exc.status_code == 404:
                return StatusResult(state=STATE_NOT_FOUND, error="download job expired or not found in external API")
            raise

        text = str(data.get("text") or "").strip() or None
        raw = data.get("progress")
        try:
            raw_value = int(raw or 0)
        except (TypeError, ValueError):
            raw_value = 0
        download_url = str(data.get("download_url") or "").strip()
        metadata = _info_metadata(data.get("info"))

        if data.get("success") and download_url:
            return StatusResult(
                state=STATE_COMPLETED,
                progress=100,
                remote_status=text or "done",
                artifacts=[Artifact(name="audio.mp3", url=download_url)],
                metadata=metadata,
            )
        if text and _FAILURE_TEXT.search(text):
            return StatusResult(state=STATE_FAILED, remote_status=text, error=text, metadata=metadata)
        if raw_value >= 1000:
            return StatusResult(
                state=STATE_FAILED,
                remote_status=text,
                error=text or "download completed but no file was provided",
                metadata=metadata,
            )
        return StatusResult(
            state=STATE_IN_PROGRESS,
            progress=scale_progress(raw_value),
            remote_status=text,
            metadata=metadata,
        )
