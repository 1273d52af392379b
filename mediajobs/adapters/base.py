from __future__ import annotations

from mediajobs.adapters.http import download_bytes
from mediajobs.models import JobRecord, StatusResult, SubmitResult


class ExternalServiceAdapter:
    """Contract between a lane and its third-party service."""

    name = "base"
    artifact_timeout_s = 120.0

    def submit(self, job: JobRecord) -> SubmitResult:
        raise NotImplementedError

    def check_status(self, external_ref: str) -> StatusResult:
        raise NotImplementedError

    def fetch_artifact(self, url: str) -> bytes:
        return download_bytes(url, timeout=self.artifact_timeout_s)
