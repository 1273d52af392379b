from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any

PENDING = "pending"
PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"

NON_TERMINAL_STATUSES = frozenset({PENDING, PROCESSING})

# Per-run counters kept in a job payload; a reprocess starts them over.
SUBMIT_ATTEMPTS_KEY = "submit_attempts"
NOT_FOUND_POLLS_KEY = "not_found_polls"
RUN_COUNTER_KEYS = (SUBMIT_ATTEMPTS_KEY, NOT_FOUND_POLLS_KEY)

LANE_SEPARATION = "separation"
LANE_DOWNLOAD = "download"
LANES = (LANE_SEPARATION, LANE_DOWNLOAD)

ERROR_SUBMISSION_REJECTED = "SUBMISSION_REJECTED"
ERROR_REMOTE_FAILED = "REMOTE_FAILED"
ERROR_FINALIZE_FAILED = "FINALIZE_FAILED"
ERROR_SUBMIT_ATTEMPTS_EXHAUSTED = "SUBMIT_ATTEMPTS_EXHAUSTED"

STATE_IN_PROGRESS = "in_progress"
STATE_COMPLETED = "completed"
STATE_FAILED = "failed"
STATE_NOT_FOUND = "not_found"


def utcnow() -> datetime:
    return datetime.now(UTC)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass
class JobRecord:
    id: str
    lane: str
    resource_id: str
    status: str = PENDING
    progress: int = 0
    external_ref: str | None = None
    external_status: str | None = None
    error: str | None = None
    error_code: str | None = None
    artifact_ref: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    created_by: str | None = None
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    def copy(self, **changes: Any) -> "JobRecord":
        changes.setdefault("payload", dict(self.payload))
        return replace(self, **changes)

    def as_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.id,
            "lane": self.lane,
            "resource_id": self.resource_id,
            "status": self.status,
            "progress": self.progress,
            "external_ref": self.external_ref,
            "external_status": self.external_status,
            "error": self.error,
            "error_code": self.error_code,
            "artifact_ref": self.artifact_ref,
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
        }


@dataclass
class Artifact:
    name: str
    url: str


@dataclass
class SubmitResult:
    external_ref: str
    remote_status: str | None = None
    progress: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class StatusResult:
    state: str
    progress: int = 0
    remote_status: str | None = None
    artifacts: list[Artifact] = field(default_factory=list)
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class Admission:
    job: JobRecord
    claimed: bool
