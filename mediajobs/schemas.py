from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class CreateSeparationJobRequest(BaseModel):
    track_id: str = Field(min_length=1)


class CreateDownloadJobRequest(BaseModel):
    source_url: str = Field(min_length=1, max_length=2048)
    name: str | None = Field(default=None, max_length=200)
    artist: str | None = Field(default=None, max_length=200)
    genre: str | None = Field(default=None, max_length=100)
    mood: str | None = Field(default=None, max_length=100)
    project_id: str | None = None


class ReminderConfirmRequest(BaseModel):
    delivery_id: str = Field(min_length=1)


def success_envelope(data: Any, trace_id: str, message: str = "ok") -> dict[str, Any]:
    return {
        "success": True,
        "data": data,
        "message": message,
        "meta": {
            "trace_id": trace_id,
        },
    }


def error_envelope(
    *,
    code: str,
    message: str,
    error_class: str,
    retryable: bool,
    trace_id: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    error: dict[str, Any] = {
        "code": code,
        "message": message,
        "retryable": retryable,
        "class": error_class,
    }
    if details is not None:
        error["details"] = details
    return {
        "success": False,
        "error": error,
        "meta": {
            "trace_id": trace_id,
        },
    }
