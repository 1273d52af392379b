from __future__ import annotations

import hmac
import uuid
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

from mediajobs.errors import ApiError
from mediajobs.schemas import error_envelope


def trace_id_from_request(request: Request) -> str:
    trace_id = getattr(request.state, "trace_id", None)
    if trace_id:
        return trace_id
    return uuid.uuid4().hex


def request_id_from_request(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return request_id
    return f"req_{uuid.uuid4().hex[:12]}"


def orchestrator_from_request(request: Request) -> Any:
    return request.app.state.orchestrator


def error_response(
    request: Request,
    *,
    code: str,
    message: str,
    error_class: str,
    retryable: bool,
    status_code: int,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=error_envelope(
            code=code,
            message=message,
            error_class=error_class,
            retryable=retryable,
            trace_id=trace_id_from_request(request),
        ),
    )


def _unauthorized(message: str) -> ApiError:
    return ApiError(
        code="AUTH_UNAUTHORIZED",
        message=message,
        error_class="security_sensitive",
        retryable=False,
        http_status=401,
    )


def require_cron_secret(request: Request) -> None:
    secret = orchestrator_from_request(request).settings.cron_secret
    if not secret:
        raise _unauthorized("cron secret not configured")
    provided = request.headers.get("authorization", "")
    if not hmac.compare_digest(provided.encode("utf-8"), f"Bearer {secret}".encode("utf-8")):
        raise _unauthorized("invalid cron credentials")


def require_webhook_secret(request: Request) -> None:
    secret = orchestrator_from_request(request).settings.reminder_webhook_secret
    if not secret:
        return
    provided = request.headers.get("x-webhook-secret", "")
    if not hmac.compare_digest(provided.encode("utf-8"), secret.encode("utf-8")):
        raise _unauthorized("invalid webhook secret")


def user_id_from_request(request: Request) -> str:
    user_id = request.headers.get("x-user-id", "").strip()
    if not user_id:
        raise _unauthorized("x-user-id header is required")
    return user_id
