from __future__ import annotations

from fastapi import APIRouter, Request

from mediajobs.routes._deps import orchestrator_from_request, require_cron_secret, trace_id_from_request
from mediajobs.schemas import success_envelope

router = APIRouter(prefix="/api/cron", tags=["cron"])


@router.api_route("/cleanup", methods=["GET", "POST"])
def run_cleanup(request: Request):
    require_cron_secret(request)
    stats = orchestrator_from_request(request).cleanup()
    return success_envelope(stats.as_dict(), trace_id_from_request(request))


@router.api_route("/reminders", methods=["GET", "POST"])
def run_reminders(request: Request):
    require_cron_secret(request)
    stats = orchestrator_from_request(request).dispatch_reminders()
    message = "no reminders to send" if stats.total == 0 else "ok"
    return success_envelope(stats.as_dict(), trace_id_from_request(request), message=message)


@router.api_route("/{lane}/tick", methods=["GET", "POST"])
def run_tick(lane: str, request: Request):
    require_cron_secret(request)
    result = orchestrator_from_request(request).tick(lane)
    data = result.as_dict()
    message = data["message"] if result.idle else "ok"
    return success_envelope(data, trace_id_from_request(request), message=message)
