from __future__ import annotations

from fastapi import APIRouter, Request, Response

from mediajobs.routes._deps import orchestrator_from_request, require_webhook_secret, trace_id_from_request
from mediajobs.schemas import ReminderConfirmRequest, success_envelope

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])

# Reminder recipients confirm from browser-side automations on other origins.
PREFLIGHT_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, x-webhook-secret",
}


@router.options("/reminders/confirm")
def confirm_reminder_preflight() -> Response:
    return Response(status_code=204, headers=PREFLIGHT_HEADERS)


@router.post("/reminders/confirm")
def confirm_reminder(payload: ReminderConfirmRequest, request: Request, response: Response):
    require_webhook_secret(request)
    confirmed_at = orchestrator_from_request(request).confirmation_receiver.confirm(payload.delivery_id)
    response.headers["Access-Control-Allow-Origin"] = "*"
    return success_envelope(
        {"delivery_id": payload.delivery_id, "confirmed_at": confirmed_at.isoformat()},
        trace_id_from_request(request),
    )
