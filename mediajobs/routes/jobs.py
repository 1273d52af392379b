from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from mediajobs.models import LANE_DOWNLOAD, LANE_SEPARATION
from mediajobs.routes._deps import orchestrator_from_request, trace_id_from_request, user_id_from_request
from mediajobs.schemas import CreateDownloadJobRequest, CreateSeparationJobRequest, success_envelope

router = APIRouter(prefix="/api/v1/lanes", tags=["jobs"])


@router.post(f"/{LANE_SEPARATION}/jobs")
def create_separation_job(payload: CreateSeparationJobRequest, request: Request):
    user_id = user_id_from_request(request)
    job = orchestrator_from_request(request).job_service.create_separation_job(
        track_id=payload.track_id,
        created_by=user_id,
    )
    return JSONResponse(status_code=201, content=success_envelope(job.as_dict(), trace_id_from_request(request)))


@router.post(f"/{LANE_DOWNLOAD}/jobs")
def create_download_job(payload: CreateDownloadJobRequest, request: Request):
    user_id = user_id_from_request(request)
    job = orchestrator_from_request(request).job_service.create_download_job(
        source_url=payload.source_url,
        name=payload.name,
        artist=payload.artist,
        genre=payload.genre,
        mood=payload.mood,
        project_id=payload.project_id,
        created_by=user_id,
    )
    return JSONResponse(status_code=201, content=success_envelope(job.as_dict(), trace_id_from_request(request)))


@router.get("/{lane}/jobs/{job_id}")
def get_job(lane: str, job_id: str, request: Request):
    user_id_from_request(request)
    job = orchestrator_from_request(request).job_service.get_job(lane=lane, job_id=job_id)
    return success_envelope(job.as_dict(), trace_id_from_request(request))


@router.post("/{lane}/jobs/{job_id}/reprocess")
def reprocess_job(lane: str, job_id: str, request: Request):
    user_id_from_request(request)
    job = orchestrator_from_request(request).job_service.reprocess(lane=lane, job_id=job_id)
    return success_envelope(job.as_dict(), trace_id_from_request(request))
