"""Render API endpoints - jobs run as background tasks, clients poll for status."""

import logging

from fastapi import APIRouter, status

from reelrender.api.deps import RenderServiceDep
from reelrender.exceptions import JobNotFoundError
from reelrender.models.render_job import RenderJob
from reelrender.schemas.render import (
    ActiveJobResponse,
    RenderRequest,
    RenderStatusResponse,
    RenderSubmitResponse,
)

router = APIRouter()
logger = logging.getLogger(__name__)


def _status_response(job: RenderJob) -> RenderStatusResponse:
    data = job.to_dict()
    data["job_id"] = data.pop("id")
    return RenderStatusResponse(**data)


@router.post(
    "/render",
    response_model=RenderSubmitResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def submit_render(render_request: RenderRequest, service: RenderServiceDep) -> RenderSubmitResponse:
    """
    Start a render job.

    Returns immediately; poll GET /api/render/{job_id} for progress.
    """
    job_id = service.submit(render_request)
    return RenderSubmitResponse(job_id=job_id, status="pending", mode=service.mode.value)


@router.get("/render/jobs", response_model=list[ActiveJobResponse])
async def list_active_jobs(service: RenderServiceDep) -> list[ActiveJobResponse]:
    """Jobs that are pending or rendering, oldest first."""
    return [
        ActiveJobResponse(job_id=job.id, status=job.status.value, progress_percent=job.progress_percent)
        for job in service.list_active()
    ]


@router.get("/render/{job_id}", response_model=RenderStatusResponse)
async def get_render_status(job_id: str, service: RenderServiceDep) -> RenderStatusResponse:
    job = service.get_status(job_id)
    if job is None:
        raise JobNotFoundError(job_id)
    return _status_response(job)
