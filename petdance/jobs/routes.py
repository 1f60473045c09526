"""
FastAPI routes for pet dance videos.

  POST   /videos/generate       : charge 100 coins, create + queue a job
  GET    /videos/status?jobId=  : job status (re-checks the provider while in flight)
  GET    /videos                : caller's jobs, newest first
  DELETE /videos/{id}           : delete one of the caller's jobs
  GET    /dance-styles          : available styles
"""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request

from .. import metrics
from ..auth import get_current_user_id
from ..errors import (
    InsufficientBalanceError,
    JobNotFoundError,
    StorageError,
    UnauthorizedError,
    ValidationError,
)
from .dance_styles import list_styles
from .dispatch import make_dispatcher
from .models import DeleteResponse, GenerateRequest, GenerateResponse, JobStatusResponse

logger = logging.getLogger(__name__)

videos_router = APIRouter(prefix="/videos", tags=["videos"])
styles_router = APIRouter(tags=["videos"])


def current_user(request: Request) -> str:
    try:
        return get_current_user_id(request)
    except UnauthorizedError as e:
        raise HTTPException(status_code=401, detail=str(e))


def _container(request: Request):
    return request.app.state.container


@videos_router.post("/generate", response_model=GenerateResponse, response_model_by_alias=True)
def generate_video(
    body: GenerateRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(current_user),
):
    """Acknowledge a generation request; the provider work happens after the response."""
    metrics.inc_counter("requests.generate")
    container = _container(request)
    dispatch = make_dispatcher(container.orchestrator, container.job_queue, background_tasks, user_id)
    try:
        job = container.orchestrator.start_generation(user_id, body, dispatch)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except InsufficientBalanceError as e:
        raise HTTPException(status_code=402, detail=str(e))
    except StorageError as e:
        logger.error(f"Generate failed for user {user_id}: {e}", exc_info=True)
        raise HTTPException(status_code=503, detail="Failed to create video record")
    return GenerateResponse(job_id=job.id, status=job.status)


@videos_router.get("/status", response_model=JobStatusResponse, response_model_by_alias=True)
def video_status(
    request: Request,
    job_id: Optional[str] = Query(None, alias="jobId"),
    user_id: str = Depends(current_user),
):
    if not job_id:
        raise HTTPException(status_code=400, detail="jobId is required")
    try:
        job = _container(request).reconciler.get_status(job_id, user_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Video not found")
    except StorageError as e:
        logger.error(f"Status read failed for {job_id}: {e}")
        raise HTTPException(status_code=503, detail="Video store unavailable")
    return JobStatusResponse.from_job(job)


@videos_router.get("", response_model=list[JobStatusResponse], response_model_by_alias=True)
def list_videos(request: Request, user_id: str = Depends(current_user)):
    try:
        jobs = _container(request).store.list(user_id)
    except StorageError as e:
        logger.error(f"List failed for user {user_id}: {e}")
        raise HTTPException(status_code=503, detail="Video store unavailable")
    return [JobStatusResponse.from_job(j) for j in jobs]


@videos_router.delete("/{job_id}", response_model=DeleteResponse)
def delete_video(job_id: str, request: Request, user_id: str = Depends(current_user)):
    try:
        _container(request).store.delete(job_id, user_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Video not found or unauthorized")
    except StorageError as e:
        logger.error(f"Delete failed for {job_id}: {e}")
        raise HTTPException(status_code=503, detail="Failed to delete video")
    return DeleteResponse(id=job_id)


@styles_router.get("/dance-styles")
def dance_styles():
    return {"styles": list_styles()}
