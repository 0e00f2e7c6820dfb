from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from mnemo.api.deps import get_container
from mnemo.core.di import ServiceContainer

router = APIRouter()


class CaptureRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    raw_text: str = Field(..., min_length=1)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class CaptureResponse(BaseModel):
    id: str
    is_duplicate: bool = False


class CancelResponse(BaseModel):
    job_id: str
    cancelled: bool
    removed: bool


class QueueCountsOut(BaseModel):
    waiting: int = 0
    active: int = 0
    delayed: int = 0
    completed: int = 0
    failed: int = 0
    total: int = 0


class CleanupResponse(BaseModel):
    before: QueueCountsOut
    after: QueueCountsOut
    removed: int
    remaining: int


@router.post("/memory/capture", response_model=CaptureResponse)
async def capture_memory(req: CaptureRequest, container: ServiceContainer = Depends(get_container)):
    result = await container.queue.enqueue(req.user_id, req.raw_text, req.metadata)
    return CaptureResponse(**result.to_dict())


@router.delete("/memory/jobs/{job_id}", response_model=CancelResponse)
async def cancel_job(job_id: str, container: ServiceContainer = Depends(get_container)):
    return CancelResponse(**await container.queue.cancel(job_id))


@router.get("/memory/jobs/{job_id}")
async def get_job(job_id: str, container: ServiceContainer = Depends(get_container)):
    info = await container.queue.get_job(job_id)
    if info is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return info.to_dict()


@router.get("/memory/queue")
async def queue_status(
    limit: int = Query(20, ge=1, le=200, description="Max jobs listed per state"),
    container: ServiceContainer = Depends(get_container),
):
    status = await container.queue.status(limit=limit)
    return status.to_dict()


@router.post("/memory/queue/clean", response_model=CleanupResponse)
async def clean_queue(container: ServiceContainer = Depends(get_container)):
    report = await container.queue.cleanup()
    return CleanupResponse(**report.to_dict())
