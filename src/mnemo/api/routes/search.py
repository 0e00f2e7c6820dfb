from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from pydantic import BaseModel, Field

from mnemo.api.deps import get_container
from mnemo.core.di import ServiceContainer
from mnemo.retrieval.engine import SearchRequest

router = APIRouter()


class SearchBody(BaseModel):
    user_id: str = Field(..., min_length=1)
    query: str = Field(..., min_length=1, max_length=8000)
    limit: Optional[int] = Field(None, ge=1, le=1000)
    policy: Optional[str] = None
    context_only: bool = False
    async_job: bool = False


class CitationOut(BaseModel):
    label: int
    memory_id: str
    title: Optional[str] = None
    url: Optional[str] = None


class ResultOut(BaseModel):
    memory_id: str
    title: Optional[str] = None
    summary: Optional[str] = None
    url: Optional[str] = None
    timestamp: Optional[int] = None
    related_memories: List[str] = []
    score: float
    memory_type: Optional[str] = None
    importance_score: Optional[float] = None
    source: Optional[str] = None


class SearchOut(BaseModel):
    query: str
    results: List[ResultOut] = []
    answer: Optional[str] = None
    citations: List[CitationOut] = []
    policy: str
    strategy: Optional[str] = None
    context: Optional[str] = None
    context_blocks: List[Dict[str, Any]] = []


class SearchJobOut(BaseModel):
    job_id: str
    status: str


@router.post("/search")
async def search_memories(
    body: SearchBody,
    background: BackgroundTasks,
    container: ServiceContainer = Depends(get_container),
):
    engine = container.search_engine
    request = SearchRequest(
        user_id=body.user_id,
        query=body.query,
        limit=body.limit,
        policy=body.policy,
        context_only=body.context_only,
    )
    if body.async_job:
        job = await engine.create_job()
        request.job_id = job.id
        background.add_task(engine.run_job, request)
        return SearchJobOut(job_id=job.id, status=job.status)

    response = await engine.search(request)
    return SearchOut(**response.to_dict())


@router.get("/search/jobs/{job_id}")
async def get_search_job(job_id: str, container: ServiceContainer = Depends(get_container)):
    job = await container.search_jobs.get(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Search job not found or expired")
    return job.to_dict()
