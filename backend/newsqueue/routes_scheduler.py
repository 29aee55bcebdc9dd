"""
Scheduler API Routes

Endpoints for inspecting and driving the queue maintenance scheduler.
"""
from __future__ import annotations

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel

from newsqueue.services.scheduler import scheduler_service

router = APIRouter(prefix="/api/scheduler", tags=["scheduler"])


class SchedulerStatus(BaseModel):
    running: bool
    jobs_count: int
    jobs: list[dict]


@router.get("/status", response_model=SchedulerStatus)
async def get_scheduler_status():
    """Get scheduler status and list of jobs."""
    jobs = scheduler_service.get_jobs()
    return SchedulerStatus(
        running=scheduler_service.is_running(),
        jobs_count=len(jobs),
        jobs=jobs,
    )


@router.post("/jobs/{job_id}/run", response_model=dict)
async def run_job_now(job_id: str):
    """Run a specific job immediately."""
    result = await scheduler_service.run_now(job_id)
    if "error" in result:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=result["error"])
    return result
