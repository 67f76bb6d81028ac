"""Core API routes — health and the sprint schedule."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from loguru import logger

from koruclub import __version__
from koruclub.api.deps import get_scheduler
from koruclub.core.schedule.scheduler import SprintScheduler
from koruclub.core.schedule.types import (
    JobRun,
    JobType,
    NextOccurrence,
    SchedulerSnapshot,
)
from koruclub.memory.models import HealthResponse, TriggerResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health(request: Request):
    """Health check. 503 until startup (reconciliation included) has finished."""
    ready = getattr(request.app.state, "ready", False)
    body = HealthResponse(status="ok" if ready else "starting", ready=ready, version=__version__)
    return JSONResponse(body.model_dump(), status_code=200 if ready else 503)


@router.get("/schedule", response_model=SchedulerSnapshot)
async def schedule_status(scheduler: SprintScheduler = Depends(get_scheduler)):
    return scheduler.status()


@router.get("/schedule/next", response_model=list[NextOccurrence])
async def schedule_next(scheduler: SprintScheduler = Depends(get_scheduler)):
    return scheduler.get_next_occurrences()


@router.get("/schedule/missed", response_model=list[JobRun])
async def schedule_missed(scheduler: SprintScheduler = Depends(get_scheduler)):
    return scheduler.get_missed_jobs()


@router.post("/schedule/trigger/{job_type}", response_model=TriggerResponse)
async def trigger_job(
    job_type: JobType,
    scheduler: SprintScheduler = Depends(get_scheduler),
):
    """Send a job's message now; resolves the latest missed run of that type."""
    if not scheduler.destination:
        raise HTTPException(status_code=409, detail="No destination chat; start the scheduler first")
    try:
        result = await scheduler.manual_trigger(job_type)
    except Exception as e:
        logger.error(f"Manual trigger error: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    if not result.sent:
        raise HTTPException(status_code=502, detail=result.error or "Send failed")
    return TriggerResponse(job_type=job_type, **result.model_dump())
