"""System health endpoint."""

from datetime import datetime
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from database.models import utc_now
from jobs import QUEUES, JobQueue, QueueStats
from ..dependencies import get_job_queue

router = APIRouter(
    tags=["System"]
)

class SystemHealth(BaseModel):
    """Model for system health data."""
    status: str
    time: datetime
    queues: List[QueueStats]

@router.get("/health", response_model=SystemHealth)
async def get_health(job_queue: JobQueue = Depends(get_job_queue)):
    """Report whether the job queue is reachable, with per-queue counts."""
    try:
        queues = [await job_queue.stats(queue_name) for queue_name in QUEUES]
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Job queue unavailable: {e}"
        )

    return SystemHealth(status="ok", time=utc_now(), queues=queues)
