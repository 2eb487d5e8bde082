"""Queue administration endpoints.

Lets operators (and tests) publish jobs, inspect and pause queues, and
requeue dead letters.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field

from jobs import (
    DeadLetter,
    JobQueue,
    MalformedJobError,
    QueueStats,
    UnknownQueueError,
    parse_payload,
)
from jobs.payloads import check_queue
from ..dependencies import get_job_queue

logger = logging.getLogger(__name__)

router = APIRouter(
    tags=["Queues"]
)

class EnqueueRequest(BaseModel):
    """Job to publish, in the indexer's wire format."""
    model_config = ConfigDict(populate_by_name=True)

    job_type: str = Field(alias='jobType', min_length=1)
    payload: Dict[str, Any]
    delay_ms: int = Field(default=0, alias='delayMs', ge=0)

class EnqueueResponse(BaseModel):
    id: str
    queue: str
    job_type: str

def _unknown_queue(e: UnknownQueueError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=str(e)
    )

@router.post(
    "/queues/{queue_name}/jobs",
    response_model=EnqueueResponse,
    status_code=status.HTTP_202_ACCEPTED
)
async def enqueue_job(
    queue_name: str,
    request: EnqueueRequest,
    job_queue: JobQueue = Depends(get_job_queue)
):
    """Validate a job against its queue's schemas and enqueue it."""
    try:
        check_queue(queue_name)
        parse_payload(queue_name, request.job_type, request.payload)
    except UnknownQueueError as e:
        raise _unknown_queue(e)
    except MalformedJobError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e)
        )

    job = await job_queue.enqueue(
        queue_name,
        request.job_type,
        request.payload,
        delay=request.delay_ms / 1000
    )
    logger.info(f"Accepted job {job.id} [{job.job_type}] on {queue_name}")
    return EnqueueResponse(id=job.id, queue=job.queue, job_type=job.job_type)

@router.get("/queues/{queue_name}", response_model=QueueStats)
async def get_queue_stats(queue_name: str, job_queue: JobQueue = Depends(get_job_queue)):
    try:
        return await job_queue.stats(queue_name)
    except UnknownQueueError as e:
        raise _unknown_queue(e)

@router.post("/queues/{queue_name}/pause", response_model=QueueStats)
async def pause_queue(queue_name: str, job_queue: JobQueue = Depends(get_job_queue)):
    """Stop handing out jobs from a queue. Publishing is still accepted."""
    try:
        await job_queue.pause(queue_name)
    except UnknownQueueError as e:
        raise _unknown_queue(e)
    logger.info(f"Paused queue {queue_name}")
    return await job_queue.stats(queue_name)

@router.post("/queues/{queue_name}/resume", response_model=QueueStats)
async def resume_queue(queue_name: str, job_queue: JobQueue = Depends(get_job_queue)):
    try:
        await job_queue.resume(queue_name)
    except UnknownQueueError as e:
        raise _unknown_queue(e)
    logger.info(f"Resumed queue {queue_name}")
    return await job_queue.stats(queue_name)

@router.get("/dead-letters", response_model=List[DeadLetter])
async def list_dead_letters(
    queue: Optional[str] = None,
    limit: int = Query(default=100, ge=1, le=1000),
    job_queue: JobQueue = Depends(get_job_queue)
):
    """Most recent dead letters first, optionally for one queue."""
    if queue is not None:
        try:
            check_queue(queue)
        except UnknownQueueError as e:
            raise _unknown_queue(e)
    return await job_queue.dead_letters(queue, limit)

@router.post(
    "/dead-letters/{dead_letter_id}/requeue",
    response_model=EnqueueResponse,
    status_code=status.HTTP_202_ACCEPTED
)
async def requeue_dead_letter(dead_letter_id: str, job_queue: JobQueue = Depends(get_job_queue)):
    job = await job_queue.requeue_dead_letter(dead_letter_id)
    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Dead letter {dead_letter_id} not found"
        )
    return EnqueueResponse(id=job.id, queue=job.queue, job_type=job.job_type)
