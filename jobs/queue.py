"""Job queue interface and the in-process queue.

Delivery is at-least-once: a fetched job stays owned by the worker until
it is acked, nacked or failed. Nothing orders jobs beyond their due time.
"""

import asyncio
import heapq
import itertools
import logging
import time
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any, Dict, List, Optional, Set, Tuple

from database.models import utc_now
from .payloads import (
    QUEUES,
    DeadLetter,
    FailureReason,
    Job,
    QueueStats,
    check_queue,
)

logger = logging.getLogger(__name__)

class JobQueue(ABC):
    """Durable, at-least-once job queue with delayed jobs and dead letters."""

    def __init__(self, max_delivery_attempts: int = 5, redelivery_delay: float = 5.0) -> None:
        self.max_delivery_attempts = max_delivery_attempts
        self.redelivery_delay = redelivery_delay

    @abstractmethod
    async def enqueue(
        self,
        queue_name: str,
        job_type: str,
        payload: Dict[str, Any],
        delay: float = 0.0,
        retries: int = 0
    ) -> Job:
        """Add a job that becomes due after ``delay`` seconds."""

    @abstractmethod
    async def fetch(self, queue_name: str) -> Optional[Job]:
        """Lease the next due job, or None when nothing is due or the queue is paused."""

    @abstractmethod
    async def ack(self, job: Job) -> None:
        """Remove a completed job."""

    @abstractmethod
    async def nack(self, job: Job, error: str) -> None:
        """Return a failed job for redelivery, or dead-letter it once attempts run out."""

    @abstractmethod
    async def fail(self, job: Job, reason: FailureReason, error: Optional[str] = None) -> DeadLetter:
        """Move a job straight to the dead letters."""

    @abstractmethod
    async def pause(self, queue_name: str) -> None:
        ...

    @abstractmethod
    async def resume(self, queue_name: str) -> None:
        ...

    @abstractmethod
    async def is_paused(self, queue_name: str) -> bool:
        ...

    @abstractmethod
    async def stats(self, queue_name: str) -> QueueStats:
        ...

    @abstractmethod
    async def dead_letters(self, queue_name: Optional[str] = None, limit: int = 100) -> List[DeadLetter]:
        """Most recent dead letters first."""

    @abstractmethod
    async def requeue_dead_letter(self, dead_letter_id: str) -> Optional[Job]:
        """Enqueue a dead letter's payload again as a fresh job."""

    async def close(self) -> None:
        """Release queue resources."""

class MemoryJobQueue(JobQueue):
    """Queue held in process memory, selected with ``db_url = memory://``."""

    def __init__(self, max_delivery_attempts: int = 5, redelivery_delay: float = 5.0) -> None:
        super().__init__(max_delivery_attempts, redelivery_delay)
        self._lock = asyncio.Lock()
        self._seq = itertools.count()
        self._pending: Dict[str, List[Tuple[float, int, Job]]] = {name: [] for name in QUEUES}
        self._active: Dict[str, Job] = {}
        self._dead: List[DeadLetter] = []
        self._paused: Set[str] = set()

    def _push(self, job: Job, delay: float) -> None:
        job.run_at = utc_now() + timedelta(seconds=delay)
        heapq.heappush(self._pending[job.queue], (time.monotonic() + delay, next(self._seq), job))

    def _dead_letter(self, job: Job, reason: FailureReason, error: Optional[str]) -> DeadLetter:
        dead = DeadLetter(
            id=job.id,
            queue=job.queue,
            job_type=job.job_type,
            payload=job.payload,
            attempts=job.attempts,
            retries=job.retries,
            reason=reason,
            error=error
        )
        self._dead.append(dead)
        return dead

    async def enqueue(
        self,
        queue_name: str,
        job_type: str,
        payload: Dict[str, Any],
        delay: float = 0.0,
        retries: int = 0
    ) -> Job:
        check_queue(queue_name)
        job = Job(queue=queue_name, job_type=job_type, payload=payload, retries=retries)
        async with self._lock:
            self._push(job, delay)
        logger.debug(f"Enqueued job {job.id} [{job_type}] on {queue_name} with delay {delay}s")
        return job

    async def fetch(self, queue_name: str) -> Optional[Job]:
        check_queue(queue_name)
        async with self._lock:
            pending = self._pending[queue_name]
            if queue_name in self._paused or not pending or pending[0][0] > time.monotonic():
                return None
            _, _, job = heapq.heappop(pending)
            job.attempts += 1
            self._active[job.id] = job
            return job

    async def ack(self, job: Job) -> None:
        async with self._lock:
            self._active.pop(job.id, None)

    async def nack(self, job: Job, error: str) -> None:
        async with self._lock:
            self._active.pop(job.id, None)
            job.last_error = error
            if job.attempts >= self.max_delivery_attempts:
                self._dead_letter(job, FailureReason.MAX_ATTEMPTS_EXCEEDED, error)
                logger.error(
                    f"Job {job.id} [{job.job_type}] dead-lettered after {job.attempts} attempts: {error}"
                )
                return
            self._push(job, self.redelivery_delay)

    async def fail(self, job: Job, reason: FailureReason, error: Optional[str] = None) -> DeadLetter:
        async with self._lock:
            self._active.pop(job.id, None)
            return self._dead_letter(job, reason, error)

    async def pause(self, queue_name: str) -> None:
        self._paused.add(check_queue(queue_name))

    async def resume(self, queue_name: str) -> None:
        self._paused.discard(check_queue(queue_name))

    async def is_paused(self, queue_name: str) -> bool:
        return check_queue(queue_name) in self._paused

    async def stats(self, queue_name: str) -> QueueStats:
        check_queue(queue_name)
        now = time.monotonic()
        pending = self._pending[queue_name]
        waiting = sum(1 for due, _, _ in pending if due <= now)
        return QueueStats(
            queue=queue_name,
            waiting=waiting,
            delayed=len(pending) - waiting,
            active=sum(1 for job in self._active.values() if job.queue == queue_name),
            dead=sum(1 for dead in self._dead if dead.queue == queue_name),
            paused=queue_name in self._paused
        )

    async def dead_letters(self, queue_name: Optional[str] = None, limit: int = 100) -> List[DeadLetter]:
        entries = [d for d in reversed(self._dead) if queue_name is None or d.queue == queue_name]
        return entries[:limit]

    async def requeue_dead_letter(self, dead_letter_id: str) -> Optional[Job]:
        async with self._lock:
            dead = next((d for d in self._dead if d.id == dead_letter_id), None)
            if dead is None:
                return None
            self._dead.remove(dead)
        job = await self.enqueue(dead.queue, dead.job_type, dead.payload)
        logger.info(f"Requeued dead letter {dead_letter_id} as job {job.id}")
        return job
