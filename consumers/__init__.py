"""Consumers module for draining the event queues into the read model.

Each ``JobConsumer`` owns one queue and runs as an independent asyncio
task: it leases a job, dispatches it to the reconciliation engine, runs
the returned effects and acknowledges it. Several consumers may drain the
same queue; correctness never depends on which of them handles a job.

Failure handling:
- malformed payload: dead-lettered at once, never retried
- missing target: the identical job is re-enqueued with exponential
  backoff until the retry policy is exhausted, then dead-lettered
- any other exception: nacked, the queue's redelivery policy applies
"""

import asyncio
import logging
from typing import List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from jobs import QUEUES, FailureReason, Job, JobQueue, MalformedJobError, parse_job
from notifications import NotificationGenerator
from reconciler import HandlerResult, NotifyOrderSold, ReconciliationEngine, RetryLater

logger = logging.getLogger(__name__)

class RetryPolicy(BaseModel):
    """Delays for re-enqueueing jobs whose target does not exist yet.

    ``max_attempts = 0`` retries forever.
    """
    model_config = ConfigDict(frozen=True)

    base_delay: float = Field(default=1.0, gt=0)
    factor: float = Field(default=2.0, ge=1.0)
    max_delay: float = Field(default=60.0, gt=0)
    max_attempts: int = Field(default=20, ge=0)

    @classmethod
    def from_settings(cls, settings) -> 'RetryPolicy':
        return cls(
            base_delay=settings.retry_delay_ms / 1000,
            factor=settings.retry_backoff_factor,
            max_delay=settings.max_retry_delay_ms / 1000,
            max_attempts=settings.max_retry_attempts
        )

    def delay_for(self, retries: int) -> float:
        """Delay before retry number ``retries + 1``."""
        try:
            delay = self.base_delay * self.factor ** retries
        except OverflowError:
            return self.max_delay
        return min(delay, self.max_delay)

    def exhausted(self, retries: int) -> bool:
        return self.max_attempts > 0 and retries >= self.max_attempts

class JobConsumer:
    """Drain one queue."""

    def __init__(
        self,
        queue_name: str,
        job_queue: JobQueue,
        engine: ReconciliationEngine,
        notifier: NotificationGenerator,
        retry_policy: Optional[RetryPolicy] = None,
        poll_interval: float = 0.5,
        name: Optional[str] = None
    ) -> None:
        self.queue_name = queue_name
        self.job_queue = job_queue
        self.engine = engine
        self.notifier = notifier
        self.retry_policy = retry_policy or RetryPolicy()
        self.poll_interval = poll_interval
        self.name = name or queue_name
        self.running = True

    async def process_job(self, job: Job) -> Optional[HandlerResult]:
        """Handle a single leased job and settle it with the queue.

        Returns:
            The handler result, or None if the job was dead-lettered or nacked
        """
        try:
            job_type, payload = parse_job(job)
        except MalformedJobError as e:
            logger.error(f"Dead-lettering malformed job {job.id} [{job.job_type}]: {e}")
            await self.job_queue.fail(job, FailureReason.MALFORMED_PAYLOAD, str(e))
            return None

        logger.info(f"Processing job [{job_type.value}] {job.id} on {self.name}")
        try:
            result = await self.engine.handle(job_type, payload)
            retry_reason = await self._run_effects(result)

            if retry_reason is None:
                await self.job_queue.ack(job)
            elif self.retry_policy.exhausted(job.retries):
                logger.error(
                    f"Giving up on job {job.id} [{job.job_type}] after {job.retries} retries: {retry_reason}"
                )
                await self.job_queue.fail(job, FailureReason.RETRIES_EXHAUSTED, retry_reason)
            else:
                await self._retry_later(job, retry_reason)
                await self.job_queue.ack(job)

            return result

        except Exception as e:
            logger.error(f"Error processing job {job.id} [{job.job_type}]: {e}")
            await self.job_queue.nack(job, str(e))
            return None

    async def _run_effects(self, result: HandlerResult) -> Optional[str]:
        """Run post-commit effects; returns a reason when the job must be retried."""
        retry_reason = None
        for effect in result.effects:
            if isinstance(effect, RetryLater):
                retry_reason = effect.reason
            elif isinstance(effect, NotifyOrderSold):
                if not await self.notifier.on_order_sold(effect.order_id):
                    retry_reason = f"sale notifications for order {effect.order_id} pending"
        return retry_reason

    async def _retry_later(self, job: Job, reason: str) -> None:
        delay = self.retry_policy.delay_for(job.retries)
        logger.warning(
            f"Job {job.id} [{job.job_type}]: {reason}, "
            f"retry {job.retries + 1} in {delay:.2f}s"
        )
        await self.job_queue.enqueue(
            job.queue,
            job.job_type,
            job.payload,
            delay=delay,
            retries=job.retries + 1
        )

    async def process_available(self) -> int:
        """Process jobs until none is due.

        Returns:
            Number of jobs processed
        """
        processed = 0
        while self.running:
            job = await self.job_queue.fetch(self.queue_name)
            if job is None:
                break
            await self.process_job(job)
            processed += 1
        return processed

    async def process_jobs(self) -> None:
        """Consume until stopped."""
        logger.info(f"Consumer {self.name} started")
        while self.running:
            try:
                if not await self.process_available():
                    await asyncio.sleep(self.poll_interval)
            except Exception as e:
                logger.error(f"Error in consumer {self.name}: {e}")
                await asyncio.sleep(1)
        logger.info(f"Consumer {self.name} stopped")

    def stop(self) -> None:
        self.running = False

class ConsumerGroup:
    """Runs ``workers_per_queue`` consumers for every queue."""

    def __init__(
        self,
        job_queue: JobQueue,
        engine: ReconciliationEngine,
        notifier: NotificationGenerator,
        retry_policy: Optional[RetryPolicy] = None,
        workers_per_queue: int = 1,
        poll_interval: float = 0.5,
        queues: Sequence[str] = QUEUES
    ) -> None:
        self.consumers: List[JobConsumer] = [
            JobConsumer(
                queue_name,
                job_queue,
                engine,
                notifier,
                retry_policy,
                poll_interval,
                name=f"{queue_name}-{worker}"
            )
            for queue_name in queues
            for worker in range(workers_per_queue)
        ]

    async def start(self) -> None:
        """Run every consumer until all of them stop."""
        await asyncio.gather(*(consumer.process_jobs() for consumer in self.consumers))

    def stop(self) -> None:
        logger.info("Stopping consumers...")
        for consumer in self.consumers:
            consumer.stop()

def create_consumer_group(settings, store, job_queue: JobQueue) -> ConsumerGroup:
    """Wire engine, notifier and consumers from settings."""
    return ConsumerGroup(
        job_queue,
        ReconciliationEngine(store, settings.marketplace_address),
        NotificationGenerator(store),
        RetryPolicy.from_settings(settings),
        workers_per_queue=settings.workers_per_queue,
        poll_interval=settings.poll_interval_ms / 1000
    )

__all__ = ['ConsumerGroup', 'JobConsumer', 'RetryPolicy', 'create_consumer_group']
