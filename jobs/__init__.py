"""Event queue module.

The blockchain indexer publishes one job per chain event onto one of two
queues:

- ``token-data-queue``: token-create, token-on-off-sale
- ``order-data-queue``: order-create, update-order-price,
  update-order-state, update-order-buyer

Delivery is at-least-once and jobs of different kinds may arrive in any
order, so consumers rely on fencing and delayed retries rather than on
queue order.
"""

import logging
from typing import Optional

from asyncpg.pool import Pool

from .payloads import (
    JOB_QUEUES,
    JOB_TYPE_ALIASES,
    ORDER_QUEUE,
    PAYLOAD_MODELS,
    QUEUES,
    TOKEN_QUEUE,
    DeadLetter,
    FailureReason,
    Job,
    JobError,
    JobPayload,
    JobType,
    MalformedJobError,
    OrderCreatePayload,
    QueueStats,
    TokenCreatePayload,
    TokenOnOffSalePayload,
    UnknownQueueError,
    UpdateOrderBuyerPayload,
    UpdateOrderPricePayload,
    UpdateOrderStatePayload,
    parse_job,
    parse_payload,
    resolve_job_type,
)
from .postgres import PostgresJobQueue
from .queue import JobQueue, MemoryJobQueue

logger = logging.getLogger(__name__)

def create_job_queue(settings, pool: Optional[Pool] = None) -> JobQueue:
    """Build the job queue selected by settings.db_url."""
    max_attempts = settings.max_delivery_attempts
    redelivery_delay = settings.redelivery_delay_ms / 1000
    if settings.uses_memory_backend:
        logger.info("Using in-memory job queue")
        return MemoryJobQueue(max_attempts, redelivery_delay)
    if pool is None:
        raise JobError("A connection pool is required for the PostgreSQL job queue")
    return PostgresJobQueue(
        pool,
        max_attempts,
        redelivery_delay,
        visibility_timeout=settings.visibility_timeout
    )

__all__ = [
    'JOB_QUEUES',
    'JOB_TYPE_ALIASES',
    'ORDER_QUEUE',
    'PAYLOAD_MODELS',
    'QUEUES',
    'TOKEN_QUEUE',
    'DeadLetter',
    'FailureReason',
    'Job',
    'JobError',
    'JobPayload',
    'JobQueue',
    'JobType',
    'MalformedJobError',
    'MemoryJobQueue',
    'OrderCreatePayload',
    'PostgresJobQueue',
    'QueueStats',
    'TokenCreatePayload',
    'TokenOnOffSalePayload',
    'UnknownQueueError',
    'UpdateOrderBuyerPayload',
    'UpdateOrderPricePayload',
    'UpdateOrderStatePayload',
    'create_job_queue',
    'parse_job',
    'parse_payload',
    'resolve_job_type',
]
