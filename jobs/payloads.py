"""Job envelopes and the typed payload of every job kind.

Payload fields arrive in the indexer's camelCase and are exposed in
snake_case. ``parse_job`` is the single place where an untyped job becomes
a ``(JobType, payload)`` pair; anything it rejects is a malformed job.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Type
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from database.models import OrderState, OrderType, utc_now

TOKEN_QUEUE = 'token-data-queue'
ORDER_QUEUE = 'order-data-queue'
QUEUES = (TOKEN_QUEUE, ORDER_QUEUE)

class JobError(Exception):
    """Base class for job errors."""
    pass

class MalformedJobError(JobError):
    """Raised when a job's type or payload does not match its schema."""
    pass

class UnknownQueueError(JobError):
    """Raised when a queue name is not one of QUEUES."""
    pass

class JobType(str, Enum):
    TOKEN_CREATE = 'token-create'
    TOKEN_ON_OFF_SALE = 'token-on-off-sale'
    ORDER_CREATE = 'order-create'
    UPDATE_ORDER_PRICE = 'update-order-price'
    UPDATE_ORDER_STATE = 'update-order-state'
    UPDATE_ORDER_BUYER = 'update-order-buyer'

# Older indexers publish order creation as 'new-order'
JOB_TYPE_ALIASES = {
    'new-order': JobType.ORDER_CREATE,
}

JOB_QUEUES: Dict[JobType, str] = {
    JobType.TOKEN_CREATE: TOKEN_QUEUE,
    JobType.TOKEN_ON_OFF_SALE: TOKEN_QUEUE,
    JobType.ORDER_CREATE: ORDER_QUEUE,
    JobType.UPDATE_ORDER_PRICE: ORDER_QUEUE,
    JobType.UPDATE_ORDER_STATE: ORDER_QUEUE,
    JobType.UPDATE_ORDER_BUYER: ORDER_QUEUE,
}

class JobPayload(BaseModel):
    """Fields common to every chain event."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    block_number: int = Field(alias='blockNumber', ge=0)

class TokenCreatePayload(JobPayload):
    token_id: str = Field(alias='tokenId', min_length=1)
    create_time: int = Field(alias='createTime')
    category: str
    name: str
    description: str
    royalty_owner: str = Field(alias='royaltyOwner')
    royalty_fee: int = Field(alias='royaltyFee', ge=0)
    thumbnail: str

class TokenOnOffSalePayload(JobPayload):
    token_id: str = Field(alias='tokenId', min_length=1)
    from_address: str = Field(alias='from')
    to_address: str = Field(alias='to')

class OrderCreatePayload(JobPayload):
    token_id: str = Field(alias='tokenId', min_length=1)
    order_id: int = Field(alias='orderId', ge=0)
    seller: str = Field(min_length=1)
    order_type: OrderType = Field(alias='orderType')
    order_state: OrderState = Field(alias='orderState')
    order_price: Decimal = Field(alias='orderPrice', ge=0)
    create_time: int = Field(alias='createTime')
    is_blind_box: bool = Field(default=False, alias='isBlindBox')

class UpdateOrderPricePayload(JobPayload):
    order_id: int = Field(alias='orderId', ge=0)
    order_price: Decimal = Field(alias='orderPrice', ge=0)

class UpdateOrderStatePayload(JobPayload):
    order_id: int = Field(alias='orderId', ge=0)
    order_state: OrderState = Field(alias='orderState')

class UpdateOrderBuyerPayload(JobPayload):
    order_id: int = Field(alias='orderId', ge=0)
    buyer: str = Field(min_length=1)

PAYLOAD_MODELS: Dict[JobType, Type[JobPayload]] = {
    JobType.TOKEN_CREATE: TokenCreatePayload,
    JobType.TOKEN_ON_OFF_SALE: TokenOnOffSalePayload,
    JobType.ORDER_CREATE: OrderCreatePayload,
    JobType.UPDATE_ORDER_PRICE: UpdateOrderPricePayload,
    JobType.UPDATE_ORDER_STATE: UpdateOrderStatePayload,
    JobType.UPDATE_ORDER_BUYER: UpdateOrderBuyerPayload,
}

class Job(BaseModel):
    """A queued job. ``payload`` is kept untyped so a retry re-enqueues it verbatim."""
    id: str = Field(default_factory=lambda: str(uuid4()))
    queue: str
    job_type: str
    payload: Dict[str, Any]
    attempts: int = 0  # deliveries so far
    retries: int = 0   # missing-target re-enqueues so far
    run_at: datetime = Field(default_factory=utc_now)
    last_error: Optional[str] = None

class FailureReason(str, Enum):
    MALFORMED_PAYLOAD = 'malformed_payload'
    MAX_ATTEMPTS_EXCEEDED = 'max_attempts_exceeded'
    RETRIES_EXHAUSTED = 'retries_exhausted'

class DeadLetter(BaseModel):
    """A job the queue gave up on."""
    id: str
    queue: str
    job_type: str
    payload: Dict[str, Any]
    attempts: int = 0
    retries: int = 0
    reason: FailureReason
    error: Optional[str] = None
    failed_at: datetime = Field(default_factory=utc_now)

class QueueStats(BaseModel):
    queue: str
    waiting: int = 0
    delayed: int = 0
    active: int = 0
    dead: int = 0
    paused: bool = False

def check_queue(queue_name: str) -> str:
    if queue_name not in QUEUES:
        raise UnknownQueueError(f"Unknown queue {queue_name}")
    return queue_name

def resolve_job_type(job_type: str) -> JobType:
    """Map a job type name (or a legacy alias) to its JobType."""
    if job_type in JOB_TYPE_ALIASES:
        return JOB_TYPE_ALIASES[job_type]
    try:
        return JobType(job_type)
    except ValueError:
        raise MalformedJobError(f"Unknown job type {job_type!r}")

def parse_payload(queue_name: str, job_type: str, payload: Any) -> Tuple[JobType, JobPayload]:
    """Validate a job type against its queue and its payload against the schema.

    Raises:
        MalformedJobError: If the job type is unknown, belongs to another
            queue, or the payload violates the schema
    """
    kind = resolve_job_type(job_type)
    if JOB_QUEUES[kind] != queue_name:
        raise MalformedJobError(
            f"Job type {kind.value} is not accepted on queue {queue_name}"
        )
    if not isinstance(payload, dict):
        raise MalformedJobError(f"Payload of {kind.value} must be an object")
    try:
        return kind, PAYLOAD_MODELS[kind].model_validate(payload)
    except ValidationError as e:
        raise MalformedJobError(f"Invalid {kind.value} payload: {e}")

def parse_job(job: Job) -> Tuple[JobType, JobPayload]:
    return parse_payload(job.queue, job.job_type, job.payload)
