"""Tests for job parsing and the in-process job queue."""

import asyncio
from decimal import Decimal

import pytest

from jobs import (
    ORDER_QUEUE,
    TOKEN_QUEUE,
    FailureReason,
    JobType,
    MalformedJobError,
    MemoryJobQueue,
    TokenOnOffSalePayload,
    UnknownQueueError,
    parse_payload,
)

def test_parse_payload_reads_camel_case_fields():
    job_type, payload = parse_payload(
        ORDER_QUEUE,
        'update-order-price',
        {'blockNumber': 11, 'orderId': 1, 'orderPrice': '150.5'}
    )

    assert job_type == JobType.UPDATE_ORDER_PRICE
    assert payload.order_id == 1
    assert payload.order_price == Decimal('150.5')

def test_parse_payload_reads_transfer_addresses():
    _, payload = parse_payload(
        TOKEN_QUEUE,
        'token-on-off-sale',
        {'blockNumber': 3, 'tokenId': '0xtoken1', 'from': '0xA', 'to': '0xB'}
    )

    assert isinstance(payload, TokenOnOffSalePayload)
    assert (payload.from_address, payload.to_address) == ('0xA', '0xB')

@pytest.mark.parametrize('queue_name,job_type,payload', [
    (ORDER_QUEUE, 'delete-order', {'blockNumber': 1}),
    (TOKEN_QUEUE, 'update-order-price', {'blockNumber': 1, 'orderId': 1, 'orderPrice': '1'}),
    (ORDER_QUEUE, 'update-order-price', {'blockNumber': -1, 'orderId': 1, 'orderPrice': '1'}),
    (ORDER_QUEUE, 'update-order-state', {'blockNumber': 1, 'orderId': 1, 'orderState': 'Sold'}),
    (ORDER_QUEUE, 'update-order-buyer', ['not', 'an', 'object']),
])
def test_parse_payload_rejects_malformed_jobs(queue_name, job_type, payload):
    with pytest.raises(MalformedJobError):
        parse_payload(queue_name, job_type, payload)

@pytest.mark.asyncio
async def test_fetch_leases_due_jobs_only(job_queue):
    assert await job_queue.fetch(ORDER_QUEUE) is None

    await job_queue.enqueue(ORDER_QUEUE, 'order-create', {'blockNumber': 1}, delay=60)
    now = await job_queue.enqueue(ORDER_QUEUE, 'order-create', {'blockNumber': 2})

    job = await job_queue.fetch(ORDER_QUEUE)
    assert job.id == now.id
    assert job.attempts == 1
    assert await job_queue.fetch(ORDER_QUEUE) is None

    stats = await job_queue.stats(ORDER_QUEUE)
    assert (stats.waiting, stats.delayed, stats.active) == (0, 1, 1)

    await job_queue.ack(job)
    assert (await job_queue.stats(ORDER_QUEUE)).active == 0

@pytest.mark.asyncio
async def test_queues_are_independent(job_queue):
    await job_queue.enqueue(TOKEN_QUEUE, 'token-create', {'blockNumber': 1})

    assert await job_queue.fetch(ORDER_QUEUE) is None
    assert (await job_queue.fetch(TOKEN_QUEUE)).job_type == 'token-create'

@pytest.mark.asyncio
async def test_unknown_queue_is_rejected(job_queue):
    with pytest.raises(UnknownQueueError):
        await job_queue.enqueue('nft-queue', 'token-create', {})
    with pytest.raises(UnknownQueueError):
        await job_queue.stats('nft-queue')

@pytest.mark.asyncio
async def test_pause_and_resume(job_queue):
    await job_queue.enqueue(ORDER_QUEUE, 'order-create', {'blockNumber': 1})
    await job_queue.pause(ORDER_QUEUE)

    assert await job_queue.is_paused(ORDER_QUEUE)
    assert await job_queue.fetch(ORDER_QUEUE) is None
    assert (await job_queue.stats(ORDER_QUEUE)).paused

    await job_queue.resume(ORDER_QUEUE)
    assert not await job_queue.is_paused(ORDER_QUEUE)
    assert await job_queue.fetch(ORDER_QUEUE) is not None

@pytest.mark.asyncio
async def test_nack_redelivers_until_attempts_run_out(job_queue):
    await job_queue.enqueue(ORDER_QUEUE, 'order-create', {'blockNumber': 1})

    for attempt in range(1, 4):
        job = await job_queue.fetch(ORDER_QUEUE)
        assert job.attempts == attempt
        await job_queue.nack(job, f"failure {attempt}")

    assert await job_queue.fetch(ORDER_QUEUE) is None
    [dead] = await job_queue.dead_letters()
    assert dead.reason == FailureReason.MAX_ATTEMPTS_EXCEEDED
    assert dead.error == "failure 3"

@pytest.mark.asyncio
async def test_nack_waits_for_redelivery_delay():
    job_queue = MemoryJobQueue(max_delivery_attempts=5, redelivery_delay=0.02)
    await job_queue.enqueue(ORDER_QUEUE, 'order-create', {'blockNumber': 1})
    await job_queue.nack(await job_queue.fetch(ORDER_QUEUE), "boom")

    assert await job_queue.fetch(ORDER_QUEUE) is None
    await asyncio.sleep(0.05)
    job = await job_queue.fetch(ORDER_QUEUE)
    assert job.attempts == 2
    assert job.last_error == "boom"

@pytest.mark.asyncio
async def test_dead_letters_are_listed_newest_first_and_requeued(job_queue):
    for block_number in (1, 2, 3):
        await job_queue.enqueue(TOKEN_QUEUE, 'token-create', {'blockNumber': block_number})
        job = await job_queue.fetch(TOKEN_QUEUE)
        await job_queue.fail(job, FailureReason.MALFORMED_PAYLOAD, "bad")

    dead = await job_queue.dead_letters(TOKEN_QUEUE, limit=2)
    assert [d.payload['blockNumber'] for d in dead] == [3, 2]
    assert await job_queue.dead_letters(ORDER_QUEUE) == []

    job = await job_queue.requeue_dead_letter(dead[0].id)
    assert job.payload == {'blockNumber': 3}
    assert job.attempts == 0
    assert (await job_queue.stats(TOKEN_QUEUE)).dead == 2
    assert await job_queue.requeue_dead_letter(dead[0].id) is None
