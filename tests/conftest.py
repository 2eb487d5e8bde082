"""Shared fixtures: in-memory store and queue, engine, consumers and wire payloads."""

import asyncio
import time

import pytest
import pytest_asyncio

from consumers import JobConsumer, RetryPolicy
from database import MemoryStore
from jobs import ORDER_QUEUE, TOKEN_QUEUE, MemoryJobQueue
from notifications import NotificationGenerator
from reconciler import ReconciliationEngine

MARKETPLACE = '0x02E8AD0687D583e2F6A7e5b82144025f30e26aA0'
SELLER = '0xSeller'
ROYALTY_OWNER = '0xArtist'

@pytest_asyncio.fixture
async def store():
    """Create and return an empty in-memory store."""
    return MemoryStore()

@pytest_asyncio.fixture
async def job_queue():
    """Create a queue that redelivers failed jobs immediately."""
    return MemoryJobQueue(max_delivery_attempts=3, redelivery_delay=0)

@pytest.fixture
def marketplace():
    return MARKETPLACE

@pytest_asyncio.fixture
async def engine(store, marketplace):
    return ReconciliationEngine(store, marketplace)

@pytest_asyncio.fixture
async def notifier(store):
    return NotificationGenerator(store)

@pytest.fixture
def retry_policy():
    """Short delays so retried jobs become due within a test."""
    return RetryPolicy(base_delay=0.02, factor=2.0, max_delay=0.05, max_attempts=5)

@pytest_asyncio.fixture
async def token_consumer(job_queue, engine, notifier, retry_policy):
    return JobConsumer(TOKEN_QUEUE, job_queue, engine, notifier, retry_policy, poll_interval=0.01)

@pytest_asyncio.fixture
async def order_consumer(job_queue, engine, notifier, retry_policy):
    return JobConsumer(ORDER_QUEUE, job_queue, engine, notifier, retry_policy, poll_interval=0.01)

@pytest.fixture
def drain():
    """Run consumers until none of their queues holds a waiting or delayed job."""
    async def _drain(*consumers, timeout: float = 2.0):
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            processed = 0
            for consumer in consumers:
                processed += await consumer.process_available()
            if processed:
                continue

            pending = 0
            for consumer in consumers:
                stats = await consumer.job_queue.stats(consumer.queue_name)
                pending += stats.waiting + stats.delayed
            if not pending:
                return
            await asyncio.sleep(0.005)
        raise AssertionError("Queues did not drain in time")

    return _drain

@pytest.fixture
def token_create_payload():
    return {
        'blockNumber': 5,
        'tokenId': '0xtoken1',
        'createTime': 1650000000,
        'category': 'art',
        'name': 'Sunset',
        'description': 'A sunset',
        'royaltyOwner': ROYALTY_OWNER,
        'royaltyFee': 5,
        'thumbnail': 'ipfs://thumb'
    }

@pytest.fixture
def order_create_payload():
    return {
        'blockNumber': 10,
        'tokenId': '0xtoken1',
        'orderId': 1,
        'seller': SELLER,
        'orderType': 'Sale',
        'orderState': 'Created',
        'orderPrice': '100',
        'createTime': 1650000100,
        'isBlindBox': False
    }
