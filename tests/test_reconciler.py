"""Tests for the reconciliation engine's handlers."""

from decimal import Decimal

import pytest

from database import MemoryStore
from database.models import BUYER_FENCE, PRICE_FENCE, OrderState
from jobs import (
    JobType,
    OrderCreatePayload,
    TokenCreatePayload,
    TokenOnOffSalePayload,
    UpdateOrderBuyerPayload,
    UpdateOrderPricePayload,
    UpdateOrderStatePayload,
)
from reconciler import NotifyOrderSold, Outcome, ReconciliationEngine, RetryLater

def order_created(block_number=10, price='100', order_id=1):
    return OrderCreatePayload(
        block_number=block_number,
        token_id='0xtoken1',
        order_id=order_id,
        seller='0xSeller',
        order_type='Sale',
        order_state='Created',
        order_price=Decimal(price),
        create_time=1650000100
    )

def price_update(block_number, price, order_id=1):
    return UpdateOrderPricePayload(block_number=block_number, order_id=order_id, order_price=Decimal(price))

def buyer_update(block_number, buyer, order_id=1):
    return UpdateOrderBuyerPayload(block_number=block_number, order_id=order_id, buyer=buyer)

def transfer(from_address, to_address, block_number=20):
    return TokenOnOffSalePayload(
        block_number=block_number,
        token_id='0xtoken1',
        from_address=from_address,
        to_address=to_address
    )

@pytest.mark.asyncio
async def test_every_job_type_has_a_handler(engine):
    """Test that dispatch covers the whole job type enum."""
    assert set(engine._handlers) == set(JobType)

@pytest.mark.asyncio
async def test_token_create_is_idempotent(engine, store):
    payload = TokenCreatePayload(
        block_number=5,
        token_id='0xtoken1',
        create_time=1650000000,
        category='art',
        name='Sunset',
        description='A sunset',
        royalty_owner='0xArtist',
        royalty_fee=5,
        thumbnail='ipfs://thumb'
    )

    first = await engine.handle(JobType.TOKEN_CREATE, payload)
    snapshot = dict(store.tokens)
    second = await engine.handle(JobType.TOKEN_CREATE, payload)

    assert first.outcome == second.outcome == Outcome.APPLIED
    assert store.tokens == snapshot
    assert store.tokens['0xtoken1'].name == 'Sunset'

@pytest.mark.asyncio
async def test_order_create_sets_both_fences(engine, store):
    result = await engine.order_create(order_created(block_number=10))

    assert result.outcome == Outcome.APPLIED
    order = store.orders[1]
    assert order.fences == {PRICE_FENCE: 10, BUYER_FENCE: 10}
    assert order.order_state == OrderState.CREATED
    assert order.buyer is None

@pytest.mark.asyncio
async def test_price_updates_are_fenced_by_block(engine, store):
    """Create at block 10 for 100, drop a price from block 9, apply 150 from block 11."""
    await engine.order_create(order_created(block_number=10, price='100'))

    stale = await engine.update_order_price(price_update(9, '90'))
    assert stale.outcome == Outcome.STALE
    assert stale.effects == ()
    assert store.orders[1].order_price == Decimal('100')

    applied = await engine.update_order_price(price_update(11, '150'))
    assert applied.outcome == Outcome.APPLIED
    assert store.orders[1].order_price == Decimal('150')
    assert store.orders[1].block_number_for_price == 11

@pytest.mark.asyncio
async def test_price_updates_converge_in_any_order(marketplace):
    """Test that delivery order of price updates does not change the final price."""
    results = []
    for blocks in ([11, 12], [12, 11]):
        store = MemoryStore()
        engine = ReconciliationEngine(store, marketplace)
        await engine.order_create(order_created(block_number=10))
        for block_number in blocks:
            await engine.update_order_price(price_update(block_number, str(block_number * 10)))
        results.append(store.orders[1])

    assert results[0] == results[1]
    assert results[0].order_price == Decimal('120')
    assert results[0].block_number_for_price == 12

@pytest.mark.asyncio
async def test_price_and_buyer_are_fenced_independently(engine, store):
    await engine.order_create(order_created(block_number=10))
    await engine.update_order_price(price_update(15, '200'))

    result = await engine.update_order_buyer(buyer_update(12, '0xBuyer'))

    assert result.outcome == Outcome.APPLIED
    order = store.orders[1]
    assert order.buyer == '0xBuyer'
    assert order.fences == {PRICE_FENCE: 15, BUYER_FENCE: 12}

@pytest.mark.asyncio
async def test_update_of_missing_order_asks_for_retry(engine, store):
    for result in (
        await engine.update_order_price(price_update(11, '150', order_id=99)),
        await engine.update_order_buyer(buyer_update(11, '0xBuyer', order_id=99)),
        await engine.update_order_state(
            UpdateOrderStatePayload(block_number=11, order_id=99, order_state='Filled')
        ),
    ):
        assert result.outcome == Outcome.MISSING
        assert len(result.effects) == 1
        assert isinstance(result.effects[0], RetryLater)
    assert store.orders == {}

@pytest.mark.asyncio
async def test_order_create_redelivery_keeps_newer_writes(engine, store):
    """Test that a redelivered create does not roll back later price, buyer or state."""
    await engine.order_create(order_created(block_number=10, price='100'))
    await engine.update_order_price(price_update(11, '150'))
    await engine.update_order_buyer(buyer_update(12, '0xBuyer'))
    await engine.update_order_state(
        UpdateOrderStatePayload(block_number=12, order_id=1, order_state='Filled')
    )

    await engine.order_create(order_created(block_number=10, price='100'))

    order = store.orders[1]
    assert order.order_price == Decimal('150')
    assert order.buyer == '0xBuyer'
    assert order.order_state == OrderState.FILLED
    assert order.fences == {PRICE_FENCE: 11, BUYER_FENCE: 12}

@pytest.mark.asyncio
async def test_filled_state_requests_notifications(engine):
    await engine.order_create(order_created())

    filled = await engine.update_order_state(
        UpdateOrderStatePayload(block_number=12, order_id=1, order_state='Filled')
    )
    cancelled = await engine.update_order_state(
        UpdateOrderStatePayload(block_number=13, order_id=1, order_state='Cancelled')
    )

    assert filled.effects == (NotifyOrderSold(order_id=1),)
    assert cancelled.outcome == Outcome.APPLIED
    assert cancelled.effects == ()

@pytest.mark.asyncio
async def test_buyer_update_requests_notifications(engine):
    await engine.order_create(order_created())

    result = await engine.update_order_buyer(buyer_update(12, '0xBuyer'))

    assert result.outcome == Outcome.APPLIED
    assert result.effects == (NotifyOrderSold(order_id=1),)

@pytest.mark.asyncio
async def test_duplicate_buyer_update_notifies_again(engine, store):
    """Test that a redelivered buyer write still owes its notifications."""
    await engine.order_create(order_created())
    await engine.update_order_buyer(buyer_update(12, '0xBuyer'))

    duplicate = await engine.update_order_buyer(buyer_update(12, '0xBuyer'))
    older = await engine.update_order_buyer(buyer_update(11, '0xSomeoneElse'))

    assert duplicate.outcome == Outcome.STALE
    assert duplicate.effects == (NotifyOrderSold(order_id=1),)
    assert older.outcome == Outcome.STALE
    assert older.effects == ()
    assert store.orders[1].buyer == '0xBuyer'

@pytest.mark.asyncio
async def test_transfer_to_marketplace_lists_token(engine, store, marketplace):
    # Address comparison ignores case
    result = await engine.token_on_off_sale(transfer('0xSeller', marketplace.lower()))

    assert result.outcome == Outcome.APPLIED
    assert await store.get_listing_count('0xtoken1', 20) == 1

@pytest.mark.asyncio
async def test_transfer_unrelated_to_marketplace_is_ignored(engine, store):
    result = await engine.token_on_off_sale(transfer('0xSeller', '0xBuyer'))

    assert result.outcome == Outcome.IGNORED
    assert store.listings == {}

@pytest.mark.asyncio
async def test_marketplace_self_transfer_leaves_listing_untouched(engine, store, marketplace):
    result = await engine.token_on_off_sale(transfer(marketplace, marketplace.lower()))

    assert result.outcome == Outcome.IGNORED
    assert result.effects == ()
    assert store.listings == {}

@pytest.mark.asyncio
async def test_delist_before_list_waits_for_listing(engine, store, marketplace):
    """Test that the listing counter never goes negative when legs arrive out of order."""
    early = await engine.token_on_off_sale(transfer(marketplace, '0xBuyer'))
    assert early.outcome == Outcome.MISSING
    assert isinstance(early.effects[0], RetryLater)
    assert await store.get_listing_count('0xtoken1', 20) == 0

    await engine.token_on_off_sale(transfer('0xSeller', marketplace))
    retried = await engine.token_on_off_sale(transfer(marketplace, '0xBuyer'))

    assert retried.outcome == Outcome.APPLIED
    assert await store.get_listing_count('0xtoken1', 20) == 0
