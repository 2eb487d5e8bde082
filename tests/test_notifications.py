"""Tests for sale notification building and deduplication."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from database.models import Notification, NotificationType, Order, Token
from notifications import build_sale_notifications

DATE = datetime(2024, 1, 1, tzinfo=timezone.utc)

def make_token(royalty_owner='0xArtist'):
    return Token(
        token_id='0xtoken1',
        block_number=5,
        create_time=1650000000,
        name='Sunset',
        royalty_owner=royalty_owner,
        royalty_fee=5
    )

def make_order(buyer=None):
    return Order(
        order_id=1,
        token_id='0xtoken1',
        seller='0xSeller',
        buyer=buyer,
        order_type='Sale',
        order_state='Filled',
        order_price=Decimal('150'),
        create_time=1650000100
    )

def test_sale_notifies_seller_and_royalty_owner():
    notifications = build_sale_notifications(make_order(buyer='0xBuyer'), make_token(), DATE)

    assert [(n.address, n.type) for n in notifications] == [
        ('0xSeller', NotificationType.TOKEN_SOLD),
        ('0xArtist', NotificationType.ROYALTY_FEE_RECEIVED),
    ]
    sold, royalty = notifications
    assert sold.params == {'tokenName': 'Sunset', 'price': '150', 'buyer': '0xBuyer'}
    assert royalty.params == {'tokenName': 'Sunset', 'royaltyFee': 5}
    assert all(n.date == DATE and not n.read for n in notifications)

def test_sale_without_royalty_owner_notifies_seller_only():
    notifications = build_sale_notifications(make_order(), make_token(royalty_owner=''), DATE)

    assert len(notifications) == 1
    assert notifications[0].type == NotificationType.TOKEN_SOLD
    assert 'buyer' not in notifications[0].params

@pytest.mark.asyncio
async def test_missing_order_or_token_is_reported(store, notifier):
    assert await notifier.on_order_sold(1) is False

    await store.upsert_order(make_order())
    assert await notifier.on_order_sold(1) is False
    assert await store.get_notifications() == []

@pytest.mark.asyncio
async def test_repeated_sale_does_not_duplicate_notifications(store, notifier):
    await store.upsert_token(make_token())
    await store.upsert_order(make_order(buyer='0xBuyer'))

    assert await notifier.on_order_sold(1) is True
    assert await notifier.on_order_sold(1) is True

    notifications = await store.get_notifications(order_id=1)
    assert len(notifications) == 2
    assert len(await store.get_notifications(address='0xSeller')) == 1

@pytest.mark.asyncio
async def test_buyer_learned_later_is_merged_into_notification(store, notifier):
    """Test that a fill notified before the buyer is known gains the buyer on the next pass."""
    await store.upsert_token(make_token())
    await store.upsert_order(make_order())
    await notifier.on_order_sold(1)

    await store.update_order(1, {'buyer': '0xBuyer'})
    await notifier.on_order_sold(1)

    [sold] = await store.get_notifications(address='0xSeller')
    assert sold.params['buyer'] == '0xBuyer'
    assert sold.params['price'] == '150'

@pytest.mark.asyncio
async def test_read_notification_is_not_rewritten(store):
    await store.upsert_notification(Notification(
        order_id=1,
        address='0xSeller',
        type=NotificationType.TOKEN_SOLD,
        date=DATE,
        params={'price': '100'},
        read=True
    ))

    await store.upsert_notification(Notification(
        order_id=1,
        address='0xSeller',
        type=NotificationType.TOKEN_SOLD,
        params={'price': '999', 'buyer': '0xBuyer'}
    ))

    [sold] = await store.get_notifications(order_id=1)
    assert sold.params == {'price': '100'}
    assert sold.read is True
    assert sold.date == DATE
