"""Sale notifications derived from reconciled orders.

When an order is filled or its buyer becomes known, the seller receives a
``Token_Sold`` notification and the token's royalty owner a
``RoyaltyFee_Received`` one. Both are upserts keyed by
``(order_id, address, type)``, so repeating them is harmless and a buyer
that arrives after the fill is patched into the existing record.
"""

import logging
from datetime import datetime
from typing import List, Optional

from database import Store
from database.models import Notification, NotificationType, Order, Token, utc_now

logger = logging.getLogger(__name__)

def build_sale_notifications(order: Order, token: Token, date: Optional[datetime] = None) -> List[Notification]:
    """Build the notifications owed for a sold order.

    Args:
        order: The filled order
        token: The token the order listed
        date: Creation date for new notifications, defaults to now

    Returns:
        Token_Sold for the seller, then RoyaltyFee_Received for the royalty
        owner when the token has one
    """
    date = date or utc_now()

    sold_params = {
        'tokenName': token.name,
        'price': str(order.order_price),
    }
    if order.buyer:
        sold_params['buyer'] = order.buyer

    notifications = [
        Notification(
            order_id=order.order_id,
            address=order.seller,
            type=NotificationType.TOKEN_SOLD,
            date=date,
            params=sold_params
        )
    ]

    if token.royalty_owner:
        notifications.append(Notification(
            order_id=order.order_id,
            address=token.royalty_owner,
            type=NotificationType.ROYALTY_FEE_RECEIVED,
            date=date,
            params={
                'tokenName': token.name,
                'royaltyFee': token.royalty_fee,
            }
        ))

    return notifications

class NotificationGenerator:
    """Writes sale notifications to the store."""

    def __init__(self, store: Store) -> None:
        self.store = store

    async def on_order_sold(self, order_id: int) -> bool:
        """Upsert the sale notifications of an order.

        Returns:
            False when the order or its token is not in the store yet
        """
        order = await self.store.get_order(order_id)
        if order is None:
            logger.warning(f"Cannot notify sale of order {order_id}: order not found")
            return False

        token = await self.store.get_token(order.token_id)
        if token is None:
            logger.warning(
                f"Cannot notify sale of order {order_id}: token {order.token_id} not found"
            )
            return False

        for notification in build_sale_notifications(order, token):
            await self.store.upsert_notification(notification)
            logger.info(
                f"Notified {notification.address} of {notification.type.value} for order {order_id}"
            )
        return True

__all__ = ['NotificationGenerator', 'build_sale_notifications']
