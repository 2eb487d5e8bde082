"""In-process store.

Selected with ``db_url = memory://``. State lives in dictionaries guarded by
an asyncio lock, which gives every operation the same atomicity the
PostgreSQL store gets from single-statement updates.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple

from .models import PRICE_FENCE, Notification, Order, Token
from .store import Store, UpdateResult, check_order_fields

logger = logging.getLogger(__name__)

class MemoryStore(Store):
    """Store backed by process memory."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self.tokens: Dict[str, Token] = {}
        self.orders: Dict[int, Order] = {}
        self.notifications: Dict[Tuple, Notification] = {}
        self.listings: Dict[Tuple[str, int], int] = {}

    async def upsert_token(self, token: Token) -> None:
        async with self._lock:
            self.tokens[token.token_id] = token

    async def get_token(self, token_id: str) -> Optional[Token]:
        return self.tokens.get(token_id)

    async def upsert_order(self, order: Order) -> None:
        async with self._lock:
            existing = self.orders.get(order.order_id)
            if existing is None:
                self.orders[order.order_id] = order
                return

            update = {
                'token_id': order.token_id,
                'seller': order.seller,
                'order_type': order.order_type,
                'create_time': order.create_time,
                'is_blind_box': order.is_blind_box,
            }
            fences = dict(existing.fences)
            for fence, block_number in order.fences.items():
                if fences.get(fence, -1) < block_number:
                    fences[fence] = block_number
                    if fence == PRICE_FENCE:
                        update['order_price'] = order.order_price
            update['fences'] = fences
            self.orders[order.order_id] = existing.model_copy(update=update)

    async def get_order(self, order_id: int) -> Optional[Order]:
        return self.orders.get(order_id)

    async def update_order_fenced(
        self,
        order_id: int,
        fence: str,
        block_number: int,
        fields: Dict[str, Any]
    ) -> UpdateResult:
        check_order_fields(fields)
        async with self._lock:
            existing = self.orders.get(order_id)
            if existing is None:
                return UpdateResult.MISSING
            if existing.fences.get(fence, -1) >= block_number:
                return UpdateResult.STALE
            fences = {**existing.fences, fence: block_number}
            self.orders[order_id] = existing.model_copy(update={**fields, 'fences': fences})
            return UpdateResult.APPLIED

    async def update_order(self, order_id: int, fields: Dict[str, Any]) -> UpdateResult:
        check_order_fields(fields)
        async with self._lock:
            existing = self.orders.get(order_id)
            if existing is None:
                return UpdateResult.MISSING
            self.orders[order_id] = existing.model_copy(update=fields)
            return UpdateResult.APPLIED

    async def increment_listing(self, token_id: str, block_number: int) -> int:
        async with self._lock:
            key = (token_id, block_number)
            self.listings[key] = self.listings.get(key, 0) + 1
            return self.listings[key]

    async def decrement_listing(self, token_id: str, block_number: int) -> bool:
        async with self._lock:
            key = (token_id, block_number)
            if self.listings.get(key, 0) <= 0:
                return False
            self.listings[key] -= 1
            return True

    async def get_listing_count(self, token_id: str, block_number: int) -> int:
        return self.listings.get((token_id, block_number), 0)

    async def upsert_notification(self, notification: Notification) -> None:
        async with self._lock:
            existing = self.notifications.get(notification.key)
            if existing is None:
                self.notifications[notification.key] = notification
                return
            # Read notifications are frozen
            if existing.read:
                return
            params = {**existing.params, **notification.params}
            self.notifications[notification.key] = existing.model_copy(update={'params': params})

    async def get_notifications(
        self,
        order_id: Optional[int] = None,
        address: Optional[str] = None
    ) -> List[Notification]:
        return [
            n for n in self.notifications.values()
            if (order_id is None or n.order_id == order_id)
            and (address is None or n.address == address)
        ]
