"""Store interface used by the reconciliation engine.

Every mutation is either an upsert keyed by the entity identity or a
conditional update evaluated atomically by the backend. Callers never
read an entity, modify it and write it back.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, List, Optional

from .exceptions import StoreError
from .models import Notification, Order, Token

# Order columns the engine may write through update_order/update_order_fenced
ORDER_UPDATABLE_FIELDS = ('order_price', 'order_state', 'buyer')

class UpdateResult(str, Enum):
    """Outcome of a conditional or keyed update."""
    APPLIED = 'applied'
    STALE = 'stale'      # target exists but its fence is not older than the write
    MISSING = 'missing'  # no entity matches the key

class Store(ABC):
    """Persistence primitives for tokens, orders, notifications and listing counters."""

    @abstractmethod
    async def upsert_token(self, token: Token) -> None:
        """Insert or overwrite a token by token_id."""

    @abstractmethod
    async def get_token(self, token_id: str) -> Optional[Token]:
        ...

    @abstractmethod
    async def upsert_order(self, order: Order) -> None:
        """Insert an order, or merge a redelivered creation into an existing one.

        On insert every fence is taken from ``order.fences``. On conflict the
        descriptive columns are overwritten while each fenced field group only
        moves forward, and an existing state or buyer is preserved.
        """

    @abstractmethod
    async def get_order(self, order_id: int) -> Optional[Order]:
        ...

    @abstractmethod
    async def update_order_fenced(
        self,
        order_id: int,
        fence: str,
        block_number: int,
        fields: Dict[str, Any]
    ) -> UpdateResult:
        """Apply ``fields`` only if the order's ``fence`` is older than ``block_number``.

        On success the fence advances to ``block_number`` in the same atomic step.
        """

    @abstractmethod
    async def update_order(self, order_id: int, fields: Dict[str, Any]) -> UpdateResult:
        """Unconditionally set ``fields`` on an existing order."""

    @abstractmethod
    async def increment_listing(self, token_id: str, block_number: int) -> int:
        """Increment the (token_id, block_number) listing counter, creating it at 1."""

    @abstractmethod
    async def decrement_listing(self, token_id: str, block_number: int) -> bool:
        """Decrement the counter where it is positive. False if nothing matched."""

    @abstractmethod
    async def get_listing_count(self, token_id: str, block_number: int) -> int:
        ...

    @abstractmethod
    async def upsert_notification(self, notification: Notification) -> None:
        """Insert a notification, or merge its params into the existing one.

        ``date`` and ``read`` of an existing notification are left untouched, and
        a notification the user has read is not modified at all.
        """

    @abstractmethod
    async def get_notifications(
        self,
        order_id: Optional[int] = None,
        address: Optional[str] = None
    ) -> List[Notification]:
        ...

def check_order_fields(fields: Dict[str, Any]) -> None:
    """Reject writes to columns the engine does not own."""
    unknown = set(fields) - set(ORDER_UPDATABLE_FIELDS)
    if unknown:
        raise StoreError(f"Cannot update order fields: {', '.join(sorted(unknown))}")
