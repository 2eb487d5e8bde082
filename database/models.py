"""Read model entities maintained by the reconciler."""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

# Field groups that are fenced independently on an order
PRICE_FENCE = 'price'
BUYER_FENCE = 'buyer'
ORDER_FENCES = (PRICE_FENCE, BUYER_FENCE)

class OrderType(str, Enum):
    SALE = 'Sale'
    AUCTION = 'Auction'

class OrderState(str, Enum):
    CREATED = 'Created'
    FILLED = 'Filled'
    CANCELLED = 'Cancelled'
    TAKEN_DOWN = 'TakenDown'

class NotificationType(str, Enum):
    TOKEN_SOLD = 'Token_Sold'
    ROYALTY_FEE_RECEIVED = 'RoyaltyFee_Received'

class Token(BaseModel):
    """A minted token and its descriptive metadata."""
    model_config = ConfigDict(frozen=True)

    token_id: str
    block_number: int
    create_time: int
    category: str = ''
    name: str = ''
    description: str = ''
    royalty_owner: str = ''
    royalty_fee: int = 0
    thumbnail: str = ''

class Order(BaseModel):
    """A sale or auction listing of a token.

    ``fences`` maps a field group name (``price``, ``buyer``) to the block
    number of the last write applied to that group.
    """
    model_config = ConfigDict(frozen=True)

    order_id: int
    token_id: str
    seller: str
    buyer: Optional[str] = None
    order_type: OrderType
    order_state: OrderState
    order_price: Decimal
    create_time: int
    is_blind_box: bool = False
    fences: Dict[str, int] = Field(default_factory=dict)

    @property
    def block_number_for_price(self) -> Optional[int]:
        return self.fences.get(PRICE_FENCE)

    @property
    def block_number_for_buyer(self) -> Optional[int]:
        return self.fences.get(BUYER_FENCE)

def utc_now() -> datetime:
    return datetime.now(timezone.utc)

class Notification(BaseModel):
    """A user-facing notification, unique per (order_id, address, type)."""
    model_config = ConfigDict(frozen=True)

    order_id: int
    address: str
    type: NotificationType
    date: datetime = Field(default_factory=utc_now)
    params: Dict[str, Any] = Field(default_factory=dict)
    read: bool = False

    @property
    def key(self):
        return (self.order_id, self.address, self.type)
