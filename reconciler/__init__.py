"""Reconciliation engine.

Folds chain events into the read model. Each handler performs at most one
store mutation (an upsert by identity or a fenced conditional update) and
returns a ``HandlerResult`` describing what happened plus the effects the
caller must run after the mutation:

- ``RetryLater``: the event references an entity that does not exist yet;
  re-enqueue the identical job after a delay.
- ``NotifyOrderSold``: derive the sale notifications for an order.

Out-of-order delivery of the same kind of update is resolved by fencing:
a write carries the block number it was emitted at and only applies when
that block is newer than the one recorded for the field group it touches.
"""

import logging
from enum import Enum
from typing import Awaitable, Callable, Dict, Tuple, Union

from pydantic import BaseModel, ConfigDict

from database import Store, UpdateResult
from database.models import BUYER_FENCE, PRICE_FENCE, Order, OrderState, Token
from jobs import (
    JobPayload,
    JobType,
    OrderCreatePayload,
    TokenCreatePayload,
    TokenOnOffSalePayload,
    UpdateOrderBuyerPayload,
    UpdateOrderPricePayload,
    UpdateOrderStatePayload,
)

logger = logging.getLogger(__name__)

class Outcome(str, Enum):
    APPLIED = 'applied'
    STALE = 'stale'
    MISSING = 'missing'
    IGNORED = 'ignored'

class RetryLater(BaseModel):
    model_config = ConfigDict(frozen=True)

    reason: str

class NotifyOrderSold(BaseModel):
    model_config = ConfigDict(frozen=True)

    order_id: int

Effect = Union[RetryLater, NotifyOrderSold]

class HandlerResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    outcome: Outcome
    effects: Tuple[Effect, ...] = ()

def missing(reason: str) -> HandlerResult:
    return HandlerResult(outcome=Outcome.MISSING, effects=(RetryLater(reason=reason),))

Handler = Callable[[JobPayload], Awaitable[HandlerResult]]

class ReconciliationEngine:
    """Applies chain events to a Store.

    Args:
        store: Read model store
        marketplace_address: Marketplace contract address; transfers to it
            list a token and transfers from it delist one
    """

    def __init__(self, store: Store, marketplace_address: str) -> None:
        self.store = store
        self.marketplace_address = marketplace_address.lower()
        self._handlers: Dict[JobType, Handler] = {
            JobType.TOKEN_CREATE: self.token_create,
            JobType.TOKEN_ON_OFF_SALE: self.token_on_off_sale,
            JobType.ORDER_CREATE: self.order_create,
            JobType.UPDATE_ORDER_PRICE: self.update_order_price,
            JobType.UPDATE_ORDER_STATE: self.update_order_state,
            JobType.UPDATE_ORDER_BUYER: self.update_order_buyer,
        }
        unhandled = [job_type.value for job_type in JobType if job_type not in self._handlers]
        if unhandled:
            raise RuntimeError(f"No handler for job types: {', '.join(unhandled)}")

    async def handle(self, job_type: JobType, payload: JobPayload) -> HandlerResult:
        """Dispatch a parsed job to its handler."""
        return await self._handlers[job_type](payload)

    async def token_create(self, payload: TokenCreatePayload) -> HandlerResult:
        # Metadata events are emitted once per token, a later one simply overwrites
        await self.store.upsert_token(Token(
            token_id=payload.token_id,
            block_number=payload.block_number,
            create_time=payload.create_time,
            category=payload.category,
            name=payload.name,
            description=payload.description,
            royalty_owner=payload.royalty_owner,
            royalty_fee=payload.royalty_fee,
            thumbnail=payload.thumbnail
        ))
        logger.info(f"Upserted token {payload.token_id} at block {payload.block_number}")
        return HandlerResult(outcome=Outcome.APPLIED)

    async def order_create(self, payload: OrderCreatePayload) -> HandlerResult:
        await self.store.upsert_order(Order(
            order_id=payload.order_id,
            token_id=payload.token_id,
            seller=payload.seller,
            order_type=payload.order_type,
            order_state=payload.order_state,
            order_price=payload.order_price,
            create_time=payload.create_time,
            is_blind_box=payload.is_blind_box,
            fences={PRICE_FENCE: payload.block_number, BUYER_FENCE: payload.block_number}
        ))
        logger.info(
            f"Upserted order {payload.order_id} for token {payload.token_id} "
            f"at block {payload.block_number}"
        )
        return HandlerResult(outcome=Outcome.APPLIED)

    async def update_order_price(self, payload: UpdateOrderPricePayload) -> HandlerResult:
        result = await self.store.update_order_fenced(
            payload.order_id,
            PRICE_FENCE,
            payload.block_number,
            {'order_price': payload.order_price}
        )
        if result == UpdateResult.MISSING:
            return missing(f"order {payload.order_id} not found")
        if result == UpdateResult.STALE:
            logger.debug(
                f"Dropped stale price {payload.order_price} for order {payload.order_id} "
                f"at block {payload.block_number}"
            )
            return HandlerResult(outcome=Outcome.STALE)

        logger.info(
            f"Order {payload.order_id} price set to {payload.order_price} at block {payload.block_number}"
        )
        return HandlerResult(outcome=Outcome.APPLIED)

    async def update_order_state(self, payload: UpdateOrderStatePayload) -> HandlerResult:
        # State only moves forward on chain, so it is not fenced
        result = await self.store.update_order(payload.order_id, {'order_state': payload.order_state})
        if result == UpdateResult.MISSING:
            return missing(f"order {payload.order_id} not found")

        logger.info(
            f"Order {payload.order_id} state set to {payload.order_state.value} "
            f"at block {payload.block_number}"
        )
        effects = ()
        if payload.order_state == OrderState.FILLED:
            effects = (NotifyOrderSold(order_id=payload.order_id),)
        return HandlerResult(outcome=Outcome.APPLIED, effects=effects)

    async def update_order_buyer(self, payload: UpdateOrderBuyerPayload) -> HandlerResult:
        result = await self.store.update_order_fenced(
            payload.order_id,
            BUYER_FENCE,
            payload.block_number,
            {'buyer': payload.buyer}
        )
        if result == UpdateResult.MISSING:
            return missing(f"order {payload.order_id} not found")
        notify = (NotifyOrderSold(order_id=payload.order_id),)

        if result == UpdateResult.STALE:
            # A redelivery of the write that is already applied still owes its
            # notifications if the previous delivery died before sending them
            order = await self.store.get_order(payload.order_id)
            if order is not None and order.buyer == payload.buyer:
                logger.debug(f"Buyer of order {payload.order_id} already {payload.buyer}")
                return HandlerResult(outcome=Outcome.STALE, effects=notify)
            logger.debug(
                f"Dropped stale buyer {payload.buyer} for order {payload.order_id} "
                f"at block {payload.block_number}"
            )
            return HandlerResult(outcome=Outcome.STALE)

        logger.info(
            f"Order {payload.order_id} buyer set to {payload.buyer} at block {payload.block_number}"
        )
        return HandlerResult(outcome=Outcome.APPLIED, effects=notify)

    async def token_on_off_sale(self, payload: TokenOnOffSalePayload) -> HandlerResult:
        to_market = payload.to_address.lower() == self.marketplace_address
        from_market = payload.from_address.lower() == self.marketplace_address
        if not (to_market or from_market):
            logger.debug(
                f"Transfer of token {payload.token_id} at block {payload.block_number} "
                "does not involve the marketplace"
            )
            return HandlerResult(outcome=Outcome.IGNORED)

        if to_market and from_market:
            logger.debug(
                f"Marketplace transferred token {payload.token_id} to itself "
                f"at block {payload.block_number}, listing unchanged"
            )
            return HandlerResult(outcome=Outcome.IGNORED)

        if to_market:
            count = await self.store.increment_listing(payload.token_id, payload.block_number)
            logger.info(
                f"Token {payload.token_id} listed at block {payload.block_number} (count {count})"
            )

        if from_market:
            # The listing leg of the same transfer may not have been applied yet
            if not await self.store.decrement_listing(payload.token_id, payload.block_number):
                return missing(
                    f"no listing of token {payload.token_id} at block {payload.block_number}"
                )
            logger.info(f"Token {payload.token_id} delisted at block {payload.block_number}")

        return HandlerResult(outcome=Outcome.APPLIED)

__all__ = [
    'Effect',
    'HandlerResult',
    'NotifyOrderSold',
    'Outcome',
    'ReconciliationEngine',
    'RetryLater',
]
