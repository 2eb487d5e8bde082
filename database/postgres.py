"""PostgreSQL/CockroachDB store.

Conditional updates are single statements whose WHERE clause carries the
fence comparison, so concurrent consumers are linearized by the database.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from asyncpg.pool import Pool

from .models import ORDER_FENCES, PRICE_FENCE, Notification, Order, Token
from .store import Store, UpdateResult, check_order_fields

logger = logging.getLogger(__name__)

def _affected_rows(status: str) -> int:
    """Row count from a command status such as 'UPDATE 1'."""
    try:
        return int(status.split()[-1])
    except (AttributeError, IndexError, ValueError):
        return 0

def _sql_value(value: Any) -> Any:
    return value.value if hasattr(value, 'value') else value

def _token_from_row(row) -> Token:
    return Token(
        token_id=row['token_id'],
        block_number=row['block_number'],
        create_time=row['create_time'],
        category=row['category'] or '',
        name=row['name'] or '',
        description=row['description'] or '',
        royalty_owner=row['royalty_owner'] or '',
        royalty_fee=row['royalty_fee'] or 0,
        thumbnail=row['thumbnail'] or ''
    )

def _order_from_row(row) -> Order:
    fences = row['fences']
    if isinstance(fences, str):
        fences = json.loads(fences)
    return Order(
        order_id=row['order_id'],
        token_id=row['token_id'],
        seller=row['seller'],
        buyer=row['buyer'],
        order_type=row['order_type'],
        order_state=row['order_state'],
        order_price=row['order_price'],
        create_time=row['create_time'],
        is_blind_box=row['is_blind_box'],
        fences={key: int(value) for key, value in (fences or {}).items()}
    )

def _notification_from_row(row) -> Notification:
    params = row['params']
    if isinstance(params, str):
        params = json.loads(params)
    return Notification(
        order_id=row['order_id'],
        address=row['address'],
        type=row['type'],
        date=row['date'],
        params=params or {},
        read=row['read']
    )

class PostgresStore(Store):
    """Store backed by an asyncpg connection pool."""

    def __init__(self, pool: Pool) -> None:
        self.pool = pool

    async def upsert_token(self, token: Token) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                '''
                INSERT INTO tokens (
                    token_id, block_number, create_time, category, name,
                    description, royalty_owner, royalty_fee, thumbnail
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                ON CONFLICT (token_id) DO UPDATE SET
                    block_number = EXCLUDED.block_number,
                    create_time = EXCLUDED.create_time,
                    category = EXCLUDED.category,
                    name = EXCLUDED.name,
                    description = EXCLUDED.description,
                    royalty_owner = EXCLUDED.royalty_owner,
                    royalty_fee = EXCLUDED.royalty_fee,
                    thumbnail = EXCLUDED.thumbnail,
                    updated_at = now()
                ''',
                token.token_id,
                token.block_number,
                token.create_time,
                token.category,
                token.name,
                token.description,
                token.royalty_owner,
                token.royalty_fee,
                token.thumbnail
            )

    async def get_token(self, token_id: str) -> Optional[Token]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow('SELECT * FROM tokens WHERE token_id = $1', token_id)
        return _token_from_row(row) if row else None

    async def upsert_order(self, order: Order) -> None:
        # Each fence only moves forward; the price follows its fence
        merged_fences = ', '.join(
            f"'{fence}', GREATEST("
            f"COALESCE((orders.fences->>'{fence}')::INT8, -1), "
            f"COALESCE((EXCLUDED.fences->>'{fence}')::INT8, -1))"
            for fence in ORDER_FENCES
        )
        async with self.pool.acquire() as conn:
            await conn.execute(
                f'''
                INSERT INTO orders (
                    order_id, token_id, seller, buyer, order_type, order_state,
                    order_price, create_time, is_blind_box, fences
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10::JSONB)
                ON CONFLICT (order_id) DO UPDATE SET
                    token_id = EXCLUDED.token_id,
                    seller = EXCLUDED.seller,
                    order_type = EXCLUDED.order_type,
                    create_time = EXCLUDED.create_time,
                    is_blind_box = EXCLUDED.is_blind_box,
                    order_price = CASE
                        WHEN COALESCE((orders.fences->>'{PRICE_FENCE}')::INT8, -1)
                            < COALESCE((EXCLUDED.fences->>'{PRICE_FENCE}')::INT8, -1)
                        THEN EXCLUDED.order_price
                        ELSE orders.order_price
                    END,
                    fences = orders.fences || jsonb_build_object({merged_fences}),
                    updated_at = now()
                ''',
                order.order_id,
                order.token_id,
                order.seller,
                order.buyer,
                order.order_type.value,
                order.order_state.value,
                order.order_price,
                order.create_time,
                order.is_blind_box,
                json.dumps(order.fences)
            )

    async def get_order(self, order_id: int) -> Optional[Order]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow('SELECT * FROM orders WHERE order_id = $1', order_id)
        return _order_from_row(row) if row else None

    async def update_order_fenced(
        self,
        order_id: int,
        fence: str,
        block_number: int,
        fields: Dict[str, Any]
    ) -> UpdateResult:
        check_order_fields(fields)
        names = list(fields)
        assignments = ''.join(f'{name} = ${i + 4}, ' for i, name in enumerate(names))
        async with self.pool.acquire() as conn:
            status = await conn.execute(
                f'''
                UPDATE orders
                SET
                    {assignments}fences = jsonb_set(fences, ARRAY[$2::TEXT], to_jsonb($3::INT8)),
                    updated_at = now()
                WHERE order_id = $1
                AND COALESCE((fences->>$2::TEXT)::INT8, -1) < $3
                ''',
                order_id,
                fence,
                block_number,
                *(_sql_value(fields[name]) for name in names)
            )
            if _affected_rows(status):
                return UpdateResult.APPLIED

            exists = await conn.fetchval(
                'SELECT EXISTS(SELECT 1 FROM orders WHERE order_id = $1)',
                order_id
            )
        return UpdateResult.STALE if exists else UpdateResult.MISSING

    async def update_order(self, order_id: int, fields: Dict[str, Any]) -> UpdateResult:
        check_order_fields(fields)
        names = list(fields)
        assignments = ''.join(f'{name} = ${i + 2}, ' for i, name in enumerate(names))
        async with self.pool.acquire() as conn:
            status = await conn.execute(
                f'''
                UPDATE orders
                SET {assignments}updated_at = now()
                WHERE order_id = $1
                ''',
                order_id,
                *(_sql_value(fields[name]) for name in names)
            )
        return UpdateResult.APPLIED if _affected_rows(status) else UpdateResult.MISSING

    async def increment_listing(self, token_id: str, block_number: int) -> int:
        async with self.pool.acquire() as conn:
            return await conn.fetchval(
                '''
                INSERT INTO token_listings (token_id, block_number, count)
                VALUES ($1, $2, 1)
                ON CONFLICT (token_id, block_number) DO UPDATE SET
                    count = token_listings.count + 1,
                    updated_at = now()
                RETURNING count
                ''',
                token_id,
                block_number
            )

    async def decrement_listing(self, token_id: str, block_number: int) -> bool:
        async with self.pool.acquire() as conn:
            status = await conn.execute(
                '''
                UPDATE token_listings
                SET
                    count = count - 1,
                    updated_at = now()
                WHERE token_id = $1
                AND block_number = $2
                AND count > 0
                ''',
                token_id,
                block_number
            )
        return _affected_rows(status) > 0

    async def get_listing_count(self, token_id: str, block_number: int) -> int:
        async with self.pool.acquire() as conn:
            count = await conn.fetchval(
                'SELECT count FROM token_listings WHERE token_id = $1 AND block_number = $2',
                token_id,
                block_number
            )
        return count or 0

    async def upsert_notification(self, notification: Notification) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                '''
                INSERT INTO notifications (order_id, address, type, date, params)
                VALUES ($1, $2, $3, $4, $5::JSONB)
                ON CONFLICT (order_id, address, type) DO UPDATE SET
                    params = notifications.params || EXCLUDED.params
                WHERE NOT notifications.read
                ''',
                notification.order_id,
                notification.address,
                notification.type.value,
                notification.date,
                json.dumps(notification.params)
            )

    async def get_notifications(
        self,
        order_id: Optional[int] = None,
        address: Optional[str] = None
    ) -> List[Notification]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT order_id, address, type, date, params, read
                FROM notifications
                WHERE ($1::INT8 IS NULL OR order_id = $1)
                AND ($2::TEXT IS NULL OR address = $2)
                ORDER BY date DESC
                ''',
                order_id,
                address
            )
        return [_notification_from_row(row) for row in rows]
