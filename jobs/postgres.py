"""Durable job queue stored in PostgreSQL/CockroachDB.

Workers lease jobs with ``FOR UPDATE SKIP LOCKED`` and a visibility
timeout; a job whose worker died becomes visible again once the lease
expires, which is what makes delivery at-least-once.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from asyncpg.pool import Pool

from .payloads import DeadLetter, FailureReason, Job, QueueStats, check_queue
from .queue import JobQueue

logger = logging.getLogger(__name__)

JOB_COLUMNS = 'id, queue, job_type, payload, attempts, retries, run_at, last_error'

def _load_json(value: Any) -> Dict[str, Any]:
    return json.loads(value) if isinstance(value, str) else value

def _job_from_row(row) -> Job:
    return Job(
        id=str(row['id']),
        queue=row['queue'],
        job_type=row['job_type'],
        payload=_load_json(row['payload']),
        attempts=row['attempts'],
        retries=row['retries'],
        run_at=row['run_at'],
        last_error=row['last_error']
    )

def _dead_letter_from_row(row) -> DeadLetter:
    return DeadLetter(
        id=str(row['id']),
        queue=row['queue'],
        job_type=row['job_type'],
        payload=_load_json(row['payload']),
        attempts=row['attempts'],
        retries=row['retries'],
        reason=row['reason'],
        error=row['error'],
        failed_at=row['failed_at']
    )

class PostgresJobQueue(JobQueue):
    """Job queue backed by the ``jobs``, ``dead_letters`` and ``queue_state`` tables."""

    def __init__(
        self,
        pool: Pool,
        max_delivery_attempts: int = 5,
        redelivery_delay: float = 5.0,
        visibility_timeout: float = 30.0
    ) -> None:
        super().__init__(max_delivery_attempts, redelivery_delay)
        self.pool = pool
        self.visibility_timeout = visibility_timeout

    async def enqueue(
        self,
        queue_name: str,
        job_type: str,
        payload: Dict[str, Any],
        delay: float = 0.0,
        retries: int = 0
    ) -> Job:
        check_queue(queue_name)
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f'''
                INSERT INTO jobs (queue, job_type, payload, retries, run_at)
                VALUES ($1, $2, $3::JSONB, $4, now() + $5::FLOAT8 * INTERVAL '1 second')
                RETURNING {JOB_COLUMNS}
                ''',
                queue_name,
                job_type,
                json.dumps(payload),
                retries,
                delay
            )
        job = _job_from_row(row)
        logger.debug(f"Enqueued job {job.id} [{job_type}] on {queue_name} with delay {delay}s")
        return job

    async def fetch(self, queue_name: str) -> Optional[Job]:
        check_queue(queue_name)
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f'''
                UPDATE jobs
                SET
                    attempts = attempts + 1,
                    locked_until = now() + $2::FLOAT8 * INTERVAL '1 second'
                WHERE id = (
                    SELECT id
                    FROM jobs
                    WHERE queue = $1
                    AND run_at <= now()
                    AND (locked_until IS NULL OR locked_until < now())
                    AND NOT EXISTS (
                        SELECT 1 FROM queue_state qs
                        WHERE qs.queue = $1 AND qs.paused
                    )
                    ORDER BY run_at
                    LIMIT 1
                    FOR UPDATE SKIP LOCKED
                )
                RETURNING {JOB_COLUMNS}
                ''',
                queue_name,
                self.visibility_timeout
            )
        return _job_from_row(row) if row else None

    async def ack(self, job: Job) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute('DELETE FROM jobs WHERE id = $1::UUID', job.id)

    async def _move_to_dead_letters(self, conn, job: Job, reason: FailureReason, error: Optional[str]) -> DeadLetter:
        async with conn.transaction():
            row = await conn.fetchrow(
                '''
                INSERT INTO dead_letters (
                    id, queue, job_type, payload, attempts, retries, reason, error
                )
                VALUES ($1::UUID, $2, $3, $4::JSONB, $5, $6, $7, $8)
                ON CONFLICT (id) DO UPDATE SET
                    reason = EXCLUDED.reason,
                    error = EXCLUDED.error,
                    failed_at = now()
                RETURNING *
                ''',
                job.id,
                job.queue,
                job.job_type,
                json.dumps(job.payload),
                job.attempts,
                job.retries,
                reason.value,
                error
            )
            await conn.execute('DELETE FROM jobs WHERE id = $1::UUID', job.id)
        return _dead_letter_from_row(row)

    async def nack(self, job: Job, error: str) -> None:
        async with self.pool.acquire() as conn:
            if job.attempts >= self.max_delivery_attempts:
                await self._move_to_dead_letters(conn, job, FailureReason.MAX_ATTEMPTS_EXCEEDED, error)
                logger.error(
                    f"Job {job.id} [{job.job_type}] dead-lettered after {job.attempts} attempts: {error}"
                )
                return

            await conn.execute(
                '''
                UPDATE jobs
                SET
                    locked_until = NULL,
                    last_error = $2,
                    run_at = now() + $3::FLOAT8 * INTERVAL '1 second'
                WHERE id = $1::UUID
                ''',
                job.id,
                error,
                self.redelivery_delay
            )

    async def fail(self, job: Job, reason: FailureReason, error: Optional[str] = None) -> DeadLetter:
        async with self.pool.acquire() as conn:
            return await self._move_to_dead_letters(conn, job, reason, error)

    async def _set_paused(self, queue_name: str, paused: bool) -> None:
        check_queue(queue_name)
        async with self.pool.acquire() as conn:
            await conn.execute(
                '''
                INSERT INTO queue_state (queue, paused)
                VALUES ($1, $2)
                ON CONFLICT (queue) DO UPDATE SET
                    paused = EXCLUDED.paused,
                    updated_at = now()
                ''',
                queue_name,
                paused
            )

    async def pause(self, queue_name: str) -> None:
        await self._set_paused(queue_name, True)

    async def resume(self, queue_name: str) -> None:
        await self._set_paused(queue_name, False)

    async def is_paused(self, queue_name: str) -> bool:
        check_queue(queue_name)
        async with self.pool.acquire() as conn:
            paused = await conn.fetchval(
                'SELECT paused FROM queue_state WHERE queue = $1',
                queue_name
            )
        return bool(paused)

    async def stats(self, queue_name: str) -> QueueStats:
        check_queue(queue_name)
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                '''
                SELECT
                    count(*) FILTER (
                        WHERE run_at <= now()
                        AND (locked_until IS NULL OR locked_until < now())
                    ) AS waiting,
                    count(*) FILTER (
                        WHERE run_at > now()
                        AND (locked_until IS NULL OR locked_until < now())
                    ) AS delayed,
                    count(*) FILTER (WHERE locked_until >= now()) AS active,
                    (SELECT count(*) FROM dead_letters WHERE queue = $1) AS dead,
                    COALESCE((SELECT paused FROM queue_state WHERE queue = $1), false) AS paused
                FROM jobs
                WHERE queue = $1
                ''',
                queue_name
            )
        return QueueStats(queue=queue_name, **dict(row))

    async def dead_letters(self, queue_name: Optional[str] = None, limit: int = 100) -> List[DeadLetter]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT *
                FROM dead_letters
                WHERE ($1::TEXT IS NULL OR queue = $1)
                ORDER BY failed_at DESC
                LIMIT $2
                ''',
                queue_name,
                limit
            )
        return [_dead_letter_from_row(row) for row in rows]

    async def requeue_dead_letter(self, dead_letter_id: str) -> Optional[Job]:
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                dead = await conn.fetchrow(
                    'DELETE FROM dead_letters WHERE id = $1::UUID RETURNING *',
                    dead_letter_id
                )
                if not dead:
                    return None
                row = await conn.fetchrow(
                    f'''
                    INSERT INTO jobs (queue, job_type, payload)
                    VALUES ($1, $2, $3::JSONB)
                    RETURNING {JOB_COLUMNS}
                    ''',
                    dead['queue'],
                    dead['job_type'],
                    dead['payload'] if isinstance(dead['payload'], str) else json.dumps(dead['payload'])
                )
        job = _job_from_row(row)
        logger.info(f"Requeued dead letter {dead_letter_id} as job {job.id}")
        return job
