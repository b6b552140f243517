"""
Job Tracker - Postgres persistence for batch job snapshots.

Each job of a batch is one row in ``batch_job_snapshots``, upserted on
every state change. Used for:
- External inspection of long unattended runs
- Resuming a batch after a crash
- Retry accounting across runs
"""

import logging
from datetime import datetime
from typing import Optional

import asyncpg

from .models import BatchJob
from .snapshots import SnapshotStore

logger = logging.getLogger(__name__)

CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS batch_job_snapshots (
    batch_id TEXT NOT NULL,
    script_id TEXT NOT NULL,
    position INTEGER NOT NULL,
    title TEXT NOT NULL,
    content TEXT NOT NULL,
    status TEXT NOT NULL,
    progress REAL NOT NULL DEFAULT 0,
    retry_count INTEGER NOT NULL DEFAULT 0,
    result_url TEXT,
    local_path TEXT,
    error_message TEXT,
    images TEXT[] NOT NULL DEFAULT '{}',
    task_id TEXT,
    provider TEXT,
    updated_at TIMESTAMP NOT NULL,
    PRIMARY KEY (batch_id, script_id)
);
ALTER TABLE batch_job_snapshots ADD COLUMN IF NOT EXISTS images TEXT[] NOT NULL DEFAULT '{}';
ALTER TABLE batch_job_snapshots ADD COLUMN IF NOT EXISTS provider TEXT;
"""


class JobTracker(SnapshotStore):
    """
    Persists batch job snapshots to PostgreSQL.

    Usage:
        pool = await asyncpg.create_pool(database_url)
        tracker = JobTracker(pool)
        await tracker.ensure_schema()

        scheduler = BatchScheduler(service, poller, snapshot_store=tracker)
    """

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    @classmethod
    async def connect(cls, database_url: str, min_size: int = 1, max_size: int = 5) -> "JobTracker":
        pool = await asyncpg.create_pool(database_url, min_size=min_size, max_size=max_size)
        tracker = cls(pool)
        await tracker.ensure_schema()
        return tracker

    async def ensure_schema(self):
        async with self.db_pool.acquire() as conn:
            await conn.execute(CREATE_TABLE_SQL)

    async def close(self):
        await self.db_pool.close()

    async def save(self, batch_id: str, jobs: list[BatchJob]) -> None:
        """Upsert every job of the batch."""
        now = datetime.utcnow()
        rows = [
            (
                batch_id,
                job.id,
                position,
                job.title,
                job.content,
                job.status.value,
                job.progress,
                job.retry_count,
                job.result_url,
                job.local_path,
                job.error_message,
                list(job.images),
                job.task_id,
                job.provider,
                now,
            )
            for position, job in enumerate(jobs)
        ]

        async with self.db_pool.acquire() as conn:
            await conn.executemany(
                """
                INSERT INTO batch_job_snapshots (
                    batch_id, script_id, position, title, content, status,
                    progress, retry_count, result_url, local_path,
                    error_message, images, task_id, provider, updated_at
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15)
                ON CONFLICT (batch_id, script_id) DO UPDATE SET
                    status = EXCLUDED.status,
                    progress = EXCLUDED.progress,
                    retry_count = EXCLUDED.retry_count,
                    result_url = EXCLUDED.result_url,
                    local_path = EXCLUDED.local_path,
                    error_message = EXCLUDED.error_message,
                    images = EXCLUDED.images,
                    task_id = EXCLUDED.task_id,
                    provider = EXCLUDED.provider,
                    updated_at = EXCLUDED.updated_at
                """,
                rows,
            )

        logger.debug(f"Saved snapshot for batch {batch_id} ({len(rows)} jobs)")

    async def load(self, batch_id: str) -> Optional[list[dict]]:
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT script_id, title, content, status, progress, retry_count,
                       result_url, local_path, error_message AS error,
                       images, task_id, provider
                FROM batch_job_snapshots
                WHERE batch_id = $1
                ORDER BY position ASC
                """,
                batch_id,
            )
        if not rows:
            return None
        return [dict(row) for row in rows]

    async def get_failed_jobs(self, max_retries: int = 3, limit: int = 50) -> list[dict]:
        """Failed jobs that still have retry budget left."""
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM batch_job_snapshots
                WHERE status = 'failed'
                  AND retry_count < $1
                ORDER BY updated_at DESC
                LIMIT $2
                """,
                max_retries,
                limit,
            )
            return [dict(row) for row in rows]
