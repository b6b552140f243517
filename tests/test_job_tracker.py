"""
Batch snapshot persistence tests.

Covers:
1. Postgres JobTracker against a mocked asyncpg pool
2. JSON file snapshots
3. Restoring jobs from a snapshot

Run with:
    python -m pytest tests/test_job_tracker.py -v
"""

import json
import os
import sys
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from services.batch import BatchJob, JobStatus, JobTracker, JsonSnapshotStore


def sample_jobs():
    first = BatchJob(title="Intro", content="A sunrise over the sea", id="job-1")
    second = BatchJob(title="Storm", content="Waves crash on rocks", id="job-2")
    second.status = JobStatus.FAILED
    second.retry_count = 2
    second.error_message = "[GENERATION_FAILED] render crashed"
    second.images = ["https://cdn.example/frame.png"]
    second.task_id = "task-9"
    second.provider = "shenma"
    return [first, second]


class TestJobTracker:
    """Postgres snapshot store."""

    @pytest.fixture
    def mock_db_pool(self):
        """Create a mock database pool."""
        pool = AsyncMock()
        conn = AsyncMock()

        conn.fetch = AsyncMock(return_value=[])
        conn.execute = AsyncMock()
        conn.executemany = AsyncMock()

        pool.acquire = MagicMock(return_value=AsyncMock(
            __aenter__=AsyncMock(return_value=conn),
            __aexit__=AsyncMock(return_value=None)
        ))

        return pool

    @staticmethod
    def _conn(pool):
        return pool.acquire.return_value.__aenter__.return_value

    @pytest.mark.asyncio
    async def test_ensure_schema(self, mock_db_pool):
        await JobTracker(mock_db_pool).ensure_schema()

        sql = self._conn(mock_db_pool).execute.await_args.args[0]
        assert "CREATE TABLE IF NOT EXISTS batch_job_snapshots" in sql
        assert "ADD COLUMN IF NOT EXISTS images" in sql

    @pytest.mark.asyncio
    async def test_save_upserts_one_row_per_job(self, mock_db_pool):
        await JobTracker(mock_db_pool).save("batch-1", sample_jobs())

        sql, rows = self._conn(mock_db_pool).executemany.await_args.args
        assert "ON CONFLICT (batch_id, script_id) DO UPDATE" in sql
        assert len(rows) == 2
        assert rows[0][:6] == ("batch-1", "job-1", 0, "Intro", "A sunrise over the sea", "pending")
        assert rows[1][1] == "job-2"
        assert rows[1][2] == 1
        assert rows[1][5] == "failed"
        assert rows[1][7] == 2
        assert rows[1][11:14] == (["https://cdn.example/frame.png"], "task-9", "shenma")
        assert rows[0][11] == []

    @pytest.mark.asyncio
    async def test_load_unknown_batch(self, mock_db_pool):
        assert await JobTracker(mock_db_pool).load("missing") is None

    @pytest.mark.asyncio
    async def test_load_returns_rows_in_order(self, mock_db_pool):
        conn = self._conn(mock_db_pool)
        conn.fetch = AsyncMock(return_value=[
            {"script_id": "job-1", "title": "Intro", "content": "x", "status": "completed"},
            {"script_id": "job-2", "title": "Storm", "content": "y", "status": "pending"},
        ])

        rows = await JobTracker(mock_db_pool).load("batch-1")

        assert [row["script_id"] for row in rows] == ["job-1", "job-2"]
        assert conn.fetch.await_args.args[1] == "batch-1"

    @pytest.mark.asyncio
    async def test_failed_jobs_query_uses_retry_budget(self, mock_db_pool):
        await JobTracker(mock_db_pool).get_failed_jobs(max_retries=3, limit=10)

        args = self._conn(mock_db_pool).fetch.await_args.args
        assert "status = 'failed'" in args[0]
        assert args[1:] == (3, 10)


class TestJsonSnapshotStore:
    """One JSON document per batch."""

    @pytest.mark.asyncio
    async def test_save_and_load(self, tmp_path):
        store = JsonSnapshotStore(str(tmp_path / "snapshots"))

        await store.save("batch-1", sample_jobs())

        document = json.loads((tmp_path / "snapshots" / "batch-1.json").read_text(encoding="utf-8"))
        assert document["batch_id"] == "batch-1"
        assert len(document["jobs"]) == 2

        jobs = await store.load("batch-1")
        assert jobs[1]["status"] == "failed"
        assert jobs[1]["error"] == "[GENERATION_FAILED] render crashed"

    @pytest.mark.asyncio
    async def test_load_missing(self, tmp_path):
        assert await JsonSnapshotStore(str(tmp_path)).load("nope") is None

    @pytest.mark.asyncio
    async def test_restore_jobs_from_snapshot(self, tmp_path):
        store = JsonSnapshotStore(str(tmp_path))
        await store.save("batch-1", sample_jobs())

        restored = [BatchJob.from_dict(row) for row in await store.load("batch-1")]

        assert [job.id for job in restored] == ["job-1", "job-2"]
        assert restored[1].status == JobStatus.FAILED
        assert restored[1].retry_count == 2
        assert restored[0].status == JobStatus.PENDING

    @pytest.mark.asyncio
    async def test_restore_keeps_reference_images(self, tmp_path):
        store = JsonSnapshotStore(str(tmp_path))
        await store.save("batch-1", sample_jobs())

        restored = [BatchJob.from_dict(row) for row in await store.load("batch-1")]

        assert restored[1].images == ["https://cdn.example/frame.png"]
        assert restored[1].task_id == "task-9"
        assert restored[1].provider == "shenma"
        assert restored[0].images == []
