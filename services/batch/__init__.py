"""
Batch Video Production

Runs an ordered list of scripts through video generation, one job at a
time, with per-job retries and a persisted snapshot after every change.
"""

from .job_tracker import JobTracker
from .models import (
    BatchConfig,
    BatchJob,
    BatchSummary,
    JobStatus,
    is_batch_complete,
    summarize,
)
from .scheduler import BatchScheduler
from .snapshots import JsonSnapshotStore, MemorySnapshotStore, SnapshotStore

__all__ = [
    "BatchConfig",
    "BatchJob",
    "BatchScheduler",
    "BatchSummary",
    "JobStatus",
    "JobTracker",
    "JsonSnapshotStore",
    "MemorySnapshotStore",
    "SnapshotStore",
    "is_batch_complete",
    "summarize",
]
