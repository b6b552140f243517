"""Batch job and batch configuration types."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from core.config import BatchDefaults


class JobStatus(str, Enum):
    """Status of a job within a batch."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_final(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


@dataclass
class BatchJob:
    """One script/scene to turn into a video."""
    title: str
    content: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: JobStatus = JobStatus.PENDING
    progress: float = 0.0
    retry_count: int = 0
    result_url: Optional[str] = None
    local_path: Optional[str] = None
    error_message: Optional[str] = None

    # Optional reference frames for image-to-video
    images: list[str] = field(default_factory=list)

    # Provider task of the current attempt
    task_id: Optional[str] = None
    provider: Optional[str] = None
    attempts: int = 0

    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def to_snapshot(self) -> dict[str, Any]:
        return {
            "script_id": self.id,
            "title": self.title,
            "content": self.content,
            "status": self.status.value,
            "progress": round(self.progress, 1),
            "retry_count": self.retry_count,
            "result_url": self.result_url,
            "local_path": self.local_path,
            "error": self.error_message,
            "images": list(self.images),
            "task_id": self.task_id,
            "provider": self.provider,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BatchJob":
        """Build a job from user input or a stored snapshot."""
        job = cls(
            title=data.get("title") or data.get("name") or "Untitled",
            content=data.get("content") or data.get("prompt") or "",
            id=str(data.get("script_id") or data.get("id") or uuid.uuid4()),
            images=list(data.get("images") or []),
        )
        if data.get("status"):
            job.status = JobStatus(data["status"])
        job.progress = float(data.get("progress") or 0)
        job.retry_count = int(data.get("retry_count") or 0)
        job.result_url = data.get("result_url")
        job.local_path = data.get("local_path")
        job.error_message = data.get("error") or data.get("error_message")
        job.task_id = data.get("task_id")
        job.provider = data.get("provider")
        return job


@dataclass
class BatchConfig:
    """Per-run settings. Defaults come from ``core.config.BatchDefaults``."""
    processing_interval: float = 5.0
    max_retries: int = 3
    retry_delay: float = 10.0
    aspect_ratio: str = "16:9"
    duration: int = 10
    enable_notifications: bool = True
    style: Optional[str] = None
    model: Optional[str] = None
    download_results: bool = True
    # Bad keys, unsupported functions, content policy and quota errors
    # cannot succeed on retry
    skip_retry_for_permanent_errors: bool = True

    @classmethod
    def from_defaults(cls, defaults: BatchDefaults, **overrides) -> "BatchConfig":
        values = {
            "processing_interval": defaults.processing_interval,
            "max_retries": defaults.max_retries,
            "retry_delay": defaults.retry_delay,
            "aspect_ratio": defaults.aspect_ratio,
            "duration": defaults.duration,
            "enable_notifications": defaults.enable_notifications,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


@dataclass
class BatchSummary:
    total: int = 0
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0

    @property
    def is_complete(self) -> bool:
        return self.total == self.completed + self.failed

    @property
    def success_rate(self) -> float:
        return self.completed / self.total * 100 if self.total else 0.0

    @property
    def failure_rate(self) -> float:
        return self.failed / self.total * 100 if self.total else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "pending": self.pending,
            "processing": self.processing,
            "completed": self.completed,
            "failed": self.failed,
            "success_rate": round(self.success_rate, 1),
            "failure_rate": round(self.failure_rate, 1),
        }


def summarize(jobs: list[BatchJob]) -> BatchSummary:
    summary = BatchSummary(total=len(jobs))
    for job in jobs:
        setattr(summary, job.status.value, getattr(summary, job.status.value) + 1)
    return summary


def is_batch_complete(jobs: list[BatchJob]) -> bool:
    """True iff every job is completed or failed."""
    return all(job.status.is_final for job in jobs)
