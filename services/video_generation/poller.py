"""
Async Task Poller

Drives a provider video task to a terminal state:

    NOT_START -> SUBMITTED -> QUEUED -> IN_PROGRESS -> SUCCESS | FAILURE

Each tick asks the Generation Service for the task status and yields a
``Task`` snapshot. Rules:
- Transient query errors (timeouts, network, 5xx) leave the status alone
  and polling continues. There is no hard timeout.
- Permanent query errors (bad key, ...) and 404 end the task in FAILURE.
- Progress never decreases and only reaches 100 at SUCCESS.
- Cancelling stops local polling only; the provider job keeps running.
"""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import AsyncIterator, Optional

from core.errors import (
    ContentPolicyViolationError,
    GenerationFailedError,
    MultiMediaError,
    format_error_message,
)

from ..multimedia.models import TaskStatus, VideoStatusReport
from ..multimedia.service import GenerationService
from ..streaming.progress_tracker import ProgressTracker, TaskCallbacks

logger = logging.getLogger(__name__)

# Synthesized progress baselines when the provider gives no usable number
STATUS_BASELINE = {
    TaskStatus.NOT_START: 0.0,
    TaskStatus.SUBMITTED: 5.0,
    TaskStatus.QUEUED: 10.0,
    TaskStatus.IN_PROGRESS: 10.0,
}
IN_PROGRESS_SPAN = 85.0
IN_PROGRESS_DECAY = 0.9


@dataclass
class Task:
    """Local view of a provider task. Only the poller mutates it."""
    id: str
    provider: Optional[str] = None
    status: TaskStatus = TaskStatus.SUBMITTED
    progress: float = 0.0
    result_url: Optional[str] = None
    cover_url: Optional[str] = None
    fail_reason: Optional[str] = None
    error: Optional[MultiMediaError] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    # Poll bookkeeping
    ticks: int = 0
    in_progress_ticks: int = 0
    query_errors: int = 0
    cancelled: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def snapshot(self) -> "Task":
        return replace(self)


def synthesize_progress(
    previous: float,
    report: VideoStatusReport,
    in_progress_ticks: int,
    ceiling: float = 99.0,
) -> float:
    """
    Next progress value for a task.

    Uses the provider's own 0-100 figure when present, otherwise an
    asymptotic curve over the number of IN_PROGRESS ticks. The result is
    never below ``previous`` and stays under ``ceiling`` until SUCCESS.
    """
    if report.status == TaskStatus.SUCCESS:
        return 100.0
    if report.status == TaskStatus.FAILURE:
        return previous

    if report.progress is not None:
        candidate = report.progress
    elif report.status == TaskStatus.IN_PROGRESS:
        candidate = STATUS_BASELINE[TaskStatus.IN_PROGRESS] + IN_PROGRESS_SPAN * (
            1 - IN_PROGRESS_DECAY ** in_progress_ticks
        )
    else:
        candidate = STATUS_BASELINE.get(report.status, 0.0)

    return max(previous, min(candidate, ceiling))


class TaskPoller:
    """
    Polls task status through a ``GenerationService``.

    Usage:
        poller = TaskPoller(service, interval=3.0)
        async for snapshot in poller.poll(Task(id=task_id, provider="shenma")):
            print(snapshot.status, snapshot.progress)

        # or, with consumer callbacks
        final = await poller.wait(task, TaskCallbacks(on_progress=print))
    """

    def __init__(
        self,
        service: GenerationService,
        interval: float = 3.0,
        progress_ceiling: float = 99.0,
        tracker: Optional[ProgressTracker] = None,
    ):
        self.service = service
        self.interval = interval
        self.progress_ceiling = progress_ceiling
        self.tracker = tracker

    async def _sleep(self, cancel: Optional[asyncio.Event]):
        if self.interval <= 0:
            await asyncio.sleep(0)
            return
        if cancel is None:
            await asyncio.sleep(self.interval)
            return
        try:
            await asyncio.wait_for(cancel.wait(), timeout=self.interval)
        except asyncio.TimeoutError:
            pass

    def _apply(self, task: Task, report: VideoStatusReport):
        if report.status == TaskStatus.SUCCESS and not report.video_url:
            report = report.model_copy(update={
                "status": TaskStatus.FAILURE,
                "fail_reason": "Provider reported success without a video URL",
            })
        if report.status == TaskStatus.IN_PROGRESS:
            task.in_progress_ticks += 1

        task.progress = synthesize_progress(
            task.progress, report, task.in_progress_ticks, self.progress_ceiling
        )

        if report.status != task.status:
            logger.info(f"Task {task.id}: {task.status.value} -> {report.status.value}")
        task.status = report.status

        if report.status == TaskStatus.SUCCESS:
            task.result_url = report.video_url
        elif report.status == TaskStatus.FAILURE:
            task.fail_reason = report.fail_reason or "Video generation failed"
            if report.raw_status == "content_filter":
                task.error = ContentPolicyViolationError(task.fail_reason, {"task_id": task.id})
            else:
                task.error = GenerationFailedError(task.fail_reason, task.id)

    def _fail_on_query_error(self, task: Task, error: MultiMediaError):
        task.status = TaskStatus.FAILURE
        task.fail_reason = format_error_message(error)
        task.error = error
        logger.error(f"Task {task.id} status query failed permanently: {task.fail_reason}")

    @staticmethod
    def _error_dict(task: Task) -> dict:
        if task.error is not None:
            return task.error.to_dict()
        return {"message": task.fail_reason}

    async def tick(self, task: Task) -> Task:
        """One status query, applied to ``task`` in place."""
        task.ticks += 1
        try:
            report = await self.service.get_video_status(task.id, task.provider)
        except MultiMediaError as e:
            if e.retryable:
                task.query_errors += 1
                logger.warning(
                    f"Task {task.id} status query failed ({task.query_errors}), will retry: {e.message}"
                )
            else:
                self._fail_on_query_error(task, e)
        else:
            self._apply(task, report)

        task.updated_at = datetime.utcnow()
        return task

    async def poll(
        self,
        task: Task,
        cancel: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[Task]:
        """Yield a snapshot after every tick until terminal or cancelled."""
        while not task.is_terminal:
            if cancel is not None and cancel.is_set():
                task.cancelled = True
                logger.info(f"Polling cancelled for task {task.id}")
                return

            await self.tick(task)
            yield task.snapshot()

            if task.is_terminal:
                return
            await self._sleep(cancel)

    async def wait(
        self,
        task: Task,
        callbacks: Optional[TaskCallbacks] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> Task:
        """Poll to completion, reporting through callbacks and the tracker."""
        callbacks = callbacks or TaskCallbacks()
        last_progress = -1.0

        async for snapshot in self.poll(task, cancel):
            if snapshot.progress != last_progress:
                last_progress = snapshot.progress
                callbacks.progress(snapshot.progress)
                if self.tracker:
                    self.tracker.progress(snapshot.id, snapshot.progress, snapshot.status.value)

        if task.cancelled:
            if self.tracker:
                self.tracker.cancelled(task.id)
        elif task.status == TaskStatus.SUCCESS:
            callbacks.success(task.result_url)
            if self.tracker:
                self.tracker.succeeded(task.id, task.result_url)
        elif task.status == TaskStatus.FAILURE:
            callbacks.failure(self._error_dict(task))
            if self.tracker:
                self.tracker.failed(task.id, self._error_dict(task))

        return task
