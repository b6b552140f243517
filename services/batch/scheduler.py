"""
Batch Scheduler - turns an ordered list of scripts into videos, one at a time.

Each timer tick:
1. Pick the first ``pending`` job (whose retry delay has elapsed)
2. If none is pending and none is ``processing``, the batch is complete:
   stop the timer and emit the completion event exactly once
3. Otherwise submit the job through the Generation Service, drive the
   provider task through the poller, and record the outcome

Only one job is ever ``processing``. A snapshot of the whole batch is
persisted after every job state change.

A run may start from a stored snapshot. Jobs it left ``processing`` go back
to ``pending``, and any provider task they already own is polled again
instead of being resubmitted.
"""

import asyncio
import logging
import time
import uuid
from datetime import datetime
from typing import Callable, Optional

from core.errors import MultiMediaError, error_from_exception, format_error_message

from ..multimedia.models import TaskStatus, VideoGenerationRequest
from ..multimedia.service import GenerationService
from ..streaming.progress_tracker import ProgressTracker
from ..video_generation.downloader import VideoDownloadManager
from ..video_generation.poller import Task, TaskPoller
from .models import BatchConfig, BatchJob, BatchSummary, JobStatus, is_batch_complete, summarize
from .snapshots import SnapshotStore

logger = logging.getLogger(__name__)


class BatchScheduler:
    """
    Sequential batch runner.

    Usage:
        scheduler = BatchScheduler(service, TaskPoller(service), BatchConfig(max_retries=2))
        summary = await scheduler.run([BatchJob(title="Intro", content="A sunrise over the sea")])
        print(summary.to_dict())
    """

    def __init__(
        self,
        service: GenerationService,
        poller: TaskPoller,
        config: Optional[BatchConfig] = None,
        snapshot_store: Optional[SnapshotStore] = None,
        downloader: Optional[VideoDownloadManager] = None,
        tracker: Optional[ProgressTracker] = None,
        batch_id: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.service = service
        self.poller = poller
        self.config = config or BatchConfig()
        self.snapshot_store = snapshot_store
        self.downloader = downloader
        self.tracker = tracker
        self.batch_id = batch_id or f"batch_{uuid.uuid4().hex[:12]}"
        self.clock = clock

        self.jobs: list[BatchJob] = []
        self.completed = False
        self._retry_at: dict[str, float] = {}
        self._resume: dict[str, str] = {}
        self._stop = asyncio.Event()
        self._cancel_poll = asyncio.Event()

    # ------------------------------------------------------------------
    # Run loop
    # ------------------------------------------------------------------

    async def run(self, jobs: list[BatchJob]) -> BatchSummary:
        """Process ``jobs`` until every one is completed or failed, or ``stop()``."""
        self.jobs = jobs
        self.completed = False
        self._stop.clear()
        self._cancel_poll.clear()
        self._prepare_resume()

        logger.info(f"Batch {self.batch_id} started with {len(jobs)} jobs")
        self._notify("started", self.batch_id, f"Batch started with {len(jobs)} jobs", {"total": len(jobs)})
        await self._persist()

        while not self._stop.is_set():
            await self.tick()
            if self.completed:
                break
            await self._wait_interval()

        return self.summary()

    def _prepare_resume(self):
        self._resume = {}
        for job in self.jobs:
            if job.status == JobStatus.PROCESSING:
                logger.info(f"Job {job.id} was left processing, returning to pending")
                job.status = JobStatus.PENDING
            if job.status == JobStatus.PENDING and job.task_id:
                self._resume[job.id] = job.task_id

    async def _wait_interval(self):
        interval = self.config.processing_interval
        if interval <= 0:
            await asyncio.sleep(0)
            return
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=interval)
        except asyncio.TimeoutError:
            pass

    def stop(self):
        """Stop the timer and local polling. Provider jobs keep running."""
        self._stop.set()
        self._cancel_poll.set()

    async def tick(self):
        """One scheduling step."""
        if self.completed:
            return

        job = self._next_pending()
        if job is not None:
            await self._process(job)
            return

        if any(j.status == JobStatus.PENDING for j in self.jobs):
            # Only jobs still inside their retry delay are left
            return
        if any(j.status == JobStatus.PROCESSING for j in self.jobs):
            return

        self._complete()

    def _next_pending(self) -> Optional[BatchJob]:
        now = self.clock()
        for job in self.jobs:
            if job.status == JobStatus.PENDING and self._retry_at.get(job.id, 0.0) <= now:
                return job
        return None

    def _complete(self):
        self.completed = True
        summary = self.summary()
        logger.info(
            f"Batch {self.batch_id} complete: {summary.completed} completed, "
            f"{summary.failed} failed of {summary.total}"
        )
        if self.tracker and self.config.enable_notifications:
            self.tracker.batch_completed(self.batch_id, summary.to_dict())

    # ------------------------------------------------------------------
    # Job processing
    # ------------------------------------------------------------------

    async def _process(self, job: BatchJob):
        resume_task_id = self._resume.pop(job.id, None)
        job.status = JobStatus.PROCESSING
        job.progress = 0.0
        job.attempts += 1
        job.task_id = resume_task_id
        job.error_message = None
        job.started_at = datetime.utcnow()
        self._retry_at.pop(job.id, None)
        await self._persist()

        logger.info(f"Processing job {job.id} '{job.title}' (attempt {job.attempts})")
        self._notify("job_started", job.id, job.title, job.attempts)

        if resume_task_id:
            logger.info(f"Job {job.id} resuming provider task {resume_task_id}")
            await self._track(job)
            return

        try:
            response = await self.service.generate_video(self._request_for(job))
        except MultiMediaError as e:
            await self._fail_job(job, e)
            return

        data = response.data
        job.provider = response.metadata.provider if response.metadata else None

        if data is not None and data.video_url and not data.task_id:
            await self._complete_job(job, data.video_url)
            return
        if data is None or not data.task_id:
            reason = (response.error or {}).get("message") or "Provider returned neither a task id nor a video URL"
            await self._fail_job(job, MultiMediaError(reason))
            return

        job.task_id = data.task_id
        await self._persist()
        await self._track(job)

    async def _track(self, job: BatchJob):
        task = Task(id=job.task_id, provider=job.provider)

        try:
            async for snapshot in self.poller.poll(task, self._cancel_poll):
                if snapshot.progress != job.progress:
                    job.progress = snapshot.progress
                    self._notify("progress", job.id, job.progress, snapshot.status.value)
        except MultiMediaError as e:
            await self._fail_job(job, e)
            return
        except Exception as e:
            await self._fail_job(job, error_from_exception(e, job.provider or "unknown"))
            return

        if task.cancelled:
            logger.info(f"Job {job.id} interrupted, returning to pending")
            job.status = JobStatus.PENDING
            await self._persist()
            self._notify("info", job.id, "Interrupted; will resume on the next run")
            return

        if task.status == TaskStatus.SUCCESS:
            await self._complete_job(job, task.result_url)
        else:
            await self._fail_job(job, task.error or MultiMediaError(task.fail_reason or "Video generation failed"))

    async def _complete_job(self, job: BatchJob, video_url: str):
        job.result_url = video_url
        if self.downloader and self.config.download_results:
            job.local_path = await self.downloader.download(video_url, scene_id=job.id, subdir=self.batch_id)
            if job.local_path is None:
                self._notify("warning", job.id, "Download failed; keeping the provider URL", {"result_url": video_url})

        job.status = JobStatus.COMPLETED
        job.progress = 100.0
        job.completed_at = datetime.utcnow()
        await self._persist()

        logger.info(f"Job {job.id} completed: {job.local_path or video_url}")
        self._notify("succeeded", job.id, video_url, f"{job.title} completed")

    def _should_retry(self, job: BatchJob, error: MultiMediaError) -> bool:
        if self.config.skip_retry_for_permanent_errors and error.is_permanent:
            return False
        return job.retry_count < self.config.max_retries

    async def _fail_job(self, job: BatchJob, error: MultiMediaError):
        message = format_error_message(error)

        if self._should_retry(job, error):
            job.retry_count += 1
            job.status = JobStatus.PENDING
            job.error_message = message
            job.task_id = None
            self._retry_at[job.id] = self.clock() + self.config.retry_delay
            await self._persist()

            logger.warning(
                f"Job {job.id} failed, retry {job.retry_count}/{self.config.max_retries} "
                f"in {self.config.retry_delay:g}s: {message}"
            )
            self._notify("retry", job.id, job.retry_count, self.config.max_retries, message)
            return

        job.status = JobStatus.FAILED
        job.error_message = message
        job.completed_at = datetime.utcnow()
        await self._persist()

        logger.error(f"Job {job.id} failed after {job.attempts} attempts: {message}")
        self._notify("failed", job.id, error.to_dict(), f"{job.title} failed")

    def _request_for(self, job: BatchJob) -> VideoGenerationRequest:
        return VideoGenerationRequest(
            prompt=job.content,
            images=job.images,
            duration=self.config.duration,
            aspect_ratio=self.config.aspect_ratio,
            style=self.config.style,
            model=self.config.model,
        )

    # ------------------------------------------------------------------
    # Persistence & notifications
    # ------------------------------------------------------------------

    async def _persist(self):
        if self.snapshot_store is None:
            return
        try:
            await self.snapshot_store.save(self.batch_id, self.jobs)
        except Exception as e:
            logger.error(f"Failed to save snapshot for batch {self.batch_id}: {e}")

    def _notify(self, kind: str, *args):
        if self.tracker is None or not self.config.enable_notifications:
            return
        getattr(self.tracker, kind)(*args)

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def get_jobs(self, status: Optional[JobStatus] = None) -> list[BatchJob]:
        if status is None:
            return list(self.jobs)
        return [job for job in self.jobs if job.status == status]

    def summary(self) -> BatchSummary:
        return summarize(self.jobs)

    @property
    def is_complete(self) -> bool:
        return is_batch_complete(self.jobs)
