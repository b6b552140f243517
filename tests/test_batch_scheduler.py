"""
Batch Scheduler tests.

Covers:
1. Sequential processing with bounded retries
2. Permanent errors skipping retry
. Resuming a batch from a stored snapshot

Run with:
    python -m pytest tests/test_batch_scheduler.py -v
"""

import asyncio
import os
import sys
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.errors import ContentPolicyViolationError, NetworkError
from services.batch import (
    BatchConfig,
    BatchJob,
    BatchScheduler,
    JobStatus,
    MemorySnapshotStore,
    is_batch_complete,
)
from services.multimedia.models import (
    GenerationData,
    GenerationResponse,
    ResponseMetadata,
    TaskStatus,
    VideoStatusReport,
)
from services.streaming.progress_tracker import EventType, ProgressTracker
from services.video_generation import TaskPoller

FAST = dict(processing_interval=0, retry_delay=0)


class FakeClock:
    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def fake_service(failing=(), permanent=(), direct=()):
    """
    Video service keyed on prompt text.

    - ``failing``: the provider task ends in FAILURE
    - ``permanent``: submission raises a content policy error
    - ``direct``: submission answers with a finished video URL
    """
    service = MagicMock()

    async def generate_video(request):
        if request.prompt in permanent:
            raise ContentPolicyViolationError("Prompt rejected")
        if request.prompt in direct:
            return GenerationResponse(
                success=True,
                data=GenerationData(video_url=f"https://cdn.example/{request.prompt}.mp4"),
                metadata=ResponseMetadata(provider="demo"),
            )
        return GenerationResponse(
            success=True,
            data=GenerationData(task_id=f"task-{request.prompt}", status="SUBMITTED"),
            metadata=ResponseMetadata(provider="demo"),
        )

    async def get_video_status(task_id, provider_id=None):
        prompt = task_id[len("task-"):]
        if prompt in failing:
            return VideoStatusReport(task_id=task_id, status=TaskStatus.FAILURE, fail_reason="render crashed")
        return VideoStatusReport(
            task_id=task_id, status=TaskStatus.SUCCESS, video_url=f"https://cdn.example/{prompt}.mp4"
        )

    service.generate_video = AsyncMock(side_effect=generate_video)
    service.get_video_status = AsyncMock(side_effect=get_video_status)
    return service


def make_jobs(*prompts):
    return [BatchJob(title=f"Scene {i + 1}", content=p, id=f"job-{i + 1}") for i, p in enumerate(prompts)]


def scheduler_for(service, config, **kwargs):
    return BatchScheduler(service, TaskPoller(service, interval=0), config, batch_id="batch-test", **kwargs)


class TestSequentialProcessing:
    """Jobs run in order, one at a time, within their retry budget."""

    @pytest.mark.asyncio
    async def test_failing_job_exhausts_retries_others_complete(self):
        service = fake_service(failing={"storm"})
        tracker = ProgressTracker()
        scheduler = scheduler_for(service, BatchConfig(max_retries=1, **FAST), tracker=tracker)
        jobs = make_jobs("sunrise", "storm", "harbor")

        summary = await scheduler.run(jobs)

        assert [job.status for job in jobs] == [JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.COMPLETED]
        assert jobs[1].attempts == 2
        assert jobs[1].retry_count == 1
        assert "render crashed" in jobs[1].error_message
        assert jobs[0].result_url == "https://cdn.example/sunrise.mp4"
        assert jobs[2].progress == 100

        assert summary.completed == 2
        assert summary.failed == 1
        assert summary.is_complete
        assert scheduler.completed
        assert [job.id for job in scheduler.get_jobs(JobStatus.FAILED)] == ["job-2"]
        assert len(scheduler.get_jobs()) == 3
        assert summary.to_dict()["success_rate"] == pytest.approx(66.7)
        assert len(tracker.get_history(EventType.BATCH_COMPLETED)) == 1

        # Further ticks never re-announce completion
        await scheduler.tick()
        assert len(tracker.get_history(EventType.BATCH_COMPLETED)) == 1

    @pytest.mark.asyncio
    async def test_submissions_follow_job_order(self):
        service = fake_service()
        await scheduler_for(service, BatchConfig(**FAST)).run(make_jobs("a", "b", "c"))

        prompts = [call.args[0].prompt for call in service.generate_video.await_args_list]
        assert prompts == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_retry_budget(self):
        service = fake_service(failing={"storm"})
        tracker = ProgressTracker()
        jobs = make_jobs("storm")

        await scheduler_for(service, BatchConfig(max_retries=2, **FAST), tracker=tracker).run(jobs)

        assert jobs[0].status == JobStatus.FAILED
        assert jobs[0].attempts == 3
        assert len(tracker.get_history(EventType.RETRY)) == 2
        assert len(tracker.get_history(EventType.FAILED)) == 1

    @pytest.mark.asyncio
    async def test_request_carries_batch_settings(self):
        service = fake_service()
        config = BatchConfig(aspect_ratio="9:16", duration=5, style="anime", **FAST)

        await scheduler_for(service, config).run(make_jobs("sunrise"))

        request = service.generate_video.await_args.args[0]
        assert request.aspect_ratio == "9:16"
        assert request.duration == 5
        assert request.style == "anime"

    @pytest.mark.asyncio
    async def test_direct_video_url_skips_polling(self):
        service = fake_service(direct={"sunrise"})
        jobs = make_jobs("sunrise")

        await scheduler_for(service, BatchConfig(**FAST)).run(jobs)

        assert jobs[0].status == JobStatus.COMPLETED
        assert jobs[0].result_url == "https://cdn.example/sunrise.mp4"
        service.get_video_status.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_batch_completes_immediately(self):
        tracker = ProgressTracker()
        scheduler = scheduler_for(fake_service(), BatchConfig(**FAST), tracker=tracker)

        summary = await scheduler.run([])

        assert summary.total == 0
        assert scheduler.completed
        assert len(tracker.get_history(EventType.BATCH_COMPLETED)) == 1


class TestErrorHandling:
    """Permanent errors and transient submit failures."""

    @pytest.mark.asyncio
    async def test_permanent_error_skips_retry(self):
        service = fake_service(permanent={"forbidden"})
        jobs = make_jobs("forbidden")

        await scheduler_for(service, BatchConfig(max_retries=3, **FAST)).run(jobs)

        assert jobs[0].status == JobStatus.FAILED
        assert jobs[0].attempts == 1
        assert "CONTENT_POLICY_VIOLATION" in jobs[0].error_message

    @pytest.mark.asyncio
    async def test_permanent_error_retried_when_configured(self):
        service = fake_service(permanent={"forbidden"})
        jobs = make_jobs("forbidden")
        config = BatchConfig(max_retries=2, skip_retry_for_permanent_errors=False, **FAST)

        await scheduler_for(service, config).run(jobs)

        assert jobs[0].status == JobStatus.FAILED
        assert jobs[0].attempts == 3

    @pytest.mark.asyncio
    async def test_transient_submit_error_is_retried(self):
        service = fake_service()
        original = service.generate_video.side_effect
        calls = []

        async def flaky(request):
            calls.append(request.prompt)
            if len(calls) == 1:
                raise NetworkError("connection reset")
            return await original(request)

        service.generate_video = AsyncMock(side_effect=flaky)
        jobs = make_jobs("sunrise")

        await scheduler_for(service, BatchConfig(max_retries=1, **FAST)).run(jobs)

        assert jobs[0].status == JobStatus.COMPLETED
        assert jobs[0].retry_count == 1
        assert jobs[0].error_message is None


class TestScheduling:
    """Retry delay, stop and completion checks."""

    @pytest.mark.asyncio
    async def test_retry_delay_blocks_until_elapsed(self):
        clock = FakeClock()
        service = fake_service(failing={"storm"})
        scheduler = scheduler_for(
            service, BatchConfig(max_retries=1, processing_interval=0, retry_delay=10), clock=clock
        )
        scheduler.jobs = make_jobs("storm")

        await scheduler.tick()
        job = scheduler.jobs[0]
        assert job.status == JobStatus.PENDING
        assert job.attempts == 1

        clock.now += 5
        await scheduler.tick()
        assert job.attempts == 1
        assert not scheduler.completed

        clock.now += 5
        await scheduler.tick()
        assert job.attempts == 2
        assert job.status == JobStatus.FAILED

        await scheduler.tick()
        assert scheduler.completed

    @pytest.mark.asyncio
    async def test_stop_returns_job_to_pending(self):
        service = fake_service()
        scheduler = scheduler_for(service, BatchConfig(**FAST))

        async def still_running(task_id, provider_id=None):
            scheduler.stop()
            return VideoStatusReport(task_id=task_id, status=TaskStatus.IN_PROGRESS)

        service.get_video_status = AsyncMock(side_effect=still_running)
        jobs = make_jobs("sunrise", "harbor")

        summary = await scheduler.run(jobs)

        assert jobs[0].status == JobStatus.PENDING
        assert jobs[1].status == JobStatus.PENDING
        assert summary.pending == 2
        assert not scheduler.completed

    def test_is_batch_complete(self):
        jobs = make_jobs("a", "b")
        assert not is_batch_complete(jobs)

        jobs[0].status = JobStatus.COMPLETED
        jobs[1].status = JobStatus.PROCESSING
        assert not is_batch_complete(jobs)

        jobs[1].status = JobStatus.FAILED
        assert is_batch_complete(jobs)
        assert is_batch_complete([])


class TestPersistenceAndDownload:
    """Snapshots after state changes, optional local download."""

    @pytest.mark.asyncio
    async def test_snapshots_track_state_changes(self):
        store = MemorySnapshotStore()
        jobs = make_jobs("sunrise")

        await scheduler_for(fake_service(), BatchConfig(**FAST), snapshot_store=store).run(jobs)

        history = store.history["batch-test"]
        statuses = [snapshot[0]["status"] for snapshot in history]
        assert statuses[0] == "pending"
        assert "processing" in statuses
        assert statuses[-1] == "completed"

        latest = await store.load("batch-test")
        assert latest[0]["script_id"] == "job-1"
        assert latest[0]["result_url"] == "https://cdn.example/sunrise.mp4"

    @pytest.mark.asyncio
    async def test_snapshot_failure_does_not_stop_batch(self):
        store = MagicMock()
        store.save = AsyncMock(side_effect=OSError("disk full"))
        jobs = make_jobs("sunrise")

        await scheduler_for(fake_service(), BatchConfig(**FAST), snapshot_store=store).run(jobs)

        assert jobs[0].status == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_results_downloaded_into_batch_folder(self):
        downloader = MagicMock()
        downloader.download = AsyncMock(return_value="/videos/batch-test/job-1.mp4")
        jobs = make_jobs("sunrise")

        await scheduler_for(fake_service(), BatchConfig(**FAST), downloader=downloader).run(jobs)

        downloader.download.assert_awaited_once_with(
            "https://cdn.example/sunrise.mp4", scene_id="job-1", subdir="batch-test"
        )
        assert jobs[0].local_path == "/videos/batch-test/job-1.mp4"

    @pytest.mark.asyncio
    async def test_download_failure_keeps_remote_url(self):
        downloader = MagicMock()
        downloader.download = AsyncMock(return_value=None)
        jobs = make_jobs("sunrise")

        tracker = ProgressTracker()
        await scheduler_for(fake_service(), BatchConfig(**FAST), downloader=downloader, tracker=tracker).run(jobs)

        assert jobs[0].status == JobStatus.COMPLETED
        assert jobs[0].local_path is None
        assert jobs[0].result_url == "https://cdn.example/sunrise.mp4"
        assert len(tracker.get_history(EventType.WARNING)) == 1

    @pytest.mark.asyncio
    async def test_notifications_can_be_disabled(self):
        tracker = ProgressTracker()
        config = BatchConfig(enable_notifications=False, **FAST)

        await scheduler_for(fake_service(), config, tracker=tracker).run(make_jobs("sunrise"))

        assert tracker.get_history() == []


class TestResume:
    """A batch restarted from its snapshot runs to completion."""

    @staticmethod
    def snapshot_rows():
        return [
            {"script_id": "job-1", "title": "Scene 1", "content": "sunrise", "status": "completed",
             "result_url": "https://cdn.example/sunrise.mp4"},
            {"script_id": "job-2", "title": "Scene 2", "content": "harbor", "status": "processing",
             "task_id": "task-harbor", "provider": "demo"},
            {"script_id": "job-3", "title": "Scene 3", "content": "storm", "status": "pending"},
        ]

    @pytest.mark.asyncio
    async def test_processing_job_is_polled_again(self):
        service = fake_service()
        tracker = ProgressTracker()
        jobs = [BatchJob.from_dict(row) for row in self.snapshot_rows()]
        scheduler = scheduler_for(service, BatchConfig(**FAST), tracker=tracker)

        summary = await asyncio.wait_for(scheduler.run(jobs), timeout=2)

        assert [job.status for job in jobs] == [JobStatus.COMPLETED] * 3
        assert scheduler.completed
        assert summary.completed == 3
        assert len(tracker.get_history(EventType.BATCH_COMPLETED)) == 1

        submitted = [call.args[0].prompt for call in service.generate_video.await_args_list]
        assert submitted == ["storm"]
        service.get_video_status.assert_any_await("task-harbor", "demo")
        assert jobs[1].result_url == "https://cdn.example/harbor.mp4"

    @pytest.mark.asyncio
    async def test_processing_job_without_task_is_resubmitted(self):
        service = fake_service()
        rows = self.snapshot_rows()
        rows[1].pop("task_id")
        jobs = [BatchJob.from_dict(row) for row in rows]

        await asyncio.wait_for(scheduler_for(service, BatchConfig(**FAST)).run(jobs), timeout=2)

        assert [job.status for job in jobs] == [JobStatus.COMPLETED] * 3
        submitted = [call.args[0].prompt for call in service.generate_video.await_args_list]
        assert submitted == ["harbor", "storm"]

    @pytest.mark.asyncio
    async def test_resume_round_trip_through_snapshot_store(self):
        store = MemorySnapshotStore()
        service = fake_service()
        scheduler = scheduler_for(service, BatchConfig(**FAST), snapshot_store=store)

        async def still_running(task_id, provider_id=None):
            scheduler.stop()
            return VideoStatusReport(task_id=task_id, status=TaskStatus.IN_PROGRESS)

        service.get_video_status = AsyncMock(side_effect=still_running)
        first = make_jobs("sunrise")
        first[0].images = ["https://cdn.example/frame.png"]
        await scheduler.run(first)

        restored = [BatchJob.from_dict(row) for row in await store.load("batch-test")]
        assert restored[0].task_id == "task-sunrise"
        assert restored[0].images == ["https://cdn.example/frame.png"]

        service = fake_service()
        await asyncio.wait_for(scheduler_for(service, BatchConfig(**FAST)).run(restored), timeout=2)

        assert restored[0].status == JobStatus.COMPLETED
        service.generate_video.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_retried_job_gets_a_new_task(self):
        service = fake_service(failing={"storm"})
        scheduler = scheduler_for(
            service, BatchConfig(max_retries=1, processing_interval=0, retry_delay=10), clock=FakeClock()
        )
        scheduler.jobs = make_jobs("storm")

        await scheduler.tick()

        job = scheduler.jobs[0]
        assert job.status == JobStatus.PENDING
        assert job.task_id is None
        assert BatchJob.from_dict(job.to_snapshot()).task_id is None
