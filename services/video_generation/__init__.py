"""
Video Generation

Task polling and result download for asynchronous provider video jobs.
Submission itself goes through ``services.multimedia.GenerationService``.
"""

from .downloader import VideoDownloadManager, build_filename
from .poller import Task, TaskPoller, synthesize_progress

__all__ = [
    "Task",
    "TaskPoller",
    "synthesize_progress",
    "VideoDownloadManager",
    "build_filename",
]
