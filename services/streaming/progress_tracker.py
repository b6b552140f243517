"""
Progress events for tasks, batches and the clone workflow.

Components never talk to a UI directly; they emit ``ProgressEvent``s
through a ``ProgressTracker`` and whoever is interested (CLI printer,
notification sink, tests) registers a callback.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional
from uuid import uuid4

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Types of progress events."""

    # Task lifecycle
    STARTED = "started"
    PROGRESS = "progress"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"
    RETRY = "retry"

    # Batch lifecycle
    JOB_STARTED = "job_started"
    BATCH_COMPLETED = "batch_completed"

    # Clone workflow
    STATE_CHANGED = "state_changed"

    INFO = "info"
    WARNING = "warning"


@dataclass
class ProgressEvent:
    """A single progress event."""

    event_id: str = field(default_factory=lambda: str(uuid4()))
    subject_id: str = ""
    event_type: EventType = EventType.INFO
    timestamp: datetime = field(default_factory=datetime.utcnow)

    progress_percent: float = 0.0
    message: str = ""
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.event_id,
            "subject_id": self.subject_id,
            "type": self.event_type.value,
            "timestamp": self.timestamp.isoformat(),
            "progress_percent": round(self.progress_percent, 1),
            "message": self.message,
            "data": self.data,
        }

    def to_cli_line(self) -> str:
        """Format as single CLI line."""
        icons = {
            EventType.STARTED: "🚀",
            EventType.SUCCEEDED: "✅",
            EventType.FAILED: "❌",
            EventType.CANCELLED: "⏹️",
            EventType.PROGRESS: "⏳",
            EventType.RETRY: "🔄",
            EventType.JOB_STARTED: "▶️",
            EventType.BATCH_COMPLETED: "🏁",
            EventType.STATE_CHANGED: "🔀",
            EventType.WARNING: "⚠️",
            EventType.INFO: "ℹ️",
        }
        icon = icons.get(self.event_type, "•")

        if self.event_type == EventType.PROGRESS:
            bar_width = 20
            filled = int(self.progress_percent / 100 * bar_width)
            bar = "█" * filled + "░" * (bar_width - filled)
            return f"{icon} [{bar}] {self.progress_percent:.0f}% | {self.subject_id} | {self.message}"
        return f"{icon} {self.message}"


class ProgressTracker:
    """
    Fans progress events out to registered callbacks and keeps a history.

    Usage:
        tracker = ProgressTracker()
        tracker.on_event(lambda e: print(e.to_cli_line()))
        tracker.progress("task-1", 40, "IN_PROGRESS")
    """

    def __init__(self, keep_history: bool = True):
        self.keep_history = keep_history
        self._callbacks: list[Callable[[ProgressEvent], None]] = []
        self._event_history: list[ProgressEvent] = []

    def on_event(self, callback: Callable[[ProgressEvent], None]) -> Callable[[], None]:
        """Register callback for progress events. Returns an unsubscribe function."""
        self._callbacks.append(callback)

        def unsubscribe():
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def _emit(self, event: ProgressEvent):
        if self.keep_history:
            self._event_history.append(event)

        for callback in list(self._callbacks):
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Progress callback error: {e}")

    def started(self, subject_id: str, message: str, data: Optional[dict] = None):
        self._emit(ProgressEvent(
            subject_id=subject_id,
            event_type=EventType.STARTED,
            message=message,
            data=data or {},
        ))

    def progress(self, subject_id: str, percent: float, message: str = "", data: Optional[dict] = None):
        self._emit(ProgressEvent(
            subject_id=subject_id,
            event_type=EventType.PROGRESS,
            progress_percent=percent,
            message=message,
            data=data or {},
        ))

    def succeeded(self, subject_id: str, result_url: Optional[str], message: str = ""):
        self._emit(ProgressEvent(
            subject_id=subject_id,
            event_type=EventType.SUCCEEDED,
            progress_percent=100,
            message=message or f"{subject_id} completed",
            data={"result_url": result_url},
        ))

    def failed(self, subject_id: str, error: dict[str, Any], message: str = ""):
        self._emit(ProgressEvent(
            subject_id=subject_id,
            event_type=EventType.FAILED,
            message=message or f"{subject_id} failed: {error.get('message', '')}",
            data={"error": error},
        ))

    def cancelled(self, subject_id: str):
        self._emit(ProgressEvent(
            subject_id=subject_id,
            event_type=EventType.CANCELLED,
            message=f"{subject_id} cancelled",
        ))

    def retry(self, subject_id: str, attempt: int, max_attempts: int, reason: str):
        self._emit(ProgressEvent(
            subject_id=subject_id,
            event_type=EventType.RETRY,
            message=f"Retry {attempt}/{max_attempts}: {reason}",
            data={"attempt": attempt, "max_attempts": max_attempts, "reason": reason},
        ))

    def job_started(self, subject_id: str, title: str, attempt: int):
        self._emit(ProgressEvent(
            subject_id=subject_id,
            event_type=EventType.JOB_STARTED,
            message=f"Processing {title} (attempt {attempt})",
            data={"title": title, "attempt": attempt},
        ))

    def batch_completed(self, subject_id: str, summary: dict[str, Any]):
        self._emit(ProgressEvent(
            subject_id=subject_id,
            event_type=EventType.BATCH_COMPLETED,
            progress_percent=100,
            message=(
                f"Batch {subject_id} finished: {summary.get('completed', 0)} completed, "
                f"{summary.get('failed', 0)} failed"
            ),
            data=summary,
        ))

    def state_changed(self, subject_id: str, old_state: str, new_state: str, data: Optional[dict] = None):
        self._emit(ProgressEvent(
            subject_id=subject_id,
            event_type=EventType.STATE_CHANGED,
            message=f"{old_state} -> {new_state}",
            data={"from": old_state, "to": new_state, **(data or {})},
        ))

    def info(self, subject_id: str, message: str, data: Optional[dict] = None):
        self._emit(ProgressEvent(
            subject_id=subject_id, event_type=EventType.INFO, message=message, data=data or {},
        ))

    def warning(self, subject_id: str, message: str, data: Optional[dict] = None):
        self._emit(ProgressEvent(
            subject_id=subject_id, event_type=EventType.WARNING, message=message, data=data or {},
        ))

    def get_history(self, event_type: Optional[EventType] = None) -> list[ProgressEvent]:
        """Events emitted so far, optionally filtered by type."""
        if event_type is None:
            return self._event_history.copy()
        return [e for e in self._event_history if e.event_type == event_type]


@dataclass
class TaskCallbacks:
    """Consumer contract for a single task: progress, success, failure."""

    on_progress: Optional[Callable[[float], None]] = None
    on_success: Optional[Callable[[str], None]] = None
    on_failure: Optional[Callable[[dict[str, Any]], None]] = None

    @staticmethod
    def _safe(callback: Optional[Callable], value: Any, name: str):
        if callback is None:
            return
        try:
            callback(value)
        except Exception as e:
            logger.warning(f"{name} callback failed: {e}")

    def progress(self, percent: float):
        self._safe(self.on_progress, percent, "Progress")

    def success(self, result_url: str):
        self._safe(self.on_success, result_url, "Success")

    def failure(self, error: dict[str, Any]):
        self._safe(self.on_failure, error, "Failure")
