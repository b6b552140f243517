"""
Progress Events

Structured progress events for tasks, batches and the clone workflow,
consumed by the CLI and by notification callbacks.

Usage:
    from services.streaming import ProgressTracker
    tracker = ProgressTracker()
    tracker.on_event(lambda e: print(e.to_cli_line()))
"""

from .progress_tracker import EventType, ProgressEvent, ProgressTracker, TaskCallbacks

__all__ = [
    "EventType",
    "ProgressEvent",
    "ProgressTracker",
    "TaskCallbacks",
]
