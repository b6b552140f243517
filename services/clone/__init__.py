"""
Clone Workflow

Capture an existing image, describe it with a vision model, and turn the
description into a prompt for regenerating a similar image.
"""

from .analysis import (
    AnalysisResult,
    CapturedImage,
    ImageAnalysisService,
    build_prompt,
    parse_analysis,
)
from .workflow import (
    CloneWorkflowManager,
    CloneWorkflowState,
    FileImageSource,
    ImageSource,
    InvalidStateTransition,
    QueuedImageSource,
    WorkflowError,
    WorkflowStatus,
    WorkflowStep,
    is_valid_state_transition,
)

__all__ = [
    "AnalysisResult",
    "CapturedImage",
    "CloneWorkflowManager",
    "CloneWorkflowState",
    "FileImageSource",
    "ImageAnalysisService",
    "ImageSource",
    "InvalidStateTransition",
    "QueuedImageSource",
    "WorkflowError",
    "WorkflowStatus",
    "WorkflowStep",
    "build_prompt",
    "is_valid_state_transition",
    "parse_analysis",
]
