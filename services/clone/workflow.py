"""
Clone Workflow - capture an image, analyze it, derive a prompt, regenerate.

Valid transitions:

    idle        -> capturing
    capturing   -> analyzing | error | idle
    analyzing   -> complete | error | idle
    generating  -> complete | error | idle
    complete    -> idle | generating
    error       -> capturing | analyzing | generating | idle

Any failure lands in ``error`` with the failing step recorded;
``retry_workflow()`` re-enters that step while the retry budget lasts.
``cancel_workflow()`` / ``reset()`` always return to ``idle``.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

import aiofiles

from core.config import CloneConfig
from core.errors import ErrorCode, InvalidParameterError, MultiMediaError, format_error_message

from ..multimedia.models import TextToImageRequest
from ..streaming.progress_tracker import ProgressTracker
from .analysis import CapturedImage, ImageAnalysisService

logger = logging.getLogger(__name__)


class WorkflowStatus(str, Enum):
    IDLE = "idle"
    CAPTURING = "capturing"
    ANALYZING = "analyzing"
    GENERATING = "generating"
    COMPLETE = "complete"
    ERROR = "error"


class WorkflowStep(str, Enum):
    SCREENSHOT = "screenshot"
    ANALYSIS = "analysis"
    GENERATION = "generation"


VALID_TRANSITIONS: dict[WorkflowStatus, frozenset[WorkflowStatus]] = {
    WorkflowStatus.IDLE: frozenset({WorkflowStatus.CAPTURING}),
    WorkflowStatus.CAPTURING: frozenset({WorkflowStatus.ANALYZING, WorkflowStatus.ERROR, WorkflowStatus.IDLE}),
    WorkflowStatus.ANALYZING: frozenset({WorkflowStatus.COMPLETE, WorkflowStatus.ERROR, WorkflowStatus.IDLE}),
    WorkflowStatus.GENERATING: frozenset({WorkflowStatus.COMPLETE, WorkflowStatus.ERROR, WorkflowStatus.IDLE}),
    WorkflowStatus.COMPLETE: frozenset({WorkflowStatus.IDLE, WorkflowStatus.GENERATING}),
    WorkflowStatus.ERROR: frozenset({
        WorkflowStatus.CAPTURING,
        WorkflowStatus.ANALYZING,
        WorkflowStatus.GENERATING,
        WorkflowStatus.IDLE,
    }),
}


def is_valid_state_transition(from_status: WorkflowStatus, to_status: WorkflowStatus) -> bool:
    return to_status in VALID_TRANSITIONS.get(from_status, frozenset())


class InvalidStateTransition(ValueError):
    def __init__(self, from_status: WorkflowStatus, to_status: WorkflowStatus):
        super().__init__(f"Invalid clone workflow transition: {from_status.value} -> {to_status.value}")
        self.from_status = from_status
        self.to_status = to_status


@dataclass
class WorkflowError:
    step: WorkflowStep
    message: str
    retryable: bool
    code: Optional[str] = None


@dataclass
class CloneWorkflowState:
    status: WorkflowStatus = WorkflowStatus.IDLE
    current_step: WorkflowStep = WorkflowStep.SCREENSHOT
    target_id: Optional[str] = None
    screenshot: Optional[CapturedImage] = None
    analysis: Optional[str] = None
    generated_prompt: Optional[str] = None
    cloned_image_url: Optional[str] = None
    error: Optional[WorkflowError] = None
    timestamp: float = field(default_factory=time.time)


# =============================================================================
# Image sources
# =============================================================================

class ImageSource(ABC):
    """Where captured images come from. ``read`` returns None until one is available."""

    @abstractmethod
    async def read(self) -> Optional[CapturedImage]:
        ...

    def cancel(self):
        """Stop any capture mode the source holds open."""


class QueuedImageSource(ImageSource):
    """Images pushed in by the host application."""

    def __init__(self):
        self._queue: asyncio.Queue[CapturedImage] = asyncio.Queue()

    def put(self, image: CapturedImage):
        self._queue.put_nowait(image)

    async def read(self) -> Optional[CapturedImage]:
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    def cancel(self):
        while not self._queue.empty():
            self._queue.get_nowait()


class FileImageSource(ImageSource):
    """Watches a path; the first non-empty file written there is the capture."""

    MIME_TYPES = {".png": "image/png", ".jpg": "image/jpeg", ".jpeg": "image/jpeg", ".webp": "image/webp"}

    def __init__(self, path: str, consume: bool = True):
        self.path = Path(path)
        self.consume = consume

    async def read(self) -> Optional[CapturedImage]:
        if not self.path.is_file():
            return None
        async with aiofiles.open(self.path, "rb") as f:
            data = await f.read()
        if not data:
            return None
        if self.consume:
            self.path.unlink(missing_ok=True)
        return CapturedImage(data, self.MIME_TYPES.get(self.path.suffix.lower(), "image/png"))


# =============================================================================
# Workflow manager
# =============================================================================

class CloneWorkflowManager:
    """
    Drives one clone workflow at a time.

    Usage:
        manager = CloneWorkflowManager(ImageAnalysisService(service), QueuedImageSource())
        manager.on_state_change(lambda state: print(state.status))
        await manager.initiate_clone("storyboard-item-7")
        if manager.get_state().status == WorkflowStatus.COMPLETE:
            await manager.handle_prompt_generation(manager.get_state().generated_prompt)
    """

    def __init__(
        self,
        analysis_service: ImageAnalysisService,
        image_source: ImageSource,
        config: Optional[CloneConfig] = None,
        tracker: Optional[ProgressTracker] = None,
    ):
        self.analysis_service = analysis_service
        self.image_source = image_source
        self.config = config or CloneConfig()
        self.tracker = tracker

        self.state = CloneWorkflowState()
        self.retry_count = 0
        self._listeners: list[Callable[[CloneWorkflowState], None]] = []
        # Bumped on cancel so in-flight steps can tell they were abandoned
        self._run = 0

    def get_state(self) -> CloneWorkflowState:
        return replace(self.state)

    def on_state_change(self, listener: Callable[[CloneWorkflowState], None]) -> Callable[[], None]:
        """Subscribe to state changes. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def is_valid_state_transition(self, from_status: WorkflowStatus, to_status: WorkflowStatus) -> bool:
        return is_valid_state_transition(from_status, to_status)

    def _update(self, **changes):
        old_status = self.state.status
        new_status = changes.get("status", old_status)
        if new_status != old_status and not is_valid_state_transition(old_status, new_status):
            raise InvalidStateTransition(old_status, new_status)

        self.state = replace(self.state, timestamp=time.time(), **changes)

        if new_status != old_status:
            logger.info(f"Clone workflow: {old_status.value} -> {new_status.value}")
            if self.tracker:
                self.tracker.state_changed(
                    self.state.target_id or "clone",
                    old_status.value,
                    new_status.value,
                    {"step": self.state.current_step.value},
                )

        snapshot = self.get_state()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"Clone state listener error: {e}")

    def _fail(self, step: WorkflowStep, error: BaseException):
        message = format_error_message(error) if isinstance(error, MultiMediaError) else str(error)
        retryable = self.retry_count < self.config.max_retries
        logger.error(f"Clone workflow failed at {step.value}: {message}")
        self._update(
            status=WorkflowStatus.ERROR,
            error=WorkflowError(
                step=step,
                message=message or type(error).__name__,
                retryable=retryable,
                code=error.code.value if isinstance(error, MultiMediaError) else None,
            ),
        )

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------

    async def wait_for_image(self) -> Optional[CapturedImage]:
        """Poll the image source until an image arrives or the capture timeout passes."""
        interval = max(self.config.capture_poll_interval, 0.0)
        max_attempts = max(int(self.config.capture_timeout / interval), 1) if interval > 0 else 1
        run = self._run

        for attempt in range(1, max_attempts + 1):
            if run != self._run:
                return None
            try:
                image = await self.image_source.read()
            except Exception as e:
                logger.warning(f"Image source read failed (attempt {attempt}/{max_attempts}): {e}")
                image = None

            if image is not None:
                logger.info(f"Captured image ({image.size} bytes, {image.mime_type})")
                return image
            if attempt < max_attempts:
                await asyncio.sleep(interval)

        logger.warning(f"No image captured after {max_attempts} attempts")
        return None

    async def initiate_clone(self, target_id: str):
        """Capture, analyze and derive a prompt for ``target_id``."""
        if not target_id or not target_id.strip():
            raise InvalidParameterError("Target ID is required", "target_id")

        logger.info(f"Initiating clone workflow for {target_id}")
        self.retry_count = 0
        self._update(
            status=WorkflowStatus.CAPTURING,
            current_step=WorkflowStep.SCREENSHOT,
            target_id=target_id,
            error=None,
        )
        await self._capture_and_analyze()

    async def _capture_and_analyze(self):
        run = self._run
        image = await self.wait_for_image()
        if run != self._run:
            return
        if image is None:
            self._fail(WorkflowStep.SCREENSHOT, MultiMediaError(
                f"No image captured within {self.config.capture_timeout:g}s",
                ErrorCode.API_TIMEOUT,
                retryable=True,
            ))
            return
        await self.handle_screenshot_capture(image)

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    async def handle_screenshot_capture(self, image: CapturedImage):
        """Analyze a captured image and derive a validated prompt."""
        if image is None or image.size == 0:
            self._fail(WorkflowStep.SCREENSHOT, InvalidParameterError("Invalid screenshot: empty image"))
            return

        run = self._run
        self._update(
            status=WorkflowStatus.ANALYZING,
            current_step=WorkflowStep.ANALYSIS,
            screenshot=image,
            error=None,
        )

        try:
            analysis = await self.analysis_service.analyze_image(image)
            if not analysis or not analysis.strip():
                raise ValueError("Image analysis returned empty result")

            prompt = await self.analysis_service.generate_prompt(analysis)
            if not prompt or not prompt.strip():
                raise ValueError("Prompt generation returned empty result")

            if not await self.analysis_service.validate_prompt(prompt):
                raise ValueError("Generated prompt failed validation")
        except Exception as e:
            if run == self._run:
                self._fail(WorkflowStep.ANALYSIS, e)
            return

        if run != self._run:
            return
        self._update(
            status=WorkflowStatus.COMPLETE,
            current_step=WorkflowStep.GENERATION,
            analysis=analysis,
            generated_prompt=prompt,
        )
        logger.info("Clone workflow ready for review")

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def handle_prompt_generation(self, prompt: str):
        """Generate the cloned image from a (possibly edited) prompt."""
        if not prompt or not prompt.strip():
            raise InvalidParameterError("Prompt cannot be empty", "prompt")

        run = self._run
        self._update(
            status=WorkflowStatus.GENERATING,
            current_step=WorkflowStep.GENERATION,
            generated_prompt=prompt,
            error=None,
        )

        try:
            if not await self.analysis_service.validate_prompt(prompt):
                raise ValueError("Prompt validation failed")
            response = await self.analysis_service.service.generate_image(TextToImageRequest(prompt=prompt))
            images = response.data.images if response.data else []
            if not images:
                raise ValueError("Image generation returned no images")
        except Exception as e:
            if run == self._run:
                self._fail(WorkflowStep.GENERATION, e)
            return

        if run != self._run:
            return
        self._update(status=WorkflowStatus.COMPLETE, cloned_image_url=images[0])

    def update_prompt(self, new_prompt: str):
        if not new_prompt or not new_prompt.strip():
            raise InvalidParameterError("Prompt cannot be empty", "prompt")
        self._update(generated_prompt=new_prompt)

    # ------------------------------------------------------------------
    # Retry / cancel
    # ------------------------------------------------------------------

    async def retry_workflow(self):
        """Re-enter the step that failed. Only valid from ``error``."""
        if self.state.status != WorkflowStatus.ERROR or self.state.error is None:
            raise InvalidStateTransition(self.state.status, WorkflowStatus.CAPTURING)
        if self.retry_count >= self.config.max_retries:
            raise MultiMediaError("Maximum retry attempts exceeded", details={"max_retries": self.config.max_retries})

        self.retry_count += 1
        step = self.state.error.step
        logger.info(f"Retrying clone workflow at {step.value} ({self.retry_count}/{self.config.max_retries})")

        if step == WorkflowStep.GENERATION and self.state.generated_prompt:
            await self.handle_prompt_generation(self.state.generated_prompt)
        elif step == WorkflowStep.ANALYSIS and self.state.screenshot is not None:
            await self.handle_screenshot_capture(self.state.screenshot)
        else:
            self._update(status=WorkflowStatus.CAPTURING, current_step=WorkflowStep.SCREENSHOT, error=None)
            await self._capture_and_analyze()

    def cancel_workflow(self):
        """Return to idle and drop the captured image. Provider calls in flight are abandoned."""
        logger.info("Cancelling clone workflow")
        self._run += 1
        self.image_source.cancel()
        self.retry_count = 0
        self._update(
            status=WorkflowStatus.IDLE,
            current_step=WorkflowStep.SCREENSHOT,
            screenshot=None,
            analysis=None,
            generated_prompt=None,
            cloned_image_url=None,
            error=None,
        )

    def reset(self):
        self.cancel_workflow()
