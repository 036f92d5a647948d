"""
Monitoring Controller - Sensor sampling loop bound to an active exam

Each controller owns one modality's loop:

    capture -> analyze -> classify -> debounce -> report violation

The capture device is acquired with `async with`, so it is released on
every exit path. Any failure that ends the loop (device, model or an
unexpected driver error) is converted into a single error violation,
after which the modality is disabled and not restarted automatically.
"""

import asyncio
import logging
from enum import Enum
from functools import partial
from typing import Any, Awaitable, Callable, Dict, Optional, Type

from ..exam.errors import DeviceUnavailable, ModelUnavailable
from ..exam.models import DetectionState, Modality, Violation, ViolationKind
from .classifier import Classification, classify_audio, classify_faces
from .debouncer import ViolationDebouncer
from .utils.logging import log_monitor_disabled

logger = logging.getLogger(__name__)

VISION_PERIOD_SECONDS = 0.1
AUDIO_PERIOD_SECONDS = 0.0  # frame-driven: each read blocks for one buffer


class MonitorStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    DISABLED = "disabled"
    STOPPED = "stopped"


class MonitoringController:
    """
    Owns a repeating sampling loop for one sensor modality.

    Args:
        modality: Which sensor this controller samples
        capture_factory: Zero-arg callable returning an async context manager
                         whose value has `async read()`
        analyzer: Callable turning a raw capture into an observation
        classify: Callable turning an observation into a Classification
        on_violation: Coroutine function receiving each reported Violation
        error_kinds: Maps fatal exception types to (violation kind, description)
        fallback_error: (violation kind, description) for any other error
                        that ends the loop
        period: Seconds to wait between ticks
        on_state: Optional callback receiving the DetectionState after each tick
        run_analyzer_in_thread: Run the analyzer off the event loop
    """

    def __init__(
        self,
        modality: Modality,
        capture_factory: Callable[[], Any],
        analyzer: Callable[[Any], Any],
        classify: Callable[[Any], Classification],
        on_violation: Callable[[Violation], Awaitable[None]],
        error_kinds: Dict[Type[Exception], tuple],
        fallback_error: tuple,
        period: float = VISION_PERIOD_SECONDS,
        on_state: Optional[Callable[[Modality, DetectionState], None]] = None,
        run_analyzer_in_thread: bool = True,
        session_id: str = ""
    ):
        self.modality = modality
        self.period = period
        self.session_id = session_id
        self._capture_factory = capture_factory
        self._analyzer = analyzer
        self._classify = classify
        self._on_violation = on_violation
        self._on_state = on_state
        self._error_kinds = error_kinds
        self._fallback_error = fallback_error
        self._run_in_thread = run_analyzer_in_thread

        self._debouncer = ViolationDebouncer(name=modality.value)
        self._task: Optional[asyncio.Task] = None
        self._stopping = False

        self.status = MonitorStatus.IDLE
        self.state = DetectionState()
        self.ticks = 0
        self.last_error: Optional[str] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        """Start the sampling loop. Must be called from inside a running loop."""
        if self.running:
            return
        if self.status == MonitorStatus.DISABLED:
            logger.info(f"{self.modality.value} monitoring is disabled; not restarting")
            return

        self._stopping = False
        self.status = MonitorStatus.RUNNING
        self._task = asyncio.get_running_loop().create_task(self._run())

    def request_stop(self):
        """Cancel the loop without waiting for it to unwind"""
        self._stopping = True
        if self._task is None or self._task.done():
            return
        if self._task is not asyncio.current_task():
            self._task.cancel()

    async def stop(self):
        """Cancel the loop and wait until the device has been released"""
        self.request_stop()
        task = self._task
        if task is None or task is asyncio.current_task():
            return
        try:
            await task
        except asyncio.CancelledError:
            if not task.cancelled():
                raise
        except Exception as e:
            logger.error(f"{self.modality.value} monitor ended with error: {e}")

    async def _run(self):
        try:
            async with self._capture_factory() as device:
                while not self._stopping:
                    await self._tick(device)
                    await asyncio.sleep(self.period)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await self._disable(e)
        finally:
            self._debouncer.reset()
            self.state = DetectionState()
            if self.status == MonitorStatus.RUNNING:
                self.status = MonitorStatus.STOPPED

    async def _tick(self, device):
        raw = await device.read()

        try:
            if self._run_in_thread:
                observation = await asyncio.to_thread(self._analyzer, raw)
            else:
                observation = self._analyzer(raw)
            classification = self._classify(observation)
        except (DeviceUnavailable, ModelUnavailable):
            raise
        except Exception as e:
            logger.warning(f"{self.modality.value} analysis error: {e}")
            return

        self.ticks += 1
        self._update_state(classification)

        violation = self._debouncer.update(classification)
        if violation is not None:
            await self._report(violation)

    def _update_state(self, classification: Classification):
        if self.modality == Modality.VISION:
            count = classification.face_count
            self.state = DetectionState(
                face_present=bool(count) if count is not None else None,
                face_count=count,
                gaze_direction=classification.gaze_direction,
                confidence=classification.confidence
            )
        else:
            self.state = DetectionState(audio_level=classification.audio_level)

        if self._on_state is not None:
            try:
                self._on_state(self.modality, self.state)
            except Exception as e:
                logger.warning(f"Detection state listener error: {e}")

    async def _disable(self, error: Exception):
        kind, description = self._lookup_error(error)
        self.status = MonitorStatus.DISABLED
        self.last_error = str(error)
        log_monitor_disabled(self.session_id, self.modality.value, str(error))
        await self._report(Violation(kind=kind, description=description))

    def _lookup_error(self, error: Exception):
        for error_type, mapping in self._error_kinds.items():
            if isinstance(error, error_type):
                return mapping
        logger.error(f"Unexpected {self.modality.value} monitor error: {error!r}")
        return self._fallback_error

    async def _report(self, violation: Violation):
        try:
            await self._on_violation(violation)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Failed to report {violation.kind.value} violation: {e}")


def vision_monitor(
    capture_factory: Callable[[], Any],
    analyzer: Callable[[Any], Any],
    on_violation: Callable[[Violation], Awaitable[None]],
    period: float = VISION_PERIOD_SECONDS,
    left_threshold: float = 1.15,
    right_threshold: float = 0.85,
    **kwargs
) -> MonitoringController:
    """Camera pipeline: frame -> face detections -> classification"""
    return MonitoringController(
        modality=Modality.VISION,
        capture_factory=capture_factory,
        analyzer=analyzer,
        classify=partial(classify_faces, left_threshold=left_threshold, right_threshold=right_threshold),
        on_violation=on_violation,
        error_kinds={
            ModelUnavailable: (ViolationKind.MODEL_ERROR, "Failed to load face detection models"),
            DeviceUnavailable: (ViolationKind.CAMERA_ERROR, "Unable to access camera"),
        },
        fallback_error=(ViolationKind.CAMERA_ERROR, "Camera monitoring failed"),
        period=period,
        **kwargs
    )


def audio_monitor(
    capture_factory: Callable[[], Any],
    analyzer: Callable[[Any], Any],
    on_violation: Callable[[Violation], Awaitable[None]],
    period: float = AUDIO_PERIOD_SECONDS,
    threshold: float = 30.0,
    **kwargs
) -> MonitoringController:
    """Microphone pipeline: buffer -> loudness level -> classification"""
    return MonitoringController(
        modality=Modality.AUDIO,
        capture_factory=capture_factory,
        analyzer=analyzer,
        classify=partial(classify_audio, threshold=threshold),
        on_violation=on_violation,
        error_kinds={
            DeviceUnavailable: (ViolationKind.AUDIO_ERROR, "Unable to access microphone"),
            ModelUnavailable: (ViolationKind.AUDIO_ERROR, "Audio analysis unavailable"),
        },
        fallback_error=(ViolationKind.AUDIO_ERROR, "Microphone monitoring failed"),
        period=period,
        **kwargs
    )
