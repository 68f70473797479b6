import logging
import threading
from typing import Any, Iterable, Optional

from finger_capture.app.config.settings import CaptureSettings
from finger_capture.core.models import (
    CaptureOutcome,
    DetectionBox,
    DetectionFrame,
    FrameDecision,
    Phase,
    QualityAssessment,
    Rect,
    SharpnessMetrics,
    SharpnessVerdict,
)
from finger_capture.core.postprocessor import DetectionPostProcessor
from finger_capture.core.quality import QualityAssessor
from finger_capture.core.sharpness import REASON_PROCESSING_ERROR, SharpnessGate
from finger_capture.core.stability import StabilityTracker
from finger_capture.core.validator import GeometricValidator


logger = logging.getLogger(__name__)

_BUSY_PHASES = (Phase.CAPTURING, Phase.VALIDATING)


class SessionListener:
    """Receives session events. Override only what you need."""

    def on_quality_update(self, assessment: QualityAssessment) -> None:
        pass

    def on_stability_changed(self, stable: bool, progress: int) -> None:
        pass

    def on_phase_changed(self, previous: Phase, current: Phase) -> None:
        pass

    def on_capture_requested(self) -> None:
        pass

    def on_capture_accepted(self, image: Any, verdict: SharpnessVerdict) -> None:
        pass

    def on_capture_rejected(self, reason: str) -> None:
        pass


class CaptureSession:
    """Decide when to take exactly one still of a positioned, steady hand.

    All counters and history live on the instance; start a new session (or
    call ``reset``) to capture again.
    """

    def __init__(
        self,
        settings: CaptureSettings,
        region: Rect,
        postprocessor: DetectionPostProcessor,
        assessor: QualityAssessor,
        tracker: StabilityTracker,
        sharpness: SharpnessGate,
        listener: Optional[SessionListener] = None,
    ) -> None:
        self.settings = settings
        self.region = region
        self.postprocessor = postprocessor
        self.assessor = assessor
        self.tracker = tracker
        self.sharpness = sharpness
        self.listener = listener or SessionListener()
        self._lock = threading.RLock()
        self._phase = Phase.POSITIONING
        self._ready_frame_count = 0
        self._has_captured = False
        self._paused = False
        self._last_stability: Optional[tuple] = None

    @classmethod
    def from_settings(
        cls,
        settings: CaptureSettings,
        region: Rect,
        listener: Optional[SessionListener] = None,
    ) -> "CaptureSession":
        validator = GeometricValidator(settings)
        return cls(
            settings=settings,
            region=region,
            postprocessor=DetectionPostProcessor(settings, validator=validator),
            assessor=QualityAssessor(settings),
            tracker=StabilityTracker(settings, validator=validator),
            sharpness=SharpnessGate(settings),
            listener=listener,
        )

    @property
    def phase(self) -> Phase:
        with self._lock:
            return self._phase

    @property
    def ready_frame_count(self) -> int:
        with self._lock:
            return self._ready_frame_count

    @property
    def has_captured(self) -> bool:
        with self._lock:
            return self._has_captured

    @property
    def is_capturing(self) -> bool:
        with self._lock:
            return self._phase in _BUSY_PHASES

    @property
    def is_paused(self) -> bool:
        with self._lock:
            return self._paused

    def _set_phase(self, phase: Phase) -> None:
        previous = self._phase
        if previous == phase:
            return
        self._phase = phase
        logger.info("Capture phase %s -> %s", previous.value, phase.value)
        self.listener.on_phase_changed(previous, phase)

    def _ignored(self) -> FrameDecision:
        return FrameDecision(phase=self._phase, ready_frame_count=self._ready_frame_count, ignored=True)

    def update_region(self, region: Rect) -> None:
        """Swap the capture region; history gathered against the old one is discarded."""

        with self._lock:
            self.region = region
            self._ready_frame_count = 0
            self.tracker.clear()

    def process_frame(
        self,
        raw_boxes: Optional[Iterable[DetectionBox]],
        frame_width: float,
        frame_height: float,
    ) -> FrameDecision:
        with self._lock:
            if self._paused or self._has_captured or self._phase in _BUSY_PHASES:
                return self._ignored()

            boxes = self.postprocessor.process(raw_boxes, self.region, frame_width, frame_height)
            self.tracker.add_frame(DetectionFrame(boxes=tuple(boxes)))
            assessment = self.assessor.assess(boxes)
            self.listener.on_quality_update(assessment)

            report = self.tracker.evaluate(self.region)
            stability_state = (report.passed, report.progress)
            if stability_state != self._last_stability:
                self._last_stability = stability_state
                self.listener.on_stability_changed(report.passed, report.progress)

            ready = (
                self.assessor.is_capture_eligible(assessment)
                and report.passed
                and assessment.mean_confidence > self.settings.ready_confidence_threshold
            )
            if ready:
                self._ready_frame_count += 1
                self._set_phase(Phase.ACCUMULATING)
            else:
                self._ready_frame_count = 0
                self._set_phase(Phase.DETECTING if boxes else Phase.POSITIONING)

            triggered = False
            if self._ready_frame_count >= self.settings.ready_frames_required:
                self._ready_frame_count = 0
                triggered = True
                self._set_phase(Phase.CAPTURING)
                logger.info("Capture requested (%d fingers, mean confidence %.2f)", assessment.object_count, assessment.mean_confidence)
                self.listener.on_capture_requested()

            return FrameDecision(
                phase=self._phase,
                assessment=assessment,
                stable=report.passed,
                ready_frame_count=self._ready_frame_count,
                triggered=triggered,
            )

    def complete_capture(self, image: Any, metrics: Optional[SharpnessMetrics] = None) -> CaptureOutcome:
        """Validate the still delivered for the pending capture request."""

        with self._lock:
            if self._phase != Phase.CAPTURING:
                logger.debug("Ignoring still delivered in phase %s", self._phase.value)
                return CaptureOutcome(accepted=False, reason="not_capturing")
            self._set_phase(Phase.VALIDATING)
            try:
                if metrics is None:
                    metrics = self.sharpness.compute_metrics(image)
                verdict = self.sharpness.evaluate(metrics)
            except Exception:
                logger.exception("Sharpness evaluation failed, forcing retake")
                self.sharpness.reset()
                verdict = SharpnessVerdict(metrics=metrics, accepted=False, reason=REASON_PROCESSING_ERROR)

            if not verdict.accepted:
                self._retake(verdict.reason)
                return CaptureOutcome(accepted=False, reason=verdict.reason, verdict=verdict)

            self._has_captured = True
            self._set_phase(Phase.ACCEPTED)
            self.listener.on_capture_accepted(image, verdict)
            return CaptureOutcome(accepted=True, reason=verdict.reason, verdict=verdict)

    def fail_capture(self, reason: str) -> CaptureOutcome:
        """Abort the pending capture because the camera or measurement failed."""

        with self._lock:
            if self._phase not in _BUSY_PHASES:
                logger.debug("Ignoring capture failure '%s' in phase %s", reason, self._phase.value)
                return CaptureOutcome(accepted=False, reason="not_capturing")
            logger.warning("Capture failed: %s", reason)
            self.sharpness.reset()
            self._retake(reason)
            return CaptureOutcome(accepted=False, reason=reason)

    def _retake(self, reason: str) -> None:
        self._ready_frame_count = 0
        self.tracker.clear()
        self._last_stability = None
        self._set_phase(Phase.RETAKE)
        self.listener.on_capture_rejected(reason)
        self._set_phase(Phase.POSITIONING)

    def _clear_progress(self) -> None:
        self._ready_frame_count = 0
        self._last_stability = None
        self.tracker.clear()
        self.sharpness.reset()

    def pause(self) -> None:
        """Stop accepting frames and drop any accumulation or pending capture."""

        with self._lock:
            self._paused = True
            self._clear_progress()
            if not self._has_captured:
                self._set_phase(Phase.POSITIONING)
            logger.info("Capture session paused")

    def resume(self) -> None:
        with self._lock:
            self._paused = False
            self._clear_progress()
            logger.info("Capture session resumed")

    def reset(self) -> None:
        """Return to a freshly constructed session, including after an accepted capture."""

        with self._lock:
            self._paused = False
            self._has_captured = False
            self._clear_progress()
            self._set_phase(Phase.POSITIONING)
            logger.info("Capture session reset")
