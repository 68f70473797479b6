"""Per-frame quality feedback and the stricter capture eligibility policy."""
from __future__ import annotations

from typing import Sequence

from finger_capture.app.config.settings import CaptureSettings
from finger_capture.core.models import DetectionBox, QualityAssessment


class QualityAssessor:
    def __init__(self, settings: CaptureSettings) -> None:
        self.settings = settings

    def assess(self, boxes: Sequence[DetectionBox]) -> QualityAssessment:
        """Summarise the frame for live feedback; lenient on purpose."""

        cfg = self.settings
        count = len(boxes)
        mean_confidence = sum(box.confidence for box in boxes) / count if count else 0.0
        acceptable = cfg.min_objects <= count <= cfg.max_objects and mean_confidence >= cfg.min_mean_confidence
        return QualityAssessment(
            mean_confidence=mean_confidence,
            object_count=count,
            is_acceptable=acceptable,
            recommendation=self._recommend(count, mean_confidence),
            boxes=tuple(boxes),
        )

    def _recommend(self, count: int, mean_confidence: float) -> str:
        cfg = self.settings
        percent = int(mean_confidence * 100)
        if count == 0:
            return "No fingers detected. Please place your fingers in the D-shape area."
        if count < cfg.min_objects:
            return f"Detected {count} fingers. Please place at least {cfg.min_objects} fingers in the D-shape."
        if count > cfg.max_objects:
            return f"Too many fingers detected. Please use {cfg.min_objects}-{cfg.max_objects} fingers."
        if mean_confidence < cfg.low_confidence_hint:
            return f"Low confidence ({percent}%). Please adjust finger position for better quality."
        return f"Perfect! {count} fingers detected with {percent}% confidence. Ready for capture."

    def is_capture_eligible(self, assessment: QualityAssessment) -> bool:
        cfg = self.settings
        return (
            assessment.is_acceptable
            and cfg.capture_min_objects <= assessment.object_count <= cfg.capture_max_objects
            and assessment.mean_confidence >= cfg.capture_min_confidence
        )
