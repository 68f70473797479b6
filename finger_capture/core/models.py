"""Shared value objects for the capture decision pipeline."""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Sequence, Tuple

Point = Tuple[float, float]


@dataclass(frozen=True)
class Rect:
    """Axis-aligned rectangle in frame-pixel coordinates."""

    left: float
    top: float
    right: float
    bottom: float

    @property
    def width(self) -> float:
        return self.right - self.left

    @property
    def height(self) -> float:
        return self.bottom - self.top

    @property
    def area(self) -> float:
        return max(self.width, 0.0) * max(self.height, 0.0)

    @property
    def center(self) -> Point:
        return ((self.left + self.right) / 2.0, (self.top + self.bottom) / 2.0)

    @property
    def is_valid(self) -> bool:
        return self.right > self.left and self.bottom > self.top

    def inflate_horizontal(self, ratio: float) -> "Rect":
        """Return a copy grown by ``ratio`` of its width on the left and right."""

        delta = self.width * ratio
        return Rect(self.left - delta, self.top, self.right + delta, self.bottom)

    def contains(self, point: Point) -> bool:
        x, y = point
        return self.left <= x <= self.right and self.top <= y <= self.bottom

    def as_tuple(self) -> Tuple[float, float, float, float]:
        return (self.left, self.top, self.right, self.bottom)

    @classmethod
    def from_xyxy(cls, values: Sequence[float]) -> "Rect":
        x1, y1, x2, y2 = values
        return cls(float(x1), float(y1), float(x2), float(y2))


@dataclass(frozen=True)
class DetectionBox:
    """One candidate finger in one frame."""

    bounds: Rect
    confidence: float
    class_id: int = 0

    def __post_init__(self) -> None:
        if not self.bounds.is_valid:
            raise ValueError(f"Degenerate detection bounds: {self.bounds}")

    @property
    def center(self) -> Point:
        return self.bounds.center

    @property
    def width(self) -> float:
        return self.bounds.width

    @property
    def height(self) -> float:
        return self.bounds.height

    @property
    def area(self) -> float:
        return self.bounds.area

    @classmethod
    def from_xyxy(cls, values: Sequence[float], confidence: float, class_id: int = 0) -> "DetectionBox":
        return cls(bounds=Rect.from_xyxy(values), confidence=float(confidence), class_id=int(class_id))


@dataclass(frozen=True)
class DetectionFrame:
    """Filtered boxes from one processed frame."""

    boxes: Tuple[DetectionBox, ...]
    timestamp: float = field(default_factory=time.time)

    @property
    def is_empty(self) -> bool:
        return not self.boxes


@dataclass(frozen=True)
class QualityAssessment:
    mean_confidence: float
    object_count: int
    is_acceptable: bool
    recommendation: str
    boxes: Tuple[DetectionBox, ...] = ()


@dataclass(frozen=True)
class SharpnessMetrics:
    """Focus measurements for one captured still."""

    laplacian_variance: float
    tenengrad_score: float
    contrast_std: float = 0.0
    glare_ratio: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {
            "laplacian_variance": round(self.laplacian_variance, 3),
            "tenengrad_score": round(self.tenengrad_score, 3),
            "contrast_std": round(self.contrast_std, 3),
            "glare_ratio": round(self.glare_ratio, 5),
        }


@dataclass(frozen=True)
class SharpnessVerdict:
    """Outcome of judging one still; scores are ``None`` when blur rejection short-circuits."""

    metrics: Optional[SharpnessMetrics]
    accepted: bool
    reason: str
    lap_norm: Optional[float] = None
    ten_norm: Optional[float] = None
    combined_score: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "accepted": self.accepted,
            "reason": self.reason,
            "lap_norm": self.lap_norm,
            "ten_norm": self.ten_norm,
            "combined_score": self.combined_score,
            "metrics": self.metrics.to_dict() if self.metrics else None,
        }


class Phase(str, Enum):
    POSITIONING = "positioning"
    DETECTING = "detecting"
    ACCUMULATING = "accumulating"
    CAPTURING = "capturing"
    VALIDATING = "validating"
    ACCEPTED = "accepted"
    RETAKE = "retake"


@dataclass(frozen=True)
class FrameDecision:
    """What the session concluded about one live frame."""

    phase: Phase
    assessment: Optional[QualityAssessment] = None
    stable: bool = False
    ready_frame_count: int = 0
    triggered: bool = False
    ignored: bool = False


@dataclass(frozen=True)
class CaptureOutcome:
    accepted: bool
    reason: str
    verdict: Optional[SharpnessVerdict] = None
