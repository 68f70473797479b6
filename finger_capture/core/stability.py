"""Temporal stability gate over the most recent detection frames."""
from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import Deque, List, Optional, Sequence, Tuple

from finger_capture.app.config.settings import CaptureSettings
from finger_capture.core.models import DetectionBox, DetectionFrame, Rect
from finger_capture.core.validator import GeometricValidator
from finger_capture.utils.geometry import intersection_over_union, safe_ratio

LOGGER = logging.getLogger(__name__)

# Slack for float noise at the closed size-ratio bounds.
_RATIO_EPSILON = 1e-9


@dataclass(frozen=True)
class PairCheck:
    iou: float
    size_ratio: Optional[float]
    passed: bool


@dataclass(frozen=True)
class StabilityReport:
    passed: bool
    reason: str
    selected: Tuple[DetectionBox, ...] = ()
    pairs: Tuple[PairCheck, ...] = ()
    progress: int = 0


class StabilityTracker:
    """Track one physical object across the window and judge whether it held still.

    Frames arrive from the capture loop while diagnostics may read the history
    from another thread, so every access goes through a single lock.
    """

    def __init__(self, settings: CaptureSettings, validator: Optional[GeometricValidator] = None) -> None:
        self.settings = settings
        self.validator = validator or GeometricValidator(settings)
        self._history: Deque[DetectionFrame] = deque(maxlen=settings.history_size)
        self._lock = threading.Lock()

    @property
    def window_size(self) -> int:
        return self.settings.stability_window_size

    def add_frame(self, frame: DetectionFrame) -> None:
        with self._lock:
            self._history.append(frame)

    def clear(self) -> None:
        with self._lock:
            self._history.clear()

    def snapshot(self) -> List[DetectionFrame]:
        with self._lock:
            return list(self._history)

    def __len__(self) -> int:
        with self._lock:
            return len(self._history)

    def progress(self) -> int:
        """Number of trailing non-empty frames, capped at the window size."""

        return self._trailing_non_empty(self.snapshot())

    def _trailing_non_empty(self, frames: Sequence[DetectionFrame]) -> int:
        count = 0
        for frame in reversed(frames):
            if frame.is_empty or count >= self.window_size:
                break
            count += 1
        return count

    @staticmethod
    def select_chain(frames: Sequence[DetectionFrame]) -> List[DetectionBox]:
        """Pick one box per frame: strongest in the first, then best overlap with the previous pick."""

        selected: List[DetectionBox] = []
        for frame in frames:
            if frame.is_empty:
                return []
            if not selected:
                choice = max(frame.boxes, key=lambda box: box.confidence)
            else:
                previous = selected[-1].bounds
                choice = max(frame.boxes, key=lambda box: intersection_over_union(previous, box.bounds))
            selected.append(choice)
        return selected

    def evaluate(self, region: Rect) -> StabilityReport:
        frames = self.snapshot()
        window = self.window_size
        progress = self._trailing_non_empty(frames)
        if len(frames) < window:
            return StabilityReport(False, "insufficient_history", progress=progress)
        recent = frames[-window:]
        if any(frame.is_empty for frame in recent):
            return StabilityReport(False, "empty_frame", progress=progress)

        selected = self.select_chain(recent)
        if not all(self.validator.position_ok(box, region) for box in selected):
            return StabilityReport(False, "out_of_region", selected=tuple(selected), progress=progress)

        cfg = self.settings
        low = 1.0 - cfg.stability_size_tolerance - _RATIO_EPSILON
        high = 1.0 + cfg.stability_size_tolerance + _RATIO_EPSILON
        pairs: List[PairCheck] = []
        for previous, current in zip(selected, selected[1:]):
            iou = intersection_over_union(previous.bounds, current.bounds)
            size_ratio = safe_ratio(current.area, previous.area)
            ok = iou >= cfg.stability_iou_threshold and size_ratio is not None and low <= size_ratio <= high
            LOGGER.debug("Stability pair: iou=%.3f size_ratio=%s ok=%s", iou, size_ratio, ok)
            pairs.append(PairCheck(iou=iou, size_ratio=size_ratio, passed=ok))

        passed = all(pair.passed for pair in pairs)
        return StabilityReport(
            passed=passed,
            reason="stable" if passed else "unstable",
            selected=tuple(selected),
            pairs=tuple(pairs),
            progress=progress,
        )

    def should_capture(self, region: Rect) -> bool:
        return self.evaluate(region).passed
