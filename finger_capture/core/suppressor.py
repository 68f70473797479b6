"""Overlap suppression with protection for the narrowest candidates."""
from __future__ import annotations

import logging
from typing import List, Sequence, Set

from finger_capture.app.config.settings import CaptureSettings
from finger_capture.core.models import DetectionBox
from finger_capture.utils.geometry import intersection_over_union

LOGGER = logging.getLogger(__name__)


class Suppressor:
    """Greedy non-maximum suppression.

    With the shield policy on and enough candidates present, the
    ``shielded_count`` narrowest boxes can never be suppressed by a
    higher-confidence neighbour. A thin finger (usually the pinky) tends to
    overlap its neighbour's box and would otherwise be dropped.
    """

    def __init__(self, settings: CaptureSettings) -> None:
        self.settings = settings

    @property
    def threshold(self) -> float:
        return self.settings.nms_threshold

    def _shielded(self, ordered: Sequence[DetectionBox]) -> Set[int]:
        cfg = self.settings
        if not cfg.shield_enabled or cfg.shielded_count <= 0 or len(ordered) < cfg.shield_min_candidates:
            return set()
        by_width = sorted(range(len(ordered)), key=lambda idx: ordered[idx].width)
        return set(by_width[: cfg.shielded_count])

    def suppress(self, boxes: Sequence[DetectionBox]) -> List[DetectionBox]:
        if not boxes:
            return []
        ordered = sorted(boxes, key=lambda box: box.confidence, reverse=True)
        shielded = self._shielded(ordered)
        suppressed = [False] * len(ordered)
        kept: List[DetectionBox] = []
        for i, current in enumerate(ordered):
            if suppressed[i]:
                continue
            kept.append(current)
            for j in range(i + 1, len(ordered)):
                if suppressed[j] or j in shielded:
                    continue
                if intersection_over_union(current.bounds, ordered[j].bounds) > self.threshold:
                    suppressed[j] = True
        LOGGER.debug("Suppression kept %d of %d boxes (shielded=%s)", len(kept), len(ordered), sorted(shielded))
        return kept
