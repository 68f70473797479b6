"""Turn raw detector output into trustworthy per-frame boxes."""
from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from finger_capture.app.config.settings import CaptureSettings
from finger_capture.core.models import DetectionBox, Rect
from finger_capture.core.suppressor import Suppressor
from finger_capture.core.validator import GeometricValidator

LOGGER = logging.getLogger(__name__)


class DetectionPostProcessor:
    """Validate every raw box, then suppress overlaps among the survivors."""

    def __init__(
        self,
        settings: CaptureSettings,
        validator: Optional[GeometricValidator] = None,
        suppressor: Optional[Suppressor] = None,
    ) -> None:
        self.validator = validator or GeometricValidator(settings)
        self.suppressor = suppressor or Suppressor(settings)

    def process(
        self,
        raw_boxes: Optional[Iterable[DetectionBox]],
        region: Rect,
        frame_width: float,
        frame_height: float,
    ) -> List[DetectionBox]:
        if raw_boxes is None:
            return []
        raw = list(raw_boxes)
        valid = [box for box in raw if self.validator.validate(box, region, frame_width, frame_height)]
        filtered = self.suppressor.suppress(valid)
        LOGGER.debug("Post-processing: %d raw -> %d valid -> %d kept", len(raw), len(valid), len(filtered))
        return filtered
