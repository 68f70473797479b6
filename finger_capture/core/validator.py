"""Plausibility checks for single finger detections."""
from __future__ import annotations

import logging

from finger_capture.app.config.settings import CaptureSettings
from finger_capture.core.models import DetectionBox, Rect
from finger_capture.utils.geometry import safe_ratio

LOGGER = logging.getLogger(__name__)


class GeometricValidator:
    """Decide whether a box is positioned in the region and shaped like a finger."""

    def __init__(self, settings: CaptureSettings) -> None:
        self.settings = settings

    def position_ok(self, box: DetectionBox, region: Rect) -> bool:
        """Centre-in-region test with horizontal tolerance; degenerate regions never match."""

        if not region.is_valid:
            return False
        tolerant = region.inflate_horizontal(self.settings.position_tolerance_ratio)
        return tolerant.contains(box.center)

    def shape_ok(self, box: DetectionBox, frame_width: float, frame_height: float) -> bool:
        cfg = self.settings
        if frame_width <= 0 or frame_height <= 0:
            return False
        width, height = box.width, box.height

        min_side = min(frame_width, frame_height) * cfg.min_size_ratio
        if min(width, height) < min_side:
            LOGGER.debug("Shape rejected: too small (%.0fx%.0f)", width, height)
            return False
        if width > frame_width * cfg.max_extent_ratio or height > frame_height * cfg.max_extent_ratio:
            LOGGER.debug("Shape rejected: spans the frame (%.0fx%.0f)", width, height)
            return False

        small_or_narrow = width < frame_width * cfg.small_box_ratio or height < frame_height * cfg.small_box_ratio
        if cfg.shield_enabled and small_or_narrow:
            aspect_min, aspect_max = cfg.shield_aspect_min, cfg.shield_aspect_max
        else:
            aspect_min, aspect_max = cfg.aspect_min, cfg.aspect_max
        aspect = safe_ratio(width, height)
        if aspect is None or not aspect_min <= aspect <= aspect_max:
            LOGGER.debug("Shape rejected: aspect %s outside %.2f-%.2f", aspect, aspect_min, aspect_max)
            return False

        min_area = cfg.shield_min_area_ratio if cfg.shield_enabled else cfg.min_area_ratio
        area_ratio = safe_ratio(box.area, frame_width * frame_height)
        if area_ratio is None or not min_area <= area_ratio <= cfg.max_area_ratio:
            LOGGER.debug("Shape rejected: area ratio %s outside %.4f-%.2f", area_ratio, min_area, cfg.max_area_ratio)
            return False
        return True

    def validate(self, box: DetectionBox, region: Rect, frame_width: float, frame_height: float) -> bool:
        if not self.position_ok(box, region):
            LOGGER.debug("Position rejected: centre %s outside region", box.center)
            return False
        return self.shape_ok(box, frame_width, frame_height)
