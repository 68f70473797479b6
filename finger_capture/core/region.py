"""Capture region handling (the D-shaped overlay fingers must be centred in)."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import yaml

from finger_capture.core.models import Point, Rect
from finger_capture.utils.geometry import polygon_contains_point

LOGGER = logging.getLogger(__name__)

DEFAULT_WIDTH_FACTOR = 0.95
DEFAULT_HEIGHT_FACTOR = 0.55


@dataclass(frozen=True)
class CaptureRegion:
    """Rectangle bounding the D-shaped capture overlay, in image coordinates."""

    bounds: Rect

    @property
    def is_valid(self) -> bool:
        return self.bounds.is_valid

    @classmethod
    def from_frame(
        cls,
        frame_width: int,
        frame_height: int,
        width_factor: float = DEFAULT_WIDTH_FACTOR,
        height_factor: float = DEFAULT_HEIGHT_FACTOR,
    ) -> "CaptureRegion":
        """Centre a region covering the given fractions of the frame."""

        region_width = frame_width * width_factor
        region_height = frame_height * height_factor
        left = (frame_width - region_width) / 2.0
        top = (frame_height - region_height) / 2.0
        return cls(Rect(left, top, left + region_width, top + region_height))

    @classmethod
    def from_yaml(cls, path: Path, frame_width: int, frame_height: int) -> "CaptureRegion":
        """Load a region description; explicit ``bounds`` win over size factors.

        When a ``view`` block (``width``, ``height``, optional ``rotation``) is present the
        bounds are taken as preview-view coordinates and mapped into the frame.
        """

        with path.open("r", encoding="utf-8") as handle:
            payload = yaml.safe_load(handle) or {}
        bounds = payload.get("bounds")
        if isinstance(bounds, (list, tuple)) and len(bounds) == 4:
            rect = Rect.from_xyxy(bounds)
            view = payload.get("view")
            if isinstance(view, dict):
                rect = map_view_to_image(
                    rect,
                    float(view.get("width", 0)),
                    float(view.get("height", 0)),
                    frame_width,
                    frame_height,
                    rotation_degrees=int(view.get("rotation", 0)),
                )
            region = cls(rect)
        else:
            region = cls.from_frame(
                frame_width,
                frame_height,
                width_factor=float(payload.get("width_factor", DEFAULT_WIDTH_FACTOR)),
                height_factor=float(payload.get("height_factor", DEFAULT_HEIGHT_FACTOR)),
            )
        LOGGER.info("Capture region loaded from %s: %s", path, region.bounds.as_tuple())
        return region

    def outline(self, arc_segments: int = 16) -> List[Point]:
        """Return the D-shape polygon: flat left edge, semicircular right edge."""

        b = self.bounds
        radius = min(b.height / 2.0, b.width)
        arc_cx = b.right - radius
        arc_cy = (b.top + b.bottom) / 2.0
        points: List[Point] = [(b.left, b.top), (arc_cx, b.top)]
        for step in range(1, arc_segments):
            angle = -math.pi / 2.0 + math.pi * step / arc_segments
            points.append((arc_cx + radius * math.cos(angle), arc_cy + radius * math.sin(angle)))
        points.append((arc_cx, b.bottom))
        points.append((b.left, b.bottom))
        return points

    def outline_contains(self, point: Point) -> bool:
        if not self.is_valid:
            return False
        return polygon_contains_point(self.outline(), point)


def map_view_to_image(
    overlay: Rect,
    view_width: float,
    view_height: float,
    image_width: int,
    image_height: int,
    rotation_degrees: int = 0,
) -> Rect:
    """Map an overlay rectangle from preview-view space into image space.

    The image may be rotated relative to the view by a multiple of 90 degrees.
    A zero-sized view leaves the rectangle untouched.
    """

    if view_width <= 0 or view_height <= 0:
        return overlay
    scale_x = image_width / view_width
    scale_y = image_height / view_height
    left = overlay.left * scale_x
    top = overlay.top * scale_y
    right = overlay.right * scale_x
    bottom = overlay.bottom * scale_y

    rotation = rotation_degrees % 360
    if rotation == 90:
        return Rect(top, image_width - right, bottom, image_width - left)
    if rotation == 180:
        return Rect(image_width - right, image_height - bottom, image_width - left, image_height - top)
    if rotation == 270:
        return Rect(image_height - bottom, left, image_height - top, right)
    return Rect(left, top, right, bottom)


def resolve_region(path: Optional[Path], frame_width: int, frame_height: int) -> CaptureRegion:
    """Load the configured region, falling back to the centred default."""

    if path is not None and path.exists():
        return CaptureRegion.from_yaml(path, frame_width, frame_height)
    LOGGER.warning("Region config %s not found, using centred default", path)
    return CaptureRegion.from_frame(frame_width, frame_height)
