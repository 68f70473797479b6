"""Geometry helper utilities for rectangles and polygons."""
from __future__ import annotations

from typing import Iterable, Optional

import cv2
import numpy as np

from finger_capture.core.models import Point, Rect


def intersection_over_union(a: Rect, b: Rect) -> float:
    """Return IoU of two rectangles, zero when they do not overlap."""

    left = max(a.left, b.left)
    top = max(a.top, b.top)
    right = min(a.right, b.right)
    bottom = min(a.bottom, b.bottom)
    if right <= left or bottom <= top:
        return 0.0
    intersection = (right - left) * (bottom - top)
    union = a.area + b.area - intersection
    if union <= 0:
        return 0.0
    return intersection / union


def safe_ratio(numerator: float, denominator: float) -> Optional[float]:
    """Return ``numerator / denominator`` or None for a zero or negative denominator."""

    if denominator <= 0:
        return None
    return numerator / denominator


def polygon_contains_point(polygon: Iterable[Point], point: Point) -> bool:
    """Return True if the point lies inside the polygon using OpenCV point test."""

    contour = np.array(list(polygon), dtype=np.float32)
    if len(contour) < 3:
        return False
    result = cv2.pointPolygonTest(contour, (float(point[0]), float(point[1])), False)
    return result >= 0
