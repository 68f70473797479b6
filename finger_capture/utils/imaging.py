"""Still post-processing applied before an accepted capture is written."""
from __future__ import annotations

import logging
import math
from typing import Optional

import cv2
import numpy as np

from finger_capture.app.config.settings import CaptureSettings
from finger_capture.core.models import Rect

LOGGER = logging.getLogger(__name__)


def crop_to_region(image: np.ndarray, bounds: Rect) -> np.ndarray:
    """Crop to the region clamped to the image; the full image is kept if nothing remains."""

    height, width = image.shape[:2]
    left = max(0, int(math.floor(bounds.left)))
    top = max(0, int(math.floor(bounds.top)))
    right = min(width, int(math.ceil(bounds.right)))
    bottom = min(height, int(math.ceil(bounds.bottom)))
    if right <= left or bottom <= top:
        LOGGER.warning("Capture region %s lies outside the %dx%d still, keeping full frame", bounds.as_tuple(), width, height)
        return image
    cropped = image[top:bottom, left:right].copy()
    LOGGER.debug("Cropped still to %dx%d", cropped.shape[1], cropped.shape[0])
    return cropped


def enhance_still(
    image: np.ndarray,
    clip_limit: float = 1.2,
    tile_size: int = 8,
    sigma: float = 1.0,
    amount: float = 0.3,
) -> np.ndarray:
    """Gentle CLAHE followed by an unsharp mask on the grayscale still."""

    if image.ndim == 3 and image.shape[2] == 4:
        gray = cv2.cvtColor(image, cv2.COLOR_BGRA2GRAY)
    elif image.ndim == 3:
        gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
    else:
        gray = image
    clahe = cv2.createCLAHE(clipLimit=clip_limit, tileGridSize=(tile_size, tile_size))
    equalized = clahe.apply(gray)
    blurred = cv2.GaussianBlur(equalized, (0, 0), sigma)
    return cv2.addWeighted(equalized, 1.0 + amount, blurred, -amount, 0.0)


def prepare_still(image: np.ndarray, region: Optional[Rect], settings: CaptureSettings) -> np.ndarray:
    output = image
    if settings.crop_to_region and region is not None:
        output = crop_to_region(output, region)
    if settings.enhance_still:
        output = enhance_still(
            output,
            clip_limit=settings.clahe_clip_limit,
            tile_size=settings.clahe_tile_size,
            sigma=settings.unsharp_sigma,
            amount=settings.unsharp_amount,
        )
        LOGGER.debug("Enhanced still (clip %.2f, unsharp %.2f)", settings.clahe_clip_limit, settings.unsharp_amount)
    return output
