"""Post-capture focus and glare gate for still images."""
from __future__ import annotations

import logging
import math

import cv2
import numpy as np

from finger_capture.app.config.settings import CaptureSettings
from finger_capture.core.models import SharpnessMetrics, SharpnessVerdict

LOGGER = logging.getLogger(__name__)

REASON_BLURRY = "blurry"
REASON_LOW_SHARPNESS = "low_sharpness"
REASON_GLARE = "glare"
REASON_LOW_CONTRAST = "low_contrast"
REASON_AWAITING_CLEAR = "awaiting_consecutive_clear"
REASON_PROCESSING_ERROR = "processing_error"
REASON_SHARP = "sharp"


def _clamp_unit(value: float) -> float:
    if not math.isfinite(value):
        return 0.0
    return min(max(value, 0.0), 1.0)


class SharpnessGate:
    """Measure a still, judge it, and apply the consecutive-clear damper.

    Runs once per captured still, never on preview frames.
    """

    def __init__(self, settings: CaptureSettings) -> None:
        self.settings = settings
        self._consecutive_clear = 0

    @property
    def consecutive_clear(self) -> int:
        return self._consecutive_clear

    def reset(self) -> None:
        self._consecutive_clear = 0

    def _prepare(self, image: np.ndarray) -> np.ndarray:
        if image is None or image.size == 0:
            raise ValueError("Cannot measure sharpness of an empty image")
        gray = image if image.ndim == 2 else cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        height, width = gray.shape[:2]
        longest = max(height, width)
        limit = self.settings.sharpness_max_side
        if longest > limit:
            scale = limit / float(longest)
            size = (max(1, int(round(width * scale))), max(1, int(round(height * scale))))
            gray = cv2.resize(gray, size, interpolation=cv2.INTER_AREA)
        return gray

    def compute_metrics(self, image: np.ndarray) -> SharpnessMetrics:
        gray = self._prepare(image)
        laplacian_variance = float(cv2.Laplacian(gray, cv2.CV_64F).var())
        gx = cv2.Sobel(gray, cv2.CV_64F, 1, 0, ksize=3)
        gy = cv2.Sobel(gray, cv2.CV_64F, 0, 1, ksize=3)
        tenengrad = float(np.mean(gx * gx + gy * gy))
        contrast = float(gray.std())
        glare = float(np.count_nonzero(gray > self.settings.glare_pixel_threshold)) / float(gray.size)
        metrics = SharpnessMetrics(
            laplacian_variance=laplacian_variance,
            tenengrad_score=tenengrad,
            contrast_std=contrast,
            glare_ratio=glare,
        )
        LOGGER.debug("Sharpness metrics: %s", metrics.to_dict())
        return metrics

    def judge(self, metrics: SharpnessMetrics) -> SharpnessVerdict:
        """Score one still without touching the damper."""

        cfg = self.settings
        lap = metrics.laplacian_variance
        if math.isfinite(lap) and lap < cfg.blur_reject_variance:
            return SharpnessVerdict(metrics=metrics, accepted=False, reason=REASON_BLURRY)

        span = cfg.blur_pass_variance - cfg.blur_reject_variance
        lap_norm = _clamp_unit((lap - cfg.blur_reject_variance) / span)
        ten_norm = _clamp_unit(metrics.tenengrad_score / cfg.tenengrad_expected_max)
        combined = cfg.laplacian_weight * lap_norm + (1.0 - cfg.laplacian_weight) * ten_norm

        if combined < cfg.combined_accept_threshold:
            reason, accepted = REASON_LOW_SHARPNESS, False
        elif cfg.glare_reject_ratio is not None and metrics.glare_ratio >= cfg.glare_reject_ratio:
            reason, accepted = REASON_GLARE, False
        elif cfg.min_contrast_std is not None and metrics.contrast_std < cfg.min_contrast_std:
            reason, accepted = REASON_LOW_CONTRAST, False
        else:
            reason, accepted = REASON_SHARP, True
        return SharpnessVerdict(
            metrics=metrics,
            accepted=accepted,
            reason=reason,
            lap_norm=lap_norm,
            ten_norm=ten_norm,
            combined_score=combined,
        )

    def evaluate(self, metrics: SharpnessMetrics) -> SharpnessVerdict:
        verdict = self.judge(metrics)
        if not verdict.accepted:
            self._consecutive_clear = 0
            LOGGER.info("Still rejected (%s): %s", verdict.reason, metrics.to_dict())
            return verdict

        self._consecutive_clear += 1
        if self._consecutive_clear < self.settings.required_consecutive_clear:
            LOGGER.info(
                "Still clear %d/%d, requesting another",
                self._consecutive_clear,
                self.settings.required_consecutive_clear,
            )
            return SharpnessVerdict(
                metrics=metrics,
                accepted=False,
                reason=REASON_AWAITING_CLEAR,
                lap_norm=verdict.lap_norm,
                ten_norm=verdict.ten_norm,
                combined_score=verdict.combined_score,
            )
        self._consecutive_clear = 0
        LOGGER.info("Still accepted (combined=%.3f)", verdict.combined_score)
        return verdict
