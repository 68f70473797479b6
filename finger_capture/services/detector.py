"""Finger detection backends and the startup probe that picks one."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List, Optional, Protocol, Sequence

import cv2
import numpy as np

from finger_capture.app.config.settings import CaptureSettings
from finger_capture.core.models import DetectionBox

LOGGER = logging.getLogger(__name__)


class DetectorUnavailableError(RuntimeError):
    """Raised when no detection backend could be initialised."""


class DetectionBackend(Protocol):
    name: str

    def initialize(self) -> bool:
        ...

    def detect(self, image: np.ndarray) -> List[DetectionBox]:
        ...

    def close(self) -> None:
        ...


def _clamped_box(x1: float, y1: float, x2: float, y2: float, width: int, height: int) -> Optional[List[float]]:
    x1, x2 = max(0.0, x1), min(float(width), x2)
    y1, y2 = max(0.0, y1), min(float(height), y2)
    if x2 <= x1 or y2 <= y1:
        return None
    return [x1, y1, x2, y2]


class YOLODetector:
    """Ultralytics YOLO inference for the single finger class."""

    name = "yolo"

    def __init__(self, model_path: Path, confidence: float, iou: float = 0.7) -> None:
        self.model_path = model_path
        self.confidence = confidence
        self.iou = iou
        self._model = None

    def initialize(self) -> bool:
        if self._model is not None:
            return True
        if not self.model_path.exists():
            LOGGER.warning("YOLO weights not found at %s", self.model_path)
            return False
        try:
            from ultralytics import YOLO
        except ImportError:
            LOGGER.warning("ultralytics is not installed; YOLO backend unavailable")
            return False
        LOGGER.info("Loading YOLO model from %s", self.model_path)
        self._model = YOLO(str(self.model_path))
        return True

    def detect(self, image: np.ndarray) -> List[DetectionBox]:
        """Run inference on a frame and return finger boxes in pixel coordinates."""

        if self._model is None:
            raise RuntimeError("YOLO backend used before initialize()")
        height, width = image.shape[:2]
        results = self._model(image, verbose=False, iou=self.iou, conf=self.confidence)
        detections: List[DetectionBox] = []
        for result in results:
            boxes = result.boxes
            if boxes is None:
                continue
            for box in boxes:
                confidence = float(box.conf.item())
                if confidence < self.confidence:
                    continue
                x1, y1, x2, y2 = box.xyxy.cpu().numpy().flatten().tolist()[:4]
                clamped = _clamped_box(x1, y1, x2, y2, width, height)
                if clamped is None:
                    continue
                detections.append(DetectionBox.from_xyxy(clamped, confidence, int(box.cls.item())))
        LOGGER.debug("YOLO detected %d fingers", len(detections))
        return detections

    def close(self) -> None:
        self._model = None


class OpenCVDnnDetector:
    """Fallback backend running an ONNX export through ``cv2.dnn``.

    The network output is ``[1, N, 6]`` rows of normalised
    ``(cx, cy, w, h, objectness, class_prob)``; rows are scored by objectness.
    """

    name = "dnn"

    def __init__(self, model_path: Path, confidence: float, input_size: int = 640) -> None:
        self.model_path = model_path
        self.confidence = confidence
        self.input_size = input_size
        self._net = None

    def initialize(self) -> bool:
        if self._net is not None:
            return True
        if not self.model_path.exists():
            LOGGER.warning("ONNX model not found at %s", self.model_path)
            return False
        try:
            self._net = cv2.dnn.readNetFromONNX(str(self.model_path))
        except cv2.error as exc:
            LOGGER.warning("OpenCV could not load %s: %s", self.model_path, exc)
            return False
        LOGGER.info("Loaded ONNX model %s with OpenCV DNN", self.model_path)
        return True

    def decode(self, output: np.ndarray, width: int, height: int) -> List[DetectionBox]:
        rows = np.asarray(output, dtype=np.float32).reshape(-1, 6)
        detections: List[DetectionBox] = []
        for cx, cy, w, h, objectness, _ in rows:
            score = float(objectness)
            if score < self.confidence:
                continue
            cx, cy, w, h = cx * width, cy * height, w * width, h * height
            clamped = _clamped_box(cx - w / 2.0, cy - h / 2.0, cx + w / 2.0, cy + h / 2.0, width, height)
            if clamped is None:
                continue
            detections.append(DetectionBox.from_xyxy(clamped, score))
        return detections

    def detect(self, image: np.ndarray) -> List[DetectionBox]:
        if self._net is None:
            raise RuntimeError("DNN backend used before initialize()")
        height, width = image.shape[:2]
        blob = cv2.dnn.blobFromImage(
            image,
            scalefactor=1.0 / 255.0,
            size=(self.input_size, self.input_size),
            swapRB=True,
            crop=False,
        )
        self._net.setInput(blob)
        detections = self.decode(self._net.forward(), width, height)
        LOGGER.debug("DNN detected %d fingers", len(detections))
        return detections

    def close(self) -> None:
        self._net = None


def build_backends(settings: CaptureSettings) -> List[DetectionBackend]:
    """Instantiate the configured backends in probe order."""

    factories = {
        "yolo": lambda: YOLODetector(settings.model_path, settings.confidence_threshold),
        "dnn": lambda: OpenCVDnnDetector(
            settings.dnn_model_path, settings.confidence_threshold, settings.dnn_input_size
        ),
    }
    return [factories[name]() for name in settings.backend_order]


def select_backend(candidates: Iterable[DetectionBackend]) -> DetectionBackend:
    """Return the first candidate that initialises, trying them in order."""

    tried: List[str] = []
    for candidate in candidates:
        name = getattr(candidate, "name", type(candidate).__name__)
        tried.append(name)
        if candidate.initialize():
            LOGGER.info("Using %s detection backend", name)
            return candidate
        LOGGER.warning("Detection backend %s unavailable, trying next", name)
    raise DetectorUnavailableError(f"No detection backend could be initialised (tried: {', '.join(tried) or 'none'})")


def safe_detect(backend: DetectionBackend, image: np.ndarray) -> Sequence[DetectionBox]:
    """Run detection, treating any backend failure as an empty frame."""

    try:
        return backend.detect(image)
    except Exception as exc:
        LOGGER.warning("Detection failed on %s backend: %s", getattr(backend, "name", "unknown"), exc)
        return []
