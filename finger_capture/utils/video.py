"""Camera and video file helpers for the capture loop."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Generator, Iterable, Union

import cv2
import numpy as np

LOGGER = logging.getLogger(__name__)


@dataclass
class Frame:
    index: int
    data: np.ndarray
    timestamp_ms: float

    @property
    def width(self) -> int:
        return int(self.data.shape[1])

    @property
    def height(self) -> int:
        return int(self.data.shape[0])


def parse_source(source: str) -> Union[int, str]:
    """Interpret a numeric string as a camera index, anything else as a path or URL."""

    try:
        return int(source)
    except ValueError:
        return source


def open_video_source(source: Union[int, str]) -> cv2.VideoCapture:
    capture = cv2.VideoCapture(source)
    if not capture.isOpened():
        raise RuntimeError(f"Unable to open video source: {source}")
    LOGGER.info("Video source %s opened", source)
    return capture


@contextmanager
def managed_capture(source: Union[int, str]) -> Generator[cv2.VideoCapture, None, None]:
    capture = open_video_source(source)
    try:
        yield capture
    finally:
        LOGGER.info("Releasing video source")
        capture.release()


def iter_frames(capture: cv2.VideoCapture) -> Iterable[Frame]:
    """Yield frames until the stream ends."""

    index = 0
    fps = capture.get(cv2.CAP_PROP_FPS) or 0
    while True:
        success, data = capture.read()
        if not success:
            LOGGER.info("End of stream reached after %d frames", index)
            break
        index += 1
        timestamp_ms = (index / fps * 1000) if fps else 0.0
        yield Frame(index=index, data=data, timestamp_ms=timestamp_ms)
