import asyncio
import logging
import time
from typing import List, Optional, Protocol, Sequence

import numpy as np

from finger_capture.app.config.settings import CaptureSettings
from finger_capture.core.models import CaptureOutcome, DetectionBox, FrameDecision, Rect
from finger_capture.core.session import CaptureSession
from finger_capture.core.sharpness import REASON_PROCESSING_ERROR
from finger_capture.services.detector import DetectionBackend, safe_detect


logger = logging.getLogger(__name__)

REASON_CAMERA_ERROR = "camera_error"


class StillSource(Protocol):
    async def capture_still(self) -> np.ndarray:
        ...


class LatestFrameStill:
    """Still source that hands back a copy of the most recent preview frame."""

    def __init__(self) -> None:
        self._frame: Optional[np.ndarray] = None

    def update(self, frame: np.ndarray) -> None:
        self._frame = frame

    async def capture_still(self) -> np.ndarray:
        if self._frame is None:
            raise RuntimeError("No frame available to capture")
        return self._frame.copy()


class CaptureService:
    """Single consumer that feeds queued preview frames through one capture session."""

    def __init__(
        self,
        settings: CaptureSettings,
        session: CaptureSession,
        backend: DetectionBackend,
        still_source: StillSource,
    ) -> None:
        self.settings = settings
        self.session = session
        self.backend = backend
        self.still_source = still_source
        self._queue: Optional[asyncio.Queue] = None
        self._stopping = False
        self._dropped = 0
        self._last_processed_at: Optional[float] = None
        self.last_outcome: Optional[CaptureOutcome] = None

    @property
    def queue(self) -> asyncio.Queue:
        # Created on first use so it binds to the running loop.
        if self._queue is None:
            self._queue = asyncio.Queue(maxsize=self.settings.frame_queue_size)
        return self._queue

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    @property
    def dropped(self) -> int:
        return self._dropped

    def submit(self, frame: np.ndarray) -> bool:
        """Queue a preview frame without blocking; the oldest frame is dropped when full."""

        if self._stopping or self.session.is_paused:
            return False
        queue = self.queue
        if queue.full():
            queue.get_nowait()
            self._dropped += 1
        queue.put_nowait(frame)
        return True

    def _drain(self) -> None:
        if self._queue is None:
            return
        while not self._queue.empty():
            self._queue.get_nowait()

    def pause(self) -> None:
        self.session.pause()
        self._drain()

    def resume(self) -> None:
        self.session.resume()

    def update_region(self, region: Rect) -> None:
        self.session.update_region(region)

    def stop(self) -> None:
        self._stopping = True
        self._drain()
        self.queue.put_nowait(None)

    async def detect(self, frame: np.ndarray) -> Sequence[DetectionBox]:
        """Run the backend off the event loop; a timeout counts as zero detections."""

        try:
            return await asyncio.wait_for(
                asyncio.to_thread(safe_detect, self.backend, frame),
                timeout=self.settings.detect_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("Detection exceeded %.2fs, treating frame as empty", self.settings.detect_timeout_seconds)
            return []

    async def process_frame(self, frame: np.ndarray) -> FrameDecision:
        if self.session.is_capturing or self.session.is_paused or self.session.has_captured:
            return self.session.process_frame([], 0, 0)
        height, width = frame.shape[:2]
        boxes: List[DetectionBox] = list(await self.detect(frame))
        decision = self.session.process_frame(boxes, width, height)
        if decision.triggered:
            self.last_outcome = await self.capture()
        return decision

    async def capture(self) -> CaptureOutcome:
        """Fetch a still for the pending request and hand its sharpness to the session."""

        try:
            image = await self.still_source.capture_still()
        except Exception as exc:
            logger.warning("Still capture failed: %s", exc)
            return self.session.fail_capture(REASON_CAMERA_ERROR)
        try:
            metrics = await asyncio.to_thread(self.session.sharpness.compute_metrics, image)
        except Exception:
            logger.exception("Sharpness computation failed")
            return self.session.fail_capture(REASON_PROCESSING_ERROR)
        return self.session.complete_capture(image, metrics)

    async def _throttle(self) -> None:
        interval = self.settings.poll_interval_ms / 1000.0
        if interval <= 0 or self._last_processed_at is None:
            return
        remaining = interval - (time.monotonic() - self._last_processed_at)
        if remaining > 0:
            await asyncio.sleep(remaining)

    async def run(self) -> Optional[CaptureOutcome]:
        """Consume frames until a still is accepted or ``stop`` is called."""

        logger.info("Capture service started with %s backend", getattr(self.backend, "name", "unknown"))
        while True:
            # Throttle before dequeuing so the frame handled is the newest one.
            await self._throttle()
            frame = await self.queue.get()
            if frame is None:
                break
            self._last_processed_at = time.monotonic()
            await self.process_frame(frame)
            if self.session.has_captured:
                break
        logger.info("Capture service stopped (dropped %d frames)", self._dropped)
        return self.last_outcome
