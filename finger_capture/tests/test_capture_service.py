import asyncio
import time

import numpy as np
import pytest

from finger_capture.app.config.settings import load_settings
from finger_capture.core.models import DetectionBox, Phase
from finger_capture.core.region import CaptureRegion
from finger_capture.core.session import CaptureSession
from finger_capture.services.capture_service import CaptureService, LatestFrameStill

FRAME = np.zeros((1000, 1000, 3), dtype=np.uint8)


def sharp_still() -> np.ndarray:
    tiles = (np.indices((400, 400)) // 20).sum(axis=0) % 2
    return np.where(tiles == 1, 200, 40).astype(np.uint8)


class FingerBackend:
    name = "fake"

    def initialize(self) -> bool:
        return True

    def detect(self, image):
        return [
            DetectionBox.from_xyxy((250.0 + 200.0 * idx, 400.0, 350.0 + 200.0 * idx, 600.0), 0.9)
            for idx in range(3)
        ]

    def close(self) -> None:
        pass


class SlowBackend(FingerBackend):
    def detect(self, image):
        time.sleep(0.3)
        return super().detect(image)


class StaticStill:
    def __init__(self, image=None, error: Exception = None) -> None:
        self.image = image
        self.error = error
        self.calls = 0

    async def capture_still(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.image


def make_service(backend=None, still=None, **overrides) -> CaptureService:
    options = {"poll_interval_ms": 0, "frame_queue_size": 10}
    options.update(overrides)
    settings = load_settings(**options)
    region = CaptureRegion.from_frame(1000, 1000).bounds
    session = CaptureSession.from_settings(settings, region)
    return CaptureService(settings, session, backend or FingerBackend(), still or StaticStill(sharp_still()))


def test_run_stops_after_accepted_capture() -> None:
    still = StaticStill(sharp_still())
    service = make_service(still=still)

    async def scenario():
        for _ in range(8):
            service.submit(FRAME)
        return await service.run()

    outcome = asyncio.run(scenario())

    assert outcome is not None and outcome.accepted
    assert still.calls == 1
    assert service.session.phase == Phase.ACCEPTED
    assert service.pending == 1


def test_full_queue_drops_oldest_frame() -> None:
    service = make_service(frame_queue_size=2)
    first, second, third = (np.full((10, 10, 3), value, dtype=np.uint8) for value in (1, 2, 3))

    async def scenario():
        for frame in (first, second, third):
            assert service.submit(frame)
        return service.queue.get_nowait()

    oldest = asyncio.run(scenario())

    assert oldest is second
    assert service.dropped == 1


def test_detection_timeout_counts_as_empty_frame() -> None:
    service = make_service(backend=SlowBackend(), detect_timeout_seconds=0.05)

    decision = asyncio.run(service.process_frame(FRAME))

    assert decision.assessment.object_count == 0
    assert decision.phase == Phase.POSITIONING


def test_camera_failure_forces_retake() -> None:
    service = make_service(still=StaticStill(error=RuntimeError("camera busy")))

    async def scenario():
        for _ in range(7):
            await service.process_frame(FRAME)

    asyncio.run(scenario())

    assert service.last_outcome.reason == "camera_error"
    assert service.session.phase == Phase.POSITIONING
    assert not service.session.has_captured


def test_blurry_still_is_rejected() -> None:
    service = make_service(still=StaticStill(np.full((200, 200), 90, dtype=np.uint8)))

    async def scenario():
        for _ in range(7):
            await service.process_frame(FRAME)

    asyncio.run(scenario())

    assert service.last_outcome.reason == "blurry"
    assert service.session.ready_frame_count == 0


def test_measurement_failure_is_processing_error() -> None:
    service = make_service(still=StaticStill(np.zeros((0, 0), dtype=np.uint8)))

    async def scenario():
        for _ in range(7):
            await service.process_frame(FRAME)

    asyncio.run(scenario())

    assert service.last_outcome.reason == "processing_error"


def test_pause_drains_queue_and_blocks_intake() -> None:
    service = make_service()

    async def scenario():
        service.submit(FRAME)
        service.submit(FRAME)
        service.pause()
        assert service.pending == 0
        assert not service.submit(FRAME)
        service.resume()
        assert service.submit(FRAME)

    asyncio.run(scenario())
    assert service.session.ready_frame_count == 0


def test_stop_ends_the_consumer() -> None:
    service = make_service()

    async def scenario():
        service.submit(FRAME)
        service.stop()
        return await service.run()

    assert asyncio.run(scenario()) is None
    assert not service.submit(FRAME)


@pytest.mark.parametrize("has_frame", [False, True])
def test_latest_frame_still(has_frame: bool) -> None:
    still = LatestFrameStill()
    if has_frame:
        still.update(FRAME)
        image = asyncio.run(still.capture_still())
        assert image is not FRAME
        assert image.shape == FRAME.shape
    else:
        with pytest.raises(RuntimeError):
            asyncio.run(still.capture_still())


class RecordingBackend(FingerBackend):
    def __init__(self) -> None:
        self.seen = []

    def detect(self, image):
        self.seen.append(int(image[0, 0, 0]))
        return super().detect(image)


def test_throttled_consumer_processes_the_newest_frame() -> None:
    backend = RecordingBackend()
    service = make_service(backend=backend, poll_interval_ms=200, frame_queue_size=1)

    def tagged(value: int) -> np.ndarray:
        return np.full((10, 10, 3), value, dtype=np.uint8)

    async def scenario():
        consumer = asyncio.create_task(service.run())
        service.submit(tagged(1))
        await asyncio.sleep(0.05)
        service.submit(tagged(2))
        await asyncio.sleep(0.02)
        service.submit(tagged(3))
        await asyncio.sleep(0.3)
        service.stop()
        await consumer

    asyncio.run(scenario())

    assert backend.seen == [1, 3]
    assert service.dropped == 1
