"""Entry point for live finger capture from a camera or video file."""
from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Any, Optional, Union

import cv2
import numpy as np

from finger_capture.adapters.still_writer import StillWriter
from finger_capture.app.config.settings import CaptureSettings, load_settings
from finger_capture.core.models import Phase, QualityAssessment, Rect, SharpnessVerdict
from finger_capture.core.region import CaptureRegion, resolve_region
from finger_capture.core.session import CaptureSession, SessionListener
from finger_capture.services.capture_service import CaptureService, LatestFrameStill
from finger_capture.services.detector import DetectorUnavailableError, build_backends, select_backend
from finger_capture.utils.imaging import prepare_still
from finger_capture.utils.video import iter_frames, managed_capture, parse_source

LOGGER = logging.getLogger(__name__)

WINDOW_NAME = "Finger Capture"
REGION_COLOR = (255, 255, 255)
BOX_COLOR = (0, 255, 0)
OUTSIDE_COLOR = (0, 0, 255)
READY_COLOR = (0, 200, 255)


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Capture one sharp still of fingers placed in the D-shape region")
    parser.add_argument("--source", type=str, default="0", help="Video source path or device index")
    parser.add_argument("--model", type=str, default=None, help="Path to YOLO weights file")
    parser.add_argument("--backend", choices=["yolo", "dnn", "auto"], default="auto", help="Detection backend")
    parser.add_argument("--conf", type=float, default=None, help="Confidence threshold")
    parser.add_argument("--region-config", type=str, default=None, help="Capture region YAML file")
    parser.add_argument("--output-dir", type=str, default=None, help="Directory for accepted stills")
    parser.add_argument("--no-display", action="store_true", help="Disable OpenCV window display")
    parser.add_argument("--log-format", choices=["text", "json"], default=None, help="Logging format")
    return parser


def setup_logging(settings: CaptureSettings) -> None:
    if settings.log_format == "json":
        formatter = logging.Formatter('{"time": "%(asctime)s", "level": "%(levelname)s", "message": "%(message)s"}')
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    logging.basicConfig(level=logging.INFO, handlers=[handler])


def resolve_settings(args: argparse.Namespace) -> CaptureSettings:
    overrides: dict = {}
    if args.model:
        overrides["model_path"] = Path(args.model)
    if args.backend != "auto":
        overrides["backend_order"] = [args.backend]
    if args.conf is not None:
        overrides["confidence_threshold"] = args.conf
    if args.region_config:
        overrides["region_config_path"] = Path(args.region_config)
    if args.output_dir:
        overrides["output_dir"] = Path(args.output_dir)
    if args.no_display:
        overrides["display"] = False
    if args.log_format:
        overrides["log_format"] = args.log_format
    return load_settings(**overrides)


class ConsoleListener(SessionListener):
    """Logs session feedback and saves the accepted still, cropped to the capture region."""

    def __init__(self, writer: StillWriter, settings: CaptureSettings, region: Optional[Rect] = None) -> None:
        self.writer = writer
        self.settings = settings
        self.region = region
        self.last_assessment: Optional[QualityAssessment] = None
        self.progress = 0
        self.saved_path: Optional[Path] = None

    def on_quality_update(self, assessment: QualityAssessment) -> None:
        if self.last_assessment is None or assessment.recommendation != self.last_assessment.recommendation:
            LOGGER.info("%s", assessment.recommendation)
        self.last_assessment = assessment

    def on_stability_changed(self, stable: bool, progress: int) -> None:
        self.progress = progress

    def on_capture_accepted(self, image: Any, verdict: SharpnessVerdict) -> None:
        still = prepare_still(image, self.region, self.settings)
        self.saved_path = self.writer.save(still, verdict)

    def on_capture_rejected(self, reason: str) -> None:
        LOGGER.info("Still rejected (%s), retaking automatically", reason)


def annotate_frame(
    frame: np.ndarray,
    region: CaptureRegion,
    assessment: Optional[QualityAssessment],
    phase: Phase,
    progress: int,
    window_size: int,
) -> np.ndarray:
    output = frame.copy()
    outline = np.array(region.outline(), dtype=np.int32).reshape(-1, 1, 2)
    color = READY_COLOR if phase == Phase.ACCUMULATING else REGION_COLOR
    cv2.polylines(output, [outline], isClosed=True, color=color, thickness=2, lineType=cv2.LINE_AA)
    lines = [f"{phase.value} | stabilizing {progress}/{window_size}"]
    if assessment is not None:
        for box in assessment.boxes:
            x1, y1, x2, y2 = map(int, box.bounds.as_tuple())
            box_color = BOX_COLOR if region.outline_contains(box.bounds.center) else OUTSIDE_COLOR
            cv2.rectangle(output, (x1, y1), (x2, y2), box_color, 2)
            cv2.putText(
                output,
                f"{box.confidence:.2f}",
                (x1, max(0, y1 - 5)),
                cv2.FONT_HERSHEY_SIMPLEX,
                0.5,
                box_color,
                1,
                lineType=cv2.LINE_AA,
            )
        lines.append(assessment.recommendation)
    y_offset = 30
    for line in lines:
        cv2.putText(output, line, (10, y_offset), cv2.FONT_HERSHEY_SIMPLEX, 0.6, REGION_COLOR, 2, lineType=cv2.LINE_AA)
        y_offset += 25
    return output


async def feed_frames(
    capture: cv2.VideoCapture,
    service: CaptureService,
    still: LatestFrameStill,
    listener: ConsoleListener,
    region: CaptureRegion,
    settings: CaptureSettings,
) -> None:
    frames = iter_frames(capture)
    try:
        while not service.session.has_captured:
            frame = await asyncio.to_thread(next, frames, None)
            if frame is None:
                break
            still.update(frame.data)
            service.submit(frame.data)
            if settings.display:
                annotated = annotate_frame(
                    frame.data,
                    region,
                    listener.last_assessment,
                    service.session.phase,
                    listener.progress,
                    settings.stability_window_size,
                )
                cv2.imshow(WINDOW_NAME, annotated)
                key = cv2.waitKey(1) & 0xFF
                if key in (ord("q"), 27):
                    LOGGER.info("Quit signal received from keyboard")
                    break
                if key == ord("p"):
                    if service.session.is_paused:
                        service.resume()
                    else:
                        service.pause()
            await asyncio.sleep(0)
    finally:
        service.stop()


async def run_capture(video_source: Union[int, str], settings: CaptureSettings) -> int:
    backend = select_backend(build_backends(settings))
    writer = StillWriter(settings.output_dir, settings.jpeg_quality)
    listener = ConsoleListener(writer, settings)
    still = LatestFrameStill()
    try:
        with managed_capture(video_source) as capture:
            width = int(capture.get(cv2.CAP_PROP_FRAME_WIDTH))
            height = int(capture.get(cv2.CAP_PROP_FRAME_HEIGHT))
            region = resolve_region(settings.region_config_path, width, height)
            listener.region = region.bounds
            session = CaptureSession.from_settings(settings, region.bounds, listener=listener)
            service = CaptureService(settings, session, backend, still)
            await asyncio.gather(
                service.run(),
                feed_frames(capture, service, still, listener, region, settings),
            )
    finally:
        backend.close()
    if listener.saved_path is None:
        LOGGER.warning("Stream ended without an accepted capture")
        return 1
    LOGGER.info("Capture complete: %s", listener.saved_path)
    return 0


def run(args: argparse.Namespace) -> int:
    settings = resolve_settings(args)
    setup_logging(settings)
    LOGGER.info("Starting finger capture")
    try:
        return asyncio.run(run_capture(parse_source(args.source), settings))
    except DetectorUnavailableError as exc:
        LOGGER.error("%s", exc)
        return 1
    finally:
        if settings.display:
            cv2.destroyAllWindows()


def main() -> None:
    parser = build_arg_parser()
    args = parser.parse_args()

    def handle_interrupt(signum: int, frame: Optional[object]) -> None:  # pragma: no cover - signal handling
        LOGGER.warning("Received interrupt signal (%d), shutting down", signum)
        sys.exit(130)

    signal.signal(signal.SIGINT, handle_interrupt)
    sys.exit(run(args))


if __name__ == "__main__":  # pragma: no cover
    main()
