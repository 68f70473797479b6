import cv2
import numpy as np

from finger_capture.adapters.still_writer import StillWriter
from finger_capture.app.capture import BOX_COLOR, OUTSIDE_COLOR, ConsoleListener, annotate_frame
from finger_capture.app.config.settings import load_settings
from finger_capture.core.models import DetectionBox, Phase, QualityAssessment, SharpnessMetrics, SharpnessVerdict
from finger_capture.core.region import CaptureRegion

REGION = CaptureRegion.from_frame(400, 400)


def sharp_verdict() -> SharpnessVerdict:
    return SharpnessVerdict(
        metrics=SharpnessMetrics(laplacian_variance=100.0, tenengrad_score=1800.0),
        accepted=True,
        reason="sharp",
        lap_norm=1.0,
        ten_norm=0.9,
        combined_score=0.97,
    )


def test_accepted_still_is_saved_cropped_to_the_region(tmp_path) -> None:
    listener = ConsoleListener(StillWriter(tmp_path), load_settings(), REGION.bounds)

    listener.on_capture_accepted(np.full((400, 400, 3), 90, dtype=np.uint8), sharp_verdict())

    saved = cv2.imread(str(listener.saved_path))
    assert saved.shape == (220, 380, 3)


def test_enhanced_still_is_saved_as_grayscale(tmp_path) -> None:
    listener = ConsoleListener(StillWriter(tmp_path), load_settings(enhance_still=True), REGION.bounds)

    listener.on_capture_accepted(np.full((400, 400, 3), 90, dtype=np.uint8), sharp_verdict())

    saved = cv2.imread(str(listener.saved_path), cv2.IMREAD_UNCHANGED)
    assert saved.shape == (220, 380)


def test_boxes_outside_the_outline_are_flagged() -> None:
    frame = np.zeros((400, 400, 3), dtype=np.uint8)
    inside = DetectionBox.from_xyxy((40.0, 150.0, 80.0, 250.0), 0.9)
    # Centre sits in the cut-off corner of the rounded edge.
    outside = DetectionBox.from_xyxy((370.0, 90.0, 388.0, 110.0), 0.9)
    assessment = QualityAssessment(
        mean_confidence=0.9,
        object_count=2,
        is_acceptable=True,
        recommendation="",
        boxes=(inside, outside),
    )

    output = annotate_frame(frame, REGION, assessment, Phase.DETECTING, 0, 5)

    assert REGION.outline_contains(inside.center)
    assert not REGION.outline_contains(outside.center)
    assert tuple(int(v) for v in output[200, 40]) == BOX_COLOR
    assert tuple(int(v) for v in output[100, 388]) == OUTSIDE_COLOR
