from finger_capture.app.config.settings import load_settings
from finger_capture.core.models import DetectionBox, Rect
from finger_capture.core.postprocessor import DetectionPostProcessor
from finger_capture.core.suppressor import Suppressor


def make_box(x1: float, y1: float, x2: float, y2: float, confidence: float) -> DetectionBox:
    return DetectionBox.from_xyxy((x1, y1, x2, y2), confidence)


def test_overlapping_lower_confidence_box_is_suppressed() -> None:
    suppressor = Suppressor(load_settings())
    strong = make_box(0, 0, 100, 200, 0.9)
    duplicate = make_box(5, 0, 105, 200, 0.6)

    assert suppressor.suppress([duplicate, strong]) == [strong]


def test_output_is_sorted_by_confidence() -> None:
    suppressor = Suppressor(load_settings())
    boxes = [make_box(0, 0, 100, 200, 0.5), make_box(300, 0, 400, 200, 0.9), make_box(600, 0, 700, 200, 0.7)]

    kept = suppressor.suppress(boxes)

    assert [box.confidence for box in kept] == [0.9, 0.7, 0.5]


def test_narrowest_box_is_shielded() -> None:
    suppressor = Suppressor(load_settings())
    wide = make_box(0, 0, 100, 200, 0.95)
    narrow = make_box(10, 0, 90, 200, 0.4)  # IoU 0.8 with ``wide``
    other = make_box(400, 0, 500, 200, 0.8)

    kept = suppressor.suppress([wide, narrow, other])

    assert narrow in kept
    assert kept == [wide, other, narrow]


def test_shield_needs_enough_candidates() -> None:
    suppressor = Suppressor(load_settings())
    wide = make_box(0, 0, 100, 200, 0.95)
    narrow = make_box(10, 0, 90, 200, 0.4)

    assert suppressor.suppress([wide, narrow]) == [wide]


def test_shield_disabled_uses_default_threshold() -> None:
    suppressor = Suppressor(load_settings(shield_enabled=False))
    a = make_box(0, 0, 100, 200, 0.9)
    b = make_box(40, 0, 140, 200, 0.8)  # IoU 0.428
    c = make_box(20, 0, 120, 200, 0.7)  # IoU 0.667 with ``a``
    narrow = make_box(10, 0, 90, 200, 0.3)

    kept = suppressor.suppress([a, b, c, narrow])

    assert kept == [a, b]


def test_shielded_count_protects_several_narrow_boxes() -> None:
    suppressor = Suppressor(load_settings(shielded_count=2))
    wide = make_box(0, 0, 100, 200, 0.95)
    narrow = make_box(10, 0, 90, 200, 0.5)
    narrower = make_box(15, 0, 85, 200, 0.4)

    kept = suppressor.suppress([wide, narrow, narrower])

    assert kept == [wide, narrow, narrower]


def test_suppression_is_idempotent_without_shield_rescue() -> None:
    suppressor = Suppressor(load_settings())
    boxes = [
        make_box(0, 0, 100, 200, 0.9),
        make_box(5, 0, 105, 200, 0.85),
        make_box(300, 0, 400, 200, 0.7),
        make_box(600, 0, 690, 200, 0.6),
        make_box(800, 0, 900, 200, 0.5),
    ]

    once = suppressor.suppress(boxes)

    assert suppressor.suppress(once) == once


def test_shield_rescue_is_not_repeated_below_candidate_minimum() -> None:
    suppressor = Suppressor(load_settings())
    wide = make_box(0, 0, 100, 100, 0.9)
    short = make_box(0, 0, 100, 95, 0.8)
    narrow = make_box(0, 0, 90, 100, 0.7)

    once = suppressor.suppress([wide, short, narrow])
    twice = suppressor.suppress(once)

    assert once == [wide, narrow]
    assert twice == [wide]


def test_postprocessor_validates_before_suppressing() -> None:
    processor = DetectionPostProcessor(load_settings())
    region = Rect(0.0, 0.0, 1000.0, 1000.0)
    kept = make_box(200, 400, 300, 600, 0.9)
    outside = make_box(1100, 400, 1200, 600, 0.99)
    tiny = make_box(500, 500, 510, 510, 0.95)

    assert processor.process([kept, outside, tiny], region, 1000, 1000) == [kept]
    assert processor.process(None, region, 1000, 1000) == []
