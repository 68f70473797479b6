import pytest

from finger_capture.core.models import Rect
from finger_capture.core.region import CaptureRegion, map_view_to_image, resolve_region


def test_default_region_is_centred() -> None:
    region = CaptureRegion.from_frame(1000, 1000)

    assert region.bounds.left == pytest.approx(25.0)
    assert region.bounds.right == pytest.approx(975.0)
    assert region.bounds.top == pytest.approx(225.0)
    assert region.bounds.bottom == pytest.approx(775.0)


def test_yaml_bounds_take_precedence(tmp_path) -> None:
    config = tmp_path / "region.yaml"
    config.write_text("width_factor: 0.5\nbounds: [10, 20, 310, 220]\n")

    region = CaptureRegion.from_yaml(config, 640, 480)

    assert region.bounds == Rect(10.0, 20.0, 310.0, 220.0)


def test_yaml_factors(tmp_path) -> None:
    config = tmp_path / "region.yaml"
    config.write_text("width_factor: 0.5\nheight_factor: 0.5\n")

    region = CaptureRegion.from_yaml(config, 800, 600)

    assert region.bounds == Rect(200.0, 150.0, 600.0, 450.0)


def test_yaml_view_bounds_are_mapped_into_the_frame(tmp_path) -> None:
    config = tmp_path / "region.yaml"
    config.write_text("bounds: [10, 20, 110, 220]\nview:\n  width: 200\n  height: 400\n")

    region = CaptureRegion.from_yaml(config, 400, 800)

    assert region.bounds == Rect(20.0, 40.0, 220.0, 440.0)


def test_yaml_view_rotation_is_applied(tmp_path) -> None:
    config = tmp_path / "region.yaml"
    config.write_text("bounds: [0, 0, 50, 100]\nview: {width: 100, height: 100, rotation: 180}\n")

    region = CaptureRegion.from_yaml(config, 100, 100)

    assert region.bounds == Rect(50.0, 0.0, 100.0, 100.0)


def test_missing_config_falls_back_to_default(tmp_path) -> None:
    region = resolve_region(tmp_path / "absent.yaml", 1000, 1000)
    assert region == CaptureRegion.from_frame(1000, 1000)


def test_outline_is_d_shaped() -> None:
    region = CaptureRegion(Rect(0.0, 0.0, 400.0, 200.0))

    outline = region.outline()

    assert outline[0] == (0.0, 0.0)
    assert outline[-1] == (0.0, 200.0)
    assert max(x for x, _ in outline) == pytest.approx(400.0)
    assert region.outline_contains((50.0, 100.0))
    # Corners on the rounded side are cut off.
    assert not region.outline_contains((399.0, 2.0))


def test_degenerate_region_contains_nothing() -> None:
    region = CaptureRegion(Rect(10.0, 10.0, 10.0, 50.0))
    assert not region.is_valid
    assert not region.outline_contains((10.0, 20.0))


def test_map_view_to_image_scales_without_rotation() -> None:
    mapped = map_view_to_image(Rect(10, 20, 110, 220), 200, 400, 400, 800)
    assert mapped == Rect(20.0, 40.0, 220.0, 440.0)


def test_map_view_to_image_handles_rotation() -> None:
    overlay = Rect(0, 0, 50, 100)

    assert map_view_to_image(overlay, 100, 100, 100, 100, rotation_degrees=180) == Rect(50.0, 0.0, 100.0, 100.0)
    assert map_view_to_image(overlay, 100, 100, 100, 100, rotation_degrees=90) == Rect(0.0, 50.0, 100.0, 100.0)
    assert map_view_to_image(overlay, 0, 100, 100, 100) == overlay
