import cv2
import numpy as np
import pytest

from finger_capture.app.config.settings import load_settings
from finger_capture.core.models import Rect
from finger_capture.utils.imaging import crop_to_region, enhance_still, prepare_still


def gradient(width: int = 256, height: int = 64, low: int = 100, high: int = 140) -> np.ndarray:
    row = np.linspace(low, high, width).astype(np.uint8)
    return np.tile(row, (height, 1))


def test_crop_is_clamped_to_the_frame() -> None:
    image = np.zeros((100, 200, 3), dtype=np.uint8)

    cropped = crop_to_region(image, Rect(-10.5, 20.2, 150.4, 300.0))

    assert cropped.shape == (80, 151, 3)


def test_crop_outside_the_frame_keeps_full_image() -> None:
    image = np.zeros((100, 200), dtype=np.uint8)
    assert crop_to_region(image, Rect(250.0, 10.0, 300.0, 50.0)) is image


def test_crop_returns_a_copy() -> None:
    image = np.zeros((50, 50), dtype=np.uint8)
    cropped = crop_to_region(image, Rect(10.0, 10.0, 20.0, 20.0))
    cropped[:] = 255
    assert image.max() == 0


def step(width: int = 256, height: int = 64, low: int = 100, high: int = 140) -> np.ndarray:
    image = np.full((height, width), low, dtype=np.uint8)
    image[:, width // 2 :] = high
    return image


@pytest.mark.parametrize("channels", [None, 3, 4])
def test_enhancement_outputs_equalised_grayscale(channels) -> None:
    gray = step()
    image = gray if channels is None else np.repeat(gray[:, :, None], channels, axis=2)

    plain = enhance_still(image, amount=0.0)

    expected = cv2.createCLAHE(clipLimit=1.2, tileGridSize=(8, 8)).apply(gray)
    assert plain.shape == gray.shape
    assert plain.dtype == np.uint8
    assert np.array_equal(plain, expected)


def test_unsharp_mask_overshoots_at_edges() -> None:
    image = step()

    plain = enhance_still(image, amount=0.0)
    sharpened = enhance_still(image)

    edge = image.shape[1] // 2
    assert sharpened[:, edge].astype(float).mean() > plain[:, edge].astype(float).mean()
    assert sharpened[:, edge - 1].astype(float).mean() < plain[:, edge - 1].astype(float).mean()


def test_prepare_still_crops_by_default() -> None:
    image = np.zeros((1000, 1000, 3), dtype=np.uint8)

    still = prepare_still(image, Rect(25.0, 225.0, 975.0, 775.0), load_settings())

    assert still.shape == (550, 950, 3)


def test_prepare_still_respects_toggles() -> None:
    image = np.dstack([gradient()] * 3)
    region = Rect(0.0, 0.0, 100.0, 32.0)

    untouched = prepare_still(image, region, load_settings(crop_to_region=False))
    enhanced = prepare_still(image, region, load_settings(enhance_still=True))

    assert untouched is image
    assert enhanced.shape == (32, 100)
    assert prepare_still(image, None, load_settings()) is image
