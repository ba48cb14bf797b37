import numpy as np
import pytest

from guitar_score_ocr.errors import PreprocessingError
from guitar_score_ocr.image_processing import (
    adjust_contrast,
    binarize_otsu,
    binarize_sauvola,
    classify_quality,
    deskew,
    estimate_skew_angle,
    invert,
    is_bimodal,
    is_dark_image,
    morphological_open,
    preprocess,
    sauvola_thresholds,
    sharpen,
    smart_scale,
    to_grayscale,
)
from guitar_score_ocr.models.core_models import ImageQuality
from guitar_score_ocr.models.settings_models import PreprocessParams


def _naive_sauvola(gray, window, k=0.2, r=128.0):
    height, width = gray.shape
    half = window // 2
    out = np.zeros(gray.shape, dtype=np.float64)
    for y in range(height):
        for x in range(width):
            patch = gray[
                max(0, y - half) : min(height, y + half + 1),
                max(0, x - half) : min(width, x + half + 1),
            ].astype(np.float64)
            out[y, x] = patch.mean() * (1 + k * (patch.std() / r - 1))
    return out


def test_smart_scale_downscales_large_image():
    image = np.zeros((3500, 3500), dtype=np.uint8)
    scaled, scale = smart_scale(image)
    assert scale == pytest.approx(3000 / 3500)
    assert scaled.shape == (3000, 3000)


def test_smart_scale_ignores_small_changes():
    image = np.zeros((480, 300), dtype=np.uint8)
    scaled, scale = smart_scale(image)
    assert scale == 1.0
    assert scaled is image


def test_smart_scale_upscales_small_image():
    scaled, scale = smart_scale(np.zeros((100, 250), dtype=np.uint8))
    assert scale == pytest.approx(2.0)
    assert scaled.shape == (200, 500)


def test_to_grayscale_composites_transparency_over_white():
    rgba = np.zeros((2, 2, 4), dtype=np.uint8)
    rgba[0, 0] = [0, 0, 0, 255]
    gray = to_grayscale(rgba)
    assert gray[0, 0] == 0
    assert gray[1, 1] == 255


def test_invert_is_an_involution(gradient_image):
    assert np.array_equal(invert(invert(gradient_image)), gradient_image)


def test_adjust_contrast_around_midpoint():
    gray = np.array([[100, 128, 200]], dtype=np.uint8)
    assert adjust_contrast(gray, 2.0).tolist() == [[72, 128, 255]]


def test_sharpen_keeps_border():
    gray = np.full((5, 5), 100, dtype=np.uint8)
    gray[2, 2] = 50
    out = sharpen(gray)
    assert out[2, 2] < 50
    assert (out[0] == 100).all()


def test_sauvola_integral_matches_naive(gradient_image):
    fast = sauvola_thresholds(gradient_image, window=7)
    slow = _naive_sauvola(gradient_image, 7)
    assert np.abs(fast - slow).max() <= 1.0


def test_sauvola_keeps_dark_lines(staff_page):
    binary = binarize_sauvola(staff_page)
    assert (binary[80, 50:550] == 0).all()
    assert (binary[75, 50:550] == 255).all()


def test_otsu_on_binary_image_is_stable(tab_page):
    once = binarize_otsu(tab_page)
    assert np.array_equal(binarize_otsu(once), once)


def _two_mode_image():
    offsets = np.arange(-5, 6)
    counts = 100 - 15 * np.abs(offsets)
    values = np.concatenate([np.repeat(30 + offsets, counts), np.repeat(210 + offsets, counts)])
    return values.astype(np.uint8).reshape(26, 50)


def test_is_bimodal():
    gray = _two_mode_image()
    assert is_bimodal(gray)
    assert not is_bimodal(np.full((50, 50), 230, dtype=np.uint8))


def test_dark_image_detection():
    assert is_dark_image(np.full((60, 60), 30, dtype=np.uint8))
    assert not is_dark_image(np.full((60, 60), 225, dtype=np.uint8))


def test_classify_clean_screenshot():
    gray = np.full((200, 300), 255, dtype=np.uint8)
    gray[100, :] = 0
    assert classify_quality(gray) is ImageQuality.SCREENSHOT


def test_morphological_open_drops_specks():
    binary = np.full((30, 30), 255, dtype=np.uint8)
    binary[5, 5] = 0
    binary[10:20, 10:20] = 0
    opened = morphological_open(binary)
    assert opened[5, 5] == 255
    assert (opened[11:19, 11:19] == 0).all()


def test_skew_estimate_on_level_lines(staff_page):
    assert abs(estimate_skew_angle(staff_page)) < 0.3


def test_deskew_corrects_two_degrees(skewed_page):
    page = skewed_page(2.0)
    rotated, angle, was_rotated = deskew(page)
    assert was_rotated
    assert angle == pytest.approx(2.0, abs=0.3)
    assert abs(estimate_skew_angle(binarize_otsu(rotated))) < 0.3


@pytest.mark.parametrize("angle", [0.1, 8.0])
def test_deskew_declines_out_of_range_angles(skewed_page, angle):
    page = skewed_page(angle)
    result, _, was_rotated = deskew(page)
    assert not was_rotated
    assert result is page


def test_preprocess_is_idempotent_with_everything_off(tab_page):
    params = PreprocessParams.disabled()
    once = preprocess(tab_page, params).processed
    twice = preprocess(once, params).processed
    assert np.array_equal(once, twice)


def test_preprocess_dark_uniform_image_becomes_white():
    gray = np.full((600, 600), 30, dtype=np.uint8)
    result = preprocess(gray)
    assert result.was_inverted
    assert (result.processed == 255).all()


def test_preprocess_keeps_aligned_greyscale(tab_page):
    result = preprocess(tab_page, PreprocessParams.disabled())
    assert result.greyscale.shape == result.processed.shape
    assert result.original.shape[:2] == tab_page.shape
    assert result.scale == 1.0


def test_preprocess_wraps_unexpected_errors():
    with pytest.raises(PreprocessingError):
        preprocess(np.zeros((10, 10, 2), dtype=np.uint8), PreprocessParams.disabled())
