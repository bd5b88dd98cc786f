"""
Region Tests - crop extraction, luma and Otsu binarization.

Run with:
    python -m pytest tests/test_regions.py -v
"""

import sys
from pathlib import Path

import numpy as np
import pytest

ROOT_DIR = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT_DIR))

from symbol_reader.core.image import ImageBuffer
from symbol_reader.core.models import Box
from symbol_reader.inference.regions import (
    binarize,
    clamp_region,
    extract_region,
    luma_histogram,
    luma_u8,
    otsu_threshold,
)


@pytest.fixture
def bimodal_image():
    """10x10 RGB, left half gray 10, right half gray 240."""
    pixels = np.full((10, 10, 3), 10, dtype=np.uint8)
    pixels[:, 5:] = 240
    return ImageBuffer(pixels)


# =============================================================================
# REGION EXTRACTION
# =============================================================================


class TestExtractRegion:
    def test_exact_integer_box(self):
        pixels = np.arange(20 * 30 * 3, dtype=np.uint32).reshape(20, 30, 3) % 256
        image = ImageBuffer(pixels.astype(np.uint8))

        crop = extract_region(image, Box(x=5, y=2, width=10, height=8))

        assert (crop.width, crop.height) == (10, 8)
        np.testing.assert_array_equal(crop.pixels, image.pixels[2:10, 5:15])

    def test_fractional_box_rounds(self):
        assert clamp_region(Box(x=2.5, y=3.4, width=4.0, height=5.2), 20, 20) == (3, 3, 7, 9)

    def test_box_clamped_to_image(self):
        image = ImageBuffer(np.zeros((20, 30, 3), dtype=np.uint8))

        crop = extract_region(image, Box(x=25, y=15, width=20, height=20))

        assert (crop.width, crop.height) == (5, 5)

    def test_degenerate_box_yields_one_pixel(self):
        image = ImageBuffer(np.zeros((20, 30, 3), dtype=np.uint8))

        crop = extract_region(image, Box(x=29.9, y=19.9, width=0.0, height=0.0))

        assert (crop.width, crop.height) == (1, 1)

    def test_crop_is_independent_copy(self):
        image = ImageBuffer(np.zeros((4, 4, 3), dtype=np.uint8))
        crop = extract_region(image, Box(0, 0, 2, 2))
        assert not np.shares_memory(crop.pixels, image.pixels)


# =============================================================================
# LUMA AND OTSU
# =============================================================================


class TestLuma:
    def test_primary_weights_round(self):
        pixels = np.array([[[255, 0, 0], [0, 255, 0], [0, 0, 255]]], dtype=np.uint8)
        # 76.245, 149.685, 29.07
        assert luma_u8(ImageBuffer(pixels)).tolist() == [[76, 150, 29]]

    def test_gray_image_passthrough(self):
        pixels = np.array([[0, 128, 255]], dtype=np.uint8)
        assert luma_u8(ImageBuffer(pixels)).tolist() == [[0, 128, 255]]

    def test_histogram_counts(self, bimodal_image):
        hist = luma_histogram(bimodal_image)
        assert hist.shape == (256,)
        assert hist[10] == 50
        assert hist[240] == 50
        assert hist.sum() == 100


class TestOtsu:
    def test_bimodal_split_between_modes(self, bimodal_image):
        threshold = otsu_threshold(luma_histogram(bimodal_image))
        assert 10 < threshold < 240

    def test_uniform_image(self):
        hist = np.zeros(256, dtype=np.int64)
        hist[128] = 100
        assert otsu_threshold(hist) == 0

    def test_empty_histogram(self):
        assert otsu_threshold(np.zeros(256)) == 0

    def test_wrong_bin_count(self):
        with pytest.raises(ValueError):
            otsu_threshold(np.zeros(128))


class TestBinarize:
    def test_bimodal_becomes_black_and_white(self, bimodal_image):
        out = binarize(bimodal_image)

        assert out.pixels.shape == bimodal_image.pixels.shape
        assert set(np.unique(out.pixels).tolist()) == {0, 255}
        assert (out.pixels[:, :5] == 0).all()
        assert (out.pixels[:, 5:] == 255).all()

    def test_alpha_untouched(self):
        pixels = np.zeros((4, 4, 4), dtype=np.uint8)
        pixels[:, 2:, :3] = 200
        pixels[..., 3] = np.arange(16, dtype=np.uint8).reshape(4, 4)
        image = ImageBuffer(pixels)

        out = binarize(image)

        np.testing.assert_array_equal(out.pixels[..., 3], image.pixels[..., 3])
        assert (out.pixels[:, 2:, :3] == 255).all()
        assert (out.pixels[:, :2, :3] == 0).all()

    def test_fixed_threshold(self):
        pixels = np.array([[100, 101]], dtype=np.uint8)
        out = binarize(ImageBuffer(pixels), threshold=100)
        assert out.pixels.tolist() == [[0, 255]]

    def test_source_not_modified(self, bimodal_image):
        before = bimodal_image.pixels.copy()
        binarize(bimodal_image)
        np.testing.assert_array_equal(bimodal_image.pixels, before)
