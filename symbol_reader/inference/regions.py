"""
Region extraction and Otsu binarization for per-box crops.

Binarization is optional and only used when the pipeline runs in
binarized-crop mode (classifier trained on black/white glyphs).
"""

from __future__ import annotations

import math

import numpy as np

from ..core.image import ImageBuffer
from ..core.models import Box

# ITU-R BT.601 luma weights (R, G, B)
LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114], dtype=np.float64)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def compute_luma(rgb: np.ndarray) -> np.ndarray:
    """Unrounded luma of an (H, W, 3) array as float64 (H, W)."""
    return rgb[..., :3].astype(np.float64) @ LUMA_WEIGHTS


def luma_u8(image: ImageBuffer) -> np.ndarray:
    """Per-pixel luma rounded to the nearest integer, as uint8 (H, W)."""
    if image.pixels.ndim == 2:
        return image.pixels.copy()
    luma = np.floor(compute_luma(image.rgb()) + 0.5)
    return np.clip(luma, 0, 255).astype(np.uint8)


def clamp_region(box: Box, img_width: int, img_height: int) -> tuple[int, int, int, int]:
    """
    Round a box to integer pixel bounds clamped to the image.

    Returns (x0, y0, x1, y1), half-open, always at least 1x1 pixel.
    """
    x0 = min(max(_round_half_up(box.x), 0), img_width - 1)
    y0 = min(max(_round_half_up(box.y), 0), img_height - 1)
    x1 = min(max(_round_half_up(box.x + box.width), x0 + 1), img_width)
    y1 = min(max(_round_half_up(box.y + box.height), y0 + 1), img_height)
    return x0, y0, x1, y1


def extract_region(image: ImageBuffer, box: Box) -> ImageBuffer:
    """Copy the pixel rectangle under box, rounded and clamped to valid bounds."""
    x0, y0, x1, y1 = clamp_region(box, image.width, image.height)
    return image.crop(x0, y0, x1, y1)


def luma_histogram(image: ImageBuffer) -> np.ndarray:
    """256-bin histogram of rounded luma values."""
    return np.bincount(luma_u8(image).ravel(), minlength=256).astype(np.int64)


def otsu_threshold(histogram: np.ndarray) -> int:
    """
    Otsu's method over a 256-bin histogram.

    Scans t in [0, 255], tracking background/foreground weight and mean
    incrementally, and maximizes wB * wF * (mB - mF)^2. When several
    thresholds share the maximum, returns the midpoint of the first and
    last of them.
    """
    hist = np.asarray(histogram, dtype=np.float64)
    if hist.shape != (256,):
        raise ValueError(f"histogram must have 256 bins, got shape {hist.shape}")

    total = hist.sum()
    if total <= 0:
        return 0

    sum_all = float(np.dot(np.arange(256), hist))
    sum_b = 0.0
    w_b = 0.0
    best_var = -1.0
    first_best = 0
    last_best = 0

    for t in range(256):
        w_b += hist[t]
        if w_b == 0:
            continue
        w_f = total - w_b
        if w_f == 0:
            break

        sum_b += t * hist[t]
        m_b = sum_b / w_b
        m_f = (sum_all - sum_b) / w_f
        between = w_b * w_f * (m_b - m_f) ** 2

        if between > best_var:
            best_var = between
            first_best = last_best = t
        elif between == best_var:
            last_best = t

    return (first_best + last_best) // 2


def binarize(image: ImageBuffer, threshold: int | None = None) -> ImageBuffer:
    """
    Black/white version of an image.

    Pixels whose luma is above the threshold become white, others black.
    All color channels are set identically; alpha is unchanged.

    Args:
        image: Source crop
        threshold: Fixed threshold; computed with Otsu's method if None
    """
    luma = luma_u8(image)
    if threshold is None:
        threshold = otsu_threshold(np.bincount(luma.ravel(), minlength=256))

    binary = np.where(luma > threshold, 255, 0).astype(np.uint8)

    if image.pixels.ndim == 2:
        return image.with_pixels(binary)

    out = np.array(image.pixels, copy=True)
    color_channels = min(3, image.channels)
    out[:, :, :color_channels] = binary[:, :, None]
    return image.with_pixels(out)
