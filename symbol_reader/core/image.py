"""
Image-buffer capability used by the core instead of a rendering surface.

An ImageBuffer wraps an already-decoded raster: (H, W) grayscale or
(H, W, C) with C in {3, 4} (RGB / RGBA), uint8, row-major. The buffer is
read-only; operations return new buffers.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class ImageBuffer:
    """Immutable decoded raster."""

    pixels: np.ndarray

    def __post_init__(self):
        pixels = self.pixels
        if not isinstance(pixels, np.ndarray):
            raise TypeError("pixels must be a numpy array")
        if pixels.ndim not in (2, 3):
            raise ValueError(f"pixels must be (H, W) or (H, W, C), got shape {pixels.shape}")
        if pixels.ndim == 3 and pixels.shape[2] not in (1, 3, 4):
            raise ValueError(f"unsupported channel count: {pixels.shape[2]}")
        if pixels.shape[0] < 1 or pixels.shape[1] < 1:
            raise ValueError(f"image must be at least 1x1, got {pixels.shape[:2]}")

        if pixels.dtype != np.uint8:
            pixels = np.clip(pixels, 0, 255).astype(np.uint8)
        else:
            pixels = pixels.copy()
        pixels.setflags(write=False)
        object.__setattr__(self, "pixels", pixels)

    @classmethod
    def from_rgba(cls, data: bytes | np.ndarray, width: int, height: int) -> ImageBuffer:
        """Build from a flat RGBA byte buffer (canvas-style ImageData)."""
        arr = np.frombuffer(bytes(data), dtype=np.uint8) if isinstance(data, bytes) else data
        return cls(np.asarray(arr, dtype=np.uint8).reshape(height, width, 4))

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def channels(self) -> int:
        return 1 if self.pixels.ndim == 2 else int(self.pixels.shape[2])

    @property
    def has_alpha(self) -> bool:
        return self.channels == 4

    def rgb(self) -> np.ndarray:
        """(H, W, 3) uint8 view of the color channels (alpha dropped, gray replicated)."""
        if self.pixels.ndim == 2:
            return np.repeat(self.pixels[:, :, None], 3, axis=2)
        if self.channels == 1:
            return np.repeat(self.pixels, 3, axis=2)
        return self.pixels[:, :, :3]

    def crop(self, x0: int, y0: int, x1: int, y1: int) -> ImageBuffer:
        """Copy the half-open pixel rectangle [x0, x1) x [y0, y1)."""
        if not (0 <= x0 < x1 <= self.width and 0 <= y0 < y1 <= self.height):
            raise ValueError(
                f"crop ({x0}, {y0}, {x1}, {y1}) outside image {self.width}x{self.height}"
            )
        return ImageBuffer(self.pixels[y0:y1, x0:x1])

    def with_pixels(self, pixels: np.ndarray) -> ImageBuffer:
        """Return a new buffer with the same geometry and replaced pixels."""
        if pixels.shape != self.pixels.shape:
            raise ValueError(f"shape mismatch: {pixels.shape} != {self.pixels.shape}")
        return ImageBuffer(pixels)
