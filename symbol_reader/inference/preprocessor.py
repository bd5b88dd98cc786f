"""
Tensor preprocessing for the detector and the classifier.

Converts an ImageBuffer into a normalized, channel-major float32 tensor
with a batch dimension of 1: (1, C, H, W).

Key design decisions:
1. Non-aspect-preserving stretch to the target size. No letterbox: the
   detector's boxes are mapped back with independent x/y scale factors.
2. Two normalization conventions, chosen per call site:
   - DIVIDE: value / divisor (plain 0-1 scaling with divisor 255)
   - STANDARDIZE: (value / 255 - mean[c]) / std[c]
3. RGB (3 channels) or GRAY (1 channel, ITU-R 601 luma) input tensors.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

import cv2
import numpy as np

from ..core.image import ImageBuffer
from ..core.models import Box, Tensor, TensorLayout
from .regions import compute_luma, extract_region


class NormalizationScheme(str, Enum):
    """How raw 0-255 pixel values are scaled."""

    DIVIDE = "divide"
    STANDARDIZE = "standardize"


class ChannelMode(str, Enum):
    """Channel content of the produced tensor."""

    RGB = "rgb"
    GRAY = "gray"


IMAGENET_MEAN = (0.485, 0.456, 0.406)
IMAGENET_STD = (0.229, 0.224, 0.225)


@dataclass(frozen=True)
class Normalization:
    """Normalization parameters for one call site."""

    scheme: NormalizationScheme = NormalizationScheme.DIVIDE
    divisor: float = 255.0
    mean: tuple[float, ...] = IMAGENET_MEAN
    std: tuple[float, ...] = IMAGENET_STD

    def __post_init__(self):
        object.__setattr__(self, "mean", tuple(float(m) for m in self.mean))
        object.__setattr__(self, "std", tuple(float(s) for s in self.std))
        if self.scheme == NormalizationScheme.DIVIDE and self.divisor <= 0:
            raise ValueError(f"divisor must be positive, got {self.divisor}")
        if self.scheme == NormalizationScheme.STANDARDIZE:
            if len(self.mean) not in (1, 3) or len(self.mean) != len(self.std):
                raise ValueError("mean and std must both have 1 or 3 entries")
            if any(s == 0 for s in self.std):
                raise ValueError("std entries must be non-zero")

    @classmethod
    def divide(cls, divisor: float = 255.0) -> Normalization:
        return cls(scheme=NormalizationScheme.DIVIDE, divisor=divisor)

    @classmethod
    def standardize(
        cls,
        mean: tuple[float, ...] = IMAGENET_MEAN,
        std: tuple[float, ...] = IMAGENET_STD,
    ) -> Normalization:
        return cls(scheme=NormalizationScheme.STANDARDIZE, mean=tuple(mean), std=tuple(std))

    def apply(self, chw: np.ndarray) -> np.ndarray:
        """Normalize a (C, H, W) array of raw 0-255 values."""
        chw = chw.astype(np.float32, copy=False)
        if self.scheme == NormalizationScheme.DIVIDE:
            return chw / np.float32(self.divisor)

        num_channels = chw.shape[0]
        mean = np.asarray(self.mean, dtype=np.float32)
        std = np.asarray(self.std, dtype=np.float32)
        if num_channels == 1:
            mean, std = mean[:1], std[:1]
        elif len(mean) == 1:
            mean = np.repeat(mean, num_channels)
            std = np.repeat(std, num_channels)
        return (chw / np.float32(255.0) - mean[:, None, None]) / std[:, None, None]


UNIT_NORMALIZATION = Normalization.divide(255.0)


@dataclass(frozen=True)
class PreprocessConfig:
    """Target geometry and normalization for one model input."""

    target_width: int = 640
    target_height: int = 640
    normalization: Normalization = field(default_factory=Normalization)
    channels: ChannelMode = ChannelMode.RGB
    interpolation: int = cv2.INTER_LINEAR

    @property
    def target_size(self) -> tuple[int, int]:
        """Return (height, width) tuple."""
        return (self.target_height, self.target_width)


# Detector: 640x640 RGB in 0-1; classifier: 28x28 grayscale in 0-1
DEFAULT_DETECTOR_CONFIG = PreprocessConfig()
DEFAULT_CLASSIFIER_CONFIG = PreprocessConfig(
    target_width=28, target_height=28, channels=ChannelMode.GRAY
)


def preprocess_image(
    image: ImageBuffer,
    target_width: int,
    target_height: int,
    normalization: Normalization | None = None,
    channels: ChannelMode = ChannelMode.RGB,
    region: Box | None = None,
    interpolation: int = cv2.INTER_LINEAR,
) -> Tensor:
    """
    Stretch an image to target size and convert it to a normalized CHW tensor.

    Args:
        image: Source raster (gray, RGB or RGBA; alpha is dropped)
        target_width: Output width in pixels
        target_height: Output height in pixels
        normalization: Normalization parameters (default: divide by 255)
        channels: RGB or GRAY output
        region: Optional sub-rectangle to crop first; degenerate regions are
            clamped to at least 1x1 pixel
        interpolation: OpenCV interpolation flag

    Returns:
        Tensor of shape (1, C, target_height, target_width), float32
    """
    if target_width < 1 or target_height < 1:
        raise ValueError(f"target size must be >= 1, got {target_width}x{target_height}")

    normalization = normalization or UNIT_NORMALIZATION

    if region is not None:
        image = extract_region(image, region)

    rgb = image.rgb()
    size = (int(target_width), int(target_height))

    if channels == ChannelMode.GRAY:
        gray = compute_luma(rgb).astype(np.float32)
        resized = cv2.resize(gray, size, interpolation=interpolation)
        chw = resized.reshape(1, target_height, target_width)
    else:
        resized = cv2.resize(rgb.astype(np.float32), size, interpolation=interpolation)
        chw = resized.reshape(target_height, target_width, 3).transpose(2, 0, 1)

    normalized = normalization.apply(chw)
    data = np.ascontiguousarray(normalized[None, ...], dtype=np.float32)
    return Tensor(data=data, layout=TensorLayout.CHW)


class TensorPreprocessor:
    """
    Prepares whole images for the detector.

    Example:
        preprocessor = TensorPreprocessor()
        tensor = preprocessor.prepare(image)
        # tensor.shape == (1, 3, 640, 640)
    """

    def __init__(self, config: PreprocessConfig | None = None):
        self.config = config or DEFAULT_DETECTOR_CONFIG

    def prepare(
        self,
        image: ImageBuffer,
        target_width: int | None = None,
        target_height: int | None = None,
        normalization: Normalization | None = None,
        region: Box | None = None,
    ) -> Tensor:
        """Call-site arguments override the configured defaults."""
        return preprocess_image(
            image,
            target_width or self.config.target_width,
            target_height or self.config.target_height,
            normalization=normalization or self.config.normalization,
            channels=self.config.channels,
            region=region,
            interpolation=self.config.interpolation,
        )


class ClassificationPreprocessor(TensorPreprocessor):
    """
    Prepares per-box crops (optionally binarized) for the classifier.

    Same contract as TensorPreprocessor, stretched to a square input.
    """

    def __init__(self, config: PreprocessConfig | None = None):
        super().__init__(config or DEFAULT_CLASSIFIER_CONFIG)

    def prepare(
        self,
        image: ImageBuffer,
        target_size: int | None = None,
        normalization: Normalization | None = None,
    ) -> Tensor:
        size = target_size or self.config.target_width
        return super().prepare(image, size, size, normalization=normalization)
