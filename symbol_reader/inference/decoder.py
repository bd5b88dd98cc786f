"""
Detector output decoding.

Interprets a raw detector tensor as candidate boxes in ORIGINAL image
pixels. Supported layouts:

    ANCHOR      [N, 5+C] or [1, N, 5+C]
                rows of (cx, cy, w, h, obj, cls_0 .. cls_{C-1})
                score = obj * max(cls), class = argmax(cls)
    CORNER      [N, 6] or [1, N, 6]
                rows of (x1, y1, x2, y2, score, class_id)
    TRANSPOSED  [1, 4+C, N]
                channel-first: box i's cx at [0, 0, i], cy at [0, 1, i], ...
                score = max(cls), class = argmax(cls)

Under AUTO a last dimension of 6 is always CORNER; shapes that could be
either ANCHOR or TRANSPOSED must name their strategy explicitly.

Each decoder instance uses exactly one CoordinateConvention; mixing
conventions silently produces wrong boxes, so nothing is inferred at
runtime.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import numpy as np

from ..core.errors import UnsupportedOutputLayoutError
from ..core.models import Box, Detection, Tensor
from ..logger_config import get_logger

logger = get_logger("decoder")


class DecodeStrategy(str, Enum):
    """Raw detector output layout."""

    AUTO = "auto"
    ANCHOR = "anchor"
    CORNER = "corner"
    TRANSPOSED = "transposed"


class CoordinateConvention(str, Enum):
    """Coordinate space of the raw box values."""

    INPUT_PIXELS = "input_pixels"  # detector input pixels, scaled by original/input
    NORMALIZED = "normalized"  # [0, 1], multiplied by original size
    IMAGE_PIXELS = "image_pixels"  # already original-image pixels


CORNER_ROW_WIDTH = 6
MIN_ANCHOR_ROW_WIDTH = 6  # 5 box params + at least one class
MIN_TRANSPOSED_CHANNELS = 5  # 4 box params + at least one class
TRANSPOSED_MIN_BOX_RATIO = 4


@dataclass(frozen=True)
class DecoderConfig:
    """Configuration for one deployed detector model."""

    strategy: DecodeStrategy = DecodeStrategy.AUTO
    convention: CoordinateConvention = CoordinateConvention.INPUT_PIXELS
    input_width: int = 640
    input_height: int = 640
    confidence_threshold: float = 0.5

    def __post_init__(self):
        if self.input_width < 1 or self.input_height < 1:
            raise ValueError("detector input size must be >= 1")
        if not 0.0 <= self.confidence_threshold <= 1.0:
            raise ValueError("confidence_threshold must be within [0.0, 1.0]")


def resolve_strategy(
    shape: tuple[int, ...],
    requested: DecodeStrategy = DecodeStrategy.AUTO,
) -> DecodeStrategy:
    """
    Pick the layout for a tensor shape, or validate an explicit choice.

    Raises:
        UnsupportedOutputLayoutError: shape fits no known (or the requested) layout
    """
    shape = tuple(int(d) for d in shape)
    rank = len(shape)

    if rank not in (2, 3):
        raise UnsupportedOutputLayoutError(shape, f"rank {rank} is not 2 or 3")
    if rank == 3 and shape[0] != 1:
        raise UnsupportedOutputLayoutError(shape, "batch dimension must be 1")

    row_width = shape[-1]

    if requested == DecodeStrategy.AUTO:
        return _auto_strategy(shape)

    if requested == DecodeStrategy.TRANSPOSED:
        if rank == 3 and shape[1] >= MIN_TRANSPOSED_CHANNELS:
            return requested
    elif requested == DecodeStrategy.CORNER:
        if row_width == CORNER_ROW_WIDTH:
            return requested
    elif requested == DecodeStrategy.ANCHOR:
        if row_width >= MIN_ANCHOR_ROW_WIDTH:
            return requested

    raise UnsupportedOutputLayoutError(shape, f"not a {requested.value} layout")


def _auto_strategy(shape: tuple[int, ...]) -> DecodeStrategy:
    """
    Row layouts win unless the shape can only sensibly be channel-first.

    [1, R, W] is read as TRANSPOSED only when W is at least
    TRANSPOSED_MIN_BOX_RATIO times R (a few channels over many boxes, as in
    [1, 84, 8400]). Shapes that fit both readings raise instead of guessing.
    """
    row_width = shape[-1]
    if row_width < CORNER_ROW_WIDTH:
        raise UnsupportedOutputLayoutError(shape, f"row width {row_width} matches no layout")
    if row_width == CORNER_ROW_WIDTH:
        return DecodeStrategy.CORNER

    rows = shape[-2]
    if len(shape) == 2 or rows < MIN_TRANSPOSED_CHANNELS:
        return DecodeStrategy.ANCHOR
    if row_width >= TRANSPOSED_MIN_BOX_RATIO * rows:
        return DecodeStrategy.TRANSPOSED
    # anchor rows carry no more classes than there are rows
    if row_width - 5 <= rows:
        return DecodeStrategy.ANCHOR

    raise UnsupportedOutputLayoutError(
        shape, "ambiguous between anchor and transposed; set decode_strategy explicitly"
    )


class DetectionDecoder:
    """
    Decodes raw detector tensors into Detections.

    Pure: identical (tensor, dims, threshold) always yields identical output,
    in the tensor's row order.

    Example:
        decoder = DetectionDecoder(DecoderConfig(convention=CoordinateConvention.NORMALIZED))
        detections = decoder.decode(output, img.width, img.height)
    """

    def __init__(self, config: DecoderConfig | None = None):
        self.config = config or DecoderConfig()

    def decode(
        self,
        raw_output: Tensor | np.ndarray,
        original_width: int,
        original_height: int,
        confidence_threshold: float | None = None,
        dims: list[int] | tuple[int, ...] | None = None,
    ) -> list[Detection]:
        """
        Decode one detector output.

        Args:
            raw_output: Output tensor (Tensor or numpy array)
            original_width: Width of the image the detector ran on
            original_height: Height of the image the detector ran on
            confidence_threshold: Override for the configured threshold
            dims: Declared dimension list; reshapes a flat buffer when given

        Returns:
            Detections with score >= threshold, clipped to the image

        Raises:
            UnsupportedOutputLayoutError: unrecognized tensor shape
        """
        if original_width < 1 or original_height < 1:
            raise ValueError(f"invalid image size {original_width}x{original_height}")

        data = raw_output
        if isinstance(raw_output, Tensor):
            data = raw_output.flat() if dims is not None else raw_output.data
        arr = np.asarray(data, dtype=np.float64)
        if dims is not None:
            dims = tuple(int(d) for d in dims)
            if int(np.prod(dims)) != arr.size:
                raise UnsupportedOutputLayoutError(
                    dims, f"declared dims do not match buffer of {arr.size} values"
                )
            arr = arr.reshape(dims)

        threshold = (
            self.config.confidence_threshold
            if confidence_threshold is None
            else confidence_threshold
        )

        strategy = resolve_strategy(arr.shape, self.config.strategy)
        if strategy == DecodeStrategy.TRANSPOSED:
            x1, y1, x2, y2, scores, classes = self._decode_transposed(arr)
        elif strategy == DecodeStrategy.CORNER:
            x1, y1, x2, y2, scores, classes = self._decode_corner(arr)
        else:
            x1, y1, x2, y2, scores, classes = self._decode_anchor(arr)

        scale_x, scale_y = self._scale_factors(original_width, original_height)
        x1, x2 = x1 * scale_x, x2 * scale_x
        y1, y2 = y1 * scale_y, y2 * scale_y

        detections = []
        for i in range(len(scores)):
            score = float(scores[i])
            if not np.isfinite(score) or score < threshold:
                continue
            box = clip_box(x1[i], y1[i], x2[i], y2[i], original_width, original_height)
            if box is None:
                continue
            detections.append(Detection(box=box, score=score, class_id=int(classes[i])))

        logger.debug(
            f"Decoded {len(detections)}/{len(scores)} candidates",
            extra={"strategy": strategy.value, "threshold": threshold},
        )
        return detections

    def _scale_factors(self, width: int, height: int) -> tuple[float, float]:
        convention = self.config.convention
        if convention == CoordinateConvention.INPUT_PIXELS:
            return width / self.config.input_width, height / self.config.input_height
        if convention == CoordinateConvention.NORMALIZED:
            return float(width), float(height)
        return 1.0, 1.0

    @staticmethod
    def _rows(arr: np.ndarray) -> np.ndarray:
        return arr[0] if arr.ndim == 3 else arr

    def _decode_anchor(self, arr: np.ndarray):
        rows = self._rows(arr)
        cx, cy, w, h, obj = (rows[:, k] for k in range(5))
        class_scores = rows[:, 5:]
        classes = np.argmax(class_scores, axis=1)
        scores = obj * np.max(class_scores, axis=1)
        return cx - w / 2, cy - h / 2, cx + w / 2, cy + h / 2, scores, classes

    def _decode_corner(self, arr: np.ndarray):
        rows = self._rows(arr)
        classes = np.floor(rows[:, 5] + 0.5).astype(np.int64)
        return rows[:, 0], rows[:, 1], rows[:, 2], rows[:, 3], rows[:, 4], classes

    def _decode_transposed(self, arr: np.ndarray):
        # [1, 4+C, N]: value k of box i sits at k * N + i in the flat buffer
        channels = arr[0]
        cx, cy, w, h = channels[0], channels[1], channels[2], channels[3]
        class_scores = channels[4:]
        classes = np.argmax(class_scores, axis=0)
        scores = np.max(class_scores, axis=0)
        return cx - w / 2, cy - h / 2, cx + w / 2, cy + h / 2, scores, classes


def clip_box(
    x1: float,
    y1: float,
    x2: float,
    y2: float,
    img_width: int,
    img_height: int,
) -> Box | None:
    """
    Clip corner coordinates to the image.

    Returns None when the box has no overlap with the image; otherwise a Box
    with width/height >= 1 lying fully inside the image.
    """
    if not all(np.isfinite(v) for v in (x1, y1, x2, y2)):
        return None

    left, right = sorted((float(x1), float(x2)))
    top, bottom = sorted((float(y1), float(y2)))

    left = max(left, 0.0)
    top = max(top, 0.0)
    right = min(right, float(img_width))
    bottom = min(bottom, float(img_height))

    if right <= left or bottom <= top:
        return None

    if right - left < 1.0:
        right = min(left + 1.0, float(img_width))
        left = right - 1.0
    if bottom - top < 1.0:
        bottom = min(top + 1.0, float(img_height))
        top = bottom - 1.0

    return Box(x=left, y=top, width=right - left, height=bottom - top)
