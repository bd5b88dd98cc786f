"""
Non-maximum suppression over decoded detections.

Canonical behavior is greedy IOU suppression followed by a left-to-right
re-sort (reading order). The center-distance variant is a cheaper
approximation kept as a performance fallback: it can over-suppress
(wide vs. narrow overlapping boxes) and under-suppress (vertically offset
boxes with similar x).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from ..core.models import Box, Detection
from ..logger_config import get_logger

logger = get_logger("nms")


class SuppressionMethod(str, Enum):
    IOU = "iou"
    CENTER_DISTANCE = "center_distance"


def iou(a: Box, b: Box) -> float:
    """Intersection over union; 0.0 for disjoint boxes."""
    x1 = max(a.x, b.x)
    y1 = max(a.y, b.y)
    x2 = min(a.x_max, b.x_max)
    y2 = min(a.y_max, b.y_max)

    inter = max(0.0, x2 - x1) * max(0.0, y2 - y1)
    union = a.area + b.area - inter
    if union <= 0:
        return 0.0
    return inter / union


def reading_order(detections: list[Detection]) -> list[Detection]:
    """Sort by ascending x (stable)."""
    return sorted(detections, key=lambda d: d.box.x)


def suppress_by_iou(
    detections: list[Detection],
    iou_threshold: float,
    max_detections: int | None = None,
) -> list[Detection]:
    """
    Greedy IOU suppression.

    Candidates are visited by descending score (ties keep input order); a
    candidate is dropped when its IOU with any kept detection is
    >= iou_threshold. Result is in reading order.
    """
    remaining = sorted(detections, key=lambda d: -d.score)
    kept: list[Detection] = []

    while remaining:
        best = remaining.pop(0)
        kept.append(best)
        remaining = [d for d in remaining if iou(best.box, d.box) < iou_threshold]

    if max_detections is not None:
        kept = kept[:max_detections]

    return reading_order(kept)


def suppress_by_center_distance(
    detections: list[Detection],
    max_detections: int | None = None,
) -> list[Detection]:
    """
    Approximate suppression on horizontal centers only.

    A candidate is kept when its center x differs from every kept box's
    center x by more than half the smaller of the two widths.
    """
    kept: list[Detection] = []
    for det in sorted(detections, key=lambda d: -d.score):
        if all(
            abs(det.box.center_x - k.box.center_x) > min(det.box.width, k.box.width) / 2
            for k in kept
        ):
            kept.append(det)

    if max_detections is not None:
        kept = kept[:max_detections]

    return reading_order(kept)


@dataclass(frozen=True)
class SuppressionConfig:
    """Configuration for non-maximum suppression."""

    iou_threshold: float = 0.45
    method: SuppressionMethod = SuppressionMethod.IOU
    max_detections: int | None = None

    def __post_init__(self):
        if not 0.0 <= self.iou_threshold <= 1.0:
            raise ValueError("iou_threshold must be within [0.0, 1.0]")
        if self.max_detections is not None and self.max_detections < 1:
            raise ValueError("max_detections must be >= 1")


class NonMaxSuppressor:
    """
    Removes duplicate detections and returns them in reading order.

    Example:
        suppressor = NonMaxSuppressor(SuppressionConfig(iou_threshold=0.3))
        kept = suppressor.suppress(detections)
    """

    def __init__(self, config: SuppressionConfig | None = None):
        self.config = config or SuppressionConfig()

    def suppress(
        self,
        detections: list[Detection],
        iou_threshold: float | None = None,
    ) -> list[Detection]:
        threshold = self.config.iou_threshold if iou_threshold is None else iou_threshold

        if self.config.method == SuppressionMethod.CENTER_DISTANCE:
            kept = suppress_by_center_distance(detections, self.config.max_detections)
        else:
            kept = suppress_by_iou(detections, threshold, self.config.max_detections)

        logger.debug(
            f"Suppression kept {len(kept)}/{len(detections)}",
            extra={"method": self.config.method.value, "iou_threshold": threshold},
        )
        return kept
