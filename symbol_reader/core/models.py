"""
Data classes shared by the pipeline stages.

All entities are created fresh per run and discarded once the result has
been consumed. Box coordinates are absolute pixels in the ORIGINAL image,
never in the resized detector input.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import numpy as np


class TensorLayout(str, Enum):
    """Memory layout of a tensor's spatial/channel axes."""

    CHW = "CHW"
    HWC = "HWC"


@dataclass(frozen=True)
class Tensor:
    """Flat float32 buffer with its shape and layout tag."""

    data: np.ndarray
    layout: TensorLayout = TensorLayout.CHW

    @property
    def shape(self) -> tuple[int, ...]:
        return tuple(int(d) for d in self.data.shape)

    @property
    def dims(self) -> list[int]:
        return list(self.shape)

    def flat(self) -> np.ndarray:
        """Row-major flattened view of the buffer."""
        return self.data.reshape(-1)


@dataclass(frozen=True)
class Box:
    """Axis-aligned box: top-left corner plus size."""

    x: float
    y: float
    width: float
    height: float

    @property
    def x_max(self) -> float:
        return self.x + self.width

    @property
    def y_max(self) -> float:
        return self.y + self.height

    @property
    def center_x(self) -> float:
        return self.x + self.width / 2

    @property
    def area(self) -> float:
        return self.width * self.height

    def is_within(self, img_width: int, img_height: int, tol: float = 1e-6) -> bool:
        """Check the box invariant against the given image size."""
        return (
            self.x >= -tol
            and self.y >= -tol
            and self.x_max <= img_width + tol
            and self.y_max <= img_height + tol
            and self.width >= 1 - tol
            and self.height >= 1 - tol
        )

    def to_dict(self) -> dict:
        """Convert to dictionary format."""
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}

    @classmethod
    def from_dict(cls, d: dict) -> Box:
        """Create from dictionary."""
        return cls(x=d["x"], y=d["y"], width=d["width"], height=d["height"])

    @classmethod
    def from_corners(cls, x1: float, y1: float, x2: float, y2: float) -> Box:
        return cls(x=x1, y=y1, width=x2 - x1, height=y2 - y1)


@dataclass(frozen=True)
class Detection:
    """Detector candidate: box, score in [0, 1], optional detector class."""

    box: Box
    score: float
    class_id: int | None = None

    def to_dict(self) -> dict:
        return {**self.box.to_dict(), "score": self.score, "class_id": self.class_id}


@dataclass(frozen=True)
class ClassifiedDetection:
    """Detection paired with the classifier's argmax label."""

    detection: Detection
    label: str
    label_index: int
    confidence: float

    @property
    def box(self) -> Box:
        return self.detection.box

    @property
    def score(self) -> float:
        return self.detection.score

    def to_dict(self) -> dict:
        return {
            **self.detection.to_dict(),
            "label": self.label,
            "label_index": self.label_index,
            "classifier_confidence": self.confidence,
        }


@dataclass(frozen=True)
class BoxFailure:
    """A box whose classification call failed and was skipped."""

    index: int
    box: Box
    error: str


@dataclass
class RecognitionResult:
    """Final output of one pipeline run."""

    labels: list[str] = field(default_factory=list)
    confidence: float = 0.0
    detections: list[Detection | ClassifiedDetection] = field(default_factory=list)
    failures: list[BoxFailure] = field(default_factory=list)
    decode_error: str | None = None
    timings_ms: dict[str, float] = field(default_factory=dict)

    @property
    def count(self) -> int:
        """Number of boxes contributing to the label sequence."""
        return len(self.detections)

    @property
    def text(self) -> str:
        return "".join(self.labels)

    def summary(self) -> str:
        """Human-readable one-liner: labels, box count, average confidence."""
        avg = f"{self.confidence:.2f}" if self.detections else "-"
        return f"labels={', '.join(self.labels) or '-'} boxes={self.count} avg_confidence={avg}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "labels": list(self.labels),
            "text": self.text,
            "confidence": self.confidence,
            "count": self.count,
            "detections": [d.to_dict() for d in self.detections],
            "failures": [
                {"index": f.index, "box": f.box.to_dict(), "error": f.error}
                for f in self.failures
            ],
            "decode_error": self.decode_error,
            "timings_ms": dict(self.timings_ms),
        }
