"""
Merges per-box classifier outputs with detector scores into the final
ordered result.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import numpy as np

from ..core.models import BoxFailure, ClassifiedDetection, Detection, RecognitionResult


class ConfidenceSource(str, Enum):
    """Which per-box score feeds the overall confidence."""

    DETECTOR = "detector"
    CLASSIFIER = "classifier"


def argmax(values) -> int:
    """Index of the maximum; ties resolve to the lowest index."""
    arr = np.asarray(values, dtype=np.float64).reshape(-1)
    if arr.size == 0:
        raise ValueError("argmax of an empty vector")
    return int(np.argmax(arr))


def softmax(values) -> np.ndarray:
    arr = np.asarray(values, dtype=np.float64).reshape(-1)
    shifted = np.exp(arr - np.max(arr))
    return shifted / shifted.sum()


def label_for(index: int | None, class_names: tuple[str, ...] | list[str] = ()) -> str:
    """Display label for a class index; decimal id when no name is known."""
    if index is None:
        return "?"
    if 0 <= index < len(class_names):
        return class_names[index]
    return str(index)


@dataclass(frozen=True)
class AggregationConfig:
    confidence_source: ConfidenceSource = ConfidenceSource.DETECTOR
    apply_softmax: bool = True
    detector_class_names: tuple[str, ...] = ()
    classifier_class_names: tuple[str, ...] = ()


class ResultAggregator:
    """
    Builds a RecognitionResult from detections in reading order.

    Without classifier outputs the labels are the detector class ids and the
    confidence is the mean detector score. With outputs, each box gets its
    classifier argmax label; boxes whose output is None (failed call) are
    left out of both the labels and the confidence mean.
    """

    def __init__(self, config: AggregationConfig | None = None):
        self.config = config or AggregationConfig()

    def classify(self, detection: Detection, output) -> ClassifiedDetection:
        """Pair a detection with its classifier output vector."""
        scores = np.asarray(output, dtype=np.float64).reshape(-1)
        index = argmax(scores)
        if self.config.apply_softmax:
            confidence = float(softmax(scores)[index])
        else:
            confidence = float(scores[index])
        return ClassifiedDetection(
            detection=detection,
            label=label_for(index, self.config.classifier_class_names),
            label_index=index,
            confidence=confidence,
        )

    def aggregate(
        self,
        detections: list[Detection],
        classifier_outputs: list | None = None,
        failures: list[BoxFailure] | None = None,
    ) -> RecognitionResult:
        failures = list(failures or [])

        if classifier_outputs is None:
            labels = [
                label_for(d.class_id, self.config.detector_class_names) for d in detections
            ]
            return RecognitionResult(
                labels=labels,
                confidence=_mean([d.score for d in detections]),
                detections=list(detections),
                failures=failures,
            )

        if len(classifier_outputs) != len(detections):
            raise ValueError(
                f"{len(classifier_outputs)} classifier outputs for {len(detections)} detections"
            )

        classified = [
            self.classify(det, out)
            for det, out in zip(detections, classifier_outputs)
            if out is not None
        ]
        return self.combine(classified, failures)

    def combine(
        self,
        classified: list[ClassifiedDetection],
        failures: list[BoxFailure] | None = None,
    ) -> RecognitionResult:
        """Assemble already-classified boxes, in order, into a result."""
        failures = list(failures or [])
        if self.config.confidence_source == ConfidenceSource.CLASSIFIER:
            scores = [c.confidence for c in classified]
        else:
            scores = [c.score for c in classified]

        return RecognitionResult(
            labels=[c.label for c in classified],
            confidence=_mean(scores),
            detections=classified,
            failures=failures,
        )


def _mean(values: list[float]) -> float:
    return float(np.mean(values)) if values else 0.0
