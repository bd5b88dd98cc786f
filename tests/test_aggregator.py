"""
Aggregator Tests - label assembly and overall confidence.

Run with:
    python -m pytest tests/test_aggregator.py -v
"""

import sys
from pathlib import Path

import numpy as np
import pytest

ROOT_DIR = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT_DIR))

from symbol_reader.core.models import Box, BoxFailure, ClassifiedDetection, Detection
from symbol_reader.inference.aggregator import (
    AggregationConfig,
    ConfidenceSource,
    ResultAggregator,
    argmax,
    label_for,
    softmax,
)


def det(x, score, class_id=None):
    return Detection(box=Box(x=x, y=0, width=10, height=10), score=score, class_id=class_id)


def one_hot(index, size=10, value=5.0):
    vec = np.zeros(size, dtype=np.float32)
    vec[index] = value
    return vec


# =============================================================================
# HELPERS
# =============================================================================


class TestArgmax:
    def test_picks_maximum(self):
        assert argmax([0.1, 0.7, 0.2]) == 1

    def test_ties_resolve_to_lowest_index(self):
        assert argmax([0.3, 0.5, 0.5, 0.1]) == 1

    def test_accepts_batched_vector(self):
        assert argmax(np.array([[0.0, 0.2, 0.9]], dtype=np.float32)) == 2

    def test_empty_raises(self):
        with pytest.raises(ValueError):
            argmax([])

    def test_softmax_sums_to_one(self):
        probs = softmax([1.0, 2.0, 3.0])
        assert probs.sum() == pytest.approx(1.0)
        assert int(np.argmax(probs)) == 2

    def test_label_for(self):
        assert label_for(None) == "?"
        assert label_for(3) == "3"
        assert label_for(1, ("a", "b")) == "b"
        assert label_for(5, ("a", "b")) == "5"


# =============================================================================
# DETECTION-ONLY MODE
# =============================================================================


class TestDetectionOnly:
    def test_labels_are_class_ids(self):
        dets = [det(0, 0.9, 4), det(20, 0.7, 2)]

        result = ResultAggregator().aggregate(dets)

        assert result.labels == ["4", "2"]
        assert result.confidence == pytest.approx(0.8)
        assert result.count == 2
        assert result.text == "42"

    def test_detector_class_names(self):
        config = AggregationConfig(detector_class_names=("zero", "one"))
        result = ResultAggregator(config).aggregate([det(0, 0.9, 1)])
        assert result.labels == ["one"]

    def test_missing_class_id(self):
        assert ResultAggregator().aggregate([det(0, 0.9)]).labels == ["?"]

    def test_empty_detections(self):
        result = ResultAggregator().aggregate([])

        assert result.labels == []
        assert result.confidence == 0.0
        assert result.count == 0
        assert result.summary() == "labels=- boxes=0 avg_confidence=-"


# =============================================================================
# CLASSIFIER MODE
# =============================================================================


class TestClassifierMode:
    def test_labels_follow_detection_order(self):
        dets = [det(0, 0.9), det(20, 0.8), det(40, 0.7)]
        outputs = [one_hot(3), one_hot(1), one_hot(4)]

        result = ResultAggregator().aggregate(dets, outputs)

        assert result.labels == ["3", "1", "4"]
        assert result.confidence == pytest.approx(0.8)
        assert all(isinstance(d, ClassifiedDetection) for d in result.detections)
        assert result.detections[1].label_index == 1

    def test_classifier_class_names(self):
        config = AggregationConfig(classifier_class_names=tuple("abcdefghij"))
        result = ResultAggregator(config).aggregate([det(0, 0.9)], [one_hot(2)])
        assert result.labels == ["c"]

    def test_failed_boxes_skipped(self):
        dets = [det(0, 0.9), det(20, 0.5), det(40, 0.7)]
        failure = BoxFailure(index=1, box=dets[1].box, error="boom")

        result = ResultAggregator().aggregate(
            dets, [one_hot(7), None, one_hot(2)], failures=[failure]
        )

        assert result.labels == ["7", "2"]
        assert result.confidence == pytest.approx(0.8)
        assert result.count == 2
        assert result.failures == [failure]

    def test_classifier_confidence_source(self):
        config = AggregationConfig(
            confidence_source=ConfidenceSource.CLASSIFIER, apply_softmax=False
        )
        outputs = [np.array([0.1, 0.6, 0.3]), np.array([0.2, 0.2, 0.6])]

        result = ResultAggregator(config).aggregate([det(0, 0.9), det(20, 0.9)], outputs)

        assert result.confidence == pytest.approx(0.6)

    def test_softmax_confidence(self):
        classified = ResultAggregator().classify(det(0, 0.9), [0.0, 0.0])
        assert classified.confidence == pytest.approx(0.5)
        assert classified.label_index == 0

    def test_output_count_mismatch(self):
        with pytest.raises(ValueError):
            ResultAggregator().aggregate([det(0, 0.9)], [one_hot(1), one_hot(2)])

    def test_to_dict(self):
        result = ResultAggregator().aggregate([det(0, 0.9)], [one_hot(5)])
        data = result.to_dict()

        assert data["labels"] == ["5"]
        assert data["count"] == 1
        assert data["detections"][0]["label"] == "5"
        assert data["detections"][0]["score"] == pytest.approx(0.9)
        assert data["decode_error"] is None

    def test_combine_preclassified(self):
        aggregator = ResultAggregator()
        classified = [aggregator.classify(det(0, 0.9), one_hot(6))]
        failure = BoxFailure(index=1, box=Box(20, 0, 10, 10), error="empty output")

        result = aggregator.combine(classified, [failure])

        assert result.labels == ["6"]
        assert result.confidence == pytest.approx(0.9)
        assert result.failures == [failure]
