"""
Pipeline stages.

- preprocessor.py: Image -> normalized CHW tensor (detector and classifier)
- decoder.py: Raw detector tensor -> Detections
- nms.py: Duplicate removal + reading order
- regions.py: Crop extraction and Otsu binarization
- aggregator.py: Classifier outputs + detections -> RecognitionResult
- engine.py: ONNX Runtime / TorchScript engine adapters
"""

from .aggregator import AggregationConfig, ConfidenceSource, ResultAggregator, argmax
from .decoder import CoordinateConvention, DecodeStrategy, DecoderConfig, DetectionDecoder
from .engine import EngineBackend, InferenceEngine, OnnxEngine, TorchScriptEngine, load_engine
from .nms import NonMaxSuppressor, SuppressionConfig, SuppressionMethod, iou
from .preprocessor import (
    ChannelMode,
    ClassificationPreprocessor,
    Normalization,
    NormalizationScheme,
    PreprocessConfig,
    TensorPreprocessor,
    preprocess_image,
)
from .regions import binarize, extract_region, otsu_threshold

__all__ = [
    "AggregationConfig",
    "ChannelMode",
    "ClassificationPreprocessor",
    "ConfidenceSource",
    "CoordinateConvention",
    "DecodeStrategy",
    "DecoderConfig",
    "DetectionDecoder",
    "EngineBackend",
    "InferenceEngine",
    "NonMaxSuppressor",
    "Normalization",
    "NormalizationScheme",
    "OnnxEngine",
    "PreprocessConfig",
    "ResultAggregator",
    "SuppressionConfig",
    "SuppressionMethod",
    "TensorPreprocessor",
    "TorchScriptEngine",
    "argmax",
    "binarize",
    "extract_region",
    "iou",
    "load_engine",
    "otsu_threshold",
    "preprocess_image",
]
