"""Data model and error kinds for the recognition pipeline."""

from .errors import (
    InferenceError,
    InputValidationError,
    ModelLoadError,
    RunSupersededError,
    SymbolReaderError,
    UnsupportedOutputLayoutError,
)
from .image import ImageBuffer
from .models import (
    Box,
    BoxFailure,
    ClassifiedDetection,
    Detection,
    RecognitionResult,
    Tensor,
    TensorLayout,
)

__all__ = [
    "Box",
    "BoxFailure",
    "ClassifiedDetection",
    "Detection",
    "ImageBuffer",
    "InferenceError",
    "InputValidationError",
    "ModelLoadError",
    "RecognitionResult",
    "RunSupersededError",
    "SymbolReaderError",
    "Tensor",
    "TensorLayout",
    "UnsupportedOutputLayoutError",
]
