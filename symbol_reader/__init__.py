"""
Symbol Reader - two-stage reader for a single line of symbols.

Stage 1: box detector (YOLO-style) locates candidate symbols
Stage 2: crop classifier labels each box; labels are joined in reading order

Modules:
- core: data model (ImageBuffer, Box, Detection, Tensor) and error kinds
- inference: preprocessing, decoding, suppression, regions, aggregation, engines
- pipeline: RecognitionSession orchestrating one run
- config: pydantic-settings configuration
- cli: command-line shell
"""

__version__ = "0.1.0"

from .core import (
    Box,
    ClassifiedDetection,
    Detection,
    ImageBuffer,
    RecognitionResult,
    SymbolReaderError,
)
from .pipeline import PipelineState, RecognitionSession

__all__ = [
    "Box",
    "ClassifiedDetection",
    "Detection",
    "ImageBuffer",
    "PipelineState",
    "RecognitionResult",
    "RecognitionSession",
    "SymbolReaderError",
]
