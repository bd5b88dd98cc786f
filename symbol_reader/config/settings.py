"""
Centralized configuration using Pydantic-settings v2.

- Single source of truth for detector, classifier and logging parameters
- Type-safe validation
- Environment variable overrides (SYMREAD_DETECTOR_CONFIDENCE_THRESHOLD=0.6)

Usage:
    from symbol_reader.config import get_settings
    settings = get_settings()
    print(settings.detector.iou_threshold)
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..inference.aggregator import AggregationConfig, ConfidenceSource
from ..inference.decoder import CoordinateConvention, DecodeStrategy, DecoderConfig
from ..inference.nms import SuppressionConfig, SuppressionMethod
from ..inference.preprocessor import (
    IMAGENET_MEAN,
    IMAGENET_STD,
    ChannelMode,
    Normalization,
    NormalizationScheme,
    PreprocessConfig,
)


class _ModelInputSettings(BaseSettings):
    """Fields shared by both model stages."""

    model_config = SettingsConfigDict(protected_namespaces=())

    model_path: Path | None = Field(default=None, description="Model file (.onnx or TorchScript)")
    input_name: str = Field(default="input", description="Name of the model input feed")
    output_name: str | None = Field(
        default=None, description="Named output to read (None = the single output)"
    )
    channels: ChannelMode = Field(default=ChannelMode.RGB)
    normalization: NormalizationScheme = Field(default=NormalizationScheme.DIVIDE)
    divisor: float = Field(default=255.0, gt=0.0)
    mean: list[float] = Field(default=list(IMAGENET_MEAN))
    std: list[float] = Field(default=list(IMAGENET_STD))
    class_names: list[str] = Field(default_factory=list)

    @field_validator("std")
    @classmethod
    def _std_non_zero(cls, value: list[float]) -> list[float]:
        if any(s == 0 for s in value):
            raise ValueError("std entries must be non-zero")
        return value

    def normalization_spec(self) -> Normalization:
        if self.normalization == NormalizationScheme.STANDARDIZE:
            return Normalization.standardize(tuple(self.mean), tuple(self.std))
        return Normalization.divide(self.divisor)


class DetectorSettings(_ModelInputSettings):
    """Box detector (stage 1)."""

    model_config = SettingsConfigDict(env_prefix="SYMREAD_DETECTOR_", protected_namespaces=())

    input_name: str = Field(default="images", description="Name of the model input feed")
    input_width: int = Field(default=640, ge=1, description="Detector input width")
    input_height: int = Field(default=640, ge=1, description="Detector input height")

    decode_strategy: DecodeStrategy = Field(default=DecodeStrategy.AUTO)
    coordinate_convention: CoordinateConvention = Field(
        default=CoordinateConvention.INPUT_PIXELS,
        description="One convention per deployed detector model",
    )
    confidence_threshold: float = Field(
        default=0.5, ge=0.0, le=1.0, description="Detection confidence threshold"
    )
    iou_threshold: float = Field(
        default=0.45, ge=0.0, le=1.0, description="Non-max suppression threshold"
    )
    suppression_method: SuppressionMethod = Field(default=SuppressionMethod.IOU)
    max_detections: int | None = Field(default=100, ge=1, description="Maximum boxes per image")

    def preprocess_config(self) -> PreprocessConfig:
        return PreprocessConfig(
            target_width=self.input_width,
            target_height=self.input_height,
            normalization=self.normalization_spec(),
            channels=self.channels,
        )

    def decoder_config(self) -> DecoderConfig:
        return DecoderConfig(
            strategy=self.decode_strategy,
            convention=self.coordinate_convention,
            input_width=self.input_width,
            input_height=self.input_height,
            confidence_threshold=self.confidence_threshold,
        )

    def suppression_config(self) -> SuppressionConfig:
        return SuppressionConfig(
            iou_threshold=self.iou_threshold,
            method=self.suppression_method,
            max_detections=self.max_detections,
        )


class ClassifierSettings(_ModelInputSettings):
    """Per-box classifier (stage 2)."""

    model_config = SettingsConfigDict(env_prefix="SYMREAD_CLASSIFIER_", protected_namespaces=())

    input_size: int = Field(default=28, ge=1, description="Square classifier input size")
    channels: ChannelMode = Field(default=ChannelMode.GRAY)
    binarize: bool = Field(default=False, description="Otsu-binarize crops before classifying")
    apply_softmax: bool = Field(default=True, description="Confidence = softmax of argmax")
    max_concurrency: int = Field(default=4, ge=1, description="Crops classified in parallel")

    def preprocess_config(self) -> PreprocessConfig:
        return PreprocessConfig(
            target_width=self.input_size,
            target_height=self.input_size,
            normalization=self.normalization_spec(),
            channels=self.channels,
        )


class AggregationSettings(BaseSettings):
    """Result aggregation."""

    model_config = SettingsConfigDict(env_prefix="SYMREAD_AGGREGATION_")

    confidence_source: ConfidenceSource = Field(
        default=ConfidenceSource.DETECTOR, description="Score averaged into overall confidence"
    )


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(env_prefix="SYMREAD_LOG_")

    level: str = Field(default="INFO", description="Log level (DEBUG, INFO, WARNING, ERROR)")
    format: str = Field(default="text", description="Log format (json, text)")
    file_enabled: bool = Field(default=False, description="Enable file logging")
    log_dir: Path = Field(default=Path("logs"))
    perf_enabled: bool = Field(default=False, description="Emit per-stage timing logs")
    max_storage_mb: int = Field(default=100, ge=1)
    max_file_size_mb: int = Field(default=10, ge=1)


class Settings(BaseSettings):
    """Root settings combining all sub-settings."""

    model_config = SettingsConfigDict(env_prefix="SYMREAD_", env_nested_delimiter="__")

    detector: DetectorSettings = Field(default_factory=DetectorSettings)
    classifier: ClassifierSettings = Field(default_factory=ClassifierSettings)
    aggregation: AggregationSettings = Field(default_factory=AggregationSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    def aggregation_config(self) -> AggregationConfig:
        return AggregationConfig(
            confidence_source=self.aggregation.confidence_source,
            apply_softmax=self.classifier.apply_softmax,
            detector_class_names=tuple(self.detector.class_names),
            classifier_class_names=tuple(self.classifier.class_names),
        )


# Global singleton
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get the global settings singleton."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """Reload settings (useful for testing)."""
    global _settings
    _settings = Settings()
    return _settings
