"""
Recognition session: detector -> suppression -> per-box classification.

One session owns the two model handles (read-only after loading), the
current image, and the run state machine:

    IDLE -> IMAGE_LOADED -> DETECTING -> DETECTED -> (CLASSIFYING) -> DONE
                              |                          |
                              +--------> ERROR <---------+
                                           |
                                           v
                                      IMAGE_LOADED

Engine calls run in worker threads so the event loop stays free. Crops are
classified concurrently (bounded by classifier.max_concurrency) and
reassembled in reading order. Loading a new image while a run is in flight
invalidates that run: it raises RunSupersededError instead of returning.

Usage:
    session = RecognitionSession(settings)
    session.load_models("models/detector.onnx", "models/classifier.onnx")
    session.load_image(image)
    result = await session.run()
    print(result.labels, result.confidence)
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

import numpy as np

from .config.settings import Settings
from .core.errors import (
    InferenceError,
    InputValidationError,
    ModelLoadError,
    RunSupersededError,
    SymbolReaderError,
    UnsupportedOutputLayoutError,
)
from .core.image import ImageBuffer
from .core.models import BoxFailure, ClassifiedDetection, Detection, RecognitionResult
from .inference import regions
from .inference.aggregator import ResultAggregator
from .inference.decoder import DetectionDecoder
from .inference.engine import EngineBackend, InferenceEngine, load_engine, run_model
from .inference.nms import NonMaxSuppressor
from .inference.preprocessor import ClassificationPreprocessor, TensorPreprocessor
from .logger_config import get_logger

logger = get_logger("pipeline")


class PipelineState(str, Enum):
    IDLE = "idle"
    IMAGE_LOADED = "image_loaded"
    DETECTING = "detecting"
    DETECTED = "detected"
    CLASSIFYING = "classifying"
    DONE = "done"
    ERROR = "error"


@dataclass
class ModelSlot:
    """Loaded model state for one role."""

    role: str
    engine: InferenceEngine | None = None
    source: str | None = None
    load_error: ModelLoadError | None = None
    loaded_at: float = 0.0

    @property
    def ready(self) -> bool:
        return self.engine is not None


@dataclass
class RunRecord:
    """Observability record of errors seen by the session."""

    generation: int
    kind: str
    message: str
    timestamp: float = field(default_factory=time.time)


class RecognitionSession:
    """
    Explicit session context for the two-stage pipeline.

    Engines may be injected directly (tests, custom backends) or loaded from
    model files/blobs with load_models().
    """

    def __init__(
        self,
        settings: Settings | None = None,
        detector: InferenceEngine | None = None,
        classifier: InferenceEngine | None = None,
    ):
        self.settings = settings or Settings()

        self.detector = ModelSlot("detector", engine=detector)
        self.classifier = ModelSlot("classifier", engine=classifier)

        det = self.settings.detector
        self.tensor_preprocessor = TensorPreprocessor(det.preprocess_config())
        self.decoder = DetectionDecoder(det.decoder_config())
        self.suppressor = NonMaxSuppressor(det.suppression_config())
        self.crop_preprocessor = ClassificationPreprocessor(
            self.settings.classifier.preprocess_config()
        )
        self.aggregator = ResultAggregator(self.settings.aggregation_config())

        self._image: ImageBuffer | None = None
        self._generation = 0
        self._running_generation: int | None = None

        self.state = PipelineState.IDLE
        self.transitions: list[PipelineState] = [PipelineState.IDLE]
        self.last_error: SymbolReaderError | None = None
        self.records: list[RunRecord] = []

    # =========================================================================
    # Models
    # =========================================================================

    def load_detector(
        self,
        source: str | Path | bytes | None = None,
        backend: EngineBackend | None = None,
    ) -> InferenceEngine:
        det = self.settings.detector
        return self._load(
            self.detector, source or det.model_path, backend, det.input_name, det.output_name
        )

    def load_classifier(
        self,
        source: str | Path | bytes | None = None,
        backend: EngineBackend | None = None,
    ) -> InferenceEngine:
        cls = self.settings.classifier
        return self._load(
            self.classifier, source or cls.model_path, backend, cls.input_name, cls.output_name
        )

    def load_models(
        self,
        detector_source: str | Path | bytes | None = None,
        classifier_source: str | Path | bytes | None = None,
    ) -> dict[str, ModelLoadError | None]:
        """
        Load both models independently.

        A failure in one does not stop the other; failures are returned
        (and kept on the slot) rather than raised.
        """
        errors: dict[str, ModelLoadError | None] = {}
        for role, loader, source in (
            ("detector", self.load_detector, detector_source),
            ("classifier", self.load_classifier, classifier_source),
        ):
            try:
                loader(source)
                errors[role] = None
            except ModelLoadError as e:
                errors[role] = e
        return errors

    def _load(
        self,
        slot: ModelSlot,
        source: str | Path | bytes | None,
        backend: EngineBackend | None,
        input_name: str,
        output_name: str | None,
    ) -> InferenceEngine:
        if source is None:
            error = ModelLoadError(slot.role, "<unset>", "no model path configured")
            self._fail_slot(slot, error)
            raise error

        try:
            engine = load_engine(
                slot.role,
                source,
                backend=backend,
                input_names=(input_name,),
                output_names=(output_name or "output",),
            )
        except ModelLoadError as e:
            self._fail_slot(slot, e)
            raise

        slot.engine = engine
        slot.source = "<bytes>" if isinstance(source, bytes) else str(source)
        slot.load_error = None
        slot.loaded_at = time.time()
        return engine

    def _fail_slot(self, slot: ModelSlot, error: ModelLoadError) -> None:
        slot.engine = None
        slot.load_error = error
        self._record("model_load", str(error))

    # =========================================================================
    # Image
    # =========================================================================

    @property
    def image(self) -> ImageBuffer | None:
        return self._image

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_running(self) -> bool:
        return self._running_generation is not None and self._running_generation == self._generation

    def load_image(self, image: ImageBuffer | np.ndarray) -> int:
        """Set the current image; any in-flight run becomes stale."""
        if not isinstance(image, ImageBuffer):
            image = ImageBuffer(np.asarray(image))
        self._image = image
        self._generation += 1
        self._transition(PipelineState.IMAGE_LOADED)
        logger.info(f"Image #{self._generation} loaded: {image.width}x{image.height}")
        return self._generation

    # =========================================================================
    # Run
    # =========================================================================

    def _validate(self, classify: bool) -> None:
        """Raise before any state mutation when a run cannot start."""
        if self._image is None:
            raise InputValidationError("No image loaded")
        if self.is_running:
            raise InputValidationError("A run is already in progress for this image")

        required = [self.detector] + ([self.classifier] if classify else [])
        for slot in required:
            if slot.ready:
                continue
            if slot.load_error is not None:
                raise slot.load_error
            raise InputValidationError(f"{slot.role} model not loaded")

    async def run(self, classify: bool = True, binarize: bool | None = None) -> RecognitionResult:
        """
        Run the pipeline on the current image.

        Args:
            classify: False for detection-only mode (labels = detector classes)
            binarize: Otsu-binarize crops before classification
                (default: classifier.binarize setting)

        Raises:
            InputValidationError: no image, or a required model never loaded
            ModelLoadError: a required model failed to load
            InferenceError: detector call failed, or every box failed
            RunSupersededError: a new image was loaded mid-run
        """
        self._validate(classify)
        if binarize is None:
            binarize = self.settings.classifier.binarize

        image = self._image
        generation = self._generation
        self._running_generation = generation
        timings: dict[str, float] = {}

        try:
            self._transition(PipelineState.DETECTING, generation)
            detections, decode_error = await self._detect(image, timings)
            self._ensure_current(generation)
            self._transition(PipelineState.DETECTED, generation)

            if classify:
                self._transition(PipelineState.CLASSIFYING, generation)
                classified, failures = await self._classify_all(
                    image, detections, binarize, timings
                )
                self._ensure_current(generation)
                if detections and len(failures) == len(detections):
                    raise InferenceError(f"All {len(detections)} box classifications failed")
                result = self.aggregator.combine(classified, failures)
            else:
                result = self.aggregator.aggregate(detections)

        except RunSupersededError:
            logger.info(f"Run for image #{generation} superseded; result discarded")
            raise
        except SymbolReaderError as e:
            self._fail_run(generation, e)
            raise
        except Exception as e:
            error = InferenceError(f"Run failed: {e}")
            self._fail_run(generation, error)
            raise error from e
        finally:
            if self._running_generation == generation:
                self._running_generation = None

        result.decode_error = decode_error
        result.timings_ms = timings
        self._transition(PipelineState.DONE, generation)
        logger.info(
            f"Run #{generation} done: {result.summary()}",
            extra={"failures": len(result.failures)},
        )
        return result

    async def run_on(self, image: ImageBuffer | np.ndarray, **kwargs) -> RecognitionResult:
        """Load an image and run the pipeline on it."""
        self.load_image(image)
        return await self.run(**kwargs)

    async def _detect(
        self,
        image: ImageBuffer,
        timings: dict[str, float],
    ) -> tuple[list[Detection], str | None]:
        det = self.settings.detector

        start = time.perf_counter()
        tensor = self.tensor_preprocessor.prepare(image)
        try:
            raw = await asyncio.to_thread(
                run_model, self.detector.engine, det.input_name, tensor, det.output_name
            )
        except InferenceError:
            raise
        except Exception as e:
            raise InferenceError(f"Detector inference failed: {e}") from e
        timings["detect_ms"] = (time.perf_counter() - start) * 1000
        logger.perf(f"Detector took {timings['detect_ms']:.1f}ms")

        try:
            candidates = self.decoder.decode(raw, image.width, image.height)
        except UnsupportedOutputLayoutError as e:
            logger.warning(str(e))
            self._record("decode", str(e))
            return [], str(e)

        kept = self.suppressor.suppress(candidates)
        logger.debug(f"{len(candidates)} candidates, {len(kept)} after suppression")
        return kept, None

    async def _classify_all(
        self,
        image: ImageBuffer,
        detections: list[Detection],
        binarize: bool,
        timings: dict[str, float],
    ) -> tuple[list[ClassifiedDetection], list[BoxFailure]]:
        cls = self.settings.classifier
        semaphore = asyncio.Semaphore(cls.max_concurrency)
        start = time.perf_counter()

        async def classify_one(index: int, detection: Detection):
            async with semaphore:
                try:
                    crop = regions.extract_region(image, detection.box)
                    if binarize:
                        crop = regions.binarize(crop)
                    tensor = self.crop_preprocessor.prepare(crop)
                    output = await asyncio.to_thread(
                        run_model, self.classifier.engine, cls.input_name, tensor, cls.output_name
                    )
                    return self.aggregator.classify(detection, output), None
                except Exception as e:
                    logger.warning(f"Box {index} classification failed: {e}")
                    self._record("classify", f"box {index}: {e}")
                    return None, BoxFailure(index=index, box=detection.box, error=str(e))

        results = await asyncio.gather(
            *(classify_one(i, det) for i, det in enumerate(detections))
        )
        timings["classify_ms"] = (time.perf_counter() - start) * 1000
        logger.perf(f"Classified {len(detections)} boxes in {timings['classify_ms']:.1f}ms")

        classified = [c for c, _ in results if c is not None]
        failures = [failure for _, failure in results if failure is not None]
        return classified, failures

    # =========================================================================
    # State
    # =========================================================================

    def _transition(self, state: PipelineState, generation: int | None = None) -> None:
        """Move to state; updates from stale runs are ignored."""
        if generation is not None and generation != self._generation:
            return
        self.state = state
        self.transitions.append(state)

    def _ensure_current(self, generation: int) -> None:
        if generation != self._generation:
            raise RunSupersededError(generation, self._generation)

    def _fail_run(self, generation: int, error: SymbolReaderError) -> None:
        self._record("run", str(error), generation)
        if generation != self._generation:
            return
        self.last_error = error
        self._transition(PipelineState.ERROR, generation)
        self._transition(PipelineState.IMAGE_LOADED, generation)
        logger.error(f"Run #{generation} failed: {error}")

    def _record(self, kind: str, message: str, generation: int | None = None) -> None:
        if generation is None:
            generation = self._generation
        self.records.append(RunRecord(generation=generation, kind=kind, message=message))
