"""
Command-line shell around RecognitionSession.

Loads an image file, runs detection (+ classification), prints the label
sequence, and optionally writes an annotated copy of the image.

Usage:
    symbol-reader label.png --detector models/final_yolo.onnx --classifier models/final_cnn.onnx
    symbol-reader label.png --detector models/final_yolo.onnx --detect-only --json
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

import cv2
import numpy as np

from .config.settings import Settings, get_settings
from .core.errors import InputValidationError, ModelLoadError, SymbolReaderError
from .core.image import ImageBuffer
from .core.models import RecognitionResult
from .logger_config import (
    configure_logging,
    get_log_storage_used,
    get_logger,
    is_perf_enabled,
)
from .pipeline import RecognitionSession

logger = get_logger("cli")

EXIT_OK = 0
EXIT_SETUP_ERROR = 1
EXIT_RUN_ERROR = 2

BOX_COLOR = (255, 0, 0)  # red in RGB


def load_image_file(path: str | Path) -> ImageBuffer:
    """Decode an image file into an RGB(A) ImageBuffer."""
    raw = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
    if raw is None:
        raise InputValidationError(f"Could not read image: {path}")

    if raw.ndim == 2:
        return ImageBuffer(raw)
    if raw.shape[2] == 4:
        return ImageBuffer(cv2.cvtColor(raw, cv2.COLOR_BGRA2RGBA))
    return ImageBuffer(cv2.cvtColor(raw, cv2.COLOR_BGR2RGB))


def annotate(image: ImageBuffer, result: RecognitionResult) -> np.ndarray:
    """
    Draw each box and its label onto an RGB copy of the image.

    Labels go above the box, or inside its top edge when there is no room.
    """
    canvas = np.ascontiguousarray(image.rgb().copy())
    labels = result.labels if len(result.labels) == len(result.detections) else [""] * result.count

    for det, label in zip(result.detections, labels):
        box = det.box
        x0, y0 = int(round(box.x)), int(round(box.y))
        x1, y1 = int(round(box.x_max)), int(round(box.y_max))
        cv2.rectangle(canvas, (x0, y0), (x1, y1), BOX_COLOR, 2)
        text_y = y0 - 5 if y0 > 10 else y0 + 15
        cv2.putText(canvas, label, (x0, text_y), cv2.FONT_HERSHEY_SIMPLEX, 0.5, BOX_COLOR, 1)

    return canvas


def save_image_file(path: str | Path, rgb: np.ndarray) -> None:
    if not cv2.imwrite(str(path), cv2.cvtColor(rgb, cv2.COLOR_RGB2BGR)):
        raise OSError(f"Could not write image: {path}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="symbol-reader",
        description="Read a single line of symbols from an image (detector + classifier)",
    )
    parser.add_argument("image", type=str, help="Path to input image")
    parser.add_argument("--detector", type=str, help="Detector model (.onnx or TorchScript)")
    parser.add_argument("--classifier", type=str, help="Classifier model (.onnx or TorchScript)")
    parser.add_argument("--detect-only", action="store_true", help="Skip classification")
    parser.add_argument("--binarize", action="store_true", help="Otsu-binarize crops first")
    parser.add_argument("--annotate", type=str, help="Write annotated image to this path")
    parser.add_argument("--json", action="store_true", help="Print the full result as JSON")
    parser.add_argument("--log-level", type=str, help="Override log level")
    return parser


async def _run(
    args: argparse.Namespace,
    settings: Settings,
) -> tuple[int, RecognitionResult | None]:
    session = RecognitionSession(settings)
    classify = not args.detect_only

    if classify:
        errors = session.load_models(args.detector, args.classifier)
    else:
        errors = {"detector": None}
        try:
            session.load_detector(args.detector)
        except ModelLoadError as e:
            errors["detector"] = e

    failed = [error for error in errors.values() if error is not None]
    if failed:
        for error in failed:
            print(f"Error: {error}", file=sys.stderr)
        return EXIT_SETUP_ERROR, None

    try:
        session.load_image(load_image_file(args.image))
        result = await session.run(classify=classify, binarize=args.binarize or None)
    except (InputValidationError, ModelLoadError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_SETUP_ERROR, None
    except SymbolReaderError as e:
        print(f"Error during inference: {e}", file=sys.stderr)
        return EXIT_RUN_ERROR, None

    if args.annotate:
        save_image_file(args.annotate, annotate(session.image, result))

    return EXIT_OK, result


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()

    log = settings.logging
    log_file = configure_logging(
        level=args.log_level or log.level,
        perf_enabled=log.perf_enabled,
        json_format=log.format == "json",
        log_dir=log.log_dir if log.file_enabled else None,
        max_storage_mb=log.max_storage_mb,
        max_file_size_mb=log.max_file_size_mb,
    )
    if log_file is not None:
        used = get_log_storage_used(log_file.parent)
        logger.info(f"Logging to {log_file}", extra={"log_storage_bytes": used})

    if not Path(args.image).exists():
        print(f"Error: Image file not found: {args.image}", file=sys.stderr)
        return EXIT_SETUP_ERROR

    code, result = asyncio.run(_run(args, settings))
    if result is None:
        return code

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        print(f"Predicted: {', '.join(result.labels) or '-'}")
        print(f"Boxes: {result.count}")
        avg = f"{result.confidence:.2f}" if result.count else "-"
        print(f"Average confidence: {avg}")
        for failure in result.failures:
            print(f"Skipped box {failure.index}: {failure.error}")
        if is_perf_enabled() and result.timings_ms:
            timings = ", ".join(f"{k}={v:.1f}" for k, v in result.timings_ms.items())
            print(f"Timings: {timings}")
    return code


if __name__ == "__main__":
    sys.exit(main())
