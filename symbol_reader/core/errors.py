"""
Error kinds raised by the recognition pipeline.

Decode errors degrade to an empty result inside the session; model-load and
input-validation errors are surfaced to the caller.
"""

from __future__ import annotations


class SymbolReaderError(Exception):
    """Base class for all pipeline errors."""


class ModelLoadError(SymbolReaderError):
    """A detector or classifier model failed to initialize."""

    def __init__(self, role: str, source: str, reason: str):
        self.role = role
        self.source = source
        self.reason = reason
        super().__init__(f"Failed to load {role} model from {source}: {reason}")


class UnsupportedOutputLayoutError(SymbolReaderError):
    """The detector output tensor matches none of the known layouts."""

    def __init__(self, shape: tuple[int, ...], detail: str = ""):
        self.shape = tuple(shape)
        message = f"Unsupported detector output layout: shape={list(self.shape)}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class InferenceError(SymbolReaderError):
    """An inference call failed or returned an unusable output mapping."""

    def __init__(self, message: str, box_index: int | None = None):
        self.box_index = box_index
        super().__init__(message)


class InputValidationError(SymbolReaderError):
    """A run was requested without an image or a required model."""


class RunSupersededError(SymbolReaderError):
    """A new image was loaded while the run was in flight."""

    def __init__(self, run_generation: int, current_generation: int):
        self.run_generation = run_generation
        self.current_generation = current_generation
        super().__init__(
            f"Run for image #{run_generation} superseded by image #{current_generation}"
        )
