"""
Inference engine adapters.

The pipeline only needs `run(inputs_by_name) -> outputs_by_name` over numpy
arrays. Two backends are provided:
- ONNX Runtime (model file or in-memory blob)
- PyTorch TorchScript (torch.jit.save'd module)

Detector and classifier engines are loaded independently; a failure to load
one never prevents loading the other.
"""

from __future__ import annotations

import io
import time
from enum import Enum
from pathlib import Path
from typing import Protocol

import numpy as np
import onnxruntime as ort
import torch

from ..core.errors import InferenceError, ModelLoadError
from ..core.models import Tensor
from ..logger_config import get_logger

logger = get_logger("engine")


class EngineBackend(str, Enum):
    ONNX = "onnx"
    TORCHSCRIPT = "torchscript"


TORCHSCRIPT_SUFFIXES = {".pt", ".pth", ".ts", ".torchscript"}


class InferenceEngine(Protocol):
    """Minimal engine contract used by the pipeline."""

    @property
    def input_names(self) -> list[str]: ...

    @property
    def output_names(self) -> list[str]: ...

    def run(self, inputs: dict[str, np.ndarray]) -> dict[str, np.ndarray]: ...


class OnnxEngine:
    """ONNX Runtime session wrapper."""

    def __init__(self, model: str | Path | bytes, providers: list[str] | None = None):
        opts = ort.SessionOptions()
        opts.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL

        source = model if isinstance(model, bytes) else str(model)
        self._session = ort.InferenceSession(
            source, opts, providers=providers or ["CPUExecutionProvider"]
        )
        self._input_names = [i.name for i in self._session.get_inputs()]
        self._output_names = [o.name for o in self._session.get_outputs()]
        logger.info(f"ONNX loaded: providers={self._session.get_providers()}")

    @property
    def input_names(self) -> list[str]:
        return list(self._input_names)

    @property
    def output_names(self) -> list[str]:
        return list(self._output_names)

    def run(self, inputs: dict[str, np.ndarray]) -> dict[str, np.ndarray]:
        outputs = self._session.run(None, inputs)
        return dict(zip(self._output_names, outputs))


class TorchScriptEngine:
    """
    TorchScript module wrapper.

    Inputs are passed positionally in `input_names` order; outputs (tensor,
    tuple/list of tensors, or dict) are keyed by `output_names`.
    """

    def __init__(
        self,
        model: str | Path | bytes,
        input_names: list[str] | tuple[str, ...] = ("input",),
        output_names: list[str] | tuple[str, ...] = ("output",),
        device: str = "cpu",
    ):
        self.device = torch.device(device if torch.cuda.is_available() else "cpu")
        source = io.BytesIO(model) if isinstance(model, bytes) else str(model)
        self._module = torch.jit.load(source, map_location=self.device)
        self._module.eval()
        self._input_names = list(input_names)
        self._output_names = list(output_names)
        logger.info(f"TorchScript loaded on {self.device}")

    @property
    def input_names(self) -> list[str]:
        return list(self._input_names)

    @property
    def output_names(self) -> list[str]:
        return list(self._output_names)

    def run(self, inputs: dict[str, np.ndarray]) -> dict[str, np.ndarray]:
        missing = [name for name in self._input_names if name not in inputs]
        if missing:
            raise InferenceError(f"Missing inputs: {missing}")

        args = [
            torch.from_numpy(np.ascontiguousarray(inputs[name])).to(self.device)
            for name in self._input_names
        ]
        with torch.inference_mode():
            out = self._module(*args)

        if isinstance(out, dict):
            return {k: v.detach().cpu().numpy() for k, v in out.items()}
        if isinstance(out, torch.Tensor):
            out = (out,)
        if len(out) > len(self._output_names):
            raise InferenceError(
                f"Module returned {len(out)} outputs but only "
                f"{len(self._output_names)} names are declared"
            )
        return {name: t.detach().cpu().numpy() for name, t in zip(self._output_names, out)}


def resolve_backend(
    source: str | Path | bytes,
    backend: EngineBackend | None = None,
) -> EngineBackend:
    """Explicit backend wins; otherwise by file suffix, ONNX for blobs."""
    if backend is not None:
        return EngineBackend(backend)
    if isinstance(source, bytes):
        return EngineBackend.ONNX
    if Path(source).suffix.lower() in TORCHSCRIPT_SUFFIXES:
        return EngineBackend.TORCHSCRIPT
    return EngineBackend.ONNX


def load_engine(
    role: str,
    source: str | Path | bytes,
    backend: EngineBackend | None = None,
    input_names: list[str] | tuple[str, ...] = ("input",),
    output_names: list[str] | tuple[str, ...] = ("output",),
) -> InferenceEngine:
    """
    Load a model for one pipeline role ("detector" or "classifier").

    Raises:
        ModelLoadError: missing file or backend failure
    """
    label = "<bytes>" if isinstance(source, bytes) else str(source)
    if not isinstance(source, bytes) and not Path(source).exists():
        raise ModelLoadError(role, label, "file not found")

    resolved = resolve_backend(source, backend)
    start = time.perf_counter()
    logger.info(f"Loading {role} model: {label} (backend={resolved.value})")

    try:
        if resolved == EngineBackend.TORCHSCRIPT:
            engine = TorchScriptEngine(source, input_names=input_names, output_names=output_names)
        else:
            engine = OnnxEngine(source)
    except Exception as e:
        logger.error(f"Failed to load {role} model {label}: {e}")
        raise ModelLoadError(role, label, str(e)) from e

    elapsed_ms = (time.perf_counter() - start) * 1000
    logger.info(
        f"{role} model loaded in {elapsed_ms:.1f}ms", extra={"outputs": engine.output_names}
    )
    return engine


def select_output(outputs: dict[str, np.ndarray], output_name: str | None = None) -> np.ndarray:
    """
    Pick one output from an engine's output mapping.

    With an explicit name, that output must exist. Without one, the mapping
    must hold exactly one output; several outputs are ambiguous and raise
    rather than silently taking the first key.
    """
    if output_name is not None:
        if output_name not in outputs:
            raise InferenceError(
                f"Output '{output_name}' not produced; available: {sorted(outputs)}"
            )
        return outputs[output_name]

    if len(outputs) != 1:
        raise InferenceError(
            f"Ambiguous model outputs {sorted(outputs)}; configure an output name"
        )
    return next(iter(outputs.values()))


def run_model(
    engine: InferenceEngine,
    input_name: str,
    tensor: Tensor,
    output_name: str | None = None,
) -> np.ndarray:
    """Run one named input through an engine and return the selected output."""
    outputs = engine.run({input_name: tensor.data})
    return np.asarray(select_output(outputs, output_name))
