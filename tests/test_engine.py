"""
Engine Tests - backend selection, model loading and output selection.

ONNX Runtime sessions are mocked; TorchScript modules are scripted and
saved for real.

Run with:
    python -m pytest tests/test_engine.py -v
"""

import io
import sys
from pathlib import Path
from types import SimpleNamespace
from typing import Tuple
from unittest.mock import MagicMock, patch

import numpy as np
import pytest
import torch

ROOT_DIR = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT_DIR))

from symbol_reader.core.errors import InferenceError, ModelLoadError
from symbol_reader.core.models import Tensor
from symbol_reader.inference.engine import (
    EngineBackend,
    OnnxEngine,
    TorchScriptEngine,
    load_engine,
    resolve_backend,
    run_model,
    select_output,
)


class Doubler(torch.nn.Module):
    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return x * 2


class Pair(torch.nn.Module):
    def forward(self, x: torch.Tensor) -> Tuple[torch.Tensor, torch.Tensor]:
        return x, x + 1


@pytest.fixture
def doubler_path(tmp_path):
    path = tmp_path / "doubler.pt"
    torch.jit.save(torch.jit.script(Doubler()), str(path))
    return path


@pytest.fixture
def mock_onnx_session():
    session = MagicMock()
    session.get_inputs.return_value = [SimpleNamespace(name="images")]
    session.get_outputs.return_value = [SimpleNamespace(name="output0")]
    session.get_providers.return_value = ["CPUExecutionProvider"]
    session.run.return_value = [np.ones((1, 1, 6), dtype=np.float32)]
    return session


# =============================================================================
# BACKEND SELECTION
# =============================================================================


class TestResolveBackend:
    def test_by_suffix(self):
        assert resolve_backend("models/final_yolo.onnx") == EngineBackend.ONNX
        assert resolve_backend("models/classifier.pt") == EngineBackend.TORCHSCRIPT
        assert resolve_backend(Path("m.TorchScript")) == EngineBackend.TORCHSCRIPT

    def test_bytes_default_to_onnx(self):
        assert resolve_backend(b"\x08\x01") == EngineBackend.ONNX

    def test_explicit_backend_wins(self):
        assert resolve_backend("model.bin", "torchscript") == EngineBackend.TORCHSCRIPT


# =============================================================================
# OUTPUT SELECTION
# =============================================================================


class TestSelectOutput:
    def test_single_output(self):
        arr = np.zeros(3)
        assert select_output({"anything": arr}) is arr

    def test_named_output(self):
        a, b = np.zeros(1), np.ones(1)
        assert select_output({"boxes": a, "scores": b}, "scores") is b

    def test_missing_named_output(self):
        with pytest.raises(InferenceError, match="not produced"):
            select_output({"boxes": np.zeros(1)}, "scores")

    def test_ambiguous_outputs_raise(self):
        with pytest.raises(InferenceError, match="Ambiguous"):
            select_output({"boxes": np.zeros(1), "scores": np.zeros(1)})

    def test_run_model_uses_named_feed(self):
        engine = MagicMock()
        engine.run.return_value = {"output": np.array([1.0, 2.0])}
        tensor = Tensor(np.zeros((1, 1, 28, 28), dtype=np.float32))

        out = run_model(engine, "input", tensor)

        engine.run.assert_called_once()
        (feeds,), _ = engine.run.call_args
        assert list(feeds) == ["input"]
        assert feeds["input"] is tensor.data
        np.testing.assert_array_equal(out, [1.0, 2.0])


# =============================================================================
# ONNX RUNTIME
# =============================================================================


class TestOnnxEngine:
    def test_run_keys_outputs_by_name(self, mock_onnx_session):
        with patch(
            "symbol_reader.inference.engine.ort.InferenceSession", return_value=mock_onnx_session
        ):
            engine = OnnxEngine(b"fake-model")

        outputs = engine.run({"images": np.zeros((1, 3, 640, 640), dtype=np.float32)})

        assert engine.input_names == ["images"]
        assert engine.output_names == ["output0"]
        assert list(outputs) == ["output0"]
        mock_onnx_session.run.assert_called_once()
        assert mock_onnx_session.run.call_args[0][0] is None

    def test_bytes_passed_through(self, mock_onnx_session):
        with patch(
            "symbol_reader.inference.engine.ort.InferenceSession", return_value=mock_onnx_session
        ) as session_cls:
            OnnxEngine(b"blob")

        assert session_cls.call_args[0][0] == b"blob"
        assert session_cls.call_args[1]["providers"] == ["CPUExecutionProvider"]

    def test_load_engine_from_path(self, tmp_path, mock_onnx_session):
        model = tmp_path / "detector.onnx"
        model.write_bytes(b"fake")

        with patch(
            "symbol_reader.inference.engine.ort.InferenceSession", return_value=mock_onnx_session
        ) as session_cls:
            engine = load_engine("detector", model)

        assert isinstance(engine, OnnxEngine)
        assert session_cls.call_args[0][0] == str(model)

    def test_backend_failure_wrapped(self, tmp_path):
        model = tmp_path / "broken.onnx"
        model.write_bytes(b"not a model")

        with patch(
            "symbol_reader.inference.engine.ort.InferenceSession",
            side_effect=RuntimeError("INVALID_PROTOBUF"),
        ):
            with pytest.raises(ModelLoadError) as exc_info:
                load_engine("classifier", model)

        err = exc_info.value
        assert err.role == "classifier"
        assert err.source == str(model)
        assert "INVALID_PROTOBUF" in err.reason
        assert isinstance(err.__cause__, RuntimeError)


class TestLoadEngine:
    def test_missing_file(self, tmp_path):
        missing = tmp_path / "nope.onnx"

        with pytest.raises(ModelLoadError) as exc_info:
            load_engine("detector", missing)

        assert exc_info.value.role == "detector"
        assert exc_info.value.reason == "file not found"
        assert "detector" in str(exc_info.value)


# =============================================================================
# TORCHSCRIPT
# =============================================================================


class TestTorchScriptEngine:
    def test_load_and_run_from_path(self, doubler_path):
        engine = load_engine(
            "classifier", doubler_path, input_names=("input",), output_names=("logits",)
        )
        x = np.arange(6, dtype=np.float32).reshape(1, 6)

        outputs = engine.run({"input": x})

        assert isinstance(engine, TorchScriptEngine)
        assert list(outputs) == ["logits"]
        np.testing.assert_allclose(outputs["logits"], x * 2)

    def test_load_from_bytes(self):
        buffer = io.BytesIO()
        torch.jit.save(torch.jit.script(Doubler()), buffer)

        engine = TorchScriptEngine(buffer.getvalue())
        out = engine.run({"input": np.ones((1, 3), dtype=np.float32)})

        np.testing.assert_allclose(out["output"], 2.0)

    def test_missing_input(self, doubler_path):
        engine = TorchScriptEngine(doubler_path, input_names=("images",))
        with pytest.raises(InferenceError, match="Missing inputs"):
            engine.run({"input": np.ones((1, 3), dtype=np.float32)})

    def test_tuple_outputs(self, tmp_path):
        path = tmp_path / "pair.pt"
        torch.jit.save(torch.jit.script(Pair()), str(path))

        engine = TorchScriptEngine(path, output_names=("same", "plus_one"))
        out = engine.run({"input": np.zeros((2,), dtype=np.float32)})

        np.testing.assert_allclose(out["same"], 0.0)
        np.testing.assert_allclose(out["plus_one"], 1.0)

    def test_too_many_outputs(self, tmp_path):
        path = tmp_path / "pair.pt"
        torch.jit.save(torch.jit.script(Pair()), str(path))

        engine = TorchScriptEngine(path)
        with pytest.raises(InferenceError, match="2 outputs"):
            engine.run({"input": np.zeros((2,), dtype=np.float32)})

    def test_explicit_backend_for_unknown_suffix(self, tmp_path):
        path = tmp_path / "model.bin"
        torch.jit.save(torch.jit.script(Doubler()), str(path))

        engine = load_engine("classifier", path, backend=EngineBackend.TORCHSCRIPT)

        assert isinstance(engine, TorchScriptEngine)
