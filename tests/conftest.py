"""Shared fixtures and helpers for the test suite.

pytest discovers conftest.py automatically, and fixtures defined here are
available to all test files in this directory without explicit imports.

Small ONNX models are built with onnx.helper. The fake engine objects at
the bottom stand in for the engine's session / I/O binding / device values
so routing and call-shape behavior can be checked without a GPU.
"""

from types import SimpleNamespace

import numpy as np
import onnx
import onnxruntime as ort
import pytest
import torch
import torch.nn as nn
from onnx import TensorProto, helper

import ortbind.session
from ortbind import Tensor, init_ort_once


@pytest.fixture(autouse=True, scope="session")
def _init_engine():
    """Every test runs against an initialized engine."""
    init_ort_once(3, Tensor)


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------

def make_model(nodes, inputs, outputs, opset=13) -> bytes:
    """Serialize a single-graph model. IR version pinned so any supported
    engine release can load it."""
    graph = helper.make_graph(nodes, "test_graph", inputs, outputs)
    model = helper.make_model(graph, opset_imports=[helper.make_opsetid("", opset)])
    model.ir_version = 8
    onnx.checker.check_model(model)
    return model.SerializeToString()


def identity_model() -> bytes:
    """x: float[2] -> y = x"""
    return make_model(
        [helper.make_node("Identity", ["x"], ["y"])],
        [helper.make_tensor_value_info("x", TensorProto.FLOAT, [2])],
        [helper.make_tensor_value_info("y", TensorProto.FLOAT, [2])],
    )


def two_output_model() -> bytes:
    """x: float[2] -> y1 = x, y2 = -x"""
    return make_model(
        [helper.make_node("Identity", ["x"], ["y1"]),
         helper.make_node("Neg", ["x"], ["y2"])],
        [helper.make_tensor_value_info("x", TensorProto.FLOAT, [2])],
        [helper.make_tensor_value_info("y1", TensorProto.FLOAT, [2]),
         helper.make_tensor_value_info("y2", TensorProto.FLOAT, [2])],
    )


def add_model() -> bytes:
    """a, b: float[N] -> c = a + b (symbolic batch dim)."""
    return make_model(
        [helper.make_node("Add", ["a", "b"], ["c"])],
        [helper.make_tensor_value_info("a", TensorProto.FLOAT, ["N"]),
         helper.make_tensor_value_info("b", TensorProto.FLOAT, ["N"])],
        [helper.make_tensor_value_info("c", TensorProto.FLOAT, ["N"])],
    )


def string_model() -> bytes:
    """s: string[2] -> t = s"""
    return make_model(
        [helper.make_node("Identity", ["s"], ["t"])],
        [helper.make_tensor_value_info("s", TensorProto.STRING, [2])],
        [helper.make_tensor_value_info("t", TensorProto.STRING, [2])],
    )


def sequence_model() -> bytes:
    """x: float[2] -> seq = [x] (non-tensor output)."""
    seq_type = helper.make_sequence_type_proto(
        helper.make_tensor_type_proto(TensorProto.FLOAT, [2]))
    return make_model(
        [helper.make_node("SequenceConstruct", ["x"], ["seq"])],
        [helper.make_tensor_value_info("x", TensorProto.FLOAT, [2])],
        [helper.make_value_info("seq", seq_type)],
    )


@pytest.fixture
def identity_path(tmp_path):
    path = tmp_path / "identity.onnx"
    path.write_bytes(identity_model())
    return str(path)


@pytest.fixture
def two_output_path(tmp_path):
    path = tmp_path / "two_outputs.onnx"
    path.write_bytes(two_output_model())
    return str(path)


class SimpleMLP(nn.Module):
    """3-layer MLP: Linear→ReLU→Linear→ReLU→Linear."""
    def __init__(self, dim=64):
        super().__init__()
        self.fc1 = nn.Linear(dim, dim)
        self.fc2 = nn.Linear(dim, dim)
        self.fc3 = nn.Linear(dim, dim)

    def forward(self, x):
        return self.fc3(torch.relu(self.fc2(torch.relu(self.fc1(x)))))


def f32(*values) -> Tensor:
    return Tensor.from_numpy(np.array(values, dtype=np.float32))


# ---------------------------------------------------------------------------
# Fake engine objects
# ---------------------------------------------------------------------------

def node_arg(name, type_str="tensor(float)", shape=(2,)):
    return SimpleNamespace(name=name, type=type_str, shape=list(shape))


class FakeDeviceValue:
    """Engine value living in device memory."""

    def __init__(self, element_type=1, shape=(2,), device="cuda"):
        self._element_type = element_type
        self._shape = list(shape)
        self._device = device

    def is_tensor(self):
        return True

    def element_type(self):
        return self._element_type

    def shape(self):
        return list(self._shape)

    def device_name(self):
        return self._device


class FakeIoBinding:
    """Records what gets bound; returns one value per bound output."""

    def __init__(self):
        self.inputs = {}
        self.outputs = []
        self.last_inputs = {}
        self.last_outputs = []
        self.clear_count = 0

    def bind_ortvalue_input(self, name, value):
        self.inputs[name] = value

    def bind_output(self, name, device_type="cpu", device_id=0):
        self.outputs.append((name, device_type, device_id))

    def get_outputs(self):
        values = []
        for _, device_type, _ in self.outputs:
            if device_type == "cpu":
                values.append(ort.OrtValue.ortvalue_from_numpy(
                    np.array([1.0, 2.0], dtype=np.float32)))
            else:
                values.append(FakeDeviceValue(device=device_type))
        return values

    def clear_binding_inputs(self):
        self.last_inputs = dict(self.inputs)
        self.inputs = {}

    def clear_binding_outputs(self):
        self.last_outputs = list(self.outputs)
        self.outputs = []
        self.clear_count += 1


class FakeNativeSession:
    """Stands in for the engine session; records every call."""

    def __init__(self, inputs, outputs, fail_run=None):
        self._inputs = inputs
        self._outputs = outputs
        self._fail_run = fail_run
        self.calls = []
        self.numpy_calls = []
        self.binding = FakeIoBinding()
        self.binding_runs = 0

    def get_inputs(self):
        return self._inputs

    def get_outputs(self):
        return self._outputs

    def run_with_ort_values(self, output_names, feeds, run_options):
        self.calls.append((list(output_names), dict(feeds), run_options))
        if self._fail_run is not None:
            raise self._fail_run
        return [ort.OrtValue.ortvalue_from_numpy(np.zeros(2, dtype=np.float32))
                for _ in output_names]

    def run(self, output_names, feeds, run_options):
        """Numpy entry point: takes numpy arrays and OrtValues, returns numpy."""
        self.numpy_calls.append((list(output_names), dict(feeds), run_options))
        if self._fail_run is not None:
            raise self._fail_run
        return [np.zeros(2, dtype=np.float32) for _ in output_names]

    def io_binding(self):
        return self.binding

    def run_with_iobinding(self, binding, run_options):
        self.binding_runs += 1
        if self._fail_run is not None:
            raise self._fail_run

    def end_profiling(self):
        return "fake_profile.json"


@pytest.fixture
def fake_engine(monkeypatch):
    """Factory: make load_model() create the given FakeNativeSession."""
    def install(fake):
        monkeypatch.setattr(ortbind.session, "_create_native_session",
                            lambda source, config: fake)
        return fake
    return install
