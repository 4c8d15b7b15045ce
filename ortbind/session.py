"""InferenceSession: the user-facing object for loading a model and running it.

A session moves through three states and never back:

    FRESH --load_model--> LOADED --dispose--> DISPOSED

    init_ort_once(2)
    session = InferenceSession()
    session.load_model("model.onnx", {"executionProviders": ["cpu"]})
    print(session.input_metadata)
    result = session.run({"x": Tensor.from_numpy(x)}, {"y": None})
    session.dispose()

Loading from memory takes the buffer plus the byte range holding the model:

    session.load_model(buffer, 0, len(buffer), {})

Passing a `preferredOutputLocation` in the load options switches the session
to I/O binding, so outputs can be left in device memory:

    session.load_model(path, {"executionProviders": ["cuda"],
                              "preferredOutputLocation": {"logits": "gpu-buffer"}})
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any

import onnxruntime as ort

from .errors import engine_errors
from .instance import InstanceState, get_instance
from .marshal import TypeInfo, ort_value_to_tensor, tensor_to_ort_value
from .options import (
    SessionConfig, parse_preferred_output_locations,
    parse_run_options, parse_session_options,
)
from .runner import DirectRunner, IoBindingRunner, Runner
from .tensor import DataLocation

logger = logging.getLogger(__name__)


class SessionState(Enum):
    FRESH    = auto()   # constructed, no model yet
    LOADED   = auto()   # model loaded, ready to run
    DISPOSED = auto()   # engine handles released; terminal


@dataclass(frozen=True)
class ModelPath:
    """Model given as a file path (encoding is left to the engine)."""
    path: str


@dataclass(frozen=True)
class ModelBuffer:
    """Model given as a byte range inside a host buffer."""
    buffer: Any
    byte_offset: int
    byte_length: int

    def to_bytes(self) -> bytes:
        view = memoryview(self.buffer).cast("B")
        return view[self.byte_offset:self.byte_offset + self.byte_length].tobytes()


@dataclass(frozen=True)
class ValueMetadata:
    """Description of one model input or output.

    Non-tensor values only carry `name` and `is_tensor=False`. For tensors,
    `type` is the element type code, `shape` has -1 for dims the model leaves
    open, and `symbolic_dimensions` names them ("" where a dim has no name).
    """
    name: str
    is_tensor: bool
    type: int | None = None
    symbolic_dimensions: tuple[str, ...] | None = None
    shape: tuple[int, ...] | None = None


_ARGS_ERROR = ("Invalid argument: args has to be either (modelPath, options) "
               "or (buffer, byteOffset, byteLength, options).")


def parse_model_args(args: tuple) -> tuple[ModelPath | ModelBuffer, Mapping[str, Any]]:
    """Split load_model() arguments into a model source and the options record."""
    if len(args) == 0:
        raise TypeError("Expect argument: model file path or buffer.")

    if len(args) == 2 and isinstance(args[0], (str, os.PathLike)) \
            and isinstance(args[1], Mapping):
        return ModelPath(os.fspath(args[0])), args[1]

    if len(args) == 4 and _is_buffer(args[0]) and _is_index(args[1]) \
            and _is_index(args[2]) and isinstance(args[3], Mapping):
        buffer, offset, length = args[0], int(args[1]), int(args[2])
        size = memoryview(buffer).nbytes
        if offset < 0 or length < 0 or offset + length > size:
            raise TypeError(
                f"Invalid argument: byte range [{offset}, {offset + length}) "
                f"is outside the {size}-byte buffer.")
        return ModelBuffer(buffer, offset, length), args[3]

    raise TypeError(_ARGS_ERROR)


def _is_buffer(value: Any) -> bool:
    if isinstance(value, str):
        return False
    try:
        memoryview(value)
    except TypeError:
        return False
    return True


def _is_index(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    return isinstance(value, int) or (isinstance(value, float) and value.is_integer())


def _create_native_session(source: ModelPath | ModelBuffer,
                           config: SessionConfig) -> ort.InferenceSession:
    """Create the engine session for a model source."""
    model = source.path if isinstance(source, ModelPath) else source.to_bytes()
    return ort.InferenceSession(
        model,
        sess_options=config.options,
        providers=config.providers,
        provider_options=config.provider_options,
    )


class InferenceSession:
    """A loaded model plus everything needed to run it.

    Input/output names and type info are read from the engine once, at load,
    and never change afterwards. Calls on one session must not overlap;
    separate sessions are independent.
    """

    def __init__(self, instance: InstanceState | None = None) -> None:
        self._instance = instance if instance is not None else get_instance()
        self._state = SessionState.FRESH
        self._session: ort.InferenceSession | None = None
        self._runner: Runner | None = None
        self._input_names: list[str] = []
        self._output_names: list[str] = []
        self._input_types: list[TypeInfo] = []
        self._output_types: list[TypeInfo] = []
        self._preferred_output_locations: list[DataLocation] = []

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def input_names(self) -> list[str]:
        self._check_loaded()
        return list(self._input_names)

    @property
    def output_names(self) -> list[str]:
        self._check_loaded()
        return list(self._output_names)

    @property
    def preferred_output_locations(self) -> list[DataLocation]:
        """One location per output, or empty when outputs are not routed."""
        self._check_loaded()
        return list(self._preferred_output_locations)

    @property
    def input_metadata(self) -> list[ValueMetadata]:
        return self.get_metadata("input")

    @property
    def output_metadata(self) -> list[ValueMetadata]:
        return self.get_metadata("output")

    def load_model(self, *args: Any) -> None:
        """Load a model from a path or a byte range of a buffer.

        Args:
            (model_path, options) or (buffer, byte_offset, byte_length, options).
            The buffer is read during this call only. options is the session
            options record (see parse_session_options), which may also carry
            `preferredOutputLocation`.

        On any failure the session stays FRESH and can be loaded again.
        """
        if self._state is SessionState.DISPOSED:
            raise RuntimeError("Session already disposed.")
        if self._state is SessionState.LOADED:
            raise RuntimeError("Model already loaded. Cannot load model multiple times.")

        source, record = parse_model_args(args)
        self._instance.engine_env()
        config = parse_session_options(record)

        with engine_errors():
            session = _create_native_session(source, config)
            inputs = session.get_inputs()
            outputs = session.get_outputs()
        input_names = [arg.name for arg in inputs]
        output_names = [arg.name for arg in outputs]
        input_types = [TypeInfo.from_node_arg(arg) for arg in inputs]
        output_types = [TypeInfo.from_node_arg(arg) for arg in outputs]

        preferred = parse_preferred_output_locations(record, output_names)
        runner = self._make_runner(session, output_names, preferred)

        self._session = session
        self._runner = runner
        self._input_names = input_names
        self._output_names = output_names
        self._input_types = input_types
        self._output_types = output_types
        self._preferred_output_locations = preferred
        self._state = SessionState.LOADED

        logger.debug("Loaded model from %s: %d input(s), %d output(s), %s runner",
                     "path" if isinstance(source, ModelPath) else "buffer",
                     len(input_names), len(output_names), type(runner).__name__)

    def get_metadata(self, which: str) -> list[ValueMetadata]:
        """Metadata for the model's inputs ("input") or outputs ("output")."""
        self._check_loaded()
        if which == "input":
            names, types = self._input_names, self._input_types
        elif which == "output":
            names, types = self._output_names, self._output_types
        else:
            raise TypeError(f"Invalid argument: expected 'input' or 'output', got {which!r}")

        result = []
        for name, info in zip(names, types):
            if info.is_tensor:
                result.append(ValueMetadata(
                    name=name,
                    is_tensor=True,
                    type=int(info.element_type),
                    symbolic_dimensions=info.symbolic_dimensions,
                    shape=info.shape,
                ))
            else:
                result.append(ValueMetadata(name=name, is_tensor=False))
        return result

    def run(self, feed: Mapping[str, Any], fetch: Mapping[str, Any],
            run_options: Mapping[str, Any] | None = None) -> dict[str, Any]:
        """Run inference.

        Args:
            feed: input name -> host tensor (or numpy array). Only inputs
                present are passed; missing ones are not defaulted.
            fetch: output name -> None to request that output. A tensor in
                place of None is accepted and currently treated the same.
                At least one output must be requested (EngineError otherwise).
            run_options: run options record (see parse_run_options). The
                shared default run options are used when omitted.

        Returns:
            Map of fetched output names to host tensors built by the
            registered tensor constructor.

        Numeric CPU input buffers are borrowed, not copied, until this call
        returns; don't resize or mutate them from another thread meanwhile.
        String inputs are only accepted by sessions loaded without
        preferredOutputLocation.
        """
        self._check_loaded()
        if not isinstance(feed, Mapping) or not isinstance(fetch, Mapping):
            raise TypeError("Expect inputs(feed) and outputs(fetch) to be objects.")
        if run_options is not None and not isinstance(run_options, Mapping):
            raise TypeError("'runOptions' must be an object.")

        runner = self._runner
        feeds = []
        for name in self._input_names:
            if name not in feed:
                continue
            try:
                value = tensor_to_ort_value(feed[name], runner.cpu_memory_info,
                                            runner.gpu_memory_info)
            except TypeError as e:
                raise TypeError(f"Invalid input '{name}': {e}") from e
            feeds.append((name, value))
        fetches = [(name, fetch[name]) for name in self._output_names if name in fetch]

        if run_options is not None:
            options = parse_run_options(run_options)
        else:
            options = self._instance.default_run_options()

        outputs = runner.run(feeds, fetches, options)

        constructor = self._instance.tensor_constructor()
        return {name: ort_value_to_tensor(value, constructor) for name, value in outputs}

    def dispose(self) -> None:
        """Release the I/O binding (if any) and then the engine session."""
        self._check_loaded()
        self._runner.release()
        self._runner = None
        self._session = None
        self._state = SessionState.DISPOSED
        logger.debug("Session disposed")

    def end_profiling(self) -> str:
        """Stop profiling and return the name of the profile file written."""
        self._check_loaded()
        with engine_errors():
            return self._session.end_profiling()

    def _check_loaded(self) -> None:
        if self._state is SessionState.DISPOSED:
            raise RuntimeError("Session already disposed.")
        if self._state is SessionState.FRESH:
            raise RuntimeError("Session is not initialized.")

    @staticmethod
    def _make_runner(session: ort.InferenceSession, output_names: list[str],
                     preferred_output_locations: list[DataLocation]) -> Runner:
        """Pick the execution path for a freshly loaded session."""
        if preferred_output_locations:
            return IoBindingRunner(session, output_names, preferred_output_locations)
        return DirectRunner(session, output_names)
