"""Process-wide engine state.

The engine wants one environment per process, set up before any session is
created. InstanceState holds it along with the defaults every session
shares: the default run options, the host tensor constructor, and the
engine log level.

    init_ort_once(3, Tensor)      # first call wins, later calls are no-ops
    state = get_instance()
    state.default_run_options()
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable

import onnxruntime as ort

from .tensor import Tensor

logger = logging.getLogger(__name__)

# Oldest engine release with the OrtValue surface the marshaller relies on
# (element_type(), ortvalue_from_numpy_with_onnx_type()).
MIN_ENGINE_VERSION = (1, 17)


@dataclass(frozen=True)
class EngineEnv:
    """Handle for the initialized engine environment."""
    version: str
    log_level: int


def _engine_version() -> tuple[int, ...]:
    parts = []
    for part in ort.__version__.split(".")[:2]:
        digits = "".join(ch for ch in part if ch.isdigit())
        parts.append(int(digits) if digits else 0)
    return tuple(parts)


def _create_engine_env(log_level: int) -> EngineEnv:
    """Check the engine API and set it up with the given log severity."""
    if not hasattr(ort, "OrtValue") or _engine_version() < MIN_ENGINE_VERSION:
        raise RuntimeError(
            "Failed to initialize ONNX Runtime API. It could happen when this binding "
            "requires a newer ONNX Runtime than the one installed "
            f"(found {ort.__version__}, need >= "
            f"{'.'.join(str(v) for v in MIN_ENGINE_VERSION)}).")
    ort.set_default_logger_severity(log_level)
    return EngineEnv(version=ort.__version__, log_level=log_level)


class InstanceState:
    """One-shot engine initialization plus shared session defaults.

    init_ort() is idempotent and thread-safe: the first call to complete
    initializes, every later call (whatever its arguments) does nothing.
    The accessors raise until initialization has completed.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._env: EngineEnv | None = None
        self._default_run_options: ort.RunOptions | None = None
        self._tensor_constructor: Callable[..., Any] | None = None
        self._log_level: int | None = None

    @property
    def initialized(self) -> bool:
        return self._env is not None

    def init_ort(self, log_level: int,
                 tensor_constructor: Callable[..., Any] = Tensor) -> bool:
        """Initialize the engine once. Returns True if this call did it."""
        if self._env is not None:
            return False
        with self._lock:
            if self._env is not None:
                return False
            if isinstance(log_level, bool) or not isinstance(log_level, int) \
                    or not 0 <= log_level <= 4:
                raise TypeError(
                    f"Invalid argument: log level must be an integer in [0, 4], got {log_level!r}")
            if not callable(tensor_constructor):
                raise TypeError("Invalid argument: tensor constructor must be callable")

            env = _create_engine_env(log_level)
            self._default_run_options = ort.RunOptions()
            self._tensor_constructor = tensor_constructor
            self._log_level = log_level
            # Published last: readers check _env without taking the lock
            self._env = env

        logger.debug("Engine initialized: onnxruntime %s, log level %d",
                     env.version, log_level)
        return True

    def engine_env(self) -> EngineEnv:
        self._check_initialized()
        return self._env

    def default_run_options(self) -> ort.RunOptions:
        self._check_initialized()
        return self._default_run_options

    def tensor_constructor(self) -> Callable[..., Any]:
        self._check_initialized()
        return self._tensor_constructor

    @property
    def log_level(self) -> int:
        self._check_initialized()
        return self._log_level

    def _check_initialized(self) -> None:
        if self._env is None:
            raise RuntimeError(
                "ONNX Runtime is not initialized; call init_ort_once() first")


_instance = InstanceState()


def get_instance() -> InstanceState:
    """The process-wide instance state."""
    return _instance


def init_ort_once(log_level: int,
                  tensor_constructor: Callable[..., Any] = Tensor) -> None:
    """Initialize the engine for this process. Safe to call repeatedly."""
    _instance.init_ort(log_level, tensor_constructor)
