"""Value marshalling between host tensors and engine values.

Host -> engine (tensor_to_ort_value):
  - numeric CPU data is wrapped in place. The engine value borrows the host
    buffer, so the buffer must stay alive and unmodified until the engine
    call using it returns.
  - string data is checked and gathered into a numpy object array. The
    engine cannot wrap strings in an OrtValue, so this array is the feed
    value itself; the engine copies the strings into its own storage when
    the run starts (see DirectRunner).
  - GPU_BUFFER data is passed through as the device value it wraps.

Engine -> host (ort_value_to_tensor):
  - CPU values are copied into a new numpy array owned by the host tensor.
    Runs fed with string arrays hand back numpy arrays; those are wrapped
    as they are.
  - device values are handed over as a GpuBuffer; the host tensor holds the
    only reference to the engine value from then on.

Also converts the engine's model input/output descriptions into the
TypeInfo records a session caches at load time.
"""

import ctypes
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Callable, NamedTuple

import numpy as np
import onnxruntime as ort

from .errors import engine_errors
from .tensor import DataLocation, ElementType, GpuBuffer, Tensor


class MemoryInfo(NamedTuple):
    """Engine memory descriptor: which device an engine value lives on."""
    device_type: str
    device_id: int = 0


CPU_MEMORY_INFO = MemoryInfo("cpu", 0)
GPU_BUFFER_MEMORY_INFO = MemoryInfo("cuda", 0)


def memory_info_for(location: DataLocation, cpu: MemoryInfo,
                    gpu: MemoryInfo) -> MemoryInfo:
    """Select the memory descriptor for a data location."""
    return gpu if location is DataLocation.GPU_BUFFER else cpu


# ---------------------------------------------------------------------------
# Type info
# ---------------------------------------------------------------------------

class OnnxType(IntEnum):
    """Kinds of model values (engine ONNXType codes)."""
    UNKNOWN       = 0
    TENSOR        = 1
    SEQUENCE      = 2
    MAP           = 3
    OPAQUE        = 4
    SPARSE_TENSOR = 5
    OPTIONAL      = 6


_ONNX_TYPE_PREFIXES = [
    ("tensor(", OnnxType.TENSOR),
    ("seq(", OnnxType.SEQUENCE),
    ("map(", OnnxType.MAP),
    ("opaque(", OnnxType.OPAQUE),
    ("sparse_tensor(", OnnxType.SPARSE_TENSOR),
    ("optional(", OnnxType.OPTIONAL),
]

# Engine type strings: "tensor(float)" -> "float" -> ElementType.FLOAT
_TYPE_STRINGS = {
    "float": ElementType.FLOAT,
    "uint8": ElementType.UINT8,
    "int8": ElementType.INT8,
    "uint16": ElementType.UINT16,
    "int16": ElementType.INT16,
    "int32": ElementType.INT32,
    "int64": ElementType.INT64,
    "string": ElementType.STRING,
    "bool": ElementType.BOOL,
    "float16": ElementType.FLOAT16,
    "double": ElementType.DOUBLE,
    "uint32": ElementType.UINT32,
    "uint64": ElementType.UINT64,
    "bfloat16": ElementType.BFLOAT16,
}


@dataclass(frozen=True)
class TypeInfo:
    """Cached description of one model input or output.

    For tensors, `shape` has -1 for every dim not fixed by the model and
    `symbolic_dimensions` holds the dim's symbolic name ("" for fixed or
    unnamed dims). Non-tensors carry only the ONNX type.
    """
    onnx_type: OnnxType
    element_type: ElementType = ElementType.UNDEFINED
    shape: tuple[int, ...] = ()
    symbolic_dimensions: tuple[str, ...] = ()

    @property
    def is_tensor(self) -> bool:
        return self.onnx_type is OnnxType.TENSOR

    @classmethod
    def from_node_arg(cls, arg: Any) -> "TypeInfo":
        """Build from an engine NodeArg (`type` string + `shape` list)."""
        type_str = arg.type
        onnx_type = OnnxType.UNKNOWN
        for prefix, kind in _ONNX_TYPE_PREFIXES:
            if type_str.startswith(prefix):
                onnx_type = kind
                break
        if onnx_type is not OnnxType.TENSOR:
            return cls(onnx_type)

        element_type = _TYPE_STRINGS.get(type_str[len("tensor("):-1], ElementType.UNDEFINED)
        shape, symbolic = [], []
        for dim in arg.shape or ():
            if isinstance(dim, int):
                shape.append(dim)
                symbolic.append("")
            else:
                # str for named symbolic dims, None for unnamed ones
                shape.append(-1)
                symbolic.append(dim or "")
        return cls(onnx_type, element_type, tuple(shape), tuple(symbolic))


# ---------------------------------------------------------------------------
# Host -> engine
# ---------------------------------------------------------------------------

def tensor_to_ort_value(tensor: Any, cpu_memory_info: MemoryInfo = CPU_MEMORY_INFO,
                        gpu_memory_info: MemoryInfo = GPU_BUFFER_MEMORY_INFO,
                        ) -> ort.OrtValue | np.ndarray:
    """Convert a host tensor (or a bare numpy array) into an engine feed value.

    Returns an OrtValue, except for string tensors, which become a numpy
    object array.
    """
    if isinstance(tensor, np.ndarray):
        tensor = Tensor.from_numpy(tensor)
    for attr in ("type", "dims", "location", "data"):
        if not hasattr(tensor, attr):
            raise TypeError(f"Invalid argument: expected a tensor, got {type(tensor).__name__}")

    try:
        element_type = ElementType(tensor.type)
        location = DataLocation(tensor.location)
    except ValueError as e:
        raise TypeError(f"Invalid argument: {e}") from None
    dims = _check_dims(tensor.dims)
    memory = memory_info_for(location, cpu_memory_info, gpu_memory_info)

    if location is DataLocation.GPU_BUFFER:
        return _gpu_value(tensor.data, memory)
    if element_type is ElementType.STRING:
        return _string_value(tensor.data, dims)
    return _numeric_value(tensor.data, element_type, dims, memory)


def _numeric_value(data: Any, element_type: ElementType, dims: tuple[int, ...],
                   memory: MemoryInfo) -> ort.OrtValue:
    if not element_type.is_numeric:
        raise TypeError(f"Unsupported tensor element type: {element_type.name}")
    dtype = element_type.dtype

    if isinstance(data, np.ndarray):
        if data.dtype != dtype:
            raise TypeError(
                f"Tensor data type mismatch: {element_type.name} tensors need "
                f"{dtype} data, got {data.dtype}")
        if not data.flags.c_contiguous:
            raise TypeError("Tensor data must be a C-contiguous buffer")
        array = data
    else:
        try:
            array = np.frombuffer(data, dtype=np.uint8)
        except (TypeError, ValueError):
            raise TypeError(
                f"Tensor data must be a numpy array or a contiguous buffer, "
                f"got {type(data).__name__}") from None

    expected = int(np.prod(dims, dtype=np.int64)) * dtype.itemsize
    if array.nbytes != expected:
        raise TypeError(
            f"Tensor data size mismatch: dims {list(dims)} of {element_type.name} "
            f"need {expected} bytes, got {array.nbytes}")

    array = array.view(dtype).reshape(dims)
    with engine_errors():
        if element_type is ElementType.BFLOAT16:
            return ort.OrtValue.ortvalue_from_numpy_with_onnx_type(array, int(element_type))
        return ort.OrtValue.ortvalue_from_numpy(array, memory.device_type, memory.device_id)


def _string_value(data: Any, dims: tuple[int, ...]) -> np.ndarray:
    items = list(np.asarray(data, dtype=object).ravel()) if data is not None else []
    count = int(np.prod(dims, dtype=np.int64))
    if len(items) != count:
        raise TypeError(
            f"Tensor data size mismatch: dims {list(dims)} need {count} strings, "
            f"got {len(items)}")
    for item in items:
        if not isinstance(item, str):
            raise TypeError(
                f"String tensor data must contain only str, got {type(item).__name__}")
    array = np.empty(count, dtype=object)
    array[:] = items
    return array.reshape(dims)


def _check_dims(dims: Any) -> tuple[int, ...]:
    try:
        dims = tuple(dims)
    except TypeError:
        raise TypeError(
            f"Invalid argument: tensor dims must be a sequence, got {type(dims).__name__}") from None
    for d in dims:
        if isinstance(d, bool) or not isinstance(d, (int, np.integer)) or d < 0:
            raise TypeError(f"Invalid argument: tensor dims must be non-negative integers, got {dims}")
    return tuple(int(d) for d in dims)


def _gpu_value(data: Any, memory: MemoryInfo) -> Any:
    if not isinstance(data, GpuBuffer):
        raise TypeError(
            f"gpu-buffer tensors need a GpuBuffer as data, got {type(data).__name__}")
    if data.device_type != memory.device_type:
        raise TypeError(
            f"GPU buffer lives on '{data.device_type}', expected '{memory.device_type}'")
    return data.ort_value


# ---------------------------------------------------------------------------
# Engine -> host
# ---------------------------------------------------------------------------

def ort_value_to_tensor(value: Any, tensor_constructor: Callable[..., Any] = Tensor) -> Any:
    """Hand an engine-owned value over to the host as a new tensor.

    `value` is an OrtValue, or a numpy array when the run was fed through
    the engine's numpy entry point.
    """
    if isinstance(value, np.ndarray):
        host = Tensor.from_numpy(value)
        return tensor_constructor(host.type, host.dims, DataLocation.CPU, host.data)
    # Sequences and maps come back as OrtValues or, from the numpy entry
    # point, as lists and dicts
    if not hasattr(value, "is_tensor") or not value.is_tensor():
        raise RuntimeError("Unsupported output type: only tensor outputs are supported.")

    with engine_errors():
        element_type = ElementType(value.element_type())
        dims = tuple(value.shape())
        on_cpu = value.device_name().lower() == "cpu"

    if not on_cpu:
        return tensor_constructor(element_type, dims, DataLocation.GPU_BUFFER, GpuBuffer(value))

    with engine_errors():
        if element_type is ElementType.BFLOAT16:
            data = _copy_raw(value, element_type, dims)
        else:
            data = value.numpy()
    return tensor_constructor(element_type, dims, DataLocation.CPU, data)


def _copy_raw(value: Any, element_type: ElementType, dims: tuple[int, ...]) -> np.ndarray:
    """Copy a CPU value's buffer byte for byte (types numpy can't represent)."""
    dtype = element_type.dtype
    count = int(np.prod(dims, dtype=np.int64))
    if count == 0:
        return np.empty(dims, dtype=dtype)
    raw = ctypes.string_at(value.data_ptr(), count * dtype.itemsize)
    return np.frombuffer(raw, dtype=dtype).reshape(dims).copy()
