"""Host tensor contract: element types, data locations, and the default Tensor.

A host tensor is anything with `type`, `dims`, `location` and `data`
attributes. Tensor is the default implementation, and the default
constructor registered with init_ort_once(). Outputs handed back by a
session are built by whatever constructor was registered, called as

    constructor(element_type, dims, location, data)

CPU data is a contiguous numeric buffer (numpy array or any object that
supports the buffer protocol). GPU_BUFFER data is a GpuBuffer: an opaque
handle around a device-resident engine value.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any

import numpy as np


class ElementType(IntEnum):
    """Tensor element types.

    Values are the engine's integer codes (ONNX TensorProto.DataType) and
    are what session metadata reports as `type`. Host code must use the
    same mapping.
    """
    UNDEFINED = 0
    FLOAT     = 1
    UINT8     = 2
    INT8      = 3
    UINT16    = 4
    INT16     = 5
    INT32     = 6
    INT64     = 7
    STRING    = 8
    BOOL      = 9
    FLOAT16   = 10
    DOUBLE    = 11
    UINT32    = 12
    UINT64    = 13
    BFLOAT16  = 16

    @property
    def dtype(self) -> np.dtype:
        """Numpy storage dtype (bfloat16 is stored as raw uint16)."""
        if self not in _STORAGE_DTYPES:
            raise TypeError(f"Element type {self.name} has no host storage type")
        return np.dtype(_STORAGE_DTYPES[self])

    @property
    def is_numeric(self) -> bool:
        return self not in (ElementType.STRING, ElementType.UNDEFINED)


class DataLocation(str, Enum):
    """Where a tensor's data lives. Values are the wire strings used in
    preferredOutputLocation records."""
    CPU        = "cpu"
    GPU_BUFFER = "gpu-buffer"


_STORAGE_DTYPES: dict[ElementType, Any] = {
    ElementType.FLOAT:    np.float32,
    ElementType.UINT8:    np.uint8,
    ElementType.INT8:     np.int8,
    ElementType.UINT16:   np.uint16,
    ElementType.INT16:    np.int16,
    ElementType.INT32:    np.int32,
    ElementType.INT64:    np.int64,
    ElementType.STRING:   object,
    ElementType.BOOL:     np.bool_,
    ElementType.FLOAT16:  np.float16,
    ElementType.DOUBLE:   np.float64,
    ElementType.UINT32:   np.uint32,
    ElementType.UINT64:   np.uint64,
    ElementType.BFLOAT16: np.uint16,
}

# Reverse lookup for from_numpy(). uint16 maps to UINT16, never BFLOAT16.
_ELEMENT_TYPES: dict[np.dtype, ElementType] = {
    np.dtype(dt): et for et, dt in _STORAGE_DTYPES.items()
    if et not in (ElementType.STRING, ElementType.BFLOAT16)
}


@dataclass(frozen=True)
class GpuBuffer:
    """Opaque handle to tensor data in device memory.

    Wraps an engine value that already lives on a device. The binding never
    reads or validates its contents; it only checks which device type it
    lives on.
    """
    ort_value: Any

    @property
    def device_type(self) -> str:
        return self.ort_value.device_name().lower()


@dataclass
class Tensor:
    """Default host tensor.

    Args mirror the tensor-constructor contract so the class itself can be
    registered as the constructor:
        type:     ElementType (or its integer code)
        dims:     shape, non-negative ints
        location: DataLocation (or its wire string)
        data:     numpy array / buffer (CPU) or GpuBuffer (GPU_BUFFER)
    """
    type: ElementType
    dims: tuple[int, ...]
    location: DataLocation = DataLocation.CPU
    data: Any = None

    def __post_init__(self) -> None:
        self.type = ElementType(self.type)
        self.location = DataLocation(self.location)
        dims = tuple(self.dims)
        for d in dims:
            if isinstance(d, bool) or not isinstance(d, (int, np.integer)) or d < 0:
                raise TypeError(f"Tensor dims must be non-negative integers, got {dims}")
        self.dims = tuple(int(d) for d in dims)

    @property
    def size(self) -> int:
        """Number of elements."""
        return int(np.prod(self.dims, dtype=np.int64))

    @classmethod
    def from_numpy(cls, array: np.ndarray) -> Tensor:
        """Wrap a numpy array as a CPU tensor (no copy for numeric data)."""
        array = np.asarray(array)
        if array.dtype.kind in ("U", "O"):
            return cls(ElementType.STRING, array.shape, DataLocation.CPU,
                       array.astype(object))
        if array.dtype not in _ELEMENT_TYPES:
            raise TypeError(f"Unsupported numpy dtype for a tensor: {array.dtype}")
        return cls(_ELEMENT_TYPES[array.dtype], array.shape, DataLocation.CPU, array)

    def numpy(self) -> np.ndarray:
        """View CPU data as a numpy array shaped by dims."""
        if self.location is not DataLocation.CPU:
            raise RuntimeError(
                f"Tensor data lives in {self.location.value} memory; "
                f"only CPU tensors can be viewed as numpy arrays"
            )
        if isinstance(self.data, np.ndarray):
            return self.data.reshape(self.dims)
        if self.type is ElementType.STRING:
            return np.array(list(self.data), dtype=object).reshape(self.dims)
        return np.frombuffer(self.data, dtype=self.type.dtype).reshape(self.dims)

    def __repr__(self) -> str:
        return (f"Tensor(type={self.type.name}, dims={self.dims}, "
                f"location={self.location.value!r})")
