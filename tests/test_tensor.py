"""Host tensor contract: element type codes, locations, the default Tensor."""

import numpy as np
import pytest

from ortbind import DataLocation, ElementType, GpuBuffer, Tensor

from conftest import FakeDeviceValue


class TestElementType:

    def test_codes_match_engine_enumeration(self):
        """Codes are the engine's integer tags, not host-side ordinals."""
        assert ElementType.FLOAT == 1
        assert ElementType.INT64 == 7
        assert ElementType.STRING == 8
        assert ElementType.BOOL == 9
        assert ElementType.DOUBLE == 11
        assert ElementType.BFLOAT16 == 16

    def test_bfloat16_stored_as_uint16(self):
        assert ElementType.BFLOAT16.dtype == np.uint16

    def test_undefined_has_no_storage(self):
        with pytest.raises(TypeError, match="no host storage"):
            ElementType.UNDEFINED.dtype


class TestTensor:

    def test_from_numpy_infers_type_and_dims(self):
        t = Tensor.from_numpy(np.zeros((2, 3), dtype=np.int32))
        assert t.type is ElementType.INT32
        assert t.dims == (2, 3)
        assert t.location is DataLocation.CPU

    def test_from_numpy_strings(self):
        t = Tensor.from_numpy(np.array(["a", "bc"]))
        assert t.type is ElementType.STRING
        assert t.data.dtype == object

    def test_constructor_accepts_codes_and_wire_strings(self):
        """The class is the default tensor constructor: it receives raw codes."""
        t = Tensor(1, [2], "gpu-buffer", GpuBuffer(FakeDeviceValue()))
        assert t.type is ElementType.FLOAT
        assert t.location is DataLocation.GPU_BUFFER
        assert t.dims == (2,)

    def test_negative_dims_rejected(self):
        with pytest.raises(TypeError, match="non-negative"):
            Tensor(ElementType.FLOAT, (2, -1))

    def test_numpy_view_is_shaped(self):
        t = Tensor(ElementType.FLOAT, (2, 2), data=np.arange(4, dtype=np.float32))
        assert t.numpy().shape == (2, 2)

    def test_numpy_from_raw_buffer(self):
        raw = bytearray(np.array([1.5, -2.0], dtype=np.float32).tobytes())
        t = Tensor(ElementType.FLOAT, (2,), data=raw)
        np.testing.assert_array_equal(t.numpy(), [1.5, -2.0])

    def test_numpy_on_gpu_tensor_raises(self):
        t = Tensor(ElementType.FLOAT, (2,), DataLocation.GPU_BUFFER,
                   GpuBuffer(FakeDeviceValue()))
        with pytest.raises(RuntimeError, match="gpu-buffer"):
            t.numpy()

    def test_size(self):
        assert Tensor(ElementType.FLOAT, (2, 3, 4)).size == 24
        assert Tensor(ElementType.FLOAT, ()).size == 1
