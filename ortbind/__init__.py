"""Python binding for the ONNX Runtime inference engine.

    from ortbind import InferenceSession, Tensor, init_ort_once

    init_ort_once(2, Tensor)
    session = InferenceSession()
    session.load_model("model.onnx", {})
    outputs = session.run({"x": Tensor.from_numpy(x)}, {"y": None})
"""

from .backends import BackendInfo, list_supported_backends  # noqa: F401
from .errors import EngineError  # noqa: F401
from .instance import InstanceState, get_instance, init_ort_once  # noqa: F401
from .session import InferenceSession, SessionState, ValueMetadata  # noqa: F401
from .tensor import DataLocation, ElementType, GpuBuffer, Tensor  # noqa: F401
