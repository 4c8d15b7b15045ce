"""Runner base class shared by both execution paths.

A session picks its runner once, at load time: DirectRunner when the model
was loaded without preferred output locations, IoBindingRunner when it was.
The session does the host-side work (argument checks, ordering, value
marshalling); a runner only drives the engine call.
"""

from abc import ABC, abstractmethod
from typing import Any

import onnxruntime as ort

from ..errors import EngineError
from ..marshal import CPU_MEMORY_INFO, GPU_BUFFER_MEMORY_INFO, MemoryInfo


class Runner(ABC):
    """Executes one inference call against an engine session.

    Inputs and fetches arrive as (name, value) pairs already in the
    session's declaration order. run() returns (name, engine value) pairs
    for the fetched outputs, in the same order.
    """

    def __init__(self, session: Any, output_names: list[str],
                 cpu_memory_info: MemoryInfo = CPU_MEMORY_INFO,
                 gpu_memory_info: MemoryInfo = GPU_BUFFER_MEMORY_INFO) -> None:
        self._session = session
        self._output_names = output_names
        self.cpu_memory_info = cpu_memory_info
        self.gpu_memory_info = gpu_memory_info

    @abstractmethod
    def run(self, feeds: list[tuple[str, Any]],
            fetches: list[tuple[str, Any]],
            run_options: ort.RunOptions) -> list[tuple[str, Any]]:
        """Run inference. Engine failures surface as EngineError."""
        ...

    def release(self) -> None:
        """Drop engine handles held by this runner."""
        self._session = None


def require_outputs(fetches: list[tuple[str, Any]]) -> None:
    """Reject a run that requests no outputs, as the engine's own Run does.

    The engine's Python entry points would otherwise compute every output
    for an empty request, so both runners check this before calling them.
    """
    if not fetches:
        raise EngineError("At least one output should be requested.")
