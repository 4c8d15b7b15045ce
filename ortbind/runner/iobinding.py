"""I/O-binding runner: routes each output to CPU or device memory.

The binding is created once per session and reused across calls. Every call
binds the supplied inputs, binds each requested output to the memory its
preferred location selects, runs, and reads the bound outputs back. Bindings
are cleared on the way out, success or not, so the binding never keeps a
host input buffer borrowed past the call.

String tensors can't be bound (the engine only binds OrtValues, and it
holds no strings in those); sessions that take string inputs must be loaded
without preferred output locations.
"""

import logging
from typing import Any

import numpy as np
import onnxruntime as ort

from ..errors import EngineError, engine_errors
from ..marshal import MemoryInfo, memory_info_for
from ..tensor import DataLocation
from .common import Runner, require_outputs

logger = logging.getLogger(__name__)


class IoBindingRunner(Runner):
    """Runs through an engine I/O binding with per-output locations."""

    def __init__(self, session: Any, output_names: list[str],
                 preferred_output_locations: list[DataLocation],
                 **memory_infos: MemoryInfo) -> None:
        super().__init__(session, output_names, **memory_infos)
        self._locations = preferred_output_locations
        self._output_index = {name: i for i, name in enumerate(output_names)}
        with engine_errors():
            self._binding = session.io_binding()

    def run(self, feeds: list[tuple[str, Any]],
            fetches: list[tuple[str, Any]],
            run_options: ort.RunOptions) -> list[tuple[str, Any]]:
        if len(self._locations) != len(self._output_names):
            raise RuntimeError(
                "Preferred output locations must have the same size as output names.")
        for name, value in feeds:
            if isinstance(value, np.ndarray):
                raise TypeError(
                    f"Invalid input '{name}': string tensors can't be bound to "
                    f"preferred output locations; load the model without "
                    f"preferredOutputLocation to feed them.")
        require_outputs(fetches)

        binding = self._binding
        try:
            with engine_errors():
                for name, value in feeds:
                    binding.bind_ortvalue_input(name, value)
                for name, _ in fetches:
                    location = self._locations[self._output_index[name]]
                    memory = memory_info_for(location, self.cpu_memory_info,
                                             self.gpu_memory_info)
                    binding.bind_output(name, memory.device_type, memory.device_id)

                self._session.run_with_iobinding(binding, run_options)
                outputs = binding.get_outputs()
        except BaseException:
            self._clear(binding, raising=False)
            raise
        self._clear(binding, raising=True)

        if len(outputs) != len(fetches):
            raise RuntimeError("Output count mismatch.")
        return [(name, value) for (name, _), value in zip(fetches, outputs)]

    @staticmethod
    def _clear(binding: Any, raising: bool) -> None:
        """Clear inputs and outputs, each attempted whatever the other did.

        With `raising` False a run error is already on its way out; clear
        failures are logged so they don't replace it.
        """
        first_error = None
        for clear in (binding.clear_binding_inputs, binding.clear_binding_outputs):
            try:
                with engine_errors():
                    clear()
            except EngineError as e:
                if not raising:
                    logger.warning("Failed to clear I/O binding after a failed run: %s", e)
                elif first_error is None:
                    first_error = e
        if first_error is not None:
            raise first_error

    def release(self) -> None:
        self._binding = None
        super().release()
