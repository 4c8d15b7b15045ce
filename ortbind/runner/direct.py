"""Direct runner: one engine call with parallel name/value lists.

Outputs are allocated by the engine wherever it chooses (CPU for the CPU
provider) and handed back as engine values. Feeds that include string
tensors (numpy object arrays, which the engine cannot hold as OrtValues)
go through the engine's numpy entry point instead; it accepts OrtValue
feeds alongside them and returns numpy arrays.
"""

from typing import Any

import numpy as np
import onnxruntime as ort

from ..errors import engine_errors
from .common import Runner, require_outputs


class DirectRunner(Runner):
    """Runs without I/O binding."""

    def run(self, feeds: list[tuple[str, Any]],
            fetches: list[tuple[str, Any]],
            run_options: ort.RunOptions) -> list[tuple[str, Any]]:
        require_outputs(fetches)
        fetch_names = [name for name, _ in fetches]
        # TODO: bind non-None fetch entries as pre-allocated outputs
        # (run_with_ortvaluevector) instead of treating them as plain requests
        with engine_errors():
            if any(isinstance(value, np.ndarray) for _, value in feeds):
                outputs = self._session.run(fetch_names, dict(feeds), run_options)
            else:
                outputs = self._session.run_with_ort_values(
                    fetch_names, dict(feeds), run_options)
        return list(zip(fetch_names, outputs))
