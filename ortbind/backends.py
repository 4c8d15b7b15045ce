"""Backend (execution provider) names.

Host code names backends with short names ("cpu", "cuda", ...); the engine
names them with provider identifiers ("CUDAExecutionProvider", ...). This
table is shared by list_supported_backends() and the session options parser.
"""

from dataclasses import dataclass

import onnxruntime as ort


@dataclass(frozen=True)
class BackendInfo:
    """A backend this build of the engine can run on.

    `bundled` is False for backends whose runtime libraries are not shipped
    with the engine package (they must be installed separately).
    """
    name: str
    bundled: bool


# short name -> (engine provider name, bundled). Order is the listing order.
PROVIDERS: dict[str, tuple[str, bool]] = {
    "cpu":      ("CPUExecutionProvider", True),
    "dml":      ("DmlExecutionProvider", True),
    "webgpu":   ("WebGpuExecutionProvider", True),
    "cuda":     ("CUDAExecutionProvider", False),
    "tensorrt": ("TensorrtExecutionProvider", False),
    "coreml":   ("CoreMLExecutionProvider", True),
    "qnn":      ("QNNExecutionProvider", True),
}


def provider_name(backend: str) -> str | None:
    """Engine provider name for a short backend name, or None if unknown."""
    entry = PROVIDERS.get(backend)
    return entry[0] if entry is not None else None


def list_supported_backends() -> list[BackendInfo]:
    """Backends available in the installed engine build.

    Always starts with cpu; the others follow in a fixed order when the
    engine reports the matching provider.
    """
    available = set(ort.get_available_providers())
    result = [BackendInfo("cpu", True)]
    for name, (provider, bundled) in PROVIDERS.items():
        if name != "cpu" and provider in available:
            result.append(BackendInfo(name, bundled))
    return result
