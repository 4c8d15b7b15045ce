"""Option-bag parsers: host records -> engine option structures.

Host records are plain mappings keyed with the camelCase names used by the
ONNX Runtime JavaScript API (graphOptimizationLevel, executionProviders,
...). Each recognized key maps to one engine setter. Unknown keys are
ignored. A recognized key with a value of the wrong kind raises TypeError
naming the key, before anything is handed to the engine.

    config = parse_session_options({"graphOptimizationLevel": "basic",
                                    "executionProviders": ["cpu"]})
    locations = parse_preferred_output_locations(record, output_names)
    run_options = parse_run_options({"tag": "batch-7", "terminate": False})
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import numpy as np
import onnxruntime as ort

from .backends import provider_name
from .tensor import DataLocation


@dataclass
class SessionConfig:
    """Everything needed to create an engine session.

    Execution providers are not part of the engine's SessionOptions in the
    Python API; they are passed alongside it at session creation.
    """
    options: ort.SessionOptions
    providers: list[str] = field(default_factory=list)
    provider_options: list[dict[str, str]] = field(default_factory=list)


_GRAPH_OPTIMIZATION_LEVELS = {
    "disabled": ort.GraphOptimizationLevel.ORT_DISABLE_ALL,
    "basic":    ort.GraphOptimizationLevel.ORT_ENABLE_BASIC,
    "extended": ort.GraphOptimizationLevel.ORT_ENABLE_EXTENDED,
    "all":      ort.GraphOptimizationLevel.ORT_ENABLE_ALL,
}

_EXECUTION_MODES = {
    "sequential": ort.ExecutionMode.ORT_SEQUENTIAL,
    "parallel":   ort.ExecutionMode.ORT_PARALLEL,
}

# Provider-record keys with an engine-side spelling. Other keys pass through.
_PROVIDER_KEYS = {
    "deviceId":    "device_id",
    "backendPath": "backend_path",
    "coreMlFlags": "coreml_flags",
}

_LOCATIONS = {loc.value: loc for loc in DataLocation}


# ---------------------------------------------------------------------------
# Session options
# ---------------------------------------------------------------------------

def parse_session_options(record: Mapping[str, Any]) -> SessionConfig:
    """Translate a session options record into engine session options."""
    _check_record(record, "sessionOptions")
    options = ort.SessionOptions()
    config = SessionConfig(options=options)

    if "graphOptimizationLevel" in record:
        value = _get_str(record, "graphOptimizationLevel", "sessionOptions")
        if value not in _GRAPH_OPTIMIZATION_LEVELS:
            raise _unsupported("sessionOptions", "graphOptimizationLevel", value)
        options.graph_optimization_level = _GRAPH_OPTIMIZATION_LEVELS[value]

    if "executionMode" in record:
        value = _get_str(record, "executionMode", "sessionOptions")
        if value not in _EXECUTION_MODES:
            raise _unsupported("sessionOptions", "executionMode", value)
        options.execution_mode = _EXECUTION_MODES[value]

    if "intraOpNumThreads" in record:
        options.intra_op_num_threads = _get_int(record, "intraOpNumThreads", "sessionOptions")
    if "interOpNumThreads" in record:
        options.inter_op_num_threads = _get_int(record, "interOpNumThreads", "sessionOptions")

    if "logId" in record:
        options.logid = _get_str(record, "logId", "sessionOptions")
    if "logSeverityLevel" in record:
        options.log_severity_level = _get_severity(record, "sessionOptions")
    if "logVerbosityLevel" in record:
        options.log_verbosity_level = _get_int(record, "logVerbosityLevel", "sessionOptions")

    if "optimizedModelFilePath" in record:
        options.optimized_model_filepath = _get_str(
            record, "optimizedModelFilePath", "sessionOptions")

    if "enableProfiling" in record:
        options.enable_profiling = _get_bool(record, "enableProfiling", "sessionOptions")
    if "profileFilePrefix" in record:
        options.profile_file_prefix = _get_str(record, "profileFilePrefix", "sessionOptions")

    if "enableCpuMemArena" in record:
        options.enable_cpu_mem_arena = _get_bool(record, "enableCpuMemArena", "sessionOptions")
    if "enableMemPattern" in record:
        options.enable_mem_pattern = _get_bool(record, "enableMemPattern", "sessionOptions")

    # Free dimension overrides must be in place before providers are chosen
    for name, value in _get_dim_overrides(record, "freeDimensionOverrides").items():
        options.add_free_dimension_override_by_name(name, value)
    for name, value in _get_dim_overrides(record, "freeDimensionOverridesByDenotation").items():
        options.add_free_dimension_override_by_denotation(name, value)

    if "executionProviders" in record:
        _parse_execution_providers(record["executionProviders"], config)
    if not config.providers:
        config.providers.append(provider_name("cpu"))
        config.provider_options.append({})

    if "externalData" in record:
        _parse_external_data(record["externalData"], options)

    if "extra" in record:
        for key, value in _flatten_extra(record["extra"], "sessionOptions.extra").items():
            options.add_session_config_entry(key, value)

    return config


def _parse_execution_providers(value: Any, config: SessionConfig) -> None:
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
        raise TypeError(
            "Invalid argument: sessionOptions.executionProviders must be an array.")

    for i, entry in enumerate(value):
        if isinstance(entry, str):
            name, settings = entry, {}
        elif isinstance(entry, Mapping) and isinstance(entry.get("name"), str):
            name = entry["name"]
            settings = {k: v for k, v in entry.items() if k != "name"}
        else:
            raise TypeError(
                f"Invalid argument: sessionOptions.executionProviders[{i}] "
                f"must be either a string or an object with a 'name' string.")

        provider = provider_name(name)
        if provider is None:
            raise TypeError(
                f"Invalid argument: sessionOptions.executionProviders[{i}] "
                f"is unsupported: '{name}'.")

        provider_options = {}
        for key, setting in settings.items():
            if isinstance(setting, bool):
                setting = "1" if setting else "0"
            elif not isinstance(setting, (str, int, float)):
                raise TypeError(
                    f"Invalid argument: sessionOptions.executionProviders[{i}].{key} "
                    f"must be a string, number or boolean.")
            provider_options[_PROVIDER_KEYS.get(key, key)] = str(setting)

        config.providers.append(provider)
        config.provider_options.append(provider_options)


def _parse_external_data(value: Any, options: ort.SessionOptions) -> None:
    """Register external initializer files with the engine, in memory.

    Each entry is {path, data}: `path` is the file name the model refers to;
    `data` is either the file content (bytes-like) or a path to read it from.
    """
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
        raise TypeError("Invalid argument: sessionOptions.externalData must be an array.")

    names, buffers, lengths = [], [], []
    for i, entry in enumerate(value):
        if not isinstance(entry, Mapping) or not isinstance(entry.get("path"), str):
            raise TypeError(
                f"Invalid argument: sessionOptions.externalData[{i}] "
                f"must be an object with a 'path' string.")
        data = entry.get("data")
        if isinstance(data, str):
            data = Path(data).read_bytes()
        try:
            buffer = np.frombuffer(data, dtype=np.uint8)
        except TypeError:
            raise TypeError(
                f"Invalid argument: sessionOptions.externalData[{i}].data "
                f"must be a buffer or a file path string.") from None
        names.append(entry["path"])
        buffers.append(buffer)
        lengths.append(buffer.nbytes)

    if names:
        options.add_external_initializers_from_files_in_memory(names, buffers, lengths)


# ---------------------------------------------------------------------------
# Preferred output locations
# ---------------------------------------------------------------------------

def parse_preferred_output_locations(
    record: Mapping[str, Any], output_names: Sequence[str],
) -> list[DataLocation]:
    """Read `preferredOutputLocation` into one location per output.

    Returns an empty list when the key is absent. A single location string
    applies to every output; a mapping names locations per output, and
    unnamed outputs default to CPU.
    """
    _check_record(record, "sessionOptions")
    value = record.get("preferredOutputLocation")
    if value is None:
        return []

    if isinstance(value, str):
        return [_parse_location(value, "preferredOutputLocation")] * len(output_names)

    if isinstance(value, Mapping):
        locations = [DataLocation.CPU] * len(output_names)
        for name, location in value.items():
            if name not in output_names:
                raise TypeError(
                    f"Invalid argument: preferredOutputLocation contains '{name}', "
                    f"which is not an output name.")
            if not isinstance(location, str):
                raise TypeError(
                    f"Invalid argument: preferredOutputLocation['{name}'] must be a string.")
            locations[list(output_names).index(name)] = _parse_location(
                location, f"preferredOutputLocation['{name}']")
        return locations

    raise TypeError(
        "Invalid argument: preferredOutputLocation must be either a string "
        "or an object mapping output names to locations.")


def _parse_location(value: str, key: str) -> DataLocation:
    if value not in _LOCATIONS:
        raise TypeError(f"Invalid argument: {key} has an unsupported data location: '{value}'.")
    return _LOCATIONS[value]


# ---------------------------------------------------------------------------
# Run options
# ---------------------------------------------------------------------------

def parse_run_options(record: Mapping[str, Any]) -> ort.RunOptions:
    """Translate a run options record into engine run options."""
    _check_record(record, "runOptions")
    options = ort.RunOptions()

    if "logSeverityLevel" in record:
        options.log_severity_level = _get_severity(record, "runOptions")
    if "logVerbosityLevel" in record:
        options.log_verbosity_level = _get_int(record, "logVerbosityLevel", "runOptions")
    # logId and tag both name the engine's run tag; tag wins
    if "logId" in record:
        options.logid = _get_str(record, "logId", "runOptions")
    if "tag" in record:
        options.logid = _get_str(record, "tag", "runOptions")
    if "terminate" in record:
        options.terminate = _get_bool(record, "terminate", "runOptions")

    if "extra" in record:
        for key, value in _flatten_extra(record["extra"], "runOptions.extra").items():
            options.add_run_config_entry(key, value)

    return options


# ---------------------------------------------------------------------------
# Value helpers
# ---------------------------------------------------------------------------

def _check_record(record: Any, what: str) -> None:
    if not isinstance(record, Mapping):
        raise TypeError(f"Invalid argument: {what} must be an object.")


def _unsupported(prefix: str, key: str, value: Any) -> TypeError:
    return TypeError(f"Invalid argument: {prefix}.{key} is unsupported: '{value}'.")


def _get_str(record: Mapping[str, Any], key: str, prefix: str) -> str:
    value = record[key]
    if not isinstance(value, str):
        raise TypeError(f"Invalid argument: {prefix}.{key} must be a string.")
    return value


def _get_bool(record: Mapping[str, Any], key: str, prefix: str) -> bool:
    value = record[key]
    if not isinstance(value, bool):
        raise TypeError(f"Invalid argument: {prefix}.{key} must be a boolean value.")
    return value


def _get_int(record: Mapping[str, Any], key: str, prefix: str) -> int:
    """Non-negative integer. Integral floats are accepted (host numbers)."""
    value = record[key]
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise TypeError(f"Invalid argument: {prefix}.{key} must be a non-negative integer.")
    return value


def _get_severity(record: Mapping[str, Any], prefix: str) -> int:
    value = _get_int(record, "logSeverityLevel", prefix)
    if value > 4:
        raise TypeError(
            f"Invalid argument: {prefix}.logSeverityLevel must be an integer in [0, 4].")
    return value


def _get_dim_overrides(record: Mapping[str, Any], key: str) -> dict[str, int]:
    if key not in record:
        return {}
    value = record[key]
    if not isinstance(value, Mapping):
        raise TypeError(f"Invalid argument: sessionOptions.{key} must be an object.")
    overrides = {}
    for name in value:
        if not isinstance(name, str):
            raise TypeError(f"Invalid argument: sessionOptions.{key} keys must be strings.")
        overrides[name] = _get_int(value, name, f"sessionOptions.{key}")
    return overrides


def _flatten_extra(value: Any, prefix: str, path: str = "") -> dict[str, str]:
    """Flatten nested config records into dotted engine config keys.

    {"session": {"disable_prepacking": "1"}} -> {"session.disable_prepacking": "1"}
    """
    if not isinstance(value, Mapping):
        raise TypeError(f"Invalid argument: {prefix} must be an object.")
    entries = {}
    for key, item in value.items():
        full = f"{path}.{key}" if path else str(key)
        if isinstance(item, Mapping):
            entries.update(_flatten_extra(item, prefix, full))
        elif isinstance(item, str):
            entries[full] = item
        else:
            raise TypeError(f"Invalid argument: {prefix}.{full} must be a string.")
    return entries
