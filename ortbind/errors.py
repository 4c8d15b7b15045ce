"""Engine error translation.

Errors the binding raises itself are built-in exceptions: TypeError for
programmatic misuse (wrong arguments, bad option values, tensor data that
doesn't match its declared type) and RuntimeError for illegal session state.
Anything the engine throws is re-raised as EngineError with the engine's
message verbatim, so callers can tell misuse apart from engine failures.
"""

from contextlib import contextmanager
from typing import Iterator


class EngineError(RuntimeError):
    """Raised when the inference engine reports a failure."""


@contextmanager
def engine_errors() -> Iterator[None]:
    """Re-raise exceptions escaping an engine call as EngineError.

    The original exception is chained as __cause__. An EngineError raised
    inside the block passes through untouched.
    """
    try:
        yield
    except EngineError:
        raise
    except Exception as e:
        raise EngineError(str(e)) from e
