"""Native (built-in) function models for the taint machine."""

from taintvm.native.registry import (
    DEFAULT_MODEL,
    NativeModel,
    get_native_model,
    native_model,
    pop_args,
    pop_args_and_report_flows,
    registered_models,
    return_taint,
    use_native_implementation,
    use_native_recorder,
)
from taintvm.native import models  # noqa: F401  (registers the built-ins)

__all__ = [
    "DEFAULT_MODEL",
    "NativeModel",
    "get_native_model",
    "native_model",
    "pop_args",
    "pop_args_and_report_flows",
    "registered_models",
    "return_taint",
    "use_native_implementation",
    "use_native_recorder",
]
