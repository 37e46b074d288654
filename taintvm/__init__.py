"""
taintvm — Dynamic Taint Tracking Abstract Machine
=================================================

This package threads taint values through a trace of program-level
events (variable and property reads/writes, operators, calls and
returns) observed by an external instrumentation front-end.

Core modules
------------
lattice
    Taint lattices (boolean, source-label sets).
shadow
    Identity-keyed shadow object store.
state
    Taint stack, variable map, call state and call stack.
machine
    The abstract machine implementing the event protocol.
native
    Record/replay models for built-in functions.
analysis
    Recording-side context used while the real program runs.
trace
    S-expression trace format and replay driver.
config
    Source/sink configuration.

Quick start
-----------
>>> from taintvm import TaintMachine
>>> m = TaintMachine(sources={"userInput"}, sinks={"output"})
>>> _ = m.read_var("userInput"); _ = m.write_var("output")
>>> m.get_taint()
['output']
"""

from __future__ import annotations

import logging
from typing import List

__version__ = "0.1.0"
__license__ = "MIT"

_log = logging.getLogger(__name__)
_log.addHandler(logging.NullHandler())

from taintvm.analysis import AnalysisContext, NativeCall  # noqa: E402
from taintvm.config import MachineOptions, load_options  # noqa: E402
from taintvm.descriptions import (  # noqa: E402
    DynamicDescription,
    ShadowId,
    SourceLocation,
    StaticDescription,
)
from taintvm.errors import (  # noqa: E402
    ConfigError,
    NativeModelError,
    TaintVMError,
    TraceError,
)
from taintvm.lattice import (  # noqa: E402
    BooleanLattice,
    SourceSetLattice,
    TaintLattice,
    join_all,
)
from taintvm.machine import FlowRecord, TaintMachine  # noqa: E402
from taintvm.native import get_native_model, native_model, registered_models  # noqa: E402
from taintvm.trace import load_trace, parse_trace, replay  # noqa: E402

__all__: List[str] = [
    "AnalysisContext",
    "BooleanLattice",
    "ConfigError",
    "DynamicDescription",
    "FlowRecord",
    "MachineOptions",
    "NativeCall",
    "NativeModelError",
    "ShadowId",
    "SourceLocation",
    "SourceSetLattice",
    "StaticDescription",
    "TaintLattice",
    "TaintMachine",
    "TaintVMError",
    "TraceError",
    "get_native_model",
    "join_all",
    "load_options",
    "load_trace",
    "native_model",
    "parse_trace",
    "registered_models",
    "replay",
]
