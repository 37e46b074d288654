"""
taintvm/native/registry.py
══════════════════════════

Native model registry: precise taint semantics for built-in functions.

Why two phases
──────────────

The abstract machine only ever holds taint values.  For many built-ins
the *real* value decides how taint moves: which argument ``max``
returned, where ``push`` appended, which object ``defineProperty``
wrote to.  A native model therefore comes in two halves bound under one
name:

    recorder        runs while the real program executes, with the
                    concrete receiver and arguments; returns a small
                    record (an index, a length, shadow ids).

    implementation  runs inside the abstract machine, with only the
                    record and the taint stack; must pop exactly what the
                    generic calling convention pushed and push exactly
                    one return taint.

Generic calling convention on the taint stack (bottom → top)::

    builtin-taint, arg₀, arg₁, …, argₙ₋₁, receiver-taint (methods only)

Both phases resolve models through :func:`get_native_model`, so the
recorder and the implementation of one call always agree.  Names without
a registered model fall back to the conservative default model.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Dict,
    List,
    Optional,
    Tuple,
    TypeVar,
)

from taintvm.descriptions import DynamicDescription, StaticDescription
from taintvm.lattice import join_all

if TYPE_CHECKING:
    from taintvm.analysis import AnalysisContext
    from taintvm.machine import TaintMachine

logger = logging.getLogger(__name__)

V = TypeVar("V")

NativeModelRecorder = Callable[
    ["AnalysisContext", DynamicDescription, Optional[DynamicDescription],
     Any, List[Any], bool, StaticDescription],
    Any,
]

NativeModelImplementation = Callable[
    ["TaintMachine", DynamicDescription, Optional[DynamicDescription],
     int, Any, bool, StaticDescription],
    None,
]


@dataclass(frozen=True, slots=True)
class NativeModel:
    name: str
    # record step, at instrumentation time
    recorder: NativeModelRecorder
    # replay step, at abstract machine time
    implementation: NativeModelImplementation


_MODELS: Dict[str, NativeModel] = {}


def native_model(name: str, *, recorder: Optional[NativeModelRecorder] = None):
    """Decorator: register an implementation under *name*.

    The recorder defaults to one that records nothing.
    """
    def deco(fn: NativeModelImplementation) -> NativeModelImplementation:
        _MODELS[name] = NativeModel(name, recorder or no_record, fn)
        return fn
    return deco


def registered_models() -> List[str]:
    return sorted(_MODELS)


def get_native_model(name: str) -> NativeModel:
    """Resolve *name* to its model, or to the default model."""
    model = _MODELS.get(name)
    if model is None:
        return DEFAULT_MODEL
    return model


# ═══════════════════════════════════════════════════════════════════════════
#  Stack helpers shared by models
# ═══════════════════════════════════════════════════════════════════════════

def pop_args(
    machine: TaintMachine,
    actual_args: int,
    is_method: bool,
) -> Tuple[Any, Any, List[Any]]:
    """Pop a builtin call's operands.

    Returns ``(builtin_taint, receiver_taint, arg_taints)`` with the
    arguments in call order.  A plain function call has an untainted
    receiver.
    """
    if is_method:
        receiver_taint = machine.pop_value()
    else:
        receiver_taint = machine.untainted()

    args: List[Any] = [None] * actual_args
    for i in range(actual_args - 1, -1, -1):
        args[i] = machine.pop_value()

    builtin_taint = machine.pop_value()
    return builtin_taint, receiver_taint, args


def pop_args_and_report_flows(
    machine: TaintMachine,
    actual_args: int,
    is_method: bool,
    description: StaticDescription,
) -> Tuple[Any, Any, List[Any]]:
    """:func:`pop_args`, then report each argument as a flow into the builtin."""
    builtin_taint, receiver_taint, args = pop_args(machine, actual_args, is_method)
    for value in args:
        machine.report_possible_flow(description, value)
    return builtin_taint, receiver_taint, args


def return_taint(machine: TaintMachine, value: Any, description: Optional[StaticDescription] = None) -> None:
    machine.taint_stack.push(value, description)


def join_and_return(machine: TaintMachine, values: List[Any], description: Optional[StaticDescription] = None) -> None:
    return_taint(machine, join_all(machine.lattice, values), description)


# ═══════════════════════════════════════════════════════════════════════════
#  Default model
# ═══════════════════════════════════════════════════════════════════════════

def no_record(context, name, receiver_name, receiver, args, is_method, description) -> None:
    return None


def default_implementation(machine, name, receiver_name, actual_args, record,
                           is_method, description) -> None:
    _, receiver_taint, args = pop_args_and_report_flows(
        machine, actual_args, is_method, description)
    # receiver taint joined with every argument's taint
    join_and_return(machine, [receiver_taint, *args], description)


DEFAULT_MODEL = NativeModel("<default>", no_record, default_implementation)


# ═══════════════════════════════════════════════════════════════════════════
#  Entry points for both phases
# ═══════════════════════════════════════════════════════════════════════════

def use_native_recorder(
    context: AnalysisContext,
    name: DynamicDescription,
    receiver_name: Optional[DynamicDescription],
    receiver: Any,
    args: List[Any],
    is_method: bool,
    description: StaticDescription,
) -> Any:
    model = get_native_model(description.name)
    return model.recorder(context, name, receiver_name, receiver, list(args),
                          is_method, description)


def use_native_implementation(
    machine: TaintMachine,
    name: DynamicDescription,
    receiver_name: Optional[DynamicDescription],
    actual_args: int,
    record: Any,
    is_method: bool,
    description: StaticDescription,
) -> None:
    model = get_native_model(description.name)
    if model is DEFAULT_MODEL:
        logger.debug("no native model for %s; using default", description.name)
    model.implementation(machine, name, receiver_name, actual_args, record,
                         is_method, description)
