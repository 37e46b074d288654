"""
taintvm/native/models.py — built-in function models.

Each model is registered with :func:`taintvm.native.registry.native_model`.
Recorders see concrete values; implementations see only the record and
the taint stack, and leave exactly one return taint behind.
"""

from __future__ import annotations

import logging
import math
import re
from typing import Any, Callable, List, NamedTuple, Optional, Sequence, Tuple, Type

from taintvm.descriptions import ShadowId, StaticDescription
from taintvm.errors import NativeModelError, TraceError
from taintvm.lattice import join_all
from taintvm.native.registry import (
    native_model,
    pop_args_and_report_flows,
    return_taint,
)

logger = logging.getLogger(__name__)

# recorded by max/min when the result is NaN or unrelated to any argument
NAN_SENTINEL = -1


class PropertyDefinition(NamedTuple):
    target: ShadowId
    prop: Any
    descriptor: ShadowId


class ApplyTarget(NamedTuple):
    function: str
    arguments: Optional[ShadowId]
    length: int


# Records arrive from serialized traces as plain values; a shape the
# model cannot use is a malformed trace.

def _malformed(model: str, record: Any) -> TraceError:
    return TraceError(f"malformed {model} record: {record!r}")


def _as_count(model: str, record: Any) -> int:
    if isinstance(record, int) and not isinstance(record, bool) and record >= 0:
        return record
    raise _malformed(model, record)


def _as_fields(model: str, record: Any, shape: Type[Tuple]) -> Any:
    if isinstance(record, (tuple, list)) and len(record) == len(shape._fields):
        return shape(*record)
    raise _malformed(model, record)


# ═══════════════════════════════════════════════════════════════════════════
#  Array.prototype.push
# ═══════════════════════════════════════════════════════════════════════════

def _record_push(context, name, receiver_name, receiver, args, is_method, description) -> int:
    # receiver's length before the call, 0 if it has none
    try:
        return len(receiver)
    except TypeError:
        return getattr(receiver, "length", 0) or 0


@native_model("push", recorder=_record_push)
def _push(machine, name, receiver_name, actual_args, previous_length, is_method, description) -> None:
    previous_length = _as_count("push", previous_length)
    _, _, args = pop_args_and_report_flows(machine, actual_args, is_method, description)

    if receiver_name is None:
        # no receiver identity, so there is no array to append to
        return_taint(machine, machine.untainted(), description)
        return

    shadow_array = machine.get_shadow_object(receiver_name)
    for i, value in enumerate(args):
        shadow_array[previous_length + i] = value

    # push returns the new length; the length slot itself is never tainted
    # by the append, so its existing taint is what the caller sees
    return_taint(machine, shadow_array.get("length", machine.untainted()), description)


# ═══════════════════════════════════════════════════════════════════════════
#  Array.prototype.join
# ═══════════════════════════════════════════════════════════════════════════

@native_model("join")
def _join(machine, name, receiver_name, actual_args, record, is_method, description) -> None:
    _, _, args = pop_args_and_report_flows(machine, actual_args, is_method, description)

    shadow_array = machine.shadow.lookup(receiver_name) if receiver_name is not None else None
    if shadow_array is None:
        elements = machine.untainted()
    else:
        elements = join_all(machine.lattice, shadow_array.element_values())

    # default separator is an untainted ","
    separator = args[0] if args else machine.untainted()
    return_taint(machine, machine.join(elements, separator), description)


# ═══════════════════════════════════════════════════════════════════════════
#  Object.defineProperty
# ═══════════════════════════════════════════════════════════════════════════

def _record_define_property(context, name, receiver_name, receiver, args, is_method,
                            description) -> PropertyDefinition:
    if len(args) < 3:
        raise NativeModelError(
            f"defineProperty expects (obj, prop, descriptor), got {len(args)} argument(s)",
            model="defineProperty",
        )
    obj, prop, descriptor = args[:3]
    return PropertyDefinition(
        target=context.shadow_id(obj),
        prop=prop,
        descriptor=context.shadow_id(descriptor),
    )


@native_model("defineProperty", recorder=_record_define_property)
def _define_property(machine, name, receiver_name, actual_args, record, is_method,
                     description) -> None:
    target, prop, descriptor = _as_fields("defineProperty", record, PropertyDefinition)
    _, _, args = pop_args_and_report_flows(machine, actual_args, is_method, description)

    # replay as an ordinary property write of the descriptor's value
    value = machine.shadow.read(descriptor, "value", machine.untainted())
    machine.push(value, description)
    machine.write_property(target, prop, description)

    # defineProperty returns its target
    return_taint(machine, args[0] if args else machine.untainted(), description)


# ═══════════════════════════════════════════════════════════════════════════
#  Function.prototype.call / Function.prototype.apply
# ═══════════════════════════════════════════════════════════════════════════

def _invoked_function(name, receiver_name, is_method) -> str:
    if is_method and receiver_name is not None:
        return str(receiver_name)
    return str(name)


def _record_call(context, name, receiver_name, receiver, args, is_method, description) -> str:
    return _invoked_function(name, receiver_name, is_method)


def _record_apply(context, name, receiver_name, receiver, args, is_method,
                  description) -> ApplyTarget:
    arguments = args[1] if len(args) > 1 else None
    if arguments is None:
        return ApplyTarget(_invoked_function(name, receiver_name, is_method), None, 0)
    return ApplyTarget(
        function=_invoked_function(name, receiver_name, is_method),
        arguments=context.shadow_id(arguments),
        length=len(arguments),
    )


def _call_through(machine, function_taint, arg_taints: Sequence[Any], function_name: str,
                  description: StaticDescription) -> None:
    """Enter *function_name* as if it were called directly.

    A synthetic frame for the builtin is pushed and the stack is laid out
    like a direct call.  The return taint is pushed later, by the advice
    run when the callee exits.
    """
    machine.callstack_push(StaticDescription(function_name, description.location))
    machine.prepare_function_call(function_taint, arg_taints, description)

    def forward_return() -> None:
        machine.pop_value()
        return_taint(machine, machine.return_value, description)
        # callee frame, then the builtin's own frame
        machine.callstack_pop()
        machine.callstack_pop()

    machine.install_exit_advice(forward_return)


@native_model("call", recorder=_record_call)
def _call(machine, name, receiver_name, actual_args, function_name, is_method,
          description) -> None:
    if not isinstance(function_name, str):
        raise _malformed("call", function_name)
    builtin_taint, receiver_taint, args = pop_args_and_report_flows(
        machine, actual_args, is_method, description)
    function_taint = receiver_taint if is_method else builtin_taint
    # args[0] is the callee's receiver
    _call_through(machine, function_taint, args[1:], function_name, description)


@native_model("apply", recorder=_record_apply)
def _apply(machine, name, receiver_name, actual_args, target, is_method, description) -> None:
    function, arguments, length = _as_fields("apply", target, ApplyTarget)
    if not isinstance(function, str):
        raise _malformed("apply", target)
    length = _as_count("apply", length)
    builtin_taint, receiver_taint, _ = pop_args_and_report_flows(
        machine, actual_args, is_method, description)
    function_taint = receiver_taint if is_method else builtin_taint

    untainted = machine.untainted()
    if arguments is None:
        arg_taints: List[Any] = []
    else:
        arg_taints = [machine.shadow.read(arguments, i, untainted) for i in range(length)]
    _call_through(machine, function_taint, arg_taints, function, description)


# ═══════════════════════════════════════════════════════════════════════════
#  Math.max / Math.min
# ═══════════════════════════════════════════════════════════════════════════

_DECIMAL = re.compile(r"[+-]?(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?")
_INFINITY = re.compile(r"[+-]?Infinity")
_RADIX = re.compile(r"0[xX][0-9a-fA-F]+|0[oO][0-7]+|0[bB][01]+")


def _string_to_number(value: str) -> float:
    text = value.strip()
    if not text:
        return 0.0
    if _DECIMAL.fullmatch(text):
        return float(text)
    if _INFINITY.fullmatch(text):
        return -math.inf if text.startswith("-") else math.inf
    if _RADIX.fullmatch(text):
        return float(int(text, 0))
    # Python spellings such as "inf", "nan" and "1_0" are not numbers here
    return math.nan


def _to_number(value: Any) -> float:
    """Numeric conversion of the observed language (``Number(value)``)."""
    if value is None:
        return 0.0
    if isinstance(value, (bool, int, float)):
        return float(value)
    if isinstance(value, str):
        return _string_to_number(value)
    if hasattr(value, "__float__"):
        return float(value)
    return math.nan


def _extreme_index(args: Sequence[Any], pick: Callable[..., float], model: str) -> int:
    """Index of the argument equal to ``pick(args)``, or ``NAN_SENTINEL``.

    Raises ``NativeModelError`` when no argument equals the result, which
    means a conversion gave different answers on two reads.
    """
    if not args:
        return NAN_SENTINEL
    numbers = [_to_number(a) for a in args]
    if any(math.isnan(n) for n in numbers):
        return NAN_SENTINEL

    result = pick(numbers)
    for i, raw in enumerate(args):
        if _to_number(raw) == result:
            return i

    logger.error("%s: result %r matches none of %r", model, result, list(args))
    raise NativeModelError(
        f"{model} returned a value not equal to any of its arguments", model=model)


def _record_max(context, name, receiver_name, receiver, args, is_method, description) -> int:
    return _extreme_index(args, max, "max")


def _record_min(context, name, receiver_name, receiver, args, is_method, description) -> int:
    return _extreme_index(args, min, "min")


def _return_selected_argument(machine, model, actual_args, index, is_method,
                              description) -> None:
    if index != NAN_SENTINEL:
        index = _as_count(model, index)
        if index >= actual_args:
            raise _malformed(model, index)
    _, _, args = pop_args_and_report_flows(machine, actual_args, is_method, description)
    if index == NAN_SENTINEL:
        return_taint(machine, machine.untainted(), description)
    else:
        return_taint(machine, args[index], description)


@native_model("max", recorder=_record_max)
def _max(machine, name, receiver_name, actual_args, index, is_method, description) -> None:
    _return_selected_argument(machine, "max", actual_args, index, is_method, description)


@native_model("min", recorder=_record_min)
def _min(machine, name, receiver_name, actual_args, index, is_method, description) -> None:
    _return_selected_argument(machine, "min", actual_args, index, is_method, description)
