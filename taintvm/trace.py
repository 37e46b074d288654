"""
taintvm/trace.py
════════════════

Serialized event traces: S-expression text ⇄ ``TraceEvent`` ⇄ machine.

Converts the output of ``sexpdata.loads`` (nested lists,
:class:`sexpdata.Symbol`, strings, numbers) into ``TraceEvent`` objects,
and replays them against a :class:`~taintvm.machine.TaintMachine`.

Design principles
-----------------
* **Head-symbol dispatch**: every form ``(tag ...)`` is dispatched on
  ``tag`` to a dedicated ``_parse_<tag>`` helper registered in
  ``_EVENT_DISPATCH``.
* **Strict shapes**: malformed forms raise ``TraceError`` carrying the
  form and its position; nothing is silently dropped.
* **Lattice-neutral**: taint literals stay symbolic (``TaintLiteral``)
  until replay, where the machine's lattice lifts them.

Surface syntax
--------------
::

    ;; optional wrapper
    (trace <event> ...)

    (push false) (push true) (push (taint "label" ...))
    (pop)
    (read-var "x")  (write-var "x")  (init-var "x")
    (read-prop (obj 1) "key")  (write-prop (obj 1) 3)
    (unary)  (binary)
    (function-call <expected> <actual>)
    (function-enter "f" (at "app.js" 10 2))
    (function-return)  (function-exit)
    (native "push" (obj 1) <actual-args> <record> method (at "app.js" 4 1))
    (end)

    ;; record / value forms
    42  "text"  none  true  false  (obj 7)  (list <value> ...)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    List,
    Optional,
    Sequence,
    Tuple,
    Union,
)

import sexpdata
from sexpdata import Symbol

from taintvm.descriptions import ShadowId, SourceLocation, StaticDescription
from taintvm.errors import TraceError

logger = logging.getLogger(__name__)

Sexp = Any  # Union[list, Symbol, str, int, float, bool]

LITERAL_LABEL = "literal"


# ═══════════════════════════════════════════════════════════════════════
#  Event types
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True, slots=True)
class TaintLiteral:
    """A taint value written in a trace, lifted by the replaying lattice."""

    labels: Tuple[str, ...] = ()

    def lift(self, lattice) -> Any:
        return lattice.lift(self.labels)


@dataclass(frozen=True, slots=True)
class TraceEvent:
    """One machine operation: method name plus positional arguments."""

    op: str
    args: Tuple[Any, ...] = ()

    def apply(self, machine) -> Any:
        args = tuple(a.lift(machine.lattice) if isinstance(a, TaintLiteral) else a
                     for a in self.args)
        return getattr(machine, self.op)(*args)


# ═══════════════════════════════════════════════════════════════════════
#  Helpers
# ═══════════════════════════════════════════════════════════════════════

def _sym_name(s: Sexp) -> str:
    """Extract the string name from a ``sexpdata.Symbol``, or raise."""
    if isinstance(s, Symbol):
        value = getattr(s, "value", None)
        return value() if callable(value) else str(s)
    raise TraceError(f"Expected symbol, got {type(s).__name__}: {s!r}")


def _head(s: list) -> str:
    if not s:
        raise TraceError("Unexpected empty form")
    return _sym_name(s[0])


def _expect_len(s: list, low: int, high: Optional[int] = None) -> list:
    high = low if high is None else high
    if not low <= len(s) - 1 <= high:
        expected = str(low) if low == high else f"{low}-{high}"
        raise TraceError(f"({_head(s)} ...) takes {expected} operand(s), got {len(s) - 1}")
    return s


def _as_str(s: Sexp) -> str:
    """Coerce *s* to ``str``: accepts Symbol or string literal."""
    if isinstance(s, Symbol):
        return _sym_name(s)
    if isinstance(s, str):
        return s
    raise TraceError(f"Expected string or symbol, got {type(s).__name__}: {s!r}")


def _as_int(s: Sexp) -> int:
    if isinstance(s, int) and not isinstance(s, bool):
        return s
    raise TraceError(f"Expected integer, got {type(s).__name__}: {s!r}")


def _is_form(s: Sexp, tag: str) -> bool:
    return isinstance(s, list) and bool(s) and isinstance(s[0], Symbol) and _sym_name(s[0]) == tag


def _parse_object(s: Sexp) -> ShadowId:
    if _is_form(s, "obj"):
        _expect_len(s, 1)
        return ShadowId(_as_int(s[1]))
    raise TraceError(f"Expected (obj <id>), got {s!r}")


def _parse_key(s: Sexp) -> Union[str, int]:
    if isinstance(s, int) and not isinstance(s, bool):
        return s
    return _as_str(s)


def _parse_location(s: Sexp) -> SourceLocation:
    _expect_len(s, 1, 3)
    file = _as_str(s[1])
    line = _as_int(s[2]) if len(s) > 2 else 0
    column = _as_int(s[3]) if len(s) > 3 else 0
    return SourceLocation(file, line, column)


def parse_value(s: Sexp) -> Any:
    """Parse a record / operand value form."""
    if isinstance(s, bool):
        return s
    if isinstance(s, (int, float)):
        return s
    if isinstance(s, Symbol):
        name = _sym_name(s)
        if name == "none":
            return None
        if name == "true":
            return True
        if name == "false":
            return False
        return name
    if isinstance(s, str):
        return s
    if _is_form(s, "obj"):
        return _parse_object(s)
    if _is_form(s, "list"):
        return tuple(parse_value(v) for v in s[1:])
    if isinstance(s, list) and not s:
        return ()
    raise TraceError(f"Unrecognised value form: {s!r}")


def parse_taint_literal(s: Sexp) -> TaintLiteral:
    if isinstance(s, bool):
        return TaintLiteral((LITERAL_LABEL,) if s else ())
    if isinstance(s, Symbol):
        name = _sym_name(s)
        if name in ("false", "untainted"):
            return TaintLiteral()
        if name in ("true", "tainted"):
            return TaintLiteral((LITERAL_LABEL,))
    if _is_form(s, "taint"):
        return TaintLiteral(tuple(_as_str(v) for v in s[1:]))
    raise TraceError(f"Expected taint literal, got {s!r}")


# ═══════════════════════════════════════════════════════════════════════
#  Dispatch registry
# ═══════════════════════════════════════════════════════════════════════

_EVENT_DISPATCH: Dict[str, Callable[[list], TraceEvent]] = {}


def _register(tag: str):
    """Decorator: register an event parser under *tag*."""
    def deco(fn):
        _EVENT_DISPATCH[tag] = fn
        return fn
    return deco


def _nullary(tag: str, op: str) -> None:
    def parse(s: list) -> TraceEvent:
        _expect_len(s, 0)
        return TraceEvent(op)
    _EVENT_DISPATCH[tag] = parse


def _named(tag: str, op: str) -> None:
    def parse(s: list) -> TraceEvent:
        _expect_len(s, 1)
        return TraceEvent(op, (_as_str(s[1]),))
    _EVENT_DISPATCH[tag] = parse


_nullary("pop", "pop")
_nullary("unary", "unary_op")
_nullary("binary", "binary_op")
_nullary("function-return", "function_return")
_nullary("function-exit", "function_exit")
_nullary("end", "end_execution")

_named("read-var", "read_var")
_named("write-var", "write_var")
_named("init-var", "init_var")


@_register("push")
def _parse_push(s: list) -> TraceEvent:
    _expect_len(s, 1)
    return TraceEvent("push", (parse_taint_literal(s[1]),))


@_register("read-prop")
def _parse_read_prop(s: list) -> TraceEvent:
    _expect_len(s, 2)
    return TraceEvent("read_property", (_parse_object(s[1]), _parse_key(s[2])))


@_register("write-prop")
def _parse_write_prop(s: list) -> TraceEvent:
    _expect_len(s, 2)
    return TraceEvent("write_property", (_parse_object(s[1]), _parse_key(s[2])))


@_register("function-call")
def _parse_function_call(s: list) -> TraceEvent:
    _expect_len(s, 2)
    return TraceEvent("function_call", (_as_int(s[1]), _as_int(s[2])))


@_register("function-enter")
def _parse_function_enter(s: list) -> TraceEvent:
    _expect_len(s, 1, 2)
    location = _parse_location(s[2]) if len(s) > 2 else None
    return TraceEvent("function_enter", (StaticDescription(_as_str(s[1]), location),))


@_register("native")
def _parse_native(s: list) -> TraceEvent:
    if len(s) < 5:
        raise TraceError("(native <name> <receiver> <actual-args> <record> ...) is incomplete")
    name = _as_str(s[1])
    receiver = parse_value(s[2])
    actual_args = _as_int(s[3])
    record = parse_value(s[4])

    is_method = False
    location = None
    for extra in s[5:]:
        if isinstance(extra, Symbol) and _sym_name(extra) == "method":
            is_method = True
        elif _is_form(extra, "at"):
            location = _parse_location(extra)
        else:
            raise TraceError(f"Unexpected native option: {extra!r}")

    description = StaticDescription(name, location)
    return TraceEvent("invoke_native",
                      (name, receiver, actual_args, record, is_method, description))


# ═══════════════════════════════════════════════════════════════════════
#  Public API
# ═══════════════════════════════════════════════════════════════════════

def parse_event(s: Sexp) -> TraceEvent:
    if not isinstance(s, list) or not s:
        raise TraceError(f"Expected event form (tag ...), got: {s!r}")
    tag = _head(s)
    parser = _EVENT_DISPATCH.get(tag)
    if parser is None:
        raise TraceError(f"Unknown event form: ({tag} ...)")
    return parser(s)


def parse_trace(text: str) -> List[TraceEvent]:
    """Parse trace *text* into events."""
    try:
        # sexpdata reads a single form; wrap to read them all
        forms = sexpdata.loads("(" + text + "\n)")
    except Exception as exc:
        raise TraceError(f"Malformed S-expression: {exc}") from exc

    if len(forms) == 1 and _is_form(forms[0], "trace"):
        forms = forms[0][1:]

    events: List[TraceEvent] = []
    for index, form in enumerate(forms):
        try:
            events.append(parse_event(form))
        except TraceError as exc:
            raise TraceError(str(exc), form=form, index=index) from exc
    logger.debug("parsed %d trace event(s)", len(events))
    return events


def load_trace(path: Union[str, Path]) -> List[TraceEvent]:
    p = Path(path)
    try:
        text = p.read_text(encoding="utf-8")
    except OSError as exc:
        raise TraceError(f"Cannot read trace {p}: {exc}") from exc
    return parse_trace(text)


def replay(machine, events: Iterable[TraceEvent]):
    """Apply *events* to *machine* in order; returns the machine.

    A ``TraceError`` raised while applying an event is tagged with the
    event's index.
    """
    count = 0
    for index, event in enumerate(events):
        try:
            event.apply(machine)
        except TraceError as exc:
            if exc.index is not None:
                raise
            raise TraceError(str(exc), form=exc.form, index=index) from exc
        count += 1
    logger.info("replayed %d event(s); stack depth %d", count, machine.stack_depth)
    return machine


# ═══════════════════════════════════════════════════════════════════════
#  Serialisation
# ═══════════════════════════════════════════════════════════════════════

_OP_TAGS: Dict[str, str] = {
    "pop": "pop",
    "unary_op": "unary",
    "binary_op": "binary",
    "function_return": "function-return",
    "function_exit": "function-exit",
    "end_execution": "end",
    "read_var": "read-var",
    "write_var": "write-var",
    "init_var": "init-var",
    "push": "push",
    "read_property": "read-prop",
    "write_property": "write-prop",
    "function_call": "function-call",
    "function_enter": "function-enter",
    "invoke_native": "native",
}


def _value_sexp(v: Any) -> Sexp:
    if v is None:
        return Symbol("none")
    if isinstance(v, bool):
        return Symbol("true" if v else "false")
    if isinstance(v, ShadowId):
        return [Symbol("obj"), v.value]
    if isinstance(v, TaintLiteral):
        return [Symbol("taint"), *v.labels]
    if isinstance(v, tuple):
        return [Symbol("list"), *(_value_sexp(x) for x in v)]
    return v


def _location_sexp(loc: SourceLocation) -> Sexp:
    return [Symbol("at"), loc.file, loc.line, loc.column]


def event_to_sexp(event: TraceEvent) -> Sexp:
    tag = _OP_TAGS.get(event.op)
    if tag is None:
        raise TraceError(f"No trace form for operation {event.op!r}")
    form: List[Sexp] = [Symbol(tag)]
    if event.op == "function_enter":
        (desc,) = event.args
        form.append(desc.name)
        if desc.location is not None:
            form.append(_location_sexp(desc.location))
    elif event.op == "invoke_native":
        name, receiver, actual_args, record, is_method, desc = event.args
        form.extend([desc.name, _value_sexp(receiver), actual_args, _value_sexp(record)])
        if is_method:
            form.append(Symbol("method"))
        if desc.location is not None:
            form.append(_location_sexp(desc.location))
    else:
        form.extend(_value_sexp(a) for a in event.args)
    return form


def dump_trace(events: Sequence[TraceEvent]) -> str:
    """Serialise *events*, one form per line."""
    return "\n".join(sexpdata.dumps(event_to_sexp(e)) for e in events) + "\n"
