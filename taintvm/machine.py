"""
taintvm/machine.py
══════════════════

The taint abstract machine.

The machine is driven by a sequential trace of program-level events
emitted by an instrumentation front-end (or replayed from a serialized
trace by :mod:`taintvm.trace`).  It never sees concrete program values;
it only threads taint values through a shadow of the program state:

    ┌──────────────┐  event   ┌──────────────────────────────────────────┐
    │ front-end /  │ ───────► │  TaintMachine[V, F]                      │
    │ trace replay │          │   ├── TaintStack       (evaluation)      │
    └──────────────┘          │   ├── VariableMap      (name → V)        │
                              │   ├── ShadowObjectStore(obj → key → V)   │
                              │   ├── CallState        (param binding)   │
                              │   └── CallStack        (frames, advice)  │
                              └──────────────┬───────────────────────────┘
                                             │ get_taint() / flows
                                             ▼
                                          report

Calling convention
──────────────────

A direct call ``f(a, b)`` is observed as::

    push f-taint, push a-taint, push b-taint     (argument evaluation)
    function_enter(f)                            (new call frame)
    function_call(expected, actual)              (realign arguments)
    init_var(p0), init_var(p1), ...              (bind formals)
    ... callee body ...
    function_return()                            (return value → register)
    function_exit()                              (pop f-taint, push result)

Built-ins go through :meth:`TaintMachine.invoke_native` instead; see
:mod:`taintvm.native`.

Failure semantics
─────────────────

Stack-discipline violations never raise here.  An empty-stack pop
yields the untainted value and the event proceeds; the analysis
under-approximates rather than stopping.  A native record whose shape
its model cannot use raises :class:`~taintvm.errors.TraceError`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import (
    Any,
    Callable,
    FrozenSet,
    Generic,
    Iterable,
    List,
    Optional,
    Tuple,
    TypeVar,
)

from taintvm.descriptions import DynamicDescription, StaticDescription
from taintvm.lattice import BooleanLattice, TaintLattice, make_lattice
from taintvm.native import use_native_implementation
from taintvm.shadow import ShadowMemory, ShadowObject, ShadowObjectStore, property_key
from taintvm.state import (
    CallStack,
    CallState,
    ExitAdvice,
    StackEntry,
    TaintStack,
    VariableMap,
)

logger = logging.getLogger(__name__)

V = TypeVar("V")
F = TypeVar("F")


@dataclass(frozen=True, slots=True)
class FlowRecord(Generic[V]):
    """A tainted value observed flowing into a sink."""

    sink: str
    taint: V
    description: StaticDescription

    def __str__(self) -> str:
        return f"{self.description}: taint {self.taint!r} reaches sink {self.sink!r}"


def default_flow_factory(description: StaticDescription, value: Any) -> FlowRecord:
    return FlowRecord(sink=description.name, taint=value, description=description)


FlowFactory = Callable[[StaticDescription, V], F]


class TaintMachine(Generic[V, F]):
    """Stack-discipline taint interpreter over an event trace.

    Parameters
    ----------
    sources:
        Names that are always tainted, as variables or property keys.
    sinks:
        Names monitored by :meth:`get_taint` and :meth:`report_possible_flow`.
        Their order is the reporting order.
    lattice:
        Taint lattice; :class:`~taintvm.lattice.BooleanLattice` by default.
    flow_factory:
        Builds the flow record ``F`` for a tainted value reaching a sink.
    shadow_memory:
        Identity side-table.  Pass the recording context's
        ``shadow_memory`` when replaying its records in-process so both
        phases agree on object ids.
    """

    def __init__(
        self,
        sources: Iterable[str] = (),
        sinks: Iterable[str] = (),
        *,
        lattice: Optional[TaintLattice[V]] = None,
        flow_factory: Optional[FlowFactory] = None,
        shadow_memory: Optional[ShadowMemory] = None,
    ) -> None:
        self.lattice: TaintLattice[V] = lattice if lattice is not None else BooleanLattice()
        self.sources: FrozenSet[str] = frozenset(sources)
        self._sink_order: Tuple[str, ...] = tuple(dict.fromkeys(sinks))
        self.sinks: FrozenSet[str] = frozenset(self._sink_order)
        self._flow_factory: FlowFactory = flow_factory or default_flow_factory

        self.taint_stack: TaintStack[V] = TaintStack()
        self.variables: VariableMap[V] = VariableMap()
        self.shadow: ShadowObjectStore[V] = ShadowObjectStore(shadow_memory)
        self.call_state = CallState()
        self.callstack = CallStack()
        self.return_value: V = self.lattice.untainted()
        self.flows: List[F] = []

    @classmethod
    def from_options(cls, options: Any, **kwargs: Any) -> TaintMachine:
        """Build a machine from a :class:`taintvm.config.MachineOptions`."""
        return cls(
            options.sources,
            options.sinks,
            lattice=make_lattice(options.lattice),
            **kwargs,
        )

    # ── Lattice helpers ─────────────────────────────────────────────────

    def untainted(self) -> V:
        return self.lattice.untainted()

    def join(self, a: V, b: V) -> V:
        return self.lattice.join(a, b)

    def is_tainted(self, value: V) -> bool:
        return self.lattice.is_tainted(value)

    def _with_source(self, name: str, value: V) -> V:
        if name in self.sources:
            return self.lattice.join(self.lattice.lift((name,)), value)
        return value

    def _reset_state(self) -> None:
        self.call_state.reset()

    def pop_value(self) -> V:
        """Pop the top taint, or untainted on an empty stack."""
        value = self.taint_stack.pop()
        return self.untainted() if value is None else value

    def _pop_entry(self) -> StackEntry:
        entry = self.taint_stack.pop_entry()
        return (self.untainted(), None) if entry is None else entry

    @property
    def stack_depth(self) -> int:
        return len(self.taint_stack)

    # ═══════════════════════════════════════════════════════════════════
    #  Event protocol
    # ═══════════════════════════════════════════════════════════════════

    def push(self, value: V, description: Optional[StaticDescription] = None) -> None:
        self._reset_state()
        logger.debug("push %r", value)
        self.taint_stack.push(value, description)

    def pop(self) -> V:
        self._reset_state()
        logger.debug("pop")
        return self.pop_value()

    def read_var(self, name: str) -> V:
        self._reset_state()
        result = self._with_source(name, self.variables.get(name, self.untainted()))
        self.taint_stack.push(result)
        logger.debug("read %s -> %r", name, result)
        return result

    def write_var(self, name: str) -> V:
        self._reset_state()
        # the pending value stays on the stack (e.g. compound assignment)
        top = self.taint_stack.peek()
        value = self._with_source(name, self.untainted() if top is None else top)
        self.variables.set(name, value)
        logger.debug("write %s <- %r", name, value)
        return value

    def read_property(self, obj: Any, key: Any) -> V:
        self._reset_state()
        stored = self.shadow.read(obj, key, self.untainted())
        result = self._with_source(property_key(key), stored)
        self.taint_stack.push(result)
        logger.debug("readprop %s -> %r", key, result)
        return result

    def write_property(self, obj: Any, key: Any, description: Optional[StaticDescription] = None) -> V:
        self._reset_state()
        value = self._with_source(property_key(key), self.pop_value())
        self.shadow.write(obj, key, value)
        logger.debug("writeprop %s <- %r", key, value)
        return value

    def unary_op(self) -> None:
        self._reset_state()

    def binary_op(self) -> V:
        self._reset_state()
        right, desc = self._pop_entry()
        left, _ = self._pop_entry()
        result = self.join(left, right)
        self.taint_stack.push(result, desc)
        logger.debug("binop %r, %r -> %r", left, right, result)
        return result

    def init_var(self, name: str) -> None:
        if self.call_state.binding_parameters:
            value = self.pop_value()
            self.variables.set(name, value)
            self.call_state.remaining -= 1
            logger.debug("init function arg %s <- %r", name, value)
        else:
            logger.debug("init %s: not an argument", name)
            self._reset_state()

    def function_call(self, expected_args: int, actual_args: int) -> None:
        expected_args = max(0, expected_args)
        actual_args = max(0, actual_args)
        logger.debug("funcall expected=%d actual=%d", expected_args, actual_args)

        # the last source argument is on top; reverse into call order
        buffer: List[StackEntry] = [self._pop_entry() for _ in range(actual_args)]
        buffer.reverse()

        if expected_args > actual_args:
            # missing arguments are bound to an untainted "undefined"
            buffer.extend((self.untainted(), None) for _ in range(expected_args - actual_args))
        elif expected_args < actual_args:
            dropped = buffer[expected_args:]
            del buffer[expected_args:]
            logger.debug("funcall dropped %d surplus argument(s): %r",
                         len(dropped), [v for v, _ in dropped])

        # first formal ends up on top
        for value, desc in reversed(buffer):
            self.taint_stack.push(value, desc)
        self.call_state.await_parameters(expected_args)

    def end_execution(self) -> None:
        logger.debug("end of execution; tainted sinks: %s", self.get_taint())

    def get_taint(self) -> List[str]:
        """Sinks currently holding a tainted value, in construction order."""
        untainted = self.untainted()
        return [s for s in self._sink_order
                if self.is_tainted(self.variables.get(s, untainted))]

    # ── Call boundaries ─────────────────────────────────────────────────

    def function_enter(self, description: Optional[StaticDescription] = None) -> None:
        self._reset_state()
        logger.debug("enter %s", description)
        self.callstack.push(description)

    def function_return(self) -> V:
        self._reset_state()
        self.return_value = self.pop_value()
        logger.debug("return %r", self.return_value)
        return self.return_value

    def function_exit(self) -> None:
        self._reset_state()
        caller = self.callstack.below_top()
        advice = caller.take_exit_advice() if caller is not None else None
        if advice is not None:
            logger.debug("exit: running deferred advice of %s", caller.description)
            advice()
        else:
            frame = self.callstack.pop()
            self.pop_value()
            self.taint_stack.push(self.return_value,
                                  frame.description if frame is not None else None)
            logger.debug("exit %s -> %r",
                         frame.description if frame is not None else None,
                         self.return_value)
        self.return_value = self.untainted()

    def callstack_push(self, description: Optional[StaticDescription] = None) -> None:
        self.callstack.push(description)

    def callstack_pop(self) -> None:
        self.callstack.pop()

    def install_exit_advice(self, advice: ExitAdvice) -> None:
        """Attach a one-shot callback run when the next callee exits."""
        frame = self.callstack.top
        if frame is None:
            logger.debug("exit advice installed without a frame; ignored")
            return
        frame.exit_advice = advice

    def prepare_function_call(
        self,
        function_taint: V,
        arg_taints: Iterable[V],
        description: Optional[StaticDescription] = None,
    ) -> None:
        """Lay out the stack exactly as a direct call would before entry."""
        self.taint_stack.push(function_taint, description)
        for value in arg_taints:
            self.taint_stack.push(value, description)

    # ── Shadow objects and flows ────────────────────────────────────────

    def get_shadow_object(self, obj: Any) -> ShadowObject[V]:
        return self.shadow.record(obj)

    def report_possible_flow(self, description: StaticDescription, value: V) -> None:
        if description.name in self.sinks and self.is_tainted(value):
            record = self._flow_factory(description, value)
            self.flows.append(record)
            logger.info("flow into sink %s: %r", description, value)

    # ── Built-ins ───────────────────────────────────────────────────────

    def invoke_native(
        self,
        name: DynamicDescription,
        receiver_name: Optional[DynamicDescription],
        actual_args: int,
        record: Any,
        is_method: bool,
        description: StaticDescription,
    ) -> None:
        """Replay the native model registered for ``description.name``."""
        self._reset_state()
        logger.debug("native %s (args=%d, method=%s, record=%r)",
                     description.name, actual_args, is_method, record)
        use_native_implementation(self, name, receiver_name, actual_args,
                                  record, is_method, description)
