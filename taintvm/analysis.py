"""
taintvm/analysis.py
═══════════════════

Recording-side context handed to native model recorders.

The instrumentation front-end owns one ``AnalysisContext`` per observed
execution.  Whenever the real program calls a built-in, the front-end
calls :meth:`AnalysisContext.record_native` with the concrete receiver
and arguments; the returned record is stored next to the event and
handed back to :meth:`taintvm.machine.TaintMachine.invoke_native` at
replay time.

Objects are identified by ``ShadowId`` values from the context's
:class:`~taintvm.shadow.ShadowMemory`.  The same ids must key the shadow
records on the machine side, which is why recorders return ids rather
than the objects themselves.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence

from taintvm.descriptions import DynamicDescription, ShadowId, StaticDescription
from taintvm.native import use_native_recorder
from taintvm.shadow import ShadowMemory

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class NativeCall:
    """One recorded built-in invocation, ready for replay."""

    name: DynamicDescription
    receiver_name: Optional[DynamicDescription]
    actual_args: int
    record: Any
    is_method: bool
    description: StaticDescription

    def replay(self, machine) -> None:
        machine.invoke_native(self.name, self.receiver_name, self.actual_args,
                              self.record, self.is_method, self.description)


@dataclass
class AnalysisContext:
    shadow_memory: ShadowMemory = field(default_factory=ShadowMemory)
    calls: List[NativeCall] = field(default_factory=list)

    def shadow_id(self, obj: Any) -> ShadowId:
        return self.shadow_memory.shadow_id(obj)

    def record_native(
        self,
        name: DynamicDescription,
        receiver: Any,
        args: Sequence[Any],
        is_method: bool,
        description: StaticDescription,
        receiver_name: Optional[DynamicDescription] = None,
    ) -> NativeCall:
        """Run the recorder for ``description.name`` on concrete values.

        When *receiver_name* is omitted and the call is a method call, the
        receiver's shadow id is used.
        """
        if receiver_name is None and is_method and receiver is not None:
            receiver_name = self.shadow_id(receiver)
        record = use_native_recorder(self, name, receiver_name, receiver, list(args),
                                     is_method, description)
        call = NativeCall(name, receiver_name, len(args), record, is_method, description)
        self.calls.append(call)
        logger.debug("recorded %s -> %r", description.name, record)
        return call
