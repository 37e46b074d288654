"""
taintvm/state.py
════════════════

Mutable state owned by one :class:`~taintvm.machine.TaintMachine`.

    TaintStack      LIFO of (taint, description) entries mirroring the
                    real evaluation stack.
    VariableMap     name → taint bindings; reads never remove.
    CallState       parameter-binding mode entered by ``function_call``.
    CallStack       activation frames; a frame may carry one exit advice.

The stack tolerates imperfect traces: popping an empty stack yields
``None`` rather than raising, and the machine substitutes the untainted
value.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import (
    Callable,
    Dict,
    Generic,
    Iterator,
    List,
    Optional,
    Tuple,
    TypeVar,
)

from taintvm.descriptions import StaticDescription

logger = logging.getLogger(__name__)

V = TypeVar("V")

StackEntry = Tuple[V, Optional[StaticDescription]]
ExitAdvice = Callable[[], None]


# ═══════════════════════════════════════════════════════════════════════════
#  TAINT STACK
# ═══════════════════════════════════════════════════════════════════════════

class TaintStack(Generic[V]):

    def __init__(self) -> None:
        self._entries: List[StackEntry] = []

    def push(self, value: V, description: Optional[StaticDescription] = None) -> None:
        self._entries.append((value, description))

    def pop_entry(self) -> Optional[StackEntry]:
        if not self._entries:
            logger.debug("pop on empty taint stack ignored")
            return None
        return self._entries.pop()

    def pop(self) -> Optional[V]:
        entry = self.pop_entry()
        return None if entry is None else entry[0]

    def peek(self) -> Optional[V]:
        if not self._entries:
            return None
        return self._entries[-1][0]

    def values(self) -> List[V]:
        """Taint values bottom → top."""
        return [v for v, _ in self._entries]

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[StackEntry]:
        return iter(self._entries)

    def __repr__(self) -> str:
        return f"TaintStack({self.values()!r})"


# ═══════════════════════════════════════════════════════════════════════════
#  VARIABLE MAP
# ═══════════════════════════════════════════════════════════════════════════

class VariableMap(Generic[V]):

    def __init__(self) -> None:
        self._bindings: Dict[str, V] = {}

    def get(self, name: str, default: V) -> V:
        return self._bindings.get(name, default)

    def set(self, name: str, value: V) -> None:
        self._bindings[name] = value

    def __contains__(self, name: str) -> bool:
        return name in self._bindings

    def __len__(self) -> int:
        return len(self._bindings)


# ═══════════════════════════════════════════════════════════════════════════
#  CALL STATE
# ═══════════════════════════════════════════════════════════════════════════

class CallMode(enum.Enum):
    NONE = "none"
    AWAITING_PARAMETERS = "awaiting_parameters"


@dataclass(slots=True)
class CallState:
    """Whether upcoming ``init_var`` events bind parameters of a call."""

    mode: CallMode = CallMode.NONE
    remaining: int = 0

    def reset(self) -> None:
        self.mode = CallMode.NONE
        self.remaining = 0

    def await_parameters(self, count: int) -> None:
        self.mode = CallMode.AWAITING_PARAMETERS
        self.remaining = count

    @property
    def binding_parameters(self) -> bool:
        return self.mode is CallMode.AWAITING_PARAMETERS and self.remaining > 0


# ═══════════════════════════════════════════════════════════════════════════
#  CALL STACK
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(slots=True)
class CallFrame:
    description: Optional[StaticDescription] = None
    exit_advice: Optional[ExitAdvice] = field(default=None, repr=False)

    def take_exit_advice(self) -> Optional[ExitAdvice]:
        """Remove and return the advice; it runs at most once."""
        advice, self.exit_advice = self.exit_advice, None
        return advice


class CallStack:

    def __init__(self) -> None:
        self._frames: List[CallFrame] = []

    def push(self, description: Optional[StaticDescription] = None) -> CallFrame:
        frame = CallFrame(description)
        self._frames.append(frame)
        return frame

    def pop(self) -> Optional[CallFrame]:
        if not self._frames:
            logger.debug("pop on empty call stack ignored")
            return None
        return self._frames.pop()

    @property
    def top(self) -> Optional[CallFrame]:
        return self._frames[-1] if self._frames else None

    def below_top(self) -> Optional[CallFrame]:
        """The caller of the current frame, if any."""
        return self._frames[-2] if len(self._frames) >= 2 else None

    def __len__(self) -> int:
        return len(self._frames)
