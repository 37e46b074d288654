"""
taintvm/lattice.py
══════════════════

Taint lattices consumed by :class:`taintvm.machine.TaintMachine`.

The machine never looks inside a taint value.  Everything it needs is
expressed through the ``TaintLattice`` protocol:

    ┌─────────────────────────────────────────────────────────────┐
    │  TaintLattice[V]  (protocol)                                │
    │    ├── BooleanLattice      — V = bool,  ⊥ = False           │
    │    └── SourceSetLattice    — V = frozenset[str],  ⊥ = ∅     │
    └─────────────────────────────────────────────────────────────┘

Lattice laws that MUST hold (checked by the Hypothesis suite):

    1. join(a, b)          = join(b, a)              (commutativity)
    2. join(join(a, b), c) = join(a, join(b, c))     (associativity)
    3. join(a, a)          = a                       (idempotence)
    4. join(a, untainted())= a                       (identity)

A Source named ``n`` contributes ``lift((n,))``; for the boolean lattice
that is simply ``True``, for the source-set lattice it is ``{n}``.

License: MIT — same as taintvm.
"""

from __future__ import annotations

from functools import reduce
from typing import (
    Dict,
    FrozenSet,
    Iterable,
    Protocol,
    Type,
    TypeVar,
    runtime_checkable,
)

V = TypeVar("V")


# ═══════════════════════════════════════════════════════════════════════════
#  PART 1 — PROTOCOL
# ═══════════════════════════════════════════════════════════════════════════

@runtime_checkable
class TaintLattice(Protocol[V]):
    """Join-semilattice of taint values with an untainted identity."""

    name: str

    def untainted(self) -> V:
        """The identity element ⊥ (no taint)."""
        ...

    def join(self, a: V, b: V) -> V:
        """Least upper bound  a ⊔ b."""
        ...

    def is_tainted(self, value: V) -> bool:
        """True iff *value* differs from ``untainted()``."""
        ...

    def lift(self, labels: Iterable[str]) -> V:
        """Taint of a value derived from the given source labels."""
        ...


def join_all(lattice: TaintLattice[V], values: Iterable[V]) -> V:
    """Fold *values* with ``lattice.join``; empty input gives untainted."""
    return reduce(lattice.join, values, lattice.untainted())


# ═══════════════════════════════════════════════════════════════════════════
#  PART 2 — CONCRETE LATTICES
# ═══════════════════════════════════════════════════════════════════════════

class BooleanLattice:
    """Two-point lattice  False ⊑ True.

    The cheapest instantiation: it answers *whether* a value is tainted
    but not *by what*.
    """

    name = "boolean"

    def untainted(self) -> bool:
        return False

    def join(self, a: bool, b: bool) -> bool:
        return bool(a) or bool(b)

    def is_tainted(self, value: bool) -> bool:
        return bool(value)

    def lift(self, labels: Iterable[str]) -> bool:
        return any(True for _ in labels)

    def __repr__(self) -> str:
        return "BooleanLattice()"


class SourceSetLattice:
    """Powerset lattice over source labels, ordered by inclusion.

    Join is set union, so a value remembers every source it was derived
    from.  Sink reports then name the offending sources.
    """

    name = "labels"

    def untainted(self) -> FrozenSet[str]:
        return frozenset()

    def join(self, a: FrozenSet[str], b: FrozenSet[str]) -> FrozenSet[str]:
        if not a:
            return b
        if not b:
            return a
        return a | b

    def is_tainted(self, value: FrozenSet[str]) -> bool:
        return bool(value)

    def lift(self, labels: Iterable[str]) -> FrozenSet[str]:
        return frozenset(labels)

    def __repr__(self) -> str:
        return "SourceSetLattice()"


LATTICES: Dict[str, Type] = {
    BooleanLattice.name: BooleanLattice,
    SourceSetLattice.name: SourceSetLattice,
}


def make_lattice(name: str) -> TaintLattice:
    """Instantiate the lattice registered under *name*.

    Raises ``KeyError`` for an unknown name; callers that take the name
    from user input translate that into a ``ConfigError``.
    """
    return LATTICES[name]()
