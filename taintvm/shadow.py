"""
taintvm/shadow.py
═════════════════

Shadow memory: per-object taint records kept out of band.

    ┌──────────────┐  shadow_id(obj)  ┌──────────┐   records[id]   ┌──────────────┐
    │ program obj  │ ───────────────► │ ShadowId │ ──────────────► │ ShadowObject │
    └──────────────┘   (side-table)   └──────────┘                 │ key → taint  │
                                                                   └──────────────┘

``ShadowMemory`` is the identity side-table.  Python objects are mapped
by ``id()``, and a strong reference is held so that the id cannot be
recycled by another object while the analysis runs.  Two structurally
equal objects therefore get two distinct shadows.

``ShadowObjectStore`` owns the records.  A record is created lazily the
first time it is written or explicitly requested.
"""

from __future__ import annotations

import logging
from typing import (
    Any,
    Dict,
    Generic,
    Iterator,
    Optional,
    Tuple,
    TypeVar,
)

from taintvm.descriptions import ShadowId

logger = logging.getLogger(__name__)

V = TypeVar("V")


def property_key(key: Any) -> str:
    """Normalise a property key: ``a[3]`` and ``a["3"]`` share a slot."""
    return key if isinstance(key, str) else str(key)


class ShadowMemory:
    """Assigns stable ``ShadowId`` values to objects on first sight.

    One table is shared by the recording context and the machine that
    replays its records, so an id names the same object in both phases.
    Ids handed in from outside (a trace's ``(obj N)``) are never
    generated again for another object.
    """

    def __init__(self) -> None:
        self._ids: Dict[int, Tuple[Any, ShadowId]] = {}
        self._next = 1

    def shadow_id(self, obj: Any) -> ShadowId:
        if isinstance(obj, ShadowId):
            self._next = max(self._next, obj.value + 1)
            return obj
        entry = self._ids.get(id(obj))
        if entry is not None:
            return entry[1]
        sid = ShadowId(self._next)
        self._next += 1
        # keep obj alive so id(obj) stays unique
        self._ids[id(obj)] = (obj, sid)
        logger.debug("shadow id %s assigned to %s", sid, type(obj).__name__)
        return sid

    def has_id(self, obj: Any) -> bool:
        return isinstance(obj, ShadowId) or id(obj) in self._ids

    def __len__(self) -> int:
        return len(self._ids)


class ShadowObject(Generic[V]):
    """Property key → taint record for one object."""

    __slots__ = ("_slots",)

    def __init__(self) -> None:
        self._slots: Dict[str, V] = {}

    def get(self, key: Any, default: Optional[V] = None) -> Optional[V]:
        return self._slots.get(property_key(key), default)

    def __getitem__(self, key: Any) -> V:
        return self._slots[property_key(key)]

    def __setitem__(self, key: Any, value: V) -> None:
        self._slots[property_key(key)] = value

    def __contains__(self, key: Any) -> bool:
        return property_key(key) in self._slots

    def __len__(self) -> int:
        return len(self._slots)

    def element_values(self) -> Iterator[V]:
        """Taints stored under array-index keys, in index order."""
        # canonical indices only: "01" and "²" are plain property names
        indices = sorted(int(k) for k in self._slots
                         if k.isdecimal() and str(int(k)) == k)
        for i in indices:
            yield self._slots[str(i)]

    def __repr__(self) -> str:
        return f"ShadowObject({self._slots!r})"


class ShadowObjectStore(Generic[V]):
    """Identity-keyed mapping from objects to their ``ShadowObject``."""

    def __init__(self, memory: Optional[ShadowMemory] = None) -> None:
        self.memory = memory if memory is not None else ShadowMemory()
        self._records: Dict[ShadowId, ShadowObject[V]] = {}

    def lookup(self, obj: Any) -> Optional[ShadowObject[V]]:
        """The record for *obj*, or ``None`` if it was never shadowed."""
        if not self.memory.has_id(obj):
            return None
        return self._records.get(self.memory.shadow_id(obj))

    def record(self, obj: Any) -> ShadowObject[V]:
        """The record for *obj*, created on first request."""
        sid = self.memory.shadow_id(obj)
        rec = self._records.get(sid)
        if rec is None:
            rec = ShadowObject()
            self._records[sid] = rec
        return rec

    def read(self, obj: Any, key: Any, default: V) -> V:
        rec = self.lookup(obj)
        if rec is None:
            return default
        return rec.get(key, default)

    def write(self, obj: Any, key: Any, value: V) -> None:
        self.record(obj)[key] = value

    def __contains__(self, obj: Any) -> bool:
        return self.lookup(obj) is not None

    def __len__(self) -> int:
        return len(self._records)
