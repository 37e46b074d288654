"""
taintvm/descriptions.py
═══════════════════════

Metadata attached to events.

``StaticDescription``
    Immutable call-site / builtin metadata (name and location).  It rides
    along with stack entries and flow reports but never carries taint.

``ShadowId``
    Stable identity of a program object, assigned by
    :class:`taintvm.shadow.ShadowMemory` on first sight.  Shadow records
    are keyed by ``ShadowId`` only, never by an object's contents.

``DynamicDescription``
    A runtime-resolved name: a variable name (``str``) or an object
    identity (``ShadowId``).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union


@dataclass(frozen=True, slots=True)
class SourceLocation:
    """A position in the observed program's source."""

    file: str
    line: int = 0
    column: int = 0

    def __str__(self) -> str:
        return f"{self.file}:{self.line}:{self.column}"


@dataclass(frozen=True, slots=True)
class StaticDescription:
    name: str
    location: Optional[SourceLocation] = None

    def __str__(self) -> str:
        if self.location is None:
            return self.name
        return f"{self.name} @ {self.location}"


@dataclass(frozen=True, slots=True)
class ShadowId:
    value: int

    def __str__(self) -> str:
        return f"obj#{self.value}"


DynamicDescription = Union[str, ShadowId]
