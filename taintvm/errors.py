"""
taintvm/errors.py
═════════════════

Error hierarchy.

    TaintVMError (base)
    ├── NativeModelError   a recorder could not establish its invariant
    ├── TraceError         a serialized trace form is malformed
    └── ConfigError        a configuration file or value is invalid

Protocol violations *inside* the machine (empty-stack pops, writes with
no pending value) have no error type: the machine recovers from
them locally.
"""

from __future__ import annotations

from typing import Any, Optional


class TaintVMError(Exception):
    """Base class for every error raised by taintvm."""


class NativeModelError(TaintVMError):
    """A native model's recorder saw a value it cannot account for.

    Never caught inside taintvm.
    """

    def __init__(self, message: str, *, model: Optional[str] = None) -> None:
        super().__init__(message)
        self.model = model

    def __str__(self) -> str:
        base = super().__str__()
        return f"[{self.model}] {base}" if self.model else base


class TraceError(TaintVMError):
    """Raised when a trace form cannot be mapped to a machine event."""

    def __init__(self, message: str, *, form: Any = None, index: Optional[int] = None) -> None:
        super().__init__(message)
        self.form = form
        self.index = index

    def __str__(self) -> str:
        base = super().__str__()
        if self.index is not None:
            return f"event {self.index}: {base}"
        return base


class ConfigError(TaintVMError):
    """Raised for unreadable or ill-typed configuration."""

    def __init__(self, message: str, *, path: Optional[str] = None) -> None:
        super().__init__(message)
        self.path = path

    def __str__(self) -> str:
        base = super().__str__()
        return f"{self.path}: {base}" if self.path else base
