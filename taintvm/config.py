"""
taintvm/config.py
═════════════════

Machine configuration: which names are sources, which are sinks, and
which lattice carries taint.

A configuration file is JSON::

    {
        "sources": ["userInput", "location.hash"],
        "sinks": ["output", "eval"],
        "lattice": "labels"
    }

Command-line flags are overlaid on the file with
:meth:`MachineOptions.merged`: listed names are added, an explicit
lattice replaces the file's.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Tuple, Union

from taintvm.errors import ConfigError
from taintvm.lattice import LATTICES

logger = logging.getLogger(__name__)

DEFAULT_LATTICE = "boolean"

_KNOWN_KEYS = frozenset({"sources", "sinks", "lattice"})


@dataclass(frozen=True, slots=True)
class MachineOptions:
    sources: Tuple[str, ...] = ()
    sinks: Tuple[str, ...] = ()
    lattice: str = DEFAULT_LATTICE

    def __post_init__(self) -> None:
        if self.lattice not in LATTICES:
            raise ConfigError(
                f"unknown lattice {self.lattice!r}; choose one of {sorted(LATTICES)}")

    def merged(
        self,
        sources: Iterable[str] = (),
        sinks: Iterable[str] = (),
        lattice: Optional[str] = None,
    ) -> MachineOptions:
        return replace(
            self,
            sources=_unique(self.sources, sources),
            sinks=_unique(self.sinks, sinks),
            lattice=lattice or self.lattice,
        )


def _unique(*groups: Iterable[str]) -> Tuple[str, ...]:
    return tuple(dict.fromkeys(name for group in groups for name in group))


def _name_list(data: Dict[str, Any], key: str, path: str) -> Tuple[str, ...]:
    value = data.get(key, [])
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigError(f"'{key}' must be a list of strings", path=path)
    return _unique(value)


def options_from_dict(data: Any, path: str = "<config>") -> MachineOptions:
    if not isinstance(data, dict):
        raise ConfigError("configuration must be a JSON object", path=path)
    unknown = set(data) - _KNOWN_KEYS
    if unknown:
        raise ConfigError(f"unknown key(s): {', '.join(sorted(unknown))}", path=path)

    lattice = data.get("lattice", DEFAULT_LATTICE)
    if not isinstance(lattice, str):
        raise ConfigError("'lattice' must be a string", path=path)
    try:
        return MachineOptions(
            sources=_name_list(data, "sources", path),
            sinks=_name_list(data, "sinks", path),
            lattice=lattice,
        )
    except ConfigError as exc:
        if exc.path is None:
            raise ConfigError(str(exc), path=path) from exc
        raise


def load_options(path: Union[str, Path]) -> MachineOptions:
    """Read a JSON configuration file."""
    p = Path(path)
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigError(f"cannot read configuration: {exc}", path=str(p)) from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"invalid JSON: {exc}", path=str(p)) from exc
    options = options_from_dict(data, str(p))
    logger.debug("loaded %s: %d source(s), %d sink(s), lattice=%s",
                 p, len(options.sources), len(options.sinks), options.lattice)
    return options
