#!/usr/bin/env python3
"""taintvm/cli.py — command-line driver for the taint machine.

Usage examples
--------------
    # Replay a recorded trace and report tainted sinks
    taintvm run trace.sexp --source userInput --sink output

    # Same, with sources/sinks from a JSON file and label tracking
    taintvm run trace.sexp --config taint.json --lattice labels --format json

    # List the built-ins that have a native model
    taintvm models

    # Show version and exit
    taintvm --version

Exit codes
----------
    0   Success, no sink received taint.
    1   At least one sink is tainted or a tainted flow reached a sink.
    2   Infrastructure failure (missing file, malformed trace, bad config).

The module doubles as ``python -m taintvm`` via ``taintvm/__main__.py``.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, TextIO

from taintvm import __version__
from taintvm.config import DEFAULT_LATTICE, MachineOptions, load_options
from taintvm.errors import ConfigError, TraceError
from taintvm.lattice import LATTICES
from taintvm.machine import FlowRecord, TaintMachine
from taintvm.native import registered_models
from taintvm.trace import load_trace, replay

_log = logging.getLogger("taintvm")

# Exit codes ----------------------------------------------------------------

EXIT_OK: int = 0
EXIT_TAINTED: int = 1
EXIT_INFRA: int = 2


# ===========================================================================
# Utility helpers
# ===========================================================================

def _configure_logging(verbosity: int) -> None:
    """Set up the ``taintvm`` logger.

    Parameters
    ----------
    verbosity:
        0 → WARNING, 1 → INFO, 2+ → DEBUG.
    """
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s [%(levelname)-5.5s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    root = logging.getLogger("taintvm")
    root.setLevel(level)
    # replace the stream handler of an earlier main() in this process
    for old in [h for h in root.handlers if isinstance(h, logging.StreamHandler)]:
        root.removeHandler(old)
    root.addHandler(handler)


def _open_output(dest: Optional[str]) -> TextIO:
    """``None`` or ``"-"`` → stdout; otherwise open *dest* for writing."""
    if dest is None or dest == "-":
        return sys.stdout
    p = Path(dest).expanduser().resolve()
    p.parent.mkdir(parents=True, exist_ok=True)
    return open(p, "w", encoding="utf-8")


def _taint_json(value: Any) -> Any:
    if isinstance(value, (frozenset, set)):
        return sorted(value)
    return value


def _flow_json(flow: Any) -> Dict[str, Any]:
    if isinstance(flow, FlowRecord):
        loc = flow.description.location
        return {
            "sink": flow.sink,
            "taint": _taint_json(flow.taint),
            "location": str(loc) if loc is not None else None,
        }
    return {"flow": str(flow)}


def _emit_report(machine: TaintMachine, fmt: str, stream: TextIO) -> None:
    tainted = machine.get_taint()
    if fmt == "json":
        report = {
            "tainted_sinks": tainted,
            "sink_taints": {s: _taint_json(machine.variables.get(s, machine.untainted()))
                            for s in tainted},
            "flows": [_flow_json(f) for f in machine.flows],
            "stack_depth": machine.stack_depth,
        }
        stream.write(json.dumps(report, indent=2) + "\n")
        return

    for sink in tainted:
        taint = machine.variables.get(sink, machine.untainted())
        stream.write(f"tainted sink: {sink} ({_taint_json(taint)!r})\n")
    for flow in machine.flows:
        stream.write(f"flow: {flow}\n")
    stream.write(f"\n--- {len(tainted)} tainted sink(s), "
                 f"{len(machine.flows)} flow(s) ---\n")


# ===========================================================================
# Sub-commands
# ===========================================================================

def cmd_run(args: argparse.Namespace) -> int:
    try:
        options = load_options(args.config) if args.config else MachineOptions()
        options = options.merged(args.source or (), args.sink or (), args.lattice)
        events = load_trace(args.trace)
    except (ConfigError, TraceError) as exc:
        _log.error("%s", exc)
        return EXIT_INFRA

    _log.info("replaying %s: %d event(s), %d source(s), %d sink(s), lattice=%s",
              args.trace, len(events), len(options.sources), len(options.sinks),
              options.lattice)

    machine = TaintMachine.from_options(options)
    try:
        replay(machine, events)
    except TraceError as exc:
        _log.error("%s: %s", args.trace, exc)
        return EXIT_INFRA

    stream = _open_output(args.output)
    try:
        _emit_report(machine, args.format, stream)
    finally:
        if stream is not sys.stdout:
            stream.close()

    if machine.get_taint() or machine.flows:
        return EXIT_TAINTED
    return EXIT_OK


def cmd_models(args: argparse.Namespace) -> int:
    for name in registered_models():
        sys.stdout.write(name + "\n")
    return EXIT_OK


# ===========================================================================
# Argument parser
# ===========================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="taintvm",
        description="Replay program event traces through a taint abstract machine.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="count", default=0,
                        help="increase log verbosity (-v info, -vv debug)")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="replay a trace and report tainted sinks")
    run.add_argument("trace", help="S-expression trace file")
    run.add_argument("--source", action="append", metavar="NAME",
                     help="name always treated as tainted (repeatable)")
    run.add_argument("--sink", action="append", metavar="NAME",
                     help="name monitored for taint (repeatable)")
    run.add_argument("--config", metavar="FILE", help="JSON configuration file")
    run.add_argument("--lattice", choices=sorted(LATTICES), default=None,
                     help=f"taint lattice (default: {DEFAULT_LATTICE})")
    run.add_argument("--format", choices=("summary", "json"), default="summary")
    run.add_argument("-o", "--output", metavar="FILE", help="write report to FILE")
    run.set_defaults(func=cmd_run)

    models = sub.add_parser("models", help="list built-ins with a native model")
    models.set_defaults(func=cmd_models)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
