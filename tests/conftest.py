# tests/conftest.py
"""
Shared fixtures, helpers and trace snippets for the taintvm test-suite.
"""

import pytest

from taintvm.analysis import AnalysisContext
from taintvm.descriptions import ShadowId, SourceLocation, StaticDescription
from taintvm.lattice import SourceSetLattice
from taintvm.machine import TaintMachine


# ── Fixtures ─────────────────────────────────────────────────────

@pytest.fixture
def machine():
    """Boolean machine with one source and two sinks."""
    return TaintMachine(sources={"userInput"}, sinks=["output", "log"])


@pytest.fixture
def labels_machine():
    """Source-set machine with two sources and one sink."""
    return TaintMachine(
        sources={"userInput", "cookie"},
        sinks=["output"],
        lattice=SourceSetLattice(),
    )


@pytest.fixture
def context():
    return AnalysisContext()


# ── Helpers ──────────────────────────────────────────────────────

ARR = ShadowId(1)
OBJ = ShadowId(2)
DESC = ShadowId(3)


def builtin(name, file="app.js", line=1):
    return StaticDescription(name, SourceLocation(file, line, 0))


def push_native_operands(machine, builtin_taint, arg_taints, receiver_taint=None):
    """Lay out a builtin call the way the generic convention expects."""
    machine.push(builtin_taint)
    for t in arg_taints:
        machine.push(t)
    if receiver_taint is not None:
        machine.push(receiver_taint)


def call_function(machine, function_taint, arg_taints, params, body=None,
                  name="f"):
    """Drive a complete direct call ``f(args...)`` with formals *params*.

    *body* runs after parameter binding and must leave exactly one value
    on the stack for ``function_return``; by default the first formal is
    returned.
    """
    machine.push(function_taint)
    for t in arg_taints:
        machine.push(t)
    machine.function_enter(StaticDescription(name))
    machine.function_call(len(params), len(arg_taints))
    for p in params:
        machine.init_var(p)
    if body is not None:
        body(machine)
    elif params:
        machine.read_var(params[0])
    else:
        machine.push(machine.untainted())
    machine.function_return()
    machine.function_exit()


# ── Trace snippets ───────────────────────────────────────────────

SCENARIO_A_TRACE = """
; Scenario A: source flows through a temporary into the sink
(read-var "userInput")
(write-var "temp")
(read-var "temp")
(write-var "output")
(end)
"""

SCENARIO_B_TRACE = """
(trace
  (push false)
  (write-var "output")
  (end))
"""

SCENARIO_C_TRACE = """
; arr.push(a, b) where arr had length 2
(push false)                      ; the push builtin itself
(read-var "userInput")            ; a
(read-var "userInput")            ; b
(push false)                      ; receiver arr
(native "push" (obj 1) 2 2 method (at "app.js" 3 1))
(pop)
(read-prop (obj 1) 3)
(write-var "output")
(end)
"""

CALL_TRACE = """
; f.call(thisArg, secret) where f returns its first parameter
(push false)                      ; the call builtin
(push false)                      ; thisArg
(read-var "userInput")            ; secret
(push false)                      ; receiver f
(native "call" "f" 2 "f" method)
(function-enter "f")
(function-call 1 1)
(init-var "x")
(read-var "x")
(function-return)
(function-exit)
(write-var "output")
(end)
"""
