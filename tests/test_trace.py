# tests/test_trace.py
"""
Tests for the S-expression trace format and replay.
"""

import pytest

from taintvm.descriptions import ShadowId, SourceLocation, StaticDescription
from taintvm.errors import TraceError
from taintvm.lattice import SourceSetLattice
from taintvm.machine import TaintMachine
from taintvm.native.models import ApplyTarget, PropertyDefinition
from taintvm.trace import (
    LITERAL_LABEL,
    TaintLiteral,
    TraceEvent,
    dump_trace,
    load_trace,
    parse_trace,
    replay,
)
from tests.conftest import (
    CALL_TRACE,
    SCENARIO_A_TRACE,
    SCENARIO_B_TRACE,
    SCENARIO_C_TRACE,
)


def run(text, sources=("userInput",), sinks=("output",), **kwargs):
    machine = TaintMachine(sources=sources, sinks=sinks, **kwargs)
    return replay(machine, parse_trace(text))


class TestParse:

    def test_scenario_a_events(self):
        events = parse_trace(SCENARIO_A_TRACE)
        assert events == [
            TraceEvent("read_var", ("userInput",)),
            TraceEvent("write_var", ("temp",)),
            TraceEvent("read_var", ("temp",)),
            TraceEvent("write_var", ("output",)),
            TraceEvent("end_execution"),
        ]

    def test_trace_wrapper(self):
        events = parse_trace(SCENARIO_B_TRACE)
        assert [e.op for e in events] == ["push", "write_var", "end_execution"]
        assert events[0].args == (TaintLiteral(),)

    def test_empty_trace(self):
        assert parse_trace("") == []
        assert parse_trace("; nothing here\n") == []

    @pytest.mark.parametrize("text,literal", [
        ("(push false)", TaintLiteral()),
        ("(push untainted)", TaintLiteral()),
        ("(push true)", TaintLiteral((LITERAL_LABEL,))),
        ("(push tainted)", TaintLiteral((LITERAL_LABEL,))),
        ('(push (taint "cookie" "url"))', TaintLiteral(("cookie", "url"))),
    ])
    def test_taint_literals(self, text, literal):
        (event,) = parse_trace(text)
        assert event.args == (literal,)

    def test_property_forms(self):
        read, write = parse_trace('(read-prop (obj 4) "k") (write-prop (obj 4) 0)')
        assert read == TraceEvent("read_property", (ShadowId(4), "k"))
        assert write == TraceEvent("write_property", (ShadowId(4), 0))

    def test_function_enter_location(self):
        (event,) = parse_trace('(function-enter "f" (at "app.js" 10 2))')
        assert event.args == (StaticDescription("f", SourceLocation("app.js", 10, 2)),)

    def test_native_form(self):
        line = next(l for l in SCENARIO_C_TRACE.splitlines() if l.startswith("(native"))
        (event,) = parse_trace(line)
        name, receiver, actual, record, is_method, desc = event.args
        assert event.op == "invoke_native"
        assert (name, receiver, actual, record, is_method) == ("push", ShadowId(1), 2, 2, True)
        assert desc == StaticDescription("push", SourceLocation("app.js", 3, 1))

    def test_native_list_record(self):
        (event,) = parse_trace('(native "defineProperty" none 3 (list (obj 2) "k" (obj 3)))')
        record = event.args[3]
        assert PropertyDefinition(*record) == PropertyDefinition(ShadowId(2), "k", ShadowId(3))
        assert event.args[4] is False


class TestErrors:

    def test_unknown_form_reports_index(self):
        with pytest.raises(TraceError) as info:
            parse_trace("(push false)\n(teleport)\n")
        assert info.value.index == 1
        assert str(info.value).startswith("event 1:")

    @pytest.mark.parametrize("text", [
        "(read-var)",
        '(read-var "a" "b")',
        '(function-call 1 "two")',
        '(read-prop 4 "k")',
        "(push maybe)",
        "42",
        "()",
        '(native "push" (obj 1) 2)',
        '(native "push" (obj 1) 2 2 static)',
    ])
    def test_malformed(self, text):
        with pytest.raises(TraceError):
            parse_trace(text)

    def test_unbalanced_parens(self):
        with pytest.raises(TraceError):
            parse_trace("(push false")

    def test_missing_file(self, tmp_path):
        with pytest.raises(TraceError):
            load_trace(tmp_path / "absent.sexp")


class TestReplay:

    def test_scenario_a(self):
        assert run(SCENARIO_A_TRACE).get_taint() == ["output"]

    def test_scenario_b(self):
        assert run(SCENARIO_B_TRACE, sources=()).get_taint() == []

    def test_scenario_c(self):
        machine = run(SCENARIO_C_TRACE)
        assert machine.get_taint() == ["output"]
        assert machine.stack_depth == 1

    def test_call_through_builtin(self):
        machine = run(CALL_TRACE)
        assert machine.get_taint() == ["output"]
        assert machine.stack_depth == 1
        assert len(machine.callstack) == 0

    def test_apply_through_builtin(self):
        text = """
        (push false) (push false) (read-var "userInput") (write-prop (obj 9) 0)
        (push false) (push false)
        (native "apply" "f" 2 (list "f" (obj 9) 1) method)
        (function-enter "f") (function-call 1 1) (init-var "x")
        (read-var "x") (function-return) (function-exit)
        (write-var "output")
        """
        machine = run(text)
        assert machine.get_taint() == ["output"]
        assert machine.stack_depth == 1

    def test_push_without_receiver_leaves_objects_clean(self):
        text = """
        (push false) (read-var "userInput") (push false)
        (native "push" none 1 0 method) (pop)
        (read-prop (obj 1) 0) (write-var "output")
        """
        assert run(text).get_taint() == []

    def test_malformed_native_record_reports_index(self):
        with pytest.raises(TraceError) as info:
            run('(push false) (native "push" (obj 1) 0 none method)')
        assert info.value.index == 1
        assert str(info.value).startswith("event 1:")

    def test_labels_from_literals(self):
        machine = run('(push (taint "url")) (write-var "output")', sources=(),
                      lattice=SourceSetLattice())
        assert machine.get_taint() == ["output"]
        assert machine.variables.get("output", None) == frozenset({"url"})

    def test_load_trace_from_file(self, tmp_path):
        path = tmp_path / "a.sexp"
        path.write_text(SCENARIO_A_TRACE, encoding="utf-8")
        machine = replay(TaintMachine({"userInput"}, ["output"]), load_trace(path))
        assert machine.get_taint() == ["output"]


class TestDump:

    def test_round_trip(self):
        for text in (SCENARIO_A_TRACE, SCENARIO_C_TRACE, CALL_TRACE):
            events = parse_trace(text)
            assert parse_trace(dump_trace(events)) == events

    def test_apply_record_round_trip(self):
        event = TraceEvent("invoke_native", (
            "apply", "f", 2, ("f", ShadowId(9), 1), True, StaticDescription("apply")))
        (parsed,) = parse_trace(dump_trace([event]))
        assert ApplyTarget(*parsed.args[3]) == ApplyTarget("f", ShadowId(9), 1)

    def test_unknown_op(self):
        with pytest.raises(TraceError):
            dump_trace([TraceEvent("teleport")])
