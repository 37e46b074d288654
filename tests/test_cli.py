# tests/test_cli.py
"""
Tests for the ``taintvm`` command-line driver.
"""

import json

import pytest

from taintvm import __version__
from taintvm.cli import EXIT_INFRA, EXIT_OK, EXIT_TAINTED, main
from taintvm.native import registered_models
from tests.conftest import SCENARIO_A_TRACE, SCENARIO_B_TRACE


@pytest.fixture
def trace_file(tmp_path):
    def write(text, name="trace.sexp"):
        path = tmp_path / name
        path.write_text(text, encoding="utf-8")
        return str(path)
    return write


class TestRun:

    def test_tainted_sink_exit_code(self, trace_file, capsys):
        rc = main(["run", trace_file(SCENARIO_A_TRACE),
                   "--source", "userInput", "--sink", "output"])
        assert rc == EXIT_TAINTED
        out = capsys.readouterr().out
        assert "tainted sink: output" in out
        assert "1 tainted sink(s)" in out

    def test_clean_exit_code(self, trace_file, capsys):
        rc = main(["run", trace_file(SCENARIO_B_TRACE), "--sink", "output"])
        assert rc == EXIT_OK
        assert "0 tainted sink(s)" in capsys.readouterr().out

    def test_json_report_with_labels(self, trace_file, capsys):
        rc = main(["run", trace_file(SCENARIO_A_TRACE), "--source", "userInput",
                   "--sink", "output", "--lattice", "labels", "--format", "json"])
        assert rc == EXIT_TAINTED
        report = json.loads(capsys.readouterr().out)
        assert report["tainted_sinks"] == ["output"]
        assert report["sink_taints"] == {"output": ["userInput"]}
        assert report["flows"] == []
        assert report["stack_depth"] == 2

    def test_flow_into_sink_builtin(self, trace_file, capsys):
        text = '(push false) (read-var "userInput") (native "log" none 1 none (at "a.js" 2 0))'
        rc = main(["run", trace_file(text), "--source", "userInput", "--sink", "log",
                   "--format", "json"])
        assert rc == EXIT_TAINTED
        report = json.loads(capsys.readouterr().out)
        assert report["tainted_sinks"] == []
        assert report["flows"] == [{"sink": "log", "taint": True, "location": "a.js:2:0"}]

    def test_config_file(self, trace_file, tmp_path):
        config = tmp_path / "taint.json"
        config.write_text(json.dumps({"sources": ["userInput"], "sinks": ["output"]}),
                          encoding="utf-8")
        rc = main(["run", trace_file(SCENARIO_A_TRACE), "--config", str(config)])
        assert rc == EXIT_TAINTED

    def test_output_file(self, trace_file, tmp_path):
        dest = tmp_path / "reports" / "out.json"
        rc = main(["run", trace_file(SCENARIO_A_TRACE), "--source", "userInput",
                   "--sink", "output", "--format", "json", "-o", str(dest)])
        assert rc == EXIT_TAINTED
        assert json.loads(dest.read_text(encoding="utf-8"))["tainted_sinks"] == ["output"]

    def test_missing_trace(self, tmp_path):
        assert main(["run", str(tmp_path / "absent.sexp")]) == EXIT_INFRA

    def test_malformed_trace(self, trace_file):
        assert main(["run", trace_file("(push false) (teleport)")]) == EXIT_INFRA

    @pytest.mark.parametrize("text", [
        '(push false) (native "defineProperty" none 3 5)',
        '(push false) (push false) (native "push" (obj 1) 1 none method)',
    ])
    def test_malformed_native_record(self, trace_file, text):
        assert main(["run", trace_file(text), "--sink", "output"]) == EXIT_INFRA

    def test_bad_config(self, trace_file, tmp_path):
        config = tmp_path / "taint.json"
        config.write_text('{"lattice": "provenance"}', encoding="utf-8")
        rc = main(["run", trace_file(SCENARIO_A_TRACE), "--config", str(config)])
        assert rc == EXIT_INFRA


class TestModels:

    def test_lists_registered_models(self, capsys):
        assert main(["models"]) == EXIT_OK
        assert capsys.readouterr().out.split() == registered_models()


class TestParser:

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as info:
            main(["--version"])
        assert info.value.code == 0
        assert __version__ in capsys.readouterr().out

    def test_command_required(self):
        with pytest.raises(SystemExit) as info:
            main([])
        assert info.value.code == 2

    def test_unknown_lattice_rejected(self, trace_file):
        with pytest.raises(SystemExit):
            main(["run", trace_file(SCENARIO_A_TRACE), "--lattice", "provenance"])
