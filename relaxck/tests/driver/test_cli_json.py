#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Driver: exit codes and the --json payload."""

import json

from relaxck.driver import check_source, main

NODE = "struct Node { next: &mut Node; back: &Node; value: Int; }\n"


def _run_json(capsys, *argv):
	code = main([*map(str, argv), "--json"])
	payload = json.loads(capsys.readouterr().out)
	assert payload["exit_code"] == code
	return code, payload["diagnostics"]


def test_clean_unit_exits_zero(tmp_path, capsys):
	src = tmp_path / "ok.rx"
	src.write_text(NODE + "fn f() {\n\tarena ar;\n\tlet a = ar.alloc(Node);\n\tlet s = a as shared;\n}\n")
	code, diags = _run_json(capsys, src)
	assert code == 0
	assert diags == []


def test_violation_is_reported_with_kind_and_rule(tmp_path, capsys):
	src = tmp_path / "bad.rx"
	src.write_text(NODE + "fn f() {\n\tarena ar;\n\tlet a = ar.alloc(Node);\n\tlet x = a as mut;\n}\n")
	code, diags = _run_json(capsys, src)
	assert code == 1
	assert len(diags) == 1
	diag = diags[0]
	assert diag["kind"] == "KindMismatch"
	assert diag["rule"] == "relaxed-to-exclusive"
	assert diag["phase"] == "relaxcheck"
	assert diag["function"] == "f"
	assert diag["file"] == str(src)
	assert diag["line"] == 5


def test_syntax_error_reports_parser_phase(tmp_path, capsys):
	src = tmp_path / "broken.rx"
	src.write_text("fn f( {\n")
	code, diags = _run_json(capsys, src)
	assert code == 1
	assert [d["phase"] for d in diags] == ["parser"]
	assert diags[0]["kind"] is None
	assert diags[0]["message"].startswith("syntax error:")


def test_unknown_local_reports_graph_phase(tmp_path, capsys):
	src = tmp_path / "graph.rx"
	src.write_text(NODE + "fn f() {\n\tlet a = b;\n}\n")
	code, diags = _run_json(capsys, src)
	assert code == 1
	assert [d["phase"] for d in diags] == ["graph"]
	assert "unknown local 'b'" in diags[0]["message"]


def test_missing_file_reports_driver_phase(tmp_path, capsys):
	code, diags = _run_json(capsys, tmp_path / "absent.rx")
	assert code == 1
	assert [d["phase"] for d in diags] == ["driver"]


def test_human_output_goes_to_stderr(tmp_path, capsys):
	src = tmp_path / "bad.rx"
	src.write_text(NODE + "fn f() {\n\tarena ar;\n\tlet a = ar.alloc(Node);\n\tlet x = a as mut;\n}\n")
	assert main([str(src)]) == 1
	captured = capsys.readouterr()
	assert captured.out == ""
	assert "[KindMismatch:relaxed-to-exclusive]" in captured.err


def test_allow_finalizers_flag(tmp_path, capsys):
	src = tmp_path / "fin.rx"
	src.write_text("struct Res finalized { value: Int; }\nfn f() {\n\tarena ar;\n\tlet r = ar.alloc(Res);\n}\n")
	code, diags = _run_json(capsys, src)
	assert code == 1
	assert diags[0]["rule"] == "finalizer-through-relaxed"
	code, diags = _run_json(capsys, src, "--allow-finalizers")
	assert code == 0


def test_check_source_returns_result():
	result = check_source(NODE + "fn f(n: &relaxed Node) { }\n", filename="mem.rx")
	assert not result.passed
	assert [d.rule for d in result.diagnostics] == ["relaxed-parameter"]
	assert result.diagnostics[0].span.file == "mem.rx"
