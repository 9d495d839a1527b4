# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
relaxck command-line driver.

source file(s) -> parse_program (lark) -> RIR -> RelaxedChecker -> diagnostics

With --json, prints one structured payload (`exit_code` plus diagnostics with
kind/rule/phase/message/severity/file/line/column); otherwise prints
human-readable diagnostics to stderr. Exit code is 1 when any unit fails.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from lark.exceptions import UnexpectedInput

from relaxck.config import CheckerOptions
from relaxck.core.diagnostics import CheckResult, Diagnostic
from relaxck.core.span import Span
from relaxck.heap import ProgramGraphError
from relaxck.parser import parse_program
from relaxck.relaxed_check_pass import RelaxedChecker

logger = logging.getLogger(__name__)


def check_source(
	source: str,
	*,
	filename: Optional[str] = None,
	options: Optional[CheckerOptions] = None,
) -> CheckResult:
	"""
	Parse and check one unit of source text.

	Front-end failures are not swallowed: lark's `UnexpectedInput` and
	`ProgramGraphError` propagate to the caller.
	"""
	program = parse_program(source, filename=filename)
	return RelaxedChecker(program, options or CheckerOptions()).check_program()


def _front_end_diagnostic(exc: Exception, phase: str, source: Path) -> Diagnostic:
	if isinstance(exc, ProgramGraphError):
		span = exc.loc if exc.loc.file is not None else Span(
			file=str(source),
			line=exc.loc.line,
			column=exc.loc.column,
		)
		return Diagnostic(message=str(exc), phase=phase, span=span)
	line = getattr(exc, "line", None)
	column = getattr(exc, "column", None)
	first_line = str(exc).strip().splitlines()[0] if str(exc).strip() else type(exc).__name__
	return Diagnostic(
		message=f"syntax error: {first_line}",
		phase=phase,
		span=Span(file=str(source), line=line if isinstance(line, int) and line > 0 else None, column=column),
	)


def _check_file(path: Path, options: CheckerOptions) -> List[Diagnostic]:
	text = path.read_text()
	try:
		program = parse_program(text, filename=str(path))
	except (UnexpectedInput, ProgramGraphError) as exc:
		return [_front_end_diagnostic(exc, "parser", path)]
	try:
		result = RelaxedChecker(program, options).check_program()
	except ProgramGraphError as exc:
		return [_front_end_diagnostic(exc, "graph", path)]
	if result.aborted_functions:
		logger.info("%s: aborted analysis of %s", path, ", ".join(result.aborted_functions))
	return result.diagnostics


def _diag_to_json(diag: Diagnostic, source: Path) -> dict:
	"""Render a Diagnostic to a structured JSON-friendly dict."""
	return {
		"kind": diag.code,
		"rule": diag.rule,
		"phase": diag.phase,
		"function": diag.function,
		"message": diag.message,
		"severity": diag.severity,
		"file": diag.span.file or str(source),
		"line": diag.span.line,
		"column": diag.span.column,
		"notes": list(diag.notes),
	}


def _build_arg_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(prog="relaxck", description="Relaxed-reference kind checker")
	parser.add_argument("source", type=Path, nargs="+", help="Path(s) to source file(s)")
	parser.add_argument("--json", action="store_true", help="Emit structured diagnostics as JSON")
	parser.add_argument(
		"--allow-finalizers",
		action="store_true",
		help="Permit finalized structs behind relaxed references",
	)
	parser.add_argument(
		"--max-fixpoint-iterations",
		type=int,
		default=None,
		help="Upper bound on phase-interval fixed-point rounds",
	)
	parser.add_argument("-v", "--verbose", action="store_true", help="Log checker progress to stderr")
	return parser


def main(argv: list[str] | None = None) -> int:
	"""Check every source file; return 1 if any of them produced an error."""
	parser = _build_arg_parser()
	args = parser.parse_args(argv)
	logging.basicConfig(
		level=logging.DEBUG if args.verbose else logging.WARNING,
		format="%(levelname)s %(name)s: %(message)s",
	)
	try:
		options = CheckerOptions.from_args(args)
	except ValueError as exc:
		parser.error(str(exc))

	payload: list[dict] = []
	exit_code = 0
	for path in args.source:
		try:
			diags = _check_file(path, options)
		except OSError as exc:
			diags = [Diagnostic(message=f"cannot read source: {exc.strerror or exc}", phase="driver", span=Span(file=str(path)))]
		if any(d.severity == "error" for d in diags):
			exit_code = 1
		if args.json:
			payload.extend(_diag_to_json(d, path) for d in diags)
		else:
			for d in diags:
				print(f"{path}:{d.span.line or '?'}:{d.span.column or '?'}: {_human(d)}", file=sys.stderr)
				for note in d.notes:
					print(f"  note: {note}", file=sys.stderr)

	if args.json:
		print(json.dumps({"exit_code": exit_code, "diagnostics": payload}))
	return exit_code


def _human(diag: Diagnostic) -> str:
	tag = f"[{diag.code}:{diag.rule}] " if diag.kind is not None else ""
	return f"{diag.severity}: {tag}{diag.message}"


if __name__ == "__main__":
	sys.exit(main())
