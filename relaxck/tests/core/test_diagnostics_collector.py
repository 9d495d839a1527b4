#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Diagnostic collector ordering, tagging and span helpers."""

from types import SimpleNamespace

from relaxck.core.diagnostics import CheckResult, DiagnosticCollector, DiagnosticKind
from relaxck.core.span import Span


def test_collector_tags_and_orders_by_location():
	coll = DiagnosticCollector(function="f")
	coll.error(DiagnosticKind.KIND_MISMATCH, "late", "second", Span(line=9, column=1))
	coll.error(DiagnosticKind.ALIASING_AMBIGUITY, "unknown", "no location")
	coll.error(DiagnosticKind.INTERVAL_STILL_OPEN, "early", "first", Span(line=2, column=5))
	ordered = coll.ordered()
	assert [d.rule for d in ordered] == ["early", "late", "unknown"]
	assert ordered[0].code == "IntervalStillOpen"
	assert all(d.function == "f" and d.phase == "relaxcheck" for d in ordered)
	assert coll.has_errors
	assert len(coll.of_kind(DiagnosticKind.KIND_MISMATCH)) == 1


def test_check_result_verdict():
	assert CheckResult(unit="u").passed
	coll = DiagnosticCollector()
	coll.error(DiagnosticKind.CONCURRENCY_ESCAPE, "r", "m")
	result = CheckResult(unit="u", diagnostics=coll.ordered())
	assert not result.passed
	assert result.kinds() == [DiagnosticKind.CONCURRENCY_ESCAPE]


def test_span_from_meta_and_formatting():
	meta = SimpleNamespace(empty=False, line=3, column=4, end_line=3, end_column=9)
	span = Span.from_meta(meta, "unit.rx")
	assert span.is_known()
	assert str(span) == "unit.rx:3:4"
	assert not Span.from_meta(SimpleNamespace(empty=True), "unit.rx").is_known()
	assert str(Span()) == "<unknown>"
	assert Span.from_loc(span) is span
