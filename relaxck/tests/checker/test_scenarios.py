#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
End-to-end scenarios: cyclic graphs built through relaxed references, closed
too early, passed across calls, and kind tagging of stored values.
"""

from relaxck.config import CheckerOptions
from relaxck.core.diagnostics import DiagnosticKind
from relaxck.parser import parse_program
from relaxck.relaxed_check_pass import RelaxedChecker

NODE = """
struct Node { next: &mut Node; back: &Node; value: Int; }
"""


def _check(src: str, **opts):
	program = parse_program(NODE + src, filename="t.rx")
	return RelaxedChecker(program, CheckerOptions(**opts)).check_program()


def _line_of(src: str, needle: str) -> int:
	for idx, line in enumerate((NODE + src).splitlines(), start=1):
		if needle in line:
			return idx
	raise AssertionError(f"{needle!r} not in source")


def test_scenario_a_cycle_then_convert_is_accepted():
	src = """
fn build() {
	arena ar;
	let a = ar.alloc(Node);
	let b = ar.alloc(Node);
	a.next = b;
	b.next = a;
	let s = a as shared;
	let n = s.next;
}
"""
	result = _check(src)
	assert result.passed, [str(d) for d in result.diagnostics]


def test_scenario_a_reachable_node_is_read_only():
	src = """
fn build() {
	arena ar;
	let a = ar.alloc(Node);
	let b = ar.alloc(Node);
	a.next = b;
	b.next = a;
	let s = a as shared;
	let n = s.next;
	n.value = 1;
}
"""
	result = _check(src)
	assert [(d.kind, d.rule) for d in result.diagnostics] == [
		(DiagnosticKind.KIND_MISMATCH, "write-through-read-only"),
	]


def test_scenario_b_convert_before_back_edge_is_rejected():
	src = """
fn build() {
	arena ar;
	let a = ar.alloc(Node);
	let b = ar.alloc(Node);
	a.next = b;
	let s = a as shared;
	b.next = a;
}
"""
	result = _check(src)
	assert len(result.diagnostics) == 1
	diag = result.diagnostics[0]
	assert diag.kind is DiagnosticKind.INTERVAL_STILL_OPEN
	assert diag.rule == "use-after-phase-close"
	assert diag.span.line == _line_of(src, "b.next = a")


def test_scenario_c_relaxed_argument_is_rejected_at_call_site():
	src = """
fn consume(n: &Node) { }
fn main() {
	arena ar;
	let a = ar.alloc(Node);
	consume(a);
}
"""
	result = _check(src)
	assert [(d.kind, d.rule, d.function) for d in result.diagnostics] == [
		(DiagnosticKind.CALL_BOUNDARY_VIOLATION, "relaxed-argument", "main"),
	]
	assert result.diagnostics[0].span.line == _line_of(src, "consume(a);")


def test_scenario_d_stored_relaxed_value_cannot_be_borrowed_exclusively():
	src = """
struct Holder { item: &mut Node; }
fn tag() {
	arena ar;
	let a = ar.alloc(Node);
	let n = a.next;
	let h = ar.alloc(Holder);
	h.item = n;
	let m = &mut h.item;
}
"""
	result = _check(src)
	assert [(d.kind, d.rule) for d in result.diagnostics] == [
		(DiagnosticKind.KIND_MISMATCH, "stored-kind-relaxed"),
	]


def test_converting_an_already_frozen_member_is_accepted():
	src = """
fn build() {
	arena ar;
	let a = ar.alloc(Node);
	let b = ar.alloc(Node);
	a.next = b;
	b.back = a;
	let sa = a as shared;
	let sb = b as shared;
}
"""
	# `b` is already frozen through `a`; the second conversion changes nothing.
	assert _check(src).passed


def test_relaxed_reads_stay_relaxed_until_conversion():
	src = """
fn walk() {
	arena ar;
	let a = ar.alloc(Node);
	let b = ar.alloc(Node);
	a.next = b;
	let c = a.next;
	c.value = 3;
	let s = a as shared;
	c.value = 4;
}
"""
	result = _check(src)
	assert [(d.kind, d.rule) for d in result.diagnostics] == [
		(DiagnosticKind.INTERVAL_STILL_OPEN, "use-after-phase-close"),
	]
	assert result.diagnostics[0].span.line == _line_of(src, "c.value = 4")


def test_sibling_if_arms_do_not_see_each_others_conversion():
	src = """
fn pick(flag: Bool) {
	arena ar;
	let a = ar.alloc(Node);
	if flag {
		let s = a as shared;
	} else {
		a.value = 1;
	}
}
"""
	assert _check(src).passed


def test_use_after_if_arm_conversion_is_rejected():
	src = """
fn pick(flag: Bool) {
	arena ar;
	let a = ar.alloc(Node);
	if flag {
		let s = a as shared;
	}
	a.value = 1;
}
"""
	result = _check(src)
	assert [d.rule for d in result.diagnostics] == ["use-after-phase-close"]


def test_relaxed_alias_stored_into_converted_graph_is_closed():
	src = """
fn share() {
	arena ar;
	let a = ar.alloc(Node);
	let e: &mut Node = ar.alloc(Node);
	let r = e as relaxed;
	a.next = e;
	let s = a as shared;
	r.value = 1;
	spawn worker(s);
}
"""
	result = _check(src)
	assert [(d.kind, d.rule) for d in result.diagnostics] == [
		(DiagnosticKind.INTERVAL_STILL_OPEN, "use-after-phase-close"),
	]
	assert result.diagnostics[0].span.line == _line_of(src, "r.value = 1")


def test_write_through_alias_of_frozen_object_is_rejected():
	src = """
fn share() {
	arena ar;
	let a = ar.alloc(Node);
	let e: &mut Node = ar.alloc(Node);
	a.next = e;
	let r = e as relaxed;
	let s = a as shared;
	r.value = 1;
	let v = take r.value;
}
"""
	result = _check(src)
	assert [d.rule for d in result.diagnostics] == ["use-after-phase-close", "use-after-phase-close"]
	assert "frozen by the conversion of 'a'" in result.diagnostics[0].message
