#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Conversions, signatures, returns and concurrency boundaries."""

import pytest

from relaxck.core.diagnostics import DiagnosticKind
from relaxck.heap import ProgramGraphError
from relaxck.parser import parse_program
from relaxck.relaxed_check_pass import RelaxedChecker

PRELUDE = """
struct Node { next: &mut Node; back: &Node; value: Int; }
struct Box { item: &mut Node; }
"""


def _rules(src: str):
	result = RelaxedChecker(parse_program(PRELUDE + src)).check_program()
	return [(d.kind, d.rule) for d in result.diagnostics]


def test_relaxed_never_becomes_exclusive():
	src = """
fn f() {
	arena ar;
	let a = ar.alloc(Node);
	let x = a as mut;
}
"""
	assert _rules(src) == [(DiagnosticKind.KIND_MISMATCH, "relaxed-to-exclusive")]


def test_relaxed_weak_cannot_convert_to_shared():
	src = """
fn f() {
	arena ar;
	let a = ar.alloc(Node);
	let w = a.back;
	let s = w as shared;
}
"""
	assert _rules(src) == [(DiagnosticKind.KIND_MISMATCH, "forbidden-conversion")]


def test_exclusive_to_relaxed_tags_source_multiplied():
	src = """
fn f() {
	arena ar;
	let x: &mut Node = ar.alloc(Node);
	let r = x as relaxed;
	let y = &mut x;
}
"""
	assert _rules(src) == [(DiagnosticKind.KIND_MISMATCH, "exclusive-multiplied")]


def test_exclusive_to_relaxed_while_borrowed_is_ambiguous():
	src = """
fn f() {
	arena ar;
	let x: &mut Node = ar.alloc(Node);
	let s = &x;
	let r = x as relaxed;
}
"""
	assert _rules(src) == [(DiagnosticKind.ALIASING_AMBIGUITY, "convert-while-borrowed")]


def test_relaxed_kinds_rejected_in_signatures():
	src = """
fn f(n: &relaxed Node) { }
fn g() -> &weak Node { }
"""
	assert _rules(src) == [
		(DiagnosticKind.CALL_BOUNDARY_VIOLATION, "relaxed-parameter"),
		(DiagnosticKind.CALL_BOUNDARY_VIOLATION, "relaxed-return"),
	]


def test_argument_kinds_checked_against_known_callee():
	src = """
fn claim(n: &mut Node) { }
fn f() {
	arena ar;
	let s: &Node = ar.alloc(Node);
	claim(s);
	let x: &mut Node = ar.alloc(Node);
	let r = x as relaxed;
	claim(x);
}
"""
	assert _rules(src) == [
		(DiagnosticKind.KIND_MISMATCH, "argument-kind"),
		(DiagnosticKind.KIND_MISMATCH, "exclusive-multiplied"),
	]


def test_arity_mismatch_is_a_graph_error():
	src = """
fn claim(n: &mut Node) { }
fn f() {
	claim();
}
"""
	with pytest.raises(ProgramGraphError):
		_rules(src)


def test_return_as_shared_from_caller_arena_is_accepted():
	src = """
fn build(ar: Arena) -> &Node {
	let a = ar.alloc(Node);
	let b = ar.alloc(Node);
	a.next = b;
	b.next = a;
	return a;
}
"""
	assert _rules(src) == []


def test_return_as_shared_from_local_arena_outlives_it():
	src = """
fn build() -> &Node {
	arena ar;
	let a = ar.alloc(Node);
	return a;
}
"""
	assert _rules(src) == [(DiagnosticKind.CALL_BOUNDARY_VIOLATION, "converted-outlives-arena")]


def test_relaxed_return_without_shared_declaration():
	src = """
fn leak(ar: Arena) {
	let a = ar.alloc(Node);
	return a;
}

fn grab(ar: Arena) -> &mut Node {
	let a = ar.alloc(Node);
	return a;
}
"""
	assert _rules(src) == [
		(DiagnosticKind.CALL_BOUNDARY_VIOLATION, "relaxed-return"),
		(DiagnosticKind.KIND_MISMATCH, "relaxed-to-exclusive"),
	]


def test_spawn_and_send_reject_relaxed_values():
	src = """
fn f(ch: Chan) {
	arena ar;
	let a = ar.alloc(Node);
	spawn worker(a);
	send ch, a;
}
"""
	assert _rules(src) == [
		(DiagnosticKind.CONCURRENCY_ESCAPE, "relaxed-crosses-thread"),
		(DiagnosticKind.CONCURRENCY_ESCAPE, "relaxed-crosses-thread"),
	]


def test_spawn_rejects_multiplied_exclusive():
	src = """
fn f() {
	arena ar;
	let x: &mut Node = ar.alloc(Node);
	let r = x as relaxed;
	spawn worker(x);
}
"""
	assert _rules(src) == [(DiagnosticKind.CONCURRENCY_ESCAPE, "multiplied-crosses-thread")]


def test_spawn_rejects_graph_reaching_relaxed_alias():
	src = """
fn f() {
	arena ar;
	let h: &mut Box = ar.alloc(Box);
	let e: &mut Node = ar.alloc(Node);
	h.item = e;
	let r = e as relaxed;
	spawn worker(h);
}
"""
	assert _rules(src) == [(DiagnosticKind.CONCURRENCY_ESCAPE, "relaxed-reachable-crosses-thread")]


def test_converted_graph_may_cross_threads():
	src = """
fn f() {
	arena ar;
	let a = ar.alloc(Node);
	let b = ar.alloc(Node);
	a.next = b;
	b.next = a;
	let s = a as shared;
	spawn worker(s);
}
"""
	assert _rules(src) == []


def test_assignment_cannot_outlive_the_arena():
	src = """
fn f(o: &Node) {
	{
		arena ar;
		let a = ar.alloc(Node);
		let s = a as shared;
		o = s;
	}
	let v = o.value;
}

fn g() {
	arena ar;
	let o: &Node = ar.alloc(Node);
	{
		let a = ar.alloc(Node);
		let s = a as shared;
		o = s;
	}
	let v = o.value;
}
"""
	assert _rules(src) == [(DiagnosticKind.CALL_BOUNDARY_VIOLATION, "converted-outlives-arena")]
