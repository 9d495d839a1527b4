#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Textual front end: declarations, statements and front-end errors."""

import pytest
from lark.exceptions import UnexpectedInput

from relaxck import rir as R
from relaxck.core.kinds import FieldKind, RefKind
from relaxck.heap import ProgramGraphError
from relaxck.parser import parse_program

SRC = """struct Node { next: &mut Node; back: &Node; value: Int; }
struct Res finalized { value: Int; }
fn build(ar: Arena, n: &mut Node, flag: Bool) -> &Node {
	let a = ar.alloc(Node);
	let x: &mut Node = ar.alloc(Node);
	a.next = x;
	a.value = 7;
	let c = a;
	c = a;
	let v = a.value;
	let t = take a.value;
	let r = &a.back;
	let m = &mut x;
	let s = a as shared;
	drop r;
	if flag {
		spawn worker(s);
	} else {
		let y = consume(s, 3);
	}
	{
		arena inner;
	}
	return s;
}
"""


def test_structs_record_field_kinds_and_finalizers():
	prog = parse_program(SRC, filename="unit.rx")
	node = prog.structs["Node"]
	assert [f.name for f in node.fields.values()] == ["next", "back", "value"]
	assert node.fields["next"].kind is FieldKind.EXCLUSIVE_REF
	assert node.fields["back"].kind is FieldKind.SHARED_REF
	assert node.fields["value"].kind is FieldKind.VALUE
	assert node.fields["value"].type_name == "Int"
	assert not node.finalized
	assert prog.structs["Res"].finalized


def test_function_signature():
	prog = parse_program(SRC)
	fn = prog.function("build")
	assert fn is not None
	assert [(p.name, p.kind, p.type_name) for p in fn.params] == [
		("ar", None, "Arena"),
		("n", RefKind.EXCLUSIVE, "Node"),
		("flag", None, "Bool"),
	]
	assert fn.params[0].is_arena and not fn.params[2].is_arena
	assert fn.return_kind is RefKind.SHARED
	assert fn.return_type == "Node"


def test_statement_nodes():
	fn = parse_program(SRC).function("build")
	stmts = fn.body.statements
	assert [type(s) for s in stmts] == [
		R.RAlloc,
		R.RAlloc,
		R.RFieldWrite,
		R.RFieldWrite,
		R.RCopy,
		R.RAssign,
		R.RFieldRead,
		R.RExtract,
		R.RBorrow,
		R.RBorrow,
		R.RConvert,
		R.RDrop,
		R.RIf,
		R.RBlock,
		R.RReturn,
	]
	assert stmts[0].kind is RefKind.RELAXED
	assert stmts[1].kind is RefKind.EXCLUSIVE
	assert stmts[2].value == R.RVar(name="x", loc=stmts[2].value.loc)
	assert isinstance(stmts[3].value, R.RLit) and stmts[3].value.value == 7
	assert stmts[8].field_name == "back" and not stmts[8].is_mut
	assert stmts[9].field_name is None and stmts[9].is_mut
	assert stmts[10].kind is RefKind.SHARED
	branch = stmts[12]
	assert branch.cond == "flag"
	assert isinstance(branch.then_block.statements[0], R.RSpawn)
	call = branch.else_block.statements[0]
	assert isinstance(call, R.RCall)
	assert call.callee == "consume" and call.result == "y"
	assert isinstance(call.args[1], R.RLit)
	assert isinstance(stmts[13].statements[0], R.RArenaDecl)
	assert stmts[14].value == "s"


def test_statement_spans_follow_source_lines():
	fn = parse_program(SRC, filename="unit.rx").function("build")
	first = fn.body.statements[0]
	assert first.loc.file == "unit.rx"
	assert first.loc.line == 4
	assert fn.body.statements[-1].loc.line == 24
	assert fn.loc.line == 3


def test_conversion_keywords():
	src = """
fn f(ar: Arena) {
	let a: &mut Node = ar.alloc(Node);
	let r = a as relaxed;
	let w = r as weak;
	let e = r as mut;
}
"""
	stmts = parse_program(src).function("f").body.statements
	assert [s.kind for s in stmts[1:]] == [RefKind.RELAXED, RefKind.RELAXED_WEAK, RefKind.EXCLUSIVE]


def test_send_and_bare_return():
	src = """
fn f(ch: Chan, v: Int) {
	send ch, v;
	return;
}
"""
	stmts = parse_program(src).function("f").body.statements
	assert stmts[0] == R.RSend(channel="ch", value=stmts[0].value, loc=stmts[0].loc)
	assert stmts[0].value.name == "v"
	assert stmts[1].value is None


def test_syntax_error_is_a_lark_error():
	with pytest.raises(UnexpectedInput):
		parse_program("fn f( {")


@pytest.mark.parametrize(
	"src",
	[
		"struct A { x: Int; }\nstruct A { y: Int; }",
		"struct A { x: &relaxed A; }",
		"struct A { x: Int; x: Int; }",
		"fn f() { }\nfn f() { }",
		"struct A { x: Int; }\nfn f(ar: Arena) { let a: &B = ar.alloc(A); }",
		"fn f(n: &Node) { let a: &Node = n; }",
	],
)
def test_malformed_graph_raises(src):
	with pytest.raises(ProgramGraphError):
		parse_program(src)
