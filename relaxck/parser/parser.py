# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Textual front end: lark parse tree -> RIR.

The grammar lives next to this file (`grammar.lark`). Building is a plain
recursive walk over the lark tree; every node gets a `Span` from the tree's
meta (positions are propagated) or from its first token.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional, Tuple

from lark import Lark, Token, Tree

from relaxck import rir as R
from relaxck.core.kinds import FieldKind, RefKind
from relaxck.core.span import Span
from relaxck.heap import ProgramGraphError

_GRAMMAR_PATH = Path(__file__).with_name("grammar.lark")
_GRAMMAR_SRC = _GRAMMAR_PATH.read_text()

_PARSER = Lark(
	_GRAMMAR_SRC,
	parser="lalr",
	lexer="basic",
	start="start",
	propagate_positions=True,
	maybe_placeholders=False,
)

# type_expr alternative -> reference kind (None for plain types)
_TYPE_KINDS: Dict[str, Optional[RefKind]] = {
	"mut_ref_type": RefKind.EXCLUSIVE,
	"shared_type": RefKind.SHARED,
	"relaxed_type": RefKind.RELAXED,
	"weak_type": RefKind.RELAXED_WEAK,
	"plain_type": None,
}

# `x as <kind>` keyword -> target kind
_AS_KINDS: Dict[str, RefKind] = {
	"MUT": RefKind.EXCLUSIVE,
	"SHARED": RefKind.SHARED,
	"RELAXED": RefKind.RELAXED,
	"WEAK": RefKind.RELAXED_WEAK,
}


def parse_program(source: str, *, filename: Optional[str] = None, name: Optional[str] = None) -> R.RProgram:
	"""
	Parse `source` into an `RProgram`.

	Grammar errors surface as lark `UnexpectedInput`; well-formed text that
	does not describe a valid graph (duplicate struct, bad field type, ...)
	raises `ProgramGraphError`.
	"""
	tree = _PARSER.parse(source)
	return _Builder(filename).program(tree, name or filename or "<unit>")


class _Builder:
	def __init__(self, filename: Optional[str]) -> None:
		self.filename = filename

	# Locations

	def loc(self, node: Tree) -> Span:
		span = Span.from_meta(node.meta, self.filename)
		if span.is_known():
			return span
		for child in node.children:
			if isinstance(child, Token):
				return self.tok_loc(child)
		return span

	def tok_loc(self, tok: Token) -> Span:
		return Span(
			file=self.filename,
			line=tok.line,
			column=tok.column,
			end_line=tok.end_line,
			end_column=tok.end_column,
		)

	# Top level

	def program(self, tree: Tree, name: str) -> R.RProgram:
		prog = R.RProgram(name=name)
		for child in tree.children:
			if not isinstance(child, Tree):
				continue
			kind = _name(child)
			if kind == "struct_def":
				decl = self.struct_def(child)
				if decl.name in prog.structs:
					raise ProgramGraphError(f"duplicate struct '{decl.name}'", loc=decl.loc)
				prog.structs[decl.name] = decl
			elif kind == "func_def":
				fn = self.func_def(child)
				if prog.function(fn.name) is not None:
					raise ProgramGraphError(f"duplicate function '{fn.name}'", loc=fn.loc)
				prog.functions.append(fn)
			else:
				raise AssertionError(f"unexpected top-level node {kind}")
		return prog

	def struct_def(self, tree: Tree) -> R.RStructDecl:
		name = _tokens(tree, "NAME")[0]
		finalized = bool(_tokens(tree, "FINALIZED"))
		decl = R.RStructDecl(name=name.value, finalized=finalized, loc=self.loc(tree))
		for node in _subtrees(tree, "field_decl"):
			field_decl = self.field_decl(node)
			if field_decl.name in decl.fields:
				raise ProgramGraphError(
					f"struct '{decl.name}' declares field '{field_decl.name}' twice",
					loc=field_decl.loc,
				)
			decl.fields[field_decl.name] = field_decl
		return decl

	def field_decl(self, tree: Tree) -> R.RFieldDecl:
		name = _tokens(tree, "NAME")[0]
		type_node = _type_node(tree)
		kind, type_name = self.type_expr(type_node)
		if kind is None:
			field_kind = FieldKind.VALUE
		elif kind is RefKind.EXCLUSIVE:
			field_kind = FieldKind.EXCLUSIVE_REF
		elif kind is RefKind.SHARED:
			field_kind = FieldKind.SHARED_REF
		else:
			raise ProgramGraphError(
				f"field '{name.value}' cannot be declared {kind.label}; use a value, &T or &mut T",
				loc=self.tok_loc(name),
			)
		return R.RFieldDecl(name=name.value, kind=field_kind, type_name=type_name, loc=self.tok_loc(name))

	def func_def(self, tree: Tree) -> R.RFunction:
		name = _tokens(tree, "NAME")[0]
		params: List[R.RParam] = []
		param_list = _first_subtree(tree, "param_list")
		if param_list is not None:
			params = [self.param(p) for p in _subtrees(param_list, "param")]
		return_kind: Optional[RefKind] = None
		return_type: Optional[str] = None
		ret = _first_subtree(tree, "ret_type")
		if ret is not None:
			return_kind, return_type = self.type_expr(_type_node(ret))
		body = _first_subtree(tree, "block")
		if body is None:
			raise AssertionError("function without body")
		return R.RFunction(
			name=name.value,
			params=params,
			return_kind=return_kind,
			return_type=return_type,
			body=self.block(body),
			loc=self.tok_loc(name),
		)

	def param(self, tree: Tree) -> R.RParam:
		name = _tokens(tree, "NAME")[0]
		kind, type_name = self.type_expr(_type_node(tree))
		return R.RParam(name=name.value, type_name=type_name, kind=kind, loc=self.tok_loc(name))

	def type_expr(self, tree: Tree) -> Tuple[Optional[RefKind], str]:
		names = _tokens(tree, "NAME")
		return _TYPE_KINDS[_name(tree)], names[-1].value

	# Statements

	def block(self, tree: Tree) -> R.RBlock:
		stmts = [self.stmt(child) for child in tree.children if isinstance(child, Tree)]
		return R.RBlock(statements=stmts, loc=self.loc(tree))

	def stmt(self, tree: Tree) -> R.RStmt:
		kind = _name(tree)
		loc = self.loc(tree)
		names = [t.value for t in _tokens(tree, "NAME")]
		if kind == "block":
			return self.block(tree)
		if kind == "arena_decl":
			return R.RArenaDecl(name=names[0], loc=loc)
		if kind == "let_stmt":
			return self.let_stmt(tree)
		if kind == "assign_stmt":
			return R.RAssign(target=names[0], source=names[1], loc=loc)
		if kind == "field_write":
			return R.RFieldWrite(
				receiver=names[0],
				field_name=names[1],
				value=self.operand(_operands(tree)[0]),
				loc=loc,
			)
		if kind == "drop_stmt":
			return R.RDrop(name=names[0], loc=loc)
		if kind == "call_stmt":
			return R.RCall(callee=names[0], args=self.args(tree), loc=loc)
		if kind == "spawn_stmt":
			return R.RSpawn(callee=names[0], args=self.args(tree), loc=loc)
		if kind == "send_stmt":
			return R.RSend(channel=names[0], value=self.operand(_operands(tree)[0]), loc=loc)
		if kind == "return_stmt":
			return R.RReturn(value=names[0] if names else None, loc=loc)
		if kind == "if_stmt":
			blocks = _subtrees(tree, "block")
			return R.RIf(
				cond=names[0],
				then_block=self.block(blocks[0]),
				else_block=self.block(blocks[1]) if len(blocks) > 1 else None,
				loc=loc,
			)
		raise AssertionError(f"unexpected statement node {kind}")

	def let_stmt(self, tree: Tree) -> R.RStmt:
		loc = self.loc(tree)
		name = _tokens(tree, "NAME")[0].value
		subtrees = [c for c in tree.children if isinstance(c, Tree)]
		annotation: Optional[Tree] = None
		if len(subtrees) == 2:
			annotation, rhs = subtrees
		else:
			rhs = subtrees[0]
		kind = _name(rhs)
		names = [t.value for t in _tokens(rhs, "NAME")]
		if kind == "alloc_expr":
			ref_kind = RefKind.RELAXED
			if annotation is not None:
				declared, type_name = self.type_expr(annotation)
				if declared is None:
					raise ProgramGraphError(f"'{name}' must be declared with a reference type", loc=loc)
				if type_name != names[1]:
					raise ProgramGraphError(
						f"'{name}' is declared as {type_name} but allocates {names[1]}",
						loc=loc,
					)
				ref_kind = declared
			return R.RAlloc(name=name, arena=names[0], struct=names[1], kind=ref_kind, loc=loc)
		if annotation is not None:
			raise ProgramGraphError(f"type annotation on '{name}' is only allowed for allocations", loc=loc)
		if kind == "copy_expr":
			return R.RCopy(name=name, source=names[0], loc=loc)
		if kind == "field_expr":
			return R.RFieldRead(name=name, receiver=names[0], field_name=names[1], loc=loc)
		if kind == "take_expr":
			return R.RExtract(name=name, receiver=names[0], field_name=names[1], loc=loc)
		if kind in ("borrow_expr", "mut_borrow_expr"):
			return R.RBorrow(
				name=name,
				source=names[0],
				field_name=names[1] if len(names) > 1 else None,
				is_mut=kind == "mut_borrow_expr",
				loc=loc,
			)
		if kind == "convert_expr":
			target = next(t for t in rhs.children if isinstance(t, Token) and t.type in _AS_KINDS)
			return R.RConvert(name=name, source=names[0], kind=_AS_KINDS[target.type], loc=loc)
		if kind == "call_expr":
			return R.RCall(callee=names[0], args=self.args(rhs), result=name, loc=loc)
		raise AssertionError(f"unexpected let value {kind}")

	# Operands

	def args(self, tree: Tree) -> List[R.ROperand]:
		arg_list = _first_subtree(tree, "arg_list")
		if arg_list is None:
			return []
		return [self.operand(op) for op in _operands(arg_list)]

	def operand(self, tree: Tree) -> R.ROperand:
		tok = tree.children[0]
		assert isinstance(tok, Token)
		if _name(tree) == "int_operand":
			return R.RLit(value=int(tok.value), loc=self.tok_loc(tok))
		return R.RVar(name=tok.value, loc=self.tok_loc(tok))


def _name(node: Tree | Token) -> str:
	if isinstance(node, Tree):
		data = node.data
		if isinstance(data, Token):
			return data.value
		return data
	return node.type


def _tokens(tree: Tree, type_name: str) -> List[Token]:
	return [c for c in tree.children if isinstance(c, Token) and c.type == type_name]


def _subtrees(tree: Tree, name: str) -> List[Tree]:
	return [c for c in tree.children if isinstance(c, Tree) and _name(c) == name]


def _first_subtree(tree: Tree, name: str) -> Optional[Tree]:
	found = _subtrees(tree, name)
	return found[0] if found else None


def _type_node(tree: Tree) -> Tree:
	node = next((c for c in tree.children if isinstance(c, Tree) and _name(c) in _TYPE_KINDS), None)
	if node is None:
		raise AssertionError(f"{_name(tree)} without a type")
	return node


def _operands(tree: Tree) -> List[Tree]:
	return [c for c in tree.children if isinstance(c, Tree) and _name(c) in ("var_operand", "int_operand")]


__all__ = ["parse_program"]
