# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Reference IR (RIR): the typed program graph the checker consumes.

Pipeline placement:
  source text (relaxck/parser) or a hand-built graph → RIR (this file)
  → RelaxedChecker (relaxck/relaxed_check_pass.py)

RIR is deliberately flat and already resolved: every statement names locals
directly, reference kinds are explicit on declarations, and field kinds are
explicit on structs. Guiding rules:
- Nodes are purely structural; no analysis state is stored on them.
- Statements are straight-line inside an `RBlock`; each block is one lexical
  scope. `RIf` is the only branching form (no loops).
- Every node carries a `loc` span for diagnostics.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union

from relaxck.core.kinds import FieldKind, RefKind
from relaxck.core.span import Span

# Name of the builtin arena parameter type.
ARENA_TYPE = "Arena"


class RNode:
	"""Base class for all RIR nodes."""
	pass


class RStmt(RNode):
	"""Base class for all RIR statements."""
	pass


# Declarations

@dataclass
class RFieldDecl(RNode):
	"""Struct field: declared kind plus the pointee/value type name."""
	name: str
	kind: FieldKind
	type_name: str
	loc: Span = field(default_factory=Span)


@dataclass
class RStructDecl(RNode):
	"""
	Struct declaration.

	`finalized` marks types with a finalizer/destructor. Values of such types are
	not allowed behind relaxed references unless the checker is configured
	otherwise.
	"""
	name: str
	fields: Dict[str, RFieldDecl] = field(default_factory=dict)
	finalized: bool = False
	loc: Span = field(default_factory=Span)


@dataclass
class RParam(RNode):
	"""Function parameter. `kind` is None for value (and arena) parameters."""
	name: str
	type_name: str
	kind: Optional[RefKind] = None
	loc: Span = field(default_factory=Span)

	@property
	def is_arena(self) -> bool:
		return self.kind is None and self.type_name == ARENA_TYPE


# Operands

@dataclass
class RVar(RNode):
	"""Use of a local binding as an operand."""
	name: str
	loc: Span = field(default_factory=Span)


@dataclass
class RLit(RNode):
	"""Literal value operand (only meaningful for value fields and value args)."""
	value: object
	loc: Span = field(default_factory=Span)


ROperand = Union[RVar, RLit]


# Statements

@dataclass
class RBlock(RStmt):
	"""Lexical scope: a list of statements."""
	statements: List[RStmt] = field(default_factory=list)
	loc: Span = field(default_factory=Span)


@dataclass
class RArenaDecl(RStmt):
	"""`arena ar;`: declare an arena owned by the enclosing scope."""
	name: str
	loc: Span = field(default_factory=Span)


@dataclass
class RAlloc(RStmt):
	"""`let x: kind = ar.alloc(Struct);`: allocate from an arena."""
	name: str
	arena: str
	struct: str
	kind: RefKind = RefKind.RELAXED
	loc: Span = field(default_factory=Span)


@dataclass
class RCopy(RStmt):
	"""`let x = y;`: copy a binding (a relaxed copy joins the source's group)."""
	name: str
	source: str
	loc: Span = field(default_factory=Span)


@dataclass
class RAssign(RStmt):
	"""`x = y;`: re-point an existing local (relaxed locals merge groups)."""
	target: str
	source: str
	loc: Span = field(default_factory=Span)


@dataclass
class RFieldRead(RStmt):
	"""`let x = y.f;`"""
	name: str
	receiver: str
	field_name: str
	loc: Span = field(default_factory=Span)


@dataclass
class RExtract(RStmt):
	"""`let x = take y.f;`: move a value out of a field without replacement."""
	name: str
	receiver: str
	field_name: str
	loc: Span = field(default_factory=Span)


@dataclass
class RFieldWrite(RStmt):
	"""`y.f = operand;`"""
	receiver: str
	field_name: str
	value: ROperand
	loc: Span = field(default_factory=Span)


@dataclass
class RBorrow(RStmt):
	"""`let x = &y;`, `let x = &y.f;`, `let x = &mut y;`, `let x = &mut y.f;`"""
	name: str
	source: str
	field_name: Optional[str] = None
	is_mut: bool = False
	loc: Span = field(default_factory=Span)


@dataclass
class RConvert(RStmt):
	"""`let x = y as kind;`: explicit kind conversion."""
	name: str
	source: str
	kind: RefKind
	loc: Span = field(default_factory=Span)


@dataclass
class RDrop(RStmt):
	"""`drop x;`: end a binding (and any borrow it holds) before scope end."""
	name: str
	loc: Span = field(default_factory=Span)


@dataclass
class RCall(RStmt):
	"""`f(args);` or `let x = f(args);`"""
	callee: str
	args: List[ROperand] = field(default_factory=list)
	result: Optional[str] = None
	loc: Span = field(default_factory=Span)


@dataclass
class RSpawn(RStmt):
	"""`spawn f(args);`: start a concurrent task."""
	callee: str
	args: List[ROperand] = field(default_factory=list)
	loc: Span = field(default_factory=Span)


@dataclass
class RSend(RStmt):
	"""`send ch, x;`: send a value over a channel."""
	channel: str
	value: ROperand
	loc: Span = field(default_factory=Span)


@dataclass
class RReturn(RStmt):
	"""`return;` / `return x;`"""
	value: Optional[str] = None
	loc: Span = field(default_factory=Span)


@dataclass
class RIf(RStmt):
	"""`if cond { ... } else { ... }` with an opaque condition."""
	cond: str
	then_block: RBlock
	else_block: Optional[RBlock] = None
	loc: Span = field(default_factory=Span)


# Top level

@dataclass
class RFunction(RNode):
	"""Function definition. `return_kind` is None for value/unit returns."""
	name: str
	params: List[RParam] = field(default_factory=list)
	return_kind: Optional[RefKind] = None
	return_type: Optional[str] = None
	body: RBlock = field(default_factory=RBlock)
	loc: Span = field(default_factory=Span)


@dataclass
class RProgram(RNode):
	"""One compilation unit."""
	structs: Dict[str, RStructDecl] = field(default_factory=dict)
	functions: List[RFunction] = field(default_factory=list)
	name: str = "<unit>"

	def function(self, name: str) -> Optional[RFunction]:
		for fn in self.functions:
			if fn.name == name:
				return fn
		return None


__all__ = [
	"ARENA_TYPE",
	"RNode",
	"RStmt",
	"RFieldDecl",
	"RStructDecl",
	"RParam",
	"RVar",
	"RLit",
	"ROperand",
	"RBlock",
	"RArenaDecl",
	"RAlloc",
	"RCopy",
	"RAssign",
	"RFieldRead",
	"RExtract",
	"RFieldWrite",
	"RBorrow",
	"RConvert",
	"RDrop",
	"RCall",
	"RSpawn",
	"RSend",
	"RReturn",
	"RIf",
	"RFunction",
	"RProgram",
]
