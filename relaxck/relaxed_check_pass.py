# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Relaxed-reference check pass over one compilation unit.

Scope:
- Walks every function body once, statement by statement, in program-point
  order; `if` arms are walked one after the other and their effects
  accumulate (borrow states are released at each arm's end).
- The rule engine and the boundary checker run during the walk and record
  interval facts (edges, closing conversions, relaxed uses) as they go.
- Interval verdicts wait until the whole function has been seen: the phase
  tracker solves to a fixed point and then reports.
- A `GroupConflict` aborts the current function only; the remaining
  functions of the unit are still checked.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

from relaxck import rir as R
from relaxck.base_checker import BaseChecker, ScopeTreeBase
from relaxck.boundary import CallBoundaryChecker, ConversionChecker
from relaxck.config import CheckerOptions
from relaxck.context import CheckContext
from relaxck.core.diagnostics import CheckResult, Diagnostic, DiagnosticCollector, DiagnosticKind
from relaxck.core.kinds import RefKind
from relaxck.groups import GroupConflict
from relaxck.heap import ArenaBinding, ProgramGraphError, Reference
from relaxck.phase_tracker import CALLER_REGION, ProgramLayout, build_layout
from relaxck.rules import FieldRuleEngine

logger = logging.getLogger(__name__)


@dataclass
class _Walker:
	"""Statement walk of one function; owns the per-function engines."""

	ctx: CheckContext
	rules: FieldRuleEngine = field(init=False)
	conversions: ConversionChecker = field(init=False)
	calls: CallBoundaryChecker = field(init=False)
	current: Optional[R.RStmt] = field(default=None, init=False)

	def __post_init__(self) -> None:
		self.rules = FieldRuleEngine(self.ctx)
		self.conversions = ConversionChecker(self.ctx)
		self.calls = CallBoundaryChecker(self.ctx, self.conversions)

	def bind_params(self, fn: R.RFunction) -> None:
		ctx = self.ctx
		for param in fn.params:
			if param.is_arena:
				ctx.bind(param.name, ArenaBinding(name=param.name, region=CALLER_REGION, loc=param.loc))
			elif param.kind is not None:
				struct = ctx.program.structs.get(param.type_name)
				handle = ctx.heap.alloc(struct, None)
				ctx.new_ref(param.name, param.kind, handle, 0, param.loc, region=CALLER_REGION)
			else:
				ctx.new_value(param.name, param.type_name, param.loc)

	def visit_block(self, block: R.RBlock) -> None:
		ctx = self.ctx
		ctx.push_scope(ctx.layout.region_of(block))
		for stmt in block.statements:
			self.visit_stmt(stmt)
		self.exit_scope()

	def exit_scope(self) -> None:
		ctx = self.ctx
		scope = ctx.pop_scope()
		for binding in scope.bindings.values():
			if isinstance(binding, Reference):
				self.rules.release(binding)
		for handle in scope.region_loans:
			ctx.base.release_loan(handle)

	def visit_stmt(self, stmt: R.RStmt) -> None:
		ctx = self.ctx
		point = ctx.layout.point_of(stmt)
		self.current = stmt
		if isinstance(stmt, R.RBlock):
			self.visit_block(stmt)
		elif isinstance(stmt, R.RArenaDecl):
			ctx.bind(stmt.name, ArenaBinding(name=stmt.name, region=ctx.region, loc=stmt.loc))
		elif isinstance(stmt, R.RAlloc):
			self._alloc(stmt, point)
		elif isinstance(stmt, R.RCopy):
			self.rules.copy(stmt, point)
		elif isinstance(stmt, R.RAssign):
			self.rules.assign(stmt, point)
		elif isinstance(stmt, R.RFieldRead):
			self.rules.read(stmt, point)
		elif isinstance(stmt, R.RExtract):
			self.rules.extract(stmt, point)
		elif isinstance(stmt, R.RFieldWrite):
			self.rules.write(stmt, point)
		elif isinstance(stmt, R.RBorrow):
			self.rules.borrow(stmt, point)
		elif isinstance(stmt, R.RConvert):
			self.conversions.convert(stmt, point)
		elif isinstance(stmt, R.RDrop):
			self._drop(stmt)
		elif isinstance(stmt, R.RCall):
			self.calls.call(stmt, point)
		elif isinstance(stmt, R.RSpawn):
			self.calls.spawn(stmt, point)
		elif isinstance(stmt, R.RSend):
			self.calls.send(stmt, point)
		elif isinstance(stmt, R.RReturn):
			self.calls.ret(stmt, point)
		elif isinstance(stmt, R.RIf):
			ctx.lookup(stmt.cond, stmt.loc)
			self.visit_block(stmt.then_block)
			if stmt.else_block is not None:
				self.visit_block(stmt.else_block)
		else:
			raise AssertionError(f"unhandled statement {type(stmt).__name__}")

	def _alloc(self, stmt: R.RAlloc, point: int) -> None:
		ctx = self.ctx
		arena = ctx.lookup_arena(stmt.arena, stmt.loc)
		struct = ctx.struct(stmt.struct, stmt.loc)
		handle = ctx.heap.alloc(struct, arena)
		kind = stmt.kind
		if kind is RefKind.RELAXED_WEAK:
			ctx.error(
				DiagnosticKind.KIND_MISMATCH,
				"weak-allocation",
				f"'{stmt.name}' cannot be allocated as RelaxedWeak; allocate Relaxed and borrow it",
				stmt.loc,
			)
			kind = RefKind.RELAXED
		if kind.is_relaxed:
			ctx.finalizer_allowed(handle, stmt.loc)
		ctx.new_ref(stmt.name, kind, handle, point, stmt.loc)

	def _drop(self, stmt: R.RDrop) -> None:
		ctx = self.ctx
		binding = ctx.lookup(stmt.name, stmt.loc)
		if isinstance(binding, ArenaBinding):
			raise ProgramGraphError(f"arena '{stmt.name}' is released by its scope and cannot be dropped", loc=stmt.loc)
		ctx.unbind(stmt.name)
		if isinstance(binding, Reference):
			self.rules.release(binding)


@dataclass
class RelaxedChecker:
	"""
	Relaxed-reference checker for one compilation unit.

	`base_factory` builds the ordinary-reference checker consulted for region
	and loan queries; the default answers them from the lexical scope tree.
	"""

	program: R.RProgram
	options: CheckerOptions = field(default_factory=CheckerOptions)
	base_factory: Callable[[ProgramLayout], BaseChecker] = ScopeTreeBase

	def check_program(self) -> CheckResult:
		"""Check every function; diagnostics come back per function in source order."""
		result = CheckResult(unit=self.program.name)
		for fn in self.program.functions:
			diags, aborted = self._check(fn)
			result.diagnostics.extend(diags)
			if aborted:
				result.aborted_functions.append(fn.name)
		logger.debug(
			"unit %s: %d function(s), %d diagnostic(s)",
			self.program.name,
			len(self.program.functions),
			len(result.diagnostics),
		)
		return result

	def check_function(self, fn: R.RFunction) -> List[Diagnostic]:
		"""Check one function of `program` and return its diagnostics in source order."""
		diags, _aborted = self._check(fn)
		return diags

	def _check(self, fn: R.RFunction) -> Tuple[List[Diagnostic], bool]:
		layout = build_layout(fn)
		collector = DiagnosticCollector(function=fn.name)
		ctx = CheckContext(
			program=self.program,
			function=fn,
			options=self.options,
			layout=layout,
			base=self.base_factory(layout),
			diagnostics=collector,
		)
		logger.debug("checking %s (%d program points)", fn.name, layout.function_end)
		walker = _Walker(ctx)
		aborted = False
		ctx.push_scope(CALLER_REGION)
		walker.bind_params(fn)
		walker.calls.check_signature(fn)
		try:
			walker.visit_block(fn.body)
			walker.exit_scope()
			assert ctx.phases is not None
			intervals = ctx.phases.solve()
			ctx.phases.report(intervals, collector)
		except GroupConflict as exc:
			aborted = True
			logger.warning("aborting analysis of %s: %s", fn.name, exc)
			names = [ctx.refs[r].name if r in ctx.refs else f"#{r}" for r in (exc.a, exc.b)]
			collector.error(
				DiagnosticKind.ALIASING_AMBIGUITY,
				"analysis-aborted",
				f"'{names[0]}' and '{names[1]}' were already reported as incompatible and cannot share a group; "
				f"analysis of '{fn.name}' stopped here",
				walker.current.loc if walker.current is not None else fn.loc,
			)
		return collector.ordered(), aborted


def check_program(program: R.RProgram, options: CheckerOptions | None = None) -> CheckResult:
	"""Convenience wrapper: run the checker with the default base checker."""
	return RelaxedChecker(program, options or CheckerOptions()).check_program()


__all__ = ["RelaxedChecker", "check_program"]
