# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Conversion & call-boundary checks.

Relaxed-kind values are confined to one function and one thread. The only
sanctioned exits are:

- `let s = r as shared`: closes `r`'s phase (and every phase reachable from
  it) at the conversion point and freezes the reachable object graph;
- `return r` from a function whose declared return kind is Shared: the same
  conversion performed at the return point.

Everything else that would let a relaxed value leave (parameters, return
types, call arguments, `spawn`, `send`) is rejected here.
"""

from __future__ import annotations

from typing import Iterable, Optional

from relaxck import rir as R
from relaxck.context import CheckContext
from relaxck.core.diagnostics import DiagnosticKind
from relaxck.core.kinds import ConversionVerdict, RefKind, conversion_verdict, is_subkind
from relaxck.core.span import Span
from relaxck.heap import Point, ProgramGraphError, Reference, ValueBinding
from relaxck.phase_tracker import CALLER_REGION


class ConversionChecker:
	"""Explicit `x as kind` conversions."""

	def __init__(self, ctx: CheckContext) -> None:
		self.ctx = ctx

	def convert(self, stmt: R.RConvert, point: Point) -> None:
		ctx = self.ctx
		src = ctx.lookup_ref(stmt.source, stmt.loc)
		verdict = conversion_verdict(src.kind, stmt.kind)
		if verdict is ConversionVerdict.FORBIDDEN:
			self._forbidden(src, stmt)
			# Bind the result anyway so later statements resolve.
			ctx.new_ref(stmt.name, stmt.kind, src.target, point, stmt.loc)
			return
		if verdict is ConversionVerdict.NEEDS_CLOSED_INTERVAL:
			self.close_to_shared(src, stmt.name, point, stmt.loc)
			return
		if src.kind is stmt.kind:
			ctx.use(src, point, "conversion", stmt.loc)
			result = ctx.new_ref(
				stmt.name,
				src.kind,
				src.target,
				point,
				stmt.loc,
				region=src.region if src.is_relaxed else None,
				join=src if src.is_relaxed else None,
			)
			result.multiplied = src.multiplied
			result.relaxed_alias = src.relaxed_alias
			return
		if stmt.kind is RefKind.RELAXED:
			self._exclusive_to_relaxed(src, stmt, point)
			return
		# Exclusive -> Shared: an ordinary shared borrow.
		if not src.exclusive_usable:
			ctx.error(
				DiagnosticKind.KIND_MISMATCH,
				"exclusive-multiplied" if src.multiplied else "exclusive-borrowed-for-arena",
				f"'{src.name}' is no longer exclusive and cannot be narrowed to Shared while relaxed aliases exist",
				stmt.loc,
			)
		shared = ctx.new_ref(stmt.name, RefKind.SHARED, src.target, point, stmt.loc)
		shared.holds_loan = True
		ctx.base.record_loan(src.target)

	def _exclusive_to_relaxed(self, src: Reference, stmt: R.RConvert, point: Point) -> None:
		ctx = self.ctx
		if src.borrowed_for_arena is not None:
			ctx.error(
				DiagnosticKind.KIND_MISMATCH,
				"exclusive-borrowed-for-arena",
				f"'{src.name}' is borrowed for the lifetime of its arena and cannot become Relaxed",
				stmt.loc,
			)
		elif ctx.base.is_borrowed(src.target):
			ctx.error(
				DiagnosticKind.ALIASING_AMBIGUITY,
				"convert-while-borrowed",
				f"cannot convert '{src.name}' to Relaxed while the object it points to is borrowed",
				stmt.loc,
			)
		ctx.finalizer_allowed(src.target, stmt.loc)
		src.multiplied = True
		earlier = ctx.refs.get(src.relaxed_alias) if src.relaxed_alias is not None else None
		result = ctx.new_ref(stmt.name, RefKind.RELAXED, src.target, point, stmt.loc, join=earlier)
		if earlier is None:
			src.relaxed_alias = result.ref_id

	def _forbidden(self, src: Reference, stmt: R.RConvert) -> None:
		ctx = self.ctx
		if src.is_relaxed and stmt.kind is RefKind.EXCLUSIVE:
			ctx.error(
				DiagnosticKind.KIND_MISMATCH,
				"relaxed-to-exclusive",
				f"{src.kind.label} reference '{src.name}' can never become Exclusive: "
				"several relaxed handles may alias the same object",
				stmt.loc,
			)
			return
		ctx.error(
			DiagnosticKind.KIND_MISMATCH,
			"forbidden-conversion",
			f"cannot convert {src.kind.label} reference '{src.name}' to {stmt.kind.label}",
			stmt.loc,
		)

	def close_to_shared(
		self,
		src: Reference,
		name: Optional[str],
		point: Point,
		loc: Span,
		*,
		result_region: Optional[int] = None,
	) -> None:
		"""
		Perform the Relaxed -> Shared conversion of `src` at `point`.

		The phase of `src`'s group and of every group reachable from it closes
		here (verdicts come from the tracker's fixed point). The object graph
		reachable from the target becomes read-only. When `name` is given, the
		resulting Shared reference is bound in the current scope.
		"""
		ctx = self.ctx
		assert ctx.phases is not None
		region = ctx.region if result_region is None else result_region
		arena_region = ctx.arena_region(src.target)
		if not ctx.base.outlives(arena_region, region):
			where = "the caller" if region == CALLER_REGION else "the converted reference"
			ctx.error(
				DiagnosticKind.CALL_BOUNDARY_VIOLATION,
				"converted-outlives-arena",
				f"'{src.name}' points into an arena that does not outlive {where}",
				loc,
			)
		ctx.phases.close(src.ref_id, src.name, point, loc)
		ctx.heap.freeze_reachable(src.target, point)
		src.converted_at = point
		if name is not None:
			shared = ctx.new_ref(name, RefKind.SHARED, src.target, point, loc)
			shared.holds_loan = True
			ctx.base.record_loan(src.target)


class CallBoundaryChecker:
	"""Signatures, calls, concurrency boundaries and returns."""

	def __init__(self, ctx: CheckContext, conversions: ConversionChecker) -> None:
		self.ctx = ctx
		self.conversions = conversions

	def check_signature(self, fn: R.RFunction) -> None:
		ctx = self.ctx
		for param in fn.params:
			if param.kind is not None and param.kind.is_relaxed:
				ctx.error(
					DiagnosticKind.CALL_BOUNDARY_VIOLATION,
					"relaxed-parameter",
					f"parameter '{param.name}' of '{fn.name}' cannot have kind {param.kind.label}",
					param.loc,
				)
		if fn.return_kind is not None and fn.return_kind.is_relaxed:
			ctx.error(
				DiagnosticKind.CALL_BOUNDARY_VIOLATION,
				"relaxed-return",
				f"'{fn.name}' cannot return a {fn.return_kind.label} reference",
				fn.loc,
			)

	# Calls

	def call(self, stmt: R.RCall, point: Point) -> None:
		ctx = self.ctx
		callee = ctx.program.function(stmt.callee)
		args = [self._arg(a) for a in stmt.args]
		for arg, operand in zip(args, stmt.args):
			if arg is not None and arg.is_relaxed:
				ctx.use(arg, point, "call argument", operand.loc)
				ctx.error(
					DiagnosticKind.CALL_BOUNDARY_VIOLATION,
					"relaxed-argument",
					f"{arg.kind.label} reference '{arg.name}' cannot be passed to '{stmt.callee}'",
					operand.loc if operand.loc.is_known() else stmt.loc,
				)
		if callee is not None:
			self._check_against_params(callee, args, stmt.args, stmt.loc)
		if stmt.result is not None:
			self._bind_result(stmt, callee, point)

	def _check_against_params(
		self,
		callee: R.RFunction,
		args: list[Optional[Reference]],
		operands: Iterable[R.ROperand],
		loc: Span,
	) -> None:
		ctx = self.ctx
		if len(args) != len(callee.params):
			raise ProgramGraphError(
				f"'{callee.name}' takes {len(callee.params)} argument(s), {len(args)} given",
				loc=loc,
			)
		for arg, operand, param in zip(args, operands, callee.params):
			if arg is None or arg.is_relaxed or param.kind is None or param.kind.is_relaxed:
				continue
			if not is_subkind(arg.kind, param.kind):
				ctx.error(
					DiagnosticKind.KIND_MISMATCH,
					"argument-kind",
					f"'{callee.name}' expects {param.kind.label} for '{param.name}', got {arg.kind.label} '{arg.name}'",
					operand.loc if operand.loc.is_known() else loc,
				)
			elif param.kind is RefKind.EXCLUSIVE and not arg.exclusive_usable:
				ctx.error(
					DiagnosticKind.KIND_MISMATCH,
					"exclusive-multiplied" if arg.multiplied else "exclusive-borrowed-for-arena",
					f"'{arg.name}' can no longer be passed as Exclusive to '{callee.name}'",
					operand.loc if operand.loc.is_known() else loc,
				)

	def _bind_result(self, stmt: R.RCall, callee: Optional[R.RFunction], point: Point) -> None:
		ctx = self.ctx
		assert stmt.result is not None
		if callee is None or callee.return_kind is None:
			ctx.new_value(stmt.result, callee.return_type if callee is not None else None, stmt.loc)
			return
		kind = callee.return_kind
		if kind.is_relaxed:
			# Already reported on the callee's signature.
			kind = RefKind.SHARED
		struct = ctx.program.structs.get(callee.return_type or "")
		handle = ctx.heap.alloc(struct, None)
		ctx.new_ref(stmt.result, kind, handle, point, stmt.loc)

	# Concurrency boundaries

	def spawn(self, stmt: R.RSpawn, point: Point) -> None:
		args = [self._arg(a) for a in stmt.args]
		for arg, operand in zip(args, stmt.args):
			if arg is not None:
				self._check_escape(arg, point, f"spawned task '{stmt.callee}'", operand.loc if operand.loc.is_known() else stmt.loc)
		callee = self.ctx.program.function(stmt.callee)
		if callee is not None:
			self._check_against_params(callee, args, stmt.args, stmt.loc)

	def send(self, stmt: R.RSend, point: Point) -> None:
		self.ctx.lookup(stmt.channel, stmt.loc)
		arg = self._arg(stmt.value)
		if arg is not None:
			self._check_escape(arg, point, f"channel '{stmt.channel}'", stmt.loc)

	def _check_escape(self, arg: Reference, point: Point, dest: str, loc: Span) -> None:
		ctx = self.ctx
		if not loc.is_known():
			loc = arg.loc
		if arg.is_relaxed:
			ctx.use(arg, point, "concurrency boundary", loc)
			ctx.error(
				DiagnosticKind.CONCURRENCY_ESCAPE,
				"relaxed-crosses-thread",
				f"{arg.kind.label} reference '{arg.name}' cannot be handed to {dest}",
				loc,
			)
			return
		if arg.multiplied:
			ctx.error(
				DiagnosticKind.CONCURRENCY_ESCAPE,
				"multiplied-crosses-thread",
				f"'{arg.name}' has relaxed aliases and cannot be handed to {dest}",
				loc,
			)
			return
		found = ctx.heap.relaxed_reachable(arg.target)
		if found is not None:
			obj, field_name = found
			what = f"field '{field_name}' of a {obj.type_name}" if field_name else f"a {obj.type_name} with relaxed aliases"
			ctx.error(
				DiagnosticKind.CONCURRENCY_ESCAPE,
				"relaxed-reachable-crosses-thread",
				f"'{arg.name}' reaches {what} and cannot be handed to {dest}",
				loc,
			)

	# Returns

	def ret(self, stmt: R.RReturn, point: Point) -> None:
		ctx = self.ctx
		fn = ctx.function
		if stmt.value is None:
			return
		binding = ctx.lookup(stmt.value, stmt.loc)
		if not isinstance(binding, Reference):
			if isinstance(binding, ValueBinding) and fn.return_kind is not None:
				ctx.error(
					DiagnosticKind.KIND_MISMATCH,
					"return-kind",
					f"'{fn.name}' returns a {fn.return_kind.label} reference, not the value '{stmt.value}'",
					stmt.loc,
				)
			return
		declared = fn.return_kind
		if binding.is_relaxed:
			self._return_relaxed(binding, declared, point, stmt.loc)
			return
		if declared is None or declared.is_relaxed:
			return
		if not is_subkind(binding.kind, declared):
			ctx.error(
				DiagnosticKind.KIND_MISMATCH,
				"return-kind",
				f"'{fn.name}' returns {declared.label}, got {binding.kind.label} '{binding.name}'",
				stmt.loc,
			)
			return
		if declared is RefKind.EXCLUSIVE and not binding.exclusive_usable:
			ctx.error(
				DiagnosticKind.KIND_MISMATCH,
				"exclusive-multiplied" if binding.multiplied else "exclusive-borrowed-for-arena",
				f"'{binding.name}' can no longer be returned as Exclusive",
				stmt.loc,
			)
			return
		if not ctx.base.outlives(ctx.arena_region(binding.target), CALLER_REGION):
			ctx.error(
				DiagnosticKind.CALL_BOUNDARY_VIOLATION,
				"returned-reference-outlives-arena",
				f"'{binding.name}' points into an arena owned by '{fn.name}' and cannot be returned",
				stmt.loc,
			)

	def _return_relaxed(self, ref: Reference, declared: Optional[RefKind], point: Point, loc: Span) -> None:
		ctx = self.ctx
		if declared is RefKind.SHARED and ref.kind is RefKind.RELAXED:
			self.conversions.close_to_shared(ref, None, point, loc, result_region=CALLER_REGION)
			return
		if declared is not None and declared.is_relaxed:
			# Already reported on the signature.
			return
		if declared is RefKind.EXCLUSIVE:
			ctx.error(
				DiagnosticKind.KIND_MISMATCH,
				"relaxed-to-exclusive",
				f"{ref.kind.label} reference '{ref.name}' can never be returned as Exclusive",
				loc,
			)
			return
		if declared is RefKind.SHARED:
			ctx.error(
				DiagnosticKind.KIND_MISMATCH,
				"forbidden-conversion",
				f"{ref.kind.label} reference '{ref.name}' cannot be returned as Shared",
				loc,
			)
			return
		ctx.error(
			DiagnosticKind.CALL_BOUNDARY_VIOLATION,
			"relaxed-return",
			f"{ref.kind.label} reference '{ref.name}' cannot leave '{ctx.function.name}'",
			loc,
		)

	def _arg(self, operand: R.ROperand) -> Optional[Reference]:
		if isinstance(operand, R.RLit):
			return None
		binding = self.ctx.lookup(operand.name, operand.loc)
		return binding if isinstance(binding, Reference) else None


__all__ = ["ConversionChecker", "CallBoundaryChecker"]
