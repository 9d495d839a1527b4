# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Assignment/field rule engine.

Validates every field read, extraction, field write, borrow and
reference-to-reference assignment. Relaxed receivers follow the store table in
`relaxck.core.kinds.STORE_RULES`:

	field kind      legal sources                          stored kind
	Exclusive-ref   Exclusive, Relaxed                     Relaxed
	Shared-ref      Relaxed, RelaxedWeak, Shared, Excl.    Shared (ordinary) / source kind (relaxed)
	Value           values                                 unchanged

Exclusive and Shared receivers are the base checker's business; only the
points where a relaxed value would leak into ordinary references, and the
tags (`multiplied`, `borrowed_for_arena`) this pass adds, are checked here.
"""

from __future__ import annotations

from typing import Optional

from relaxck import rir as R
from relaxck.context import CheckContext
from relaxck.core.diagnostics import DiagnosticKind
from relaxck.core.kinds import STORE_RULES, FieldKind, RefKind, is_subkind, read_result_kind, stored_kind
from relaxck.core.span import Span
from relaxck.heap import ObjectHandle, Point, Reference, ValueBinding


class FieldRuleEngine:
	"""Table-driven checks for field and assignment operations."""

	def __init__(self, ctx: CheckContext) -> None:
		self.ctx = ctx

	# Reads

	def read(self, stmt: R.RFieldRead, point: Point) -> None:
		"""`let x = recv.f`: produce a value or a reference of the lattice's result kind."""
		ctx = self.ctx
		recv = ctx.lookup_ref(stmt.receiver, stmt.loc)
		decl = ctx.field_decl(recv, stmt.field_name, stmt.loc)
		ctx.use(recv, point, "field read", stmt.loc)
		result_kind = read_result_kind(recv.kind, decl.kind)
		if result_kind is None:
			ctx.new_value(stmt.name, decl.type_name, stmt.loc)
			return
		target = self._slot_target(recv, stmt.field_name, decl)
		if result_kind is RefKind.RELAXED and ctx.heap.get(target).is_frozen:
			# The pointee already went through a Relaxed -> Shared conversion.
			result_kind = RefKind.RELAXED_WEAK
		if result_kind is RefKind.EXCLUSIVE and not self._exclusive_read_allowed(recv, stmt.field_name):
			result_kind = RefKind.SHARED
		result = ctx.new_ref(stmt.name, result_kind, target, point, stmt.loc)
		if recv.is_relaxed and result.is_relaxed:
			assert ctx.phases is not None
			ctx.phases.add_edge(recv.ref_id, result.ref_id, point, field_name=stmt.field_name, loc=stmt.loc)

	def extract(self, stmt: R.RExtract, point: Point) -> None:
		"""`let x = take recv.f`: move a value out without replacement."""
		ctx = self.ctx
		recv = ctx.lookup_ref(stmt.receiver, stmt.loc)
		decl = ctx.field_decl(recv, stmt.field_name, stmt.loc)
		ctx.use(recv, point, "extraction", stmt.loc, mutating=True)
		if decl.kind is not FieldKind.VALUE:
			ctx.error(
				DiagnosticKind.KIND_MISMATCH,
				"extract-non-value",
				f"cannot take '{stmt.receiver}.{stmt.field_name}': only value fields can be extracted",
				stmt.loc,
			)
		elif recv.kind.is_read_only:
			ctx.error(
				DiagnosticKind.KIND_MISMATCH,
				"write-through-read-only",
				f"cannot take '{stmt.receiver}.{stmt.field_name}' through {recv.kind.label} reference '{recv.name}'",
				stmt.loc,
			)
		elif recv.is_relaxed and ctx.groups.is_frozen(recv.ref_id):
			self._frozen_error("extract-while-frozen", "take", recv, stmt.field_name, stmt.loc)
		ctx.new_value(stmt.name, decl.type_name, stmt.loc)

	# Writes

	def write(self, stmt: R.RFieldWrite, point: Point) -> None:
		"""`recv.f = value`."""
		ctx = self.ctx
		recv = ctx.lookup_ref(stmt.receiver, stmt.loc)
		decl = ctx.field_decl(recv, stmt.field_name, stmt.loc)
		place = f"'{stmt.receiver}.{stmt.field_name}'"
		source = self._operand_ref(stmt.value)
		if recv.kind.is_read_only:
			ctx.use(recv, point, "field write", stmt.loc)
			ctx.error(
				DiagnosticKind.KIND_MISMATCH,
				"write-through-read-only",
				f"cannot assign to {place} through {recv.kind.label} reference '{recv.name}'",
				stmt.loc,
			)
			return
		if recv.kind is RefKind.EXCLUSIVE:
			self._write_through_exclusive(recv, decl, source, stmt, place)
			return

		ctx.use(recv, point, "field write", stmt.loc, mutating=True)
		if ctx.groups.is_frozen(recv.ref_id):
			self._frozen_error("write-while-frozen", "assign to", recv, stmt.field_name, stmt.loc)
			return
		if decl.kind is FieldKind.VALUE:
			if source is not None:
				ctx.error(
					DiagnosticKind.KIND_MISMATCH,
					"reference-into-value-field",
					f"cannot store reference '{source.name}' into value field {place}",
					stmt.loc,
				)
			return
		if source is None:
			ctx.error(
				DiagnosticKind.KIND_MISMATCH,
				"value-into-reference-field",
				f"reference field {place} needs a reference, not a value",
				stmt.loc,
			)
			return
		rule = STORE_RULES[decl.kind]
		if not rule.accepts(source.kind):
			ctx.error(
				DiagnosticKind.KIND_MISMATCH,
				f"{_field_label(decl.kind)}-rejects-{_kind_slug(source.kind)}",
				f"{_field_label(decl.kind)} field {place} cannot hold {source.kind.label} reference '{source.name}'",
				stmt.loc,
			)
			return
		self._store_through_relaxed(recv, decl, source, stmt, point)

	def _store_through_relaxed(
		self,
		recv: Reference,
		decl: R.RFieldDecl,
		source: Reference,
		stmt: R.RFieldWrite,
		point: Point,
	) -> None:
		ctx = self.ctx
		if source.kind is RefKind.EXCLUSIVE:
			if not source.exclusive_usable and decl.kind is FieldKind.EXCLUSIVE_REF and source.borrowed_for_arena is not None:
				ctx.error(
					DiagnosticKind.KIND_MISMATCH,
					"exclusive-borrowed-for-arena",
					f"'{source.name}' is borrowed for the lifetime of its arena and cannot be stored as Relaxed",
					stmt.loc,
				)
				return
			if decl.kind is FieldKind.EXCLUSIVE_REF:
				# Exclusive -> Relaxed, irreversible.
				if not self.ctx.finalizer_allowed(source.target, stmt.loc):
					return
				source.multiplied = True
				ctx.heap.get(source.target).relaxed_aliases = True
				if source.relaxed_alias is not None:
					# Closing the receiver must also close the earlier relaxed handles.
					assert ctx.phases is not None
					ctx.phases.add_edge(recv.ref_id, source.relaxed_alias, point, field_name=stmt.field_name, loc=stmt.loc)
			else:
				# Implicit shared borrow, held for the rest of the arena's lifetime.
				arena_region = ctx.arena_region(recv.target)
				source.borrowed_for_arena = arena_region
				ctx.hold_until_region_end(arena_region, source.target)
		elif source.is_relaxed:
			ctx.use(source, point, "stored into a field", stmt.loc)
			assert ctx.phases is not None
			ctx.phases.add_edge(recv.ref_id, source.ref_id, point, field_name=stmt.field_name, loc=stmt.loc)
		ctx.heap.store(recv.target, stmt.field_name, stored_kind(decl.kind, source.kind), source.target)

	def _write_through_exclusive(
		self,
		recv: Reference,
		decl: R.RFieldDecl,
		source: Optional[Reference],
		stmt: R.RFieldWrite,
		place: str,
	) -> None:
		ctx = self.ctx
		if not recv.exclusive_usable:
			ctx.error(
				DiagnosticKind.KIND_MISMATCH,
				_not_exclusive_rule(recv),
				f"cannot assign to {place}: '{recv.name}' {_not_exclusive_reason(recv)}",
				stmt.loc,
			)
			return
		if source is None:
			return
		if source.is_relaxed:
			ctx.error(
				DiagnosticKind.KIND_MISMATCH,
				"relaxed-into-ordinary",
				f"{source.kind.label} reference '{source.name}' cannot be stored through Exclusive reference '{recv.name}'",
				stmt.loc,
			)
			return
		if decl.kind is FieldKind.VALUE:
			ctx.error(
				DiagnosticKind.KIND_MISMATCH,
				"reference-into-value-field",
				f"cannot store reference '{source.name}' into value field {place}",
				stmt.loc,
			)
			return
		kind = source.kind if decl.kind is FieldKind.EXCLUSIVE_REF else RefKind.SHARED
		ctx.heap.store(recv.target, stmt.field_name, kind, source.target)

	# Assignments and copies

	def copy(self, stmt: R.RCopy, point: Point) -> None:
		"""`let x = y`: relaxed copies join `y`'s group and share its interval."""
		ctx = self.ctx
		binding = ctx.lookup(stmt.source, stmt.loc)
		if not isinstance(binding, Reference):
			ctx.new_value(stmt.name, getattr(binding, "type_name", None), stmt.loc)
			return
		ctx.use(binding, point, "copy", stmt.loc)
		copy = ctx.new_ref(
			stmt.name,
			binding.kind,
			binding.target,
			point,
			stmt.loc,
			region=binding.region if binding.is_relaxed else None,
			join=binding if binding.is_relaxed else None,
		)
		copy.multiplied = binding.multiplied
		copy.borrowed_for_arena = binding.borrowed_for_arena
		copy.relaxed_alias = binding.relaxed_alias

	def assign(self, stmt: R.RAssign, point: Point) -> None:
		"""`x = y` between existing locals; relaxed locals merge their groups."""
		ctx = self.ctx
		target = ctx.lookup_ref(stmt.target, stmt.loc)
		source = ctx.lookup_ref(stmt.source, stmt.loc)
		if target.is_relaxed or source.is_relaxed:
			ctx.use(target, point, "assignment", stmt.loc)
			ctx.use(source, point, "assignment", stmt.loc)
			if target.kind is not source.kind:
				ctx.error(
					DiagnosticKind.KIND_MISMATCH,
					"assign-kind-mismatch",
					f"cannot assign {source.kind.label} '{source.name}' to {target.kind.label} '{target.name}'",
					stmt.loc,
				)
				return
			if not self._outlived_by_arena(target, source, stmt.loc):
				return
			merged = ctx.groups.merge(target.ref_id, source.ref_id)
			if merged is None:
				ctx.error(
					DiagnosticKind.ALIASING_AMBIGUITY,
					"merge-while-frozen",
					f"cannot join '{target.name}' and '{source.name}' into one group while a read-only borrow is outstanding",
					stmt.loc,
					notes=tuple(f"borrow '{ctx.refs[b].name}' is still live" for b in self._frozen_by(target, source)),
				)
				return
			target.target = source.target
			return
		if not is_subkind(source.kind, target.kind):
			ctx.error(
				DiagnosticKind.KIND_MISMATCH,
				"assign-kind-mismatch",
				f"cannot assign {source.kind.label} '{source.name}' to {target.kind.label} '{target.name}'",
				stmt.loc,
			)
			return
		if not self._outlived_by_arena(target, source, stmt.loc):
			return
		target.target = source.target

	def _outlived_by_arena(self, target: Reference, source: Reference, loc: Span) -> bool:
		"""Report and return False when `source`'s arena ends before `target`'s region."""
		ctx = self.ctx
		if ctx.base.outlives(ctx.arena_region(source.target), target.region):
			return True
		ctx.error(
			DiagnosticKind.CALL_BOUNDARY_VIOLATION,
			"converted-outlives-arena",
			f"'{source.name}' points into an arena that does not outlive '{target.name}'",
			loc,
		)
		return False

	# Borrows

	def borrow(self, stmt: R.RBorrow, point: Point) -> None:
		"""`&y`, `&y.f`, `&mut y`, `&mut y.f`."""
		if stmt.is_mut:
			self._borrow_exclusive(stmt, point)
		else:
			self._borrow_shared(stmt, point)

	def _borrow_shared(self, stmt: R.RBorrow, point: Point) -> None:
		ctx = self.ctx
		src = ctx.lookup_ref(stmt.source, stmt.loc)
		target = src.target
		if stmt.field_name is not None:
			decl = ctx.field_decl(src, stmt.field_name, stmt.loc)
			if decl.kind is not FieldKind.VALUE:
				target = self._slot_target(src, stmt.field_name, decl)
		if src.is_relaxed:
			ctx.use(src, point, "read-only borrow", stmt.loc)
			borrow = ctx.new_ref(stmt.name, RefKind.RELAXED_WEAK, target, point, stmt.loc)
			borrow.borrow_anchor = src.ref_id
			ctx.groups.freeze(borrow.ref_id, src.ref_id)
			assert ctx.phases is not None
			ctx.phases.add_edge(src.ref_id, borrow.ref_id, point, field_name=stmt.field_name, loc=stmt.loc)
			return
		borrow = ctx.new_ref(stmt.name, RefKind.SHARED, target, point, stmt.loc)
		borrow.holds_loan = True
		ctx.base.record_loan(target)

	def _borrow_exclusive(self, stmt: R.RBorrow, point: Point) -> None:
		ctx = self.ctx
		src = ctx.lookup_ref(stmt.source, stmt.loc)
		ctx.use(src, point, "exclusive borrow", stmt.loc)
		what = f"'{stmt.source}.{stmt.field_name}'" if stmt.field_name is not None else f"'{stmt.source}'"
		target = src.target
		if stmt.field_name is not None:
			decl = ctx.field_decl(src, stmt.field_name, stmt.loc)
			slot = ctx.heap.slot(src.target, stmt.field_name)
			if slot is not None and slot.kind.is_relaxed:
				ctx.error(
					DiagnosticKind.KIND_MISMATCH,
					"stored-kind-relaxed",
					f"cannot take exclusive borrow of {what}: the stored value is {slot.kind.label}, not Exclusive",
					stmt.loc,
				)
				return
			if decl.kind is not FieldKind.VALUE:
				target = self._slot_target(src, stmt.field_name, decl)
		if src.is_relaxed:
			ctx.error(
				DiagnosticKind.KIND_MISMATCH,
				"relaxed-never-exclusive",
				f"cannot take exclusive borrow of {what} through {src.kind.label} reference '{src.name}'",
				stmt.loc,
			)
			return
		if src.kind is RefKind.SHARED:
			ctx.error(
				DiagnosticKind.KIND_MISMATCH,
				"exclusive-through-shared",
				f"cannot take exclusive borrow of {what} through Shared reference '{src.name}'",
				stmt.loc,
			)
			return
		if not src.exclusive_usable:
			ctx.error(
				DiagnosticKind.KIND_MISMATCH,
				_not_exclusive_rule(src),
				f"cannot take exclusive borrow of {what}: '{src.name}' {_not_exclusive_reason(src)}",
				stmt.loc,
			)
			return
		if ctx.base.is_borrowed(target):
			ctx.error(
				DiagnosticKind.ALIASING_AMBIGUITY,
				"exclusive-while-borrowed",
				f"cannot take exclusive borrow of {what} while it is borrowed",
				stmt.loc,
			)
			return
		borrow = ctx.new_ref(stmt.name, RefKind.EXCLUSIVE, target, point, stmt.loc)
		borrow.holds_loan = True
		ctx.base.record_loan(target)

	def release(self, ref: Reference) -> None:
		"""End whatever borrow `ref` holds (scope end or `drop`)."""
		ctx = self.ctx
		if ref.borrow_anchor is not None:
			ctx.groups.release(ref.ref_id)
			ref.borrow_anchor = None
		if ref.holds_loan:
			ctx.base.release_loan(ref.target)
			ref.holds_loan = False

	# Helpers

	def _operand_ref(self, operand: R.ROperand) -> Optional[Reference]:
		if isinstance(operand, R.RLit):
			return None
		binding = self.ctx.lookup(operand.name, operand.loc)
		if isinstance(binding, ValueBinding):
			return None
		if not isinstance(binding, Reference):
			raise AssertionError(f"operand '{operand.name}' is neither a value nor a reference")
		return binding

	def _slot_target(self, recv: Reference, field_name: str, decl: R.RFieldDecl) -> ObjectHandle:
		"""Handle stored in `recv.field`, or a fresh opaque object of the declared type."""
		ctx = self.ctx
		slot = ctx.heap.slot(recv.target, field_name)
		if slot is not None:
			return slot.target
		struct = ctx.program.structs.get(decl.type_name)
		handle = ctx.heap.alloc(struct, ctx.heap.get(recv.target).arena)
		ctx.heap.store(recv.target, field_name, _unset_slot_kind(recv.kind, decl.kind), handle)
		return handle

	def _exclusive_read_allowed(self, recv: Reference, field_name: str) -> bool:
		"""Whether reading `recv.field` may hand out another Exclusive reference."""
		if not recv.exclusive_usable:
			return False
		slot = self.ctx.heap.slot(recv.target, field_name)
		return slot is None or not slot.kind.is_relaxed

	def _frozen_error(self, rule: str, verb: str, recv: Reference, field_name: str, loc: Span) -> None:
		ctx = self.ctx
		borrows = ctx.groups.active_borrows(recv.ref_id)
		ctx.error(
			DiagnosticKind.ALIASING_AMBIGUITY,
			rule,
			f"cannot {verb} '{recv.name}.{field_name}': its group is frozen by a read-only borrow",
			loc,
			notes=tuple(f"borrow '{ctx.refs[b].name}' is still live" for b in borrows),
		)

	def _frozen_by(self, a: Reference, b: Reference) -> list[int]:
		groups = self.ctx.groups
		return sorted(set(groups.active_borrows(a.ref_id)) | set(groups.active_borrows(b.ref_id)))


def _unset_slot_kind(receiver: RefKind, field: FieldKind) -> RefKind:
	# An unwritten reference field of a relaxed object behaves like one written
	# through the receiver itself.
	if receiver.is_relaxed and field is FieldKind.EXCLUSIVE_REF:
		return RefKind.RELAXED
	if field is FieldKind.EXCLUSIVE_REF:
		return RefKind.EXCLUSIVE
	return RefKind.SHARED


def _field_label(kind: FieldKind) -> str:
	return {
		FieldKind.EXCLUSIVE_REF: "exclusive-ref",
		FieldKind.SHARED_REF: "shared-ref",
		FieldKind.VALUE: "value",
	}[kind]


def _kind_slug(kind: RefKind) -> str:
	return kind.label.lower()


def _not_exclusive_rule(ref: Reference) -> str:
	return "exclusive-multiplied" if ref.multiplied else "exclusive-borrowed-for-arena"


def _not_exclusive_reason(ref: Reference) -> str:
	if ref.multiplied:
		return "was converted to Relaxed and can no longer be used as Exclusive"
	return "is borrowed for the lifetime of its arena"


__all__ = ["FieldRuleEngine"]
