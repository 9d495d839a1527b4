# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Per-function analysis context.

Everything the checker learns while analysing one function lives here: the
group table, the phase tracker, the object store, the binding environment and
the diagnostics. A fresh context is created at function entry and discarded at
the end, and it is passed explicitly to every rule; nothing is kept in module
globals.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from relaxck import rir as R
from relaxck.base_checker import BaseChecker
from relaxck.config import CheckerOptions
from relaxck.core.diagnostics import DiagnosticCollector, DiagnosticKind
from relaxck.core.kinds import RefKind
from relaxck.core.span import Span
from relaxck.groups import GroupTable
from relaxck.heap import (
	ArenaBinding,
	Binding,
	ObjectHandle,
	ObjectStore,
	Point,
	ProgramGraphError,
	RefId,
	Reference,
	Region,
	ValueBinding,
)
from relaxck.phase_tracker import CALLER_REGION, PhaseTracker, ProgramLayout


@dataclass
class _Scope:
	region: Region
	bindings: Dict[str, Binding] = field(default_factory=dict)
	# Ordinary loans held until this region ends (arena-lifetime borrows).
	region_loans: List[ObjectHandle] = field(default_factory=list)


@dataclass
class CheckContext:
	"""State threaded through every rule while checking one function."""

	program: R.RProgram
	function: R.RFunction
	options: CheckerOptions
	layout: ProgramLayout
	base: BaseChecker
	diagnostics: DiagnosticCollector
	groups: GroupTable = field(default_factory=GroupTable)
	heap: ObjectStore = field(default_factory=ObjectStore)
	refs: Dict[RefId, Reference] = field(default_factory=dict)
	phases: Optional[PhaseTracker] = None
	_scopes: List[_Scope] = field(default_factory=list)
	_next_ref: RefId = 1

	def __post_init__(self) -> None:
		if self.phases is None:
			self.phases = PhaseTracker(
				self.layout,
				self.groups,
				max_iterations=self.options.max_fixpoint_iterations,
			)

	# Scopes

	def push_scope(self, region: Region) -> None:
		self._scopes.append(_Scope(region=region))

	def pop_scope(self) -> _Scope:
		return self._scopes.pop()

	@property
	def region(self) -> Region:
		return self._scopes[-1].region

	@property
	def scope_end(self) -> Point:
		return self.layout.scope_end(self.region)

	def region_of_arena_scope(self, region: Region) -> Optional[_Scope]:
		for scope in self._scopes:
			if scope.region == region:
				return scope
		return None

	# Bindings

	def bind(self, name: str, binding: Binding) -> None:
		self._scopes[-1].bindings[name] = binding

	def unbind(self, name: str) -> Optional[Binding]:
		for scope in reversed(self._scopes):
			if name in scope.bindings:
				return scope.bindings.pop(name)
		return None

	def lookup(self, name: str, loc: Span | None = None) -> Binding:
		for scope in reversed(self._scopes):
			if name in scope.bindings:
				return scope.bindings[name]
		raise ProgramGraphError(f"unknown local '{name}' in function '{self.function.name}'", loc=loc)

	def lookup_ref(self, name: str, loc: Span | None = None) -> Reference:
		binding = self.lookup(name, loc)
		if not isinstance(binding, Reference):
			raise ProgramGraphError(f"'{name}' is not a reference", loc=loc)
		return binding

	def lookup_arena(self, name: str, loc: Span | None = None) -> ArenaBinding:
		binding = self.lookup(name, loc)
		if not isinstance(binding, ArenaBinding):
			raise ProgramGraphError(f"'{name}' is not an arena", loc=loc)
		return binding

	def struct(self, name: str, loc: Span | None = None) -> R.RStructDecl:
		decl = self.program.structs.get(name)
		if decl is None:
			raise ProgramGraphError(f"unknown struct '{name}'", loc=loc)
		return decl

	def field_decl(self, ref: Reference, field_name: str, loc: Span | None = None) -> R.RFieldDecl:
		obj = self.heap.get(ref.target)
		if obj.struct is None:
			raise ProgramGraphError(f"'{ref.name}' points at an object of unknown type", loc=loc)
		decl = obj.struct.fields.get(field_name)
		if decl is None:
			raise ProgramGraphError(f"struct '{obj.struct.name}' has no field '{field_name}'", loc=loc)
		return decl

	# References

	def new_ref(
		self,
		name: str,
		kind: RefKind,
		target: ObjectHandle,
		point: Point,
		loc: Span | None = None,
		*,
		region: Optional[Region] = None,
		join: Optional[Reference] = None,
	) -> Reference:
		"""
		Create and bind a reference.

		Relaxed kinds get a phase interval and a group: `join` puts the new
		reference in an existing group (relaxed copy), otherwise it starts a
		singleton group.
		"""
		ref_region = self.region if region is None else region
		ref = Reference(
			ref_id=self._next_ref,
			name=name,
			kind=kind,
			target=target,
			region=ref_region,
			created_at=point,
			scope_end=self.layout.scope_end(ref_region),
			loc=loc or Span(),
		)
		self._next_ref += 1
		self.refs[ref.ref_id] = ref
		if kind.is_relaxed:
			assert self.phases is not None
			if join is not None:
				self.groups.join(ref.ref_id, join.ref_id)
			else:
				self.groups.add(ref.ref_id)
			self.phases.open(ref.ref_id, name, point, ref.scope_end)
			self.heap.get(target).relaxed_aliases = True
		self.bind(name, ref)
		return ref

	def new_value(self, name: str, type_name: Optional[str] = None, loc: Span | None = None) -> ValueBinding:
		binding = ValueBinding(name=name, type_name=type_name, loc=loc or Span())
		self.bind(name, binding)
		return binding

	def use(self, ref: Reference, point: Point, op: str, loc: Span | None = None, *, mutating: bool = False) -> None:
		"""
		Record a relaxed operation on `ref` for the interval verdicts.

		Mutating uses also carry the point at which `ref`'s target was frozen.
		"""
		if not ref.is_relaxed:
			return
		assert self.phases is not None
		frozen_at = self.heap.get(ref.target).frozen_at if mutating else None
		self.phases.note_use(ref.ref_id, ref.name, point, op, loc, frozen_at=frozen_at)

	def arena_region(self, handle: ObjectHandle) -> Region:
		"""Region of the arena owning `handle`; externally owned objects outlive the body."""
		arena = self.heap.get(handle).arena
		return arena.region if arena is not None else CALLER_REGION

	def hold_until_region_end(self, region: Region, handle: ObjectHandle) -> None:
		"""Keep an ordinary loan on `handle` until `region` ends."""
		self.base.record_loan(handle)
		scope = self.region_of_arena_scope(region)
		if scope is None:
			# Region already outside this function (parameter arenas): the loan
			# outlives the analysis.
			return
		scope.region_loans.append(handle)

	def finalizer_allowed(self, handle: ObjectHandle, loc: Span | None = None) -> bool:
		"""Report and return False when `handle` is a finalized struct entering a relaxed kind."""
		obj = self.heap.get(handle)
		if self.options.allow_finalizers or obj.struct is None or not obj.struct.finalized:
			return True
		self.error(
			DiagnosticKind.KIND_MISMATCH,
			"finalizer-through-relaxed",
			f"values of finalized struct '{obj.struct.name}' cannot be reached through relaxed references",
			loc,
		)
		return False

	# Diagnostics

	def error(
		self,
		kind: DiagnosticKind,
		rule: str,
		message: str,
		loc: Span | None = None,
		*,
		notes: tuple[str, ...] = (),
	) -> None:
		self.diagnostics.error(kind, rule, message, loc, notes=notes)


__all__ = ["CheckContext"]
