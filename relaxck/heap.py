# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Abstract heap: arena-owned objects addressed by integer handles, and the
references that point at them.

Objects never point at each other directly. A field slot records the handle of
its target plus the kind the value was stored with, so cyclic graphs
(`a.next = b; b.next = a`) are just two slots naming each other's handle.

References are `(id, kind, target handle, region, ...)` records. Relaxed-kind
references additionally belong to a group (see `relaxck.groups`) and have a
phase interval (see `relaxck.phase_tracker`); both are keyed by reference id,
never stored here.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Dict, Iterator, Optional, Set, Tuple, Union

from relaxck import rir as R
from relaxck.core.kinds import RefKind
from relaxck.core.span import Span

ObjectHandle = int
RefId = int
Region = int
Point = int


class ProgramGraphError(ValueError):
	"""
	Raised when the input graph is malformed (unknown local, struct or field,
	or a value used where a reference is required).

	These are front-end errors, not checker violations, so they are raised
	instead of being reported as diagnostics.
	"""

	def __init__(self, message: str, *, loc: Span | None = None) -> None:
		super().__init__(message)
		self.loc = loc or Span()


@dataclass
class Slot:
	"""Contents of one reference field: stored kind and target handle."""

	kind: RefKind
	target: ObjectHandle


@dataclass
class ObjectRecord:
	"""One arena-allocated (or opaque, externally owned) object."""

	handle: ObjectHandle
	struct: Optional[R.RStructDecl]
	arena: Optional["ArenaBinding"] = None
	slots: Dict[str, Slot] = field(default_factory=dict)
	# Set once a relaxed reference has been created to this object.
	relaxed_aliases: bool = False
	# Point of the conversion that froze this object, if any.
	frozen_at: Optional[Point] = None

	@property
	def type_name(self) -> str:
		return self.struct.name if self.struct is not None else "<opaque>"

	@property
	def is_frozen(self) -> bool:
		return self.frozen_at is not None


@dataclass
class ArenaBinding:
	"""An arena: every object it owns shares `region` as its lifetime."""

	name: str
	region: Region
	handles: Set[ObjectHandle] = field(default_factory=set)
	loc: Span = field(default_factory=Span)


@dataclass
class ValueBinding:
	"""A plain (non-reference) local."""

	name: str
	type_name: Optional[str] = None
	loc: Span = field(default_factory=Span)


@dataclass
class Reference:
	"""
	A reference instance.

	Tags:
	- `multiplied`: an Exclusive reference that has been converted to (or
	  stored as) Relaxed; it can never again be used in an Exclusive-only
	  position.
	- `borrowed_for_arena`: an Exclusive reference stored into a Shared-ref
	  field; it stays borrowed until the owning arena's region ends.
	- `converted_at`: point at which the reference was consumed by a
	  conversion (the reference no longer exists afterwards).
	- `borrow_anchor`: for read-only borrows of relaxed references, the
	  reference through which the borrow was taken (its group is frozen while
	  this borrow lives).
- `relaxed_alias`: for a multiplied Exclusive reference, the first Relaxed
  reference made from it; later conversions and relaxed stores of the same
  source join or link to its group.
	"""

	ref_id: RefId
	name: str
	kind: RefKind
	target: ObjectHandle
	region: Region
	created_at: Point
	scope_end: Point
	loc: Span = field(default_factory=Span)
	multiplied: bool = False
	borrowed_for_arena: Optional[Region] = None
	converted_at: Optional[Point] = None
	borrow_anchor: Optional[RefId] = None
	relaxed_alias: Optional[RefId] = None
	holds_loan: bool = False

	@property
	def is_relaxed(self) -> bool:
		return self.kind.is_relaxed

	@property
	def exclusive_usable(self) -> bool:
		"""Whether this reference may still stand in an Exclusive-only position."""
		return (
			self.kind is RefKind.EXCLUSIVE
			and not self.multiplied
			and self.borrowed_for_arena is None
		)


Binding = Union[Reference, ArenaBinding, ValueBinding]


class ObjectStore:
	"""Handle-indexed object table for one function analysis."""

	def __init__(self) -> None:
		self._objects: Dict[ObjectHandle, ObjectRecord] = {}
		self._next_handle: ObjectHandle = 1  # reserve 0 for "no object"

	def alloc(self, struct: Optional[R.RStructDecl], arena: Optional[ArenaBinding]) -> ObjectHandle:
		"""Allocate a fresh object (arena-owned when `arena` is given)."""
		handle = self._next_handle
		self._next_handle += 1
		self._objects[handle] = ObjectRecord(handle=handle, struct=struct, arena=arena)
		if arena is not None:
			arena.handles.add(handle)
		return handle

	def get(self, handle: ObjectHandle) -> ObjectRecord:
		return self._objects[handle]

	def slot(self, handle: ObjectHandle, field_name: str) -> Optional[Slot]:
		return self._objects[handle].slots.get(field_name)

	def store(self, handle: ObjectHandle, field_name: str, kind: RefKind, target: ObjectHandle) -> None:
		self._objects[handle].slots[field_name] = Slot(kind=kind, target=target)

	def reachable(self, handle: ObjectHandle) -> Iterator[ObjectRecord]:
		"""Yield every object reachable from `handle` through slots (including itself)."""
		seen: Set[ObjectHandle] = set()
		queue = deque([handle])
		while queue:
			h = queue.popleft()
			if h in seen or h not in self._objects:
				continue
			seen.add(h)
			obj = self._objects[h]
			yield obj
			for slot in obj.slots.values():
				queue.append(slot.target)

	def relaxed_reachable(self, handle: ObjectHandle) -> Optional[Tuple[ObjectRecord, Optional[str]]]:
		"""
		Return the first live relaxed value reachable from `handle`.

		The result is `(object, field)` for a slot holding a relaxed kind, or
		`(object, None)` for an object that still has live relaxed aliases.
		Frozen objects contribute nothing: a completed conversion has turned
		their relaxed slots into shared ones.
		"""
		for obj in self.reachable(handle):
			if obj.is_frozen:
				continue
			if obj.relaxed_aliases:
				return obj, None
			for name, slot in obj.slots.items():
				if slot.kind.is_relaxed:
					return obj, name
		return None

	def freeze_reachable(self, handle: ObjectHandle, point: Point) -> int:
		"""
		Freeze the object graph reachable from `handle` after a Relaxed -> Shared
		conversion. Relaxed slots become Shared. Returns the number of objects
		newly frozen.
		"""
		count = 0
		for obj in self.reachable(handle):
			if obj.frozen_at is None:
				obj.frozen_at = point
				count += 1
			for slot in obj.slots.values():
				if slot.kind.is_relaxed:
					slot.kind = RefKind.SHARED
		return count


__all__ = [
	"ObjectHandle",
	"RefId",
	"Region",
	"Point",
	"ProgramGraphError",
	"Slot",
	"ObjectRecord",
	"ArenaBinding",
	"ValueBinding",
	"Reference",
	"Binding",
	"ObjectStore",
]
