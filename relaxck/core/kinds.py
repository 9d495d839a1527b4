# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Reference kinds and the conversions permitted between them.

The ordering here is about substitutability only: an Exclusive reference may
stand where a Shared one is expected (it degrades to read-only under a
borrow). Relaxed and RelaxedWeak are incomparable with both ordinary kinds;
the only way in or out is an explicit, directional conversion:

  Exclusive -> Relaxed   always, but the source is tagged "multiplied"
  Relaxed   -> Shared    once the reference's phase interval has closed

Relaxed never becomes Exclusive. Several Relaxed handles may alias one object,
so a single Relaxed -> Exclusive step would hand out several exclusive handles.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Dict, FrozenSet, Optional


class RefKind(Enum):
	"""The four reference kinds understood by the checker."""

	EXCLUSIVE = auto()
	SHARED = auto()
	RELAXED = auto()
	RELAXED_WEAK = auto()

	@property
	def is_relaxed(self) -> bool:
		"""True for the kinds confined to one thread and one phase (Relaxed/RelaxedWeak)."""
		return self in (RefKind.RELAXED, RefKind.RELAXED_WEAK)

	@property
	def is_read_only(self) -> bool:
		return self in (RefKind.SHARED, RefKind.RELAXED_WEAK)

	@property
	def label(self) -> str:
		return _LABELS[self]


_LABELS = {
	RefKind.EXCLUSIVE: "Exclusive",
	RefKind.SHARED: "Shared",
	RefKind.RELAXED: "Relaxed",
	RefKind.RELAXED_WEAK: "RelaxedWeak",
}


class FieldKind(Enum):
	"""Declared kind of a struct field."""

	VALUE = auto()
	EXCLUSIVE_REF = auto()
	SHARED_REF = auto()


class ConversionVerdict(Enum):
	"""Outcome of asking the lattice whether `src -> dst` may be written."""

	ALLOWED = auto()
	NEEDS_CLOSED_INTERVAL = auto()
	FORBIDDEN = auto()


def is_subkind(sub: RefKind, sup: RefKind) -> bool:
	"""Return True when a `sub` reference may be used where `sup` is expected."""
	if sub is sup:
		return True
	return sub is RefKind.EXCLUSIVE and sup is RefKind.SHARED


def conversion_verdict(src: RefKind, dst: RefKind) -> ConversionVerdict:
	"""Classify an explicit conversion between reference kinds."""
	if src is dst:
		return ConversionVerdict.ALLOWED
	if src is RefKind.EXCLUSIVE and dst in (RefKind.SHARED, RefKind.RELAXED):
		return ConversionVerdict.ALLOWED
	if src is RefKind.RELAXED and dst is RefKind.SHARED:
		return ConversionVerdict.NEEDS_CLOSED_INTERVAL
	return ConversionVerdict.FORBIDDEN


def read_result_kind(receiver: RefKind, field: FieldKind) -> Optional[RefKind]:
	"""
	Kind of the reference produced by reading `receiver.field`.

	Returns None for value fields (read directly, no reference is produced).
	Through a Relaxed receiver an Exclusive-ref field comes back Relaxed, so two
	members of one group can never both obtain an Exclusive handle to the same
	field value; a Shared-ref field comes back RelaxedWeak, because the stored
	value may itself have been a Relaxed value.
	"""
	if field is FieldKind.VALUE:
		return None
	if receiver is RefKind.RELAXED:
		return RefKind.RELAXED if field is FieldKind.EXCLUSIVE_REF else RefKind.RELAXED_WEAK
	if receiver is RefKind.RELAXED_WEAK:
		return RefKind.RELAXED_WEAK
	if receiver is RefKind.EXCLUSIVE and field is FieldKind.EXCLUSIVE_REF:
		return RefKind.EXCLUSIVE
	return RefKind.SHARED


@dataclass(frozen=True)
class StoreRule:
	"""One row of the field-store table for Relaxed receivers."""

	field: FieldKind
	legal_sources: FrozenSet[RefKind]

	def accepts(self, source: RefKind) -> bool:
		return source in self.legal_sources


STORE_RULES: Dict[FieldKind, StoreRule] = {
	FieldKind.EXCLUSIVE_REF: StoreRule(
		FieldKind.EXCLUSIVE_REF,
		frozenset({RefKind.EXCLUSIVE, RefKind.RELAXED}),
	),
	FieldKind.SHARED_REF: StoreRule(
		FieldKind.SHARED_REF,
		frozenset({RefKind.RELAXED, RefKind.RELAXED_WEAK, RefKind.SHARED, RefKind.EXCLUSIVE}),
	),
	# Value fields take values, never references.
	FieldKind.VALUE: StoreRule(FieldKind.VALUE, frozenset()),
}


def stored_kind(field: FieldKind, source: RefKind) -> RefKind:
	"""
	Kind recorded in a field slot after `relaxed_receiver.field = source`.

	Exclusive-ref fields always hold Relaxed values once written through a
	Relaxed receiver. Shared-ref fields hold a Shared borrow for ordinary
	sources and keep the relaxed kind of relaxed sources so escape checks can
	still see them.
	"""
	if field is FieldKind.EXCLUSIVE_REF:
		return RefKind.RELAXED
	if source.is_relaxed:
		return source
	return RefKind.SHARED


__all__ = [
	"RefKind",
	"FieldKind",
	"ConversionVerdict",
	"is_subkind",
	"conversion_verdict",
	"read_result_kind",
	"StoreRule",
	"STORE_RULES",
	"stored_kind",
]
