# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Borrow groups ("colors"): union-find over relaxed reference ids.

References that must share borrow state live in one group. A relaxed copy
(`let b = a`) joins `a`'s group, and re-pointing one relaxed local at another
(`b = a`) merges the two groups. Copies never get their own interval or group:
a copy with a shorter interval could otherwise escape to Shared while the
original, same object and same group, was still live.

Each group has a `BorrowState`. A read-only borrow through any member freezes
the whole group until every such borrow has been released; while frozen,
field writes and extractions through any member are rejected by the rule
engine.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Optional, Set

from relaxck.heap import RefId

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BorrowState:
	"""Free (count == 0) or FrozenByImmutableBorrow(count)."""

	count: int = 0

	@property
	def is_frozen(self) -> bool:
		return self.count > 0

	def freeze(self) -> "BorrowState":
		return BorrowState(self.count + 1)

	def thaw(self) -> "BorrowState":
		if self.count == 0:
			raise AssertionError("thaw on a free group (borrow released twice?)")
		return BorrowState(self.count - 1)

	def __str__(self) -> str:
		return f"FrozenByImmutableBorrow({self.count})" if self.is_frozen else "Free"


FREE = BorrowState()


class GroupConflict(Exception):
	"""
	Two references previously reported as incompatible were forced into one
	group. Continuing would only produce cascading, unreliable diagnostics, so
	the pass aborts the current function when this is raised.
	"""

	def __init__(self, a: RefId, b: RefId) -> None:
		super().__init__(f"contradictory group merge of references {a} and {b}")
		self.a = a
		self.b = b


class GroupTable:
	"""Union-find with per-group borrow state, scoped to one function analysis."""

	def __init__(self) -> None:
		self._parent: Dict[RefId, RefId] = {}
		self._rank: Dict[RefId, int] = {}
		self._state: Dict[RefId, BorrowState] = {}
		# borrow id -> reference the borrow was taken through
		self._borrows: Dict[RefId, RefId] = {}
		self._incompatible: Set[FrozenSet[RefId]] = set()

	def add(self, ref: RefId) -> RefId:
		"""Register `ref` as a singleton group (idempotent); returns its root."""
		if ref not in self._parent:
			self._parent[ref] = ref
			self._rank[ref] = 0
			self._state[ref] = FREE
		return self.find(ref)

	def __contains__(self, ref: object) -> bool:
		return ref in self._parent

	def find(self, ref: RefId) -> RefId:
		"""Return the group root of `ref` (with path compression)."""
		root = ref
		while self._parent[root] != root:
			root = self._parent[root]
		while self._parent[ref] != root:
			nxt = self._parent[ref]
			self._parent[ref] = root
			ref = nxt
		return root

	def same_group(self, a: RefId, b: RefId) -> bool:
		return self.find(a) == self.find(b)

	def join(self, member: RefId, existing: RefId) -> RefId:
		"""Add a new relaxed copy `member` to the group of `existing`."""
		self.add(member)
		return self._link(self.find(member), self.find(existing))

	def merge(self, a: RefId, b: RefId) -> Optional[RefId]:
		"""
		Merge the groups of two existing references.

		Returns the new root, or None when the merge was refused because one of
		the groups is frozen (the caller reports it). Refused pairs are
		remembered; trying to merge them again raises `GroupConflict`.
		"""
		ra, rb = self.find(a), self.find(b)
		if ra == rb:
			return ra
		if self._is_incompatible(ra, rb):
			raise GroupConflict(a, b)
		if self._state[ra].is_frozen or self._state[rb].is_frozen:
			self.mark_incompatible(a, b)
			return None
		return self._link(ra, rb)

	def mark_incompatible(self, a: RefId, b: RefId) -> None:
		self._incompatible.add(frozenset((self.find(a), self.find(b))))

	def _is_incompatible(self, ra: RefId, rb: RefId) -> bool:
		for pair in self._incompatible:
			roots = {self.find(r) for r in pair}
			if roots == {ra, rb}:
				return True
		return False

	def _link(self, ra: RefId, rb: RefId) -> RefId:
		if ra == rb:
			return ra
		if self._rank[ra] < self._rank[rb]:
			ra, rb = rb, ra
		self._parent[rb] = ra
		if self._rank[ra] == self._rank[rb]:
			self._rank[ra] += 1
		self._state[ra] = BorrowState(self._state[ra].count + self._state[rb].count)
		del self._state[rb]
		logger.debug("merged relaxed group %d into %d", rb, ra)
		return ra

	def members(self, ref: RefId) -> List[RefId]:
		root = self.find(ref)
		return sorted(r for r in self._parent if self.find(r) == root)

	def roots(self) -> List[RefId]:
		return sorted({self.find(r) for r in self._parent})

	def state(self, ref: RefId) -> BorrowState:
		return self._state[self.find(ref)]

	def is_frozen(self, ref: RefId) -> bool:
		return self.state(ref).is_frozen

	def freeze(self, borrow: RefId, through: RefId) -> BorrowState:
		"""Record a read-only borrow `borrow` taken through `through`."""
		if borrow in self._borrows:
			raise AssertionError(f"borrow {borrow} recorded twice")
		root = self.find(through)
		self._borrows[borrow] = through
		self._state[root] = self._state[root].freeze()
		return self._state[root]

	def release(self, borrow: RefId) -> Optional[BorrowState]:
		"""End a read-only borrow; returns the group's new state (None if unknown)."""
		through = self._borrows.pop(borrow, None)
		if through is None:
			return None
		root = self.find(through)
		self._state[root] = self._state[root].thaw()
		return self._state[root]

	def active_borrows(self, ref: RefId) -> List[RefId]:
		"""Borrow ids currently freezing the group of `ref`."""
		root = self.find(ref)
		return sorted(b for b, t in self._borrows.items() if self.find(t) == root)


__all__ = ["BorrowState", "FREE", "GroupConflict", "GroupTable"]
