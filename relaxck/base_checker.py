# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Protocol for the pre-existing checker of ordinary references.

The relaxed-reference checker never re-derives lifetimes or ordinary loans; it
asks the base checker two questions:

  - does region L1 outlive region L2?
  - is object O currently borrowed under ordinary rules?

`ScopeTreeBase` answers them from the lexical region tree of one function.
A hosting compiler plugs in its own implementation instead.
"""

from __future__ import annotations

from typing import Dict, Protocol

from relaxck.heap import ObjectHandle, Region
from relaxck.phase_tracker import CALLER_REGION, ProgramLayout


class BaseChecker(Protocol):
	"""Queries the relaxed-reference checker makes of the ordinary borrow checker."""

	def outlives(self, longer: Region, shorter: Region) -> bool:
		"""Return True when region `longer` lives at least as long as `shorter`."""
		...

	def is_borrowed(self, obj: ObjectHandle) -> bool:
		"""Return True when `obj` is currently borrowed under ordinary rules."""
		...

	def record_loan(self, obj: ObjectHandle) -> None:
		"""Notify the base checker of an ordinary borrow taken by this pass."""
		...

	def release_loan(self, obj: ObjectHandle) -> None:
		"""Notify the base checker that an ordinary borrow ended."""
		...


class ScopeTreeBase:
	"""
	Lexical-scope base checker.

	Regions are the lexical blocks of a `ProgramLayout`; `CALLER_REGION` is the
	root and outlives everything. Loans are counted per object handle.
	"""

	def __init__(self, layout: ProgramLayout) -> None:
		self.layout = layout
		self._loans: Dict[ObjectHandle, int] = {}

	def outlives(self, longer: Region, shorter: Region) -> bool:
		if longer == CALLER_REGION:
			return True
		if shorter == CALLER_REGION:
			return False
		return self.layout.encloses(longer, shorter)

	def is_borrowed(self, obj: ObjectHandle) -> bool:
		return self._loans.get(obj, 0) > 0

	def record_loan(self, obj: ObjectHandle) -> None:
		self._loans[obj] = self._loans.get(obj, 0) + 1

	def release_loan(self, obj: ObjectHandle) -> None:
		count = self._loans.get(obj, 0)
		if count <= 1:
			self._loans.pop(obj, None)
		else:
			self._loans[obj] = count - 1


__all__ = ["BaseChecker", "ScopeTreeBase"]
