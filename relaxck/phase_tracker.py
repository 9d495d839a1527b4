# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Phase/region tracking for relaxed references.

Program points
--------------
`build_layout` numbers every statement of a function in pre-order (point 0 is
function entry, where parameters live). Each `RBlock` is a region covering
`[start, end)`; `end` is the first point after the block's last nested
statement. Statements in the two arms of one `RIf` carry different branch
paths so they are never ordered against each other.

Phase intervals
---------------
Relaxed-kind references are tracked per group (copies share their interval).
A group's interval starts at its earliest creation point and initially ends at
the latest declared scope end of its members. A conversion to Shared at point
`c` closes the converted group *and every group reachable from it through
recorded field edges* at `c + 1`.

Edges come from `target.field = source` stores (and from relaxed field reads
and read-only borrows, which make the result reachable from the receiver).
Because a later statement can still add an edge, intervals are solved as a
least fixed point over the whole function:

	end(target) = max(end(target), end(source))   for every edge

Closing reaches every edge source, so a source never ends after a closed
target. The violation shows up instead as a relaxed operation that happens
after a closing point of its group: the conversion claimed the interval was
closed, and the later use (typically the offending field store) proves it was
still open.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from relaxck import rir as R
from relaxck.core.diagnostics import DiagnosticCollector, DiagnosticKind
from relaxck.core.span import Span
from relaxck.groups import GroupTable
from relaxck.heap import Point, RefId, Region

logger = logging.getLogger(__name__)

# Region of everything that outlives the function body (callers, parameters).
CALLER_REGION: Region = 0
# Region of the function body block.
BODY_REGION: Region = 1

BranchPath = Tuple[Tuple[Point, int], ...]


@dataclass(frozen=True)
class ScopeInfo:
	"""One lexical region: `[start, end)` plus its parent region."""

	region: Region
	parent: Optional[Region]
	start: Point
	end: Point


@dataclass
class ProgramLayout:
	"""Program points, regions and branch paths of one function body."""

	points: Dict[int, Point] = field(default_factory=dict)  # id(stmt) -> point
	block_regions: Dict[int, Region] = field(default_factory=dict)  # id(block) -> region
	scopes: Dict[Region, ScopeInfo] = field(default_factory=dict)
	branches: Dict[Point, BranchPath] = field(default_factory=dict)
	function_end: Point = 1

	def point_of(self, stmt: R.RStmt) -> Point:
		try:
			return self.points[id(stmt)]
		except KeyError:
			raise AssertionError(f"statement {type(stmt).__name__} missing from layout") from None

	def region_of(self, block: R.RBlock) -> Region:
		return self.block_regions[id(block)]

	def scope_end(self, region: Region) -> Point:
		if region == CALLER_REGION:
			return self.function_end
		return self.scopes[region].end

	def parent(self, region: Region) -> Optional[Region]:
		if region == CALLER_REGION:
			return None
		return self.scopes[region].parent

	def encloses(self, outer: Region, inner: Region) -> bool:
		"""True when `outer` is `inner` or one of its ancestors."""
		cur: Optional[Region] = inner
		while cur is not None:
			if cur == outer:
				return True
			cur = self.parent(cur)
		return False

	def happens_after(self, later: Point, earlier: Point) -> bool:
		"""
		True when `later` can execute after `earlier`.

		Points in sibling arms of one `if` are mutually exclusive, whatever
		their numbering.
		"""
		if later <= earlier:
			return False
		lp = dict(self.branches.get(later, ()))
		for if_point, arm in self.branches.get(earlier, ()):
			if if_point in lp and lp[if_point] != arm:
				return False
		return True


def build_layout(fn: R.RFunction) -> ProgramLayout:
	"""Number the statements of `fn` and record its region tree."""
	layout = ProgramLayout()
	counter = 1
	next_region = BODY_REGION

	def visit_block(block: R.RBlock, parent: Region, path: BranchPath) -> None:
		nonlocal counter, next_region
		region = next_region
		next_region += 1
		layout.block_regions[id(block)] = region
		start = counter
		for stmt in block.statements:
			point = counter
			layout.points[id(stmt)] = point
			layout.branches[point] = path
			counter += 1
			if isinstance(stmt, R.RBlock):
				# A nested block statement is its own scope; its point is the entry.
				visit_block(stmt, region, path)
			elif isinstance(stmt, R.RIf):
				visit_block(stmt.then_block, region, path + ((point, 0),))
				if stmt.else_block is not None:
					visit_block(stmt.else_block, region, path + ((point, 1),))
		layout.scopes[region] = ScopeInfo(region=region, parent=parent, start=start, end=counter)

	visit_block(fn.body, CALLER_REGION, ())
	layout.function_end = counter
	return layout


@dataclass
class PhaseInterval:
	"""Solved interval of one group. `closed_at` is None for never-converted groups."""

	start: Point
	end: Point
	closed_at: Optional[Point] = None

	@property
	def is_closed(self) -> bool:
		return self.closed_at is not None

	def contains(self, point: Point) -> bool:
		return self.start <= point < self.end


@dataclass(frozen=True)
class _Edge:
	target: RefId
	source: RefId
	point: Point
	field_name: Optional[str]
	loc: Span


@dataclass(frozen=True)
class _Close:
	ref: RefId
	point: Point
	name: str
	loc: Span


@dataclass(frozen=True)
class _Use:
	ref: RefId
	point: Point
	name: str
	op: str
	loc: Span
	# Conversion point that froze the target object, for mutating uses.
	frozen_at: Optional[Point] = None


@dataclass
class _RefFacts:
	name: str
	start: Point
	scope_end: Point


class PhaseTracker:
	"""
	Records interval facts during the statement walk and solves them once the
	whole function has been seen.

	Facts are keyed by reference id; the group table is consulted only when
	solving, so merges that happen late in the walk still apply to earlier
	facts.
	"""

	def __init__(self, layout: ProgramLayout, groups: GroupTable, *, max_iterations: int = 10_000) -> None:
		self.layout = layout
		self.groups = groups
		self.max_iterations = max_iterations
		self._refs: Dict[RefId, _RefFacts] = {}
		self._edges: List[_Edge] = []
		self._closes: List[_Close] = []
		self._uses: List[_Use] = []

	# Recording

	def open(self, ref: RefId, name: str, start: Point, scope_end: Point) -> None:
		"""Start tracking a relaxed reference created at `start`."""
		self._refs[ref] = _RefFacts(name=name, start=start, scope_end=scope_end)

	def add_edge(
		self,
		target: RefId,
		source: RefId,
		point: Point,
		*,
		field_name: Optional[str] = None,
		loc: Span | None = None,
	) -> None:
		"""Record that `source` became reachable from `target` at `point`."""
		self._edges.append(_Edge(target, source, point, field_name, loc or Span()))

	def close(self, ref: RefId, name: str, point: Point, loc: Span | None = None) -> None:
		"""Record a conversion to Shared of `ref` at `point`."""
		self._closes.append(_Close(ref, point, name, loc or Span()))

	def note_use(
		self,
		ref: RefId,
		name: str,
		point: Point,
		op: str,
		loc: Span | None = None,
		*,
		frozen_at: Optional[Point] = None,
	) -> None:
		"""
		Record a relaxed operation on `ref` (checked against closing points).

		`frozen_at` is set for mutating uses whose target object was frozen by
		a conversion at that point, whether or not `ref`'s group is reachable
		from the converted reference.
		"""
		self._uses.append(_Use(ref, point, name, op, loc or Span(), frozen_at))

	# Solving

	def reach(self, ref: RefId) -> Set[RefId]:
		"""Group roots reachable from `ref`'s group through recorded edges (inclusive)."""
		succ = self._root_successors()
		start = self.groups.find(ref)
		seen = {start}
		stack = [start]
		while stack:
			cur = stack.pop()
			for nxt in succ.get(cur, ()):
				if nxt not in seen:
					seen.add(nxt)
					stack.append(nxt)
		return seen

	def _root_successors(self) -> Dict[RefId, Set[RefId]]:
		succ: Dict[RefId, Set[RefId]] = {}
		for edge in self._edges:
			succ.setdefault(self.groups.find(edge.target), set()).add(self.groups.find(edge.source))
		return succ

	def closers(self) -> Dict[RefId, List[_Close]]:
		"""Group root -> conversions that close it (directly or by reachability)."""
		result: Dict[RefId, List[_Close]] = {}
		for close in self._closes:
			for root in self.reach(close.ref):
				result.setdefault(root, []).append(close)
		return result

	def solve(self) -> Dict[RefId, PhaseInterval]:
		"""
		Compute the least fixed point of all group intervals.

		Pure over the recorded facts: calling it twice yields equal results.
		"""
		intervals: Dict[RefId, PhaseInterval] = {}
		for ref, facts in self._refs.items():
			root = self.groups.find(ref)
			cur = intervals.get(root)
			if cur is None:
				intervals[root] = PhaseInterval(start=facts.start, end=facts.scope_end)
			else:
				cur.start = min(cur.start, facts.start)
				cur.end = max(cur.end, facts.scope_end)
		for root, closes in self.closers().items():
			if root not in intervals:
				continue
			closed_at = min(c.point for c in closes) + 1
			iv = intervals[root]
			iv.closed_at = closed_at
			iv.end = closed_at
		iterations = 0
		changed = True
		while changed:
			iterations += 1
			if iterations > self.max_iterations:
				raise AssertionError(f"phase interval fixed point did not converge in {self.max_iterations} iterations")
			changed = False
			for edge in self._edges:
				t = intervals.get(self.groups.find(edge.target))
				s = intervals.get(self.groups.find(edge.source))
				if t is None or s is None or t is s:
					continue
				if s.end > t.end and not t.is_closed:
					t.end = s.end
					changed = True
		logger.debug("phase intervals converged after %d iteration(s) over %d group(s)", iterations, len(intervals))
		return intervals

	# Verdicts

	def report(self, intervals: Dict[RefId, PhaseInterval], diagnostics: DiagnosticCollector) -> None:
		"""Turn solved intervals into `IntervalStillOpen` diagnostics."""
		closers = self.closers()
		by_point = {c.point: c for c in self._closes}
		flagged: Set[Point] = set()
		for use in sorted(self._uses, key=lambda u: u.point):
			if use.point in flagged:
				continue
			root = self.groups.find(use.ref)
			interval = intervals.get(root)
			group_closers = closers.get(root, ()) if interval is not None and interval.is_closed else ()
			for close in group_closers:
				if not self.layout.happens_after(use.point, close.point):
					continue
				flagged.add(use.point)
				if self.groups.find(close.ref) == root:
					what = f"'{close.name}' was converted to Shared"
				else:
					what = f"'{use.name}' is reachable from '{close.name}', which was converted to Shared"
				at = f" at line {close.loc.line}" if close.loc.line is not None else ""
				diagnostics.error(
					DiagnosticKind.INTERVAL_STILL_OPEN,
					"use-after-phase-close",
					f"{what}{at} while its phase interval was still open; '{use.name}' is used here ({use.op})",
					use.loc,
					notes=[f"conversion of '{close.name}' happened here: {close.loc}"],
				)
				break
			else:
				self._report_frozen_target(use, by_point, flagged, diagnostics)

	def _report_frozen_target(
		self,
		use: _Use,
		by_point: Dict[Point, _Close],
		flagged: Set[Point],
		diagnostics: DiagnosticCollector,
	) -> None:
		# A mutating use through a relaxed handle whose object another
		# conversion froze, even with no recorded edge between the two.
		if use.frozen_at is None or not self.layout.happens_after(use.point, use.frozen_at):
			return
		flagged.add(use.point)
		close = by_point.get(use.frozen_at)
		by = f" by the conversion of '{close.name}'" if close is not None else ""
		notes = [f"conversion of '{close.name}' happened here: {close.loc}"] if close is not None else []
		diagnostics.error(
			DiagnosticKind.INTERVAL_STILL_OPEN,
			"use-after-phase-close",
			f"'{use.name}' points at an object frozen{by}; it cannot be used here ({use.op})",
			use.loc,
			notes=notes,
		)


__all__ = [
	"CALLER_REGION",
	"BODY_REGION",
	"ScopeInfo",
	"ProgramLayout",
	"build_layout",
	"PhaseInterval",
	"PhaseTracker",
]
