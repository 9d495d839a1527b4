#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Phase/region tracker: program layout, interval fixed point and verdicts.

The statements only provide program points here, so plain arena
declarations stand in for real work.
"""

from relaxck import rir as R
from relaxck.core.diagnostics import DiagnosticCollector, DiagnosticKind
from relaxck.groups import GroupTable
from relaxck.phase_tracker import BODY_REGION, CALLER_REGION, PhaseTracker, build_layout


def _stmts(n: int) -> list:
	return [R.RArenaDecl(name=f"s{i}") for i in range(n)]


def _tracker(fn: R.RFunction, *refs: int):
	layout = build_layout(fn)
	groups = GroupTable()
	for ref in refs:
		groups.add(ref)
	return layout, groups, PhaseTracker(layout, groups)


def test_layout_numbers_points_and_regions():
	inner = R.RBlock(statements=_stmts(2))
	body = R.RBlock(statements=[R.RArenaDecl(name="a"), inner, R.RArenaDecl(name="b")])
	layout = build_layout(R.RFunction(name="f", body=body))
	assert layout.point_of(body.statements[0]) == 1
	assert layout.point_of(inner) == 2
	assert layout.point_of(inner.statements[1]) == 4
	assert layout.point_of(body.statements[2]) == 5
	assert layout.function_end == 6
	inner_region = layout.region_of(inner)
	assert layout.scope_end(inner_region) == 5
	assert layout.scope_end(BODY_REGION) == 6
	assert layout.encloses(BODY_REGION, inner_region)
	assert not layout.encloses(inner_region, BODY_REGION)
	assert layout.encloses(CALLER_REGION, inner_region)


def test_if_arms_are_unordered():
	then_b = R.RBlock(statements=_stmts(1))
	else_b = R.RBlock(statements=_stmts(1))
	body = R.RBlock(statements=[R.RIf(cond="c", then_block=then_b, else_block=else_b), R.RArenaDecl(name="z")])
	layout = build_layout(R.RFunction(name="f", body=body))
	p_then = layout.point_of(then_b.statements[0])
	p_else = layout.point_of(else_b.statements[0])
	p_after = layout.point_of(body.statements[1])
	assert p_else > p_then
	assert not layout.happens_after(p_else, p_then)
	assert layout.happens_after(p_after, p_then)
	assert layout.happens_after(p_after, p_else)


def test_edge_widens_target_interval():
	inner = R.RBlock(statements=_stmts(2))
	body = R.RBlock(statements=[R.RArenaDecl(name="a"), inner, R.RArenaDecl(name="b")])
	fn = R.RFunction(name="f", body=body)
	layout, groups, tracker = _tracker(fn, 1, 2)
	inner_end = layout.scope_end(layout.region_of(inner))
	tracker.open(1, "t", 3, inner_end)
	tracker.open(2, "s", 1, layout.function_end)
	tracker.add_edge(1, 2, 4, field_name="next")
	intervals = tracker.solve()
	assert intervals[1].end == layout.function_end
	assert intervals[2].end == layout.function_end
	assert not intervals[1].is_closed


def test_close_reaches_through_edges_and_solve_is_idempotent():
	fn = R.RFunction(name="f", body=R.RBlock(statements=_stmts(6)))
	layout, groups, tracker = _tracker(fn, 1, 2, 3)
	tracker.open(1, "a", 1, layout.function_end)
	tracker.open(2, "b", 2, layout.function_end)
	tracker.open(3, "c", 3, layout.function_end)
	tracker.add_edge(1, 2, 3, field_name="next")
	tracker.close(1, "a", 4)
	first = tracker.solve()
	assert first[1].closed_at == 5 and first[1].end == 5
	assert first[2].closed_at == 5
	assert not first[3].is_closed
	assert tracker.solve() == first


def test_use_after_close_reported_once_per_point():
	fn = R.RFunction(name="f", body=R.RBlock(statements=_stmts(6)))
	layout, groups, tracker = _tracker(fn, 1, 2)
	tracker.open(1, "a", 1, layout.function_end)
	tracker.open(2, "b", 2, layout.function_end)
	tracker.add_edge(1, 2, 3, field_name="next")
	tracker.note_use(1, "a", 3, "field write")
	tracker.close(1, "a", 4)
	tracker.note_use(2, "b", 5, "field write")
	tracker.note_use(1, "a", 5, "field write")
	coll = DiagnosticCollector()
	tracker.report(tracker.solve(), coll)
	assert len(coll.diagnostics) == 1
	diag = coll.diagnostics[0]
	assert diag.kind is DiagnosticKind.INTERVAL_STILL_OPEN
	assert diag.rule == "use-after-phase-close"
	assert "'b' is reachable from 'a'" in diag.message


def test_copies_share_one_interval():
	fn = R.RFunction(name="f", body=R.RBlock(statements=_stmts(4)))
	layout, groups, tracker = _tracker(fn, 1)
	groups.join(2, 1)
	tracker.open(1, "a", 1, layout.function_end)
	tracker.open(2, "b", 2, 3)
	tracker.close(2, "b", 3)
	intervals = tracker.solve()
	assert list(intervals) == [groups.find(1)]
	assert intervals[groups.find(1)].start == 1
	assert intervals[groups.find(1)].closed_at == 4
