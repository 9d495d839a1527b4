# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Diagnostics produced by the relaxed-reference checker.

Every violation carries a stable `DiagnosticKind` tag plus the name of the
rule it broke, so tests and tooling can assert on the category rather than on
message text. Diagnostics are accumulated; the only early exit is an aborted
function (see `relaxck.groups.GroupConflict`).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional

from .span import Span


class DiagnosticKind(Enum):
	"""Stable category tags for checker violations."""

	INTERVAL_STILL_OPEN = "IntervalStillOpen"
	KIND_MISMATCH = "KindMismatch"
	CALL_BOUNDARY_VIOLATION = "CallBoundaryViolation"
	CONCURRENCY_ESCAPE = "ConcurrencyEscape"
	ALIASING_AMBIGUITY = "AliasingAmbiguity"


@dataclass
class Diagnostic:
	"""Represents a checker diagnostic: `(kind, location, violated rule)` plus message."""

	message: str
	kind: DiagnosticKind | None = None
	rule: str | None = None
	# Phase label (`relaxcheck` for the checker proper, `parser`/`graph` for
	# front-end failures surfaced by the driver).
	phase: str | None = None
	severity: str = "error"
	span: Span = field(default_factory=Span)  # Source location (Span() denotes unknown).
	function: str | None = None
	notes: list[str] = field(default_factory=list)

	def __post_init__(self) -> None:
		if self.span is None:  # type: ignore[unreachable]
			self.span = Span()

	@property
	def code(self) -> str | None:
		"""Kind tag as a string (what JSON output and tests key on)."""
		return self.kind.value if self.kind is not None else None

	def __str__(self) -> str:
		tag = f"[{self.code}:{self.rule}] " if self.kind is not None else ""
		return f"{self.span}: {self.severity}: {tag}{self.message}"


@dataclass
class DiagnosticCollector:
	"""
	Accumulates diagnostics for one analysis pass.

	The collector is owned by the per-function `CheckContext`; the pass merges
	each function's collector into the compilation-unit result.
	"""

	phase: str = "relaxcheck"
	function: Optional[str] = None
	diagnostics: List[Diagnostic] = field(default_factory=list)

	def error(
		self,
		kind: DiagnosticKind,
		rule: str,
		message: str,
		span: Span | None = None,
		*,
		notes: Iterable[str] = (),
	) -> Diagnostic:
		"""Append an error-level diagnostic anchored at `span` and return it."""
		diag = Diagnostic(
			message=message,
			kind=kind,
			rule=rule,
			phase=self.phase,
			severity="error",
			span=span or Span(),
			function=self.function,
			notes=list(notes),
		)
		self.diagnostics.append(diag)
		return diag

	def extend(self, diags: Iterable[Diagnostic]) -> None:
		self.diagnostics.extend(diags)

	def ordered(self) -> List[Diagnostic]:
		"""Diagnostics in source order (stable for equal locations)."""
		return sorted(self.diagnostics, key=lambda d: d.span.sort_key())

	def of_kind(self, kind: DiagnosticKind) -> List[Diagnostic]:
		return [d for d in self.diagnostics if d.kind is kind]

	@property
	def has_errors(self) -> bool:
		return any(d.severity == "error" for d in self.diagnostics)


@dataclass
class CheckResult:
	"""Verdict for one compilation unit."""

	unit: str
	diagnostics: List[Diagnostic] = field(default_factory=list)
	aborted_functions: List[str] = field(default_factory=list)

	@property
	def passed(self) -> bool:
		return not any(d.severity == "error" for d in self.diagnostics)

	def kinds(self) -> List[DiagnosticKind]:
		return [d.kind for d in self.diagnostics if d.kind is not None]


__all__ = ["DiagnosticKind", "Diagnostic", "DiagnosticCollector", "CheckResult"]
