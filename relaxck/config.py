# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Checker configuration."""

from __future__ import annotations

import argparse
from dataclasses import dataclass


@dataclass(frozen=True)
class CheckerOptions:
	"""
	Knobs for one checker run.

	allow_finalizers: permit finalized (destructor-carrying) structs behind
	  relaxed references. Off by default: aliased group members could otherwise
	  finalize one object twice.
	max_fixpoint_iterations: hard cap on interval fixed-point rounds. The
	  iteration is monotone over a finite set of points, so hitting the cap
	  means a tracker bug and raises AssertionError.
	"""

	allow_finalizers: bool = False
	max_fixpoint_iterations: int = 10_000

	def __post_init__(self) -> None:
		if self.max_fixpoint_iterations < 1:
			raise ValueError("max_fixpoint_iterations must be >= 1")

	@classmethod
	def from_args(cls, args: argparse.Namespace) -> "CheckerOptions":
		"""Build options from parsed driver flags (missing flags keep defaults)."""
		defaults = cls()
		return cls(
			allow_finalizers=bool(getattr(args, "allow_finalizers", defaults.allow_finalizers)),
			max_fixpoint_iterations=int(
				getattr(args, "max_fixpoint_iterations", None) or defaults.max_fixpoint_iterations
			),
		)


__all__ = ["CheckerOptions"]
