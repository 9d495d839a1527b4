# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Source span attached to program-graph nodes and diagnostics.

A Span carries best-effort file/line/column info. Front ends that have their
own location objects (lark `Meta`, hand-built test graphs) convert them through
`from_loc`/`from_meta`; the original object is kept in `raw`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class Span:
	"""Represents a source span (best-effort file/line/column plus raw parser loc)."""

	file: Optional[str] = None
	line: Optional[int] = None
	column: Optional[int] = None
	end_line: Optional[int] = None
	end_column: Optional[int] = None
	raw: Any = None

	@classmethod
	def from_loc(cls, loc: Any) -> "Span":
		"""
		Construct a Span from an existing location object.

		If `loc` is already a Span, it is returned unchanged; otherwise the
		foreign object is stored in `raw`.
		"""
		if loc is None:
			return cls()
		if isinstance(loc, cls):
			return loc
		return cls(
			file=getattr(loc, "file", None) or getattr(loc, "filename", None) or None,
			line=getattr(loc, "line", None),
			column=getattr(loc, "column", None),
			end_line=getattr(loc, "end_line", None),
			end_column=getattr(loc, "end_column", None),
			raw=loc,
		)

	@classmethod
	def from_meta(cls, meta: Any, file: Optional[str] = None) -> "Span":
		"""Build a Span from a lark `Meta` (empty metas yield an unknown span)."""
		if meta is None or getattr(meta, "empty", True):
			return cls(file=file)
		return cls(
			file=file,
			line=meta.line,
			column=meta.column,
			end_line=meta.end_line,
			end_column=meta.end_column,
		)

	def is_known(self) -> bool:
		return self.line is not None

	def sort_key(self) -> tuple[int, int]:
		"""Ordering key; unknown locations sort last."""
		if self.line is None:
			return (1 << 30, 0)
		return (self.line, self.column or 0)

	def __str__(self) -> str:
		if self.line is None:
			return self.file or "<unknown>"
		where = f"{self.line}:{self.column or 0}"
		return f"{self.file}:{where}" if self.file else where


__all__ = ["Span"]
