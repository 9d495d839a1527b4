"""
relaxck.core: shared core types used across the checker.

Modules:
  - span: source spans for nodes and diagnostics
  - diagnostics: Diagnostic, DiagnosticKind, DiagnosticCollector, CheckResult
  - kinds: reference kinds, field kinds and the conversion lattice
"""

__all__ = [
	"span",
	"diagnostics",
	"kinds",
]
