# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
relaxck: relaxed-reference kind checker.

Pipeline:
  source text -> relaxck.parser (lark) -> relaxck.rir program graph
    -> relaxck.relaxed_check_pass.RelaxedChecker -> CheckResult

The CLI entrypoint is `relaxck.driver:main` (`python -m relaxck`).
"""

__all__ = []
