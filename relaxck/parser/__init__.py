# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Textual front end for relaxck input units (lark LALR grammar)."""

from .parser import parse_program

__all__ = ["parse_program"]
