"""Mneme context assembly."""

from mneme.context.builder import ContextBuilder

__all__ = ["ContextBuilder"]
