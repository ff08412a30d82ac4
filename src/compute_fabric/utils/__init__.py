"""Miscellaneous utilities used across modules."""

from .metrics import render_latest

__all__ = ["render_latest"]
