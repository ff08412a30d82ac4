"""Operator command line for the ComputeFabric orchestrator."""

from .main import app

__all__ = ["app"]
