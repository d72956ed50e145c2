"""Operator command line for ew-engine."""

from ew_engine import __version__

__all__ = ["__version__"]
