"""Coordination of autonomous Claude agent workers."""

__version__ = "0.1.0"

__all__ = ["__version__"]
