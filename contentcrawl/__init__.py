"""Adaptive multi-source content crawler."""

__version__ = "0.1.0"
