"""Abi — procurement intelligence assistant."""

__version__ = "1.0.0"
