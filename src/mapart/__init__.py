"""Cooperative map art construction by a pool of builder workers."""

__version__ = "0.1.0"
