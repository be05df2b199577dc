"""Chronovault — time-locked secrets shared as self-contained links."""

__version__ = "0.1.0"
