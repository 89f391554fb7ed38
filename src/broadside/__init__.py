"""Broadside: two-player naval combat with an authoritative game engine."""

__version__ = "0.1.0"
