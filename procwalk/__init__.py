"""Branching playback for narrated process diagrams."""

__version__ = "0.1.0"
