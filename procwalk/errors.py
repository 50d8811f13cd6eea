"""Exceptions raised while loading process projects."""

from __future__ import annotations


class ProcwalkError(Exception):
    """Base class for procwalk errors."""


class ProjectError(ProcwalkError):
    """The project directory or its manifest cannot be used."""


class DiagramError(ProcwalkError):
    """The process diagram cannot be parsed."""
