"""Assignmint: expert matching and task reservation engine."""

__version__ = "0.1.0"
