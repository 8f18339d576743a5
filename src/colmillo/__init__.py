"""Colmillo - two-user project and task time tracking."""

__version__ = "0.1.0"
