"""Zenith: turn a repository URL into a built, publicly reachable static site."""

__version__ = "0.1.0"
