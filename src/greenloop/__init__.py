"""Greenloop drives a repository's local checks and CI pipeline to green."""

__version__ = "0.1.0"

__all__ = ["__version__"]
