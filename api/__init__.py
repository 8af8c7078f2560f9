"""API module."""

from .guards import require, require_any

__all__ = [
    "require",
    "require_any",
]
