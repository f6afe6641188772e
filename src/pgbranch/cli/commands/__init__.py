"""CLI command modules."""

from . import branch, diagnostics, hooks

__all__ = [
    "branch",
    "diagnostics",
    "hooks",
]
