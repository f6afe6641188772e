"""pgbranch managers."""

from pgbranch.managers.branch import BranchManager, BranchResult, TEMPLATE_MARKER

__all__ = [
    "BranchManager",
    "BranchResult",
    "TEMPLATE_MARKER",
]
