"""Core data models for pgbranch."""

from .base import PgBranchStateModel
from .branch import DatabaseBranch, EngineState, BranchCandidate

__all__ = [
    "PgBranchStateModel",
    "DatabaseBranch",
    "EngineState",
    "BranchCandidate",
]
