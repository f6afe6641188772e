"""Database branch and engine state models for pgbranch."""

from datetime import datetime, timezone
from typing import Any, List, Optional

from pydantic import Field, field_serializer, field_validator, model_validator

from .base import PgBranchStateModel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DatabaseBranch(PgBranchStateModel):
    """Maps a Git branch onto the physical database created for it."""

    name: str = Field(description="Logical branch name")
    db_name: str = Field(description="Physical database name")
    source_branch: Optional[str] = Field(
        default=None, description="Git branch the database was created for"
    )
    created_at: datetime = Field(
        default_factory=utc_now, description="Creation timestamp"
    )
    last_switched_at: Optional[datetime] = Field(
        default=None, description="Last time this branch became current"
    )

    @field_validator("name", "db_name")
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        if not v:
            raise ValueError("must not be empty")
        return v

    @field_serializer("created_at", "last_switched_at")
    def serialize_datetime(self, dt: Optional[datetime], _info: Any) -> Optional[str]:
        """Serialize datetime to ISO format."""
        return dt.isoformat() if dt else None


class BranchCandidate(PgBranchStateModel):
    """An entry offered when picking a branch to switch to."""

    name: Optional[str] = Field(description="Branch name, None for the template")
    db_name: str
    is_current: bool = False
    is_template: bool = False

    @property
    def label(self) -> str:
        if self.is_template:
            return f"{self.db_name} (template)"
        return self.name or self.db_name


class EngineState(PgBranchStateModel):
    """Known database branches plus the current pointer.

    ``current`` names the current DatabaseBranch; None means the template
    database is current.
    """

    current: Optional[str] = Field(
        default=None, description="Current branch name, None for the template"
    )
    branches: List[DatabaseBranch] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_consistency(self) -> "EngineState":
        """Enforce unique names and physical names, and a valid pointer."""
        names = set()
        db_names = set()
        for branch in self.branches:
            if branch.name in names:
                raise ValueError(f"Duplicate branch record '{branch.name}'")
            if branch.db_name in db_names:
                raise ValueError(f"Duplicate database name '{branch.db_name}'")
            names.add(branch.name)
            db_names.add(branch.db_name)

        if self.current is not None and self.current not in names:
            raise ValueError(f"Current branch '{self.current}' has no record")
        return self

    @property
    def is_template_current(self) -> bool:
        return self.current is None

    def get(self, name: str) -> Optional[DatabaseBranch]:
        return next((b for b in self.branches if b.name == name), None)

    def find_by_db_name(self, db_name: str) -> Optional[DatabaseBranch]:
        return next((b for b in self.branches if b.db_name == db_name), None)

    def current_branch(self) -> Optional[DatabaseBranch]:
        if self.current is None:
            return None
        return self.get(self.current)

    def upsert(self, branch: DatabaseBranch) -> None:
        """Insert a record or replace the one with the same name.

        Raises:
            ValueError: If another record already uses the physical name
        """
        clash = self.find_by_db_name(branch.db_name)
        if clash is not None and clash.name != branch.name:
            raise ValueError(
                f"Database '{branch.db_name}' is already used by '{clash.name}'"
            )

        for index, existing in enumerate(self.branches):
            if existing.name == branch.name:
                self.branches[index] = branch
                return
        self.branches.append(branch)

    def remove(self, name: str) -> Optional[DatabaseBranch]:
        """Remove a record; the pointer falls back to the template if it was current."""
        branch = self.get(name)
        if branch is None:
            return None
        self.branches = [b for b in self.branches if b.name != name]
        if self.current == name:
            self.current = None
        return branch

    def ordered(self) -> List[DatabaseBranch]:
        """Records ordered by creation time, oldest first."""
        return sorted(self.branches, key=lambda b: b.created_at)
