"""Exceptions raised by pgbranch.

Every error the engine raises derives from PgBranchError so the CLI can
report them uniformly. Library code raises with ``from`` so the causal
chain survives up to the user.
"""

from pathlib import Path
from typing import Optional, Union


class PgBranchError(Exception):
    """Base class for all pgbranch errors."""

    pass


class ConfigError(PgBranchError):
    """Raised when configuration or persisted state is missing or invalid."""

    pass


class DatabaseConnectionError(PgBranchError):
    """Raised when the database server cannot be reached or authenticated."""

    pass


class NameCollisionError(PgBranchError):
    """Raised when two branches resolve to the same physical database name."""

    def __init__(self, db_name: str, branch: str, existing: str):
        self.db_name = db_name
        self.branch = branch
        self.existing = existing
        super().__init__(
            f"Branch '{branch}' resolves to database '{db_name}', "
            f"which is already used by '{existing}'"
        )


class TemplateInUseError(PgBranchError):
    """Raised when the template database has other active sessions."""

    def __init__(self, template: str, db_name: str):
        self.template = template
        self.db_name = db_name
        super().__init__(
            f"Cannot create '{db_name}': template database '{template}' is being "
            f"accessed by other users. Close other sessions and try again."
        )


class DatabaseExistsError(PgBranchError):
    """Raised when a database that should be created already exists."""

    pass


class DatabaseNotFoundError(PgBranchError):
    """Raised when a database or database branch does not exist."""

    pass


class ProtectedBranchError(PgBranchError):
    """Raised when deleting the current branch or the template database."""

    pass


class CommandFailedError(PgBranchError):
    """Raised when a post-command exits non-zero or cannot be started."""

    def __init__(
        self, command: str, returncode: Optional[int] = None, output: str = ""
    ):
        self.command = command
        self.returncode = returncode
        self.output = output
        if returncode is None:
            message = f"Command could not be run: {command}"
        else:
            message = f"Command failed with exit code {returncode}: {command}"
        if output:
            message = f"{message}\n{output.strip()}"
        super().__init__(message)


class FileMissingError(PgBranchError):
    """Raised when a replace step targets a missing file."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        super().__init__(f"File not found: {self.path}")


class ConditionEvalError(PgBranchError):
    """Raised when a post-command condition cannot be evaluated."""

    pass
