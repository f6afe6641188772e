"""Local engine state for pgbranch.

The state file records which database branches pgbranch created and which
one is current. It lives next to the project config under ``.pgbranch/``
and is never shared between machines.
"""

import logging
from pathlib import Path
from typing import List, Optional

import toml
from pydantic import ValidationError

from pgbranch.errors import ConfigError, NameCollisionError
from pgbranch.models import DatabaseBranch, EngineState
from pgbranch.utils.fs import atomic_write_text

logger = logging.getLogger(__name__)

STATE_DIR_NAME = ".pgbranch"
STATE_FILE_NAME = "state.toml"
STATE_VERSION = 1


class StateStore:
    """Loads and saves EngineState atomically."""

    def __init__(self, project_root: Path, state_path: Optional[Path] = None):
        """Initialize state store.

        Args:
            project_root: Directory holding the project config
            state_path: Override for the state file location
        """
        self.project_root = Path(project_root)
        self.state_path = (
            Path(state_path)
            if state_path
            else self.project_root / STATE_DIR_NAME / STATE_FILE_NAME
        )

    @property
    def exists(self) -> bool:
        return self.state_path.exists()

    def load(self) -> EngineState:
        """Load the persisted state.

        A missing state file means pgbranch has not run here yet, so an
        empty state is returned.

        Raises:
            ConfigError: If the state file exists but cannot be parsed
        """
        if not self.exists:
            logger.debug(f"No state file at {self.state_path}, starting empty")
            return EngineState()

        try:
            with open(self.state_path, "r", encoding="utf-8") as f:
                data = toml.load(f)
        except (OSError, toml.TomlDecodeError) as e:
            raise ConfigError(f"Failed to read state file {self.state_path}: {e}") from e

        version = data.pop("version", STATE_VERSION)
        if isinstance(version, int) and version > STATE_VERSION:
            logger.warning(
                f"State file {self.state_path} was written by a newer pgbranch "
                f"(version {version}); unknown fields are ignored"
            )

        try:
            return EngineState.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"Invalid state file {self.state_path}:\n{e}") from e

    def save(self, state: EngineState) -> None:
        """Persist the state, replacing the previous file in one step."""
        document = {"version": STATE_VERSION}
        document.update(state.model_dump(mode="json", exclude_none=True))
        atomic_write_text(self.state_path, toml.dumps(document))
        logger.debug(
            f"Saved state with {len(state.branches)} branches to {self.state_path}"
        )

    def upsert(self, branch: DatabaseBranch) -> EngineState:
        """Insert or replace a single record and persist."""
        state = self.load()
        clash = state.find_by_db_name(branch.db_name)
        if clash is not None and clash.name != branch.name:
            raise NameCollisionError(branch.db_name, branch.name, clash.name)
        state.upsert(branch)
        self.save(state)
        return state

    def remove(self, name: str) -> Optional[DatabaseBranch]:
        """Remove a single record and persist. Returns the removed record."""
        state = self.load()
        removed = state.remove(name)
        if removed is not None:
            self.save(state)
        return removed

    def list(self) -> List[DatabaseBranch]:
        """All records ordered by creation time."""
        return self.load().ordered()
