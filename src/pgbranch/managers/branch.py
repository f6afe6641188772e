"""Branch management for pgbranch."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from pgbranch.config import ProjectConfig
from pgbranch.core.branch_filter import BranchFilter, FilterDecision
from pgbranch.core.driver import DatabaseDriver
from pgbranch.core.git import VcsEvent
from pgbranch.core.post_commands import PipelineResult, PostCommandExecutor
from pgbranch.core.state import StateStore
from pgbranch.errors import (
    DatabaseNotFoundError,
    NameCollisionError,
    ProtectedBranchError,
)
from pgbranch.models import BranchCandidate, DatabaseBranch, EngineState
from pgbranch.utils.template import TemplateContext

logger = logging.getLogger(__name__)

# Accepted wherever a branch name is, meaning "the template database"
TEMPLATE_MARKER = "_main"


@dataclass
class BranchResult:
    """What a create or switch did, including the post-command trace."""

    branch: Optional[DatabaseBranch]
    db_name: str
    created: bool = False
    evicted: List[DatabaseBranch] = field(default_factory=list)
    pipeline: PipelineResult = field(default_factory=PipelineResult)

    @property
    def is_template(self) -> bool:
        return self.branch is None

    def raise_for_failure(self) -> None:
        self.pipeline.raise_for_failure()


class BranchManager:
    """Creates, switches, deletes and evicts branch databases.

    Every public operation loads the engine state, threads it through the
    private helpers and saves it before returning. A failure aborts the
    operation; database creation and the post-command pipeline are not
    rolled back against each other.
    """

    def __init__(
        self,
        config: ProjectConfig,
        driver: DatabaseDriver,
        store: StateStore,
        working_dir: Optional[Path] = None,
        clock: Optional[Callable[[], datetime]] = None,
        capture_output: bool = False,
    ):
        """Initialize branch manager.

        Args:
            config: Project configuration
            driver: Database driver performing the physical operations
            store: Persistent engine state
            working_dir: Where post-commands run (default: the store's project root)
            clock: Source of timestamps (default: current UTC time)
            capture_output: Capture post-command output instead of streaming it
        """
        self.config = config
        self.driver = driver
        self.store = store
        self.working_dir = Path(working_dir) if working_dir else store.project_root
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.capture_output = capture_output
        self.filter = BranchFilter(config.git)

    @property
    def template_database(self) -> str:
        return self.config.database.template_database

    def is_template_target(self, branch: Optional[str]) -> bool:
        """Whether a branch name routes to the template database."""
        if branch is None or branch == TEMPLATE_MARKER:
            return True
        return self.filter.classify(branch) in (FilterDecision.MAIN, FilterDecision.EXCLUDED)

    def resolve_name(self, branch: str) -> str:
        """Physical database name for a branch, ignoring the template routing."""
        return self.config.database_name(branch)

    def template_variables(
        self, branch: Optional[str], db_name: Optional[str] = None
    ) -> Dict[str, str]:
        """Template variables bound for a branch (None or the marker for the template).

        ``db_name`` defaults to the database recorded for the branch, falling
        back to the name the current naming settings resolve to.
        """
        db = self.config.database
        if self.is_template_target(branch):
            branch_name = self.config.git.main_branch if branch in (None, TEMPLATE_MARKER) else branch
            db_name = self.template_database
        else:
            branch_name = branch
            if db_name is None:
                record = self.store.load().get(branch)
                db_name = record.db_name if record else self.resolve_name(branch)

        return TemplateContext(
            branch_name=branch_name,
            db_name=db_name,
            db_host=db.host,
            db_port=db.port,
            db_user=db.user,
            db_password=db.password,
            template_db=db.template_database,
            prefix=db.database_prefix,
        ).variables()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_branches(self) -> List[DatabaseBranch]:
        return self.store.load().ordered()

    def current(self) -> Optional[DatabaseBranch]:
        """The current record, or None when the template is current."""
        return self.store.load().current_branch()

    def list_candidates(self) -> List[BranchCandidate]:
        """Branches a user can switch to: the template first, then records."""
        state = self.store.load()
        candidates = [
            BranchCandidate(
                name=None,
                db_name=self.template_database,
                is_current=state.is_template_current,
                is_template=True,
            )
        ]
        for record in state.ordered():
            candidates.append(
                BranchCandidate(
                    name=record.name,
                    db_name=record.db_name,
                    is_current=record.name == state.current,
                )
            )
        return candidates

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def create(
        self,
        branch: str,
        source_branch: Optional[str] = None,
        run_post_commands: bool = True,
    ) -> BranchResult:
        """Create the database for a branch; a no-op if it already has one.

        A newly created database gets the post-commands run against it
        unless ``run_post_commands`` is False. As with switch, a failing
        post-command leaves the database in place.

        Raises:
            ProtectedBranchError: If the branch maps to the template database
            NameCollisionError: If another record already uses the resolved name
            TemplateInUseError: If the template has other active sessions
        """
        if self.is_template_target(branch):
            raise ProtectedBranchError(
                f"'{branch}' uses the template database '{self.template_database}' "
                f"and cannot get its own database branch"
            )

        state = self.store.load()
        record, created = self._ensure_record(state, branch, source_branch)
        result = BranchResult(branch=record, db_name=record.db_name, created=created)
        if not created:
            return result

        result.evicted = self._auto_cleanup(state)
        if run_post_commands:
            result.pipeline = self._run_post_commands(record.name, record.db_name)
        return result

    def switch(self, branch: Optional[str]) -> BranchResult:
        """Make a branch current and run the post-commands for it.

        ``None``, the template marker, the main branch and excluded branches
        switch to the template database. Other branches get a database
        created on demand when ``auto_create_on_branch`` allows it.

        A failing post-command does not undo the switch; inspect
        ``result.pipeline`` or call ``result.raise_for_failure()``.

        Raises:
            DatabaseNotFoundError: If the branch has no database and auto-create is off
        """
        if self.is_template_target(branch):
            return self.switch_to_template()

        state = self.store.load()
        if state.get(branch) is None and not self.config.git.auto_create_on_branch:
            raise DatabaseNotFoundError(
                f"No database branch for '{branch}' and auto_create_on_branch is disabled. "
                f"Run 'pgbranch create {branch}' first."
            )

        record, created = self._ensure_record(state, branch)
        record.last_switched_at = self.clock()
        state.current = record.name
        self.store.save(state)
        logger.info(f"Switched to database branch {record.name} ({record.db_name})")

        evicted = self._auto_cleanup(state)
        pipeline = self._run_post_commands(record.name, record.db_name)
        return BranchResult(
            branch=record,
            db_name=record.db_name,
            created=created,
            evicted=evicted,
            pipeline=pipeline,
        )

    def switch_to_template(self) -> BranchResult:
        """Point at the template database without creating anything."""
        state = self.store.load()
        state.current = None
        self.store.save(state)
        logger.info(f"Switched to template database {self.template_database}")

        pipeline = self._run_post_commands(TEMPLATE_MARKER)
        return BranchResult(branch=None, db_name=self.template_database, pipeline=pipeline)

    def delete(self, branch: str) -> DatabaseBranch:
        """Drop a branch database and forget it.

        Branches that are excluded after their database was created can
        still be deleted; only the main branch, the template marker and
        records pointing at the template database are refused.

        Raises:
            ProtectedBranchError: For the template database or the current branch
            DatabaseNotFoundError: If there is no record for the branch
        """
        if branch in (None, TEMPLATE_MARKER) or self.filter.classify(branch) is FilterDecision.MAIN:
            raise ProtectedBranchError(
                f"'{branch}' uses the template database '{self.template_database}', "
                f"which cannot be deleted"
            )

        state = self.store.load()
        record = state.get(branch)
        if record is None:
            raise DatabaseNotFoundError(f"Database branch '{branch}' does not exist")
        if record.name == state.current:
            raise ProtectedBranchError(
                f"Cannot delete '{branch}' because it is the current branch. "
                f"Switch to another branch first."
            )
        if record.db_name == self.template_database:
            raise ProtectedBranchError(
                f"Cannot delete the template database '{self.template_database}'"
            )

        self._drop(record)
        state.remove(record.name)
        self.store.save(state)
        return record

    def cleanup(self, max_count: Optional[int] = None) -> List[DatabaseBranch]:
        """Evict the oldest non-current branches until at most ``max_count`` remain.

        Returns:
            The evicted records, oldest first
        """
        if max_count is None:
            max_count = self.config.behavior.max_branches
        if max_count < 0:
            raise ValueError("max_count cannot be negative")

        state = self.store.load()
        return self._evict(state, max_count)

    def reconcile(self) -> List[DatabaseBranch]:
        """Forget records whose database no longer exists on the server.

        Returns:
            The records that were removed
        """
        state = self.store.load()
        stale = [r for r in state.ordered() if not self.driver.exists(r.db_name)]
        for record in stale:
            logger.warning(
                f"Database {record.db_name} for branch {record.name} no longer exists, "
                f"removing it from state"
            )
            state.remove(record.name)
        if stale:
            self.store.save(state)
        return stale

    def handle_vcs_event(self, branch: Optional[str], event: VcsEvent) -> Optional[BranchResult]:
        """React to a Git hook by switching the database branch.

        Returns:
            The switch result, or None if the branch is not handled automatically
        """
        event = VcsEvent(event)
        if branch is None:
            logger.info(f"{event.value}: detached HEAD, nothing to do")
            return None

        git = self.config.git
        if not git.auto_switch_on_branch:
            logger.info(f"{event.value}: auto_switch_on_branch is disabled, ignoring {branch}")
            return None

        decision = self.filter.classify(branch)
        if decision is FilterDecision.MAIN:
            return self.switch_to_template()
        if decision is not FilterDecision.ACCEPTED:
            logger.info(f"{event.value}: branch {branch} filtered out ({decision.value})")
            return None

        if not git.auto_create_on_branch and self.store.load().get(branch) is None:
            logger.info(f"{event.value}: no database for {branch} and auto-create is disabled")
            return None

        logger.info(f"{event.value}: switching to {branch}")
        return self.switch(branch)

    def dry_run_switch(self, branch: Optional[str]) -> BranchResult:
        """Resolve what a switch would do and run the post-commands.

        Neither the database server nor the state file is touched.
        ``created`` reports whether the switch would create a database.
        """
        if self.is_template_target(branch):
            return BranchResult(
                branch=None,
                db_name=self.template_database,
                pipeline=self.dry_run_post_commands(branch),
            )

        record = self.store.load().get(branch)
        created = record is None
        if record is None:
            record = DatabaseBranch(
                name=branch,
                db_name=self.resolve_name(branch),
                source_branch=branch,
                created_at=self.clock(),
            )
        return BranchResult(
            branch=record,
            db_name=record.db_name,
            created=created,
            pipeline=self._run_post_commands(branch, record.db_name),
        )

    def dry_run_post_commands(self, branch: Optional[str]) -> PipelineResult:
        """Run the post-commands for a branch without switching to it."""
        if self.is_template_target(branch):
            branch = TEMPLATE_MARKER if branch is None else branch
        return self._run_post_commands(branch)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _ensure_record(
        self, state: EngineState, branch: str, source_branch: Optional[str] = None
    ) -> Tuple[DatabaseBranch, bool]:
        """Return the record for a branch, creating its database if needed.

        An existing record whose database vanished gets the database
        recreated. A database that exists without a record is adopted.
        """
        existing = state.get(branch)
        if existing is not None:
            if not self.driver.exists(existing.db_name):
                logger.warning(
                    f"Database {existing.db_name} for branch {branch} is missing, recreating it"
                )
                self.driver.create_from_template(existing.db_name, self.template_database)
            return existing, False

        db_name = self.resolve_name(branch)
        if db_name == self.template_database:
            raise NameCollisionError(db_name, branch, self.template_database)
        clash = state.find_by_db_name(db_name)
        if clash is not None:
            raise NameCollisionError(db_name, branch, clash.name)

        if self.driver.exists(db_name):
            logger.info(f"Database {db_name} already exists, adopting it for branch {branch}")
        else:
            self.driver.create_from_template(db_name, self.template_database)

        record = DatabaseBranch(
            name=branch,
            db_name=db_name,
            source_branch=source_branch or branch,
            created_at=self.clock(),
        )
        state.upsert(record)
        self.store.save(state)
        logger.info(f"Created database branch {branch} ({db_name})")
        return record, True

    def _drop(self, record: DatabaseBranch) -> None:
        try:
            self.driver.drop(record.db_name)
        except DatabaseNotFoundError:
            logger.warning(f"Database {record.db_name} was already gone")

    def _auto_cleanup(self, state: EngineState) -> List[DatabaseBranch]:
        if not self.config.behavior.auto_cleanup:
            return []
        return self._evict(state, self.config.behavior.max_branches)

    def _evict(self, state: EngineState, max_count: int) -> List[DatabaseBranch]:
        candidates = [
            r
            for r in state.ordered()
            if r.name != state.current and r.db_name != self.template_database
        ]
        excess = len(candidates) - max_count
        if excess <= 0:
            return []

        evicted = []
        try:
            for record in candidates[:excess]:
                logger.info(f"Evicting database branch {record.name} ({record.db_name})")
                self._drop(record)
                state.remove(record.name)
                evicted.append(record)
        finally:
            if evicted:
                self.store.save(state)
        return evicted

    def _run_post_commands(
        self, branch: Optional[str], db_name: Optional[str] = None
    ) -> PipelineResult:
        commands = self.config.post_commands
        if not commands:
            return PipelineResult()

        executor = PostCommandExecutor(
            commands,
            self.template_variables(branch, db_name),
            self.working_dir,
            capture_output=self.capture_output,
        )
        return executor.run()
