"""Runs the post-command pipeline after a branch switch.

Steps run strictly in order. Each step yields a StepOutcome; a failing step
stops the pipeline unless it sets ``continue_on_error``, in which case the
failure is recorded and the next step starts.
"""

import logging
import os
import re
import subprocess
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence

from pgbranch.config import CommandStep, PostCommand, ReplaceStep, SimpleCommand
from pgbranch.errors import (
    CommandFailedError,
    ConfigError,
    FileMissingError,
    PgBranchError,
)
from pgbranch.utils.conditions import evaluate_condition
from pgbranch.utils.fs import atomic_write_text
from pgbranch.utils.template import render

logger = logging.getLogger(__name__)


class StepStatus(str, Enum):
    SKIPPED = "skipped"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class StepOutcome:
    """Result of one post-command step."""

    index: int
    name: str
    status: StepStatus
    detail: str = ""
    error: Optional[PgBranchError] = None
    tolerated: bool = False

    @property
    def fatal(self) -> bool:
        return self.status is StepStatus.FAILED and not self.tolerated


@dataclass
class PipelineResult:
    """Outcomes of every configured step, in order."""

    outcomes: List[StepOutcome] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not any(outcome.fatal for outcome in self.outcomes)

    @property
    def fatal_outcome(self) -> Optional[StepOutcome]:
        return next((o for o in self.outcomes if o.fatal), None)

    @property
    def tolerated_failures(self) -> List[StepOutcome]:
        return [
            o for o in self.outcomes if o.status is StepStatus.FAILED and o.tolerated
        ]

    def count(self, status: StepStatus) -> int:
        return sum(1 for o in self.outcomes if o.status is status)

    def raise_for_failure(self) -> None:
        """Raise the error of the step that stopped the pipeline, if any."""
        outcome = self.fatal_outcome
        if outcome is not None and outcome.error is not None:
            raise outcome.error


def describe_step(step: PostCommand) -> str:
    """Human-readable label for a step."""
    if isinstance(step, SimpleCommand):
        return step.command
    if step.name:
        return step.name
    if isinstance(step, ReplaceStep):
        return f"Replace /{step.pattern}/ in {step.file}"
    return step.command


class PostCommandExecutor:
    """Renders and runs post-commands for one resolved branch."""

    def __init__(
        self,
        commands: Sequence[PostCommand],
        variables: Mapping[str, str],
        working_dir: Path,
        base_env: Optional[Mapping[str, str]] = None,
        capture_output: bool = False,
    ):
        """Initialize executor.

        Args:
            commands: Configured post-commands, in order
            variables: Template variable bindings for the branch
            working_dir: Project root; relative paths resolve against it
            base_env: Environment the commands inherit (default: os.environ)
            capture_output: Capture command output instead of streaming it
        """
        self.commands = list(commands)
        self.variables = dict(variables)
        self.working_dir = Path(working_dir)
        self.base_env = base_env
        self.capture_output = capture_output

    def run(self) -> PipelineResult:
        result = PipelineResult()

        for index, step in enumerate(self.commands, start=1):
            if result.fatal_outcome is not None:
                result.outcomes.append(
                    StepOutcome(
                        index, describe_step(step), StepStatus.SKIPPED,
                        detail="not run, an earlier step failed",
                    )
                )
                continue

            outcome = self._run_step(index, step)
            result.outcomes.append(outcome)

            if outcome.fatal:
                logger.error(f"Post-command {index} failed: {outcome.error}")
            elif outcome.status is StepStatus.FAILED:
                logger.warning(
                    f"Post-command {index} failed, continuing: {outcome.error}"
                )

        return result

    def _run_step(self, index: int, step: PostCommand) -> StepOutcome:
        name = describe_step(step)
        condition = getattr(step, "condition", None)
        tolerated = getattr(step, "continue_on_error", False)

        try:
            if not evaluate_condition(condition, self._step_dir(step)):
                logger.info(f"Skipping post-command {index} ({name}): condition '{condition}' not met")
                return StepOutcome(
                    index, name, StepStatus.SKIPPED, detail=f"condition '{condition}' not met"
                )

            if isinstance(step, ReplaceStep):
                detail = self._apply_replace(step)
            else:
                detail = self._run_command(step)
        except PgBranchError as e:
            return StepOutcome(
                index, name, StepStatus.FAILED, detail=str(e), error=e, tolerated=tolerated
            )

        return StepOutcome(index, name, StepStatus.SUCCEEDED, detail=detail)

    def _step_dir(self, step: PostCommand) -> Path:
        working_dir = getattr(step, "working_dir", None)
        if not working_dir:
            return self.working_dir
        return self._resolve(render(working_dir, self.variables))

    def _resolve(self, path: str) -> Path:
        resolved = Path(path).expanduser()
        if not resolved.is_absolute():
            resolved = self.working_dir / resolved
        return resolved

    def _environment(self, step: PostCommand) -> Dict[str, str]:
        env = dict(os.environ if self.base_env is None else self.base_env)
        if isinstance(step, CommandStep):
            for key, value in step.environment.items():
                env[key] = render(value, self.variables)
        return env

    def _run_command(self, step: PostCommand) -> str:
        command = render(step.command, self.variables)
        cwd = self._step_dir(step)
        if not cwd.is_dir():
            raise CommandFailedError(command, output=f"Working directory not found: {cwd}")

        logger.info(f"Running post-command in {cwd}: {command}")
        try:
            completed = subprocess.run(
                command,
                shell=True,
                cwd=cwd,
                env=self._environment(step),
                capture_output=self.capture_output,
                text=True,
            )
        except OSError as e:
            raise CommandFailedError(command, output=str(e)) from e

        if completed.returncode != 0:
            output = completed.stderr or completed.stdout or ""
            raise CommandFailedError(command, completed.returncode, output)

        return command

    def _apply_replace(self, step: ReplaceStep) -> str:
        path = self._resolve(render(step.file, self.variables))
        # Bound values match literally, so '$' or '.' in a branch name is not a metacharacter
        literal = {key: re.escape(value) for key, value in self.variables.items()}
        pattern = render(step.pattern, literal)

        if not path.exists():
            if not step.create_if_missing:
                raise FileMissingError(path)
            # A missing file is created holding the rendered replacement text
            content = render(step.replacement, self.variables)
            atomic_write_text(path, content + "\n")
            logger.info(f"Created {path}")
            return f"created {path}"

        try:
            regex = re.compile(pattern, re.MULTILINE)
        except re.error as e:
            raise ConfigError(f"Invalid replace pattern '{pattern}': {e}") from e

        # Bound values are literal text inside the re.sub template
        escaped = {key: value.replace("\\", "\\\\") for key, value in self.variables.items()}
        replacement = render(step.replacement, escaped)

        try:
            content = path.read_text(encoding="utf-8")
            updated, count = regex.subn(replacement, content)
        except (OSError, UnicodeDecodeError) as e:
            raise CommandFailedError(f"replace in {path}", output=str(e)) from e
        except re.error as e:
            raise ConfigError(f"Invalid replacement '{step.replacement}': {e}") from e

        if count == 0:
            logger.info(f"Pattern '{pattern}' did not match anything in {path}")
            return f"no match in {path}"

        if updated != content:
            atomic_write_text(path, updated)
        logger.info(f"Replaced {count} occurrence(s) in {path}")
        return f"{count} replacement(s) in {path}"
