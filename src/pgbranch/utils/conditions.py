"""Post-command conditions: ``always``, ``never`` and ``file_exists:<path>``."""

from pathlib import Path
from typing import Optional, Tuple

from pgbranch.errors import ConditionEvalError


ALWAYS = "always"
NEVER = "never"
FILE_EXISTS = "file_exists"


def parse_condition(condition: Optional[str]) -> Tuple[str, Optional[str]]:
    """Split a condition string into its kind and argument.

    Raises:
        ValueError: If the condition is not recognized
    """
    if condition is None:
        return ALWAYS, None

    text = condition.strip()
    if text in (ALWAYS, NEVER):
        return text, None

    kind, sep, argument = text.partition(":")
    if sep and kind.strip() == FILE_EXISTS:
        argument = argument.strip()
        if not argument:
            raise ValueError("file_exists condition requires a path")
        return FILE_EXISTS, argument

    raise ValueError(
        f"Unknown condition '{condition}'. "
        f"Use 'always', 'never' or 'file_exists:<path>'."
    )


def evaluate_condition(condition: Optional[str], base_dir: Path) -> bool:
    """Evaluate a condition relative to ``base_dir``.

    Raises:
        ConditionEvalError: If the condition is malformed or cannot be checked
    """
    try:
        kind, argument = parse_condition(condition)
    except ValueError as e:
        raise ConditionEvalError(str(e)) from e

    if kind == ALWAYS:
        return True
    if kind == NEVER:
        return False

    path = Path(argument).expanduser()
    if not path.is_absolute():
        path = base_dir / path
    try:
        return path.exists()
    except OSError as e:
        raise ConditionEvalError(f"Cannot check condition '{condition}': {e}") from e
