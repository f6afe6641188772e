"""Database name resolution for pgbranch.

Maps a Git branch name onto a PostgreSQL identifier. The mapping is a pure
function of (branch, strategy, prefix), so the same branch always lands on
the same database.
"""

import hashlib
import re
from enum import Enum


# PostgreSQL truncates identifiers longer than NAMEDATALEN - 1 bytes
MAX_IDENTIFIER_LENGTH = 63

FILLER = "_"

DEFAULT_REPLACE_TOKEN = "{branch}"

# Anything outside this set is replaced by FILLER
INVALID_CHARS_PATTERN = re.compile(r"[^a-z0-9_$]")
REPEATED_FILLER_PATTERN = re.compile(r"_{2,}")
VALID_LEADING_CHAR = re.compile(r"^[a-z_]")


class NamingStrategy(str, Enum):
    """How the prefix is combined with the sanitized branch name."""

    PREFIX = "prefix"
    SUFFIX = "suffix"
    REPLACE = "replace"


def sanitize_branch_name(branch_name: str) -> str:
    """Turn a branch name into a lowercase identifier fragment.

    Path separators and other disallowed characters become a single
    underscore, e.g. ``feature/User-Auth`` becomes ``feature_user_auth``.

    Args:
        branch_name: Raw VCS branch name

    Returns:
        Sanitized name, never empty
    """
    sanitized = INVALID_CHARS_PATTERN.sub(FILLER, branch_name.lower())

    if sanitized[:1].isdigit():
        sanitized = FILLER + sanitized

    sanitized = REPEATED_FILLER_PATTERN.sub(FILLER, sanitized)
    sanitized = sanitized.rstrip(FILLER)

    return sanitized or "branch"


def ensure_valid_identifier(name: str) -> str:
    """Make sure a name is usable as a PostgreSQL database name.

    Names starting with anything other than a letter or underscore get an
    underscore prepended. Names longer than MAX_IDENTIFIER_LENGTH are cut
    and suffixed with a short hash of the full name, so two long names
    sharing a prefix still resolve differently.
    """
    if not VALID_LEADING_CHAR.match(name):
        name = FILLER + name

    if len(name.encode("utf-8")) <= MAX_IDENTIFIER_LENGTH:
        return name

    digest = hashlib.sha256(name.encode("utf-8")).hexdigest()[:8]
    suffix = f"{FILLER}{digest}"
    head = name.encode("utf-8")[: MAX_IDENTIFIER_LENGTH - len(suffix)]
    return head.decode("utf-8", errors="ignore").rstrip(FILLER) + suffix


def resolve_database_name(
    branch_name: str,
    strategy: NamingStrategy = NamingStrategy.PREFIX,
    prefix: str = "pgbranch",
    replace_token: str = DEFAULT_REPLACE_TOKEN,
) -> str:
    """Resolve the physical database name for a branch.

    Args:
        branch_name: Raw VCS branch name
        strategy: Naming strategy to apply
        prefix: Configured database prefix (a template for ``replace``)
        replace_token: Token substituted inside ``prefix`` for ``replace``

    Returns:
        Valid PostgreSQL database name
    """
    sanitized = sanitize_branch_name(branch_name)
    strategy = NamingStrategy(strategy)

    if strategy is NamingStrategy.PREFIX:
        full_name = f"{prefix}_{sanitized}"
    elif strategy is NamingStrategy.SUFFIX:
        full_name = f"{sanitized}_{prefix}"
    elif replace_token and replace_token in prefix:
        full_name = prefix.replace(replace_token, sanitized)
    else:
        full_name = sanitized

    return ensure_valid_identifier(full_name)
