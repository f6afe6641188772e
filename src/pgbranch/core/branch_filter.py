"""Decides which Git branches are handled automatically."""

from enum import Enum

from pgbranch.config import GitConfig


class FilterDecision(str, Enum):
    """Why a branch was accepted or rejected."""

    MAIN = "main"
    EXCLUDED = "excluded"
    NOT_MATCHED = "not_matched"
    ACCEPTED = "accepted"


class BranchFilter:
    """Applies the main-branch, exclusion and inclusion-regex rules in order.

    1. The main branch maps to the template database and never gets a record.
    2. Excluded branches are rejected, even if they match the regex.
    3. With an inclusion regex, only matching branches are accepted.
    4. Anything else is accepted.
    """

    def __init__(self, git_config: GitConfig):
        self.git_config = git_config
        self._pattern = git_config.branch_filter

    def classify(self, branch: str) -> FilterDecision:
        if branch == self.git_config.main_branch:
            return FilterDecision.MAIN
        if branch in self.git_config.exclude_branches:
            return FilterDecision.EXCLUDED
        if self._pattern is not None and not self._pattern.search(branch):
            return FilterDecision.NOT_MATCHED
        return FilterDecision.ACCEPTED

    def accepts(self, branch: str) -> bool:
        """Whether the branch qualifies for automatic creation and switching."""
        return self.classify(branch) is FilterDecision.ACCEPTED

    def is_main(self, branch: str) -> bool:
        return self.classify(branch) is FilterDecision.MAIN
