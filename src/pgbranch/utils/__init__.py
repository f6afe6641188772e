"""Utility modules for pgbranch."""

from pgbranch.utils.name_resolver import (
    NamingStrategy,
    sanitize_branch_name,
    resolve_database_name,
    ensure_valid_identifier,
    MAX_IDENTIFIER_LENGTH,
)
from pgbranch.utils.template import TemplateContext, render, TEMPLATE_VARIABLES
from pgbranch.utils.conditions import parse_condition, evaluate_condition
from pgbranch.utils.fs import atomic_write_text

__all__ = [
    "NamingStrategy",
    "sanitize_branch_name",
    "resolve_database_name",
    "ensure_valid_identifier",
    "MAX_IDENTIFIER_LENGTH",
    "TemplateContext",
    "render",
    "TEMPLATE_VARIABLES",
    "parse_condition",
    "evaluate_condition",
    "atomic_write_text",
]
