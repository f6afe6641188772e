"""Template variable substitution for post-commands."""

import re
from typing import Dict, Mapping, Optional

from pydantic import BaseModel, Field


TEMPLATE_VARIABLES = (
    "branch_name",
    "db_name",
    "db_host",
    "db_port",
    "db_user",
    "db_password",
    "template_db",
    "prefix",
)

TOKEN_PATTERN = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")


class TemplateContext(BaseModel):
    """Values bound to the template variables for one resolved branch."""

    branch_name: str = Field(description="Branch the post-commands run for")
    db_name: str = Field(description="Resolved physical database name")
    db_host: str
    db_port: int
    db_user: str
    db_password: Optional[str] = None
    template_db: str
    prefix: str

    def variables(self) -> Dict[str, str]:
        """Return the bound variables as strings.

        ``db_password`` is left out when no password is configured, so
        ``{db_password}`` passes through unchanged.
        """
        values = self.model_dump(exclude_none=True)
        return {name: str(values[name]) for name in TEMPLATE_VARIABLES if name in values}


def render(template: str, variables: Mapping[str, str]) -> str:
    """Substitute recognized ``{name}`` tokens in a single pass.

    Tokens outside TEMPLATE_VARIABLES, or not bound in ``variables``, are
    left verbatim, so shell syntax such as ``${HOME}`` survives untouched.
    Substituted values are never re-scanned.
    """

    def _substitute(match: "re.Match[str]") -> str:
        name = match.group(1)
        if name in TEMPLATE_VARIABLES and name in variables:
            return str(variables[name])
        return match.group(0)

    return TOKEN_PATTERN.sub(_substitute, template)
