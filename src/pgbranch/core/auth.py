"""Password lookup for PostgreSQL connections.

Authentication methods are tried in the configured order and the first one
that applies wins. ``pgpass`` and ``service`` are handed to libpq as the
``passfile`` and ``service`` connection parameters; libpq matches the entry
itself. ``system`` stops the search and connects without a password
(peer/trust authentication).
"""

import getpass
import logging
import os
import re
from pathlib import Path
from typing import Callable, Dict, Optional

from pgbranch.config import AuthMethod, DatabaseConfig

logger = logging.getLogger(__name__)

MAINTENANCE_DATABASE = "postgres"


class PasswordResolver:
    """Resolves the password related connection options for a DatabaseConfig."""

    def __init__(
        self,
        config: DatabaseConfig,
        prompt: Optional[Callable[[str], str]] = None,
        home: Optional[Path] = None,
    ):
        """Initialize password resolver.

        Args:
            config: Database settings, including the auth method order
            prompt: Callable used for the ``prompt`` method (default: getpass)
            home: Home directory holding the default ~/.pgpass
        """
        self.config = config
        self.prompt = prompt or getpass.getpass
        self.home = Path(home) if home else Path.home()

    def resolve(self) -> Dict[str, str]:
        """Connection options from the first method that applies.

        Returns:
            One of ``password``, ``passfile`` or ``service``, or nothing
        """
        for method in self.config.auth.methods:
            method = AuthMethod(method)
            if method is AuthMethod.SYSTEM:
                logger.debug("Using system authentication")
                return {}

            options = self._lookup(method)
            if options:
                logger.debug(f"Using {', '.join(options)} from {method.value}")
                return options

        logger.debug("No password found from any authentication method")
        return {}

    def _lookup(self, method: AuthMethod) -> Dict[str, str]:
        if method is AuthMethod.PGPASS:
            passfile = self.pgpass_file()
            return {"passfile": str(passfile)} if passfile else {}
        if method is AuthMethod.SERVICE:
            service = self.config.auth.service_name
            if not service:
                logger.debug("Service authentication configured without a service_name")
                return {}
            return {"service": service}

        if method is AuthMethod.PASSWORD:
            password = self.config.password
        elif method is AuthMethod.ENVIRONMENT:
            password = self.from_environment()
        elif method is AuthMethod.PROMPT:
            password = self.from_prompt()
        else:
            password = None
        return {"password": password} if password is not None else {}

    def from_environment(self) -> Optional[str]:
        """PGPASSWORD, then a host-specific PGPASSWORD_<HOST>."""
        password = os.environ.get("PGPASSWORD")
        if password is not None:
            return password

        host_var = "PGPASSWORD_" + re.sub(r"[^A-Z0-9]", "_", self.config.host.upper())
        return os.environ.get(host_var)

    def pgpass_file(self) -> Optional[Path]:
        """The configured pgpass file, or ~/.pgpass, if it exists."""
        if self.config.auth.pgpass_file:
            path = Path(self.config.auth.pgpass_file).expanduser()
        else:
            path = self.home / ".pgpass"
        return path if path.is_file() else None

    def from_prompt(self) -> Optional[str]:
        if not self.config.auth.prompt_for_password:
            return None

        try:
            return self.prompt(f"Password for PostgreSQL user '{self.config.user}': ")
        except (EOFError, OSError) as e:
            logger.warning(f"Failed to read password from prompt: {e}")
            return None
