"""PostgreSQL driver used to create and drop branch databases."""

import logging
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Protocol

import psycopg
from psycopg import errors as pg_errors
from psycopg import sql

from pgbranch.config import DatabaseConfig
from pgbranch.core.auth import MAINTENANCE_DATABASE, PasswordResolver
from pgbranch.errors import (
    DatabaseConnectionError,
    DatabaseExistsError,
    DatabaseNotFoundError,
    PgBranchError,
    TemplateInUseError,
)

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT = 10


class DatabaseDriver(Protocol):
    """The operations the branch manager needs from a database server."""

    def create_from_template(self, name: str, template: str) -> None: ...

    def drop(self, name: str) -> None: ...

    def exists(self, name: str) -> bool: ...


class PostgresDriver:
    """Runs CREATE/DROP DATABASE against the server's maintenance database.

    Every call opens a short-lived autocommit connection; CREATE DATABASE
    cannot run inside a transaction block.
    """

    def __init__(
        self,
        config: DatabaseConfig,
        password_prompt: Optional[Callable[[str], str]] = None,
    ):
        self.config = config
        self._resolver = PasswordResolver(config, prompt=password_prompt)
        self._auth: Optional[Dict[str, str]] = None

    def connection_kwargs(self) -> Dict[str, Any]:
        if self._auth is None:
            self._auth = self._resolver.resolve()

        kwargs: Dict[str, Any] = {
            "host": self.config.host,
            "port": self.config.port,
            "user": self.config.user,
            "dbname": MAINTENANCE_DATABASE,
            "connect_timeout": CONNECT_TIMEOUT,
        }
        kwargs.update(self._auth)
        return kwargs

    def connect(self) -> psycopg.Connection:
        """Open an autocommit connection to the maintenance database.

        Raises:
            DatabaseConnectionError: If the server cannot be reached or rejects us
        """
        try:
            return psycopg.connect(autocommit=True, **self.connection_kwargs())
        except psycopg.OperationalError as e:
            raise DatabaseConnectionError(
                f"Failed to connect to PostgreSQL at "
                f"{self.config.host}:{self.config.port} as '{self.config.user}': {e}"
            ) from e

    @contextmanager
    def _cursor(self) -> Iterator[psycopg.Cursor]:
        with self.connect() as conn:
            with conn.cursor() as cur:
                yield cur

    def check_connection(self) -> None:
        with self._cursor() as cur:
            cur.execute("SELECT 1")

    def exists(self, name: str) -> bool:
        with self._cursor() as cur:
            cur.execute("SELECT 1 FROM pg_database WHERE datname = %s", (name,))
            return cur.fetchone() is not None

    def list_databases(self, prefix: Optional[str] = None) -> List[str]:
        """Names of non-template databases, optionally limited to a prefix."""
        query = "SELECT datname FROM pg_database WHERE NOT datistemplate"
        params: tuple = ()
        if prefix:
            query += " AND starts_with(datname, %s)"
            params = (prefix,)
        query += " ORDER BY datname"

        with self._cursor() as cur:
            cur.execute(query, params)
            return [row[0] for row in cur.fetchall()]

    def can_create_databases(self) -> bool:
        with self._cursor() as cur:
            cur.execute(
                "SELECT rolcreatedb OR rolsuper FROM pg_roles WHERE rolname = current_user"
            )
            row = cur.fetchone()
            return bool(row and row[0])

    def create_from_template(self, name: str, template: str) -> None:
        """CREATE DATABASE ``name`` WITH TEMPLATE ``template``.

        Raises:
            TemplateInUseError: If the template has other active sessions
            DatabaseExistsError: If ``name`` already exists
            DatabaseNotFoundError: If the template does not exist
        """
        query = sql.SQL("CREATE DATABASE {} WITH TEMPLATE {}").format(
            sql.Identifier(name), sql.Identifier(template)
        )

        with self._cursor() as cur:
            try:
                cur.execute(query)
            except pg_errors.ObjectInUse as e:
                raise TemplateInUseError(template, name) from e
            except pg_errors.DuplicateDatabase as e:
                raise DatabaseExistsError(f"Database '{name}' already exists") from e
            except pg_errors.InvalidCatalogName as e:
                raise DatabaseNotFoundError(
                    f"Template database '{template}' does not exist"
                ) from e
            except psycopg.Error as e:
                raise PgBranchError(f"Failed to create database '{name}': {e}") from e

        logger.info(f"Created database {name} from template {template}")

    def drop(self, name: str) -> None:
        """DROP DATABASE ``name``.

        Raises:
            DatabaseNotFoundError: If the database does not exist
        """
        query = sql.SQL("DROP DATABASE {}").format(sql.Identifier(name))

        with self._cursor() as cur:
            try:
                cur.execute(query)
            except pg_errors.InvalidCatalogName as e:
                raise DatabaseNotFoundError(f"Database '{name}' does not exist") from e
            except psycopg.Error as e:
                raise PgBranchError(f"Failed to drop database '{name}': {e}") from e

        logger.info(f"Dropped database {name}")
