"""Pytest configuration and shared fixtures."""

import os
from datetime import datetime, timedelta, timezone

import pytest

# Wide terminal so rich tables are not truncated in CLI output
os.environ["COLUMNS"] = "200"

from pgbranch.config import ProjectConfig  # noqa: E402
from pgbranch.core.state import StateStore  # noqa: E402
from pgbranch.errors import (  # noqa: E402
    DatabaseExistsError,
    DatabaseNotFoundError,
    TemplateInUseError,
)
from pgbranch.managers.branch import BranchManager  # noqa: E402


class FakeDriver:
    """In-memory stand-in for PostgresDriver."""

    def __init__(self, databases=("postgres", "template0", "template1")):
        self.databases = set(databases)
        self.in_use = set()
        self.calls = []

    def create_from_template(self, name, template):
        self.calls.append(("create", name, template))
        if template in self.in_use:
            raise TemplateInUseError(template, name)
        if template not in self.databases:
            raise DatabaseNotFoundError(f"Template database '{template}' does not exist")
        if name in self.databases:
            raise DatabaseExistsError(f"Database '{name}' already exists")
        self.databases.add(name)

    def drop(self, name):
        self.calls.append(("drop", name))
        if name not in self.databases:
            raise DatabaseNotFoundError(f"Database '{name}' does not exist")
        self.databases.discard(name)

    def exists(self, name):
        return name in self.databases

    def check_connection(self):
        pass

    def can_create_databases(self):
        return True

    def list_databases(self, prefix=None):
        return sorted(d for d in self.databases if not prefix or d.startswith(prefix))


class TickingClock:
    """Returns strictly increasing timestamps, one minute apart."""

    def __init__(self, start=None):
        self.now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        self.now = self.now + timedelta(minutes=1)
        return self.now


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep the developer's PostgreSQL and pgbranch settings out of tests."""
    for name in list(os.environ):
        if name.startswith("PGBRANCH_") or name.startswith("PGPASSWORD"):
            monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture
def project_dir(tmp_path):
    """An empty project directory."""
    project = tmp_path / "project"
    project.mkdir()
    return project


@pytest.fixture
def fake_driver():
    return FakeDriver()


@pytest.fixture
def clock():
    return TickingClock()


@pytest.fixture
def store(project_dir):
    return StateStore(project_dir)


@pytest.fixture
def make_manager(project_dir, fake_driver, store, clock):
    """Build a BranchManager from raw config data."""

    def _make(data=None):
        config = ProjectConfig.model_validate(data or {})
        return BranchManager(
            config,
            fake_driver,
            store,
            working_dir=project_dir,
            clock=clock,
            capture_output=True,
        )

    return _make


@pytest.fixture
def manager(make_manager):
    return make_manager()
