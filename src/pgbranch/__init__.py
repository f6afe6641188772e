"""pgbranch - PostgreSQL database branches that follow your Git branches."""

from importlib.metadata import PackageNotFoundError, version

from pgbranch.config import Config, ProjectConfig
from pgbranch.managers.branch import BranchManager

try:
    __version__ = version("pgbranch")
except PackageNotFoundError:
    # Package metadata is not available when running from a source checkout
    __version__ = "0.1.0"

__all__ = ["Config", "ProjectConfig", "BranchManager", "__version__"]
