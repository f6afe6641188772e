"""Configuration management for pgbranch projects."""

import logging
import os
import re
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union

import toml
import yaml
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    Tag,
    ValidationError,
    field_validator,
    model_serializer,
    model_validator,
)

from pgbranch.errors import ConfigError
from pgbranch.utils.conditions import parse_condition
from pgbranch.utils.name_resolver import (
    DEFAULT_REPLACE_TOKEN,
    NamingStrategy,
    resolve_database_name,
)

logger = logging.getLogger(__name__)

CONFIG_FILENAMES = (".pgbranch.yml", ".pgbranch.yaml", ".pgbranch.toml")
DEFAULT_CONFIG_FILENAME = ".pgbranch.yml"


class AuthMethod(str, Enum):
    """Sources a database password can be taken from, tried in order."""

    PASSWORD = "password"
    PGPASS = "pgpass"
    ENVIRONMENT = "environment"
    SERVICE = "service"
    PROMPT = "prompt"
    SYSTEM = "system"


class AuthConfig(BaseModel):
    """Password lookup settings."""

    model_config = ConfigDict(extra="ignore")

    methods: List[AuthMethod] = Field(
        default_factory=lambda: [
            AuthMethod.ENVIRONMENT,
            AuthMethod.PGPASS,
            AuthMethod.PASSWORD,
            AuthMethod.PROMPT,
        ],
        description="Authentication methods in preference order",
    )
    pgpass_file: Optional[str] = Field(
        default=None, description="Path to a pgpass file (default: ~/.pgpass)"
    )
    service_name: Optional[str] = Field(
        default=None, description="Service name in ~/.pg_service.conf"
    )
    prompt_for_password: bool = Field(
        default=False, description="Allow asking for the password interactively"
    )


class DatabaseConfig(BaseModel):
    """PostgreSQL server and template settings."""

    model_config = ConfigDict(extra="ignore")

    host: str = Field(default="localhost", description="Database host")
    port: int = Field(default=5432, ge=1, le=65535, description="Database port")
    user: str = Field(default="postgres", description="Database user")
    password: Optional[str] = Field(default=None, description="Database password")
    template_database: str = Field(
        default="template0", description="Database copied for every branch"
    )
    database_prefix: str = Field(
        default="pgbranch", description="Prefix used to name branch databases"
    )
    auth: AuthConfig = Field(default_factory=AuthConfig)

    @field_validator("host", "user", "template_database", "database_prefix")
    @classmethod
    def validate_not_empty(cls, v: str, info) -> str:
        """Reject empty connection settings."""
        if not v or not v.strip():
            raise ValueError(f"{info.field_name} cannot be empty")
        return v


class GitConfig(BaseModel):
    """Which Git branches get their own database."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    auto_create_on_branch: bool = Field(
        default=True, description="Create a database when checking out a new branch"
    )
    auto_switch_on_branch: bool = Field(
        default=True, description="Switch databases when the Git branch changes"
    )
    main_branch: str = Field(
        default="main", description="Git branch that uses the template database"
    )
    auto_create_branch_filter: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("auto_create_branch_filter", "branch_filter_regex"),
        description="Only branches matching this regex are handled automatically",
    )
    exclude_branches: List[str] = Field(
        default_factory=lambda: ["main", "master"],
        description="Branches that never get their own database",
    )

    @field_validator("auto_create_branch_filter")
    @classmethod
    def validate_regex(cls, v: Optional[str]) -> Optional[str]:
        """Make sure the branch filter compiles."""
        if v is None:
            return v
        try:
            re.compile(v)
        except re.error as e:
            raise ValueError(f"Invalid branch filter regex '{v}': {e}") from e
        return v

    @property
    def branch_filter(self) -> Optional["re.Pattern[str]"]:
        """Compiled inclusion regex, if one is configured."""
        if self.auto_create_branch_filter is None:
            return None
        return re.compile(self.auto_create_branch_filter)


class BehaviorConfig(BaseModel):
    """Naming and retention behavior."""

    model_config = ConfigDict(extra="ignore")

    auto_cleanup: bool = Field(
        default=False, description="Evict old branch databases after create/switch"
    )
    max_branches: int = Field(
        default=10, ge=0, description="Non-current branch databases to keep"
    )
    naming_strategy: NamingStrategy = Field(default=NamingStrategy.PREFIX)
    replace_token: str = Field(
        default=DEFAULT_REPLACE_TOKEN,
        description="Token replaced by the branch name with the 'replace' strategy",
    )

    @field_validator("max_branches", mode="before")
    @classmethod
    def default_when_null(cls, v: Any) -> Any:
        return 10 if v is None else v


class _StepOptions(BaseModel):
    """Fields shared by structured post-command steps."""

    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, description="Display name")
    condition: Optional[str] = Field(
        default=None, description="always, never or file_exists:<path>"
    )
    continue_on_error: bool = Field(
        default=False, description="Keep running the pipeline if this step fails"
    )

    @field_validator("condition")
    @classmethod
    def validate_condition(cls, v: Optional[str]) -> Optional[str]:
        parse_condition(v)
        return v

    @field_validator("continue_on_error", mode="before")
    @classmethod
    def false_when_null(cls, v: Any) -> Any:
        return False if v is None else v


class SimpleCommand(BaseModel):
    """A post-command given as a plain shell string."""

    command: str

    @model_validator(mode="before")
    @classmethod
    def from_string(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"command": data}
        return data

    @model_serializer
    def to_string(self) -> str:
        return self.command


class CommandStep(_StepOptions):
    """A shell command with working directory, condition and environment."""

    command: str
    working_dir: Optional[str] = Field(
        default=None, description="Directory to run in, relative to the project"
    )
    environment: Dict[str, str] = Field(
        default_factory=dict, description="Variables merged over the inherited env"
    )

    @field_validator("environment", mode="before")
    @classmethod
    def empty_when_null(cls, v: Any) -> Any:
        if v is None:
            return {}
        if isinstance(v, dict):
            return {str(key): str(value) for key, value in v.items()}
        return v


class ReplaceStep(_StepOptions):
    """A regex replacement applied to a file."""

    action: Literal["replace"] = "replace"
    file: str = Field(description="File to patch, relative to the project")
    pattern: str = Field(description="Regular expression to replace")
    replacement: str = Field(description="Replacement text")
    create_if_missing: bool = Field(
        default=False, description="Create the file when it does not exist"
    )

    @field_validator("pattern")
    @classmethod
    def validate_pattern(cls, v: str) -> str:
        try:
            re.compile(v)
        except re.error as e:
            raise ValueError(f"Invalid replace pattern '{v}': {e}") from e
        return v

    @field_validator("create_if_missing", mode="before")
    @classmethod
    def false_when_null(cls, v: Any) -> Any:
        return False if v is None else v


def _post_command_kind(value: Any) -> Optional[str]:
    """Pick the post-command variant from the shape of the raw value."""
    if isinstance(value, (str, SimpleCommand)):
        return "simple"
    if isinstance(value, CommandStep):
        return "command"
    if isinstance(value, ReplaceStep):
        return "replace"
    if isinstance(value, dict):
        if value.get("action") == "replace" or ("file" in value and "pattern" in value):
            return "replace"
        if "command" in value:
            return "command"
    return None


PostCommand = Annotated[
    Union[
        Annotated[SimpleCommand, Tag("simple")],
        Annotated[CommandStep, Tag("command")],
        Annotated[ReplaceStep, Tag("replace")],
    ],
    Discriminator(
        _post_command_kind,
        custom_error_type="invalid_post_command",
        custom_error_message=(
            "Post-command must be a string, a mapping with 'command', "
            "or a mapping with action: replace"
        ),
    ),
]


class ProjectConfig(BaseModel):
    """Configuration for a pgbranch project, read from .pgbranch.yml."""

    model_config = ConfigDict(extra="ignore")

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    git: GitConfig = Field(default_factory=GitConfig)
    behavior: BehaviorConfig = Field(default_factory=BehaviorConfig)
    post_commands: List[PostCommand] = Field(default_factory=list)

    @field_validator("database", "git", "behavior", "post_commands", mode="before")
    @classmethod
    def defaults_when_null(cls, v: Any, info) -> Any:
        if v is None:
            return [] if info.field_name == "post_commands" else {}
        return v

    def database_name(self, branch_name: str) -> str:
        """Resolve the physical database name for a branch."""
        return resolve_database_name(
            branch_name,
            self.behavior.naming_strategy,
            self.database.database_prefix,
            self.behavior.replace_token,
        )

    def to_document(self, mask_password: bool = False) -> Dict[str, Any]:
        """Plain-data view of the configuration, as written to disk."""
        data = self.model_dump(mode="json")
        if mask_password and data["database"].get("password"):
            data["database"]["password"] = "********"
        return data


ENV_OVERRIDES = {
    "PGBRANCH_HOST": "host",
    "PGBRANCH_PORT": "port",
    "PGBRANCH_USER": "user",
    "PGBRANCH_PASSWORD": "password",
    "PGBRANCH_TEMPLATE_DATABASE": "template_database",
}


class Config:
    """Locates, loads and saves the pgbranch project configuration."""

    def __init__(self, project_dir: Optional[Path] = None):
        """Initialize config manager.

        Args:
            project_dir: Directory to search from. If None, uses PGBRANCH_PROJECT_DIR env var or current directory.
        """
        if project_dir is None:
            env_dir = os.environ.get("PGBRANCH_PROJECT_DIR")
            if env_dir:
                project_dir = Path(env_dir)

        self.project_dir = Path(project_dir) if project_dir else Path.cwd()
        self.config_path: Optional[Path] = self.find_config_file(self.project_dir)
        self._config: Optional[ProjectConfig] = None

    @staticmethod
    def find_config_file(start: Path) -> Optional[Path]:
        """Walk up from ``start`` looking for a recognized config file."""
        current = Path(start).resolve()

        while True:
            for filename in CONFIG_FILENAMES:
                candidate = current / filename
                if candidate.is_file():
                    return candidate
            if current == current.parent:
                return None
            current = current.parent

    @property
    def exists(self) -> bool:
        """Check if a config file was found."""
        return self.config_path is not None and self.config_path.exists()

    @property
    def project_root(self) -> Path:
        """Directory holding the config file, or the search start if none."""
        if self.config_path is not None:
            return self.config_path.parent
        return self.project_dir

    def load(self) -> ProjectConfig:
        """Load configuration from disk, with environment variable overrides.

        Raises:
            ConfigError: If no config file exists or it is invalid
        """
        if not self.exists:
            raise ConfigError(
                "No configuration file found. Run 'pgbranch init' to create "
                f"a {DEFAULT_CONFIG_FILENAME} file first."
            )

        data = self._read(self.config_path)
        self._config = self._build(data, source=str(self.config_path))
        return self._config

    def load_or_default(self) -> Tuple[ProjectConfig, Optional[Path]]:
        """Load the config file if there is one, defaults otherwise."""
        if self.exists:
            return self.load(), self.config_path

        logger.info("No pgbranch config file found, using default configuration")
        self._config = self._build({}, source="defaults")
        return self._config, None

    def _read(self, path: Path) -> Dict[str, Any]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                if path.suffix == ".toml":
                    data = toml.load(f)
                else:
                    data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError, toml.TomlDecodeError) as e:
            raise ConfigError(f"Failed to read config file {path}: {e}") from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")
        return data

    def _build(self, data: Dict[str, Any], source: str) -> ProjectConfig:
        self._apply_env_overrides(data)
        try:
            return ProjectConfig.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration in {source}:\n{e}") from e

    def _apply_env_overrides(self, data: Dict[str, Any]) -> None:
        """Apply environment variable overrides to configuration data."""
        for env_var, field in ENV_OVERRIDES.items():
            value = os.environ.get(env_var)
            if value is None:
                continue
            database = data.get("database")
            if not isinstance(database, dict):
                database = data["database"] = {}
            database[field] = value

    def save(self, config: Optional[ProjectConfig] = None, path: Optional[Path] = None) -> Path:
        """Save configuration to disk.

        Args:
            config: Configuration to save. If None, saves current config.
            path: Target file. Defaults to the loaded file or .pgbranch.yml.

        Returns:
            Path the configuration was written to
        """
        if config:
            self._config = config

        if not self._config:
            raise ValueError("No configuration to save")

        target = Path(path or self.config_path or self.project_dir / DEFAULT_CONFIG_FILENAME)
        document = self._config.to_document()

        with open(target, "w", encoding="utf-8") as f:
            if target.suffix == ".toml":
                toml.dump(document, f)
            else:
                yaml.safe_dump(document, f, sort_keys=False, default_flow_style=False)

        self.config_path = target
        return target

    def init_project(self, force: bool = False, main_branch: Optional[str] = None) -> ProjectConfig:
        """Write a default configuration file at the project directory.

        Args:
            force: Overwrite an existing configuration file
            main_branch: Main Git branch; detected from the repository if None

        Raises:
            FileExistsError: If a config file exists and force is False
        """
        target = self.project_dir / DEFAULT_CONFIG_FILENAME
        if target.exists() and not force:
            raise FileExistsError(f"Configuration already exists at {target}")

        config = ProjectConfig()
        if main_branch is None:
            main_branch = self._detect_main_branch()
        if main_branch:
            config.git.main_branch = main_branch

        self.save(config, path=target)
        return config

    def _detect_main_branch(self) -> Optional[str]:
        from pgbranch.core.git import GitRepository

        try:
            return GitRepository(self.project_dir).detect_main_branch()
        except ConfigError as e:
            logger.debug(f"Could not detect main branch: {e}")
            return None
