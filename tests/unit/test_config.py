"""Tests for configuration management."""

import pytest
import toml
import yaml

from pgbranch.config import (
    CommandStep,
    Config,
    DEFAULT_CONFIG_FILENAME,
    ProjectConfig,
    ReplaceStep,
    SimpleCommand,
)
from pgbranch.errors import ConfigError
from pgbranch.utils.name_resolver import NamingStrategy

FULL_CONFIG = """\
database:
  host: db.internal
  port: 6543
  user: developer
  password: s3cret
  template_database: myapp_template
  database_prefix: myapp
  auth:
    methods: [password, pgpass, system]

git:
  auto_create_on_branch: true
  auto_switch_on_branch: false
  main_branch: develop
  auto_create_branch_filter: "^(feature|bugfix)/"
  exclude_branches: [develop, staging]

behavior:
  auto_cleanup: true
  max_branches: 3
  naming_strategy: suffix

post_commands:
  - npm run migrate
  - name: Seed
    command: make seed
    working_dir: backend
    condition: "file_exists:Makefile"
    environment:
      DATABASE_URL: "postgresql://{db_user}@{db_host}:{db_port}/{db_name}"
    continue_on_error: true
  - action: replace
    file: .env
    pattern: "DB_NAME=.*"
    replacement: "DB_NAME={db_name}"
    create_if_missing: true
"""


class TestConfig:
    """Test configuration loading and saving."""

    @pytest.fixture
    def write_config(self, project_dir):
        def _write(content, filename=DEFAULT_CONFIG_FILENAME):
            path = project_dir / filename
            path.write_text(content)
            return path

        return _write

    def test_defaults(self):
        config = ProjectConfig()

        assert config.database.host == "localhost"
        assert config.database.port == 5432
        assert config.database.user == "postgres"
        assert config.database.password is None
        assert config.database.template_database == "template0"
        assert config.database.database_prefix == "pgbranch"
        assert config.git.auto_create_on_branch
        assert config.git.auto_switch_on_branch
        assert config.git.main_branch == "main"
        assert config.git.auto_create_branch_filter is None
        assert config.git.exclude_branches == ["main", "master"]
        assert not config.behavior.auto_cleanup
        assert config.behavior.max_branches == 10
        assert config.behavior.naming_strategy == NamingStrategy.PREFIX
        assert config.post_commands == []

    def test_load_full_yaml(self, project_dir, write_config):
        write_config(FULL_CONFIG)

        config = Config(project_dir).load()

        assert config.database.host == "db.internal"
        assert config.database.port == 6543
        assert [m.value for m in config.database.auth.methods] == ["password", "pgpass", "system"]
        assert not config.git.auto_switch_on_branch
        assert config.git.exclude_branches == ["develop", "staging"]
        assert config.behavior.max_branches == 3
        assert config.behavior.naming_strategy == NamingStrategy.SUFFIX
        assert config.database_name("feature/x") == "feature_x_myapp"

        simple, step, replace = config.post_commands
        assert isinstance(simple, SimpleCommand)
        assert simple.command == "npm run migrate"
        assert isinstance(step, CommandStep)
        assert step.working_dir == "backend"
        assert step.continue_on_error
        assert step.environment["DATABASE_URL"].endswith("/{db_name}")
        assert isinstance(replace, ReplaceStep)
        assert replace.create_if_missing

    def test_partial_sections_get_defaults(self, project_dir, write_config):
        write_config("database:\n  database_prefix: shop\ngit:\nbehavior:\n")

        config = Config(project_dir).load()

        assert config.database.database_prefix == "shop"
        assert config.database.host == "localhost"
        assert config.git.main_branch == "main"
        assert config.behavior.max_branches == 10

    def test_empty_file_gives_defaults(self, project_dir, write_config):
        write_config("")
        assert Config(project_dir).load() == ProjectConfig()

    def test_load_toml(self, project_dir, write_config):
        write_config(
            '[database]\nhost = "tomlhost"\n\n[behavior]\nnaming_strategy = "replace"\n'
            'replace_token = "BRANCH"\n',
            filename=".pgbranch.toml",
        )

        config = Config(project_dir).load()

        assert config.database.host == "tomlhost"
        assert config.behavior.naming_strategy == NamingStrategy.REPLACE

    def test_yaml_extension_variant(self, project_dir, write_config):
        write_config("database:\n  host: yamlhost\n", filename=".pgbranch.yaml")
        assert Config(project_dir).load().database.host == "yamlhost"

    def test_found_from_subdirectory(self, project_dir, write_config):
        path = write_config("database:\n  host: parent\n")
        nested = project_dir / "src" / "app"
        nested.mkdir(parents=True)

        config = Config(nested)

        assert config.config_path == path.resolve()
        assert config.project_root == project_dir.resolve()
        assert config.load().database.host == "parent"

    def test_project_dir_from_env(self, project_dir, write_config, monkeypatch):
        write_config("database:\n  host: fromenv\n")
        monkeypatch.setenv("PGBRANCH_PROJECT_DIR", str(project_dir))

        assert Config().load().database.host == "fromenv"

    def test_missing_config(self, project_dir):
        config = Config(project_dir)

        assert not config.exists
        with pytest.raises(ConfigError, match="pgbranch init"):
            config.load()

    def test_load_or_default(self, project_dir):
        config, path = Config(project_dir).load_or_default()

        assert path is None
        assert config == ProjectConfig()

    def test_env_overrides(self, project_dir, write_config, monkeypatch):
        write_config("database:\n  host: filehost\n  port: 5432\n")
        monkeypatch.setenv("PGBRANCH_HOST", "envhost")
        monkeypatch.setenv("PGBRANCH_PORT", "7777")
        monkeypatch.setenv("PGBRANCH_PASSWORD", "envpass")
        monkeypatch.setenv("PGBRANCH_TEMPLATE_DATABASE", "envtemplate")
        monkeypatch.setenv("PGBRANCH_USER", "envuser")

        config = Config(project_dir).load()

        assert config.database.host == "envhost"
        assert config.database.port == 7777
        assert config.database.password == "envpass"
        assert config.database.template_database == "envtemplate"
        assert config.database.user == "envuser"

    def test_env_overrides_without_database_section(self, project_dir, write_config, monkeypatch):
        write_config("git:\n  main_branch: trunk\n")
        monkeypatch.setenv("PGBRANCH_HOST", "envhost")

        assert Config(project_dir).load().database.host == "envhost"

    @pytest.mark.parametrize(
        "content,message",
        [
            ("database:\n  port: 70000\n", "port"),
            ("database:\n  host: ''\n", "host"),
            ("git:\n  auto_create_branch_filter: '(unclosed'\n", "Invalid branch filter"),
            ("behavior:\n  naming_strategy: sideways\n", "naming_strategy"),
            ("behavior:\n  max_branches: -1\n", "max_branches"),
            ("post_commands:\n  - 42\n", "Post-command must be"),
            ("post_commands:\n  - command: ls\n    condition: sometimes\n", "Unknown condition"),
            ("post_commands:\n  - file: .env\n    pattern: '('\n    replacement: x\n", "Invalid replace pattern"),
            ("post_commands:\n  - command: ls\n    typo_field: 1\n", "typo_field"),
            ("- just\n- a list\n", "must contain a mapping"),
            ("database: [unclosed\n", "Failed to read"),
        ],
    )
    def test_invalid_config(self, project_dir, write_config, content, message):
        write_config(content)

        with pytest.raises(ConfigError, match=message):
            Config(project_dir).load()

    def test_legacy_filter_key(self, project_dir, write_config):
        write_config("git:\n  branch_filter_regex: '^feature/'\n")
        assert Config(project_dir).load().git.auto_create_branch_filter == "^feature/"

    def test_null_max_branches_defaults(self, project_dir, write_config):
        write_config("behavior:\n  max_branches:\n")
        assert Config(project_dir).load().behavior.max_branches == 10

    def test_save_yaml_round_trip(self, project_dir, write_config):
        write_config(FULL_CONFIG)
        config = Config(project_dir)
        original = config.load()

        target = config.save(path=project_dir / "copy.yml")
        data = yaml.safe_load(target.read_text())

        assert data["post_commands"][0] == "npm run migrate"
        assert ProjectConfig.model_validate(data) == original

    def test_save_toml(self, project_dir):
        config = Config(project_dir)

        target = config.save(ProjectConfig(), path=project_dir / ".pgbranch.toml")
        data = toml.loads(target.read_text())

        assert data["database"]["host"] == "localhost"
        assert "password" not in data["database"]

    def test_save_without_config(self, project_dir):
        with pytest.raises(ValueError):
            Config(project_dir).save()

    def test_to_document_masks_password(self):
        config = ProjectConfig.model_validate({"database": {"password": "hunter2"}})

        assert config.to_document()["database"]["password"] == "hunter2"
        assert config.to_document(mask_password=True)["database"]["password"] == "********"

    def test_init_project(self, project_dir):
        config = Config(project_dir)

        created = config.init_project(main_branch="trunk")

        assert (project_dir / DEFAULT_CONFIG_FILENAME).exists()
        assert created.git.main_branch == "trunk"
        assert Config(project_dir).load().git.main_branch == "trunk"

    def test_init_project_refuses_overwrite(self, project_dir):
        Config(project_dir).init_project(main_branch="main")

        with pytest.raises(FileExistsError):
            Config(project_dir).init_project(main_branch="main")

        Config(project_dir).init_project(force=True, main_branch="develop")
        assert Config(project_dir).load().git.main_branch == "develop"
