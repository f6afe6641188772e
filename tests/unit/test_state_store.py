"""Tests for the state store and state models."""

from datetime import datetime, timedelta, timezone

import pytest
import toml
from pydantic import ValidationError

from pgbranch.core.state import STATE_DIR_NAME, STATE_FILE_NAME, StateStore
from pgbranch.errors import ConfigError, NameCollisionError
from pgbranch.models import DatabaseBranch, EngineState

BASE_TIME = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_branch(name, db_name=None, minutes=0, **kwargs):
    return DatabaseBranch(
        name=name,
        db_name=db_name or f"app_{name.replace('/', '_')}",
        source_branch=name,
        created_at=BASE_TIME + timedelta(minutes=minutes),
        **kwargs,
    )


class TestEngineState:
    """Test the EngineState model."""

    def test_empty_state_points_at_template(self):
        state = EngineState()

        assert state.is_template_current
        assert state.current_branch() is None
        assert state.ordered() == []

    def test_upsert_and_get(self):
        state = EngineState()
        state.upsert(make_branch("feature/a"))

        assert state.get("feature/a").db_name == "app_feature_a"
        assert state.find_by_db_name("app_feature_a").name == "feature/a"

    def test_upsert_replaces_same_name(self):
        state = EngineState()
        state.upsert(make_branch("feature/a"))
        state.upsert(make_branch("feature/a", last_switched_at=BASE_TIME))

        assert len(state.branches) == 1
        assert state.get("feature/a").last_switched_at == BASE_TIME

    def test_upsert_rejects_db_name_clash(self):
        state = EngineState()
        state.upsert(make_branch("feature/a", db_name="app_x"))

        with pytest.raises(ValueError, match="already used"):
            state.upsert(make_branch("feature-a", db_name="app_x"))

    def test_remove_current_falls_back_to_template(self):
        state = EngineState(branches=[make_branch("a")], current="a")

        removed = state.remove("a")

        assert removed.name == "a"
        assert state.current is None

    def test_remove_unknown_returns_none(self):
        assert EngineState().remove("missing") is None

    def test_ordered_by_creation_time(self):
        state = EngineState(
            branches=[make_branch("c", minutes=3), make_branch("a", minutes=1), make_branch("b", minutes=2)]
        )
        assert [b.name for b in state.ordered()] == ["a", "b", "c"]

    def test_pointer_must_reference_record(self):
        with pytest.raises(ValidationError):
            EngineState(current="ghost")

    def test_duplicate_db_names_rejected(self):
        with pytest.raises(ValidationError):
            EngineState(branches=[make_branch("a", db_name="x"), make_branch("b", db_name="x")])

    def test_empty_name_rejected(self):
        with pytest.raises(ValidationError):
            DatabaseBranch(name="", db_name="x")


class TestStateStore:
    """Test StateStore persistence."""

    @pytest.fixture
    def store(self, tmp_path):
        return StateStore(tmp_path)

    def test_state_path(self, store, tmp_path):
        assert store.state_path == tmp_path / STATE_DIR_NAME / STATE_FILE_NAME

    def test_load_missing_file_is_empty(self, store):
        state = store.load()

        assert not store.exists
        assert state.branches == []
        assert state.current is None

    def test_round_trip(self, store):
        state = EngineState(
            branches=[
                make_branch("feature/a", minutes=1, last_switched_at=BASE_TIME + timedelta(hours=1)),
                make_branch("feature/b", minutes=2),
            ],
            current="feature/a",
        )

        store.save(state)
        loaded = store.load()

        assert loaded == state

    def test_round_trip_template_current(self, store):
        state = EngineState(branches=[make_branch("feature/a")])

        store.save(state)

        assert store.load() == state

    def test_file_is_toml_with_version(self, store):
        store.save(EngineState(branches=[make_branch("a")], current="a"))

        data = toml.loads(store.state_path.read_text())

        assert data["version"] == 1
        assert data["current"] == "a"
        assert data["branches"][0]["db_name"] == "app_a"

    def test_save_leaves_no_temp_files(self, store):
        store.save(EngineState(branches=[make_branch("a")]))
        store.save(EngineState(branches=[make_branch("b")]))

        files = [p.name for p in store.state_path.parent.iterdir()]
        assert files == [STATE_FILE_NAME]

    def test_unknown_fields_ignored(self, store):
        store.state_path.parent.mkdir(parents=True)
        store.state_path.write_text(
            'version = 1\n'
            'future_setting = "x"\n'
            '\n'
            '[[branches]]\n'
            'name = "a"\n'
            'db_name = "app_a"\n'
            'created_at = "2024-03-01T12:00:00+00:00"\n'
            'color = "blue"\n'
        )

        state = store.load()

        assert state.get("a").db_name == "app_a"
        assert state.get("a").created_at == BASE_TIME

    def test_newer_version_still_loads(self, store):
        store.state_path.parent.mkdir(parents=True)
        store.state_path.write_text("version = 99\n")

        assert store.load().branches == []

    def test_corrupt_file_raises_config_error(self, store):
        store.state_path.parent.mkdir(parents=True)
        store.state_path.write_text("this is = = not toml")

        with pytest.raises(ConfigError):
            store.load()

    def test_inconsistent_file_raises_config_error(self, store):
        store.state_path.parent.mkdir(parents=True)
        store.state_path.write_text('current = "ghost"\n')

        with pytest.raises(ConfigError, match="Invalid state file"):
            store.load()

    def test_upsert_remove_list(self, store):
        store.upsert(make_branch("b", minutes=2))
        store.upsert(make_branch("a", minutes=1))

        assert [b.name for b in store.list()] == ["a", "b"]

        removed = store.remove("a")

        assert removed.name == "a"
        assert [b.name for b in store.list()] == ["b"]
        assert store.remove("a") is None

    def test_upsert_collision(self, store):
        store.upsert(make_branch("feature/a", db_name="app_feature_a"))

        with pytest.raises(NameCollisionError) as exc_info:
            store.upsert(make_branch("feature-a", db_name="app_feature_a"))

        assert exc_info.value.existing == "feature/a"
