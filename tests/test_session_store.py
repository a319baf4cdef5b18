"""
Tests for the storage-state store: paths, freshness, reads, sweeps.
"""

import json
import os
from pathlib import Path

import pytest
from playwright.async_api import Error as PlaywrightError

from harness.auth.errors import StorageStateError
from harness.auth.session_store import (
    CLEANUP_MAX_AGE_MS,
    StorageStateOptions,
    StorageStateStore,
    get_role_from_path,
)

from conftest import FakeContext

NOW_MS = 1_700_000_000_000
MINUTE_MS = 60_000
HOUR_MS = 60 * MINUTE_MS


def _write_state(path, mtime_ms, content=None):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content if content is not None else json.dumps({"cookies": [], "origins": []}))
    ns = mtime_ms * 1_000_000
    os.utime(path, ns=(ns, ns))
    return path


@pytest.fixture
def store(tmp_path):
    return StorageStateStore(StorageStateOptions(project_root=tmp_path), now_ms=lambda: NOW_MS)


@pytest.fixture
def locked_file(monkeypatch):
    """Make ``locked.json`` undeletable; everything else unlinks normally."""
    real_unlink = Path.unlink

    def unlink(self, *args, **kwargs):
        if self.name == "locked.json":
            raise PermissionError(13, "Permission denied", str(self))
        return real_unlink(self, *args, **kwargs)

    monkeypatch.setattr(Path, "unlink", unlink)


# ====================================================================
# 1. Path resolution
# ====================================================================

class TestPaths:
    def test_default_layout(self, store, tmp_path):
        assert store.get_path("admin") == tmp_path / ".auth-states" / "admin.json"

    def test_env_substitution(self, tmp_path):
        options = StorageStateOptions(project_root=tmp_path, file_pattern="{role}-{env}.json", environment="staging")
        assert StorageStateStore(options).get_path("admin").name == "admin-staging.json"

    def test_env_defaults_to_default(self, tmp_path):
        options = StorageStateOptions(project_root=tmp_path, file_pattern="{env}/{role}")
        assert StorageStateStore(options).get_path("admin") == tmp_path / ".auth-states" / "default" / "admin.json"

    def test_json_suffix_enforced(self, tmp_path):
        options = StorageStateOptions(project_root=tmp_path, file_pattern="state-{role}")
        assert StorageStateStore(options).get_path("qa").name == "state-qa.json"

    def test_role_cannot_escape_directory(self, store):
        with pytest.raises(ValueError):
            store.get_path("../admin")
        assert store.is_valid("../admin") is False


class TestRoleFromPath:
    def test_role_with_env(self):
        assert get_role_from_path("admin-staging.json", "{role}-{env}.json") == "admin"

    def test_default_pattern(self):
        assert get_role_from_path("/tmp/states/viewer.json") == "viewer"

    def test_literal_parts_escaped(self):
        assert get_role_from_path("state.admin.json", "state.{role}.json") == "admin"
        assert get_role_from_path("stateXadmin.json", "state.{role}.json") is None

    def test_non_matching_name(self):
        assert get_role_from_path("notes.txt", "{role}.json") is None


# ====================================================================
# 2. Freshness
# ====================================================================

class TestIsValid:
    def test_missing_file(self, store):
        assert store.is_valid("admin") is False
        assert store.load("admin") is None

    def test_age_equal_to_max_is_valid(self, store):
        _write_state(store.get_path("admin"), NOW_MS - 60 * MINUTE_MS)
        assert store.is_valid("admin") is True

    def test_one_ms_past_max_is_invalid(self, store):
        _write_state(store.get_path("admin"), NOW_MS - 60 * MINUTE_MS - 1)
        assert store.is_valid("admin") is False

    def test_corrupted_json_is_invalid(self, store):
        _write_state(store.get_path("admin"), NOW_MS, content="{not json")
        assert store.is_valid("admin") is False

    def test_check_does_not_mutate(self, store):
        path = _write_state(store.get_path("admin"), NOW_MS - 2 * HOUR_MS)
        store.is_valid("admin")
        assert path.exists()

    def test_reuse_ten_minute_old_session(self, store):
        path = _write_state(store.get_path("admin"), NOW_MS - 10 * MINUTE_MS)
        assert store.load("admin") == path


# ====================================================================
# 3. Save and read
# ====================================================================

class TestSaveAndRead:
    @pytest.mark.asyncio
    async def test_round_trip(self, store):
        path = await store.save(FakeContext(), "admin")
        assert path.exists()
        assert store.read("admin") == {"cookies": [], "origins": []}

    @pytest.mark.asyncio
    async def test_save_failure_is_invalid(self, store):
        context = FakeContext()
        context.save_error = PlaywrightError("Target closed")
        with pytest.raises(StorageStateError) as exc:
            await store.save(context, "admin")
        assert exc.value.cause == "invalid"
        assert exc.value.role == "admin"

    def test_read_missing(self, store):
        with pytest.raises(StorageStateError) as exc:
            store.read("admin")
        assert exc.value.cause == "missing"

    def test_read_not_json(self, store):
        _write_state(store.get_path("admin"), NOW_MS, content="nope")
        with pytest.raises(StorageStateError) as exc:
            store.read("admin")
        assert exc.value.cause == "corrupted"

    def test_read_wrong_shape(self, store):
        _write_state(store.get_path("admin"), NOW_MS, content=json.dumps({"cookies": {}}))
        with pytest.raises(StorageStateError) as exc:
            store.read("admin")
        assert exc.value.cause == "corrupted"


# ====================================================================
# 4. Clear and sweep
# ====================================================================

class TestClear:
    def test_clear_role_is_idempotent(self, store):
        _write_state(store.get_path("admin"), NOW_MS)
        assert store.clear("admin") == 1
        assert store.clear("admin") == 0

    def test_clear_all_only_json(self, store):
        _write_state(store.get_path("admin"), NOW_MS)
        _write_state(store.get_path("viewer"), NOW_MS)
        (store.directory / "README.txt").write_text("keep me")
        assert store.clear() == 2
        assert (store.directory / "README.txt").exists()

    def test_clear_all_without_directory(self, store):
        assert store.clear() == 0

    def test_clear_all_skips_undeletable_file(self, store, locked_file, caplog):
        locked = _write_state(store.get_path("locked"), NOW_MS)
        _write_state(store.get_path("admin"), NOW_MS)
        _write_state(store.get_path("viewer"), NOW_MS)

        assert store.clear() == 2

        assert locked.exists()
        assert not store.get_path("admin").exists()
        assert not store.get_path("viewer").exists()
        assert "Could not remove" in caplog.text

    def test_clear_single_role_propagates_os_error(self, store, locked_file):
        _write_state(store.get_path("locked"), NOW_MS)
        with pytest.raises(PermissionError):
            store.clear("locked")


class TestCleanup:
    def test_only_files_older_than_24h_deleted(self, store):
        _write_state(store.get_path("one"), NOW_MS - 1 * HOUR_MS)
        _write_state(store.get_path("twenty_three"), NOW_MS - 23 * HOUR_MS)
        old = _write_state(store.get_path("twenty_five"), NOW_MS - 25 * HOUR_MS)

        result = store.cleanup_expired()

        assert result.deleted_count == 1
        assert result.deleted_files == [old]
        assert result.errors == []
        assert store.get_path("one").exists()
        assert store.get_path("twenty_three").exists()

    def test_missing_directory(self, store):
        result = store.cleanup_expired()
        assert (result.deleted_count, result.deleted_files, result.errors) == (0, [], [])

    def test_custom_threshold(self, store):
        _write_state(store.get_path("admin"), NOW_MS - 2 * HOUR_MS)
        assert store.cleanup_older_than(HOUR_MS).deleted_count == 1
        assert CLEANUP_MAX_AGE_MS == 24 * HOUR_MS

    def test_undeletable_file_is_reported_and_sweep_continues(self, store, locked_file):
        locked = _write_state(store.get_path("locked"), NOW_MS - 25 * HOUR_MS)
        old = _write_state(store.get_path("zz_old"), NOW_MS - 25 * HOUR_MS)

        result = store.cleanup_expired()

        assert result.deleted_count == 1
        assert result.deleted_files == [old]
        assert len(result.errors) == 1
        assert result.errors[0]["path"] == str(locked)
        assert "Permission denied" in result.errors[0]["message"]
        assert locked.exists()
        assert not old.exists()


# ====================================================================
# 5. Introspection
# ====================================================================

class TestListStates:
    def test_lists_matching_files(self, tmp_path):
        options = StorageStateOptions(project_root=tmp_path, file_pattern="{role}-{env}.json")
        store = StorageStateStore(options, now_ms=lambda: NOW_MS)
        _write_state(store.directory / "admin-default.json", NOW_MS - 5 * MINUTE_MS)
        _write_state(store.directory / "viewer-default.json", NOW_MS - 2 * HOUR_MS)
        _write_state(store.directory / "notes.json", NOW_MS)

        states = {s.role: s for s in store.list_states()}

        assert set(states) == {"admin", "viewer"}
        assert states["admin"].is_valid is True
        assert states["viewer"].is_valid is False

    def test_metadata(self, store):
        path = _write_state(store.get_path("admin"), NOW_MS - 5 * MINUTE_MS)
        meta = store.get_metadata("admin")
        assert meta.path == path
        assert meta.is_valid is True
        assert int(meta.created_at.timestamp() * 1000) == NOW_MS - 5 * MINUTE_MS
        assert store.get_metadata("viewer") is None
