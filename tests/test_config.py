"""Tests for configuration loading."""
from pathlib import Path

import pytest
from pydantic import ValidationError

from notesync.config import NoteSyncConfig


class TestNoteSyncConfig:
    """Environment-driven defaults and validation."""

    def test_environment_overrides(self, monkeypatch, tmp_path):
        monkeypatch.setenv("NOTESYNC_BASE_DIR", str(tmp_path))
        monkeypatch.setenv("NOTESYNC_DATABASE_PATH", "store.db")
        monkeypatch.setenv("NOTESYNC_INDEX_PATH", "index.db")
        monkeypatch.setenv("NOTESYNC_SEARCH_LIMIT", "25")
        monkeypatch.setenv("NOTESYNC_TITLE_WEIGHT", "3.5")

        cfg = NoteSyncConfig()

        assert cfg.search_limit == 25
        assert cfg.title_weight == 3.5
        assert cfg.get_db_url() == f"sqlite:///{tmp_path / 'store.db'}"
        assert cfg.get_index_url() == f"sqlite:///{tmp_path / 'index.db'}"

    def test_stores_are_separate_files(self, tmp_path):
        cfg = NoteSyncConfig(base_dir=tmp_path)
        assert cfg.get_db_url() != cfg.get_index_url()

    def test_in_memory(self):
        cfg = NoteSyncConfig(in_memory_db=True)
        assert cfg.get_db_url() == "sqlite:///:memory:"
        assert cfg.get_index_url() == "sqlite:///:memory:"

    def test_absolute_path_untouched(self, tmp_path):
        cfg = NoteSyncConfig(base_dir=Path("/somewhere"))
        assert cfg.get_absolute_path(tmp_path) == tmp_path
        assert cfg.get_absolute_path(Path("x.db")) == Path("/somewhere/x.db")

    @pytest.mark.parametrize("field,value", [("search_limit", 0), ("title_weight", 0.0)])
    def test_rejects_useless_search_settings(self, field, value):
        with pytest.raises(ValidationError):
            NoteSyncConfig(**{field: value})

    def test_log_dir_optional(self, monkeypatch):
        monkeypatch.delenv("NOTESYNC_LOG_DIR", raising=False)
        assert NoteSyncConfig().log_dir is None


class TestCommandLine:
    def test_arguments_update_global_config(self, monkeypatch):
        from notesync import main
        from notesync.config import config

        for field in ("database_path", "index_path", "log_level"):
            monkeypatch.setattr(config, field, getattr(config, field))

        args = main.parse_args(
            ["--database-path", "a.db", "--index-path", "b.db", "--log-level", "DEBUG"]
        )
        main.update_config(args)

        assert config.database_path == Path("a.db")
        assert config.index_path == Path("b.db")
        assert config.log_level == "DEBUG"
