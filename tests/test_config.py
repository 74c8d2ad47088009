"""Tests for application configuration."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

from entityfinder.config import AppConfig
from entityfinder.resolution.job import JobOptions


class TestAppConfig:
    """Test AppConfig dataclass."""

    def test_default_config(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Should fall back to the Documents folder when no local database exists."""
        monkeypatch.chdir(tmp_path)
        config = AppConfig()

        assert config.db_path == Path.home() / "Documents" / "EntityFinder" / "entityfinder.db"
        assert config.model_path is None
        assert config.max_hops == 100
        assert config.max_docs_per_query == 1000
        assert config.concurrency == 10

    def test_prefers_local_database(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Should use data/entityfinder.db when running from a source checkout."""
        monkeypatch.chdir(tmp_path)
        (tmp_path / "data").mkdir()
        (tmp_path / "data" / "entityfinder.db").write_text("")

        assert AppConfig().db_path == Path("data/entityfinder.db")

    def test_frozen_flag_ignored(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Should pick the default path the same way inside a bundled interpreter."""
        monkeypatch.chdir(tmp_path)
        monkeypatch.setattr(sys, "frozen", True, raising=False)
        (tmp_path / "data").mkdir()
        (tmp_path / "data" / "entityfinder.db").write_text("")

        assert AppConfig().db_path == Path("data/entityfinder.db")

    def test_custom_config(self) -> None:
        """Should create config with custom values."""
        config = AppConfig(
            db_path=Path("/custom/path.db"),
            model_path=Path("/custom/model.json"),
            max_hops=3,
            max_docs_per_query=50,
            concurrency=4,
        )

        assert config.db_path == Path("/custom/path.db")
        assert config.model_path == Path("/custom/model.json")
        assert config.max_hops == 3
        assert config.max_docs_per_query == 50
        assert config.concurrency == 4

    def test_resolve_db_path_absolute(self) -> None:
        """Should return absolute path as-is."""
        config = AppConfig(db_path=Path("/absolute/path/db.db"))

        assert config.resolve_db_path(Path("/elsewhere")) == Path("/absolute/path/db.db")

    def test_resolve_db_path_relative_no_base(self) -> None:
        """Should return relative path when no base_dir provided."""
        config = AppConfig(db_path=Path("relative/db.db"))

        assert config.resolve_db_path(base_dir=None) == Path("relative/db.db")

    def test_resolve_db_path_relative_with_base(self) -> None:
        """Should resolve relative path against base_dir."""
        config = AppConfig(db_path=Path("relative/db.db"))

        assert config.resolve_db_path(base_dir=Path("/base")) == Path("/base/relative/db.db")


class TestJobOptions:
    """Test job options derived from the configuration."""

    def test_job_options_defaults(self) -> None:
        """Should carry hop and document limits into otherwise default options."""
        options = AppConfig(db_path=Path("x.db"), max_hops=2, max_docs_per_query=7).job_options()

        assert isinstance(options, JobOptions)
        assert options.max_hops == 2
        assert options.max_docs_per_query == 7
        assert options.include_attributes is True
        assert options.include_explanation is False
        assert options.include_hits is True
        assert options.include_queries is False
        assert options.include_source is True
        assert options.profile is False

    def test_job_options_overrides(self) -> None:
        """Should apply keyword overrides."""
        options = AppConfig(db_path=Path("x.db")).job_options(include_explanation=True)

        assert options.include_explanation is True

    def test_job_options_unknown_override(self) -> None:
        """Should reject options that do not exist."""
        with pytest.raises(AttributeError):
            AppConfig(db_path=Path("x.db")).job_options(not_an_option=True)
