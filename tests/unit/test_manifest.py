"""Tests for residentml.toml loading, RESIDENTML_ENV and storage selection."""

from __future__ import annotations

import logging
import textwrap
from pathlib import Path

import pytest

from residentml.core.environment import (
    ResidentEnv,
    get_residentml_env,
    is_production,
    should_show_error_details,
)
from residentml.core.manifest import (
    CompilerLimits,
    PersistenceConfig,
    ProjectManifest,
    find_manifest,
    load_manifest,
)
from residentml.core.state import MemoryStorage, SqliteStorage
from residentml.core.state.storage import open_storage

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_MINIMAL_TOML = textwrap.dedent("""\
    [project]
    name = "ada-profile"
""")


def _write_toml(tmp_path: Path, extra: str = "") -> Path:
    p = tmp_path / "residentml.toml"
    p.write_text(_MINIMAL_TOML + extra, encoding="utf-8")
    return p


# ---------------------------------------------------------------------------
# load_manifest
# ---------------------------------------------------------------------------


class TestLoadManifest:
    def test_defaults(self, tmp_path: Path) -> None:
        manifest = load_manifest(_write_toml(tmp_path))
        assert manifest.name == "ada-profile"
        assert manifest.compiler == CompilerLimits()
        assert manifest.evaluator.max_nodes == 1000
        assert manifest.persistence.backend == "memory"
        assert manifest.hydration.show_error_details is None
        assert manifest.logging.level == "INFO"

    def test_all_sections(self, tmp_path: Path) -> None:
        toml_path = _write_toml(
            tmp_path,
            textwrap.dedent("""\

                [compiler]
                max_nodes = 200
                max_depth = 8
                extra_components = ["ShoutBox"]

                [evaluator]
                max_nodes = 50

                [persistence]
                backend = "sqlite"
                path = "state/profile.db"
                max_value_bytes = 2048

                [hydration]
                show_error_details = false

                [logging]
                level = "DEBUG"
                json_file = "logs/residentml.jsonl"
            """),
        )
        manifest = load_manifest(toml_path)
        assert manifest.compiler.max_nodes == 200
        assert manifest.compiler.max_depth == 8
        assert manifest.compiler.max_markup_bytes == 64 * 1024
        assert manifest.compiler.extra_components == ["ShoutBox"]
        assert manifest.evaluator.max_nodes == 50
        assert manifest.persistence == PersistenceConfig("sqlite", "state/profile.db", 2048)
        assert manifest.hydration.show_error_details is False
        assert manifest.logging.json_file == "logs/residentml.jsonl"

    def test_unknown_backend(self, tmp_path: Path) -> None:
        toml_path = _write_toml(tmp_path, '\n[persistence]\nbackend = "redis"\n')
        with pytest.raises(ValueError, match="Unknown persistence backend 'redis'"):
            load_manifest(toml_path)


class TestFindManifest:
    def test_walks_up_from_template(self, tmp_path: Path) -> None:
        _write_toml(tmp_path)
        nested = tmp_path / "templates" / "profiles"
        nested.mkdir(parents=True)
        template = nested / "ada.rml"
        template.write_text("<p>hi</p>", encoding="utf-8")
        assert find_manifest(template).name == "ada-profile"

    def test_defaults_without_file(self, tmp_path: Path) -> None:
        assert find_manifest(tmp_path) == ProjectManifest()


# ---------------------------------------------------------------------------
# RESIDENTML_ENV
# ---------------------------------------------------------------------------


class TestEnvironment:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("", ResidentEnv.DEVELOPMENT),
            ("dev", ResidentEnv.DEVELOPMENT),
            ("testing", ResidentEnv.TEST),
            ("PROD", ResidentEnv.PRODUCTION),
        ],
    )
    def test_values(
        self, monkeypatch: pytest.MonkeyPatch, value: str, expected: ResidentEnv
    ) -> None:
        monkeypatch.setenv("RESIDENTML_ENV", value)
        assert get_residentml_env() == expected

    def test_unknown_value_defaults_to_development(
        self, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
    ) -> None:
        monkeypatch.setenv("RESIDENTML_ENV", "staging")
        with caplog.at_level(logging.WARNING):
            assert get_residentml_env() == ResidentEnv.DEVELOPMENT
        assert "Unknown RESIDENTML_ENV value 'staging'" in caplog.text

    def test_error_details_follow_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("RESIDENTML_ENV", "production")
        assert is_production()
        assert should_show_error_details() is False
        assert should_show_error_details(True) is True

        monkeypatch.setenv("RESIDENTML_ENV", "development")
        assert should_show_error_details() is True
        assert should_show_error_details(False) is False


class TestOpenStorage:
    def test_memory_by_default(self) -> None:
        assert isinstance(open_storage(PersistenceConfig()), MemoryStorage)

    def test_sqlite(self, tmp_path: Path) -> None:
        storage = open_storage(PersistenceConfig("sqlite", str(tmp_path / "state.db")))
        assert isinstance(storage, SqliteStorage)
        storage.set("ada", "theme", '"dark"')
        assert storage.keys("ada") == ["theme"]
