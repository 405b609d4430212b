"""
Unit tests for configuration loader functionality.

Tests YAML loading, environment overrides, source canonicalization,
nested root detection, and rule lookup.
"""

import logging
import shutil
import tempfile
from datetime import timedelta
from pathlib import Path

import pytest

from config.loader import ConfigurationError, ConfigurationLoader, find_nested_roots, find_rule
from core.models.config import GlobalSettings, Project, SyncRule


class TestConfigurationLoader:
    """Test ConfigurationLoader functionality"""

    def setup_method(self):
        """Setup test environment"""
        self.temp_dir = tempfile.mkdtemp()
        self.temp_path = Path(self.temp_dir).resolve()
        self.loader = ConfigurationLoader(GlobalSettings(config_path=self.temp_path / "atune.yaml"))

        (self.temp_path / "src").mkdir()
        (self.temp_path / "src" / "lib").mkdir()
        (self.temp_path / "notes.txt").write_text("hello")

    def teardown_method(self):
        """Cleanup test environment"""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def write_config(self, text: str) -> Path:
        config_file = self.temp_path / "atune.yaml"
        config_file.write_text(text)
        return config_file

    def test_load_basic(self):
        config_file = self.write_config(
            "debounce: 1s 30ms\n"
            "projects:\n"
            "  web:\n"
            "    restart: false\n"
            "    sync:\n"
            f"      - src: {self.temp_path / 'src'}\n"
            "        dst: host:/srv/web\n"
            "        rsync_flags: -a --delete\n"
            "        on_sync:\n"
            "          - command: make\n"
            "            continue_on_failure: true\n"
        )

        config = self.loader.load(config_file)
        project = config.get_project("web")
        rule = project.sync[0]

        assert config.debounce == timedelta(seconds=1, milliseconds=30)
        assert project.restart is False
        assert rule.src == self.temp_path / "src"
        assert rule.rsync_flags == ["-a", "--delete"]
        assert rule.on_sync[0].continue_on_failure is True

    def test_load_uses_settings_path(self):
        self.write_config("projects: {}\n")
        config = self.loader.load()
        assert config.projects == {}

    def test_relative_src_resolved_against_config_dir(self, monkeypatch):
        config_file = self.write_config(
            "projects:\n"
            "  web:\n"
            "    sync:\n"
            "      - src: src/lib/../lib\n"
            "      - src: notes.txt\n"
        )
        monkeypatch.chdir(tempfile.gettempdir())

        config = self.loader.load(config_file)
        sources = [rule.src for rule in config.get_project("web").sync]

        assert sources == [self.temp_path / "src" / "lib", self.temp_path / "notes.txt"]

    def test_missing_src_is_configuration_error(self):
        config_file = self.write_config(
            "projects:\n"
            "  web:\n"
            "    sync:\n"
            "      - src: does-not-exist\n"
        )

        with pytest.raises(ConfigurationError, match="canonicalize"):
            self.loader.load(config_file)

    def test_missing_file(self):
        with pytest.raises(ConfigurationError, match="Failed to open"):
            self.loader.load(self.temp_path / "missing.yaml")

    def test_invalid_yaml(self):
        config_file = self.write_config("projects: [unclosed\n")
        with pytest.raises(ConfigurationError, match="Failed to parse"):
            self.loader.load(config_file)

    def test_invalid_schema(self):
        config_file = self.write_config("projects:\n  web:\n    restart: maybe\n")
        with pytest.raises(ConfigurationError, match="Invalid configuration"):
            self.loader.load(config_file)

    def test_non_mapping_document(self):
        config_file = self.write_config("- just\n- a list\n")
        with pytest.raises(ConfigurationError, match="mapping"):
            self.loader.load(config_file)

    def test_empty_document(self):
        config_file = self.write_config("")
        config = self.loader.load(config_file)

        assert config.projects == {}
        assert config.debounce == timedelta(milliseconds=100)

    def test_debounce_env_override(self, monkeypatch):
        config_file = self.write_config("debounce: 5s\nprojects: {}\n")
        monkeypatch.setenv("ATUNE_DEBOUNCE", "0s")

        config = self.loader.load(config_file)

        assert config.debounce == timedelta(0)

    def test_nested_roots_warning(self, caplog):
        config_file = self.write_config(
            "projects:\n"
            "  web:\n"
            "    sync:\n"
            "      - src: src\n"
            "      - src: src/lib\n"
        )

        with caplog.at_level(logging.WARNING, logger="config.loader"):
            self.loader.load(config_file)

        assert "nested" in caplog.text


class TestFindNestedRoots:
    """Test nested rule detection"""

    def test_nested_pair(self):
        project = Project(name="p", sync=[
            SyncRule(src=Path("/a")),
            SyncRule(src=Path("/a/b")),
            SyncRule(src=Path("/c")),
        ])
        assert find_nested_roots(project) == [(Path("/a"), Path("/a/b"))]

    def test_siblings_are_not_nested(self):
        project = Project(name="p", sync=[
            SyncRule(src=Path("/a/b")),
            SyncRule(src=Path("/a/bc")),
        ])
        assert find_nested_roots(project) == []


class TestFindRule:
    """Test single rule lookup used by sync-project"""

    @pytest.fixture
    def workspace(self):
        temp_dir = Path(tempfile.mkdtemp()).resolve()
        (temp_dir / "src").mkdir()
        (temp_dir / "docs").mkdir()
        yield temp_dir
        shutil.rmtree(temp_dir, ignore_errors=True)

    @pytest.fixture
    def config(self, workspace):
        loader = ConfigurationLoader(GlobalSettings())
        return loader.load_from_dict(
            {"projects": {"web": {"sync": [{"src": "src", "dst": "x"}, {"src": "docs"}]}}},
            base_dir=workspace,
        )

    def test_by_index(self, config, workspace):
        assert find_rule(config, "web", index=1).src == workspace / "docs"

    def test_by_src_is_canonicalized(self, config, workspace):
        rule = find_rule(config, "web", src=workspace / "docs" / ".." / "src")
        assert rule.dst == "x"

    def test_unknown_project(self, config):
        with pytest.raises(ConfigurationError, match="not found"):
            find_rule(config, "api", index=0)

    def test_unknown_index(self, config):
        with pytest.raises(ConfigurationError):
            find_rule(config, "web", index=7)

    def test_src_that_does_not_exist(self, config, workspace):
        with pytest.raises(ConfigurationError, match="canonicalize"):
            find_rule(config, "web", src=workspace / "nope")
