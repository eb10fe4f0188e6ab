"""
Unit tests for settings loading and validation.

Tests defaults, strict key checking and error handling for settings files.
"""

import os
import tempfile

import pytest
import yaml

from points_monitor.config.loader import (
    SETTINGS_ENV_VAR,
    FeedSettings,
    MonitorSettings,
    SyncSettings,
    load_settings,
)
from points_monitor.feed.client import DEFAULT_ENDPOINT
from points_monitor.storage.db import DEFAULT_DB_PATH


class TestSettingsLoading:
    """Test settings loading and validation."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_settings(self, data, filename: str = "settings.yaml") -> str:
        """Write settings data to temporary file."""
        path = os.path.join(self.temp_dir, filename)
        with open(path, 'w', encoding='utf-8') as f:
            yaml.dump(data, f)
        return path

    def test_defaults_without_file(self, monkeypatch):
        """No path and no environment variable yields the defaults."""
        monkeypatch.delenv(SETTINGS_ENV_VAR, raising=False)
        settings = load_settings()

        assert settings == MonitorSettings()
        assert settings.database_path == DEFAULT_DB_PATH
        assert settings.feed.endpoint == DEFAULT_ENDPOINT
        assert settings.feed.page_size == 20
        assert settings.sync.scheduled_page_budget == 10
        assert settings.log_level == "INFO"

    def test_full_settings_load_correctly(self):
        """Every section is read into typed settings."""
        path = self._write_settings({
            "database_path": "/tmp/points.db",
            "feed": {
                "endpoint": "https://example.test/gql",
                "page_size": 50,
                "timeout_seconds": 10,
                "page_delay_seconds": 0.5,
            },
            "sync": {
                "scheduled_page_budget": 4,
                "default_interval_minutes": 15,
            },
            "logging": {"level": "debug"},
        })

        settings = load_settings(path)

        assert settings.database_path == "/tmp/points.db"
        assert settings.feed == FeedSettings(
            endpoint="https://example.test/gql",
            page_size=50,
            timeout_seconds=10.0,
            page_delay_seconds=0.5,
        )
        assert settings.sync == SyncSettings(scheduled_page_budget=4, default_interval_minutes=15)
        assert settings.log_level == "DEBUG"

    def test_partial_settings_keep_defaults(self):
        """Missing keys fall back to their defaults."""
        path = self._write_settings({"sync": {"scheduled_page_budget": 2}})
        settings = load_settings(path)

        assert settings.sync.scheduled_page_budget == 2
        assert settings.sync.default_interval_minutes == 30
        assert settings.feed == FeedSettings()

    def test_empty_file_gives_defaults(self):
        """An empty settings file is the same as no file."""
        path = os.path.join(self.temp_dir, "empty.yaml")
        open(path, 'w').close()
        assert load_settings(path) == MonitorSettings()

    def test_env_var_is_used(self, monkeypatch):
        """The environment variable supplies the path when none is given."""
        path = self._write_settings({"database_path": "env.db"})
        monkeypatch.setenv(SETTINGS_ENV_VAR, path)

        assert load_settings().database_path == "env.db"

    def test_missing_file_raises(self):
        """A path that doesn't exist raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            load_settings(os.path.join(self.temp_dir, "missing.yaml"))

    def test_invalid_yaml_raises(self):
        """Malformed YAML raises yaml.YAMLError."""
        path = os.path.join(self.temp_dir, "bad.yaml")
        with open(path, 'w', encoding='utf-8') as f:
            f.write("feed: [unclosed\n")
        with pytest.raises(yaml.YAMLError):
            load_settings(path)

    def test_unknown_top_level_key_rejected(self):
        """Typos at the top level are rejected."""
        path = self._write_settings({"databse_path": "x.db"})
        with pytest.raises(ValueError, match="Unknown settings keys"):
            load_settings(path)

    def test_unknown_section_key_rejected(self):
        """Typos inside a section are rejected."""
        path = self._write_settings({"feed": {"page_sise": 10}})
        with pytest.raises(ValueError, match="Unknown keys in feed"):
            load_settings(path)

    def test_section_must_be_mapping(self):
        """A section given as a scalar is rejected."""
        path = self._write_settings({"sync": 5})
        with pytest.raises(ValueError, match="must be a dictionary"):
            load_settings(path)

    def test_top_level_must_be_mapping(self):
        """A list at the top level is rejected."""
        path = self._write_settings(["feed"])
        with pytest.raises(ValueError, match="mapping"):
            load_settings(path)

    @pytest.mark.parametrize("data", [
        {"feed": {"page_size": "20"}},
        {"feed": {"page_size": True}},
        {"feed": {"timeout_seconds": "slow"}},
        {"sync": {"scheduled_page_budget": 2.5}},
        {"logging": {"level": 10}},
        {"database_path": 42},
    ])
    def test_wrong_types_rejected(self, data):
        """Wrongly typed values raise ValueError."""
        with pytest.raises(ValueError, match="wrong type"):
            load_settings(self._write_settings(data))

    @pytest.mark.parametrize("data", [
        {"feed": {"page_size": 0}},
        {"feed": {"timeout_seconds": -1}},
        {"feed": {"page_delay_seconds": -0.5}},
        {"sync": {"scheduled_page_budget": 0}},
        {"sync": {"default_interval_minutes": 0}},
        {"logging": {"level": "verbose"}},
        {"database_path": ""},
    ])
    def test_out_of_range_values_rejected(self, data):
        """Values outside their valid range raise ValueError."""
        with pytest.raises(ValueError):
            load_settings(self._write_settings(data))
