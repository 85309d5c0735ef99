"""Unit tests for Config class and the configuration singleton.

Tests cover:
- Database location per environment
- CURE_TRACKER_DATABASE_URL override
- Singleton behaviour of get_config()
"""

import logging

from src.utils.config import Config, get_config, get_database_url, reset_config


class TestConfigEnvironments:
    """Tests for environment-specific database locations."""

    def setup_method(self):
        """Reset config singleton before each test."""
        reset_config()

    def teardown_method(self):
        """Clean up after each test."""
        reset_config()

    def test_production_uses_home_directory(self, monkeypatch, tmp_path):
        monkeypatch.setenv("HOME", str(tmp_path))
        monkeypatch.delenv("CURE_TRACKER_DATABASE_URL", raising=False)
        config = Config("production")
        assert config.is_production
        assert config.database_path.parent == tmp_path / ".cure_tracker"
        assert config.database_url.startswith("sqlite:///")

    def test_development_uses_project_data_dir(self):
        config = Config("development")
        assert config.is_development
        assert config.database_path.parent.name == "data"

    def test_database_url_override(self, monkeypatch):
        monkeypatch.setenv("CURE_TRACKER_DATABASE_URL", "sqlite:///:memory:")
        assert Config().database_url == "sqlite:///:memory:"

    def test_env_var_selects_environment(self, monkeypatch):
        monkeypatch.setenv("CURE_TRACKER_ENV", "development")
        assert get_config().environment == "development"

    def test_singleton_ignores_other_environment(self, monkeypatch, caplog):
        monkeypatch.delenv("CURE_TRACKER_ENV", raising=False)
        first = get_config("development")
        with caplog.at_level(logging.WARNING):
            second = get_config("production")
        assert second is first
        assert "Returning existing singleton" in caplog.text

    def test_get_database_url(self, monkeypatch):
        monkeypatch.setenv("CURE_TRACKER_DATABASE_URL", "sqlite:///:memory:")
        assert get_database_url() == "sqlite:///:memory:"
