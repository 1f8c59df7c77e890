"""Tests for config loading and validation."""

from pathlib import Path

import pytest

from cli.config import find_config, load_config_model
from cli.config_models import AppConfig, LoggingConfig, SyncConfig
from cli.retry import retry_from_config


class TestDefaults:
    def test_learning_defaults(self):
        config = AppConfig()
        assert config.learning.initial_confidence == 0.3
        assert config.learning.apply_threshold == 0.6
        assert config.learning.min_review_words == 20
        assert config.learning.review_timeout_seconds == 120.0

    def test_sync_defaults(self):
        config = AppConfig()
        assert config.sync.max_attempts == 5
        assert config.sync.interval_seconds == 30.0
        assert not config.sync.has_credentials

    def test_paths_are_expanded(self):
        config = AppConfig()
        assert config.paths.db_path == Path.home() / ".dictate" / "learning.db"


class TestValidation:
    def test_invalid_log_level(self):
        with pytest.raises(ValueError):
            LoggingConfig(level="LOUD")

    def test_log_level_is_normalised(self):
        assert LoggingConfig(level="debug").level == "DEBUG"

    def test_url_must_be_http(self):
        with pytest.raises(ValueError):
            SyncConfig(supabase_url="project.supabase.co")

    def test_url_trailing_slash_stripped(self):
        assert SyncConfig(supabase_url="https://x.supabase.co/").supabase_url == "https://x.supabase.co"

    def test_confidence_out_of_range(self):
        with pytest.raises(ValueError):
            AppConfig.from_dict({"learning": {"apply_threshold": 1.5}})

    def test_has_credentials_respects_enabled(self):
        creds = {"supabase_url": "https://x.supabase.co", "supabase_key": "k", "user_id": "u"}
        assert SyncConfig(**creds).has_credentials
        assert not SyncConfig(enabled=False, **creds).has_credentials


class TestEnvExpansion:
    def test_credentials_expand_from_env(self, monkeypatch):
        monkeypatch.setenv("DICTATE_SUPABASE_KEY", "sb_publishable_abc")
        config = AppConfig.from_dict({"sync": {"supabase_key": "${DICTATE_SUPABASE_KEY}"}})
        assert config.sync.supabase_key == "sb_publishable_abc"

    def test_missing_env_var_is_empty(self, monkeypatch):
        monkeypatch.delenv("DICTATE_MISSING", raising=False)
        config = AppConfig.from_dict({"sync": {"user_id": "${DICTATE_MISSING}"}})
        assert config.sync.user_id == ""


class TestLoading:
    def test_load_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "learning:\n  onboarding_sessions: 3\n"
            "sync:\n  enabled: false\n"
            f"paths:\n  db_path: {tmp_path / 'db.sqlite'}\n"
        )
        config = load_config_model(path)
        assert config.learning.onboarding_sessions == 3
        assert config.sync.enabled is False
        assert config.paths.db_path == tmp_path / "db.sqlite"

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("learning: [unclosed")
        with pytest.raises(ValueError, match="Invalid YAML"):
            load_config_model(path)

    def test_invalid_values(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("logging:\n  level: LOUD\n")
        with pytest.raises(ValueError, match="Config validation failed"):
            load_config_model(path)

    def test_empty_file_uses_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert load_config_model(path) == AppConfig()

    def test_find_config_prefers_cwd(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        (tmp_path / "config.yaml").write_text("{}")
        assert find_config() == tmp_path / "config.yaml"


class TestRetryConfig:
    def test_from_model(self):
        assert retry_from_config(AppConfig().retry) == {
            "max_attempts": 2,
            "min_wait": 0.5,
            "max_wait": 2.0,
        }

    def test_from_dict(self):
        assert retry_from_config({"retry": {"max_attempts": 4}})["max_attempts"] == 4
