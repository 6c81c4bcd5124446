"""Tests for configuration management."""

import json
import pytest
from pathlib import Path
from tempfile import TemporaryDirectory

from src.core.config import (
    DRY_RUN_ENV_VAR,
    Config,
    ExecutionConfig,
    HiveConfig,
    PreflightConfig,
    RetryConfig,
    apply_environment_overrides,
    get_default_config,
    load_config,
    save_config,
)


class TestRetryConfig:
    """Tests for RetryConfig."""

    def test_default_values(self):
        """Test default retry configuration values."""
        config = RetryConfig()

        assert config.max_attempts == 3
        assert config.initial_delay == 5.0
        assert config.backoff_multiplier == 1.5
        assert config.max_delay == 30.0


class TestExecutionConfig:
    """Tests for ExecutionConfig."""

    def test_default_values(self):
        """Test default execution configuration values."""
        config = ExecutionConfig()

        assert config.worker_count == 3
        assert config.rollback_enabled is True
        assert config.dry_run is False
        assert config.stop_on_hard_failure is True


class TestHiveConfig:
    """Tests for HiveConfig."""

    def test_default_values(self):
        """Test default hive configuration values."""
        config = HiveConfig()

        assert config.release_delays == [0.0, 5.0, 3.0]
        assert config.settle_delay == 1.0
        assert config.mount_prefix == "Provisionr_"


class TestPreflightConfig:
    """Tests for PreflightConfig."""

    def test_default_values(self):
        """Test default preflight configuration values."""
        config = PreflightConfig()

        assert config.enabled is True
        assert "reg.exe" in config.required_executables
        assert config.package_tool == "winget"
        assert config.repository_port == 443


class TestConfig:
    """Tests for main Config class."""

    def test_relative_paths_resolved(self):
        """Test that relative paths are resolved against config_dir."""
        config = Config(config_dir=Path("/data/provisionr"))

        assert config.logs_dir == Path("/data/provisionr/logs")
        assert config.plan_file == Path("/data/provisionr/plan.json")

    def test_ensure_directories(self):
        """Test directory creation."""
        with TemporaryDirectory() as tmpdir:
            config = Config(config_dir=Path(tmpdir) / "provisionr")
            config.ensure_directories()

            assert config.config_dir.exists()
            assert config.logs_dir.exists()

    def test_retry_policy(self):
        """Test that the retry policy mirrors the retry section."""
        config = Config()
        config.retry.initial_delay = 2.0

        policy = config.retry_policy()

        assert policy.max_attempts == 3
        assert policy.initial_delay == 2.0
        assert policy.backoff_multiplier == 1.5

    def test_make_scratch_dir_under_configured_dir(self, tmp_path):
        """Test that per-run scratch directories live under scratch_dir."""
        config = Config(config_dir=tmp_path, scratch_dir=tmp_path / "scratch")

        first = config.make_scratch_dir()
        second = config.make_scratch_dir()

        assert first.parent == tmp_path / "scratch"
        assert first != second
        assert first.is_dir()

    def test_to_dict(self):
        """Test configuration serialization to dictionary."""
        data = Config().to_dict()

        assert "config_dir" in data
        assert data["retry"]["max_attempts"] == 3
        assert data["execution"]["worker_count"] == 3
        assert data["hives"]["release_delays"] == [0.0, 5.0, 3.0]
        assert data["preflight"]["enabled"] is True

    def test_from_dict(self):
        """Test configuration deserialization from dictionary."""
        data = {
            "config_dir": "/srv/provisionr",
            "retry": {"max_attempts": 5},
            "execution": {"worker_count": 1, "rollback_enabled": False},
            "hives": {"release_delays": [0, 1]},
            "preflight": {"enabled": False},
        }

        config = Config.from_dict(data)

        assert config.config_dir == Path("/srv/provisionr")
        assert config.logs_dir == Path("/srv/provisionr/logs")
        assert config.retry.max_attempts == 5
        assert config.retry.initial_delay == 5.0
        assert config.execution.worker_count == 1
        assert config.execution.rollback_enabled is False
        assert config.hives.release_delays == [0.0, 1.0]
        assert config.preflight.enabled is False

    def test_from_dict_rejects_invalid_values(self):
        """Test that out-of-range values raise ValueError."""
        with pytest.raises(ValueError):
            Config.from_dict({"execution": {"worker_count": 0}})

        with pytest.raises(ValueError):
            Config.from_dict({"retry": {"max_attempts": 0}})

        with pytest.raises(ValueError):
            Config.from_dict({"hives": {"release_delays": []}})

    def test_roundtrip(self):
        """Test that to_dict and from_dict preserve values."""
        original = Config(config_dir=Path("/opt/provisionr"))
        original.execution.worker_count = 5
        original.hives.mount_prefix = "Test_"

        restored = Config.from_dict(original.to_dict())

        assert restored.execution.worker_count == 5
        assert restored.hives.mount_prefix == "Test_"
        assert restored.plan_file == original.plan_file


class TestConfigIO:
    """Tests for loading and saving configuration."""

    def test_save_and_load(self):
        """Test saving and loading configuration."""
        with TemporaryDirectory() as tmpdir:
            config = Config(config_dir=Path(tmpdir))
            config.retry.max_attempts = 4
            config_path = Path(tmpdir) / "config.json"

            save_config(config, config_path)
            assert config_path.exists()

            loaded = load_config(config_path)
            assert loaded.retry.max_attempts == 4

    def test_saved_file_is_json(self):
        """Test that the saved configuration is valid JSON."""
        with TemporaryDirectory() as tmpdir:
            config = Config(config_dir=Path(tmpdir))
            config_path = Path(tmpdir) / "config.json"
            save_config(config, config_path)

            data = json.loads(config_path.read_text(encoding="utf-8"))
            assert data["execution"]["rollback_enabled"] is True

    def test_load_missing_returns_defaults(self, monkeypatch):
        """Test loading a non-existent file returns defaults."""
        monkeypatch.delenv(DRY_RUN_ENV_VAR, raising=False)
        config = load_config(Path("/nonexistent/config.json"))

        assert config.execution.dry_run is False
        assert config.retry.max_attempts == 3

    def test_load_invalid_json(self):
        """Test loading invalid JSON raises an error."""
        with TemporaryDirectory() as tmpdir:
            config_path = Path(tmpdir) / "config.json"
            config_path.write_text("not json", encoding="utf-8")

            with pytest.raises(json.JSONDecodeError):
                load_config(config_path)

    def test_get_default_config(self):
        """Test getting default configuration."""
        config = get_default_config()
        assert isinstance(config, Config)


class TestEnvironmentOverrides:
    """Tests for environment variable overrides."""

    @pytest.mark.parametrize("value", ["1", "true", "YES"])
    def test_dry_run_enabled(self, monkeypatch, value):
        """Test that PROVISIONR_DRY_RUN forces a dry run."""
        monkeypatch.setenv(DRY_RUN_ENV_VAR, value)

        config = apply_environment_overrides(Config())

        assert config.execution.dry_run is True

    def test_dry_run_not_set(self, monkeypatch):
        """Test that an unset variable leaves dry run off."""
        monkeypatch.delenv(DRY_RUN_ENV_VAR, raising=False)

        config = apply_environment_overrides(Config())

        assert config.execution.dry_run is False
