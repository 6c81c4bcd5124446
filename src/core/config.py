"""Configuration management for Provisionr.

This module handles loading, saving, and validating configuration
from JSON files and environment variables.
"""

import json
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .models import DEFAULT_MOUNT_PREFIX, RetryPolicy

# Default paths
DEFAULT_CONFIG_DIR = Path(os.environ.get("PROGRAMDATA", "~")) / "Provisionr"
DEFAULT_CONFIG_FILE = "config.json"
DEFAULT_LOGS_DIR = "logs"
DEFAULT_PLAN_FILE = "plan.json"

DRY_RUN_ENV_VAR = "PROVISIONR_DRY_RUN"


@dataclass
class RetryConfig:
    """Configuration for action retries."""

    max_attempts: int = 3
    initial_delay: float = 5.0
    backoff_multiplier: float = 1.5
    max_delay: float = 30.0


@dataclass
class ExecutionConfig:
    """Configuration for action execution."""

    worker_count: int = 3
    rollback_enabled: bool = True
    dry_run: bool = False
    command_timeout_seconds: int = 600  # winget installs can be slow
    stop_on_hard_failure: bool = True


@dataclass
class HiveConfig:
    """Configuration for registry hive mounting."""

    release_delays: list[float] = field(default_factory=lambda: [0.0, 5.0, 3.0])
    settle_delay: float = 1.0
    mount_prefix: str = DEFAULT_MOUNT_PREFIX


@dataclass
class PreflightConfig:
    """Configuration for preflight checks."""

    enabled: bool = True
    min_os_build: int = 19041  # Windows 10 2004
    required_executables: list[str] = field(
        default_factory=lambda: ["powershell.exe", "reg.exe", "dism.exe", "sc.exe"]
    )
    package_tool: str = "winget"
    min_free_disk_gb: float = 10.0
    min_free_memory_mb: int = 1024
    repository_host: str = "cdn.winget.microsoft.com"
    repository_port: int = 443
    network_timeout_seconds: float = 5.0


@dataclass
class Config:
    """Main configuration container for Provisionr.

    Attributes:
        config_dir: Base directory for all Provisionr data
        logs_dir: Directory for log files
        scratch_dir: Directory for generated scratch files (None = temp dir per run)
        plan_file: Default plan file
        retry: Retry configuration
        execution: Execution configuration
        hives: Hive mounting configuration
        preflight: Preflight configuration
    """

    config_dir: Path = field(default_factory=lambda: DEFAULT_CONFIG_DIR.expanduser())
    logs_dir: Path = field(default_factory=lambda: Path(DEFAULT_LOGS_DIR))
    scratch_dir: Path | None = None
    plan_file: Path = field(default_factory=lambda: Path(DEFAULT_PLAN_FILE))

    retry: RetryConfig = field(default_factory=RetryConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    hives: HiveConfig = field(default_factory=HiveConfig)
    preflight: PreflightConfig = field(default_factory=PreflightConfig)

    def __post_init__(self) -> None:
        """Resolve relative paths to absolute paths."""
        if not self.logs_dir.is_absolute():
            self.logs_dir = self.config_dir / self.logs_dir
        if not self.plan_file.is_absolute():
            self.plan_file = self.config_dir / self.plan_file

    def ensure_directories(self) -> None:
        """Create all required directories if they don't exist."""
        for directory in [self.config_dir, self.logs_dir]:
            directory.mkdir(parents=True, exist_ok=True)

    def retry_policy(self) -> RetryPolicy:
        """Build the retry policy used by the action runner."""
        return RetryPolicy(
            max_attempts=self.retry.max_attempts,
            initial_delay=self.retry.initial_delay,
            backoff_multiplier=self.retry.backoff_multiplier,
            max_delay=self.retry.max_delay,
        )

    def make_scratch_dir(self) -> Path:
        """Create a fresh scratch directory for one run."""
        if self.scratch_dir is not None:
            self.scratch_dir.mkdir(parents=True, exist_ok=True)
            return Path(tempfile.mkdtemp(prefix="run_", dir=self.scratch_dir))
        return Path(tempfile.mkdtemp(prefix="provisionr_"))

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to dictionary for JSON serialization."""
        return {
            "config_dir": str(self.config_dir),
            "logs_dir": str(self.logs_dir),
            "scratch_dir": str(self.scratch_dir) if self.scratch_dir else None,
            "plan_file": str(self.plan_file),
            "retry": {
                "max_attempts": self.retry.max_attempts,
                "initial_delay": self.retry.initial_delay,
                "backoff_multiplier": self.retry.backoff_multiplier,
                "max_delay": self.retry.max_delay,
            },
            "execution": {
                "worker_count": self.execution.worker_count,
                "rollback_enabled": self.execution.rollback_enabled,
                "dry_run": self.execution.dry_run,
                "command_timeout_seconds": self.execution.command_timeout_seconds,
                "stop_on_hard_failure": self.execution.stop_on_hard_failure,
            },
            "hives": {
                "release_delays": list(self.hives.release_delays),
                "settle_delay": self.hives.settle_delay,
                "mount_prefix": self.hives.mount_prefix,
            },
            "preflight": {
                "enabled": self.preflight.enabled,
                "min_os_build": self.preflight.min_os_build,
                "required_executables": list(self.preflight.required_executables),
                "package_tool": self.preflight.package_tool,
                "min_free_disk_gb": self.preflight.min_free_disk_gb,
                "min_free_memory_mb": self.preflight.min_free_memory_mb,
                "repository_host": self.preflight.repository_host,
                "repository_port": self.preflight.repository_port,
                "network_timeout_seconds": self.preflight.network_timeout_seconds,
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Config":
        """Create configuration from dictionary.

        Raises:
            ValueError: If a value is out of range.
        """
        config_dir = Path(data["config_dir"]) if "config_dir" in data else None
        config = cls(
            config_dir=config_dir or DEFAULT_CONFIG_DIR.expanduser(),
            logs_dir=Path(data.get("logs_dir", DEFAULT_LOGS_DIR)),
            scratch_dir=Path(data["scratch_dir"]) if data.get("scratch_dir") else None,
            plan_file=Path(data.get("plan_file", DEFAULT_PLAN_FILE)),
        )

        if "retry" in data:
            retry_data = data["retry"]
            config.retry = RetryConfig(
                max_attempts=int(retry_data.get("max_attempts", 3)),
                initial_delay=float(retry_data.get("initial_delay", 5.0)),
                backoff_multiplier=float(retry_data.get("backoff_multiplier", 1.5)),
                max_delay=float(retry_data.get("max_delay", 30.0)),
            )

        if "execution" in data:
            exec_data = data["execution"]
            config.execution = ExecutionConfig(
                worker_count=int(exec_data.get("worker_count", 3)),
                rollback_enabled=bool(exec_data.get("rollback_enabled", True)),
                dry_run=bool(exec_data.get("dry_run", False)),
                command_timeout_seconds=int(exec_data.get("command_timeout_seconds", 600)),
                stop_on_hard_failure=bool(exec_data.get("stop_on_hard_failure", True)),
            )

        if "hives" in data:
            hive_data = data["hives"]
            config.hives = HiveConfig(
                release_delays=[float(d) for d in hive_data.get("release_delays", [0.0, 5.0, 3.0])],
                settle_delay=float(hive_data.get("settle_delay", 1.0)),
                mount_prefix=hive_data.get("mount_prefix", DEFAULT_MOUNT_PREFIX),
            )

        if "preflight" in data:
            pre_data = data["preflight"]
            defaults = PreflightConfig()
            config.preflight = PreflightConfig(
                enabled=bool(pre_data.get("enabled", True)),
                min_os_build=int(pre_data.get("min_os_build", defaults.min_os_build)),
                required_executables=list(
                    pre_data.get("required_executables", defaults.required_executables)
                ),
                package_tool=pre_data.get("package_tool", defaults.package_tool),
                min_free_disk_gb=float(pre_data.get("min_free_disk_gb", defaults.min_free_disk_gb)),
                min_free_memory_mb=int(
                    pre_data.get("min_free_memory_mb", defaults.min_free_memory_mb)
                ),
                repository_host=pre_data.get("repository_host", defaults.repository_host),
                repository_port=int(pre_data.get("repository_port", defaults.repository_port)),
                network_timeout_seconds=float(
                    pre_data.get("network_timeout_seconds", defaults.network_timeout_seconds)
                ),
            )

        config.validate()

        return config

    def validate(self) -> None:
        """Check value ranges.

        Raises:
            ValueError: If a value is out of range.
        """
        if self.retry.max_attempts < 1:
            raise ValueError("retry.max_attempts must be at least 1")
        if self.retry.initial_delay < 0 or self.retry.max_delay < 0:
            raise ValueError("retry delays must not be negative")
        if self.retry.backoff_multiplier < 1:
            raise ValueError("retry.backoff_multiplier must be at least 1")
        if self.execution.worker_count < 1:
            raise ValueError("execution.worker_count must be at least 1")
        if not self.hives.release_delays:
            raise ValueError("hives.release_delays must contain at least one attempt")


def apply_environment_overrides(config: Config) -> Config:
    """Apply environment variable overrides to a configuration."""
    if os.environ.get(DRY_RUN_ENV_VAR, "").strip().lower() in ("1", "true", "yes"):
        config.execution.dry_run = True
    return config


def load_config(config_path: Path | None = None) -> Config:
    """Load configuration from file.

    Args:
        config_path: Path to config file. If None, uses default location.

    Returns:
        Config object with loaded settings.

    Raises:
        json.JSONDecodeError: If config file contains invalid JSON.
        ValueError: If a configuration value is out of range.
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_DIR.expanduser() / DEFAULT_CONFIG_FILE

    if not config_path.exists():
        return apply_environment_overrides(Config())

    with open(config_path, encoding="utf-8") as f:
        data = json.load(f)

    return apply_environment_overrides(Config.from_dict(data))


def save_config(config: Config, config_path: Path | None = None) -> None:
    """Save configuration to file.

    Args:
        config: Config object to save.
        config_path: Path to config file. If None, uses default location.
    """
    if config_path is None:
        config_path = config.config_dir / DEFAULT_CONFIG_FILE

    config_path.parent.mkdir(parents=True, exist_ok=True)

    with open(config_path, "w", encoding="utf-8") as f:
        json.dump(config.to_dict(), f, indent=2)


def get_default_config() -> Config:
    """Get the default configuration.

    Returns:
        A new Config object with default settings.
    """
    return Config()
