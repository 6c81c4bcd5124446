"""Preflight Validator - Environment checks run before any mutation.

Every check runs, even after an earlier one failed, so the report lists
every problem at once. Critical failures abort the run; advisory failures
are only logged as warnings. Nothing here is retried.
"""

import logging
import os
import shutil
import socket
import sys
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from typing import Any

import psutil

from src.core.config import PreflightConfig
from src.core.shell import CommandRunner

logger = logging.getLogger("provisionr.core.preflight")

REGISTRY_PROBE_KEY = r"HKLM\SOFTWARE\Provisionr_PreflightProbe"

CHECK_ADMIN = "admin_privilege"
CHECK_OS_VERSION = "os_version"
CHECK_EXECUTABLES = "required_executables"
CHECK_DISK_SPACE = "free_disk_space"
CHECK_MEMORY = "available_memory"
CHECK_REGISTRY = "registry_access"
CHECK_PACKAGE_TOOL = "package_tool"
CHECK_REPOSITORY = "repository_reachable"


@dataclass
class PreflightCheck:
    """Result of one preflight check.

    Attributes:
        name: Check identifier
        passed: Whether the check passed
        critical: Whether a failure aborts the run
        reason: Explanation (failure reason or observed value)
    """

    name: str
    passed: bool
    critical: bool
    reason: str = ""


@dataclass
class PreflightRequirements:
    """Thresholds and targets the validator checks against."""

    enabled: bool = True
    min_os_build: int = 19041
    required_executables: list[str] = field(
        default_factory=lambda: ["powershell.exe", "reg.exe", "dism.exe", "sc.exe"]
    )
    package_tool: str = "winget"
    min_free_disk_gb: float = 10.0
    min_free_memory_mb: int = 1024
    repository_host: str = "cdn.winget.microsoft.com"
    repository_port: int = 443
    network_timeout_seconds: float = 5.0

    @classmethod
    def from_config(cls, config: PreflightConfig) -> "PreflightRequirements":
        return cls(
            enabled=config.enabled,
            min_os_build=config.min_os_build,
            required_executables=list(config.required_executables),
            package_tool=config.package_tool,
            min_free_disk_gb=config.min_free_disk_gb,
            min_free_memory_mb=config.min_free_memory_mb,
            repository_host=config.repository_host,
            repository_port=config.repository_port,
            network_timeout_seconds=config.network_timeout_seconds,
        )


@dataclass
class PreflightReport:
    """Aggregated preflight results."""

    checks: list[PreflightCheck] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        """True when no critical check failed."""
        return not self.failed_checks

    @property
    def failed_checks(self) -> list[PreflightCheck]:
        """Critical checks that failed."""
        return [check for check in self.checks if check.critical and not check.passed]

    @property
    def advisory_failures(self) -> list[PreflightCheck]:
        return [check for check in self.checks if not check.critical and not check.passed]

    def get(self, name: str) -> PreflightCheck | None:
        for check in self.checks:
            if check.name == name:
                return check
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "passed": self.passed,
            "failed_checks": [check.name for check in self.failed_checks],
            "checks": [asdict(check) for check in self.checks],
        }


def system_drive_root() -> str:
    """Root of the drive Windows is installed on."""
    if os.name == "nt":
        return os.environ.get("SystemDrive", "C:") + "\\"
    return "/"


class PreflightValidator:
    """Runs the environment checks.

    Example:
        validator = PreflightValidator()
        report = validator.validate(PreflightRequirements())
        if not report.passed:
            for check in report.failed_checks:
                print(check.name, check.reason)
    """

    def __init__(self, runner: CommandRunner | None = None) -> None:
        """Initialize the validator.

        Args:
            runner: Runs the registry probe and package tool check
        """
        self.runner = runner or CommandRunner(timeout=60)

    def validate(self, requirements: PreflightRequirements) -> PreflightReport:
        """Run every check.

        Args:
            requirements: Thresholds to check against

        Returns:
            PreflightReport with one entry per check
        """
        checks: list[tuple[str, bool, Callable[[], tuple[bool, str]]]] = [
            (CHECK_ADMIN, True, self.check_admin),
            (CHECK_OS_VERSION, True, lambda: self.check_os_version(requirements)),
            (CHECK_EXECUTABLES, True, lambda: self.check_executables(requirements)),
            (CHECK_DISK_SPACE, False, lambda: self.check_disk_space(requirements)),
            (CHECK_MEMORY, False, lambda: self.check_memory(requirements)),
            (CHECK_REGISTRY, True, self.check_registry_access),
            (CHECK_PACKAGE_TOOL, True, lambda: self.check_package_tool(requirements)),
            (CHECK_REPOSITORY, False, lambda: self.check_repository(requirements)),
        ]

        report = PreflightReport()

        if not requirements.enabled:
            logger.warning("Preflight checks are disabled")
            for name, critical, _ in checks:
                report.checks.append(PreflightCheck(name, True, critical, "skipped"))
            return report

        for name, critical, check in checks:
            try:
                passed, reason = check()
            except Exception as e:
                passed, reason = False, f"check raised: {e}"

            report.checks.append(PreflightCheck(name, passed, critical, reason))

            if passed:
                logger.debug(f"Preflight {name}: ok ({reason})")
            elif critical:
                logger.error(f"Preflight {name} failed: {reason}")
            else:
                logger.warning(f"Preflight {name} (advisory) failed: {reason}")

        if report.passed:
            logger.info("Preflight checks passed")
        else:
            names = ", ".join(check.name for check in report.failed_checks)
            logger.error(f"Critical preflight checks failed: {names}")

        return report

    def check_admin(self) -> tuple[bool, str]:
        """Check that the process runs elevated."""
        if sys.platform != "win32":
            return False, "not running on Windows"

        import ctypes

        if ctypes.windll.shell32.IsUserAnAdmin() != 0:
            return True, "running elevated"
        return False, "administrator privileges are required"

    def check_os_version(self, requirements: PreflightRequirements) -> tuple[bool, str]:
        """Check the Windows build number."""
        if sys.platform != "win32":
            return False, "not running on Windows"

        build = sys.getwindowsversion().build
        if build >= requirements.min_os_build:
            return True, f"build {build}"
        return False, f"build {build} is older than {requirements.min_os_build}"

    def check_executables(self, requirements: PreflightRequirements) -> tuple[bool, str]:
        """Check that every required tool is on PATH."""
        missing = [exe for exe in requirements.required_executables if shutil.which(exe) is None]
        if missing:
            return False, f"missing: {', '.join(missing)}"
        return True, "all present"

    def check_disk_space(self, requirements: PreflightRequirements) -> tuple[bool, str]:
        """Check free space on the system drive."""
        root = system_drive_root()
        free_gb = shutil.disk_usage(root).free / (1024**3)
        if free_gb >= requirements.min_free_disk_gb:
            return True, f"{free_gb:.1f} GB free on {root}"
        return False, f"{free_gb:.1f} GB free on {root}, {requirements.min_free_disk_gb} GB wanted"

    def check_memory(self, requirements: PreflightRequirements) -> tuple[bool, str]:
        """Check available physical memory."""
        available_mb = psutil.virtual_memory().available / (1024**2)
        if available_mb >= requirements.min_free_memory_mb:
            return True, f"{available_mb:.0f} MB available"
        return (
            False,
            f"{available_mb:.0f} MB available, {requirements.min_free_memory_mb} MB wanted",
        )

    def check_registry_access(self) -> tuple[bool, str]:
        """Create and delete a throw-away HKLM key."""
        created = self.runner.run(["reg.exe", "add", REGISTRY_PROBE_KEY, "/f"])
        if not created.succeeded:
            return False, f"cannot write HKLM: {created.stderr.strip() or created.exit_code}"

        deleted = self.runner.run(["reg.exe", "delete", REGISTRY_PROBE_KEY, "/f"])
        if not deleted.succeeded:
            return False, f"cannot delete probe key: {deleted.stderr.strip() or deleted.exit_code}"
        return True, "write and delete succeeded"

    def check_package_tool(self, requirements: PreflightRequirements) -> tuple[bool, str]:
        """Check that the package tool answers."""
        result = self.runner.run([requirements.package_tool, "--version"])
        if result.succeeded:
            return True, result.stdout.strip() or "available"
        return False, f"{requirements.package_tool} not usable (exit {result.exit_code})"

    def check_repository(self, requirements: PreflightRequirements) -> tuple[bool, str]:
        """Check that the package repository is reachable over TCP."""
        address = (requirements.repository_host, requirements.repository_port)
        try:
            with socket.create_connection(address, timeout=requirements.network_timeout_seconds):
                return True, f"{address[0]}:{address[1]} reachable"
        except OSError as e:
            return False, f"{address[0]}:{address[1]} unreachable: {e}"


def create_preflight_validator(runner: CommandRunner | None = None) -> PreflightValidator:
    """Create a preflight validator.

    Returns:
        PreflightValidator instance
    """
    return PreflightValidator(runner=runner)
