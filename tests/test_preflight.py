"""Tests for the preflight validator."""

from collections import namedtuple
from unittest.mock import patch

import pytest

from fakes import result

from src.core.config import PreflightConfig
from src.core.preflight import (
    CHECK_ADMIN,
    CHECK_DISK_SPACE,
    CHECK_MEMORY,
    CHECK_PACKAGE_TOOL,
    CHECK_REGISTRY,
    CHECK_REPOSITORY,
    REGISTRY_PROBE_KEY,
    PreflightRequirements,
    PreflightValidator,
)

CHECK_METHODS = [
    "check_admin",
    "check_os_version",
    "check_executables",
    "check_disk_space",
    "check_memory",
    "check_registry_access",
    "check_package_tool",
    "check_repository",
]


@pytest.fixture
def validator(fake_runner):
    return PreflightValidator(runner=fake_runner)


@pytest.fixture
def all_passing(validator):
    """Patch every check to pass."""
    patches = [
        patch.object(validator, name, return_value=(True, "ok")) for name in CHECK_METHODS
    ]
    mocks = {name: p.start() for name, p in zip(CHECK_METHODS, patches)}
    yield mocks
    for p in patches:
        p.stop()


class TestValidate:
    """Tests for PreflightValidator.validate."""

    def test_all_pass(self, validator, all_passing):
        """Test that a clean environment passes."""
        report = validator.validate(PreflightRequirements())

        assert report.passed is True
        assert len(report.checks) == 8
        assert report.failed_checks == []

    def test_critical_failure(self, validator, all_passing):
        """Test that a critical failure fails the report."""
        all_passing["check_admin"].return_value = (False, "administrator privileges are required")

        report = validator.validate(PreflightRequirements())

        assert report.passed is False
        assert [check.name for check in report.failed_checks] == [CHECK_ADMIN]

    def test_advisory_failure_does_not_fail(self, validator, all_passing):
        """Test that advisory checks only warn."""
        all_passing["check_disk_space"].return_value = (False, "2.0 GB free")
        all_passing["check_repository"].return_value = (False, "unreachable")

        report = validator.validate(PreflightRequirements())

        assert report.passed is True
        assert {c.name for c in report.advisory_failures} == {CHECK_DISK_SPACE, CHECK_REPOSITORY}

    def test_every_check_runs_after_failure(self, validator, all_passing):
        """Test that later checks still run after an earlier failure."""
        all_passing["check_admin"].return_value = (False, "no")

        validator.validate(PreflightRequirements())

        for mock in all_passing.values():
            assert mock.call_count == 1

    def test_check_exception_is_failure(self, validator, all_passing):
        """Test that a check raising counts as failed."""
        all_passing["check_registry_access"].side_effect = OSError("registry unavailable")

        report = validator.validate(PreflightRequirements())

        check = report.get(CHECK_REGISTRY)
        assert check.passed is False
        assert "registry unavailable" in check.reason
        assert report.passed is False

    def test_disabled_reports_skipped(self, validator, fake_runner):
        """Test that disabled preflight passes every check as skipped."""
        report = validator.validate(PreflightRequirements(enabled=False))

        assert report.passed is True
        assert all(check.reason == "skipped" for check in report.checks)
        assert fake_runner.calls == []

    def test_to_dict(self, validator, all_passing):
        """Test report serialization."""
        all_passing["check_package_tool"].return_value = (False, "winget not usable")

        data = validator.validate(PreflightRequirements()).to_dict()

        assert data["passed"] is False
        assert data["failed_checks"] == [CHECK_PACKAGE_TOOL]
        assert len(data["checks"]) == 8


class TestChecks:
    """Tests for individual checks."""

    def test_registry_probe(self, validator, fake_runner):
        """Test that the registry probe adds and deletes a key."""
        passed, _ = validator.check_registry_access()

        assert passed is True
        assert fake_runner.calls == [
            ["reg.exe", "add", REGISTRY_PROBE_KEY, "/f"],
            ["reg.exe", "delete", REGISTRY_PROBE_KEY, "/f"],
        ]

    def test_registry_probe_denied(self, validator, fake_runner):
        """Test that a denied write fails the probe without deleting."""
        fake_runner.when("reg.exe add", result(1, stderr="ERROR: Access is denied."))

        passed, reason = validator.check_registry_access()

        assert passed is False
        assert "Access is denied" in reason
        assert len(fake_runner.calls) == 1

    def test_package_tool(self, validator, fake_runner):
        """Test the package tool check."""
        fake_runner.when("winget --version", result(0, stdout="v1.7.10861"))

        assert validator.check_package_tool(PreflightRequirements()) == (True, "v1.7.10861")

    def test_package_tool_missing(self, validator, fake_runner):
        """Test that a missing package tool fails."""
        fake_runner.when("winget", result(9009, stderr="Executable not found: winget"))

        passed, _ = validator.check_package_tool(PreflightRequirements())

        assert passed is False

    def test_executables(self, validator):
        """Test that missing executables are named."""
        requirements = PreflightRequirements(required_executables=["reg.exe", "dism.exe"])

        with patch("src.core.preflight.shutil.which", side_effect=lambda exe: None if exe == "dism.exe" else exe):
            passed, reason = validator.check_executables(requirements)

        assert passed is False
        assert reason == "missing: dism.exe"

    def test_disk_space(self, validator):
        """Test the free disk threshold."""
        usage = namedtuple("usage", "total used free")
        requirements = PreflightRequirements(min_free_disk_gb=10.0)

        with patch("src.core.preflight.shutil.disk_usage", return_value=usage(0, 0, 5 * 1024**3)):
            passed, _ = validator.check_disk_space(requirements)

        assert passed is False

    def test_memory(self, validator):
        """Test the available memory threshold."""
        memory = namedtuple("memory", "available")
        requirements = PreflightRequirements(min_free_memory_mb=1024)

        with patch("src.core.preflight.psutil.virtual_memory", return_value=memory(2048 * 1024**2)):
            passed, reason = validator.check_memory(requirements)

        assert passed is True
        assert reason == "2048 MB available"

    def test_repository_unreachable(self, validator):
        """Test that connection errors fail the advisory check."""
        with patch("src.core.preflight.socket.create_connection", side_effect=OSError("timed out")):
            passed, reason = validator.check_repository(PreflightRequirements())

        assert passed is False
        assert "unreachable" in reason

    def test_admin_off_windows(self, validator):
        """Test that the admin check fails off Windows."""
        with patch("src.core.preflight.sys.platform", "linux"):
            assert validator.check_admin() == (False, "not running on Windows")


class TestPreflightRequirements:
    """Tests for PreflightRequirements."""

    def test_from_config(self):
        """Test building requirements from configuration."""
        config = PreflightConfig(enabled=False, min_os_build=22000, package_tool="choco")

        requirements = PreflightRequirements.from_config(config)

        assert requirements.enabled is False
        assert requirements.min_os_build == 22000
        assert requirements.package_tool == "choco"


def test_memory_check_is_advisory(validator, all_passing):
    """Test that low memory never fails the report."""
    all_passing["check_memory"].return_value = (False, "100 MB available")

    report = validator.validate(PreflightRequirements())

    assert report.passed is True
    assert report.get(CHECK_MEMORY).critical is False
