"""Tests for exit code classification."""

import pytest

from src.actions.exit_codes import (
    WINGET_INSTALL_IN_PROGRESS,
    WINGET_NO_APPLICATIONS_FOUND,
    WINGET_PACKAGE_ALREADY_INSTALLED,
    classify_result,
    normalize_code,
)
from src.core.models import CommandResult, ExitClassification

SUCCESS = ExitClassification.SUCCESS
ALREADY = ExitClassification.ALREADY_IN_PRIOR_STATE
TRANSIENT = ExitClassification.TRANSIENT_FAILURE
PERMANENT = ExitClassification.PERMANENT_FAILURE


def _result(code, stdout="", stderr="", timed_out=False):
    return CommandResult(argv=["tool"], exit_code=code, stdout=stdout, stderr=stderr, timed_out=timed_out)


def _signed(code: int) -> int:
    return code - 0x100000000


class TestNormalizeCode:
    """Tests for signed exit code normalization."""

    def test_negative_code(self):
        """Test that a signed HRESULT maps to its unsigned value."""
        assert normalize_code(_signed(WINGET_PACKAGE_ALREADY_INSTALLED)) == WINGET_PACKAGE_ALREADY_INSTALLED

    def test_positive_code_unchanged(self):
        """Test that small codes are unchanged."""
        assert normalize_code(3010) == 3010


class TestWinget:
    """Tests for winget classification."""

    @pytest.mark.parametrize(
        "code,expected",
        [
            (0, SUCCESS),
            (_signed(WINGET_PACKAGE_ALREADY_INSTALLED), ALREADY),
            (_signed(WINGET_INSTALL_IN_PROGRESS), TRANSIENT),
            (_signed(WINGET_NO_APPLICATIONS_FOUND), PERMANENT),
            (1, PERMANENT),
        ],
    )
    def test_codes(self, code, expected):
        """Test winget exit code mapping."""
        assert classify_result("winget", _result(code)) == expected

    def test_transient_message(self):
        """Test that an unknown code with a transient message is retried."""
        result = _result(1, stderr="The file is being used by another process.")
        assert classify_result("winget", result) == TRANSIENT


class TestDism:
    """Tests for DISM classification."""

    @pytest.mark.parametrize(
        "code,expected",
        [
            (0, SUCCESS),
            (3010, SUCCESS),
            (_signed(0x800F0901), SUCCESS),
            (_signed(0x80070020), TRANSIENT),
            (1460, TRANSIENT),
            (_signed(0x800F081F), PERMANENT),
            (5, PERMANENT),
        ],
    )
    def test_codes(self, code, expected):
        """Test DISM exit code mapping."""
        assert classify_result("dism", _result(code)) == expected


class TestReg:
    """Tests for reg.exe classification."""

    def test_success(self):
        """Test reg.exe success."""
        assert classify_result("reg", _result(0)) == SUCCESS

    def test_missing_value(self):
        """Test that deleting a missing value counts as already done."""
        result = _result(1, stderr="ERROR: The system was unable to find the specified registry key or value.")
        assert classify_result("reg", result) == ALREADY

    def test_access_denied(self):
        """Test that access denied is permanent."""
        assert classify_result("reg", _result(1, stderr="ERROR: Access is denied.")) == PERMANENT


class TestSc:
    """Tests for sc.exe classification."""

    @pytest.mark.parametrize(
        "code,expected",
        [(0, SUCCESS), (1060, ALREADY), (1072, ALREADY), (1055, TRANSIENT), (5, PERMANENT)],
    )
    def test_codes(self, code, expected):
        """Test sc.exe exit code mapping."""
        assert classify_result("sc", _result(code)) == expected


class TestPowershell:
    """Tests for PowerShell classification."""

    def test_package_in_use(self):
        """Test that a package in use is transient."""
        result = _result(1, stderr="Deployment failed with HRESULT: 0x80073D02")
        assert classify_result("powershell", result) == TRANSIENT

    def test_not_found(self):
        """Test that a missing package counts as already removed."""
        result = _result(1, stderr="HRESULT: 0x80073CF1, Package was not found")
        assert classify_result("powershell", result) == ALREADY

    def test_other_failure(self):
        """Test that other failures are permanent."""
        assert classify_result("powershell", _result(1, stderr="boom")) == PERMANENT


class TestClassifyResult:
    """Tests for the classify_result dispatcher."""

    def test_timeout_is_transient(self):
        """Test that a timed-out invocation is transient for every tool."""
        for tool in ("winget", "dism", "reg", "sc", "powershell"):
            assert classify_result(tool, _result(None, timed_out=True)) == TRANSIENT

    def test_unknown_tool(self):
        """Test that an unknown tool raises ValueError."""
        with pytest.raises(ValueError):
            classify_result("msiexec", _result(0))
