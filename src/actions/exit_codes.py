"""Exit code classification for external tools.

Each tool gets exactly one mapping function that turns a CommandResult
into an ExitClassification. All knowledge of magic exit codes and error
strings lives here.
"""

from collections.abc import Callable

from src.core.models import CommandResult, ExitClassification

# Windows success-with-reboot codes
ERROR_SUCCESS_REBOOT_REQUIRED = 3010
ERROR_SUCCESS_REBOOT_INITIATED = 1641

# winget (APPINSTALLER_CLI_ERROR_*)
WINGET_NO_APPLICATIONS_FOUND = 0x8A150014
WINGET_DOWNLOAD_FAILED = 0x8A150008
WINGET_UPDATE_NOT_APPLICABLE = 0x8A15002B
WINGET_PACKAGE_ALREADY_INSTALLED = 0x8A150061
WINGET_INSTALL_PACKAGE_IN_USE = 0x8A150101
WINGET_INSTALL_IN_PROGRESS = 0x8A150102
WINGET_INSTALL_REBOOT_REQUIRED = 0x8A150109
WINGET_SOURCE_OPEN_FAILED = 0x8A15000F
WINGET_INTERNET_ERROR = 0x8A15002C

# DISM / CBS
DISM_PENDING_REBOOT = 0x800F0901
DISM_FEATURE_UNKNOWN = 0x800F080C
DISM_SOURCE_MISSING = 0x800F081F
DISM_SHARING_VIOLATION = 0x80070020
DISM_RPC_UNAVAILABLE = 0x800706BE
DISM_SERVICE_TIMEOUT = 1460
DISM_ACCESS_DENIED = 5

# Service control manager
SC_ACCESS_DENIED = 5
SC_SERVICE_DOES_NOT_EXIST = 1060
SC_SERVICE_CANNOT_ACCEPT_CTRL = 1061
SC_SERVICE_MARKED_FOR_DELETE = 1072
SC_DATABASE_LOCKED = 1055

# AppX deployment HRESULTs that show up in PowerShell error text
APPX_PACKAGE_IN_USE = "0x80073D02"
APPX_DEPLOYMENT_BLOCKED = "0x80073CF6"
APPX_NOT_FOUND = "0x80073CF1"
APPX_REMOVAL_FAILED = "0x80073CFA"

TRANSIENT_MESSAGES = (
    "being used by another process",
    "sharing violation",
    "try again",
    "rpc server is unavailable",
    "timed out",
)

TOOL_WINGET = "winget"
TOOL_DISM = "dism"
TOOL_REG = "reg"
TOOL_SC = "sc"
TOOL_POWERSHELL = "powershell"

Classifier = Callable[[CommandResult], ExitClassification]


def normalize_code(code: int) -> int:
    """Normalize a signed 32-bit exit code to its unsigned form."""
    return code & 0xFFFFFFFF


def _mentions(result: CommandResult, needles: tuple[str, ...]) -> bool:
    text = result.output.lower()
    return any(needle.lower() in text for needle in needles)


def classify_winget(result: CommandResult) -> ExitClassification:
    """Classify a winget exit status."""
    code = normalize_code(result.exit_code or 0)
    if code in (0, WINGET_INSTALL_REBOOT_REQUIRED):
        return ExitClassification.SUCCESS
    if code in (WINGET_PACKAGE_ALREADY_INSTALLED, WINGET_UPDATE_NOT_APPLICABLE):
        return ExitClassification.ALREADY_IN_PRIOR_STATE
    if code in (
        WINGET_DOWNLOAD_FAILED,
        WINGET_INSTALL_PACKAGE_IN_USE,
        WINGET_INSTALL_IN_PROGRESS,
        WINGET_SOURCE_OPEN_FAILED,
        WINGET_INTERNET_ERROR,
    ):
        return ExitClassification.TRANSIENT_FAILURE
    if code == WINGET_NO_APPLICATIONS_FOUND:
        return ExitClassification.PERMANENT_FAILURE
    if _mentions(result, TRANSIENT_MESSAGES):
        return ExitClassification.TRANSIENT_FAILURE
    return ExitClassification.PERMANENT_FAILURE


def classify_dism(result: CommandResult) -> ExitClassification:
    """Classify a DISM exit status."""
    code = normalize_code(result.exit_code or 0)
    if code in (0, ERROR_SUCCESS_REBOOT_REQUIRED, ERROR_SUCCESS_REBOOT_INITIATED, DISM_PENDING_REBOOT):
        return ExitClassification.SUCCESS
    if code in (DISM_SHARING_VIOLATION, DISM_RPC_UNAVAILABLE, DISM_SERVICE_TIMEOUT):
        return ExitClassification.TRANSIENT_FAILURE
    if code in (DISM_FEATURE_UNKNOWN, DISM_SOURCE_MISSING, DISM_ACCESS_DENIED):
        return ExitClassification.PERMANENT_FAILURE
    if _mentions(result, TRANSIENT_MESSAGES):
        return ExitClassification.TRANSIENT_FAILURE
    return ExitClassification.PERMANENT_FAILURE


def classify_reg(result: CommandResult) -> ExitClassification:
    """Classify a reg.exe exit status.

    reg.exe only returns 0 or 1, so failures are told apart by message.
    """
    if result.exit_code == 0:
        return ExitClassification.SUCCESS
    if _mentions(result, ("unable to find the specified registry key or value",)):
        return ExitClassification.ALREADY_IN_PRIOR_STATE
    if _mentions(result, ("access is denied",)):
        return ExitClassification.PERMANENT_FAILURE
    if _mentions(result, TRANSIENT_MESSAGES):
        return ExitClassification.TRANSIENT_FAILURE
    return ExitClassification.PERMANENT_FAILURE


def classify_sc(result: CommandResult) -> ExitClassification:
    """Classify an sc.exe exit status."""
    code = result.exit_code or 0
    if code == 0:
        return ExitClassification.SUCCESS
    if code in (SC_SERVICE_DOES_NOT_EXIST, SC_SERVICE_MARKED_FOR_DELETE):
        return ExitClassification.ALREADY_IN_PRIOR_STATE
    if code in (SC_SERVICE_CANNOT_ACCEPT_CTRL, SC_DATABASE_LOCKED):
        return ExitClassification.TRANSIENT_FAILURE
    return ExitClassification.PERMANENT_FAILURE


def classify_powershell(result: CommandResult) -> ExitClassification:
    """Classify a PowerShell script exit status (AppX deployment)."""
    if result.exit_code == 0:
        return ExitClassification.SUCCESS
    if _mentions(result, (APPX_NOT_FOUND,)):
        return ExitClassification.ALREADY_IN_PRIOR_STATE
    if _mentions(result, (APPX_PACKAGE_IN_USE, APPX_DEPLOYMENT_BLOCKED) + TRANSIENT_MESSAGES):
        return ExitClassification.TRANSIENT_FAILURE
    return ExitClassification.PERMANENT_FAILURE


CLASSIFIERS: dict[str, Classifier] = {
    TOOL_WINGET: classify_winget,
    TOOL_DISM: classify_dism,
    TOOL_REG: classify_reg,
    TOOL_SC: classify_sc,
    TOOL_POWERSHELL: classify_powershell,
}


def classify_result(tool: str, result: CommandResult) -> ExitClassification:
    """Classify a tool invocation.

    A timed-out invocation is always transient, whatever the tool.

    Raises:
        ValueError: If no classifier exists for the tool.
    """
    if result.timed_out:
        return ExitClassification.TRANSIENT_FAILURE

    classifier = CLASSIFIERS.get(tool)
    if classifier is None:
        raise ValueError(f"No exit code classifier for tool: {tool}")
    return classifier(result)
