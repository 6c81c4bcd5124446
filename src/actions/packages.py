"""Package actions - install with winget, remove AppX packages by pattern.

PackageInstall is reversible (winget uninstall). PackageUninstall removes
both the installed AppX packages of every user and the provisioned
package used for new accounts; there is no reliable way to bring those
back, so it is not compensable.
"""

import logging
import textwrap
from dataclasses import dataclass
from typing import Any

from src.actions.base import Action, ActionContext
from src.actions.exit_codes import TOOL_POWERSHELL, TOOL_WINGET
from src.core.models import ActionKind, CommandResult, Scope
from src.core.shell import quote_powershell

logger = logging.getLogger("provisionr.actions.packages")

WINGET_COMMON_ARGS = [
    "--accept-source-agreements",
    "--disable-interactivity",
]


@dataclass(frozen=True)
class PackageInstall(Action):
    """Install a package with winget.

    Attributes:
        package_id: Exact winget package identifier (e.g. 7zip.7zip)
        name: Display name used in logs
        mandatory: Whether a failure is a hard failure
    """

    package_id: str
    name: str = ""
    mandatory: bool = False

    kind = ActionKind.PACKAGE_INSTALL
    tool = TOOL_WINGET
    summary_counter = "installed"

    def __post_init__(self) -> None:
        if not self.package_id:
            raise ValueError("PackageInstall requires a package_id")

    @property
    def description(self) -> str:
        return f"Install {self.name or self.package_id}"

    @property
    def is_compensable(self) -> bool:
        return True

    def is_already_satisfied(self, scope: Scope, ctx: ActionContext) -> bool:
        result = ctx.runner.run(
            ["winget", "list", "--id", self.package_id, "--exact", *WINGET_COMMON_ARGS],
            timeout=ctx.timeout,
        )
        return result.exit_code == 0 and self.package_id.lower() in result.stdout.lower()

    def apply(self, scope: Scope, ctx: ActionContext) -> CommandResult:
        return ctx.runner.run(
            [
                "winget",
                "install",
                "--id",
                self.package_id,
                "--exact",
                "--silent",
                "--accept-package-agreements",
                *WINGET_COMMON_ARGS,
            ],
            timeout=ctx.timeout,
        )

    def capture_state(self, scope: Scope, ctx: ActionContext) -> dict[str, Any]:
        return {"package_id": self.package_id}

    def compensate(self, scope: Scope, ctx: ActionContext, state: dict[str, Any]) -> None:
        result = ctx.runner.run(
            [
                "winget",
                "uninstall",
                "--id",
                state.get("package_id", self.package_id),
                "--exact",
                "--silent",
                *WINGET_COMMON_ARGS,
            ],
            timeout=ctx.timeout,
        )
        self._require_success(result, f"winget uninstall {self.package_id}")

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.kind.value, "id": self.package_id, "name": self.name}


@dataclass(frozen=True)
class PackageUninstall(Action):
    """Remove AppX packages matching a name pattern, for all users.

    Attributes:
        pattern: AppX package name pattern (wildcards allowed)
        mandatory: Whether a failure is a hard failure
    """

    pattern: str
    mandatory: bool = False

    kind = ActionKind.PACKAGE_UNINSTALL
    tool = TOOL_POWERSHELL
    summary_counter = "removed"

    def __post_init__(self) -> None:
        if not self.pattern:
            raise ValueError("PackageUninstall requires a pattern")

    @property
    def description(self) -> str:
        return f"Remove packages matching {self.pattern}"

    def is_already_satisfied(self, scope: Scope, ctx: ActionContext) -> bool:
        pattern = quote_powershell(self.pattern)
        script = textwrap.dedent(f"""
            $installed = @(Get-AppxPackage -AllUsers -Name {pattern} -ErrorAction SilentlyContinue).Count;
            $provisioned = @(Get-AppxProvisionedPackage -Online |
                Where-Object {{ $_.DisplayName -like {pattern} }}).Count;
            Write-Output ($installed + $provisioned)
        """).strip()
        result = ctx.runner.powershell(script, timeout=ctx.timeout)
        if result.exit_code != 0:
            return False
        lines = result.stdout.strip().splitlines()
        return bool(lines) and lines[-1].strip() == "0"

    def apply(self, scope: Scope, ctx: ActionContext) -> CommandResult:
        pattern = quote_powershell(self.pattern)
        script = textwrap.dedent(f"""
            $ErrorActionPreference = 'Stop';
            try {{
                Get-AppxProvisionedPackage -Online |
                    Where-Object {{ $_.DisplayName -like {pattern} }} |
                    ForEach-Object {{ Remove-AppxProvisionedPackage -Online -PackageName $_.PackageName | Out-Null }};
                Get-AppxPackage -AllUsers -Name {pattern} |
                    ForEach-Object {{ Remove-AppxPackage -Package $_.PackageFullName -AllUsers }};
            }} catch {{
                [Console]::Error.WriteLine($_.Exception.Message);
                exit 1
            }}
        """).strip()
        return ctx.runner.powershell(script, timeout=ctx.timeout)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.kind.value, "pattern": self.pattern}
