"""Service action - set a Windows service's start type to Disabled.

The current start mode is read with PowerShell (Get-CimInstance) and,
when PowerShell cannot answer, through WMI. The change itself is one
`sc.exe config` call. A service that does not exist counts as disabled.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any

from src.actions.base import Action, ActionContext
from src.actions.exit_codes import TOOL_SC
from src.core.models import ActionKind, CommandResult, Scope

logger = logging.getLogger("provisionr.actions.services")

SERVICE_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_.\-]+$")

NOT_FOUND = "NotFound"

# Win32_Service.StartMode -> sc.exe start= value
START_MODE_TO_SC = {
    "Boot": "boot",
    "System": "system",
    "Auto": "auto",
    "Automatic": "auto",
    "Manual": "demand",
    "Disabled": "disabled",
}


@dataclass(frozen=True)
class ServiceDisable(Action):
    """Disable a service.

    Attributes:
        name: Service short name (e.g. DiagTrack)
        mandatory: Whether a failure is a hard failure
    """

    name: str
    mandatory: bool = False

    kind = ActionKind.SERVICE_DISABLE
    tool = TOOL_SC
    summary_counter = "modified"

    def __post_init__(self) -> None:
        if not SERVICE_NAME_PATTERN.match(self.name or ""):
            raise ValueError(f"Invalid service name: {self.name!r}")

    @property
    def description(self) -> str:
        return f"Disable service {self.name}"

    @property
    def is_compensable(self) -> bool:
        return True

    def query_start_mode(self, ctx: ActionContext) -> str | None:
        """Read the service start mode.

        Returns:
            The StartMode string, NOT_FOUND if the service does not exist,
            or None if the state could not be determined.
        """
        mode = self._query_powershell(ctx)
        if mode is None:
            logger.debug(f"PowerShell service query failed for {self.name}, trying WMI")
            mode = self._query_wmi()
        return mode

    def _query_powershell(self, ctx: ActionContext) -> str | None:
        script = (
            f"$s = Get-CimInstance -ClassName Win32_Service -Filter \"Name='{self.name}'\"; "
            f"if ($s) {{ Write-Output $s.StartMode }} else {{ Write-Output '{NOT_FOUND}' }}"
        )
        result = ctx.runner.powershell(script, timeout=ctx.timeout)
        if result.exit_code != 0:
            return None
        lines = result.stdout.strip().splitlines()
        return lines[-1].strip() if lines else None

    def _query_wmi(self) -> str | None:
        """Read the start mode using WMI (fallback method)."""
        try:
            import wmi

            c = wmi.WMI()
            matches = c.Win32_Service(Name=self.name)
            if not matches:
                return NOT_FOUND
            return str(matches[0].StartMode)
        except ImportError:
            logger.debug("WMI module not available")
        except Exception as e:
            logger.error(f"Error querying service {self.name} via WMI: {e}")
        return None

    def is_already_satisfied(self, scope: Scope, ctx: ActionContext) -> bool:
        return self.query_start_mode(ctx) in ("Disabled", NOT_FOUND)

    def apply(self, scope: Scope, ctx: ActionContext) -> CommandResult:
        return ctx.runner.run(
            ["sc.exe", "config", self.name, "start=", "disabled"],
            timeout=ctx.timeout,
        )

    def capture_state(self, scope: Scope, ctx: ActionContext) -> dict[str, Any]:
        return {"start_mode": self.query_start_mode(ctx)}

    def compensate(self, scope: Scope, ctx: ActionContext, state: dict[str, Any]) -> None:
        start_mode = state.get("start_mode")
        sc_value = START_MODE_TO_SC.get(start_mode or "")
        if sc_value is None:
            logger.warning(
                f"Unknown previous start mode {start_mode!r} for {self.name}, leaving it disabled"
            )
            return

        result = ctx.runner.run(
            ["sc.exe", "config", self.name, "start=", sc_value],
            timeout=ctx.timeout,
        )
        self._require_success(result, f"sc config {self.name} start= {sc_value}")

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.kind.value, "name": self.name}
