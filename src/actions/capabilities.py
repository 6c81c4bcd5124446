"""Capability action - remove a Windows optional capability with DISM."""

import logging
import re
from dataclasses import dataclass
from typing import Any

from src.actions.base import Action, ActionContext
from src.actions.exit_codes import TOOL_DISM
from src.core.models import ActionKind, CommandResult, Scope

logger = logging.getLogger("provisionr.actions.capabilities")

STATE_PATTERN = re.compile(r"^\s*State\s*:\s*(.+?)\s*$", re.MULTILINE)

STATE_INSTALLED = "Installed"
STATE_NOT_PRESENT = "Not Present"
# States in which the capability payload is not active
ABSENT_STATES = {STATE_NOT_PRESENT, "Removed", "Staged"}


def parse_capability_state(output: str) -> str | None:
    """Extract the State field from `dism /Get-CapabilityInfo` output."""
    match = STATE_PATTERN.search(output)
    return match.group(1) if match else None


@dataclass(frozen=True)
class CapabilityRemoval(Action):
    """Remove an optional capability (e.g. App.StepsRecorder~~~~0.0.1.0).

    Attributes:
        name: Full capability name
        mandatory: Whether a failure is a hard failure
    """

    name: str
    mandatory: bool = False

    kind = ActionKind.CAPABILITY_REMOVAL
    tool = TOOL_DISM
    summary_counter = "removed"

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("CapabilityRemoval requires a capability name")

    @property
    def description(self) -> str:
        return f"Remove capability {self.name}"

    @property
    def is_compensable(self) -> bool:
        return True

    def query_state(self, ctx: ActionContext) -> str | None:
        """Return the capability's DISM state, or None if it could not be read."""
        result = ctx.runner.run(
            [
                "dism.exe",
                "/Online",
                "/English",
                "/Get-CapabilityInfo",
                f"/CapabilityName:{self.name}",
            ],
            timeout=ctx.timeout,
        )
        if result.exit_code != 0:
            logger.debug(f"Capability query failed for {self.name}: exit {result.exit_code}")
            return None
        return parse_capability_state(result.stdout)

    def is_already_satisfied(self, scope: Scope, ctx: ActionContext) -> bool:
        return self.query_state(ctx) in ABSENT_STATES

    def apply(self, scope: Scope, ctx: ActionContext) -> CommandResult:
        return ctx.runner.run(
            [
                "dism.exe",
                "/Online",
                "/English",
                "/Remove-Capability",
                f"/CapabilityName:{self.name}",
                "/NoRestart",
            ],
            timeout=ctx.timeout,
        )

    def capture_state(self, scope: Scope, ctx: ActionContext) -> dict[str, Any]:
        return {"state": self.query_state(ctx)}

    def compensate(self, scope: Scope, ctx: ActionContext, state: dict[str, Any]) -> None:
        if state.get("state") != STATE_INSTALLED:
            logger.info(f"Capability {self.name} was not installed before, nothing to restore")
            return

        result = ctx.runner.run(
            [
                "dism.exe",
                "/Online",
                "/English",
                "/Add-Capability",
                f"/CapabilityName:{self.name}",
                "/NoRestart",
            ],
            timeout=ctx.timeout,
        )
        self._require_success(result, f"dism /Add-Capability {self.name}")

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.kind.value, "name": self.name}
