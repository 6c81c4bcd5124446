"""Provisioning plan loading.

A plan is a JSON document listing the actions to run and the scope each
one targets:

    {
      "plan": [
        {"scope": "Machine", "action": {"type": "PackageInstall", "id": "7zip.7zip"}},
        {"scope": "AllUserProfiles", "mandatory": true,
         "action": {"type": "RegistryMutation", "path": "Software\\\\X",
                    "values": {"Enabled": {"type": "REG_DWORD", "data": 0}}}}
      ]
    }
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from src.actions.base import Action
from src.actions.capabilities import CapabilityRemoval
from src.actions.packages import PackageInstall, PackageUninstall
from src.actions.registry import RegistryMutation
from src.actions.services import ServiceDisable
from src.core.models import ActionKind, ScopeSelector

logger = logging.getLogger("provisionr.actions.plan")


class PlanError(ValueError):
    """Raised when a plan document is malformed."""


@dataclass(frozen=True)
class PlanItem:
    """One plan entry.

    Attributes:
        selector: Which scopes the action targets
        action: The action to run
    """

    selector: ScopeSelector
    action: Action

    @property
    def mandatory(self) -> bool:
        return self.action.mandatory

    def to_dict(self) -> dict[str, Any]:
        return {
            "scope": self.selector.value,
            "action": self.action.to_dict(),
            "mandatory": self.mandatory,
        }


def action_from_dict(data: dict[str, Any], mandatory: bool = False) -> Action:
    """Build an action from its plan representation.

    Args:
        data: Action object from the plan
        mandatory: Mark the action mandatory (also read from data)

    Raises:
        PlanError: If the type is unknown or required fields are missing.
    """
    if not isinstance(data, dict):
        raise PlanError(f"Action must be an object, got {type(data).__name__}")

    try:
        kind = ActionKind(data.get("type"))
    except ValueError:
        raise PlanError(f"Unknown action type: {data.get('type')!r}") from None

    mandatory = mandatory or bool(data.get("mandatory", False))

    try:
        if kind == ActionKind.PACKAGE_INSTALL:
            return PackageInstall(
                package_id=data["id"], name=data.get("name", ""), mandatory=mandatory
            )
        if kind == ActionKind.PACKAGE_UNINSTALL:
            return PackageUninstall(pattern=data["pattern"], mandatory=mandatory)
        if kind == ActionKind.CAPABILITY_REMOVAL:
            return CapabilityRemoval(name=data["name"], mandatory=mandatory)
        if kind == ActionKind.REGISTRY_MUTATION:
            return RegistryMutation(
                path=data["path"], values=data.get("values") or {}, mandatory=mandatory
            )
        return ServiceDisable(name=data["name"], mandatory=mandatory)
    except KeyError as e:
        raise PlanError(f"{kind.value} is missing field {e}") from None
    except (TypeError, ValueError) as e:
        raise PlanError(f"Invalid {kind.value}: {e}") from None


def plan_from_dict(data: dict[str, Any]) -> list[PlanItem]:
    """Parse a plan document.

    Raises:
        PlanError: If the document or any entry is malformed.
    """
    entries = data.get("plan") if isinstance(data, dict) else None
    if not isinstance(entries, list):
        raise PlanError("Plan document must contain a 'plan' list")

    items: list[PlanItem] = []
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise PlanError(f"Plan entry {index} must be an object")
        try:
            selector = ScopeSelector.from_string(str(entry.get("scope", "Machine")))
        except ValueError as e:
            raise PlanError(f"Plan entry {index}: {e}") from None
        try:
            action = action_from_dict(
                entry.get("action"), mandatory=bool(entry.get("mandatory", False))
            )
        except PlanError as e:
            raise PlanError(f"Plan entry {index}: {e}") from None
        items.append(PlanItem(selector=selector, action=action))

    return items


def plan_to_dict(items: list[PlanItem]) -> dict[str, Any]:
    return {"plan": [item.to_dict() for item in items]}


def load_plan(plan_path: Path) -> list[PlanItem]:
    """Load a plan from a JSON file.

    Raises:
        FileNotFoundError: If the file does not exist.
        PlanError: If the file is not a valid plan.
    """
    try:
        with open(plan_path, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise PlanError(f"Invalid JSON in plan file {plan_path}: {e}") from e

    items = plan_from_dict(data)
    logger.info(f"Loaded plan with {len(items)} item(s) from {plan_path}")
    return items
