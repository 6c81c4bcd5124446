"""Provisioning actions, exit classification, plan loading, and the runner."""

from .base import Action, ActionContext, CompensationError
from .capabilities import CapabilityRemoval
from .exit_codes import classify_result
from .packages import PackageInstall, PackageUninstall
from .plan import PlanError, PlanItem, action_from_dict, load_plan, plan_from_dict
from .registry import RegistryMutation, RegistryValue
from .runner import ActionRunner, create_action_runner
from .services import ServiceDisable

__all__ = [
    # Base
    "Action",
    "ActionContext",
    "CompensationError",
    # Actions
    "PackageInstall",
    "PackageUninstall",
    "CapabilityRemoval",
    "RegistryMutation",
    "RegistryValue",
    "ServiceDisable",
    # Classification
    "classify_result",
    # Plan
    "PlanItem",
    "PlanError",
    "action_from_dict",
    "plan_from_dict",
    "load_plan",
    # Runner
    "ActionRunner",
    "create_action_runner",
]
