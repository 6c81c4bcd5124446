"""Tests for plan loading."""

import json

import pytest

from src.actions.capabilities import CapabilityRemoval
from src.actions.packages import PackageInstall, PackageUninstall
from src.actions.plan import (
    PlanError,
    action_from_dict,
    load_plan,
    plan_from_dict,
    plan_to_dict,
)
from src.actions.registry import RegistryMutation
from src.actions.services import ServiceDisable
from src.core.models import ScopeSelector

SAMPLE_PLAN = {
    "plan": [
        {"scope": "Machine", "action": {"type": "PackageInstall", "id": "7zip.7zip", "name": "7-Zip"}},
        {"scope": "Machine", "action": {"type": "PackageUninstall", "pattern": "*Xbox*"}},
        {"scope": "Machine", "action": {"type": "CapabilityRemoval", "name": "App.StepsRecorder~~~~0.0.1.0"}},
        {"scope": "Machine", "action": {"type": "ServiceDisable", "name": "DiagTrack"}},
        {
            "scope": "AllUserProfiles",
            "mandatory": True,
            "action": {
                "type": "RegistryMutation",
                "path": "Software\\Microsoft\\Windows\\CurrentVersion\\Search",
                "values": {"BingSearchEnabled": {"type": "REG_DWORD", "data": 0}},
            },
        },
    ]
}


class TestActionFromDict:
    """Tests for action_from_dict."""

    def test_each_type(self):
        """Test that every action type is built."""
        items = plan_from_dict(SAMPLE_PLAN)

        assert [type(item.action) for item in items] == [
            PackageInstall,
            PackageUninstall,
            CapabilityRemoval,
            ServiceDisable,
            RegistryMutation,
        ]

    def test_unknown_type(self):
        """Test that an unknown type is a PlanError."""
        with pytest.raises(PlanError, match="Unknown action type"):
            action_from_dict({"type": "Reboot"})

    def test_missing_field(self):
        """Test that a missing required field is a PlanError."""
        with pytest.raises(PlanError, match="missing field"):
            action_from_dict({"type": "PackageInstall"})

    def test_invalid_value(self):
        """Test that a value rejected by the action is a PlanError."""
        with pytest.raises(PlanError):
            action_from_dict({"type": "ServiceDisable", "name": "bad name"})

    def test_registry_value_without_data(self):
        """Test that a registry value missing its data is a PlanError."""
        with pytest.raises(PlanError, match="no 'data'"):
            action_from_dict(
                {
                    "type": "RegistryMutation",
                    "path": "Software\\Provisionr",
                    "values": {"Enabled": {"type": "REG_DWORD"}},
                }
            )

    def test_mandatory_in_action(self):
        """Test that mandatory can be set inside the action object."""
        action = action_from_dict({"type": "ServiceDisable", "name": "DiagTrack", "mandatory": True})
        assert action.mandatory is True


class TestPlanFromDict:
    """Tests for plan_from_dict."""

    def test_selectors_and_mandatory(self):
        """Test that entry scope and mandatory flags are applied."""
        items = plan_from_dict(SAMPLE_PLAN)

        assert items[0].selector == ScopeSelector.MACHINE
        assert items[0].mandatory is False
        assert items[4].selector == ScopeSelector.ALL_USER_PROFILES
        assert items[4].mandatory is True
        assert items[4].action.mandatory is True

    def test_default_scope_is_machine(self):
        """Test that a missing scope targets the machine."""
        items = plan_from_dict({"plan": [{"action": {"type": "ServiceDisable", "name": "Fax"}}]})
        assert items[0].selector == ScopeSelector.MACHINE

    def test_unknown_scope(self):
        """Test that an unknown scope names the entry."""
        with pytest.raises(PlanError, match="Plan entry 0"):
            plan_from_dict({"plan": [{"scope": "Everyone", "action": {"type": "ServiceDisable", "name": "Fax"}}]})

    def test_bad_entry_index(self):
        """Test that errors name the failing entry."""
        plan = {"plan": [SAMPLE_PLAN["plan"][0], {"scope": "Machine", "action": {"type": "Nope"}}]}

        with pytest.raises(PlanError, match="Plan entry 1"):
            plan_from_dict(plan)

    def test_missing_plan_list(self):
        """Test that the document must contain a plan list."""
        with pytest.raises(PlanError):
            plan_from_dict({"actions": []})

    def test_to_dict_roundtrip(self):
        """Test that a parsed plan serializes back to an equivalent plan."""
        items = plan_from_dict(SAMPLE_PLAN)

        again = plan_from_dict(plan_to_dict(items))

        assert [item.to_dict() for item in again] == [item.to_dict() for item in items]


class TestLoadPlan:
    """Tests for load_plan."""

    def test_load(self, tmp_path):
        """Test loading a plan file."""
        path = tmp_path / "plan.json"
        path.write_text(json.dumps(SAMPLE_PLAN), encoding="utf-8")

        assert len(load_plan(path)) == 5

    def test_invalid_json(self, tmp_path):
        """Test that invalid JSON is a PlanError."""
        path = tmp_path / "plan.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(PlanError):
            load_plan(path)

    def test_missing_file(self, tmp_path):
        """Test that a missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            load_plan(tmp_path / "missing.json")
