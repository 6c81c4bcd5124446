"""Pytest configuration and shared fixtures."""

import pytest
import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))
sys.path.insert(0, str(Path(__file__).parent))

from fakes import FakeCommandRunner, FakeRegistry, SleepRecorder  # noqa: E402

from src.actions.base import ActionContext  # noqa: E402
from src.core.models import ExecutionSummary, Scope  # noqa: E402


@pytest.fixture
def fake_runner() -> FakeCommandRunner:
    return FakeCommandRunner()


@pytest.fixture
def fake_registry() -> FakeRegistry:
    return FakeRegistry()


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def summary() -> ExecutionSummary:
    return ExecutionSummary()


@pytest.fixture
def action_context(fake_runner, fake_registry, tmp_path) -> ActionContext:
    """ActionContext wired to the fakes and a temporary scratch directory."""
    return ActionContext(runner=fake_runner, registry=fake_registry, scratch_dir=tmp_path / "scratch")


@pytest.fixture
def user_scope(tmp_path) -> Scope:
    """A user profile scope whose hive file exists."""
    profile_dir = tmp_path / "Users" / "alice"
    profile_dir.mkdir(parents=True)
    hive = profile_dir / "NTUSER.DAT"
    hive.write_bytes(b"regf")
    return Scope.user("alice", "S-1-5-21-1000-2000-3000-1001", str(hive))


@pytest.fixture
def default_scope(tmp_path) -> Scope:
    """The default profile scope with an existing hive file."""
    profile_dir = tmp_path / "Users" / "Default"
    profile_dir.mkdir(parents=True)
    hive = profile_dir / "NTUSER.DAT"
    hive.write_bytes(b"regf")
    return Scope.default_profile(str(hive))
