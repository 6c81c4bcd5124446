"""Fakes for the process, registry and action seams used across the tests."""

from typing import Any

from src.actions.base import Action, ActionContext
from src.core.models import ActionKind, CommandResult, ExitClassification, Scope
from src.core.registry import RegistryReader, RegistryReading
from src.core.shell import CommandRunner


class FakeCommandRunner(CommandRunner):
    """CommandRunner that returns scripted results and records every call.

    Rules match when their needle occurs in the lowercased command line.
    Each rule returns its results in order and keeps repeating the last one.
    """

    def __init__(self) -> None:
        super().__init__(timeout=5)
        self.calls: list[list[str]] = []
        self._rules: list[tuple[str, list[dict[str, Any]]]] = []

    def when(self, needle: str, *results: dict[str, Any]) -> None:
        self._rules.append((needle.lower(), list(results)))

    def run(self, argv: list[str], timeout: int | None = None) -> CommandResult:
        self.calls.append(list(argv))
        text = " ".join(argv).lower()
        for needle, results in self._rules:
            if needle in text:
                spec = results.pop(0) if len(results) > 1 else results[0]
                return CommandResult(argv=list(argv), **spec)
        return CommandResult(argv=list(argv), exit_code=0)

    def calls_matching(self, needle: str) -> list[list[str]]:
        return [call for call in self.calls if needle.lower() in " ".join(call).lower()]


def result(exit_code: int | None = 0, stdout: str = "", stderr: str = "", timed_out: bool = False):
    """Build a scripted result for FakeCommandRunner.when()."""
    return {"exit_code": exit_code, "stdout": stdout, "stderr": stderr, "timed_out": timed_out}


class FakeRegistry(RegistryReader):
    """In-memory RegistryReader."""

    def __init__(self) -> None:
        super().__init__()
        self.values: dict[tuple[str, str], RegistryReading] = {}
        self.readable: set[str] = set()
        self.existing: set[str] = set()
        self.closed_prefixes: list[str] = []

    def set_value(self, path: str, name: str, data: Any, value_type: int) -> None:
        self.values[(path.lower(), name.lower())] = RegistryReading(data=data, value_type=value_type)

    def read_value(self, path: str, name: str) -> RegistryReading | None:
        return self.values.get((path.lower(), name.lower()))

    def key_exists(self, path: str) -> bool:
        return path.lower() in self.existing or path.lower() in self.readable

    def is_readable(self, path: str) -> bool:
        return path.lower() in self.readable

    def close_under(self, prefix: str) -> int:
        self.closed_prefixes.append(prefix)
        return 0


class FakeAction(Action):
    """Scriptable action for runner and orchestrator tests.

    Args:
        name: Description suffix
        results: Classifications (or exceptions) returned by successive applies
        satisfied: Value returned by is_already_satisfied()
        compensable: Whether the action registers a rollback entry
        registry: Whether the action is a registry action
        mandatory: Whether a failure is a hard failure
        journal: Shared list that records apply/compensate calls in order
    """

    kind = ActionKind.REGISTRY_MUTATION
    tool = "fake"

    def __init__(
        self,
        name: str = "fake",
        results: list[Any] | None = None,
        satisfied: bool = False,
        compensable: bool = True,
        registry: bool = False,
        mandatory: bool = False,
        journal: list[str] | None = None,
        compensate_error: Exception | None = None,
    ) -> None:
        self.name = name
        self.results = list(results or [ExitClassification.SUCCESS])
        self.satisfied = satisfied
        self.compensable = compensable
        self.is_registry_action = registry
        self.mandatory = mandatory
        self.journal = journal if journal is not None else []
        self.compensate_error = compensate_error
        self.apply_count = 0
        self.compensate_count = 0
        self._last: ExitClassification = ExitClassification.SUCCESS

    @property
    def description(self) -> str:
        return f"Fake {self.name}"

    @property
    def is_compensable(self) -> bool:
        return self.compensable

    def is_already_satisfied(self, scope: Scope, ctx: ActionContext) -> bool:
        return self.satisfied

    def apply(self, scope: Scope, ctx: ActionContext) -> CommandResult:
        self.apply_count += 1
        self.journal.append(f"apply:{self.name}:{scope.key}")
        outcome = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(outcome, Exception):
            raise outcome
        self._last = outcome
        return CommandResult(argv=["fake", self.name], exit_code=0 if outcome.is_success else 1)

    def classify(self, result: CommandResult) -> ExitClassification:
        return self._last

    def capture_state(self, scope: Scope, ctx: ActionContext) -> dict[str, Any]:
        return {"name": self.name}

    def compensate(self, scope: Scope, ctx: ActionContext, state: dict[str, Any]) -> None:
        self.compensate_count += 1
        self.journal.append(f"compensate:{self.name}:{scope.key}")
        if self.compensate_error is not None:
            raise self.compensate_error

    def to_dict(self) -> dict[str, Any]:
        return {"type": "Fake", "name": self.name}


class SleepRecorder:
    """Replacement for time.sleep that records waits."""

    def __init__(self) -> None:
        self.waits: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.waits.append(seconds)
