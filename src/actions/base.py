"""Base interface for provisioning actions.

An Action is an immutable description of one change to the machine. It
knows how to check whether the change is already in place, how to apply
it through exactly one external tool, and (for reversible actions) how to
undo it from a state snapshot captured before it was applied.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from src.actions.exit_codes import classify_result
from src.core.models import ActionKind, CommandResult, ExitClassification, Scope
from src.core.registry import RegistryReader
from src.core.shell import CommandRunner


@dataclass
class ActionContext:
    """Collaborators an action needs to touch the system.

    Attributes:
        runner: Runs external tools
        registry: Tracked registry read access
        scratch_dir: Directory for generated files (e.g. .reg imports)
        timeout: Per-invocation timeout override in seconds
        extra: Additional context data
    """

    runner: CommandRunner
    registry: RegistryReader
    scratch_dir: Path
    timeout: int | None = None
    extra: dict[str, Any] = field(default_factory=dict)


class CompensationError(RuntimeError):
    """Raised when a compensating action does not succeed."""


class Action(ABC):
    """Abstract base class for all provisioning actions.

    Subclasses must implement:
        - description: Human-readable summary
        - is_already_satisfied(): Idempotency check, read-only
        - apply(): Perform the change with the action's tool
        - to_dict(): Plan representation

    Reversible actions also override is_compensable, capture_state() and
    compensate().
    """

    kind: ActionKind
    tool: str
    is_registry_action: bool = False
    mandatory: bool = False
    # ExecutionSummary counter bumped when the action is applied
    summary_counter: str = "modified"

    @property
    @abstractmethod
    def description(self) -> str:
        """Human-readable description of the action."""

    @abstractmethod
    def is_already_satisfied(self, scope: Scope, ctx: ActionContext) -> bool:
        """Check whether the change is already in place.

        Must not modify system state.
        """

    @abstractmethod
    def apply(self, scope: Scope, ctx: ActionContext) -> CommandResult:
        """Apply the change.

        Returns:
            CommandResult of the single tool invocation
        """

    @abstractmethod
    def to_dict(self) -> dict[str, Any]:
        """Convert the action to its plan representation."""

    @property
    def is_compensable(self) -> bool:
        """Whether a reliable undo exists for this action."""
        return False

    def capture_state(self, scope: Scope, ctx: ActionContext) -> dict[str, Any]:
        """Capture the state compensate() needs, before apply() runs."""
        return {}

    def compensate(self, scope: Scope, ctx: ActionContext, state: dict[str, Any]) -> None:
        """Undo a successful apply().

        Raises:
            CompensationError: If the undo did not succeed.
            NotImplementedError: If the action is not reversible.
        """
        raise NotImplementedError(f"{self.description} cannot be compensated")

    def classify(self, result: CommandResult) -> ExitClassification:
        """Classify the result of apply() or compensate()."""
        return classify_result(self.tool, result)

    def _require_success(self, result: CommandResult, what: str) -> None:
        """Raise CompensationError unless the tool invocation succeeded."""
        classification = self.classify(result)
        if not classification.is_success:
            detail = result.stderr or result.stdout or f"exit code {result.exit_code}"
            raise CompensationError(f"{what} failed ({classification.value}): {detail}")

    def __str__(self) -> str:
        return self.description
