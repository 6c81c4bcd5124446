"""Core data models for Provisionr.

This module defines all enums, data classes, and type definitions used
throughout the provisioning engine.
"""

import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum, auto
from typing import Any

# Cleanup priorities (higher runs first)
PRIORITY_DRIVE_MAPPING = 100
PRIORITY_MOUNTED_HIVE = 75
PRIORITY_SCRATCH_FILES = 50
PRIORITY_CACHES_LOGS = 25

DEFAULT_MOUNT_PREFIX = "Provisionr_"


class ScopeKind(Enum):
    """Where registry-style actions apply."""

    MACHINE = "Machine"
    USER_PROFILE = "UserProfile"
    DEFAULT_PROFILE = "DefaultProfile"


class ScopeSelector(Enum):
    """Scope selector used by plan entries."""

    MACHINE = "Machine"
    ALL_USER_PROFILES = "AllUserProfiles"
    DEFAULT_PROFILE = "DefaultProfile"

    @classmethod
    def from_string(cls, value: str) -> "ScopeSelector":
        """Parse a selector name, ignoring case and separators."""
        normalized = value.replace("_", "").replace("-", "").lower()
        for selector in cls:
            if selector.value.lower() == normalized:
                return selector
        raise ValueError(f"Unknown scope selector: {value}")

    def matches(self, kind: ScopeKind) -> bool:
        """Check whether a scope of the given kind is selected."""
        return {
            ScopeSelector.MACHINE: ScopeKind.MACHINE,
            ScopeSelector.ALL_USER_PROFILES: ScopeKind.USER_PROFILE,
            ScopeSelector.DEFAULT_PROFILE: ScopeKind.DEFAULT_PROFILE,
        }[self] == kind


@dataclass(frozen=True)
class Scope:
    """A provisioning scope: the machine, a user profile, or the default profile.

    Attributes:
        kind: Scope kind
        username: Profile display name (user profiles only)
        security_id: Security identifier (user profiles only)
        hive_path: Path to the NTUSER.DAT hive file (profile scopes only)
        mount_prefix: Prefix for the HKU mount point name
    """

    kind: ScopeKind
    username: str = ""
    security_id: str = ""
    hive_path: str | None = None
    mount_prefix: str = DEFAULT_MOUNT_PREFIX

    @classmethod
    def machine(cls) -> "Scope":
        return cls(kind=ScopeKind.MACHINE)

    @classmethod
    def user(
        cls,
        username: str,
        security_id: str,
        hive_path: str,
        mount_prefix: str = DEFAULT_MOUNT_PREFIX,
    ) -> "Scope":
        return cls(
            kind=ScopeKind.USER_PROFILE,
            username=username,
            security_id=security_id,
            hive_path=str(hive_path),
            mount_prefix=mount_prefix,
        )

    @classmethod
    def default_profile(
        cls,
        hive_path: str,
        mount_prefix: str = DEFAULT_MOUNT_PREFIX,
    ) -> "Scope":
        return cls(
            kind=ScopeKind.DEFAULT_PROFILE,
            username="Default",
            hive_path=str(hive_path),
            mount_prefix=mount_prefix,
        )

    @property
    def key(self) -> str:
        """Stable identifier for this scope."""
        if self.kind == ScopeKind.MACHINE:
            return "Machine"
        if self.kind == ScopeKind.DEFAULT_PROFILE:
            return "Default"
        return self.security_id

    @property
    def requires_mount(self) -> bool:
        """Whether a hive must be loaded before registry actions can run."""
        return self.kind != ScopeKind.MACHINE

    @property
    def mount_name(self) -> str:
        """Name of the HKU subkey the hive is loaded under."""
        return f"{self.mount_prefix}{self.key}"

    @property
    def registry_root(self) -> str:
        """Registry root that registry paths for this scope are relative to."""
        if self.kind == ScopeKind.MACHINE:
            return "HKLM"
        return f"HKU\\{self.mount_name}"

    def __str__(self) -> str:
        if self.kind == ScopeKind.USER_PROFILE:
            return f"{self.username} ({self.security_id})"
        return self.key


class HandleState(Enum):
    """Lifecycle states of a mounted registry hive."""

    UNMOUNTED = "UNMOUNTED"
    MOUNTED = "MOUNTED"
    RELEASE_PENDING = "RELEASE_PENDING"
    RELEASE_FAILED = "RELEASE_FAILED"


class ReleaseOutcome(Enum):
    """Outcome of releasing a registry handle."""

    RELEASED = "RELEASED"
    NOT_MOUNTED = "NOT_MOUNTED"
    SIMULATED = "SIMULATED"
    FAILED = "FAILED"


@dataclass
class RegistryHandle:
    """A per-scope registry hive handle owned by the hive manager.

    Attributes:
        scope: Scope the hive belongs to
        state: Current lifecycle state
        adopted: Whether the hive was already mounted (left over from an earlier run)
        error_message: Last acquire/release error
        release_attempts: Number of unload attempts made
        simulated: Whether the mount was only simulated (dry run)
    """

    scope: Scope
    state: HandleState = HandleState.UNMOUNTED
    adopted: bool = False
    error_message: str | None = None
    release_attempts: int = 0
    simulated: bool = False

    @property
    def is_mounted(self) -> bool:
        """Check if registry actions can run against this handle."""
        return self.state == HandleState.MOUNTED

    @property
    def mount_name(self) -> str:
        return self.scope.mount_name


class ExitClassification(Enum):
    """Typed interpretation of an external tool's exit status."""

    SUCCESS = "SUCCESS"
    ALREADY_IN_PRIOR_STATE = "ALREADY_IN_PRIOR_STATE"
    TRANSIENT_FAILURE = "TRANSIENT_FAILURE"
    PERMANENT_FAILURE = "PERMANENT_FAILURE"

    @property
    def is_success(self) -> bool:
        return self in (ExitClassification.SUCCESS, ExitClassification.ALREADY_IN_PRIOR_STATE)


class OutcomeStatus(Enum):
    """Final status of a single action execution."""

    SUCCESS = "SUCCESS"
    SOFT_FAILURE = "SOFT_FAILURE"
    HARD_FAILURE = "HARD_FAILURE"
    SKIPPED = "SKIPPED"


class ErrorCategory(Enum):
    """Error taxonomy.

    Categories:
        CRITICAL_PREFLIGHT: Abort before any mutation
        RESOURCE_ACQUISITION_FAILURE: Scope skipped, run continues
        TRANSIENT_ACTION_FAILURE: Retried per policy
        PERMANENT_ACTION_FAILURE: Recorded, run continues unless mandatory
        RESOURCE_RELEASE_FAILURE: Always non-fatal, logged
        ROLLBACK_COMPENSATION_FAILURE: Logged, unwind continues
    """

    CRITICAL_PREFLIGHT = "CRITICAL_PREFLIGHT"
    RESOURCE_ACQUISITION_FAILURE = "RESOURCE_ACQUISITION_FAILURE"
    TRANSIENT_ACTION_FAILURE = "TRANSIENT_ACTION_FAILURE"
    PERMANENT_ACTION_FAILURE = "PERMANENT_ACTION_FAILURE"
    RESOURCE_RELEASE_FAILURE = "RESOURCE_RELEASE_FAILURE"
    ROLLBACK_COMPENSATION_FAILURE = "ROLLBACK_COMPENSATION_FAILURE"


class ActionKind(Enum):
    """Kinds of provisioning actions."""

    PACKAGE_INSTALL = "PackageInstall"
    PACKAGE_UNINSTALL = "PackageUninstall"
    CAPABILITY_REMOVAL = "CapabilityRemoval"
    REGISTRY_MUTATION = "RegistryMutation"
    SERVICE_DISABLE = "ServiceDisable"


class RunState(Enum):
    """Orchestrator state machine states."""

    IDLE = auto()
    VALIDATING = auto()
    SCOPING = auto()
    EXECUTING = auto()
    ROLLING_BACK = auto()
    CLEANING_UP = auto()
    DONE = auto()


class ExitCode(IntEnum):
    """Process exit codes."""

    SUCCESS = 0
    HARD_FAILURE = 1
    PREFLIGHT_ABORT = 2


@dataclass
class CommandResult:
    """Result of one external tool invocation.

    Attributes:
        argv: Command line that was run
        exit_code: Process exit code (None if it never finished)
        stdout: Captured standard output
        stderr: Captured standard error
        timed_out: Whether the process was killed on timeout
        duration_ms: Wall time in milliseconds
    """

    argv: list[str]
    exit_code: int | None
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    duration_ms: float = 0.0

    @property
    def output(self) -> str:
        """Combined stdout and stderr."""
        return "\n".join(part for part in (self.stdout, self.stderr) if part)

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0 and not self.timed_out


@dataclass
class RetryPolicy:
    """Retry policy with exponential backoff.

    Attributes:
        max_attempts: Total attempts including the first
        initial_delay: Wait in seconds before the second attempt
        backoff_multiplier: Growth factor between consecutive waits
        max_delay: Upper bound for a single wait
    """

    max_attempts: int = 3
    initial_delay: float = 5.0
    backoff_multiplier: float = 1.5
    max_delay: float = 30.0


@dataclass
class ActionOutcome:
    """Outcome of executing one action against one scope.

    Attributes:
        status: Final status
        action_description: Human-readable action description
        scope_key: Key of the scope the action ran against
        attempts: Number of apply attempts made
        classification: Last exit classification (None if never applied)
        already_satisfied: Whether the idempotency check short-circuited
        simulated: Whether the action was only simulated (dry run)
        error_category: Error category for failures and skips
        error_message: Error details
        rollback_registered: Whether a compensating action was pushed
        mandatory: Whether the action was flagged mandatory
    """

    status: OutcomeStatus
    action_description: str
    scope_key: str
    attempts: int = 0
    classification: ExitClassification | None = None
    already_satisfied: bool = False
    simulated: bool = False
    error_category: ErrorCategory | None = None
    error_message: str | None = None
    rollback_registered: bool = False
    mandatory: bool = False

    @property
    def success(self) -> bool:
        return self.status == OutcomeStatus.SUCCESS

    @property
    def is_hard_failure(self) -> bool:
        return self.status == OutcomeStatus.HARD_FAILURE


@dataclass
class RollbackEntry:
    """A compensating action registered after a successful action."""

    description: str
    compensating_action: Callable[[], Any]
    scope_key: str = ""
    registered_at: datetime = field(default_factory=datetime.now)


@dataclass
class CleanupEntry:
    """A cleanup callback guaranteed to run once at the end of the run.

    Attributes:
        name: Human-readable name
        priority: Higher runs first (100 drive mapping, 75 hives, 50 scratch, 25 logs)
        cleanup_action: Callback to run
        sequence: Registration order, used to keep equal priorities stable
    """

    name: str
    priority: int
    cleanup_action: Callable[[], Any]
    sequence: int = 0


@dataclass
class ExecutionSummary:
    """Aggregated counters for a run. Reporting only.

    Attributes:
        installed: Packages/capabilities installed
        removed: Packages/capabilities removed
        modified: Registry and service changes applied
        already_satisfied: Actions skipped by the idempotency check
        skipped: Actions skipped because their scope was unavailable
        errors: Number of errors recorded
        warnings: Number of warnings recorded
        hard_failures: Number of hard failures
        unrolled_hard_failures: Hard failures left without a successful rollback
        rollbacks_performed: Compensating actions that succeeded
        rollback_failures: Compensating actions that failed
        error_messages: Error details
        warning_messages: Warning details
        started_at: Run start timestamp
        completed_at: Run completion timestamp
    """

    installed: int = 0
    removed: int = 0
    modified: int = 0
    already_satisfied: int = 0
    skipped: int = 0
    errors: int = 0
    warnings: int = 0
    hard_failures: int = 0
    unrolled_hard_failures: int = 0
    rollbacks_performed: int = 0
    rollback_failures: int = 0
    error_messages: list[str] = field(default_factory=list)
    warning_messages: list[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.now)
    completed_at: datetime | None = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def add_error(self, message: str, category: ErrorCategory | None = None) -> None:
        with self._lock:
            self.errors += 1
            prefix = f"[{category.value}] " if category else ""
            self.error_messages.append(f"{prefix}{message}")

    def add_warning(self, message: str, category: ErrorCategory | None = None) -> None:
        with self._lock:
            self.warnings += 1
            prefix = f"[{category.value}] " if category else ""
            self.warning_messages.append(f"{prefix}{message}")

    def increment(self, counter: str, amount: int = 1) -> None:
        """Increment a named counter."""
        with self._lock:
            setattr(self, counter, getattr(self, counter) + amount)

    def finish(self) -> None:
        """Mark the run as complete."""
        self.completed_at = datetime.now()

    @property
    def elapsed_seconds(self) -> float:
        end = self.completed_at or datetime.now()
        return (end - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        """Convert summary to a dictionary for JSON output."""
        return {
            "installed": self.installed,
            "removed": self.removed,
            "modified": self.modified,
            "already_satisfied": self.already_satisfied,
            "skipped": self.skipped,
            "errors": self.errors,
            "warnings": self.warnings,
            "hard_failures": self.hard_failures,
            "unrolled_hard_failures": self.unrolled_hard_failures,
            "rollbacks_performed": self.rollbacks_performed,
            "rollback_failures": self.rollback_failures,
            "error_messages": list(self.error_messages),
            "warning_messages": list(self.warning_messages),
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
        }
