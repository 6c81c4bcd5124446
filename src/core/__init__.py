"""Core module - models, configuration, resources, and infrastructure.

The orchestrator is imported from src.core.orchestrator directly; it
depends on src.actions, which in turn depends on this package.
"""

from .cleanup import CleanupRegistry, CleanupReport, create_cleanup_registry
from .config import Config, load_config, save_config
from .hives import HiveManager, create_hive_manager
from .logging_config import setup_logging
from .models import (
    ActionOutcome,
    CommandResult,
    ErrorCategory,
    ExecutionSummary,
    ExitClassification,
    ExitCode,
    HandleState,
    OutcomeStatus,
    RegistryHandle,
    ReleaseOutcome,
    RetryPolicy,
    RunState,
    Scope,
    ScopeKind,
    ScopeSelector,
)
from .preflight import (
    PreflightCheck,
    PreflightReport,
    PreflightRequirements,
    PreflightValidator,
    create_preflight_validator,
)
from .registry import RegistryReader
from .rollback import RollbackReport, RollbackStack, create_rollback_stack
from .shell import CommandRunner

__all__ = [
    # Models
    "Scope",
    "ScopeKind",
    "ScopeSelector",
    "HandleState",
    "RegistryHandle",
    "ReleaseOutcome",
    "CommandResult",
    "ExitClassification",
    "OutcomeStatus",
    "ErrorCategory",
    "ActionOutcome",
    "RetryPolicy",
    "ExecutionSummary",
    "RunState",
    "ExitCode",
    # Config
    "Config",
    "load_config",
    "save_config",
    "setup_logging",
    # Preflight
    "PreflightValidator",
    "PreflightRequirements",
    "PreflightReport",
    "PreflightCheck",
    "create_preflight_validator",
    # Resources
    "CommandRunner",
    "RegistryReader",
    "HiveManager",
    "create_hive_manager",
    # Transactions
    "RollbackStack",
    "RollbackReport",
    "create_rollback_stack",
    "CleanupRegistry",
    "CleanupReport",
    "create_cleanup_registry",
]
