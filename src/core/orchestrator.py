"""Provisioning Orchestrator - drives one provisioning run.

The orchestrator is responsible for:
- Running preflight validation and aborting before any mutation
- Enumerating scopes and mounting the hives plan items need
- Executing the plan scope by scope (machine, users, default profile)
- Invoking the rollback stack after a hard failure
- Running every registered cleanup entry, whatever happened

State machine:
    IDLE -> VALIDATING -> SCOPING -> EXECUTING -> [ROLLING_BACK] -> CLEANING_UP -> DONE
    VALIDATING -> CLEANING_UP -> DONE on a critical preflight failure
"""

import shutil
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from src.actions.base import ActionContext
from src.actions.plan import PlanItem
from src.actions.runner import ActionRunner
from src.discovery.profiles import ProfileEnumerator

from .cleanup import CleanupRegistry, CleanupReport
from .config import Config
from .hives import HiveManager
from .logging_config import flush_logs, get_logger, log_transition
from .models import (
    PRIORITY_CACHES_LOGS,
    PRIORITY_DRIVE_MAPPING,
    PRIORITY_SCRATCH_FILES,
    ActionOutcome,
    ErrorCategory,
    ExecutionSummary,
    ExitCode,
    HandleState,
    RegistryHandle,
    RunState,
    Scope,
    ScopeKind,
    ScopeSelector,
)
from .preflight import PreflightReport, PreflightRequirements, PreflightValidator
from .registry import RegistryReader
from .rollback import RollbackReport, RollbackStack
from .shell import CommandRunner

NOT_ATTEMPTED = "not attempted after hard failure"


@dataclass
class RunResult:
    """Result of a provisioning run.

    Attributes:
        exit_code: Process exit code
        state: Final orchestrator state (DONE unless something went badly wrong)
        summary: Aggregated counters
        preflight: Preflight report (None if validation never ran)
        scopes: Scopes the run targeted, in execution order
        handles: Hive handles by scope key
        outcomes: Per-action outcomes in execution order
        rollback: Rollback report (None if no rollback ran)
        cleanup: Cleanup report
        dry_run: Whether the run was simulated
        unexpected_error: Message of an unexpected exception that ended execution
    """

    exit_code: ExitCode = ExitCode.SUCCESS
    state: RunState = RunState.IDLE
    summary: ExecutionSummary = field(default_factory=ExecutionSummary)
    preflight: PreflightReport | None = None
    scopes: list[Scope] = field(default_factory=list)
    handles: dict[str, RegistryHandle] = field(default_factory=dict)
    outcomes: list[ActionOutcome] = field(default_factory=list)
    rollback: RollbackReport | None = None
    cleanup: CleanupReport | None = None
    dry_run: bool = False
    unexpected_error: str = ""

    @property
    def success(self) -> bool:
        return self.exit_code == ExitCode.SUCCESS

    @property
    def hard_failures(self) -> int:
        """Hard-failed outcomes, plus one for an unexpected error."""
        count = sum(1 for outcome in self.outcomes if outcome.is_hard_failure)
        return count + (1 if self.unexpected_error else 0)

    def to_dict(self) -> dict[str, Any]:
        """Convert the result to a dictionary for JSON output."""
        return {
            "exit_code": int(self.exit_code),
            "state": self.state.name,
            "dry_run": self.dry_run,
            "summary": self.summary.to_dict(),
            "preflight": self.preflight.to_dict() if self.preflight else None,
            "scopes": [
                {
                    "key": scope.key,
                    "kind": scope.kind.value,
                    "username": scope.username,
                    "mounted": self.handles[scope.key].is_mounted
                    if scope.key in self.handles
                    else None,
                }
                for scope in self.scopes
            ],
            "outcomes": [
                {
                    "action": outcome.action_description,
                    "scope": outcome.scope_key,
                    "status": outcome.status.value,
                    "attempts": outcome.attempts,
                    "classification": outcome.classification.value
                    if outcome.classification
                    else None,
                    "already_satisfied": outcome.already_satisfied,
                    "error": outcome.error_message,
                }
                for outcome in self.outcomes
            ],
            "rollback": {
                "reason": self.rollback.reason,
                "attempted": self.rollback.attempted,
                "succeeded": self.rollback.succeeded,
                "failed": self.rollback.failed,
            }
            if self.rollback
            else None,
            "unexpected_error": self.unexpected_error or None,
        }


class ProvisioningOrchestrator:
    """Drives a provisioning run through its state machine.

    Example:
        orchestrator = ProvisioningOrchestrator(config)
        result = orchestrator.run(load_plan(config.plan_file))
        sys.exit(int(result.exit_code))
    """

    def __init__(
        self,
        config: Config,
        validator: PreflightValidator | None = None,
        enumerator: ProfileEnumerator | None = None,
        command_runner: CommandRunner | None = None,
        registry: RegistryReader | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            config: Application configuration.
            validator: Preflight validator (default: real checks).
            enumerator: Profile enumerator (default: registry/WMI).
            command_runner: Runs external tools for actions and hives.
            registry: Tracked registry reader shared by actions and hives.
            sleep: Wait function for retries and hive release (injectable for tests).
        """
        self.config = config
        self.command_runner = command_runner or CommandRunner(
            timeout=config.execution.command_timeout_seconds
        )
        self.validator = validator or PreflightValidator(runner=self.command_runner)
        self.enumerator = enumerator or ProfileEnumerator(mount_prefix=config.hives.mount_prefix)
        self.registry = registry or RegistryReader()
        self.logger = get_logger("main")
        self._sleep = sleep
        self._state = RunState.IDLE

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def dry_run(self) -> bool:
        return self.config.execution.dry_run

    def _transition(self, new_state: RunState, details: str = "") -> None:
        log_transition(self._state.name, new_state.name, details)
        self._state = new_state

    def run(self, plan: list[PlanItem]) -> RunResult:
        """Execute a plan.

        Never raises for action, hive or tool failures; the outcome is in
        the returned RunResult. Cleanup always runs.

        Args:
            plan: Ordered plan items.

        Returns:
            RunResult with the exit code and everything that happened.
        """
        self._state = RunState.IDLE
        execution = self.config.execution
        summary = ExecutionSummary()
        result = RunResult(summary=summary, dry_run=self.dry_run)

        cleanup = CleanupRegistry()
        rollback = RollbackStack(summary=summary, dry_run=self.dry_run)
        cleanup.register_callback("Flush logs", PRIORITY_CACHES_LOGS, flush_logs)

        hives = HiveManager(
            runner=self.command_runner,
            reader=self.registry,
            cleanup=cleanup,
            summary=summary,
            release_delays=self.config.hives.release_delays,
            settle_delay=self.config.hives.settle_delay,
            dry_run=self.dry_run,
            sleep=self._sleep,
        )

        mode = "dry run" if self.dry_run else "live"
        self.logger.info(f"Starting provisioning run ({mode}) with {len(plan)} plan item(s)")

        try:
            self._transition(RunState.VALIDATING)
            result.preflight = self.validator.validate(
                PreflightRequirements.from_config(self.config.preflight)
            )
            if not result.preflight.passed:
                for check in result.preflight.failed_checks:
                    summary.add_error(f"{check.name}: {check.reason}", ErrorCategory.CRITICAL_PREFLIGHT)
                result.exit_code = ExitCode.PREFLIGHT_ABORT
                self.logger.error("Critical preflight failure, aborting before any change")
                return result
            for check in result.preflight.advisory_failures:
                summary.add_warning(f"{check.name}: {check.reason}")

            self._transition(RunState.SCOPING)
            result.scopes = self._resolve_scopes(plan)
            scratch_dir = self._prepare_scratch_dir(cleanup)
            cleanup.register_callback(
                "Close registry handles",
                PRIORITY_DRIVE_MAPPING,
                lambda: self.registry.close_under(""),
            )

            for scope in result.scopes:
                if scope.requires_mount and self._needs_hive(plan, scope):
                    result.handles[scope.key] = hives.acquire(scope)

            runner = ActionRunner(
                ActionContext(
                    runner=self.command_runner,
                    registry=self.registry,
                    scratch_dir=scratch_dir,
                    timeout=execution.command_timeout_seconds,
                ),
                rollback=rollback,
                summary=summary,
                policy=self.config.retry_policy(),
                worker_count=execution.worker_count,
                dry_run=self.dry_run,
                stop_on_hard_failure=self._stops_on_hard_failure(),
                sleep=self._sleep,
            )

            self._transition(RunState.EXECUTING)
            self._execute_plan(plan, result, runner)

            self._finish_execution(result, rollback, "mandatory action failed")

        except Exception as e:
            self.logger.exception(f"Unexpected error during provisioning run: {e}")
            result.unexpected_error = str(e) or type(e).__name__
            summary.add_error(f"Unexpected error: {e}")
            summary.increment("hard_failures")
            self._finish_execution(result, rollback, f"unexpected error: {e}")

        finally:
            self._transition(RunState.CLEANING_UP)
            result.cleanup = cleanup.run_all()
            self._release_leftovers(hives)
            summary.finish()
            self._transition(RunState.DONE, f"exit code {int(result.exit_code)}")
            result.state = self._state
            self.logger.info(
                f"Run finished with exit code {int(result.exit_code)}: "
                f"{summary.installed} installed, {summary.removed} removed, "
                f"{summary.modified} modified, {summary.already_satisfied} already satisfied, "
                f"{summary.errors} error(s), {summary.warnings} warning(s)"
            )

        return result

    def _stops_on_hard_failure(self) -> bool:
        execution = self.config.execution
        return execution.rollback_enabled and execution.stop_on_hard_failure

    def _finish_execution(self, result: RunResult, rollback: RollbackStack, reason: str) -> None:
        """Roll back if needed and settle the exit code."""
        summary = result.summary
        hard_failures = result.hard_failures
        if hard_failures == 0:
            result.exit_code = ExitCode.SUCCESS
            return

        result.exit_code = ExitCode.HARD_FAILURE

        if not self.config.execution.rollback_enabled:
            self.logger.warning("Hard failure with rollback disabled, changes are kept")
            summary.unrolled_hard_failures = hard_failures
            return

        if result.rollback is not None:
            return

        self._transition(RunState.ROLLING_BACK, reason)
        result.rollback = rollback.invoke_all(reason)
        if not result.rollback.success:
            summary.unrolled_hard_failures = hard_failures

    def _resolve_scopes(self, plan: list[PlanItem]) -> list[Scope]:
        """Scopes in execution order: machine, user profiles, default profile."""
        selectors = {item.selector for item in plan}
        if selectors <= {ScopeSelector.MACHINE}:
            scopes = [Scope.machine()]
        else:
            scopes = self.enumerator.enumerate_scopes(include_machine=True)

        order = {ScopeKind.MACHINE: 0, ScopeKind.USER_PROFILE: 1, ScopeKind.DEFAULT_PROFILE: 2}
        scopes = sorted(scopes, key=lambda scope: order[scope.kind])
        targeted = [
            scope for scope in scopes if any(s.matches(scope.kind) for s in selectors)
        ]
        self.logger.info(f"Targeting {len(targeted)} scope(s)")
        return targeted

    def _needs_hive(self, plan: list[PlanItem], scope: Scope) -> bool:
        return any(
            item.action.is_registry_action and item.selector.matches(scope.kind) for item in plan
        )

    def _prepare_scratch_dir(self, cleanup: CleanupRegistry) -> Path:
        scratch_dir = self.config.make_scratch_dir()
        cleanup.register_callback(
            "Remove scratch files",
            PRIORITY_SCRATCH_FILES,
            lambda: shutil.rmtree(scratch_dir, ignore_errors=True),
        )
        self.logger.debug(f"Scratch directory: {scratch_dir}")
        return scratch_dir

    def _execute_plan(
        self,
        plan: list[PlanItem],
        result: RunResult,
        runner: ActionRunner,
    ) -> list[ActionOutcome]:
        """Run every plan item against every scope it selects, appending to result.outcomes."""
        outcomes = result.outcomes
        stop = runner.stop_on_hard_failure
        stopped = False

        for scope in result.scopes:
            items = [item for item in plan if item.selector.matches(scope.kind)]
            if not items:
                continue

            handle = result.handles.get(scope.key)
            mounted = not scope.requires_mount or (handle is not None and handle.is_mounted)
            self.logger.info(f"Executing {len(items)} item(s) for scope {scope}")

            batch: list[tuple] = []
            for item in items:
                if stopped:
                    outcomes.append(runner.skipped(item.action, scope, NOT_ATTEMPTED))
                    continue

                if item.action.is_registry_action and not mounted:
                    outcomes.extend(runner.execute_batch(batch))
                    batch = []
                    stopped = stop and any(o.is_hard_failure for o in outcomes)
                    if stopped:
                        outcomes.append(runner.skipped(item.action, scope, NOT_ATTEMPTED))
                        continue

                    reason = handle.error_message if handle else "hive not mounted"
                    outcome = runner.skipped(
                        item.action,
                        scope,
                        f"scope unavailable: {reason}",
                        category=ErrorCategory.RESOURCE_ACQUISITION_FAILURE,
                        hard_failure=item.mandatory,
                    )
                    outcomes.append(outcome)
                    stopped = stop and outcome.is_hard_failure
                    continue

                batch.append((item.action, scope))

            if batch:
                outcomes.extend(runner.execute_batch(batch))
                stopped = stopped or (stop and any(o.is_hard_failure for o in outcomes))

        return outcomes

    def _release_leftovers(self, hives: HiveManager) -> None:
        """Release any hive still mounted after cleanup."""
        for handle in hives.handles:
            if handle.state == HandleState.MOUNTED and handle.scope.requires_mount:
                self.logger.warning(f"Hive HKU\\{handle.mount_name} still mounted after cleanup")
                hives.release(handle)


def create_orchestrator(config: Config) -> ProvisioningOrchestrator:
    """Create an orchestrator with default collaborators.

    Returns:
        ProvisioningOrchestrator instance
    """
    return ProvisioningOrchestrator(config)
