"""Action Runner - Executes actions with idempotency, retries and rollback.

For every (action, scope) pair the runner:
1. Asks the action whether the change is already in place and, if so,
   returns SUCCESS without calling any tool.
2. Captures compensation state for reversible actions.
3. Applies the action and classifies the tool's exit status, retrying
   transient failures with exponential backoff.
4. Pushes a rollback entry after a reversible apply that changed something.

Failures become SOFT_FAILURE, or HARD_FAILURE for mandatory actions.
Whether a hard failure triggers a global rollback is up to the caller.
"""

import functools
import logging
import time
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor

from tenacity import RetryCallState, Retrying, retry_if_result, stop_after_attempt, wait_exponential

from src.actions.base import Action, ActionContext
from src.core.logging_config import log_action
from src.core.models import (
    ActionOutcome,
    ErrorCategory,
    ExecutionSummary,
    ExitClassification,
    OutcomeStatus,
    RetryPolicy,
    RollbackEntry,
    Scope,
)
from src.core.rollback import RollbackStack

logger = logging.getLogger("provisionr.actions.runner")

DEFAULT_WORKER_COUNT = 3

WorkItem = tuple[Action, Scope]


def build_retrying(
    policy: RetryPolicy,
    sleep: Callable[[float], None] = time.sleep,
    before_sleep: Callable[[RetryCallState], None] | None = None,
) -> Retrying:
    """Build the retry controller for one action.

    The controlled function returns an ExitClassification. Transient
    failures are retried with exponential backoff; once attempts run out
    the last classification is returned instead of raising.

    Args:
        policy: Attempts and backoff parameters
        sleep: Wait function used between attempts
        before_sleep: Called before each wait

    Returns:
        tenacity Retrying controller
    """
    return Retrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait_exponential(
            multiplier=policy.initial_delay,
            exp_base=policy.backoff_multiplier,
            max=policy.max_delay,
        ),
        retry=retry_if_result(lambda c: c == ExitClassification.TRANSIENT_FAILURE),
        sleep=sleep,
        before_sleep=before_sleep,
        retry_error_callback=lambda retry_state: retry_state.outcome.result(),
    )


class ActionRunner:
    """Runs actions against scopes.

    In execute_batch() the registry actions of one scope run one after
    another in plan order on a single worker, so no two of them touch the
    same mounted hive at once. Other actions run freely on the worker pool.

    Example:
        runner = ActionRunner(context, rollback=stack, summary=summary)
        outcome = runner.execute(PackageInstall("7zip.7zip"), Scope.machine())
        if not outcome.success:
            print(outcome.error_message)
    """

    def __init__(
        self,
        context: ActionContext,
        rollback: RollbackStack | None = None,
        summary: ExecutionSummary | None = None,
        policy: RetryPolicy | None = None,
        worker_count: int = DEFAULT_WORKER_COUNT,
        dry_run: bool = False,
        stop_on_hard_failure: bool = False,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the action runner.

        Args:
            context: Collaborators passed to every action
            rollback: Stack that receives compensating actions
            summary: Execution summary to report into
            policy: Default retry policy
            worker_count: Size of the worker pool for execute_batch()
            dry_run: If True, log what would be applied without applying it
            stop_on_hard_failure: Stop execute_batch() at the first hard failure
            sleep: Wait function used between retries
        """
        self.context = context
        self.rollback = rollback
        self.summary = summary
        self.policy = policy or RetryPolicy()
        self.worker_count = max(1, worker_count)
        self.dry_run = dry_run
        self.stop_on_hard_failure = stop_on_hard_failure
        self._sleep = sleep

    def execute(
        self,
        action: Action,
        scope: Scope,
        policy: RetryPolicy | None = None,
        mandatory: bool | None = None,
    ) -> ActionOutcome:
        """Execute one action against one scope.

        Args:
            action: Action to run
            scope: Scope to run it against
            policy: Retry policy (defaults to the runner's policy)
            mandatory: Override the action's mandatory flag

        Returns:
            ActionOutcome describing what happened. Never raises for
            action or tool failures.
        """
        return self._execute(action, scope, policy or self.policy, mandatory)

    def _execute(
        self,
        action: Action,
        scope: Scope,
        policy: RetryPolicy,
        mandatory: bool | None,
    ) -> ActionOutcome:
        is_mandatory = action.mandatory if mandatory is None else mandatory
        description = action.description

        if self._check_satisfied(action, scope):
            outcome = ActionOutcome(
                status=OutcomeStatus.SUCCESS,
                action_description=description,
                scope_key=scope.key,
                already_satisfied=True,
                mandatory=is_mandatory,
            )
            self._record(outcome)
            return outcome

        if self.dry_run:
            logger.info(f"[DRY RUN] Would apply: {description} ({scope})")
            outcome = ActionOutcome(
                status=OutcomeStatus.SUCCESS,
                action_description=description,
                scope_key=scope.key,
                simulated=True,
                mandatory=is_mandatory,
            )
            if action.is_compensable and self.rollback is not None:
                self._push_rollback(action, scope, {})
                outcome.rollback_registered = True
            self._record(outcome, action)
            return outcome

        state = None
        if action.is_compensable:
            try:
                state = action.capture_state(scope, self.context)
            except Exception as e:
                logger.warning(f"Could not capture state for {description} ({scope}): {e}")

        attempts = 0
        last_error = ""

        def attempt() -> ExitClassification:
            nonlocal attempts, last_error
            attempts += 1
            try:
                result = action.apply(scope, self.context)
                classification = action.classify(result)
            except Exception as e:
                logger.warning(f"{description} raised on attempt {attempts}: {e}")
                last_error = str(e)
                return ExitClassification.TRANSIENT_FAILURE

            if not classification.is_success:
                last_error = (
                    result.stderr.strip()
                    or result.stdout.strip()
                    or ("timed out" if result.timed_out else f"exit code {result.exit_code}")
                )
            logger.debug(
                f"{description} ({scope}) attempt {attempts}/{policy.max_attempts}: "
                f"{classification.value}"
            )
            return classification

        def log_retry(retry_state: RetryCallState) -> None:
            logger.info(
                f"Transient failure for {description} ({scope}), "
                f"retrying in {retry_state.next_action.sleep:.1f}s"
            )

        classification = build_retrying(policy, self._sleep, before_sleep=log_retry)(attempt)

        if classification.is_success:
            already = classification == ExitClassification.ALREADY_IN_PRIOR_STATE
            outcome = ActionOutcome(
                status=OutcomeStatus.SUCCESS,
                action_description=description,
                scope_key=scope.key,
                attempts=attempts,
                classification=classification,
                already_satisfied=already,
                mandatory=is_mandatory,
            )
            # A change found already in place is never rolled back.
            if not already and action.is_compensable and state is not None and self.rollback is not None:
                self._push_rollback(action, scope, state)
                outcome.rollback_registered = True
            self._record(outcome, action)
            return outcome

        category = (
            ErrorCategory.TRANSIENT_ACTION_FAILURE
            if classification == ExitClassification.TRANSIENT_FAILURE
            else ErrorCategory.PERMANENT_ACTION_FAILURE
        )
        outcome = ActionOutcome(
            status=OutcomeStatus.HARD_FAILURE if is_mandatory else OutcomeStatus.SOFT_FAILURE,
            action_description=description,
            scope_key=scope.key,
            attempts=attempts,
            classification=classification,
            error_category=category,
            error_message=last_error,
            mandatory=is_mandatory,
        )
        self._record(outcome)
        return outcome

    def _check_satisfied(self, action: Action, scope: Scope) -> bool:
        try:
            return action.is_already_satisfied(scope, self.context)
        except Exception as e:
            logger.warning(f"Idempotency check failed for {action.description} ({scope}): {e}")
            return False

    def _push_rollback(self, action: Action, scope: Scope, state: dict) -> None:
        self.rollback.push(
            RollbackEntry(
                description=f"{action.description} ({scope})",
                compensating_action=functools.partial(action.compensate, scope, self.context, state),
                scope_key=scope.key,
            )
        )

    def _record(self, outcome: ActionOutcome, action: Action | None = None) -> None:
        """Log an outcome and count it in the summary."""
        details = ""
        if outcome.already_satisfied:
            details = "already satisfied"
        elif outcome.simulated:
            details = "dry run"
        elif outcome.error_message:
            details = outcome.error_message

        log_action(
            outcome.action_description,
            outcome.scope_key,
            outcome.status.value,
            attempt=outcome.attempts or None,
            classification=outcome.classification.value if outcome.classification else "",
            details=details,
        )

        if self.summary is None:
            return

        if outcome.status == OutcomeStatus.SUCCESS:
            if outcome.already_satisfied:
                self.summary.increment("already_satisfied")
            elif action is not None:
                self.summary.increment(action.summary_counter)
        elif outcome.status == OutcomeStatus.SKIPPED:
            self.summary.increment("skipped")
        else:
            message = (
                f"{outcome.action_description} on {outcome.scope_key} failed after "
                f"{outcome.attempts} attempt(s): {outcome.error_message}"
            )
            self.summary.add_error(message, outcome.error_category)
            if outcome.is_hard_failure:
                self.summary.increment("hard_failures")

    def skipped(
        self,
        action: Action,
        scope: Scope,
        reason: str,
        category: ErrorCategory | None = None,
        hard_failure: bool = False,
    ) -> ActionOutcome:
        """Record an action that was never attempted.

        Args:
            action: Action that was not run
            scope: Scope it would have run against
            reason: Why it was not run
            category: Error category, if skipping is an error
            hard_failure: Whether the skip counts as a hard failure

        Returns:
            SKIPPED outcome, or HARD_FAILURE when hard_failure is set
        """
        outcome = ActionOutcome(
            status=OutcomeStatus.HARD_FAILURE if hard_failure else OutcomeStatus.SKIPPED,
            action_description=action.description,
            scope_key=scope.key,
            error_category=category,
            error_message=reason,
            mandatory=action.mandatory,
        )
        self._record(outcome)
        if hard_failure and self.summary is not None:
            self.summary.increment("skipped")
        return outcome

    def execute_batch(
        self,
        items: Sequence[WorkItem],
        policy: RetryPolicy | None = None,
    ) -> list[ActionOutcome]:
        """Execute many (action, scope) pairs on the worker pool.

        With stop_on_hard_failure, mandatory actions act as barriers: all
        earlier items finish first, the mandatory action runs alone, and a
        hard failure marks every later item SKIPPED without attempting it.

        Returns:
            Outcomes in the same order as items
        """
        results: list[ActionOutcome | None] = [None] * len(items)
        indexed = list(enumerate(items))

        if not self.stop_on_hard_failure:
            self._run_parallel(indexed, results, policy)
            return results

        segment: list[tuple[int, WorkItem]] = []
        for index, (action, scope) in indexed:
            if not action.mandatory:
                segment.append((index, (action, scope)))
                continue

            self._run_parallel(segment, results, policy)
            segment = []

            outcome = self.execute(action, scope, policy)
            results[index] = outcome
            if outcome.is_hard_failure:
                logger.error(f"Hard failure: {action.description} ({scope}), stopping batch")
                for rest_index, (rest_action, rest_scope) in indexed[index + 1 :]:
                    results[rest_index] = self.skipped(
                        rest_action, rest_scope, "not attempted after hard failure"
                    )
                return results

        self._run_parallel(segment, results, policy)
        return results

    def _run_parallel(
        self,
        indexed: list[tuple[int, WorkItem]],
        results: list[ActionOutcome | None],
        policy: RetryPolicy | None,
    ) -> None:
        if not indexed:
            return

        if self.worker_count == 1 or len(indexed) == 1:
            for index, (action, scope) in indexed:
                results[index] = self.execute(action, scope, policy)
            return

        # One task per non-registry item, one ordered chain per scope for registry items
        tasks: list[list[tuple[int, WorkItem]]] = []
        chains: dict[str, list[tuple[int, WorkItem]]] = {}
        for index, (action, scope) in indexed:
            if not action.is_registry_action:
                tasks.append([(index, (action, scope))])
                continue
            chain = chains.get(scope.key)
            if chain is None:
                chain = chains[scope.key] = []
                tasks.append(chain)
            chain.append((index, (action, scope)))

        with ThreadPoolExecutor(
            max_workers=self.worker_count, thread_name_prefix="provisionr-worker"
        ) as pool:
            futures = [pool.submit(self._run_chain, task, policy) for task in tasks]
            for future in futures:
                for index, outcome in future.result():
                    results[index] = outcome

    def _run_chain(
        self,
        chain: list[tuple[int, WorkItem]],
        policy: RetryPolicy | None,
    ) -> list[tuple[int, ActionOutcome]]:
        """Run items one after another, in order."""
        return [(index, self.execute(action, scope, policy)) for index, (action, scope) in chain]


def create_action_runner(
    context: ActionContext,
    rollback: RollbackStack | None = None,
    summary: ExecutionSummary | None = None,
    policy: RetryPolicy | None = None,
    worker_count: int = DEFAULT_WORKER_COUNT,
    dry_run: bool = False,
    stop_on_hard_failure: bool = False,
) -> ActionRunner:
    """Create an action runner.

    Returns:
        ActionRunner instance
    """
    return ActionRunner(
        context,
        rollback=rollback,
        summary=summary,
        policy=policy,
        worker_count=worker_count,
        dry_run=dry_run,
        stop_on_hard_failure=stop_on_hard_failure,
    )
