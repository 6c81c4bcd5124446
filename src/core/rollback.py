"""Rollback Stack - LIFO list of compensating actions.

Each successful, compensable action pushes a RollbackEntry. When a run
has to be undone, the entries are popped and executed in reverse
registration order. The unwind is best effort: a failing compensation
is logged and the remaining entries are still executed.
"""

import logging
import threading
from dataclasses import dataclass, field

from src.core.logging_config import log_action
from src.core.models import ErrorCategory, ExecutionSummary, RollbackEntry

logger = logging.getLogger("provisionr.core.rollback")


@dataclass
class RollbackReport:
    """Result of unwinding the rollback stack.

    Attributes:
        reason: Why the rollback was invoked
        attempted: Number of compensating actions attempted
        succeeded: Number of compensating actions that succeeded
        failed: Number of compensating actions that failed
        errors: Error messages for failed compensations
        simulated: Whether compensations were only logged (dry run)
    """

    reason: str
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)
    simulated: bool = False

    @property
    def success(self) -> bool:
        """Check whether every compensation succeeded."""
        return self.failed == 0


class RollbackStack:
    """LIFO stack of compensating actions.

    Append-only until invoke_all() is called, which drains it.

    Example:
        stack = RollbackStack()
        stack.push(RollbackEntry("Uninstall 7zip", lambda: uninstall("7zip")))
        report = stack.invoke_all("mandatory action failed")
        assert len(stack) == 0
    """

    def __init__(
        self,
        summary: ExecutionSummary | None = None,
        dry_run: bool = False,
    ) -> None:
        """Initialize the rollback stack.

        Args:
            summary: Execution summary to report into
            dry_run: If True, log compensations without executing them
        """
        self.summary = summary
        self.dry_run = dry_run
        self._entries: list[RollbackEntry] = []
        self._lock = threading.Lock()

    def push(self, entry: RollbackEntry) -> None:
        """Register a compensating action."""
        with self._lock:
            self._entries.append(entry)
        logger.debug(f"Registered rollback entry: {entry.description}")

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def entries(self) -> list[RollbackEntry]:
        """Snapshot of registered entries, oldest first."""
        with self._lock:
            return list(self._entries)

    def _pop(self) -> RollbackEntry | None:
        with self._lock:
            if not self._entries:
                return None
            return self._entries.pop()

    def invoke_all(self, reason: str) -> RollbackReport:
        """Execute every compensating action, most recent first.

        Args:
            reason: Why the rollback was invoked

        Returns:
            RollbackReport with the unwind outcome
        """
        report = RollbackReport(reason=reason, simulated=self.dry_run)
        logger.warning(f"Rolling back {len(self)} action(s): {reason}")

        while True:
            entry = self._pop()
            if entry is None:
                break

            report.attempted += 1

            if self.dry_run:
                logger.info(f"[DRY RUN] Would compensate: {entry.description}")
                report.succeeded += 1
                continue

            try:
                entry.compensating_action()
                report.succeeded += 1
                log_action(f"Compensate: {entry.description}", entry.scope_key, "SUCCESS")
                if self.summary:
                    self.summary.increment("rollbacks_performed")
            except Exception as e:
                message = f"Compensation failed for '{entry.description}': {e}"
                logger.error(message)
                report.failed += 1
                report.errors.append(message)
                log_action(
                    f"Compensate: {entry.description}",
                    entry.scope_key,
                    "HARD_FAILURE",
                    details=str(e),
                )
                if self.summary:
                    self.summary.increment("rollback_failures")
                    self.summary.add_error(message, ErrorCategory.ROLLBACK_COMPENSATION_FAILURE)

        logger.info(
            f"Rollback complete: {report.succeeded}/{report.attempted} compensations succeeded"
        )
        return report


def create_rollback_stack(
    summary: ExecutionSummary | None = None,
    dry_run: bool = False,
) -> RollbackStack:
    """Create a rollback stack.

    Args:
        summary: Execution summary to report into
        dry_run: If True, log compensations without executing them

    Returns:
        RollbackStack instance
    """
    return RollbackStack(summary=summary, dry_run=dry_run)
