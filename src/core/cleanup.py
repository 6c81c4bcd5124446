"""Cleanup Registry - guaranteed end-of-run cleanup callbacks.

Entries are registered whenever a resource is acquired and run exactly
once, highest priority first, from the orchestrator's finalization step.
Failures are logged and never raised.
"""

import itertools
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from src.core.models import CleanupEntry

logger = logging.getLogger("provisionr.core.cleanup")


@dataclass
class CleanupReport:
    """Result of running the cleanup registry.

    Attributes:
        executed: Names of entries run, in execution order
        failed: Names of entries that raised
        errors: Error messages for failed entries
    """

    executed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failed


class CleanupRegistry:
    """Priority-ordered registry of cleanup callbacks.

    Example:
        registry = CleanupRegistry()
        registry.register_callback("Unload hive", 75, unload)
        registry.register_callback("Delete scratch files", 50, rmtree)
        registry.run_all()  # unload first, then delete
    """

    def __init__(self) -> None:
        self._entries: list[CleanupEntry] = []
        self._sequence = itertools.count()
        self._lock = threading.Lock()
        self._has_run = False

    def register(self, entry: CleanupEntry) -> CleanupEntry:
        """Register a cleanup entry.

        Entries registered after run_all() wait for the next run_all() call;
        an entry is never run twice.
        """
        with self._lock:
            entry.sequence = next(self._sequence)
            self._entries.append(entry)
        logger.debug(f"Registered cleanup '{entry.name}' (priority {entry.priority})")
        return entry

    def register_callback(
        self,
        name: str,
        priority: int,
        action: Callable[[], Any],
    ) -> CleanupEntry:
        """Register a callback as a cleanup entry."""
        return self.register(CleanupEntry(name=name, priority=priority, cleanup_action=action))

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def has_run(self) -> bool:
        return self._has_run

    def pending(self) -> list[CleanupEntry]:
        """Registered entries in execution order."""
        with self._lock:
            return sorted(self._entries, key=lambda e: (-e.priority, e.sequence))

    def run_all(self) -> CleanupReport:
        """Run every registered entry once, highest priority first.

        Returns:
            CleanupReport with the names of executed and failed entries
        """
        with self._lock:
            entries = sorted(self._entries, key=lambda e: (-e.priority, e.sequence))
            self._entries = []
            self._has_run = True

        report = CleanupReport()
        if not entries:
            return report

        logger.info(f"Running {len(entries)} cleanup task(s)")

        for entry in entries:
            try:
                logger.debug(f"Cleanup [{entry.priority}] {entry.name}")
                entry.cleanup_action()
                report.executed.append(entry.name)
            except Exception as e:
                message = f"Cleanup '{entry.name}' failed: {e}"
                logger.warning(message)
                report.executed.append(entry.name)
                report.failed.append(entry.name)
                report.errors.append(message)

        return report


def create_cleanup_registry() -> CleanupRegistry:
    """Create an empty cleanup registry."""
    return CleanupRegistry()
