"""Hive Manager - acquire and release per-profile registry hives.

User and default-profile scopes keep their registry in an NTUSER.DAT
file that has to be loaded under HKEY_USERS before reg.exe or winreg can
touch it. This module owns those mounts for the lifetime of a run:

- acquire() loads a hive (or adopts one that is already mounted) and
  registers a cleanup entry that releases it at end of run.
- release() unloads it. Unloading fails while any handle into the hive
  is still open, so each attempt first drops managed references, closes
  our own handles and waits for the OS to settle. Processes that might
  hold a handle are only logged, never killed.

A hive that cannot be released is logged and left mounted until reboot;
it never fails the run.
"""

import gc
import logging
import time
from collections.abc import Callable
from pathlib import Path

import psutil

from src.core.shell import CommandRunner
from src.core.cleanup import CleanupRegistry
from src.core.models import (
    PRIORITY_MOUNTED_HIVE,
    CommandResult,
    ErrorCategory,
    ExecutionSummary,
    HandleState,
    RegistryHandle,
    ReleaseOutcome,
    Scope,
)
from src.core.registry import RegistryReader

logger = logging.getLogger("provisionr.core.hives")

DEFAULT_RELEASE_DELAYS = (0.0, 5.0, 3.0)
DEFAULT_SETTLE_DELAY = 1.0

# Processes that commonly keep a loaded user hive open
HIVE_HOLDER_PROCESSES = (
    "regedit.exe",
    "reg.exe",
    "dllhost.exe",
    "searchprotocolhost.exe",
    "searchindexer.exe",
    "explorer.exe",
    "msmpeng.exe",
)


class HiveManager:
    """Manager for mounted registry hives.

    Example:
        manager = HiveManager(runner, reader, cleanup)
        handle = manager.acquire(scope)
        if handle.is_mounted:
            ...  # run registry actions against scope.registry_root
        manager.release(handle)
    """

    def __init__(
        self,
        runner: CommandRunner | None = None,
        reader: RegistryReader | None = None,
        cleanup: CleanupRegistry | None = None,
        summary: ExecutionSummary | None = None,
        release_delays: tuple[float, ...] | list[float] = DEFAULT_RELEASE_DELAYS,
        settle_delay: float = DEFAULT_SETTLE_DELAY,
        dry_run: bool = False,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the hive manager.

        Args:
            runner: Command runner used for reg.exe
            reader: Registry reader whose handles are closed before unload
            cleanup: Cleanup registry for guaranteed release
            summary: Execution summary to report into
            release_delays: Seconds to wait before each unload attempt
            settle_delay: Seconds to wait after closing handles
            dry_run: If True, simulate load and unload
            sleep: Sleep function (injectable for tests)
        """
        self.runner = runner or CommandRunner(timeout=60)
        self.reader = reader or RegistryReader()
        self.cleanup = cleanup
        self.summary = summary
        self.release_delays = tuple(release_delays) or DEFAULT_RELEASE_DELAYS
        self.settle_delay = settle_delay
        self.dry_run = dry_run
        self._sleep = sleep
        self._handles: dict[str, RegistryHandle] = {}

    @property
    def handles(self) -> list[RegistryHandle]:
        """All handles acquired by this manager."""
        return list(self._handles.values())

    def get_handle(self, scope: Scope) -> RegistryHandle | None:
        return self._handles.get(scope.key)

    def acquire(self, scope: Scope) -> RegistryHandle:
        """Mount the registry hive for a scope.

        Args:
            scope: Scope to mount

        Returns:
            RegistryHandle; check is_mounted for success
        """
        existing = self._handles.get(scope.key)
        if existing and existing.is_mounted:
            return existing

        handle = RegistryHandle(scope=scope)
        self._handles[scope.key] = handle

        if not scope.requires_mount:
            handle.state = HandleState.MOUNTED
            return handle

        if self.dry_run:
            logger.info(f"[DRY RUN] Would load hive {scope.hive_path} at HKU\\{scope.mount_name}")
            handle.state = HandleState.MOUNTED
            handle.simulated = True
            return handle

        mount_name = scope.mount_name

        if self.test(mount_name):
            logger.info(f"Hive for {scope} already mounted at HKU\\{mount_name}, adopting it")
            handle.state = HandleState.MOUNTED
            handle.adopted = True
            self._register_release(handle)
            return handle

        if self._mount_point_exists(mount_name):
            # Present but unreadable: tear down before reloading
            logger.warning(f"Stale mount found at HKU\\{mount_name}, unloading before reuse")
            self._unload(mount_name)

        if not scope.hive_path or not Path(scope.hive_path).exists():
            return self._acquisition_failed(handle, f"Hive file not found: {scope.hive_path}")

        result = self.runner.run(["reg.exe", "load", f"HKU\\{mount_name}", scope.hive_path])
        if not result.succeeded:
            error = result.stderr or result.stdout or f"exit code {result.exit_code}"
            return self._acquisition_failed(handle, f"reg load failed: {error}")

        handle.state = HandleState.MOUNTED
        logger.info(f"Loaded hive for {scope} at HKU\\{mount_name}")
        self._register_release(handle)
        return handle

    def _register_release(self, handle: RegistryHandle) -> None:
        """Guarantee a release attempt at end of run."""
        if self.cleanup is not None:
            self.cleanup.register_callback(
                f"Unload hive HKU\\{handle.mount_name}",
                PRIORITY_MOUNTED_HIVE,
                lambda: self.release(handle),
            )

    def _acquisition_failed(self, handle: RegistryHandle, message: str) -> RegistryHandle:
        handle.state = HandleState.UNMOUNTED
        handle.error_message = message
        logger.warning(f"Could not mount hive for {handle.scope}: {message}")
        if self.summary:
            self.summary.add_warning(
                f"{handle.scope}: {message}",
                ErrorCategory.RESOURCE_ACQUISITION_FAILURE,
            )
        return handle

    def release(self, handle: RegistryHandle) -> ReleaseOutcome:
        """Unload a mounted hive.

        Retries with increasing delay. A final failure is logged and
        reported as ReleaseOutcome.FAILED; it is never raised.

        Args:
            handle: Handle returned by acquire()

        Returns:
            ReleaseOutcome
        """
        if handle.state not in (HandleState.MOUNTED, HandleState.RELEASE_FAILED):
            return ReleaseOutcome.NOT_MOUNTED

        if not handle.scope.requires_mount:
            handle.state = HandleState.UNMOUNTED
            return ReleaseOutcome.NOT_MOUNTED

        if handle.simulated or self.dry_run:
            logger.info(f"[DRY RUN] Would unload hive HKU\\{handle.mount_name}")
            handle.state = HandleState.UNMOUNTED
            return ReleaseOutcome.SIMULATED

        handle.state = HandleState.RELEASE_PENDING
        mount_name = handle.mount_name
        last_error = ""
        total = len(self.release_delays)

        for attempt, delay in enumerate(self.release_delays, start=1):
            if delay > 0:
                self._sleep(delay)

            handle.release_attempts += 1
            result = self._unload(mount_name)

            if result.succeeded:
                handle.state = HandleState.UNMOUNTED
                handle.error_message = None
                logger.info(f"Unloaded hive HKU\\{mount_name} (attempt {attempt}/{total})")
                return ReleaseOutcome.RELEASED

            last_error = result.stderr or result.stdout or f"exit code {result.exit_code}"
            logger.debug(f"Unload attempt {attempt}/{total} for HKU\\{mount_name} failed: {last_error}")
            self._log_hive_holders(mount_name)

        handle.state = HandleState.RELEASE_FAILED
        handle.error_message = last_error
        message = (
            f"Could not unload HKU\\{mount_name} after {total} attempts: {last_error}. "
            "The hive stays mounted until the next reboot."
        )
        logger.warning(message)
        if self.summary:
            self.summary.add_warning(message, ErrorCategory.RESOURCE_RELEASE_FAILURE)
        return ReleaseOutcome.FAILED

    def _unload(self, mount_name: str) -> CommandResult:
        """Run one unload attempt after dropping every handle we can."""
        gc.collect()
        closed = self.reader.close_under(f"HKU\\{mount_name}")
        if closed:
            logger.debug(f"Closed {closed} registry handle(s) under HKU\\{mount_name}")
        if self.settle_delay > 0:
            self._sleep(self.settle_delay)
        return self.runner.run(["reg.exe", "unload", f"HKU\\{mount_name}"])

    def _log_hive_holders(self, mount_name: str) -> None:
        """Log processes that may be holding a handle into the hive."""
        holders = find_hive_holders()
        if holders:
            logger.info(
                f"Processes that may hold HKU\\{mount_name} open: "
                + ", ".join(f"{name} (pid {pid})" for pid, name in holders)
            )

    def test(self, name: str) -> bool:
        """Check that a mount point exists and is actually readable.

        Args:
            name: Mount point name under HKEY_USERS

        Returns:
            True if the mount is live and readable
        """
        try:
            return self.reader.is_readable(f"HKU\\{name}")
        except ImportError:
            return False

    def _mount_point_exists(self, name: str) -> bool:
        try:
            return self.reader.key_exists(f"HKU\\{name}")
        except ImportError:
            return False

    def release_all(self) -> dict[str, ReleaseOutcome]:
        """Release every handle this manager acquired.

        Returns:
            Mapping of scope key to release outcome
        """
        return {key: self.release(handle) for key, handle in list(self._handles.items())}


def find_hive_holders() -> list[tuple[int, str]]:
    """List running processes that commonly hold user hives open.

    Returns:
        List of (pid, process name) tuples
    """
    holders: list[tuple[int, str]] = []
    try:
        for proc in psutil.process_iter(["pid", "name"]):
            name = (proc.info.get("name") or "").lower()
            if name in HIVE_HOLDER_PROCESSES:
                holders.append((proc.info["pid"], name))
    except psutil.Error as e:
        logger.debug(f"Could not enumerate processes: {e}")
    return holders


def create_hive_manager(
    runner: CommandRunner | None = None,
    reader: RegistryReader | None = None,
    cleanup: CleanupRegistry | None = None,
    dry_run: bool = False,
) -> HiveManager:
    """Create a hive manager with default release timing.

    Returns:
        HiveManager instance
    """
    return HiveManager(runner=runner, reader=reader, cleanup=cleanup, dry_run=dry_run)
