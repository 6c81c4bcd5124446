"""Shell-tool boundary - runs external command-line tools.

Every action talks to the system through a CommandRunner, which runs one
external tool and returns its exit status and captured output as a
CommandResult. Timeouts kill the child process and are reported on the
result rather than raised.
"""

import logging
import subprocess
import time

from src.core.models import CommandResult

logger = logging.getLogger("provisionr.core.shell")

# Exit code cmd.exe reports for an unknown command
COMMAND_NOT_FOUND = 9009

DEFAULT_TIMEOUT_SECONDS = 600


class CommandRunner:
    """Runs external tools with captured output.

    Example:
        runner = CommandRunner(timeout=120)
        result = runner.run(["sc.exe", "qc", "DiagTrack"])
        if result.succeeded:
            print(result.stdout)
    """

    def __init__(self, timeout: int = DEFAULT_TIMEOUT_SECONDS) -> None:
        """Initialize the command runner.

        Args:
            timeout: Default timeout in seconds for each invocation
        """
        self.timeout = timeout

    def run(self, argv: list[str], timeout: int | None = None) -> CommandResult:
        """Run a command and capture its output.

        Args:
            argv: Command line as a list
            timeout: Timeout in seconds (defaults to the runner's timeout)

        Returns:
            CommandResult with exit code and output
        """
        timeout = timeout or self.timeout
        start = time.perf_counter()
        logger.debug(f"RUN: {' '.join(argv)}")

        try:
            completed = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=timeout,
                creationflags=(
                    subprocess.CREATE_NO_WINDOW if hasattr(subprocess, "CREATE_NO_WINDOW") else 0
                ),
            )
            return CommandResult(
                argv=list(argv),
                exit_code=completed.returncode,
                stdout=(completed.stdout or "").strip(),
                stderr=(completed.stderr or "").strip(),
                duration_ms=(time.perf_counter() - start) * 1000,
            )

        except subprocess.TimeoutExpired:
            logger.warning(f"Command timed out after {timeout}s: {argv[0]}")
            return CommandResult(
                argv=list(argv),
                exit_code=None,
                stderr="Command timed out",
                timed_out=True,
                duration_ms=(time.perf_counter() - start) * 1000,
            )

        except FileNotFoundError:
            logger.error(f"Executable not found: {argv[0]}")
            return CommandResult(
                argv=list(argv),
                exit_code=COMMAND_NOT_FOUND,
                stderr=f"Executable not found: {argv[0]}",
                duration_ms=(time.perf_counter() - start) * 1000,
            )

    def powershell(self, script: str, timeout: int | None = None) -> CommandResult:
        """Run a PowerShell script.

        Args:
            script: PowerShell command text
            timeout: Timeout in seconds

        Returns:
            CommandResult with exit code and output
        """
        return self.run(
            [
                "powershell.exe",
                "-NoProfile",
                "-NonInteractive",
                "-ExecutionPolicy",
                "Bypass",
                "-Command",
                script,
            ],
            timeout=timeout,
        )


def quote_powershell(value: str) -> str:
    """Quote a value as a PowerShell single-quoted string literal."""
    return "'" + value.replace("'", "''") + "'"
