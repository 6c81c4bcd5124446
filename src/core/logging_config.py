"""Logging configuration for Provisionr.

This module sets up structured logging with file rotation,
separate logs for different concerns (main, actions, events).
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

# Log format constants
DEFAULT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DETAILED_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(filename)s:%(lineno)d | %(message)s"
SIMPLE_FORMAT = "%(levelname)s: %(message)s"
EVENT_FORMAT = "%(asctime)s | %(levelname)-8s | %(message)s"

# Default settings
DEFAULT_LOG_LEVEL = logging.INFO
DEFAULT_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
DEFAULT_BACKUP_COUNT = 5

ROOT_LOGGER_NAME = "provisionr"


class ProvisionLogger:
    """Centralized logger management for Provisionr.

    Manages multiple log files for different concerns:
        - main.log: General application logging
        - actions.log: One record per action outcome and compensation
        - events.log: One record per orchestrator state transition
    """

    _instance: Optional["ProvisionLogger"] = None
    _initialized: bool = False

    def __new__(cls) -> "ProvisionLogger":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        if self._initialized:
            return

        self.logs_dir: Path | None = None
        self.log_level: int = DEFAULT_LOG_LEVEL
        self.loggers: dict[str, logging.Logger] = {}
        self._initialized = True

    def setup(
        self,
        logs_dir: Path,
        log_level: int = DEFAULT_LOG_LEVEL,
        console_output: bool = True,
    ) -> None:
        """Initialize logging with specified configuration.

        Args:
            logs_dir: Directory for log files.
            log_level: Logging level (e.g., logging.INFO).
            console_output: Whether to also log to console.
        """
        self.logs_dir = logs_dir
        self.log_level = log_level

        logs_dir.mkdir(parents=True, exist_ok=True)

        root_logger = logging.getLogger(ROOT_LOGGER_NAME)
        root_logger.setLevel(log_level)
        root_logger.handlers.clear()

        main_handler = self._create_file_handler(
            logs_dir / "main.log",
            DETAILED_FORMAT,
        )
        root_logger.addHandler(main_handler)

        if console_output:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(log_level)
            console_handler.setFormatter(logging.Formatter(SIMPLE_FORMAT))
            root_logger.addHandler(console_handler)

        self.loggers["main"] = root_logger

        self._setup_dedicated_logger("actions", logs_dir / "actions.log")
        self._setup_dedicated_logger("events", logs_dir / "events.log")

    def _create_file_handler(
        self,
        log_path: Path,
        format_string: str,
        max_bytes: int = DEFAULT_MAX_BYTES,
        backup_count: int = DEFAULT_BACKUP_COUNT,
    ) -> RotatingFileHandler:
        """Create a rotating file handler.

        Args:
            log_path: Path to the log file.
            format_string: Log format string.
            max_bytes: Maximum file size before rotation.
            backup_count: Number of backup files to keep.

        Returns:
            Configured RotatingFileHandler.
        """
        handler = RotatingFileHandler(
            log_path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        handler.setLevel(self.log_level)
        handler.setFormatter(logging.Formatter(format_string))
        return handler

    def _setup_dedicated_logger(self, name: str, log_path: Path) -> None:
        """Setup a non-propagating logger with its own file."""
        logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
        logger.setLevel(self.log_level)
        logger.propagate = False
        logger.handlers.clear()

        handler = self._create_file_handler(log_path, EVENT_FORMAT)
        logger.addHandler(handler)
        self.loggers[name] = logger

    def get_logger(self, name: str = "main") -> logging.Logger:
        """Get a logger by name.

        Args:
            name: Logger name ("main", "actions", "events").

        Returns:
            The requested logger, or a child of the main logger if not found.
        """
        if name in self.loggers:
            return self.loggers[name]

        if name == "main":
            return logging.getLogger(ROOT_LOGGER_NAME)
        return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")

    def flush(self) -> None:
        """Flush every handler owned by Provisionr loggers."""
        seen: set[int] = set()
        for logger in [logging.getLogger(ROOT_LOGGER_NAME), *self.loggers.values()]:
            for handler in logger.handlers:
                if id(handler) in seen:
                    continue
                seen.add(id(handler))
                handler.flush()


# Global logger instance
_logger_manager = ProvisionLogger()


def setup_logging(
    logs_dir: Path,
    log_level: int = DEFAULT_LOG_LEVEL,
    console_output: bool = True,
) -> None:
    """Initialize the logging system.

    This should be called once at application startup.

    Args:
        logs_dir: Directory for log files.
        log_level: Logging level (default: INFO).
        console_output: Whether to also log to console (default: True).
    """
    _logger_manager.setup(logs_dir, log_level, console_output)


def get_logger(name: str = "main") -> logging.Logger:
    """Get a logger instance.

    Args:
        name: Logger name. Options:
            - "main": General application logging
            - "actions": Action outcome logging
            - "events": State transition logging

    Returns:
        Logger instance.
    """
    return _logger_manager.get_logger(name)


def flush_logs() -> None:
    """Flush all log handlers."""
    _logger_manager.flush()


def format_event(
    component: str,
    message: str,
    scope: str = "",
    attempt: int | None = None,
    classification: str = "",
) -> str:
    """Format a structured event as a pipe-delimited record.

    The timestamp and level are added by the log formatter.
    """
    fields = [component, message]
    fields.append(f"scope={scope or '-'}")
    fields.append(f"attempt={attempt if attempt is not None else '-'}")
    fields.append(f"classification={classification or '-'}")
    return " | ".join(fields)


def log_action(
    action_description: str,
    scope: str,
    status: str,
    attempt: int | None = None,
    classification: str = "",
    details: str = "",
) -> None:
    """Log an action outcome.

    Args:
        action_description: Description of the action.
        scope: Key of the scope the action ran against.
        status: Outcome status (SUCCESS, SOFT_FAILURE, ...).
        attempt: Number of attempts made.
        classification: Exit classification of the last attempt.
        details: Additional details about the action.
    """
    logger = get_logger("actions")
    message = f"{action_description} | {status}"
    if details:
        message += f" | {details}"

    record = format_event("ActionRunner", message, scope, attempt, classification)
    if status in ("SUCCESS", "SKIPPED"):
        logger.info(record)
    elif status == "SOFT_FAILURE":
        logger.warning(record)
    else:
        logger.error(record)


def log_transition(from_state: str, to_state: str, details: str = "") -> None:
    """Log an orchestrator state transition.

    Args:
        from_state: State being left.
        to_state: State being entered.
        details: Additional details about the transition.
    """
    logger = get_logger("events")
    message = f"{from_state} -> {to_state}"
    if details:
        message += f" | {details}"
    logger.info(format_event("Orchestrator", message))
