#!/usr/bin/env python3
"""Provisionr - Transactional Windows provisioning engine.

Entry point for the command-line interface.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from src.actions.plan import PlanError, load_plan
from src.core.config import Config, load_config, save_config
from src.core.hives import HiveManager
from src.core.logging_config import get_logger, setup_logging
from src.core.models import ExitCode, ReleaseOutcome
from src.core.orchestrator import ProvisioningOrchestrator, RunResult
from src.core.preflight import PreflightRequirements, PreflightValidator
from src.discovery.profiles import ProfileEnumerator


def create_argument_parser() -> argparse.ArgumentParser:
    """Create the command-line argument parser."""
    parser = argparse.ArgumentParser(
        prog="provisiond",
        description="Transactional provisioning engine for Windows",
        epilog="Exit codes: 0 success, 1 hard failure, 2 preflight abort.",
    )

    parser.add_argument(
        "--version",
        action="version",
        version="%(prog)s 0.1.0",
    )

    parser.add_argument(
        "--config",
        type=Path,
        help="Path to configuration file",
    )

    parser.add_argument(
        "--verbose", "-v",
        action="count",
        default=0,
        help="Increase verbosity (use -vv for debug)",
    )

    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Suppress console output",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Run command
    run_parser = subparsers.add_parser("run", help="Apply a provisioning plan")
    run_parser.add_argument(
        "--plan", "-p",
        type=Path,
        help="Plan file (default: plan.json in the config directory)",
    )
    run_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log what would change without changing anything",
    )
    run_parser.add_argument(
        "--no-rollback",
        action="store_true",
        help="Keep completed changes when a mandatory action fails",
    )
    run_parser.add_argument(
        "--workers", "-w",
        type=int,
        help="Number of worker threads",
    )
    run_parser.add_argument(
        "--json",
        action="store_true",
        help="Output results as JSON",
    )

    # Preflight command
    preflight_parser = subparsers.add_parser("preflight", help="Run environment checks only")
    preflight_parser.add_argument(
        "--json",
        action="store_true",
        help="Output results as JSON",
    )

    # Profiles command
    profiles_parser = subparsers.add_parser("profiles", help="List provisioning scopes")
    profiles_parser.add_argument(
        "--json",
        action="store_true",
        help="Output results as JSON",
    )

    # Unmount command
    unmount_parser = subparsers.add_parser(
        "unmount", help="Unload hives left mounted by an interrupted run"
    )
    unmount_parser.add_argument(
        "--json",
        action="store_true",
        help="Output results as JSON",
    )

    # Config command
    config_parser = subparsers.add_parser("config", help="Manage configuration")
    config_parser.add_argument(
        "--init",
        action="store_true",
        help="Create default configuration file",
    )
    config_parser.add_argument(
        "--show",
        action="store_true",
        help="Show current configuration",
    )

    return parser


def get_log_level(verbose: int) -> int:
    """Get logging level from verbosity count."""
    if verbose >= 2:
        return logging.DEBUG
    elif verbose >= 1:
        return logging.INFO
    return logging.WARNING


def print_run_result(result: RunResult) -> None:
    """Print a human-readable run summary."""
    summary = result.summary
    mode = " (dry run)" if result.dry_run else ""

    print(f"\nProvisioning finished{mode} in {summary.elapsed_seconds:.1f}s")
    print(f"  Installed:         {summary.installed}")
    print(f"  Removed:           {summary.removed}")
    print(f"  Modified:          {summary.modified}")
    print(f"  Already satisfied: {summary.already_satisfied}")
    print(f"  Skipped:           {summary.skipped}")
    print(f"  Hard failures:     {summary.hard_failures}")

    if result.rollback is not None:
        print(
            f"\nRollback: {result.rollback.succeeded}/{result.rollback.attempted} "
            f"compensations succeeded"
        )

    if summary.error_messages:
        print("\nErrors:")
        for message in summary.error_messages:
            print(f"  - {message}")

    if summary.warning_messages:
        print("\nWarnings:")
        for message in summary.warning_messages:
            print(f"  - {message}")

    print(f"\nExit code: {int(result.exit_code)}")


def run_provision(args: argparse.Namespace, config: Config) -> int:
    """Execute the run command."""
    logger = get_logger("main")

    if args.dry_run:
        config.execution.dry_run = True
    if args.no_rollback:
        config.execution.rollback_enabled = False
    if args.workers is not None:
        if args.workers < 1:
            print("Error: --workers must be at least 1", file=sys.stderr)
            return int(ExitCode.PREFLIGHT_ABORT)
        config.execution.worker_count = args.workers

    plan_path = args.plan or config.plan_file
    try:
        plan = load_plan(plan_path)
    except FileNotFoundError:
        print(f"Error: plan file not found: {plan_path}", file=sys.stderr)
        return int(ExitCode.PREFLIGHT_ABORT)
    except PlanError as e:
        print(f"Error: {e}", file=sys.stderr)
        return int(ExitCode.PREFLIGHT_ABORT)

    logger.info(f"Running plan {plan_path}")
    orchestrator = ProvisioningOrchestrator(config)
    result = orchestrator.run(plan)

    if args.json:
        print(json.dumps(result.to_dict(), indent=2, default=str))
    else:
        print_run_result(result)

    return int(result.exit_code)


def run_preflight(args: argparse.Namespace, config: Config) -> int:
    """Execute the preflight command."""
    report = PreflightValidator().validate(PreflightRequirements.from_config(config.preflight))

    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        print("\nPreflight checks:")
        for check in report.checks:
            status = "PASS" if check.passed else "FAIL"
            kind = "critical" if check.critical else "advisory"
            print(f"  [{status}] {check.name} ({kind}): {check.reason}")
        print(f"\nResult: {'passed' if report.passed else 'failed'}")

    return int(ExitCode.SUCCESS if report.passed else ExitCode.PREFLIGHT_ABORT)


def run_profiles(args: argparse.Namespace, config: Config) -> int:
    """Execute the profiles command."""
    enumerator = ProfileEnumerator(mount_prefix=config.hives.mount_prefix)
    scopes = enumerator.enumerate_scopes(include_machine=True)

    if args.json:
        output = [
            {
                "key": scope.key,
                "kind": scope.kind.value,
                "username": scope.username,
                "security_id": scope.security_id,
                "hive_path": scope.hive_path,
                "mount_name": scope.mount_name if scope.requires_mount else None,
            }
            for scope in scopes
        ]
        print(json.dumps(output, indent=2))
    else:
        print(f"\n{len(scopes)} scope(s):")
        for scope in scopes:
            hive = f" -> {scope.hive_path}" if scope.hive_path else ""
            print(f"  {scope.kind.value:<15} {scope}{hive}")

    return 0


def run_unmount(args: argparse.Namespace, config: Config) -> int:
    """Execute the unmount command."""
    enumerator = ProfileEnumerator(mount_prefix=config.hives.mount_prefix)
    hives = HiveManager(
        release_delays=config.hives.release_delays,
        settle_delay=config.hives.settle_delay,
        dry_run=config.execution.dry_run,
    )

    for scope in enumerator.enumerate_profiles():
        if hives.test(scope.mount_name):
            hives.acquire(scope)

    outcomes = hives.release_all()

    if args.json:
        print(json.dumps({key: outcome.value for key, outcome in outcomes.items()}, indent=2))
    elif not outcomes:
        print("No leftover hives found")
    else:
        for key, outcome in outcomes.items():
            print(f"  {key}: {outcome.value}")

    failed = any(outcome == ReleaseOutcome.FAILED for outcome in outcomes.values())
    return int(ExitCode.HARD_FAILURE if failed else ExitCode.SUCCESS)


def run_config(args: argparse.Namespace, config: Config) -> int:
    """Execute the config command."""
    if args.init:
        save_config(config)
        print(f"Configuration saved to {config.config_dir / 'config.json'}")
        return 0

    if args.show:
        print(json.dumps(config.to_dict(), indent=2))
        return 0

    print("Use --init to create config or --show to display current config")
    return 1


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_argument_parser()
    args = parser.parse_args(argv)

    # Load configuration
    try:
        config = load_config(args.config) if args.config else load_config()
    except (ValueError, OSError) as e:
        print(f"Error: invalid configuration: {e}", file=sys.stderr)
        return int(ExitCode.PREFLIGHT_ABORT)

    # Setup logging
    log_level = get_log_level(args.verbose)
    setup_logging(
        config.logs_dir,
        log_level=log_level,
        console_output=not args.quiet,
    )

    # Ensure directories exist
    config.ensure_directories()

    # Execute command
    if args.command == "run":
        return run_provision(args, config)
    elif args.command == "preflight":
        return run_preflight(args, config)
    elif args.command == "profiles":
        return run_profiles(args, config)
    elif args.command == "unmount":
        return run_unmount(args, config)
    elif args.command == "config":
        return run_config(args, config)

    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
