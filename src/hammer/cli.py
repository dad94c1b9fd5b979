#!/usr/bin/env python3
"""
Hammer CLI

Command-line interface for container installs and atomic deployments.
"""

import argparse
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional

from common.decorators import require_root
from common.exceptions import HammerError
from common.logging_config import setup_logging

from .config import DEFAULT_CONFIG_PATH, HammerConfig
from .container import ContainerSandbox
from .deployment import DeploymentEngine, DeploymentStatus, validate_package_name

logger = logging.getLogger(__name__)


def progress_callback(status: DeploymentStatus, message: str):
    """Display deployment progress."""
    if status == DeploymentStatus.FAILED:
        return
    print(message, flush=True)


def build_engine(args) -> DeploymentEngine:
    config = HammerConfig.load(args.config)
    engine = DeploymentEngine.from_config(config)
    engine.set_progress_callback(progress_callback)
    return engine


def build_sandbox(args) -> ContainerSandbox:
    config = HammerConfig.load(args.config)
    return ContainerSandbox(
        name=config.container_name,
        image=config.container_image,
        tool=config.container_tool,
        bin_dir=config.export_bin_dir,
    )


@require_root
def atomic_install(engine: DeploymentEngine, package: str):
    return engine.atomic_install(package)


@require_root
def atomic_remove(engine: DeploymentEngine, package: str):
    return engine.atomic_remove(package)


def _report(result):
    for warning in result.warnings:
        print(f"Warning: {warning}", file=sys.stderr)


def cmd_install(args):
    """Install a package in the container or atomically."""
    package = validate_package_name(args.package)
    print(f"Installing package: {package} (atomic: {args.atomic})")

    if args.atomic:
        result = atomic_install(build_engine(args), package)
        _report(result)
        print(f"Atomic install completed. Next boot uses {result.name}.")
        return 0

    exported = build_sandbox(args).install(package)
    print(f"Package {package} installed in container successfully.")
    if exported:
        print(f"  Exported: {exported}")
    return 0


def cmd_remove(args):
    """Remove a package from the container or atomically."""
    package = validate_package_name(args.package)
    print(f"Removing package: {package} (atomic: {args.atomic})")

    if args.atomic:
        result = atomic_remove(build_engine(args), package)
        _report(result)
        print(f"Atomic remove completed. Next boot uses {result.name}.")
        return 0

    build_sandbox(args).remove(package)
    print(f"Package {package} removed from container successfully.")
    return 0


@require_root
def cmd_deploy(args):
    """Create a sealed snapshot of the current deployment."""
    result = build_engine(args).deploy()
    print(f"Deployment created: {result.name}")
    return 0


@require_root
def cmd_update(args):
    """Upgrade the system atomically."""
    result = build_engine(args).atomic_update()
    _report(result)
    print(f"System updated. Next boot uses {result.name}.")
    return 0


@require_root
def cmd_switch(args):
    """Switch to a deployment (default: the previous one)."""
    result = build_engine(args).switch(args.deployment)
    _report(result)
    return 0


@require_root
def cmd_rollback(args):
    """Roll back N deployments."""
    result = build_engine(args).rollback(args.steps)
    _report(result)
    return 0


@require_root
def cmd_clean(args):
    """Remove old deployments and unused containers."""
    print("Cleaning up unused resources...")
    report = build_engine(args).clean()

    for path in report.deleted:
        print(f"  Deleted {path.name}")
    for path, reason in report.failed.items():
        print(f"  Failed to delete {path.name}: {reason}", file=sys.stderr)

    if not report.success:
        print(f"clean failed: {report.prune_error}", file=sys.stderr)
        return 1

    print("Clean up completed.")
    return 0


def cmd_refresh(args):
    """Refresh package lists in the container."""
    print("Refreshing container metadata...")
    build_sandbox(args).update()
    print("Refresh completed.")
    return 0


def cmd_status(args):
    """Show the current deployment."""
    status = build_engine(args).get_status()
    if status.current is None:
        print("No current deployment.")
        return 1

    meta = status.meta
    print(f"Current Deployment: {status.current.name}")
    print(f"  Created: {meta.created or 'N/A'}")
    print(f"  Action: {meta.action or 'N/A'}")
    print(f"  Parent: {meta.parent or 'N/A'}")
    print(f"  Kernel: {meta.kernel or 'N/A'}")
    if status.sealed is not None:
        print(f"  Read-only: {'yes' if status.sealed else 'no'}")
    if status.default_id is not None:
        note = "" if status.boot_matches_current else " (differs from current, reboot pending)"
        print(f"  Next boot subvolume: {status.default_id}{note}")
    return 0


def cmd_history(args):
    """List deployments, newest first."""
    snapshots = build_engine(args).get_history()
    if not snapshots:
        print("No deployments found.")
        return 0

    print("Deployment History (newest first):\n")
    for index, snap in enumerate(snapshots):
        mark = " (current)" if snap.is_current else ""
        print(f"  {index}: {snap.name}{mark}")
        print(f"    Created: {snap.meta.created or 'N/A'} ({snap.age_str})")
        if snap.meta.action:
            print(f"    Action: {snap.meta.action}")
        if snap.meta.parent:
            print(f"    Parent: {snap.meta.parent}")
        if snap.meta.kernel:
            print(f"    Kernel: {snap.meta.kernel}")
    return 0


def _terminate(signum, frame):
    # Unwind through finally blocks so mounts and the lock are released
    raise SystemExit(128 + signum)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hammer",
        description="Hammer - package manager for HackerOS Atomic",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  hammer install vim                 # Install into the container
  hammer install vim --atomic        # Install into a new system deployment
  hammer remove vim --atomic         # Remove from a new system deployment
  hammer deploy                      # Snapshot the current deployment
  hammer switch                      # Boot the previous deployment next
  hammer switch hammer-2025-01-15    # Boot a specific deployment next
  hammer clean                       # Keep the newest deployments only
        """,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH,
                        help="Configuration file")
    parser.add_argument("--log-file", type=Path, help="Also log to this file")
    parser.add_argument("--json-logs", action="store_true", help="JSON format for --log-file")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    install_parser = subparsers.add_parser(
        "install", help="Install a package (default: in container)")
    install_parser.add_argument("package")
    install_parser.add_argument("--atomic", action="store_true",
                                help="Install atomically into the system")
    install_parser.set_defaults(func=cmd_install)

    remove_parser = subparsers.add_parser(
        "remove", help="Remove a package (default: from container)")
    remove_parser.add_argument("package")
    remove_parser.add_argument("--atomic", action="store_true",
                               help="Remove atomically from the system")
    remove_parser.set_defaults(func=cmd_remove)

    deploy_parser = subparsers.add_parser("deploy", help="Create a new deployment")
    deploy_parser.set_defaults(func=cmd_deploy)

    update_parser = subparsers.add_parser("update", help="Upgrade the system atomically")
    update_parser.set_defaults(func=cmd_update)

    switch_parser = subparsers.add_parser("switch", help="Switch to a previous deployment")
    switch_parser.add_argument("deployment", nargs="?", help="Deployment name")
    switch_parser.set_defaults(func=cmd_switch)

    rollback_parser = subparsers.add_parser("rollback", help="Roll back N deployments")
    rollback_parser.add_argument("steps", nargs="?", type=int, default=1)
    rollback_parser.set_defaults(func=cmd_rollback)

    clean_parser = subparsers.add_parser("clean", help="Clean up containers and deployments")
    clean_parser.set_defaults(func=cmd_clean)

    refresh_parser = subparsers.add_parser("refresh", help="Refresh container package lists")
    refresh_parser.set_defaults(func=cmd_refresh)

    status_parser = subparsers.add_parser("status", help="Show the current deployment")
    status_parser.set_defaults(func=cmd_status)

    history_parser = subparsers.add_parser("history", help="List deployments")
    history_parser.set_defaults(func=cmd_history)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    level = logging.DEBUG if args.verbose else logging.WARNING
    setup_logging(level=level, log_file=args.log_file, json_logs=args.json_logs)

    if args.command is None:
        parser.print_help()
        return 1

    signal.signal(signal.SIGTERM, _terminate)

    try:
        return args.func(args)
    except HammerError as e:
        logger.debug(str(e))
        print(f"{args.command} failed: {e.message}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print(f"{args.command} interrupted", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
