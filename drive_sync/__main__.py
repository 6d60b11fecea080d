"""CLI entry point for Drive Sync.

Usage:
    dsync status [--json]
    dsync associate [--master PATH] [--backup PATH ...] [--unassign PATH ...] [--force] [--yes]
    dsync sync [--yes]

Commands:
    status     Show discovered drives, their roles and sync groups
    associate  Assign master/backup roles (interactive without role options)
    sync       Mirror every master onto its admitted backups
"""

import argparse
import contextlib
import json
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

from drive_sync import (
    AssociationSession,
    DriveRegistry,
    DriveSyncConfig,
    Role,
    __version__,
)
from drive_sync.errors import AssociationError, InvalidMetadataError, OperationCancelled
from drive_sync.registry import Drive
from drive_sync.sync.admission import AdmissionDecision, AdmissionStatus
from drive_sync.sync.orchestrator import ConfirmStage, SyncOrchestrator
from drive_sync.transfer import get_transfer_backend
from drive_sync.utils.logging import configure_root_logger
from drive_sync.utils.platform import format_bytes
from drive_sync.utils.signals import (
    CancellationToken,
    install_signal_handlers,
    restore_signal_handlers,
)

logger = logging.getLogger("drive_sync")

SEPARATOR = "-" * 40


def setup_logging(args: argparse.Namespace) -> None:
    """Configure logging for CLI output."""
    configure_root_logger(
        level=logging.DEBUG if args.verbose else logging.INFO,
        json_output=args.json_logs,
        log_file=args.log_file,
    )


def build_config(args: argparse.Namespace) -> DriveSyncConfig:
    config = DriveSyncConfig(log_file=args.log_file, json_logs=args.json_logs)
    if args.mount_root:
        config.mount_roots = [Path(p) for p in args.mount_root]
    return config


def ask(prompt: str) -> str:
    """Blocking read from the operator."""
    return input(prompt).strip()


def ask_yes_no(prompt: str) -> bool:
    return ask(prompt).lower() == "y"


def cmd_status(args: argparse.Namespace, token: Optional[CancellationToken] = None) -> int:
    """Handle the 'status' command - list drives and groups.

    Args:
        args: Parsed CLI arguments

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    registry = DriveRegistry(build_config(args))
    drives = registry.discover()
    groups = registry.group_by_set_id(drives)

    if args.json:
        status = {
            "drives": [d.to_dict() for d in drives],
            "groups": {set_id: g.to_dict() for set_id, g in groups.items()},
        }
        print(json.dumps(status, indent=2, default=str))
        return 0

    if not drives:
        print("No drives found.")
        return 0

    print("Drives:")
    for drive in drives:
        print(f"  {drive.path}")
        print(f"    Role: {drive.role.value}")
        if drive.set_id:
            print(f"    Set ID: {drive.set_id}")
        if drive.last_modified:
            print(f"    Associated: {drive.last_modified.isoformat()}")
        if drive.has_invalid_metadata:
            print(f"    WARNING: invalid metadata ({drive.metadata_error})")
    print()

    if groups:
        print("Sync groups:")
        for set_id, group in groups.items():
            master = group.master.path if group.master else "(no master mounted)"
            print(f"  [{set_id}]")
            print(f"    Master: {master}")
            for backup in group.backups:
                print(f"    Backup: {backup.path}")
    else:
        print("No sync groups.")

    return 0


def _print_commit_result(result) -> None:
    for outcome in result.results:
        status = "✓" if outcome.success else f"✗ {outcome.error}"
        print(f"  {outcome.drive.path}: {outcome.role.value} {status}")


def _index_drives(session: AssociationSession) -> Dict[Path, int]:
    return {d.path.resolve(): i for i, d in enumerate(session.drives)}


def _lookup(index: Dict[Path, int], path: str) -> int:
    resolved = Path(path).resolve()
    if resolved not in index:
        raise AssociationError(f"{path} is not a discovered drive", path=Path(path))
    return index[resolved]


def _toggle(session: AssociationSession, position: int, force: bool) -> Role:
    if force:
        session.acknowledge_invalid(position)
    return session.toggle(position)


def apply_role_options(
    session: AssociationSession,
    master: Optional[str],
    backups: List[str],
    unassign: List[str],
    force: bool = False,
) -> None:
    """Drive the session's toggle operation to the requested roles.

    Raises:
        AssociationError: If a path is unknown or the roles conflict
        InvalidMetadataError: If a drive has invalid metadata and force is off
    """
    index = _index_drives(session)
    master_pos = _lookup(index, master) if master else None
    backup_pos = [_lookup(index, p) for p in backups]
    unassign_pos = [_lookup(index, p) for p in unassign]

    if master_pos is not None and (master_pos in backup_pos or master_pos in unassign_pos):
        raise AssociationError(f"{master} cannot be master and also backup/unassigned")

    if master_pos is not None:
        for position, role in enumerate(list(session.pending)):
            if role is Role.MASTER and position != master_pos:
                _toggle(session, position, force)

    for position in unassign_pos:
        if session.pending[position] is not Role.UNASSIGNED:
            _toggle(session, position, force)

    if master_pos is not None and session.pending[master_pos] is not Role.MASTER:
        if session.pending[master_pos] is Role.BACKUP:
            _toggle(session, master_pos, force)
        _toggle(session, master_pos, force)

    for position in backup_pos:
        if session.pending[position] is Role.BACKUP:
            continue
        if session.pending[position] is Role.MASTER:
            raise AssociationError(
                f"{session.drives[position].path} is the master; unassign it first"
            )
        if not session.has_master:
            raise AssociationError("A backup needs a master; pass --master")
        _toggle(session, position, force)


def _review(session: AssociationSession) -> str:
    """Show pending changes; returns 'y', 'n' or 'q'."""
    while True:
        print("Review your selections:")
        print(SEPARATOR)
        for i in range(len(session)):
            print(f"  {session.describe(i)}")
        print(SEPARATOR)
        choice = ask("Press 'y' to confirm, 'n' to go back, 'q' to quit: ").lower()
        if choice in ("y", "n", "q"):
            return choice


def _interactive_associate(session: AssociationSession) -> bool:
    """Edit the session from the terminal. Returns True to commit."""
    while True:
        print(SEPARATOR)
        for i in range(len(session)):
            print(f"  {i + 1}. {session.describe(i)}")
        print(SEPARATOR)
        choice = ask("Number to toggle, Enter to confirm, q to quit: ").lower()

        if choice == "q":
            return False

        if choice == "":
            if not session.has_changes():
                continue
            answer = _review(session)
            if answer == "y":
                return True
            if answer == "q":
                return False
            continue

        if not choice.isdigit() or not 1 <= int(choice) <= len(session):
            print(f"Unknown selection: {choice}")
            continue

        position = int(choice) - 1
        try:
            session.toggle(position)
        except InvalidMetadataError as e:
            print(f"WARNING: {e}")
            if ask_yes_no("Reassign this drive anyway? (y/n): "):
                session.acknowledge_invalid(position)
                session.toggle(position)


def cmd_associate(args: argparse.Namespace, token: Optional[CancellationToken] = None) -> int:
    """Handle the 'associate' command - assign master/backup roles.

    Args:
        args: Parsed CLI arguments
        token: Cancellation token checked before anything is written

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    logger.info("Starting drive association process")
    registry = DriveRegistry(build_config(args))
    drives = registry.discover()

    if not drives:
        print("No drives found.")
        return 0

    session = AssociationSession(drives)
    scripted = bool(args.master or args.backup or args.unassign)

    try:
        if scripted:
            apply_role_options(session, args.master, args.backup, args.unassign, args.force)
            if not session.has_changes():
                print("Nothing to change.")
                session.cancel()
                return 0
            proceed = args.yes or _review(session) == "y"
        else:
            proceed = _interactive_associate(session)
    except (AssociationError, InvalidMetadataError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if not proceed:
        session.cancel()
        return 0

    logger.info("User confirmed drive associations")
    if token is not None:
        token.raise_if_cancelled()
    try:
        result = session.commit(registry.store)
    except AssociationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print("Processing drive associations...")
    _print_commit_result(result)
    if result.success:
        print("Drive associations completed successfully.")
        return 0
    print("Some drive associations failed; see log for details.", file=sys.stderr)
    return 1


def _print_space_check(decisions: List[AdmissionDecision]) -> None:
    print("Space Requirements for Backup Drives:")
    print()
    for number, decision in enumerate(decisions, start=1):
        print(f"{number}. {decision.backup.path}")
        if decision.report is not None:
            report = decision.report
            print(f"   Data needed:        {format_bytes(decision.required_bytes)}")
            if decision.available_bytes is not None:
                print(f"   Available:          {format_bytes(decision.available_bytes)}")
            print("   Changes:")
            print(f"   • Files to add:     {report.to_add}")
            print(f"   • Files to update:  {report.to_update}")
            print(f"   • Files to delete:  {report.to_delete}")
        if decision.status is AdmissionStatus.ADMIT:
            print("   Status:            ✓ Sufficient space")
        elif decision.status is AdmissionStatus.DENY:
            print(
                f"   Status:            ✗ Insufficient space "
                f"(need {format_bytes(decision.shortfall)} more)"
            )
        else:
            print(f"   Status:            ✗ {decision.error}")
        print()


def _print_summary(master: Drive, decisions: List[AdmissionDecision]) -> None:
    print("Summary of Changes:")
    print(SEPARATOR)
    for number, decision in enumerate(decisions, start=1):
        report = decision.report
        print(f"{number}. {master.name} ➜ {decision.backup.name}")
        print("   Changes required:")
        print(f"   • Files to be added:    {report.to_add}")
        print(f"   • Files to be deleted:  {report.to_delete}")
        print(f"   • Files to be updated:  {report.to_update}")
        print(f"   • Total data:           {format_bytes(decision.transfer_bytes)}")
        print()


def make_confirm(assume_yes: bool):
    """Build the orchestrator's confirmation callback for the terminal."""

    def confirm(stage: ConfirmStage, master: Drive, decisions: List[AdmissionDecision]) -> bool:
        print(SEPARATOR)
        print(f"Master: {master.path}")
        if stage is ConfirmStage.PROCEED:
            _print_space_check(decisions)
            prompt = "Continue with available backup drives? (y/n): "
        else:
            _print_summary(master, decisions)
            prompt = "Proceed with sync operations? (y/n): "
        print(SEPARATOR)
        if assume_yes:
            return True
        return ask_yes_no(prompt)

    return confirm


def cmd_sync(args: argparse.Namespace, token: Optional[CancellationToken] = None) -> int:
    """Handle the 'sync' command - mirror masters onto backups.

    Args:
        args: Parsed CLI arguments
        token: Cancellation token set by the signal handlers in main

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    config = build_config(args)
    transfer = get_transfer_backend(config=config)

    if not transfer.is_available():
        print(transfer.get_availability_message(), file=sys.stderr)
        return 1

    orchestrator = SyncOrchestrator(
        registry=DriveRegistry(config),
        transfer=transfer,
        confirm=make_confirm(args.yes),
        config=config,
        token=token,
    )

    if args.json:
        # Prompts and summaries go to stderr so stdout stays parseable
        with contextlib.redirect_stdout(sys.stderr):
            result = orchestrator.run()
        print(json.dumps(result.to_dict(), indent=2, default=str))
        return 0 if result.success else 1

    result = orchestrator.run()

    if not result.passes:
        print("No master drives found.")
        return 0

    for sync_pass in result.passes:
        print(f"{sync_pass.master.path}: {sync_pass.outcome.value}")
        for execution in sync_pass.executions:
            mark = "✓" if execution.success else "✗"
            print(f"  {mark} {execution.backup.path}: {execution.result.message}")

    return 0 if result.success else 1


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser.

    Returns:
        Configured ArgumentParser instance
    """
    parser = argparse.ArgumentParser(
        prog="dsync",
        description="Drive Sync - mirror a master drive onto its backup drives",
    )
    parser.add_argument(
        "--version", action="version",
        version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable verbose output"
    )
    parser.add_argument(
        "--mount-root", action="append", metavar="PATH",
        help="Removable-media mount root to scan (repeatable; default: /run/media, /media, /mnt)"
    )
    parser.add_argument("--log-file", help="Also write log records to this file")
    parser.add_argument("--json-logs", action="store_true", help="Log as JSON lines")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # status command
    status_parser = subparsers.add_parser("status", help="Show drives and sync groups")
    status_parser.add_argument("--json", action="store_true", help="Output as JSON")

    # associate command
    assoc_parser = subparsers.add_parser("associate", help="Assign master/backup roles")
    assoc_parser.add_argument("--master", metavar="PATH", help="Drive to make master")
    assoc_parser.add_argument(
        "--backup", action="append", default=[], metavar="PATH",
        help="Drive to make backup of the master (repeatable)"
    )
    assoc_parser.add_argument(
        "--unassign", action="append", default=[], metavar="PATH",
        help="Drive to remove from its group (repeatable)"
    )
    assoc_parser.add_argument(
        "--force", action="store_true",
        help="Reassign drives whose existing metadata is invalid"
    )
    assoc_parser.add_argument("-y", "--yes", action="store_true", help="Commit without review")

    # sync command
    sync_parser = subparsers.add_parser("sync", help="Mirror masters onto backups")
    sync_parser.add_argument("-y", "--yes", action="store_true", help="Answer yes to both confirmations")
    sync_parser.add_argument("--json", action="store_true", help="Also print the result as JSON")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI.

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    setup_logging(args)

    commands = {
        "status": cmd_status,
        "associate": cmd_associate,
        "sync": cmd_sync,
    }

    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        return 1

    logger.info(f"Starting dsync {args.command}")
    token = CancellationToken()
    previous = install_signal_handlers(token)
    try:
        return handler(args, token)
    except OperationCancelled as e:
        print(file=sys.stderr)
        logger.info(f"{e}, exiting")
        return 1
    except (KeyboardInterrupt, EOFError):
        print(file=sys.stderr)
        logger.info("Interrupted, exiting")
        return 1
    finally:
        restore_signal_handlers(previous)


if __name__ == "__main__":
    sys.exit(main())
