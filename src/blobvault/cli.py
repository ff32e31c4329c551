"""
Command line interface for blob synchronization, backup and restore.

Usage:
    blobvault sync --container ALL --max-concurrent 10
    blobvault backup --config config/blobvault.yaml
    blobvault restore --container videos --date 2024-01-15
    blobvault status
    blobvault archives --container videos

Configuration comes from ``--config`` (YAML) when given, otherwise from the
environment (and ``--env-file`` / ``.env``).

Exit codes: 0 success, 1 configuration or fatal error, 2 finished with
errors.
"""

import argparse
import json
import logging
import signal
import sys
import threading
from datetime import date, datetime
from pathlib import Path
from typing import List, Optional

from .config import AppConfig, ConfigManager, EngineBuilder
from .exceptions import BlobVaultError
from .sync.models import PassResult, PassStatus
from .sync.orchestrator import ContainerScope
from .sync.sync_state import SyncStateStore
from .utils.logging import setup_logging

logger = logging.getLogger("blobvault.cli")

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_PARTIAL = 2


def install_signal_handlers(cancel_event: threading.Event) -> None:
    """Set ``cancel_event`` on SIGINT/SIGTERM so in-flight work winds down."""
    def handler(signum, _frame):
        logger.warning(f"Received signal {signum}, cancelling after in-flight work")
        cancel_event.set()

    if threading.current_thread() is not threading.main_thread():
        return
    signal.signal(signal.SIGINT, handler)
    signal.signal(signal.SIGTERM, handler)


def load_config(args) -> AppConfig:
    if args.config is not None:
        config = ConfigManager.from_yaml(args.config)
    else:
        config = ConfigManager.from_env(args.env_file)
    if not args.verbose:
        setup_logging(level=config.log_level)
    return config


def resolve_scope(args, config: AppConfig) -> ContainerScope:
    if getattr(args, "container", None):
        return ContainerScope.parse(args.container)
    return config.scope


def print_pass_result(result: PassResult, verbose: bool = False) -> None:
    """Print pass summary."""
    print()
    print(result.summary())
    for name in sorted(result.containers):
        stats = result.containers[name]
        print(
            f"  {name}: {stats.phase.value} - {stats.downloaded} downloaded, "
            f"{stats.skipped} skipped, {stats.deleted} deleted, {stats.failed} failed"
        )
    errors = result.all_errors
    if errors:
        print(f"\nErrors: {len(errors)}")
        shown = errors if verbose else errors[:20]
        for error in shown:
            print(f"  {error}")
        if len(shown) < len(errors):
            print(f"  ... {len(errors) - len(shown)} more (use --verbose)")


def sync_command(args) -> int:
    """Execute sync command."""
    cancel_event = threading.Event()
    install_signal_handlers(cancel_event)

    builder = None
    try:
        builder = EngineBuilder(load_config(args))
        scope = resolve_scope(args, builder.config)
        orchestrator = builder.orchestrator(args.max_concurrent, args.max_concurrent_containers)

        result = orchestrator.run(scope, cancel_event=cancel_event, deadline=args.timeout)
        print_pass_result(result, args.verbose)
        return EXIT_OK if result.status == PassStatus.DONE else EXIT_PARTIAL

    except BlobVaultError as e:
        logger.error(f"Sync failed: {e}", exc_info=True)
        return EXIT_ERROR
    finally:
        if builder is not None:
            builder.close()


def backup_command(args) -> int:
    """Execute backup command."""
    cancel_event = threading.Event()
    install_signal_handlers(cancel_event)

    builder = None
    try:
        builder = EngineBuilder(load_config(args))
        scope = resolve_scope(args, builder.config)
        service = builder.backup_service(
            builder.orchestrator(args.max_concurrent, args.max_concurrent_containers)
        )

        report = service.perform_backup(scope, cancel_event=cancel_event, deadline=args.timeout)
        print_pass_result(report.pass_result, args.verbose)
        print(f"\nArchives uploaded: {len(report.archives)}")
        for name, info in sorted(report.archives.items()):
            print(f"  {name}: {info.name} ({info.size:,} bytes)")
        for name, error in sorted(report.archive_errors.items()):
            print(f"  {name}: FAILED - {error}")
        print(f"Old archives removed: {report.archives_removed}")
        return EXIT_OK if report.ok else EXIT_PARTIAL

    except BlobVaultError as e:
        logger.error(f"Backup failed: {e}", exc_info=True)
        return EXIT_ERROR
    finally:
        if builder is not None:
            builder.close()


def restore_command(args) -> int:
    """Execute restore command."""
    cancel_event = threading.Event()
    install_signal_handlers(cancel_event)

    builder = None
    try:
        builder = EngineBuilder(load_config(args))
        scope = resolve_scope(args, builder.config)
        service = builder.restore_service(args.max_concurrent)

        report = service.restore(scope, target_date=args.date, cancel_event=cancel_event)
        if report.error:
            print(f"\nRestore failed: {report.error}")
            return EXIT_ERROR

        print(f"\nRestore completed: {report.files_uploaded} files uploaded")
        for name, result in sorted(report.containers.items()):
            archive = result.archive.name if result.archive else "-"
            status = "ok" if result.ok else f"FAILED ({result.error or len(result.file_errors)})"
            print(f"  {name}: {archive} - {result.files_uploaded} files - {status}")
            if args.verbose:
                for error in result.file_errors:
                    print(f"    {error}")
        return EXIT_OK if report.ok else EXIT_PARTIAL

    except BlobVaultError as e:
        logger.error(f"Restore failed: {e}", exc_info=True)
        return EXIT_ERROR
    finally:
        if builder is not None:
            builder.close()


def status_command(args) -> int:
    """Show the persisted sync state."""
    try:
        config = load_config(args)
        store = SyncStateStore(config.backup.state_path)
        state = store.load()
    except BlobVaultError as e:
        logger.error(f"Failed to get status: {e}", exc_info=True)
        return EXIT_ERROR

    if args.json:
        print(json.dumps(state.to_dict(), indent=2))
        return EXIT_OK

    print(f"\nSync state: {store.path}")
    print(f"  Last sync: {state.last_sync.isoformat()}")
    print(f"  Containers: {len(state.containers)}")
    for name in sorted(state.containers):
        container = state.containers[name]
        total = sum(r.size for r in container.files.values())
        print(
            f"  {name}: {len(container.files)} files, {total / (1024 * 1024):.2f} MB, "
            f"last sync {container.last_sync.isoformat()}"
        )
    return EXIT_OK


def archives_command(args) -> int:
    """List stored backup archives."""
    builder = None
    try:
        builder = EngineBuilder(load_config(args))
        container = args.container if args.container and args.container.upper() != "ALL" else None
        archives = builder.archive_store().list_archives(container)
    except BlobVaultError as e:
        logger.error(f"Failed to list archives: {e}", exc_info=True)
        return EXIT_ERROR
    finally:
        if builder is not None:
            builder.close()

    print(f"\nArchives: {len(archives)}")
    for info in archives:
        print(
            f"  {info.name}  {info.created_time:%Y-%m-%d %H:%M:%S}  "
            f"{info.size / (1024 * 1024):.2f} MB"
        )
    return EXIT_OK


def _parse_date(value: str) -> date:
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid date {value!r}, expected YYYY-MM-DD")


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"Must be at least 1, got {value}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="blobvault",
        description="Incremental Azure Blob Storage mirror with archive backup and restore",
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to YAML configuration file (default: read the environment)",
    )
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Path to a .env file loaded before reading the environment",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command")

    def add_pass_options(sub: argparse.ArgumentParser) -> None:
        sub.add_argument("--container", type=str, help="Container name or ALL (default: from config)")
        sub.add_argument("--max-concurrent", type=_positive_int, help="Concurrent fetches per container")
        sub.add_argument(
            "--max-concurrent-containers", type=_positive_int, help="Containers processed at once"
        )
        sub.add_argument("--timeout", type=float, help="Pass deadline in seconds")

    sync = subparsers.add_parser("sync", help="Mirror containers into the local backup path")
    add_pass_options(sync)
    sync.set_defaults(func=sync_command)

    backup = subparsers.add_parser("backup", help="Sync, then archive changed containers")
    add_pass_options(backup)
    backup.set_defaults(func=backup_command)

    restore = subparsers.add_parser("restore", help="Upload archived containers back to the store")
    restore.add_argument("--container", type=str, help="Container name or ALL (default: from config)")
    restore.add_argument("--date", type=_parse_date, help="Restore the backup closest to YYYY-MM-DD")
    restore.add_argument("--max-concurrent", type=_positive_int, help="Concurrent uploads")
    restore.set_defaults(func=restore_command)

    status = subparsers.add_parser("status", help="Show the persisted sync state")
    status.add_argument("--json", action="store_true", help="Print the raw state as JSON")
    status.set_defaults(func=status_command)

    archives = subparsers.add_parser("archives", help="List stored backup archives")
    archives.add_argument("--container", type=str, help="Only archives of this container")
    archives.set_defaults(func=archives_command)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(level="DEBUG" if args.verbose else "INFO", debug=args.verbose)

    if not args.command:
        parser.print_help()
        return EXIT_ERROR

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
