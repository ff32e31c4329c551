"""
Backup pass: mirror the blob store locally, then archive what changed.

Flow:
1. Run one sync pass over the requested scope
2. For every container whose local copy changed (downloads or deletions),
   zip its directory, upload the archive and drop the temporary zip
3. Prune archives older than the retention window

Archive failures are recorded per container and never stop the others.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Union

import pytz

from ..archive.archiver import archive_name, pack_directory
from ..archive.base import ArchiveInfo, ArchiveStore
from ..exceptions import ArchiveError
from ..sync.models import PassResult, PassStatus
from ..sync.orchestrator import ContainerScope, SyncOrchestrator

logger = logging.getLogger(__name__)


@dataclass
class BackupReport:
    """Outcome of one backup run."""
    pass_result: PassResult
    archives: Dict[str, ArchiveInfo] = field(default_factory=dict)
    archive_errors: Dict[str, str] = field(default_factory=dict)
    archives_removed: int = 0
    cleanup_error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return (
            self.pass_result.status == PassStatus.DONE
            and not self.archive_errors
            and self.cleanup_error is None
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "ok": self.ok,
            "pass": self.pass_result.to_dict(),
            "archives": {name: info.to_dict() for name, info in self.archives.items()},
            "archive_errors": dict(self.archive_errors),
            "archives_removed": self.archives_removed,
            "cleanup_error": self.cleanup_error,
        }


class BackupService:
    """Runs sync passes and ships changed containers to the archive store."""

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        archive_store: ArchiveStore,
        backup_path: Union[str, Path],
        temp_dir: Union[str, Path],
        retention_days: int = 7,
        timezone: Union[str, Any] = "UTC",
    ):
        """
        Initialize backup service.

        Args:
            orchestrator: Sync orchestrator writing into ``backup_path``
            archive_store: Destination for archives
            backup_path: Local mirror root (one directory per container)
            temp_dir: Scratch directory for archives being built
            retention_days: Archives older than this are pruned
            timezone: Zone name or pytz zone for logged archive times; archive
                names are always stamped in UTC
        """
        self.orchestrator = orchestrator
        self.archive_store = archive_store
        self.backup_path = Path(backup_path)
        self.temp_dir = Path(temp_dir)
        self.retention_days = retention_days
        self.timezone = pytz.timezone(timezone) if isinstance(timezone, str) else timezone

    def perform_backup(
        self,
        scope: ContainerScope,
        cancel_event: Optional[threading.Event] = None,
        deadline: Optional[float] = None,
    ) -> BackupReport:
        """
        Run one backup.

        Args:
            scope: Containers to back up
            cancel_event: External cancellation signal
            deadline: Optional sync pass deadline in seconds

        Returns:
            BackupReport
        """
        logger.info("Starting backup process...")
        self.backup_path.mkdir(parents=True, exist_ok=True)
        self.temp_dir.mkdir(parents=True, exist_ok=True)

        pass_result = self.orchestrator.run(scope, cancel_event=cancel_event, deadline=deadline)
        report = BackupReport(pass_result=pass_result)

        for name in sorted(pass_result.containers):
            stats = pass_result.containers[name]
            if not stats.changed:
                logger.info(f"[{name}] No changes, skipping archive")
                continue
            if cancel_event is not None and cancel_event.is_set():
                report.archive_errors[name] = "cancelled before archiving"
                continue
            try:
                report.archives[name] = self.archive_container(name)
            except ArchiveError as e:
                logger.error(f"[{name}] Failed to archive: {e}")
                report.archive_errors[name] = str(e)

        try:
            report.archives_removed = self.archive_store.cleanup_old_archives(self.retention_days)
        except ArchiveError as e:
            logger.error(f"Failed to cleanup old backups: {e}")
            report.cleanup_error = str(e)

        logger.info(
            f"Backup completed in {pass_result.duration_seconds:.1f}s: "
            f"{len(report.archives)} archives uploaded, {len(report.archive_errors)} failed, "
            f"{report.archives_removed} old archives removed"
        )
        return report

    def archive_container(self, container: str, when: Optional[datetime] = None) -> ArchiveInfo:
        """
        Pack one container's local directory and upload it.

        Raises:
            ArchiveError: If packing or uploading fails.
        """
        when = when or datetime.now(self.timezone)
        zip_path = self.temp_dir / archive_name(container, when)

        local_when = when.astimezone(self.timezone) if when.tzinfo is not None else when
        logger.info(
            f"[{container}] Creating backup archive {zip_path.name} "
            f"(local time {local_when:%Y-%m-%d %H:%M:%S %Z})"
        )
        try:
            pack_directory(self.backup_path / container, zip_path)
            info = self.archive_store.upload_archive(zip_path, container)
        finally:
            zip_path.unlink(missing_ok=True)

        logger.info(f"[{container}] Uploaded {info.name} ({info.size / (1024 * 1024):.2f} MB)")
        return info
