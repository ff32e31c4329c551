"""
Restore pass: push archived container snapshots back into the blob store.

Provides:
- ContainerRestoreResult / RestoreReport: per-container and overall outcome
- RestoreService: selects an archive per container (latest, or closest to a
  date), downloads and unpacks it in a scratch directory and uploads every
  file with bounded concurrency
"""

import logging
import os
import shutil
import tempfile
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import date, datetime, time
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import pytz

from ..archive.archiver import unpack_archive
from ..archive.base import ArchiveInfo, ArchiveStore
from ..exceptions import ArchiveError, BlobVaultError
from ..storage.object_store import ObjectStore
from ..sync.orchestrator import ContainerScope

logger = logging.getLogger(__name__)


@dataclass
class ContainerRestoreResult:
    """Outcome of restoring one container."""
    container: str
    archive: Optional[ArchiveInfo] = None
    files_uploaded: int = 0
    bytes_uploaded: int = 0
    file_errors: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and not self.file_errors

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "container": self.container,
            "archive": self.archive.name if self.archive else None,
            "files_uploaded": self.files_uploaded,
            "bytes_uploaded": self.bytes_uploaded,
            "file_errors": list(self.file_errors),
            "error": self.error,
        }


@dataclass
class RestoreReport:
    """Outcome of one restore run."""
    containers: Dict[str, ContainerRestoreResult] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and all(r.ok for r in self.containers.values())

    @property
    def files_uploaded(self) -> int:
        return sum(r.files_uploaded for r in self.containers.values())

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "ok": self.ok,
            "error": self.error,
            "containers": {name: r.to_dict() for name, r in self.containers.items()},
        }


class RestoreService:
    """Restores containers from the archive store."""

    def __init__(
        self,
        archive_store: ArchiveStore,
        object_store: ObjectStore,
        temp_dir: Union[str, Path],
        max_concurrent: int = 10,
        timezone: Union[str, Any] = "UTC",
    ):
        """
        Initialize restore service.

        Args:
            archive_store: Source of archives
            object_store: Blob store the files are uploaded into
            temp_dir: Scratch directory for downloads and extraction
            max_concurrent: Maximum concurrent uploads per container
            timezone: Zone name or pytz zone; a restore date means midnight
                of that day in this zone
        """
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.timezone = pytz.timezone(timezone) if isinstance(timezone, str) else timezone
        self.archive_store = archive_store
        self.object_store = object_store
        self.temp_dir = Path(temp_dir)
        self.max_concurrent = max_concurrent

    def restore(
        self,
        scope: ContainerScope,
        target_date: Optional[date] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> RestoreReport:
        """
        Restore one container or every archived container.

        Args:
            scope: Container selector
            target_date: Restore the archive closest to this date instead of
                the latest one
            cancel_event: External cancellation signal

        Returns:
            RestoreReport; a failing container never stops the next one.
        """
        cancel_event = cancel_event or threading.Event()
        report = RestoreReport()

        try:
            selected = self._select_archives(scope, target_date)
        except ArchiveError as e:
            logger.error(f"Failed to list backups: {e}")
            report.error = str(e)
            return report

        for container in sorted(selected):
            info = selected[container]
            if cancel_event.is_set():
                report.containers[container] = ContainerRestoreResult(
                    container=container, archive=info, error="cancelled"
                )
                continue
            if info is None:
                when = target_date.isoformat() if target_date else "any date"
                logger.warning(f"No backup found for container {container} ({when})")
                report.containers[container] = ContainerRestoreResult(
                    container=container, error=f"No backup found for {when}"
                )
                continue
            report.containers[container] = self.restore_container(container, info, cancel_event)

        logger.info(
            f"Restore finished: {len(report.containers)} containers, "
            f"{report.files_uploaded} files uploaded"
        )
        return report

    def _select_archives(
        self,
        scope: ContainerScope,
        target_date: Optional[date],
    ) -> Dict[str, Optional[ArchiveInfo]]:
        moment = None
        if target_date is not None:
            moment = self.timezone.localize(datetime.combine(target_date, time.min))

        def pick(container: str) -> Optional[ArchiveInfo]:
            if target_date is not None:
                return self.archive_store.archive_closest_to(container, moment)
            return self.archive_store.latest_archive(container)

        if not scope.is_all:
            return {scope.container: pick(scope.container)}

        containers = sorted({info.container for info in self.archive_store.list_archives()})
        logger.info(f"Found backups for {len(containers)} containers")
        return {name: pick(name) for name in containers}

    def restore_container(
        self,
        container: str,
        info: ArchiveInfo,
        cancel_event: Optional[threading.Event] = None,
    ) -> ContainerRestoreResult:
        """Download, unpack and upload one archive into ``container``."""
        result = ContainerRestoreResult(container=container, archive=info)
        logger.info(
            f"Restoring container {container} from backup {info.name} "
            f"(created {info.created_time:%Y-%m-%d %H:%M:%S}, {info.size / (1024 * 1024):.2f} MB)"
        )

        self.temp_dir.mkdir(parents=True, exist_ok=True)
        work_dir = Path(tempfile.mkdtemp(prefix=f"restore_{container}_", dir=str(self.temp_dir)))
        try:
            zip_path = self.archive_store.download_archive(info, work_dir)
            extract_dir = unpack_archive(zip_path, work_dir / "extracted")
            self.object_store.ensure_container(container)
            self._upload_tree(container, extract_dir, result, cancel_event)
        except (BlobVaultError, OSError) as e:
            logger.error(f"Failed to restore container {container}: {e}")
            result.error = str(e)
        finally:
            shutil.rmtree(work_dir, ignore_errors=True)

        logger.info(
            f"Restore of {container}: {result.files_uploaded} files, "
            f"{result.bytes_uploaded / (1024 * 1024):.2f} MB, {len(result.file_errors)} failed"
        )
        return result

    def _upload_tree(
        self,
        container: str,
        root: Path,
        result: ContainerRestoreResult,
        cancel_event: Optional[threading.Event],
    ) -> None:
        files = []
        for dirpath, _dirnames, filenames in os.walk(root):
            for filename in filenames:
                path = Path(dirpath) / filename
                files.append((path.relative_to(root).as_posix(), path))

        logger.info(f"Uploading {len(files)} files to {container} (max {self.max_concurrent} concurrent)")

        with ThreadPoolExecutor(max_workers=self.max_concurrent, thread_name_prefix="upload") as executor:
            futures = {
                executor.submit(self.object_store.upload_object, container, key, path, cancel_event): key
                for key, path in sorted(files)
            }
            for future in as_completed(futures):
                key = futures[future]
                try:
                    written = future.result()
                except BlobVaultError as e:
                    logger.error(f"[{container}] Failed to upload {key}: {e}")
                    result.file_errors.append(f"{key}: {e}")
                    continue
                result.files_uploaded += 1
                result.bytes_uploaded += written
