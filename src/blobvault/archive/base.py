"""
Archival store interface.

Provides:
- ArchiveInfo: metadata of one stored backup archive
- ArchiveStore: abstract interface for uploading, listing, downloading and
  pruning backup archives, plus the selection helpers shared by every
  provider (latest archive, archive closest to a date, retention cleanup)
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..exceptions import ArchiveError
from ..storage.object_store import ensure_utc
from .archiver import parse_archive_name

logger = logging.getLogger(__name__)


@dataclass
class ArchiveInfo:
    """Metadata for a backup archive held in an archive store."""
    name: str
    container: str
    created_time: datetime
    size: int = 0
    location: str = ""  # provider-specific key or path

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "name": self.name,
            "container": self.container,
            "created_time": self.created_time.isoformat(),
            "size": self.size,
            "location": self.location,
        }


def archive_info_from_name(
    name: str,
    location: str,
    size: int,
) -> Optional[ArchiveInfo]:
    """
    Build an ArchiveInfo from a stored object name.

    The creation time is the UTC timestamp embedded in the archive name, so
    every provider dates an archive the same way whatever its own upload
    time. Returns None for objects that are not backup archives.
    """
    parsed = parse_archive_name(name)
    if parsed is None:
        return None
    container, stamp = parsed
    return ArchiveInfo(
        name=name.rsplit("/", 1)[-1],
        container=container,
        created_time=stamp.replace(tzinfo=timezone.utc),
        size=size,
        location=location,
    )


class ArchiveStore(ABC):
    """Abstract base class for archive stores."""

    @abstractmethod
    def upload_archive(self, archive_path: Path, container: str) -> ArchiveInfo:
        """
        Upload a local archive.

        Raises:
            ArchiveError: If the upload fails.
        """
        pass

    @abstractmethod
    def list_archives(self, container: Optional[str] = None) -> List[ArchiveInfo]:
        """
        List stored archives, newest first.

        Args:
            container: Restrict to archives of this container
        """
        pass

    @abstractmethod
    def download_archive(self, info: ArchiveInfo, dest_dir: Path) -> Path:
        """
        Download an archive into ``dest_dir``.

        Returns:
            Local path of the downloaded archive
        """
        pass

    @abstractmethod
    def delete_archive(self, info: ArchiveInfo) -> None:
        """Delete a stored archive."""
        pass

    def close(self) -> None:
        """Release provider resources."""
        pass

    def latest_archive(self, container: str) -> Optional[ArchiveInfo]:
        """Return the newest archive of ``container``, if any."""
        archives = self.list_archives(container)
        return archives[0] if archives else None

    def archive_closest_to(
        self,
        container: str,
        target: Union[date, datetime],
    ) -> Optional[ArchiveInfo]:
        """
        Return the archive of ``container`` created closest to ``target``.

        A plain date means midnight UTC of that day. Ties go to the newer
        archive.
        """
        if isinstance(target, datetime):
            moment = ensure_utc(target)
        else:
            moment = datetime.combine(target, time.min, tzinfo=timezone.utc)

        best: Optional[ArchiveInfo] = None
        best_distance: Optional[timedelta] = None
        for info in self.list_archives(container):
            distance = abs(info.created_time - moment)
            if best_distance is None or distance < best_distance:
                best, best_distance = info, distance
        return best

    def cleanup_old_archives(self, retention_days: int, now: Optional[datetime] = None) -> int:
        """
        Delete archives older than ``retention_days``.

        Individual delete failures are logged and skipped.

        Returns:
            Number of archives deleted
        """
        now = ensure_utc(now) if now is not None else datetime.now(timezone.utc)
        cutoff = now - timedelta(days=retention_days)

        deleted = 0
        for info in self.list_archives():
            if info.created_time >= cutoff:
                continue
            try:
                self.delete_archive(info)
                deleted += 1
                logger.info(f"Deleted old backup: {info.name}")
            except ArchiveError as e:
                logger.error(f"Failed to delete old backup {info.name}: {e}")

        logger.info(f"Retention cleanup removed {deleted} archives older than {retention_days} days")
        return deleted


def sort_newest_first(archives: List[ArchiveInfo]) -> List[ArchiveInfo]:
    return sorted(archives, key=lambda a: (a.created_time, a.name), reverse=True)
