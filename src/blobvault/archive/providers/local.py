"""Directory-backed archive store for development and tests."""

import logging
import os
import shutil
from pathlib import Path
from typing import List, Optional, Union

from ...exceptions import ArchiveError
from ...utils.fileio import temp_sibling
from ..archiver import parse_archive_name
from ..base import ArchiveInfo, ArchiveStore, archive_info_from_name, sort_newest_first

logger = logging.getLogger(__name__)


class LocalArchiveStore(ArchiveStore):
    """Keeps archives as plain files in one directory."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def upload_archive(self, archive_path: Path, container: str) -> ArchiveInfo:
        archive_path = Path(archive_path)
        if parse_archive_name(archive_path.name) is None:
            raise ArchiveError(f"Not a backup archive name: {archive_path.name}")
        target = self.root / archive_path.name
        tmp_path = temp_sibling(target)
        try:
            shutil.copyfile(archive_path, tmp_path)
            os.replace(tmp_path, target)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise ArchiveError(f"Failed to store archive {archive_path.name}: {e}") from e

        logger.info(f"Stored archive {target}")
        return self._info_for(target)

    def list_archives(self, container: Optional[str] = None) -> List[ArchiveInfo]:
        archives = []
        for path in self.root.glob("*.zip"):
            info = self._info_for(path)
            if info is None:
                continue
            if container is not None and info.container != container:
                continue
            archives.append(info)
        return sort_newest_first(archives)

    def download_archive(self, info: ArchiveInfo, dest_dir: Path) -> Path:
        dest_dir = Path(dest_dir)
        dest_dir.mkdir(parents=True, exist_ok=True)
        target = dest_dir / info.name
        try:
            shutil.copyfile(info.location, target)
        except OSError as e:
            raise ArchiveError(f"Failed to fetch archive {info.name}: {e}") from e
        return target

    def delete_archive(self, info: ArchiveInfo) -> None:
        try:
            Path(info.location).unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise ArchiveError(f"Failed to delete archive {info.name}: {e}") from e

    def _info_for(self, path: Path) -> Optional[ArchiveInfo]:
        return archive_info_from_name(path.name, str(path), path.stat().st_size)
