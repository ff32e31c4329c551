"""
Zip packing and unpacking of a container's local mirror.

Features:
- Deflate-compressed archives with POSIX entry names
- All-or-nothing writes: archives and extracted members land via temp file
  and rename
- Members that would escape the destination directory are rejected
- Archive naming: ``{container}_backup_{YYYYmmdd_HHMMSS}.zip``, stamped in UTC
"""

import logging
import os
import re
import shutil
import zipfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Tuple, Union

from ..exceptions import ArchiveError
from ..utils.fileio import temp_sibling

logger = logging.getLogger(__name__)

ARCHIVE_SUFFIX = ".zip"
TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"

_ARCHIVE_NAME_RE = re.compile(r"^(?P<container>.+)_backup_(?P<stamp>\d{8}_\d{6})\.zip$")

COPY_BUFFER_SIZE = 1024 * 1024


def archive_name(container: str, when: datetime) -> str:
    """
    Build the archive file name for ``container`` at ``when``.

    Aware times are converted to UTC; naive times are taken as UTC.
    """
    if when.tzinfo is not None:
        when = when.astimezone(timezone.utc)
    return f"{container}_backup_{when.strftime(TIMESTAMP_FORMAT)}{ARCHIVE_SUFFIX}"


def parse_archive_name(name: str) -> Optional[Tuple[str, datetime]]:
    """
    Parse an archive file name.

    Args:
        name: File name, optionally with a directory prefix

    Returns:
        Tuple of (container, naive UTC timestamp), or None if ``name`` is not an
        archive name.
    """
    match = _ARCHIVE_NAME_RE.match(name.rsplit("/", 1)[-1])
    if not match:
        return None
    try:
        stamp = datetime.strptime(match.group("stamp"), TIMESTAMP_FORMAT)
    except ValueError:
        return None
    return match.group("container"), stamp


def pack_directory(source_dir: Union[str, Path], archive_path: Union[str, Path]) -> Path:
    """
    Pack a directory tree into a zip archive.

    Args:
        source_dir: Directory to pack
        archive_path: Destination archive path

    Returns:
        Path of the written archive

    Raises:
        ArchiveError: If the source is missing or the archive cannot be written.
    """
    source_dir = Path(source_dir)
    archive_path = Path(archive_path)

    if not source_dir.is_dir():
        raise ArchiveError(f"Source directory does not exist: {source_dir}")

    archive_path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = temp_sibling(archive_path)
    files = 0
    try:
        with zipfile.ZipFile(tmp_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for dirpath, dirnames, filenames in os.walk(source_dir):
                dirnames.sort()
                base = Path(dirpath)
                for dirname in dirnames:
                    rel = (base / dirname).relative_to(source_dir).as_posix()
                    zf.writestr(zipfile.ZipInfo(rel + "/"), b"")
                for filename in sorted(filenames):
                    full = base / filename
                    zf.write(full, full.relative_to(source_dir).as_posix())
                    files += 1
        os.replace(tmp_path, archive_path)
    except (OSError, zipfile.BadZipFile) as e:
        tmp_path.unlink(missing_ok=True)
        raise ArchiveError(f"Failed to create archive {archive_path}: {e}") from e

    logger.info(
        f"Packed {files} files from {source_dir} into {archive_path} "
        f"({archive_path.stat().st_size} bytes)"
    )
    return archive_path


def _member_target(dest_dir: Path, name: str) -> Path:
    if not name or "\x00" in name or "\\" in name or name.startswith("/"):
        raise ArchiveError(f"Unsafe archive member: {name!r}")
    target = (dest_dir / name).resolve()
    root = dest_dir.resolve()
    if target != root and root not in target.parents:
        raise ArchiveError(f"Archive member escapes destination: {name!r}")
    return target


def unpack_archive(archive_path: Union[str, Path], dest_dir: Union[str, Path]) -> Path:
    """
    Extract a zip archive into ``dest_dir``.

    Every member is written to a temporary sibling and renamed into place.

    Returns:
        The destination directory

    Raises:
        ArchiveError: If the archive is unreadable or a member would be
            written outside ``dest_dir``.
    """
    archive_path = Path(archive_path)
    dest_dir = Path(dest_dir)
    dest_dir.mkdir(parents=True, exist_ok=True)

    try:
        with zipfile.ZipFile(archive_path, "r") as zf:
            members = zf.infolist()
            # Validate everything before writing anything.
            targets = [(_member_target(dest_dir, info.filename), info) for info in members]
            for target, info in targets:
                if info.is_dir():
                    target.mkdir(parents=True, exist_ok=True)
                    continue
                target.parent.mkdir(parents=True, exist_ok=True)
                tmp_path = temp_sibling(target)
                try:
                    with zf.open(info, "r") as src, open(tmp_path, "wb") as dst:
                        shutil.copyfileobj(src, dst, COPY_BUFFER_SIZE)
                    os.replace(tmp_path, target)
                except BaseException:
                    tmp_path.unlink(missing_ok=True)
                    raise
    except (OSError, zipfile.BadZipFile) as e:
        raise ArchiveError(f"Failed to extract {archive_path}: {e}") from e

    logger.info(f"Extracted {len(members)} entries from {archive_path} into {dest_dir}")
    return dest_dir
