"""
Crash-safe file replacement helpers.

Every write goes to a temporary sibling of the destination, is flushed and
fsync'ed, and is then renamed over the destination with ``os.replace``. A
reader therefore sees either the previous file or the complete new one,
never a partially written file.
"""

import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Iterable, Optional, Union

from ..exceptions import IncompleteWriteError, SyncCancelledError

logger = logging.getLogger(__name__)

TEMP_SUFFIX = ".tmp"


def temp_sibling(path: Path) -> Path:
    """Create an empty, uniquely named temp file next to ``path``."""
    fd, temp_name = tempfile.mkstemp(
        prefix=f".{path.name}.", suffix=TEMP_SUFFIX, dir=str(path.parent)
    )
    os.close(fd)
    return Path(temp_name)


def _fsync_directory(directory: Path) -> None:
    # Directory fsync makes the rename durable; not supported on Windows.
    if os.name != "posix":
        return
    fd = os.open(str(directory), os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def atomic_write_chunks(
    path: Union[str, Path],
    chunks: Iterable[bytes],
    cancel_event: Optional[threading.Event] = None,
    expected_size: Optional[int] = None,
) -> int:
    """
    Atomically write a stream of byte chunks to ``path``.

    Args:
        path: Final destination path. Parent directories are created.
        chunks: Iterable of byte chunks.
        cancel_event: Optional event checked between chunks.
        expected_size: If given, the byte count the stream must deliver.

    Returns:
        Number of bytes written.

    Raises:
        SyncCancelledError: If ``cancel_event`` is set mid-write.
        IncompleteWriteError: If ``expected_size`` is given and the stream
            delivered a different number of bytes.
        OSError: On any filesystem failure. The temp file is removed and
            the destination is left untouched.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = temp_sibling(path)
    written = 0
    try:
        with open(temp_path, "wb") as f:
            for chunk in chunks:
                if cancel_event is not None and cancel_event.is_set():
                    raise SyncCancelledError(f"Write of {path} cancelled")
                f.write(chunk)
                written += len(chunk)
            f.flush()
            os.fsync(f.fileno())
        if expected_size is not None and written != expected_size:
            raise IncompleteWriteError(
                f"Write of {path} got {written} of {expected_size} bytes",
                expected=expected_size,
                written=written,
            )
        os.replace(temp_path, path)
    except BaseException:
        try:
            temp_path.unlink()
        except FileNotFoundError:
            pass
        raise
    _fsync_directory(path.parent)
    logger.debug(f"Atomically wrote {path} ({written} bytes)")
    return written


def atomic_write_text(path: Union[str, Path], text: str, encoding: str = "utf-8") -> int:
    """Atomically write ``text`` to ``path``."""
    return atomic_write_chunks(path, [text.encode(encoding)])
