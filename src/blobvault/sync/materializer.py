"""
Local materialization of fetched objects.

Each container is mirrored under ``<root>/<container>/``; an object key
``a/b/c.txt`` lands at ``<root>/<container>/a/b/c.txt``. Writes use the
crash-safe replace protocol from ``utils.fileio``. Keys that could escape
the container root are rejected, never normalized.
"""

import logging
import os
import threading
from pathlib import Path
from typing import Iterable, Optional, Set, Tuple, Union

from ..exceptions import (
    FetchError,
    IncompleteWriteError,
    MaterializeError,
    SyncCancelledError,
    UnsafeObjectKeyError,
)
from ..utils.fileio import atomic_write_chunks

logger = logging.getLogger(__name__)


def validate_object_key(key: str) -> Tuple[str, ...]:
    """
    Split an object key into safe path segments.

    Args:
        key: Remote object key (POSIX-style, '/'-separated)

    Returns:
        Tuple of path segments.

    Raises:
        UnsafeObjectKeyError: If the key is empty, absolute, contains '.' or
            '..' segments, empty segments, backslashes or NUL bytes.
    """
    if not key:
        raise UnsafeObjectKeyError("Empty object key", key=key)
    if "\x00" in key:
        raise UnsafeObjectKeyError(f"Object key contains NUL byte: {key!r}", key=key)
    if "\\" in key:
        raise UnsafeObjectKeyError(f"Object key contains backslash: {key!r}", key=key)
    if key.startswith("/"):
        raise UnsafeObjectKeyError(f"Absolute object key: {key!r}", key=key)

    segments = tuple(key.split("/"))
    for segment in segments:
        if segment in ("", ".", ".."):
            raise UnsafeObjectKeyError(f"Object key has unsafe segment: {key!r}", key=key)
        if len(segment) >= 2 and segment[1] == ":" and segment[0].isalpha():
            raise UnsafeObjectKeyError(f"Object key has drive prefix: {key!r}", key=key)
    return segments


def validate_container_name(container: str) -> str:
    """Container names map to a single directory level."""
    if not container or "/" in container or "\\" in container or container in (".", ".."):
        raise UnsafeObjectKeyError(f"Unsafe container name: {container!r}", container=container)
    return container


class LocalMaterializer:
    """Writes fetched objects below a local root directory."""

    def __init__(self, root: Union[str, Path]):
        """
        Initialize materializer.

        Args:
            root: Local backup root; one sub-directory per container
        """
        self.root = Path(root)

    def container_root(self, container: str) -> Path:
        return self.root / validate_container_name(container)

    def path_for(self, container: str, key: str) -> Path:
        """
        Resolve the local path of an object.

        Raises:
            UnsafeObjectKeyError: If the key would escape the container root.
        """
        segments = validate_object_key(key)
        base = self.container_root(container)
        path = base.joinpath(*segments)

        # Symlinked directories inside the root must not redirect writes.
        resolved_base = base.resolve()
        resolved = path.resolve()
        if resolved != resolved_base and resolved_base not in resolved.parents:
            raise UnsafeObjectKeyError(
                f"Object key resolves outside {base}: {key!r}", container=container, key=key
            )
        return path

    def exists(self, container: str, key: str) -> bool:
        return self.path_for(container, key).is_file()

    def materialize(
        self,
        container: str,
        key: str,
        chunks: Iterable[bytes],
        cancel_event: Optional[threading.Event] = None,
        expected_size: Optional[int] = None,
    ) -> Tuple[Path, int]:
        """
        Durably write an object's bytes to its local path.

        Args:
            container: Container name
            key: Object key
            chunks: Object body as byte chunks
            cancel_event: Optional pass cancellation event
            expected_size: Size announced by the store; a stream that ends
                short (or runs long) is not written

        Returns:
            Tuple of (destination path, bytes written)

        Raises:
            UnsafeObjectKeyError: If the key is unsafe.
            FetchError: If the stream delivered a size other than
                ``expected_size`` (destination untouched).
            MaterializeError: If the write or rename fails.
            SyncCancelledError: If cancelled mid-write (destination untouched).
        """
        path = self.path_for(container, key)
        try:
            written = atomic_write_chunks(
                path, chunks, cancel_event=cancel_event, expected_size=expected_size
            )
        except SyncCancelledError:
            raise
        except IncompleteWriteError as e:
            raise FetchError(
                f"Truncated download of {container}/{key}: {e}", container=container, key=key
            ) from e
        except OSError as e:
            raise MaterializeError(
                f"Failed to write {path}: {e}", container=container, key=key
            ) from e
        logger.debug(f"[{container}] Materialized {key} ({written} bytes)")
        return path, written

    def delete(self, container: str, key: str) -> bool:
        """
        Delete a locally stale object and prune empty parent directories.

        Returns:
            True if a file was removed, False if it was already absent.

        Raises:
            MaterializeError: If the file exists but cannot be removed.
        """
        path = self.path_for(container, key)
        base = self.container_root(container)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise MaterializeError(
                f"Failed to delete {path}: {e}", container=container, key=key
            ) from e

        parent = path.parent
        while parent != base and base in parent.parents:
            try:
                parent.rmdir()
            except OSError:
                break
            parent = parent.parent
        return True

    def list_local_keys(self, container: str) -> Set[str]:
        """
        Return the keys of every file currently stored for ``container``.

        Raises:
            MaterializeError: If the container directory cannot be walked.
        """
        base = self.container_root(container)
        if not base.exists():
            return set()

        keys: Set[str] = set()

        def on_error(error: OSError) -> None:
            raise MaterializeError(
                f"Failed to walk {base}: {error}", container=container
            ) from error

        for dirpath, _dirnames, filenames in os.walk(base, onerror=on_error):
            for filename in filenames:
                full = Path(dirpath) / filename
                keys.add(full.relative_to(base).as_posix())
        return keys
