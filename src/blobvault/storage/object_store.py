"""
Remote object store interface.

Provides:
- RemoteObject: metadata of one object as reported by a listing
- FetchedObject: a lazily streamed object body plus its final size
- ObjectStore: abstract interface for container listing, paginated object
  listing, whole-object fetch and upload
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, Optional

logger = logging.getLogger(__name__)


def ensure_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime (naive values are taken as UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class RemoteObject:
    """Metadata for one object in a remote container.

    Rebuilt on every listing and never persisted except through a SyncRecord.
    """
    container: str
    key: str
    last_modified: datetime
    content_hash: str = ""  # empty when the store does not report one
    size: int = 0

    def __post_init__(self):
        object.__setattr__(self, "last_modified", ensure_utc(self.last_modified))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "container": self.container,
            "key": self.key,
            "last_modified": self.last_modified.isoformat(),
            "content_hash": self.content_hash,
            "size": self.size,
        }


@dataclass
class FetchedObject:
    """Body of a fetched object.

    ``chunks`` is consumed exactly once; ``size`` is the size reported by the
    store for the whole object.
    """
    container: str
    key: str
    chunks: Iterable[bytes]
    size: int


class ObjectStore(ABC):
    """Abstract base class for remote blob stores."""

    # Upper bound on concurrent requests the client can serve safely.
    # None means the client imposes no limit.
    max_safe_concurrency: Optional[int] = None

    @abstractmethod
    def list_containers(
        self,
        cancel_event: Optional[threading.Event] = None,
    ) -> Iterator[str]:
        """
        List container names in the account.

        Raises:
            ListingError: If the container list cannot be enumerated.
        """
        pass

    @abstractmethod
    def list_objects(
        self,
        container: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> Iterator[RemoteObject]:
        """
        Lazily list the objects of a container, page by page.

        Each page request is retried independently. Directory markers
        (keys ending with '/') are skipped.

        Raises:
            ListingError: If a page cannot be fetched after retries.
            SyncCancelledError: If ``cancel_event`` is set.
        """
        pass

    @abstractmethod
    def fetch_object(
        self,
        container: str,
        key: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> FetchedObject:
        """
        Start fetching a whole object.

        Raises:
            FetchError: If the object cannot be fetched after retries.
            SyncCancelledError: If ``cancel_event`` is set.
        """
        pass

    @abstractmethod
    def ensure_container(self, container: str) -> None:
        """Create ``container`` if it does not already exist."""
        pass

    @abstractmethod
    def upload_object(
        self,
        container: str,
        key: str,
        local_path: Path,
        cancel_event: Optional[threading.Event] = None,
    ) -> int:
        """
        Upload a local file as ``key``, overwriting any existing object.

        Returns:
            Number of bytes uploaded.

        Raises:
            UploadError: If the upload fails after retries.
        """
        pass

    def close(self) -> None:
        """Release any network resources held by the client."""
        pass
