"""
Sync state tracking for incremental transfers.

Provides:
- SyncRecord: fingerprint of one successfully materialized object
- ContainerSyncState: all records of a container plus its last sync time
- SyncStateFile: the persisted document for one deployment
- SyncStateStore: JSON load/save with crash-safe atomic replacement

Persisted shape::

    {
        "lastSync": "...",
        "containers": {
            "<name>": {
                "lastSync": "...",
                "files": {"<key>": {"lastModified": "...", "hash": "...", "size": 0}}
            }
        }
    }
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Union

from ..exceptions import StatePersistenceError
from ..storage.object_store import ensure_utc
from ..utils.fileio import atomic_write_text

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def format_timestamp(value: datetime) -> str:
    return ensure_utc(value).isoformat()


def parse_timestamp(value: Optional[str]) -> datetime:
    """Parse an ISO-8601 timestamp; a trailing 'Z' is accepted."""
    if not value:
        return EPOCH
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(value))


@dataclass(frozen=True)
class SyncRecord:
    """Record of an object that was materialized locally."""
    key: str
    last_modified: datetime
    content_hash: str = ""
    size: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary (the key is the enclosing mapping's key)."""
        return {
            "lastModified": format_timestamp(self.last_modified),
            "hash": self.content_hash,
            "size": self.size,
        }

    @staticmethod
    def from_dict(key: str, data: Dict[str, Any]) -> "SyncRecord":
        return SyncRecord(
            key=key,
            last_modified=parse_timestamp(data.get("lastModified")),
            content_hash=data.get("hash") or "",
            size=int(data.get("size") or 0),
        )


@dataclass
class ContainerSyncState:
    """Records of one container, replaced as a whole at the end of a pass."""
    files: Dict[str, SyncRecord] = field(default_factory=dict)
    last_sync: datetime = EPOCH

    def get(self, key: str) -> Optional[SyncRecord]:
        return self.files.get(key)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "lastSync": format_timestamp(self.last_sync),
            "files": {key: record.to_dict() for key, record in sorted(self.files.items())},
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "ContainerSyncState":
        files = data.get("files") or {}
        return ContainerSyncState(
            files={key: SyncRecord.from_dict(key, value) for key, value in files.items()},
            last_sync=parse_timestamp(data.get("lastSync")),
        )


@dataclass
class SyncStateFile:
    """Top-level persisted sync state."""
    containers: Dict[str, ContainerSyncState] = field(default_factory=dict)
    last_sync: datetime = EPOCH

    def container(self, name: str) -> ContainerSyncState:
        """Return the state of ``name``, or an empty state if unknown."""
        return self.containers.get(name) or ContainerSyncState()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "lastSync": format_timestamp(self.last_sync),
            "containers": {
                name: state.to_dict() for name, state in sorted(self.containers.items())
            },
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "SyncStateFile":
        containers = data.get("containers") or {}
        return SyncStateFile(
            containers={
                name: ContainerSyncState.from_dict(value) for name, value in containers.items()
            },
            last_sync=parse_timestamp(data.get("lastSync")),
        )


class SyncStateStore:
    """Loads and atomically saves the sync state file.

    Only the orchestrator calls ``save``, once per pass.
    """

    DEFAULT_FILE_NAME = "sync_metadata.json"

    def __init__(self, path: Union[str, Path]):
        """
        Initialize sync state store.

        Args:
            path: Path to the JSON state file
        """
        self.path = Path(path)

    def load(self) -> SyncStateFile:
        """
        Load the state file.

        Returns:
            The persisted state, or an empty state if the file does not exist.

        Raises:
            StatePersistenceError: If the file exists but cannot be read or
                parsed.
        """
        if not self.path.exists():
            logger.info(f"No sync state at {self.path}; starting from empty state")
            return SyncStateFile()

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            state = SyncStateFile.from_dict(data)
        except (OSError, ValueError, TypeError, AttributeError) as e:
            raise StatePersistenceError(f"Failed to load sync state {self.path}: {e}") from e

        total = sum(len(c.files) for c in state.containers.values())
        logger.info(
            f"Loaded sync state with {len(state.containers)} containers, {total} records"
        )
        return state

    def save(self, state: SyncStateFile) -> None:
        """
        Save the state file with temp-write, fsync and atomic rename.

        A crash mid-save leaves the previous file intact.

        Raises:
            StatePersistenceError: If the file cannot be written.
        """
        try:
            payload = json.dumps(state.to_dict(), indent=4)
            atomic_write_text(self.path, payload + "\n")
        except (OSError, TypeError, ValueError) as e:
            raise StatePersistenceError(f"Failed to save sync state {self.path}: {e}") from e
        logger.info(f"Saved sync state to {self.path}")
