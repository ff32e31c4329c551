"""
Value types exchanged between the sync engine components.

Provides:
- ErrorKind / SyncErrorDetail: the aggregated diagnostic for one failure
- FetchResult: the value every fetch task hands back to the scheduler
- ContainerPhase / ContainerPassStats: per-container sub-pass bookkeeping
- PassStatus / PassResult: the pass-level summary
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from ..storage.object_store import RemoteObject
from .sync_state import SyncRecord


class ErrorKind(str, Enum):
    """Category of a recorded failure."""
    FETCH = "fetch"
    MATERIALIZE = "materialize"
    LISTING = "listing"
    PERSISTENCE = "persistence"
    CANCELLED = "cancelled"


class ContainerPhase(str, Enum):
    """Phase of a container sub-pass."""
    STARTED = "started"
    LISTING = "listing"
    DIFFING = "diffing"
    FETCHING = "fetching"
    RECONCILING = "reconciling"
    PERSISTING = "persisting"
    DONE = "done"
    DONE_WITH_ERRORS = "done_with_errors"


class PassStatus(str, Enum):
    """Terminal status of a pass."""
    DONE = "done"
    DONE_WITH_ERRORS = "done_with_errors"


@dataclass
class SyncErrorDetail:
    """One recorded failure."""
    container: Optional[str]
    kind: ErrorKind
    message: str
    key: Optional[str] = None

    def __str__(self) -> str:
        where = self.container or "*"
        if self.key:
            where = f"{where}/{self.key}"
        return f"[{self.kind.value}] {where}: {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "container": self.container,
            "key": self.key,
            "kind": self.kind.value,
            "message": self.message,
        }


@dataclass
class FetchResult:
    """Outcome of one fetch-and-materialize task."""
    remote: RemoteObject
    record: Optional[SyncRecord] = None
    bytes_written: int = 0
    error: Optional[SyncErrorDetail] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.record is not None

    @property
    def cancelled(self) -> bool:
        return self.error is not None and self.error.kind == ErrorKind.CANCELLED


@dataclass
class ContainerPassStats:
    """Counts and errors for one container in one pass."""
    container: str
    phase: ContainerPhase = ContainerPhase.STARTED
    seen: int = 0
    downloaded: int = 0
    skipped: int = 0
    deleted: int = 0
    failed: int = 0
    bytes_downloaded: int = 0
    total_size: int = 0
    cancelled: bool = False
    errors: List[SyncErrorDetail] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.phase == ContainerPhase.DONE

    @property
    def changed(self) -> bool:
        """Whether the local copy changed during this pass."""
        return self.downloaded > 0 or self.deleted > 0

    def add_error(self, detail: SyncErrorDetail) -> None:
        self.errors.append(detail)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "container": self.container,
            "phase": self.phase.value,
            "seen": self.seen,
            "downloaded": self.downloaded,
            "skipped": self.skipped,
            "deleted": self.deleted,
            "failed": self.failed,
            "bytes_downloaded": self.bytes_downloaded,
            "total_size": self.total_size,
            "cancelled": self.cancelled,
            "errors": [e.to_dict() for e in self.errors],
        }


@dataclass
class PassResult:
    """Summary of one synchronization pass."""
    status: PassStatus = PassStatus.DONE
    containers: Dict[str, ContainerPassStats] = field(default_factory=dict)
    errors: List[SyncErrorDetail] = field(default_factory=list)
    persistence_error: Optional[str] = None
    cancelled: bool = False
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    @property
    def attempted(self) -> List[str]:
        return sorted(self.containers)

    @property
    def succeeded(self) -> List[str]:
        return sorted(name for name, s in self.containers.items() if s.succeeded)

    @property
    def failed(self) -> List[str]:
        return sorted(name for name, s in self.containers.items() if not s.succeeded)

    @property
    def total_fetched(self) -> int:
        return sum(s.downloaded for s in self.containers.values())

    @property
    def total_skipped(self) -> int:
        return sum(s.skipped for s in self.containers.values())

    @property
    def total_failed(self) -> int:
        return sum(s.failed for s in self.containers.values())

    @property
    def total_deleted(self) -> int:
        return sum(s.deleted for s in self.containers.values())

    @property
    def total_bytes(self) -> int:
        return sum(s.bytes_downloaded for s in self.containers.values())

    @property
    def all_errors(self) -> List[SyncErrorDetail]:
        """Pass-level errors followed by the union of per-container errors."""
        collected = list(self.errors)
        for name in sorted(self.containers):
            collected.extend(self.containers[name].errors)
        return collected

    @property
    def duration_seconds(self) -> float:
        end = self.finished_at or datetime.now(timezone.utc)
        return (end - self.started_at).total_seconds()

    def summary(self) -> str:
        """Human-readable one-paragraph summary."""
        lines = [
            f"Pass {self.status.value} in {self.duration_seconds:.1f}s"
            + (" (cancelled)" if self.cancelled else ""),
            f"  Containers attempted: {len(self.attempted)}",
            f"  Containers succeeded: {len(self.succeeded)}",
            f"  Objects fetched: {self.total_fetched}",
            f"  Objects skipped: {self.total_skipped}",
            f"  Objects failed: {self.total_failed}",
            f"  Objects deleted: {self.total_deleted}",
            f"  Bytes downloaded: {self.total_bytes:,}",
        ]
        if self.failed:
            lines.append(f"  Failed containers: {', '.join(self.failed)}")
        if self.persistence_error:
            lines.append(f"  State not saved: {self.persistence_error}")
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "status": self.status.value,
            "cancelled": self.cancelled,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "total_fetched": self.total_fetched,
            "total_skipped": self.total_skipped,
            "total_failed": self.total_failed,
            "total_deleted": self.total_deleted,
            "persistence_error": self.persistence_error,
            "errors": [e.to_dict() for e in self.errors],
            "containers": {name: s.to_dict() for name, s in self.containers.items()},
        }
