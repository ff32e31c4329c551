"""
Incremental synchronization engine.

Provides:
- Change-set resolution against the persisted sync state
- Bounded-concurrency fetch scheduling
- Crash-safe local materialization with key validation
- JSON sync state persistence
- Orchestration of single-container and all-container passes
"""

from .change_set import ChangeSet, PlannedFetch, resolve_changes
from .materializer import LocalMaterializer, validate_object_key
from .models import (
    ContainerPassStats,
    ContainerPhase,
    ErrorKind,
    FetchResult,
    PassResult,
    PassStatus,
    SyncErrorDetail,
)
from .orchestrator import ContainerScope, SyncOrchestrator
from .scheduler import AdmissionGate, FetchScheduler
from .sync_state import (
    ContainerSyncState,
    SyncRecord,
    SyncStateFile,
    SyncStateStore,
)

__all__ = [
    # Change sets
    "ChangeSet",
    "PlannedFetch",
    "resolve_changes",
    # Materialization
    "LocalMaterializer",
    "validate_object_key",
    # Results
    "ContainerPassStats",
    "ContainerPhase",
    "ErrorKind",
    "FetchResult",
    "PassResult",
    "PassStatus",
    "SyncErrorDetail",
    # Orchestration
    "ContainerScope",
    "SyncOrchestrator",
    "AdmissionGate",
    "FetchScheduler",
    # State
    "ContainerSyncState",
    "SyncRecord",
    "SyncStateFile",
    "SyncStateStore",
]
