"""
Sync orchestration across one or many containers.

Per container the pass runs
``STARTED -> LISTING -> DIFFING -> FETCHING -> RECONCILING -> PERSISTING``
and ends in ``DONE`` or ``DONE_WITH_ERRORS``. The orchestrator is the only
place where errors are aggregated and the only writer of the state file,
which it saves once per pass after every container has finished.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from ..exceptions import (
    ConfigurationError,
    ListingError,
    MaterializeError,
    StatePersistenceError,
    SyncCancelledError,
)
from ..storage.object_store import ObjectStore, RemoteObject
from .change_set import resolve_changes
from .materializer import LocalMaterializer
from .models import (
    ContainerPassStats,
    ContainerPhase,
    ErrorKind,
    FetchResult,
    PassResult,
    PassStatus,
    SyncErrorDetail,
)
from .scheduler import AdmissionGate, FetchScheduler
from .sync_state import ContainerSyncState, SyncRecord, SyncStateFile, SyncStateStore

logger = logging.getLogger(__name__)

ALL_CONTAINERS = "ALL"


@dataclass(frozen=True)
class ContainerScope:
    """Either a single named container or every container in the account."""
    container: Optional[str] = None

    @staticmethod
    def single(name: str) -> "ContainerScope":
        if not name or name == ALL_CONTAINERS:
            raise ValueError(f"Invalid container name for single scope: {name!r}")
        return ContainerScope(container=name)

    @staticmethod
    def all() -> "ContainerScope":
        return ContainerScope(container=None)

    @staticmethod
    def parse(value: Optional[str]) -> "ContainerScope":
        """Parse a selector: a container name, or 'ALL' (also the default)."""
        if not value or value.strip().upper() == ALL_CONTAINERS:
            return ContainerScope.all()
        return ContainerScope.single(value.strip())

    @property
    def is_all(self) -> bool:
        return self.container is None

    def __str__(self) -> str:
        return ALL_CONTAINERS if self.is_all else str(self.container)


class SyncOrchestrator:
    """Sequences listing, diffing, fetching, reconciling and persisting."""

    def __init__(
        self,
        store: ObjectStore,
        materializer: LocalMaterializer,
        state_store: SyncStateStore,
        max_concurrent: int = 10,
        max_concurrent_containers: int = 5,
    ):
        """
        Initialize orchestrator.

        Args:
            store: Remote object store
            materializer: Local materializer
            state_store: Sync state persistence
            max_concurrent: In-flight fetches per container (N)
            max_concurrent_containers: Containers processed at once (M)

        Raises:
            ConfigurationError: If a limit is not positive, or N alone exceeds
                the store's safe concurrency.
        """
        if max_concurrent < 1 or max_concurrent_containers < 1:
            raise ConfigurationError("Concurrency limits must be at least 1")

        safe = store.max_safe_concurrency
        if safe is not None and max_concurrent > safe:
            raise ConfigurationError(
                f"max_concurrent ({max_concurrent}) exceeds the store's "
                f"safe concurrency of {safe}"
            )

        self.store = store
        self.materializer = materializer
        self.state_store = state_store
        self.max_concurrent = max_concurrent
        self.max_concurrent_containers = max_concurrent_containers
        self.scheduler = FetchScheduler(store, materializer, max_concurrent)

    # ------------------------------------------------------------------
    # Pass
    # ------------------------------------------------------------------

    def run(
        self,
        scope: ContainerScope,
        cancel_event: Optional[threading.Event] = None,
        deadline: Optional[float] = None,
    ) -> PassResult:
        """
        Run one synchronization pass.

        Args:
            scope: Single container or all containers
            cancel_event: External cancellation signal
            deadline: Optional pass deadline in seconds; when it elapses the
                cancellation signal is raised

        Returns:
            PassResult; partial success is reported, never raised.

        Raises:
            ConfigurationError: If an all-containers pass could exceed the
                store's safe concurrency.
        """
        self.check_capacity(scope)
        cancel_event = cancel_event or threading.Event()
        timer: Optional[threading.Timer] = None
        if deadline is not None:
            timer = threading.Timer(deadline, cancel_event.set)
            timer.daemon = True
            timer.start()

        result = PassResult()
        logger.info(f"Starting sync pass for {scope} into {self.materializer.root}")
        try:
            self._run(scope, cancel_event, result)
        finally:
            if timer is not None:
                timer.cancel()

        result.cancelled = cancel_event.is_set()
        result.finished_at = datetime.now(timezone.utc)
        if result.errors or result.failed or result.persistence_error or result.cancelled:
            result.status = PassStatus.DONE_WITH_ERRORS

        total_size = sum(s.total_size for s in result.containers.values())
        logger.info(
            f"Sync completed in {result.duration_seconds:.1f}s: processed "
            f"{len(result.containers)} containers, {result.total_fetched} downloaded, "
            f"{result.total_skipped} skipped, {result.total_deleted} deleted, "
            f"{result.total_failed} failed, {total_size / (1024 * 1024):.2f} MB listed"
        )
        return result

    def check_capacity(self, scope: ContainerScope) -> None:
        """
        Reject a pass whose worst-case concurrent fetches exceed the store's
        safe concurrency: N * M for all containers, N for a single one.
        """
        safe = self.store.max_safe_concurrency
        if safe is None or not scope.is_all:
            return
        worst_case = self.max_concurrent * self.max_concurrent_containers
        if worst_case > safe:
            raise ConfigurationError(
                f"max_concurrent ({self.max_concurrent}) x max_concurrent_containers "
                f"({self.max_concurrent_containers}) = {worst_case} exceeds the store's "
                f"safe concurrency of {safe}"
            )

    def _run(self, scope: ContainerScope, cancel_event: threading.Event, result: PassResult) -> None:
        prior = self._load_prior_state()

        if scope.is_all:
            try:
                containers = list(self.store.list_containers(cancel_event=cancel_event))
            except (ListingError, SyncCancelledError) as e:
                kind = ErrorKind.CANCELLED if isinstance(e, SyncCancelledError) else ErrorKind.LISTING
                logger.error(f"Failed to list containers: {e}")
                result.errors.append(SyncErrorDetail(container=None, kind=kind, message=str(e)))
                return
        else:
            containers = [scope.container]

        updates = self._process_containers(containers, prior, cancel_event, result)

        new_state = SyncStateFile(
            containers=dict(prior.containers),
            last_sync=datetime.now(timezone.utc),
        )
        new_state.containers.update(updates)

        try:
            self.state_store.save(new_state)
        except StatePersistenceError as e:
            logger.error(f"Failed to save sync metadata: {e}")
            result.persistence_error = str(e)
            result.errors.append(
                SyncErrorDetail(container=None, kind=ErrorKind.PERSISTENCE, message=str(e))
            )

    def _load_prior_state(self) -> SyncStateFile:
        try:
            return self.state_store.load()
        except StatePersistenceError as e:
            logger.warning(f"Failed to load sync metadata, will perform full sync: {e}")
            return SyncStateFile()

    def _process_containers(
        self,
        containers: List[str],
        prior: SyncStateFile,
        cancel_event: threading.Event,
        result: PassResult,
    ) -> Dict[str, ContainerSyncState]:
        """Process containers behind the container gate (M); collect results here only."""
        gate = AdmissionGate(self.max_concurrent_containers, name="containers")
        updates: Dict[str, ContainerSyncState] = {}

        def guarded(name: str) -> Tuple[ContainerPassStats, Optional[ContainerSyncState]]:
            try:
                with gate.admit(cancel_event):
                    logger.info(f"Processing container: {name}")
                    return self.process_container(name, prior.container(name), cancel_event)
            except SyncCancelledError as e:
                stats = ContainerPassStats(container=name, cancelled=True)
                stats.phase = ContainerPhase.DONE_WITH_ERRORS
                stats.add_error(SyncErrorDetail(name, ErrorKind.CANCELLED, str(e)))
                return stats, None

        workers = min(self.max_concurrent_containers, max(len(containers), 1))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="container") as executor:
            futures = {executor.submit(guarded, name): name for name in containers}
            for future in as_completed(futures):
                name = futures[future]
                try:
                    stats, container_state = future.result()
                except Exception as e:
                    logger.error(f"Failed to process container {name}: {e}", exc_info=True)
                    stats = ContainerPassStats(container=name, phase=ContainerPhase.DONE_WITH_ERRORS)
                    stats.add_error(SyncErrorDetail(name, ErrorKind.LISTING, f"{type(e).__name__}: {e}"))
                    container_state = None

                result.containers[name] = stats
                if container_state is not None:
                    updates[name] = container_state

        logger.debug(f"Peak concurrent containers: {gate.peak}")
        return updates

    # ------------------------------------------------------------------
    # Container sub-pass
    # ------------------------------------------------------------------

    def process_container(
        self,
        container: str,
        prior: ContainerSyncState,
        cancel_event: Optional[threading.Event] = None,
    ) -> Tuple[ContainerPassStats, Optional[ContainerSyncState]]:
        """
        Run the sub-pass of one container.

        Returns:
            Tuple of (stats, new container state). The state is None when the
            container must keep its prior entry (listing failure or
            cancellation).
        """
        cancel_event = cancel_event or threading.Event()
        stats = ContainerPassStats(container=container)

        def abort(kind: ErrorKind, error: Exception) -> Tuple[ContainerPassStats, None]:
            stats.add_error(SyncErrorDetail(container, kind, str(error)))
            stats.cancelled = kind == ErrorKind.CANCELLED
            stats.phase = ContainerPhase.DONE_WITH_ERRORS
            return stats, None

        # Listing: a frozen snapshot taken before any fetch starts.
        stats.phase = ContainerPhase.LISTING
        try:
            listing: List[RemoteObject] = list(
                self.store.list_objects(container, cancel_event=cancel_event)
            )
        except ListingError as e:
            logger.error(f"[{container}] Listing failed: {e}")
            return abort(ErrorKind.LISTING, e)
        except SyncCancelledError as e:
            return abort(ErrorKind.CANCELLED, e)

        stats.seen = len(listing)
        stats.total_size = sum(obj.size for obj in listing)

        stats.phase = ContainerPhase.DIFFING
        try:
            local_keys = self.materializer.list_local_keys(container)
        except MaterializeError as e:
            logger.error(f"[{container}] Cannot inspect local copy: {e}")
            return abort(ErrorKind.MATERIALIZE, e)

        change_set = resolve_changes(listing, prior, local_keys)
        stats.skipped = len(change_set.unchanged)
        for invalid in change_set.invalid:
            logger.error(f"[{container}] Rejected object key: {invalid}")
            stats.failed += 1
            stats.add_error(SyncErrorDetail(container, ErrorKind.MATERIALIZE, str(invalid), key=invalid.key))

        stats.phase = ContainerPhase.FETCHING
        results = self.scheduler.run(container, change_set.must_fetch, cancel_event)
        records = self._fold_results(container, results, stats)

        if cancel_event.is_set():
            stats.cancelled = True
            stats.phase = ContainerPhase.DONE_WITH_ERRORS
            stats.add_error(
                SyncErrorDetail(container, ErrorKind.CANCELLED, "Pass cancelled before container finished")
            )
            logger.warning(f"[{container}] Cancelled; keeping previous sync state")
            return stats, None

        stats.phase = ContainerPhase.RECONCILING
        for key in change_set.stale_keys:
            try:
                if self.materializer.delete(container, key):
                    stats.deleted += 1
                    logger.info(f"[{container}] Removing deleted file: {key}")
            except MaterializeError as e:
                logger.error(f"[{container}] Error cleaning up deleted file {key}: {e}")
                stats.add_error(SyncErrorDetail(container, ErrorKind.MATERIALIZE, str(e), key=key))

        stats.phase = ContainerPhase.PERSISTING
        files: Dict[str, SyncRecord] = {}
        for remote in change_set.unchanged:
            files[remote.key] = prior.files[remote.key]
        for key, record in records.items():
            files[key] = record
        # A failed re-fetch leaves the previous file and its record in place.
        for result in results:
            if not result.ok and result.remote.key in prior.files:
                files.setdefault(result.remote.key, prior.files[result.remote.key])

        new_state = ContainerSyncState(files=files, last_sync=datetime.now(timezone.utc))
        stats.phase = ContainerPhase.DONE_WITH_ERRORS if stats.errors else ContainerPhase.DONE

        logger.info(
            f"[{container}] {stats.phase.value}: {stats.seen} seen, {stats.downloaded} downloaded, "
            f"{stats.skipped} skipped, {stats.deleted} deleted, {stats.failed} failed"
        )
        return stats, new_state

    @staticmethod
    def _fold_results(
        container: str,
        results: List[FetchResult],
        stats: ContainerPassStats,
    ) -> Dict[str, SyncRecord]:
        records: Dict[str, SyncRecord] = {}
        for result in results:
            if result.ok:
                stats.downloaded += 1
                stats.bytes_downloaded += result.bytes_written
                records[result.remote.key] = result.record
            elif result.cancelled:
                continue
            else:
                stats.failed += 1
                stats.add_error(result.error)
        return records
